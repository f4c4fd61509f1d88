from datetime import datetime

from pydantic import BaseModel


class FeedItem(BaseModel):
    id: str
    type: str
    description: str
    timestamp: datetime | None = None
    status: str
    actor: str
    project_id: str | None = None
    project_name: str | None = None
    quantity: int = 0
    entity_id: str


class NotificationOut(BaseModel):
    id: str
    type: str
    title: str
    message: str
    priority: str
    category: str
    created_at: datetime

    model_config = {"from_attributes": True}
