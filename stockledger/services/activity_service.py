import json

from sqlalchemy.orm import Session

from stockledger.models.activity import ActivityLog


def record_activity(
    db: Session,
    category: str,
    action: str,
    *,
    entity_type: str = "",
    entity_id: str = "",
    entity_name: str = "",
    user_id: str | None = None,
    username: str = "System User",
    project_id: str | None = None,
    project_name: str | None = None,
    changes: dict | None = None,
    details: dict | None = None,
) -> ActivityLog:
    entry = ActivityLog(
        category=category,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id or "",
        entity_name=entity_name,
        user_id=user_id,
        username=username,
        project_id=project_id,
        project_name=project_name,
        changes=json.dumps(changes or {}, default=str),
        details=json.dumps(details or {}, default=str),
    )
    db.add(entry)
    db.flush()
    return entry


def record_many(db: Session, entries: list[dict]) -> None:
    for entry in entries:
        entry = dict(entry)
        category = entry.pop("category")
        action = entry.pop("action")
        record_activity(db, category, action, **entry)


def get_activity_logs(
    db: Session,
    limit: int = 100,
    user_id: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
) -> list[ActivityLog]:
    q = db.query(ActivityLog)
    if user_id:
        q = q.filter(ActivityLog.user_id == user_id)
    if entity_id:
        q = q.filter(ActivityLog.entity_id == entity_id)
    if action:
        q = q.filter(ActivityLog.action == action)
    return q.order_by(ActivityLog.created_at.desc()).limit(limit).all()
