import json
import logging
from datetime import datetime

import httpx
from sqlalchemy import or_
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.models.notification import Notification
from stockledger.models.product import Product
from stockledger.models.project import Project
from stockledger.models.stock_adjustment import AdjustmentStatus, StockAdjustmentRequest
from stockledger.models.transaction import StockTransaction, TransactionStatus
from stockledger.models.user import User
from stockledger.schemas.notification import FeedItem

logger = logging.getLogger(__name__)


class WebhookBroadcaster:
    """Pushes notifications to the configured push-gateway callback URLs."""

    def urls(self) -> list[str]:
        if not settings.BROADCAST_WEBHOOK_URLS:
            return []
        return [u.strip() for u in settings.BROADCAST_WEBHOOK_URLS.split(",") if u.strip()]

    def deliver(self, message: dict) -> list[dict]:
        urls = self.urls()
        if not urls:
            return []

        results = []
        with httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
            for url in urls:
                try:
                    resp = client.post(url, json=message)
                    results.append({"url": url, "status": resp.status_code, "success": resp.is_success})
                except Exception as e:
                    logger.error("Broadcast failed for %s: %s", url, e)
                    results.append({"url": url, "status": 0, "success": False, "error": str(e)})
        return results


broadcaster = WebhookBroadcaster()


def broadcast(
    db: Session,
    notification_type: str,
    title: str,
    message: str,
    *,
    target_roles: list[str] | tuple[str, ...] = (),
    target_users: list[str] | tuple[str, ...] = (),
    priority: str = "medium",
    category: str = "stock_management",
    payload: dict | None = None,
) -> Notification:
    """Persist a notification and push it to role or user targets."""
    note = Notification(
        type=notification_type,
        title=title,
        message=message,
        priority=priority,
        category=category,
        target_roles=json.dumps(list(target_roles)),
        target_users=json.dumps(list(target_users)),
        payload=json.dumps(payload or {}, default=str),
    )
    db.add(note)
    db.flush()

    broadcaster.deliver({
        "id": note.id,
        "targetRoles": list(target_roles),
        "targetUsers": list(target_users),
        "notification": {
            "type": notification_type,
            "title": title,
            "message": message,
            "priority": priority,
            "category": category,
            "rawData": payload or {},
        },
    })
    return note


def list_inbox(db: Session, user: User, limit: int = 50) -> list[Notification]:
    return (
        db.query(Notification)
        .filter(or_(
            Notification.target_roles.like(f'%"{user.role}"%'),
            Notification.target_users.like(f'%"{user.id}"%'),
        ))
        .order_by(Notification.created_at.desc())
        .limit(limit)
        .all()
    )


# --- Activity feed ---

def _user_project_ids(db: Session, user: User) -> set[str]:
    return {p.id for p in db.query(Project).all() if p.has_member(user.id)}


def describe_items(txn: StockTransaction) -> str:
    if len(txn.items) == 1:
        item = txn.items[0]
        return f"{item.quantity} units of {item.product_name}"
    return f"{len(txn.items)} items ({txn.total_quantity} units total)"


def _transaction_entries(txn: StockTransaction, names: dict[str, str]) -> list[tuple[FeedItem, set[str]]]:
    actors = {a for a in (txn.created_by, txn.completed_by, txn.cancelled_by) if a}
    entries = []

    if txn.is_order_mode and txn.status == TransactionStatus.PENDING:
        for idx, item in enumerate(txn.items):
            po = f" (PO: {txn.invoice_number})" if txn.invoice_number else ""
            entries.append((FeedItem(
                id=f"order-request-{txn.id}-item-{idx}",
                type="order_request",
                description=f"New order request: {item.quantity} units of {item.product_name} for {item.project_name}{po}",
                timestamp=txn.created_at,
                status="pending",
                actor="Order System",
                project_id=item.project_id,
                project_name=item.project_name,
                quantity=item.quantity,
                entity_id=txn.id,
            ), actors))
        return entries

    if txn.is_order_mode and txn.status == TransactionStatus.COMPLETED:
        warnings = txn.warning_list
        suffix = f", with {len(warnings)} warnings" if warnings else ""
        first = txn.items[0] if txn.items else None
        entries.append((FeedItem(
            id=f"order-completion-{txn.id}",
            type="order_completion",
            description=f"Order completed: {describe_items(txn)}{suffix}",
            timestamp=txn.completed_at or txn.updated_at,
            status="completed",
            actor=names.get(txn.completed_by or "", "Keeper"),
            project_id=first.project_id if first else None,
            project_name=first.project_name if first else None,
            quantity=txn.total_quantity,
            entity_id=txn.id,
        ), actors))
        return entries

    if txn.status == TransactionStatus.CANCELLED:
        entries.append((FeedItem(
            id=f"order-cancelled-{txn.id}",
            type="order_cancelled",
            description=f"Order request cancelled: {describe_items(txn)}",
            timestamp=txn.cancelled_at or txn.updated_at,
            status="cancelled",
            actor=names.get(txn.cancelled_by or "", "System"),
            quantity=txn.total_quantity,
            entity_id=txn.id,
        ), actors))
        return entries

    direction = txn.direction.value if hasattr(txn.direction, "value") else str(txn.direction)
    for idx, item in enumerate(txn.items):
        where = "added to" if direction == "in" else "removed from"
        entries.append((FeedItem(
            id=f"stock-transaction-{txn.id}-item-{idx}",
            type=f"stock_{direction}",
            description=f"Stock {direction.upper()}: {item.quantity} units of {item.product_name} {where} {item.project_name}",
            timestamp=txn.created_at,
            status="completed",
            actor="System",
            project_id=item.project_id,
            project_name=item.project_name,
            quantity=item.quantity,
            entity_id=txn.id,
        ), actors))
    return entries


_ADJUSTMENT_FEED = {
    AdjustmentStatus.PENDING: ("adjustment_request", "requested stock adjustment for"),
    AdjustmentStatus.APPROVED: ("adjustment_approval", "approved stock adjustment for"),
    AdjustmentStatus.REJECTED: ("adjustment_rejection", "rejected stock adjustment for"),
    AdjustmentStatus.FAILED: ("adjustment_failure", "could not apply stock adjustment for"),
}


def _adjustment_entry(req: StockAdjustmentRequest, names: dict[str, str], products: dict[str, str]):
    feed_type, verb = _ADJUSTMENT_FEED[AdjustmentStatus(req.status)]
    product_name = products.get(req.product_id, "Unknown Product")
    if req.status == AdjustmentStatus.APPROVED:
        actor, ts = names.get(req.approved_by or "", req.approved_by_name or "Admin"), req.approved_at
    elif req.status == AdjustmentStatus.REJECTED:
        actor, ts = names.get(req.rejected_by or "", req.rejected_by_name or "Admin"), req.rejected_at
    elif req.status == AdjustmentStatus.FAILED:
        actor, ts = names.get(req.approved_by or "", "System"), req.failed_at
    else:
        actor, ts = names.get(req.requested_by, req.requested_by_name or "Unknown User"), req.requested_at
    actors = {a for a in (req.requested_by, req.approved_by, req.rejected_by) if a}
    return FeedItem(
        id=f"{feed_type.replace('_', '-')}-{req.id}",
        type=feed_type,
        description=f"{actor} {verb} {product_name} in {req.project_name or 'Unknown Project'}",
        timestamp=ts or req.updated_at,
        status=req.status.value if hasattr(req.status, "value") else str(req.status),
        actor=actor,
        project_id=req.project_id,
        project_name=req.project_name,
        quantity=req.stock_on_hand or 0,
        entity_id=req.id,
    ), actors


def _visible(item: FeedItem, actors: set[str], user: User, project_ids: set[str]) -> bool:
    if user.role == "admin":
        return True
    if user.id in actors:
        return True
    if user.role == "keeper" and item.type in ("order_request", "order_completion"):
        return True
    if user.role in ("manager", "keeper") and item.type.startswith("adjustment_"):
        return item.project_id in project_ids
    return False


def build_feed(db: Session, user: User, limit: int = 50) -> list[FeedItem]:
    """Project recent transactions and adjustment requests into the user's feed."""
    names = {u.id: u.label for u in db.query(User).all()}
    products = {p.id: p.name for p in db.query(Product).all()}

    transactions = (
        db.query(StockTransaction).order_by(StockTransaction.created_at.desc()).limit(limit).all()
    )
    requests = (
        db.query(StockAdjustmentRequest)
        .order_by(StockAdjustmentRequest.requested_at.desc())
        .limit(limit)
        .all()
    )

    candidates: list[tuple[FeedItem, set[str]]] = []
    for txn in transactions:
        candidates.extend(_transaction_entries(txn, names))
    for req in requests:
        candidates.append(_adjustment_entry(req, names, products))

    project_ids = _user_project_ids(db, user) if user.role != "admin" else set()
    visible = [item for item, actors in candidates if _visible(item, actors, user, project_ids)]
    visible.sort(key=lambda i: i.timestamp or datetime.min, reverse=True)
    return visible[:limit]
