import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.errors import BatchValidationError, PersistenceConflict
from stockledger.models.transaction import (
    MovementDirection,
    StockTransaction,
    TransactionItem,
    TransactionStatus,
)
from stockledger.models.user import User
from stockledger.schemas.transaction import StockMovementCreate
from stockledger.services import activity_service, mail_service, notification_service
from stockledger.services.document_service import document_filename, render_delivery_document
from stockledger.services.rack_stock import apply_delta
from stockledger.services.resolver import resolve_items
from stockledger.services.side_effects import SideEffects

logger = logging.getLogger(__name__)


def generate_transaction_code(
    db: Session, direction: MovementDirection | str, order_mode: bool, now: datetime | None = None
) -> str:
    """``<GRN|DN>-<D|O>-<YYYYMMDD>-<NNNN>`` with the next free per-day sequence."""
    direction = MovementDirection(direction)
    now = now or datetime.now(timezone.utc)
    prefix = "GRN" if direction == MovementDirection.IN else "DN"
    mode = "O" if order_mode else "D"
    base = f"{prefix}-{mode}-{now:%Y%m%d}-"

    seq = db.query(StockTransaction).filter(StockTransaction.transaction_code.like(f"{base}%")).count() + 1
    code = f"{base}{seq:04d}"
    while db.query(StockTransaction.id).filter(StockTransaction.transaction_code == code).first():
        seq += 1
        code = f"{base}{seq:04d}"
    return code


def create_movement(
    db: Session, data: StockMovementCreate, actor: User, effects: SideEffects | None = None
) -> StockTransaction:
    """Validate and record a batch stock movement.

    Direct mode applies every delta to the racks and is committed as one
    unit; order mode only records projected stock and waits for completion.
    """
    direction = MovementDirection(data.direction)
    resolved, errors = resolve_items(db, direction, data.items)
    if errors:
        raise BatchValidationError(errors)

    now = datetime.now(timezone.utc)
    try:
        txn = StockTransaction(
            transaction_code=generate_transaction_code(db, direction, data.order_mode, now),
            direction=direction,
            is_order_mode=data.order_mode,
            status=TransactionStatus.PENDING if data.order_mode else TransactionStatus.COMPLETED,
            date=data.date or now,
            invoice_number=data.invoice_number,
            supplier_name=data.supplier_name,
            message=data.message,
            created_by=actor.id,
        )
        if not data.order_mode:
            txn.completed_by = actor.id
            txn.completed_at = now
        db.add(txn)

        for position, r in enumerate(resolved):
            if data.order_mode:
                previous = r.current_stock
                new = previous + r.quantity if direction == MovementDirection.IN else previous - r.quantity
            else:
                change = apply_delta(db, r.rack.id, r.product.id, direction, r.quantity)
                previous, new = change.previous, change.new

            txn.items.append(TransactionItem(
                position=position,
                product_id=r.product.id,
                project_id=r.project.id,
                rack_id=r.rack.id,
                product_code=r.product.sku,
                product_name=r.product.name,
                unit=r.product.unit,
                project_name=r.project.name,
                rack_number=r.rack.rack_number,
                quantity=r.quantity,
                previous_stock=previous,
                new_stock=new,
            ))

        if len(txn.items) == 1:
            flatten_single_item(txn)

        db.commit()
    except IntegrityError:
        db.rollback()
        raise PersistenceConflict("Transaction code already taken, please retry")
    except Exception:
        db.rollback()
        raise

    db.refresh(txn)
    logger.info(
        "Recorded %s %s with %d items (%s)",
        txn.transaction_code, direction.value, len(txn.items), txn.status.value,
    )

    if effects is not None:
        effects.dispatch("movement_activity", record_movement_activity, txn.id, actor.id)
        effects.dispatch("movement_notification", notify_movement, txn.id)
        effects.dispatch("movement_email", email_movement, txn.id)
    return txn


def flatten_single_item(txn: StockTransaction) -> None:
    item = txn.items[0]
    txn.product_id = item.product_id
    txn.project_id = item.project_id
    txn.rack_id = item.rack_id
    txn.quantity = item.quantity
    txn.previous_stock = item.previous_stock
    txn.new_stock = item.new_stock


def get_transaction(db: Session, txn_id: str) -> StockTransaction | None:
    return db.query(StockTransaction).filter(StockTransaction.id == txn_id).first()


def list_transactions(
    db: Session,
    direction: MovementDirection | None = None,
    status: TransactionStatus | None = None,
    order_mode: bool | None = None,
    product_id: str | None = None,
    project_id: str | None = None,
    rack_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[StockTransaction], int]:
    q = db.query(StockTransaction)
    if direction:
        q = q.filter(StockTransaction.direction == direction)
    if status:
        q = q.filter(StockTransaction.status == status)
    if order_mode is not None:
        q = q.filter(StockTransaction.is_order_mode == order_mode)
    if product_id:
        q = q.filter(StockTransaction.items.any(TransactionItem.product_id == product_id))
    if project_id:
        q = q.filter(StockTransaction.items.any(TransactionItem.project_id == project_id))
    if rack_id:
        q = q.filter(StockTransaction.items.any(TransactionItem.rack_id == rack_id))
    if date_from:
        q = q.filter(StockTransaction.date >= date_from)
    if date_to:
        q = q.filter(StockTransaction.date <= date_to)

    total = q.count()
    rows = q.order_by(StockTransaction.created_at.desc()).offset(skip).limit(limit).all()
    return rows, total


# --- Side effects (run after commit, each in its own session) ---

def actor_name(db: Session, user_id: str | None) -> str:
    user = db.get(User, user_id) if user_id else None
    return user.label if user else "System User"


def record_movement_activity(db: Session, txn_id: str, actor_id: str) -> None:
    txn = db.get(StockTransaction, txn_id)
    direction = txn.direction.value
    action = "order_created" if txn.is_order_mode else f"stock_{direction}"
    username = actor_name(db, actor_id)

    entries = []
    for item in txn.items:
        entries.append({
            "category": "stock_management",
            "action": action,
            "entity_type": "product",
            "entity_id": item.product_id,
            "entity_name": item.product_name,
            "user_id": actor_id,
            "username": username,
            "project_id": item.project_id,
            "project_name": item.project_name,
            "changes": {
                "previousStock": item.previous_stock,
                "newStock": item.new_stock,
                "quantity": item.quantity,
            },
            "details": {
                "transactionCode": txn.transaction_code,
                "rackNumber": item.rack_number,
                "orderMode": txn.is_order_mode,
            },
        })
    entries.append({
        "category": "stock_management",
        "action": "stock_transaction_created",
        "entity_type": "stock_transaction",
        "entity_id": txn.id,
        "entity_name": txn.transaction_code,
        "user_id": actor_id,
        "username": username,
        "details": {
            "direction": direction,
            "orderMode": txn.is_order_mode,
            "status": txn.status.value,
            "itemCount": len(txn.items),
            "totalQuantity": txn.total_quantity,
        },
    })
    activity_service.record_many(db, entries)


def _movement_payload(txn: StockTransaction) -> dict:
    return {
        "transactionId": txn.id,
        "transactionCode": txn.transaction_code,
        "direction": txn.direction.value,
        "status": txn.status.value,
        "items": [
            {
                "productId": i.product_id,
                "productName": i.product_name,
                "projectId": i.project_id,
                "rackId": i.rack_id,
                "quantity": i.quantity,
            }
            for i in txn.items
        ],
    }


def notify_movement(db: Session, txn_id: str) -> None:
    txn = db.get(StockTransaction, txn_id)
    summary = notification_service.describe_items(txn)
    if txn.is_order_mode:
        notification_service.broadcast(
            db,
            "order_request",
            "New Order Request",
            f"{txn.transaction_code}: {summary} awaiting completion",
            target_roles=[settings.ORDER_COMPLETION_ROLE],
            priority="high",
            payload=_movement_payload(txn),
        )
    else:
        direction = txn.direction.value
        notification_service.broadcast(
            db,
            f"stock_{direction}",
            f"Stock {direction.upper()}",
            f"{txn.transaction_code}: {summary}",
            target_roles=["admin", "keeper", "manager"],
            payload=_movement_payload(txn),
        )


def movement_email_category(txn: StockTransaction) -> str:
    if txn.is_order_mode:
        return "order_created"
    return "delivery_created" if txn.direction == MovementDirection.OUT else "grn_created"


def document_attachments(txn: StockTransaction) -> list[dict]:
    try:
        content = render_delivery_document(txn)
    except Exception as e:
        logger.error("Could not render document for %s: %s", txn.transaction_code, e)
        return []
    return [{"filename": document_filename(txn), "content": content, "content_type": "application/pdf"}]


def email_movement(db: Session, txn_id: str) -> None:
    txn = db.get(StockTransaction, txn_id)
    category = movement_email_category(txn)
    roles = ["admin", settings.ORDER_COMPLETION_ROLE] if txn.is_order_mode else ["admin"]
    to = mail_service.resolve_recipients(
        db, roles=roles, project_ids=sorted({i.project_id for i in txn.items})
    )
    subject, body = mail_service.render_movement_email(txn, category)
    mail_service.send_once(
        db,
        entity_type="stock_transaction",
        entity_id=txn.id,
        category=category,
        to=to,
        subject=subject,
        html_body=body,
        attachments=document_attachments(txn),
    )
