import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.errors import LedgerError, NotFound, PermissionDenied, TransitionError
from stockledger.models.product import Product
from stockledger.models.transaction import MovementDirection, StockTransaction, TransactionStatus
from stockledger.models.user import User
from stockledger.services import activity_service, mail_service, notification_service
from stockledger.services.document_service import render_delivery_document
from stockledger.services.rack_stock import apply_delta
from stockledger.services.side_effects import SideEffects
from stockledger.services.transaction_service import actor_name, document_attachments, flatten_single_item

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    transaction: StockTransaction
    warnings: list[str] = field(default_factory=list)
    document: bytes | None = None


def _load_order(db: Session, txn_id: str) -> StockTransaction:
    txn = db.query(StockTransaction).filter(StockTransaction.id == txn_id).first()
    if not txn:
        raise NotFound(f"Transaction {txn_id} not found")
    if not txn.is_order_mode:
        raise TransitionError(f"Transaction {txn.transaction_code} is not an order")
    return txn


def _claim_pending(db: Session, txn: StockTransaction, verb: str, **values) -> None:
    """Move a pending order out of ``pending`` with a conditional UPDATE.

    Only one caller can match ``status = pending``; the others see zero rows
    and get a TransitionError even if their own read still said pending.
    """
    result = db.execute(
        update(StockTransaction)
        .where(StockTransaction.id == txn.id, StockTransaction.status == TransactionStatus.PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise TransitionError(f"Cannot {verb} order {txn.transaction_code}: it is no longer pending")


def complete_order(
    db: Session, txn_id: str, actor: User, effects: SideEffects | None = None
) -> CompletionResult:
    """Apply a pending order's rack updates now and close it.

    The order is claimed first, then each item runs in its own savepoint; an
    item that cannot be applied is rolled back on its own and reported as a
    warning. The order ends ``completed`` whatever the number of warnings.
    """
    if actor.role != settings.ORDER_COMPLETION_ROLE:
        raise PermissionDenied(f"Only {settings.ORDER_COMPLETION_ROLE} users can complete orders")

    txn = _load_order(db, txn_id)
    if txn.status != TransactionStatus.PENDING:
        raise TransitionError(f"Cannot complete order in '{txn.status.value}' status")

    direction = MovementDirection(txn.direction)
    warnings: list[str] = []
    applied = 0

    try:
        _claim_pending(
            db, txn, "complete",
            status=TransactionStatus.COMPLETED,
            completed_by=actor.id,
            completed_at=datetime.now(timezone.utc),
        )
        for item in txn.items:
            savepoint = db.begin_nested()
            try:
                if db.get(Product, item.product_id) is None:
                    raise NotFound(f"Product {item.product_id} no longer exists")
                change = apply_delta(db, item.rack_id, item.product_id, direction, item.quantity)
                savepoint.commit()
            except LedgerError as e:
                savepoint.rollback()
                logger.warning("Order %s item %s not applied: %s", txn.transaction_code, item.product_code, e)
                warnings.append(f"{item.product_name} ({item.rack_number}): {e}")
                continue
            item.previous_stock = change.previous
            item.new_stock = change.new
            applied += 1

        txn.warnings = json.dumps(warnings)
        if len(txn.items) == 1:
            flatten_single_item(txn)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(txn)
    logger.info(
        "Order %s %s (%d/%d items applied)",
        txn.transaction_code, txn.status.value, applied, len(txn.items),
    )

    document = None
    try:
        document = render_delivery_document(txn)
    except Exception as e:
        logger.error("Document rendering failed for %s: %s", txn.transaction_code, e)

    if effects is not None:
        effects.dispatch("order_completion_activity", record_order_activity, txn.id, actor.id, "order_completed")
        effects.dispatch("order_completion_notification", notify_order_closed, txn.id)
        effects.dispatch("order_completion_email", email_order_completed, txn.id)

    return CompletionResult(transaction=txn, warnings=warnings, document=document)


def cancel_order(
    db: Session, txn_id: str, actor: User, effects: SideEffects | None = None
) -> StockTransaction:
    """Close a pending order without touching rack stock."""
    txn = _load_order(db, txn_id)
    if actor.role not in ("admin", settings.ORDER_COMPLETION_ROLE) and actor.id != txn.created_by:
        raise PermissionDenied("Only admins, order handlers or the requester can cancel an order")
    if txn.status != TransactionStatus.PENDING:
        raise TransitionError(f"Cannot cancel order in '{txn.status.value}' status")

    try:
        _claim_pending(
            db, txn, "cancel",
            status=TransactionStatus.CANCELLED,
            cancelled_by=actor.id,
            cancelled_at=datetime.now(timezone.utc),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(txn)
    logger.info("Order %s cancelled by %s", txn.transaction_code, actor.username)

    if effects is not None:
        effects.dispatch("order_cancel_activity", record_order_activity, txn.id, actor.id, "order_cancelled")
        effects.dispatch("order_cancel_notification", notify_order_closed, txn.id)
    return txn


# --- Side effects ---

def record_order_activity(db: Session, txn_id: str, actor_id: str, action: str) -> None:
    txn = db.get(StockTransaction, txn_id)
    username = actor_name(db, actor_id)
    entries = [
        {
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
            "details": {"transactionCode": txn.transaction_code, "rackNumber": item.rack_number},
        }
        for item in txn.items
    ]
    entries.append({
        "category": "stock_management",
        "action": action,
        "entity_type": "stock_transaction",
        "entity_id": txn.id,
        "entity_name": txn.transaction_code,
        "user_id": actor_id,
        "username": username,
        "details": {"status": txn.status.value, "warnings": txn.warning_list},
    })
    activity_service.record_many(db, entries)


def notify_order_closed(db: Session, txn_id: str) -> None:
    txn = db.get(StockTransaction, txn_id)
    summary = notification_service.describe_items(txn)
    status = txn.status.value
    targets = [txn.created_by] if txn.created_by else []
    warnings = txn.warning_list
    message = f"{txn.transaction_code}: {summary} {status}"
    if warnings:
        message += f" with {len(warnings)} warnings"
    notification_service.broadcast(
        db,
        f"order_{status}",
        f"Order {status.capitalize()}",
        message,
        target_roles=["admin"],
        target_users=targets,
        payload={"transactionId": txn.id, "status": status, "warnings": warnings},
    )


def email_order_completed(db: Session, txn_id: str) -> None:
    txn = db.get(StockTransaction, txn_id)
    category = "delivery_created" if txn.direction == MovementDirection.OUT else "grn_created"
    to = mail_service.resolve_recipients(
        db, roles=["admin"], project_ids=sorted({i.project_id for i in txn.items})
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
