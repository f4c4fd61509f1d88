import logging
import time
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.errors import (
    InventoryUpdateError,
    NotFound,
    PermissionDenied,
    TransitionError,
    ValidationError,
)
from stockledger.models.product import Product
from stockledger.models.project import Project, Rack
from stockledger.models.stock_adjustment import (
    AdjustmentStatus,
    ProjectStockHold,
    RackStockHold,
    StockAdjustmentRequest,
)
from stockledger.models.user import User
from stockledger.schemas.stock_adjustment import StockAdjustmentCreate
from stockledger.services import activity_service, mail_service, notification_service
from stockledger.services.rack_stock import current_stock, set_stock
from stockledger.services.refs import parse_id
from stockledger.services.side_effects import SideEffects

logger = logging.getLogger(__name__)


def _generate_request_code(db: Session) -> str:
    ms = int(time.time() * 1000)
    code = f"SAR-{ms}"
    while db.query(StockAdjustmentRequest.id).filter(StockAdjustmentRequest.request_code == code).first():
        ms += 1
        code = f"SAR-{ms}"
    return code


def submit_request(
    db: Session, data: StockAdjustmentCreate, actor: User, effects: SideEffects | None = None
) -> StockAdjustmentRequest:
    product_id = str(parse_id(data.product_id, "productId"))
    project_id = str(parse_id(data.project_id, "projectId"))
    rack_id = str(parse_id(data.rack_id, "rackId"))

    if not data.reason or not data.reason.strip():
        raise ValidationError("A reason is required for stock adjustments")
    if data.stock_on_hand < 0 or data.stock_on_hold < 0:
        raise ValidationError("Stock values cannot be negative")

    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise ValidationError(f"Product {product_id} not found")
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise ValidationError(f"Project {project_id} not found")
    rack = db.query(Rack).filter(Rack.id == rack_id).first()
    if not rack:
        raise ValidationError(f"Rack {rack_id} not found")
    if not project.has_rack(rack.id):
        raise ValidationError(f"Rack {rack.rack_number} does not belong to project {project.name}")

    req = StockAdjustmentRequest(
        request_code=_generate_request_code(db),
        product_id=product.id,
        project_id=project.id,
        rack_id=rack.id,
        project_name=project.name,
        rack_number=rack.rack_number,
        stock_on_hand=data.stock_on_hand,
        stock_on_hold=data.stock_on_hold,
        current_rack_stock=current_stock(rack, product.id),
        reason=data.reason.strip(),
        status=AdjustmentStatus.PENDING,
        requested_by=actor.id,
        requested_by_name=actor.label,
        requested_at=datetime.now(timezone.utc),
    )
    db.add(req)
    db.commit()
    db.refresh(req)
    logger.info("Stock adjustment %s submitted by %s", req.request_code, actor.username)

    if effects is not None:
        effects.dispatch("adjustment_submitted_activity", _record, req.id, actor.id, "request_submitted")
        effects.dispatch("adjustment_submitted_notification", notify_admins_of_request, req.id)
        effects.dispatch("adjustment_submitted_email", email_request, req.id, "admin_requested")
    return req


def get_request(db: Session, request_id: str) -> StockAdjustmentRequest | None:
    return db.query(StockAdjustmentRequest).filter(StockAdjustmentRequest.id == request_id).first()


def _load_pending(db: Session, request_id: str, actor: User, verb: str) -> StockAdjustmentRequest:
    if actor.role != settings.ADJUSTMENT_APPROVER_ROLE:
        raise PermissionDenied(f"Only {settings.ADJUSTMENT_APPROVER_ROLE} users can {verb} stock adjustments")
    req = get_request(db, request_id)
    if not req:
        raise NotFound(f"Stock adjustment request {request_id} not found")
    if req.status != AdjustmentStatus.PENDING:
        raise TransitionError(f"Cannot {verb} request in '{req.status.value}' status")
    return req


def _upsert_rack_hold(db: Session, req: StockAdjustmentRequest, actor: User) -> int:
    """Store the requested hold for the rack; return the previous value."""
    hold = (
        db.query(RackStockHold)
        .filter(
            RackStockHold.rack_id == req.rack_id,
            RackStockHold.project_id == req.project_id,
            RackStockHold.product_id == req.product_id,
        )
        .first()
    )
    previous = hold.held_quantity if hold else 0

    if req.stock_on_hold > 0:
        if hold:
            hold.held_quantity = req.stock_on_hold
            hold.updated_by = actor.id
            hold.updated_at = datetime.now(timezone.utc)
        else:
            db.add(RackStockHold(
                rack_id=req.rack_id,
                project_id=req.project_id,
                product_id=req.product_id,
                held_quantity=req.stock_on_hold,
                updated_by=actor.id,
            ))
    elif hold:
        db.delete(hold)
    db.flush()
    return previous


def recompute_project_hold(db: Session, project_id: str, product_id: str, updated_by: str) -> int:
    """Set the project hold to the sum of its rack holds; return the new total."""
    total = (
        db.query(func.coalesce(func.sum(RackStockHold.held_quantity), 0))
        .filter(RackStockHold.project_id == project_id, RackStockHold.product_id == product_id)
        .scalar()
    )
    hold = (
        db.query(ProjectStockHold)
        .filter(ProjectStockHold.project_id == project_id, ProjectStockHold.product_id == product_id)
        .first()
    )
    if total > 0:
        if hold:
            hold.held_quantity = total
            hold.updated_by = updated_by
            hold.updated_at = datetime.now(timezone.utc)
        else:
            db.add(ProjectStockHold(
                project_id=project_id, product_id=product_id, held_quantity=total, updated_by=updated_by
            ))
    elif hold:
        db.delete(hold)
    db.flush()
    return total


def approve_request(
    db: Session, request_id: str, actor: User, effects: SideEffects | None = None
) -> StockAdjustmentRequest:
    """Write the approved on-hand and hold values, or mark the request failed.

    The rack write and both hold updates share one savepoint: either all of
    them land or none does.
    """
    req = _load_pending(db, request_id, actor, "approve")

    rack = db.query(Rack).filter(Rack.id == req.rack_id).first()
    before_stock = current_stock(rack, req.product_id) if rack else 0

    savepoint = db.begin_nested()
    try:
        change = set_stock(db, req.rack_id, req.product_id, req.stock_on_hand)
        before_hold = _upsert_rack_hold(db, req, actor)
        project_hold = recompute_project_hold(db, req.project_id, req.product_id, actor.id)
        savepoint.commit()
    except Exception as e:
        savepoint.rollback()
        req.status = AdjustmentStatus.FAILED
        req.failure_reason = str(e) or e.__class__.__name__
        req.failed_at = datetime.now(timezone.utc)
        req.approved_by = actor.id
        req.approved_by_name = actor.label
        # The caller gets an error response, so this entry is written now rather than queued
        _record(db, req.id, actor.id, "request_failed")
        db.commit()
        logger.error("Stock adjustment %s failed to apply: %s", req.request_code, e)
        raise InventoryUpdateError(f"Failed to update inventory: {req.failure_reason}") from e

    now = datetime.now(timezone.utc)
    req.status = AdjustmentStatus.APPROVED
    req.approved_by = actor.id
    req.approved_by_name = actor.label
    req.approved_at = now
    db.commit()
    db.refresh(req)
    logger.info(
        "Stock adjustment %s approved: on hand %d -> %d, hold %d -> %d (project %d)",
        req.request_code, before_stock, change.new, before_hold, req.stock_on_hold, project_hold,
    )

    if effects is not None:
        audit = {
            "before_stock": before_stock,
            "after_stock": change.new,
            "before_hold": before_hold,
            "after_hold": req.stock_on_hold,
            "project_hold": project_hold,
        }
        effects.dispatch("adjustment_approved_activity", record_approval, req.id, actor.id, audit)
        effects.dispatch("adjustment_approved_notification", notify_requester, req.id)
        effects.dispatch("adjustment_approved_email", email_request, req.id, "requester_approved")
    return req


def reject_request(
    db: Session, request_id: str, actor: User, effects: SideEffects | None = None
) -> StockAdjustmentRequest:
    req = _load_pending(db, request_id, actor, "reject")
    req.status = AdjustmentStatus.REJECTED
    req.rejected_by = actor.id
    req.rejected_by_name = actor.label
    req.rejected_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(req)
    logger.info("Stock adjustment %s rejected by %s", req.request_code, actor.username)

    if effects is not None:
        effects.dispatch("adjustment_rejected_activity", _record, req.id, actor.id, "request_rejected")
        effects.dispatch("adjustment_rejected_notification", notify_requester, req.id)
        effects.dispatch("adjustment_rejected_email", email_request, req.id, "requester_rejected")
    return req


def list_requests(
    db: Session,
    status: AdjustmentStatus | None = None,
    product_id: str | None = None,
    project_id: str | None = None,
    requested_by: str | None = None,
    limit: int = 100,
) -> tuple[list[StockAdjustmentRequest], int]:
    """Return matching requests (newest first) and the overall pending count."""
    q = db.query(StockAdjustmentRequest)
    if status:
        q = q.filter(StockAdjustmentRequest.status == status)
    if product_id:
        q = q.filter(StockAdjustmentRequest.product_id == product_id)
    if project_id:
        q = q.filter(StockAdjustmentRequest.project_id == project_id)
    if requested_by:
        q = q.filter(StockAdjustmentRequest.requested_by == requested_by)
    rows = q.order_by(StockAdjustmentRequest.requested_at.desc()).limit(limit).all()
    pending = (
        db.query(StockAdjustmentRequest)
        .filter(StockAdjustmentRequest.status == AdjustmentStatus.PENDING)
        .count()
    )
    return rows, pending


def list_rack_holds(
    db: Session, rack_id: str | None = None, project_id: str | None = None, product_id: str | None = None
) -> list[RackStockHold]:
    q = db.query(RackStockHold)
    if rack_id:
        q = q.filter(RackStockHold.rack_id == rack_id)
    if project_id:
        q = q.filter(RackStockHold.project_id == project_id)
    if product_id:
        q = q.filter(RackStockHold.product_id == product_id)
    return q.order_by(RackStockHold.updated_at.desc()).all()


def list_project_holds(
    db: Session, project_id: str | None = None, product_id: str | None = None
) -> list[ProjectStockHold]:
    q = db.query(ProjectStockHold)
    if project_id:
        q = q.filter(ProjectStockHold.project_id == project_id)
    if product_id:
        q = q.filter(ProjectStockHold.product_id == product_id)
    return q.order_by(ProjectStockHold.updated_at.desc()).all()


# --- Side effects ---

def _product_name(db: Session, product_id: str) -> str:
    product = db.get(Product, product_id)
    return product.name if product else "Unknown Product"


def _record(db: Session, request_id: str, actor_id: str, action: str) -> None:
    req = db.get(StockAdjustmentRequest, request_id)
    actor = db.get(User, actor_id)
    activity_service.record_activity(
        db,
        "stock_adjustment",
        action,
        entity_type="stock_adjustment_request",
        entity_id=req.id,
        entity_name=req.request_code,
        user_id=actor_id,
        username=actor.label if actor else "System User",
        project_id=req.project_id,
        project_name=req.project_name,
        details={
            "productId": req.product_id,
            "productName": _product_name(db, req.product_id),
            "rackNumber": req.rack_number,
            "requestedStockOnHand": req.stock_on_hand,
            "requestedStockOnHold": req.stock_on_hold,
            "reason": req.reason,
            "failureReason": req.failure_reason,
        },
    )


def record_approval(db: Session, request_id: str, actor_id: str, audit: dict) -> None:
    _record(db, request_id, actor_id, "request_approved")
    req = db.get(StockAdjustmentRequest, request_id)
    product_name = _product_name(db, req.product_id)
    actor = db.get(User, actor_id)
    activity_service.record_activity(
        db,
        "stock_adjustment",
        "manual_adjustment_applied",
        entity_type="product",
        entity_id=req.product_id,
        entity_name=product_name,
        user_id=actor_id,
        username=actor.label if actor else "System User",
        project_id=req.project_id,
        project_name=req.project_name,
        changes={
            "stockOnHand": {
                "before": audit["before_stock"],
                "after": audit["after_stock"],
                "delta": audit["after_stock"] - audit["before_stock"],
            },
            "stockOnHold": {
                "before": audit["before_hold"],
                "after": audit["after_hold"],
                "delta": audit["after_hold"] - audit["before_hold"],
            },
        },
        details={
            "requestCode": req.request_code,
            "rackNumber": req.rack_number,
            "projectHold": audit["project_hold"],
        },
    )


def notify_admins_of_request(db: Session, request_id: str) -> None:
    req = db.get(StockAdjustmentRequest, request_id)
    notification_service.broadcast(
        db,
        "adjustment_request",
        "Stock Adjustment Request",
        f"{req.requested_by_name} requested a stock adjustment for "
        f"{_product_name(db, req.product_id)} in {req.project_name}",
        target_roles=[settings.ADJUSTMENT_APPROVER_ROLE],
        category="stock_adjustment",
        payload={"requestId": req.id, "requestCode": req.request_code},
    )


def notify_requester(db: Session, request_id: str) -> None:
    req = db.get(StockAdjustmentRequest, request_id)
    status = req.status.value
    notification_service.broadcast(
        db,
        f"adjustment_{status}",
        f"Stock Adjustment {status.capitalize()}",
        f"Your stock adjustment {req.request_code} for {_product_name(db, req.product_id)} was {status}",
        target_users=[req.requested_by],
        category="stock_adjustment",
        payload={"requestId": req.id, "status": status},
    )


def email_request(db: Session, request_id: str, category: str) -> None:
    req = db.get(StockAdjustmentRequest, request_id)
    if category == "admin_requested":
        to = mail_service.resolve_recipients(db, roles=[settings.ADJUSTMENT_APPROVER_ROLE])
    else:
        to = mail_service.resolve_recipients(db, user_ids=[req.requested_by])
    subject, body = mail_service.render_adjustment_email(req, category, _product_name(db, req.product_id))
    mail_service.send_once(
        db,
        entity_type="stock_adjustment_request",
        entity_id=req.id,
        category=category,
        to=to,
        subject=subject,
        html_body=body,
    )
