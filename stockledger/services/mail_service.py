import base64
import html
import logging

import httpx
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.models.notification import EmailEvent
from stockledger.models.project import Project
from stockledger.models.stock_adjustment import StockAdjustmentRequest
from stockledger.models.transaction import StockTransaction
from stockledger.models.user import User

logger = logging.getLogger(__name__)


class HttpMailer:
    """Transactional mail over the mail provider's JSON API."""

    def send(self, to: list[str], subject: str, html_body: str, attachments: list[dict] | None = None) -> bool:
        if not settings.MAIL_API_URL:
            logger.info("Mail disabled, skipping %r to %s", subject, ", ".join(to))
            return False
        if not to:
            return False

        payload = {
            "from": settings.MAIL_FROM,
            "to": to,
            "subject": subject,
            "html": html_body,
            "attachments": [
                {
                    "filename": a["filename"],
                    "content_type": a.get("content_type", "application/pdf"),
                    "content": base64.b64encode(a["content"]).decode("ascii"),
                }
                for a in attachments or []
            ],
        }
        headers = {"Authorization": f"Bearer {settings.MAIL_API_KEY}"} if settings.MAIL_API_KEY else {}
        with httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
            resp = client.post(settings.MAIL_API_URL, json=payload, headers=headers)
            resp.raise_for_status()
        return True


mailer = HttpMailer()


def send_once(
    db: Session,
    *,
    entity_type: str,
    entity_id: str,
    category: str,
    to: list[str],
    subject: str,
    html_body: str,
    attachments: list[dict] | None = None,
) -> bool:
    """Send a mail at most once per (entity, category).

    The "already sent" marker is inserted in a savepoint before sending and
    released only when the mailer reports delivery. A skipped or failed send
    rolls the marker back so a later attempt may send.
    """
    if not to:
        logger.info("No recipients for %s %s/%s", category, entity_type, entity_id)
        return False

    savepoint = db.begin_nested()
    try:
        db.add(EmailEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            category=category,
            recipients=",".join(to),
        ))
        db.flush()
    except IntegrityError:
        savepoint.rollback()
        logger.info("Email %s for %s %s already sent, skipping", category, entity_type, entity_id)
        return False

    try:
        delivered = mailer.send(to, subject, html_body, attachments)
    except Exception:
        savepoint.rollback()
        raise
    if not delivered:
        savepoint.rollback()
        logger.info("Email %s for %s %s not delivered, marker released", category, entity_type, entity_id)
        return False
    savepoint.commit()
    return True


def resolve_recipients(
    db: Session,
    roles: tuple[str, ...] | list[str] = (),
    project_ids: tuple[str, ...] | list[str] = (),
    user_ids: tuple[str, ...] | list[str] = (),
) -> list[str]:
    """Email addresses of active users by role, project membership or id."""
    wanted = set(user_ids)
    for project in db.query(Project).filter(Project.id.in_(list(project_ids))).all():
        wanted.update(project.member_ids)

    q = db.query(User).filter(User.active.is_(True))
    emails = set()
    for user in q.all():
        if user.role in roles or user.id in wanted:
            if user.email:
                emails.add(user.email.strip().lower())
    return sorted(emails)


# --- Templates ---

_MOVEMENT_SUBJECTS = {
    "order_created": "New order request {code}",
    "delivery_created": "Delivery note {code}",
    "grn_created": "Goods received note {code}",
}


def render_movement_email(txn: StockTransaction, category: str) -> tuple[str, str]:
    subject = _MOVEMENT_SUBJECTS[category].format(code=txn.transaction_code)
    rows = "".join(
        f"<tr><td>{html.escape(i.product_code)}</td><td>{html.escape(i.product_name)}</td>"
        f"<td>{i.quantity} {html.escape(i.unit)}</td><td>{html.escape(i.project_name)}</td>"
        f"<td>{html.escape(i.rack_number)}</td></tr>"
        for i in txn.items
    )
    extra = ""
    if txn.invoice_number:
        extra += f"<p>Invoice / PO: {html.escape(txn.invoice_number)}</p>"
    if txn.supplier_name:
        extra += f"<p>Supplier: {html.escape(txn.supplier_name)}</p>"
    if txn.message:
        extra += f"<p>{html.escape(txn.message)}</p>"
    body = (
        f"<h2>{html.escape(subject)}</h2>"
        f"<p>Status: {txn.status.value if hasattr(txn.status, 'value') else txn.status}</p>"
        f"{extra}"
        "<table border='1' cellpadding='4' cellspacing='0'>"
        "<tr><th>Code</th><th>Product</th><th>Quantity</th><th>Project</th><th>Rack</th></tr>"
        f"{rows}</table>"
    )
    return subject, body


_ADJUSTMENT_SUBJECTS = {
    "admin_requested": "Stock adjustment {code} awaiting approval",
    "requester_approved": "Stock adjustment {code} approved",
    "requester_rejected": "Stock adjustment {code} rejected",
}


def render_adjustment_email(req: StockAdjustmentRequest, category: str, product_name: str) -> tuple[str, str]:
    subject = _ADJUSTMENT_SUBJECTS[category].format(code=req.request_code)
    body = (
        f"<h2>{html.escape(subject)}</h2>"
        f"<p>Product: {html.escape(product_name)}</p>"
        f"<p>Project: {html.escape(req.project_name)} / Rack {html.escape(req.rack_number)}</p>"
        f"<p>Stock on hand: {req.current_rack_stock} &rarr; {req.stock_on_hand}</p>"
        f"<p>Stock on hold: {req.stock_on_hold}</p>"
        f"<p>Reason: {html.escape(req.reason)}</p>"
        f"<p>Requested by: {html.escape(req.requested_by_name)}</p>"
    )
    return subject, body
