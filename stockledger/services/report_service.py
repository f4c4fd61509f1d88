from sqlalchemy.orm import Session

from stockledger.models.product import Product
from stockledger.models.project import Project, Rack
from stockledger.models.stock_adjustment import AdjustmentStatus, ProjectStockHold, StockAdjustmentRequest
from stockledger.models.transaction import StockTransaction, TransactionStatus
from stockledger.services.rack_stock import stock_of
from stockledger.services.refs import decode_entries, ref_to_str

LOW_STOCK_THRESHOLD = 5


def _rack_totals(racks: list[Rack]) -> dict[str, int]:
    totals: dict[str, int] = {}
    for rack in racks:
        for entry in decode_entries(rack.products):
            pid = ref_to_str(entry.get("product")).lower()
            if pid:
                totals[pid] = totals.get(pid, 0) + stock_of(entry)
    return totals


def inventory_summary(db: Session) -> dict:
    products = db.query(Product).order_by(Product.name).all()
    totals = _rack_totals(db.query(Rack).all())

    rows = []
    for p in products:
        qty = totals.get(p.id.lower(), 0)
        rows.append({"product_id": p.id, "sku": p.sku, "name": p.name, "unit": p.unit, "quantity": qty})
    low_stock = [r for r in rows if r["quantity"] <= LOW_STOCK_THRESHOLD]

    return {
        "total_products": len(products),
        "total_units_in_stock": sum(r["quantity"] for r in rows),
        "total_inventory_value": round(sum(totals.get(p.id.lower(), 0) * p.price for p in products), 2),
        "low_stock_count": len(low_stock),
        "low_stock_items": low_stock,
        "products": rows,
    }


def project_stock(db: Session, project_id: str | None = None) -> list[dict]:
    """Per project, per product: on-hand across the project's racks and held quantity."""
    q = db.query(Project)
    if project_id:
        q = q.filter(Project.id == project_id)
    products = {p.id.lower(): p for p in db.query(Product).all()}

    result = []
    for project in q.order_by(Project.name).all():
        racks = db.query(Rack).filter(Rack.id.in_(project.rack_ids)).all() if project.rack_ids else []
        totals = _rack_totals(racks)
        holds = {
            h.product_id.lower(): h.held_quantity
            for h in db.query(ProjectStockHold).filter(ProjectStockHold.project_id == project.id).all()
        }
        items = []
        for pid in sorted(set(totals) | set(holds)):
            product = products.get(pid)
            on_hand = totals.get(pid, 0)
            held = holds.get(pid, 0)
            items.append({
                "product_id": product.id if product else pid,
                "sku": product.sku if product else "",
                "name": product.name if product else "Unknown Product",
                "stock_on_hand": on_hand,
                "stock_on_hold": held,
                "available": on_hand - held,
            })
        result.append({
            "project_id": project.id,
            "project_name": project.name,
            "rack_count": len(racks),
            "items": items,
        })
    return result


def pending_counts(db: Session) -> dict:
    pending_orders = (
        db.query(StockTransaction)
        .filter(StockTransaction.is_order_mode == True, StockTransaction.status == TransactionStatus.PENDING)  # noqa: E712
        .count()
    )
    pending_adjustments = (
        db.query(StockAdjustmentRequest)
        .filter(StockAdjustmentRequest.status == AdjustmentStatus.PENDING)
        .count()
    )
    return {
        "pending_orders": pending_orders,
        "pending_adjustments": pending_adjustments,
        "total": pending_orders + pending_adjustments,
    }
