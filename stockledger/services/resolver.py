from dataclasses import dataclass

from sqlalchemy.orm import Session

from stockledger.errors import ValidationError
from stockledger.models.product import Product
from stockledger.models.project import Project, Rack
from stockledger.models.transaction import MovementDirection
from stockledger.schemas.transaction import StockMovementItem
from stockledger.services.rack_stock import current_stock, has_entry
from stockledger.services.refs import parse_id


@dataclass
class ResolvedItem:
    index: int
    product: Product
    project: Project
    rack: Rack
    quantity: int
    current_stock: int
    has_entry: bool


def _error(index: int, code: str, message: str) -> dict:
    return {"index": index, "code": code, "message": message}


def resolve_item(db: Session, index: int, item: StockMovementItem) -> ResolvedItem:
    """Resolve one line item or raise ValidationError with a ``code``."""
    try:
        product_id = parse_id(item.product_id, "productId")
        project_id = parse_id(item.project_id, "projectId")
        rack_id = parse_id(item.rack_id, "rackId")
    except ValidationError as e:
        e.code = "invalid_id"
        raise

    if item.quantity <= 0:
        raise _coded("invalid_quantity", f"Quantity must be positive, got {item.quantity}")

    product = db.query(Product).filter(Product.id == str(product_id)).first()
    if not product:
        raise _coded("product_not_found", f"Product {product_id} not found")
    project = db.query(Project).filter(Project.id == str(project_id)).first()
    if not project:
        raise _coded("project_not_found", f"Project {project_id} not found")
    rack = db.query(Rack).filter(Rack.id == str(rack_id)).first()
    if not rack:
        raise _coded("rack_not_found", f"Rack {rack_id} not found")
    if not project.has_rack(rack.id):
        raise _coded(
            "rack_not_in_project",
            f"Rack {rack.rack_number} does not belong to project {project.name}",
        )

    return ResolvedItem(
        index=index,
        product=product,
        project=project,
        rack=rack,
        quantity=item.quantity,
        current_stock=current_stock(rack, product_id),
        has_entry=has_entry(rack, product_id),
    )


def _coded(code: str, message: str) -> ValidationError:
    err = ValidationError(message)
    err.code = code
    return err


def resolve_items(
    db: Session, direction: MovementDirection | str, items: list[StockMovementItem]
) -> tuple[list[ResolvedItem], list[dict]]:
    """Resolve every line item, collecting errors instead of stopping at the first.

    Stock checks on ``out`` movements see the quantities already claimed by
    earlier items of the same batch for the same rack and product.
    """
    direction = MovementDirection(direction)
    resolved: list[ResolvedItem] = []
    errors: list[dict] = []
    claimed: dict[tuple[str, str], int] = {}

    for index, item in enumerate(items):
        try:
            r = resolve_item(db, index, item)
        except ValidationError as e:
            errors.append(_error(index, e.code, str(e)))
            continue

        key = (r.rack.id, r.product.id)
        already = claimed.get(key, 0)
        if direction == MovementDirection.OUT:
            if not r.has_entry:
                errors.append(_error(
                    index, "entry_not_found",
                    f"Product {r.product.name} not found in rack {r.rack.rack_number}",
                ))
                continue
            available = r.current_stock - already
            if available < r.quantity:
                errors.append(_error(
                    index, "insufficient_stock",
                    f"Insufficient stock for {r.product.name} in rack {r.rack.rack_number}. "
                    f"Available: {available}, Requested: {r.quantity}",
                ))
                continue
            claimed[key] = already + r.quantity
            r.current_stock = available
        else:
            claimed[key] = already - r.quantity
            r.current_stock = r.current_stock - already
        resolved.append(r)

    return resolved, errors
