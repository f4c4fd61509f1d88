import json

from sqlalchemy.orm import Session

from stockledger.errors import NotFound, ValidationError
from stockledger.models.product import Product
from stockledger.models.project import Project, Rack
from stockledger.models.user import User
from stockledger.schemas.catalog import ProductCreate, ProjectCreate, RackEntryOut, RackOut
from stockledger.services.rack_stock import stock_of
from stockledger.services.refs import decode_entries, parse_id, ref_to_str


# --- Products ---

def create_product(db: Session, data: ProductCreate) -> Product:
    sku = data.sku.strip().upper()
    if not sku:
        raise ValidationError("SKU is required")
    if db.query(Product).filter(Product.sku == sku).first():
        raise ValidationError(f"Product with SKU '{sku}' already exists")
    product = Product(sku=sku, name=data.name, unit=data.unit or "EA", price=data.price)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def get_product(db: Session, product_id: str) -> Product | None:
    return db.query(Product).filter(Product.id == product_id).first()


def list_products(db: Session, skip: int = 0, limit: int = 100, search: str | None = None) -> list[Product]:
    q = db.query(Product)
    if search:
        pattern = f"%{search}%"
        q = q.filter(Product.name.ilike(pattern) | Product.sku.ilike(pattern))
    return q.order_by(Product.name).offset(skip).limit(limit).all()


# --- Projects ---

def create_project(db: Session, data: ProjectCreate) -> Project:
    if not data.name.strip():
        raise ValidationError("Project name is required")
    project = Project(name=data.name.strip(), color=data.color)
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def get_project(db: Session, project_id: str) -> Project | None:
    return db.query(Project).filter(Project.id == project_id).first()


def list_projects(db: Session, member_id: str | None = None) -> list[Project]:
    projects = db.query(Project).order_by(Project.name).all()
    if member_id:
        projects = [p for p in projects if p.has_member(member_id)]
    return projects


def _require_project(db: Session, project_id: str) -> Project:
    project = get_project(db, str(parse_id(project_id, "projectId")))
    if not project:
        raise NotFound(f"Project {project_id} not found")
    return project


def add_rack(db: Session, project_id: str, rack_number: str) -> Rack:
    """Create a rack and append it to the project's rack list."""
    project = _require_project(db, project_id)
    rack_number = rack_number.strip()
    if not rack_number:
        raise ValidationError("Rack number is required")
    if db.query(Rack).filter(Rack.rack_number == rack_number).first():
        raise ValidationError(f"Rack '{rack_number}' already exists")

    rack = Rack(rack_number=rack_number)
    db.add(rack)
    db.flush()
    project.rack_refs = json.dumps(project.rack_ids + [rack.id])
    db.commit()
    db.refresh(rack)
    return rack


def add_member(db: Session, project_id: str, user_id: str) -> Project:
    project = _require_project(db, project_id)
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise ValidationError(f"User {user_id} not found")
    if not project.has_member(user.id):
        project.member_refs = json.dumps(project.member_ids + [user.id])
        db.commit()
        db.refresh(project)
    return project


# --- Racks ---

def get_rack(db: Session, rack_id: str) -> Rack | None:
    return db.query(Rack).filter(Rack.id == rack_id).first()


def rack_view(rack: Rack) -> RackOut:
    entries = []
    for entry in decode_entries(rack.products):
        entries.append(RackEntryOut(product_id=ref_to_str(entry.get("product")), stock=stock_of(entry)))
    return RackOut(
        id=rack.id,
        rack_number=rack.rack_number,
        version=rack.version,
        products=entries,
        updated_at=rack.updated_at,
    )
