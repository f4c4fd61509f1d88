from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from stockledger.api.auth import get_current_user, require_role
from stockledger.api.dependencies import to_http
from stockledger.database import get_db
from stockledger.errors import LedgerError
from stockledger.models.user import User
from stockledger.schemas.catalog import ProductCreate, ProductOut
from stockledger.services import catalog_service

router = APIRouter(prefix="/products", tags=["Products"])


@router.post("", response_model=ProductOut, status_code=201)
def create_product(data: ProductCreate, user: User = Depends(require_role("admin")), db: Session = Depends(get_db)):
    try:
        return catalog_service.create_product(db, data)
    except LedgerError as e:
        raise to_http(e)


@router.get("", response_model=list[ProductOut])
def list_products(
    skip: int = 0,
    limit: int = 100,
    search: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return catalog_service.list_products(db, skip=skip, limit=limit, search=search)


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    product = catalog_service.get_product(db, product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    return product
