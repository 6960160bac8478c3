from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import Product
from backend.app.schemas.products import ProductCreate, ProductRead, RestockCreate
from backend.services.inventory import restock_product

router = APIRouter(prefix="/products")


@router.get("", response_model=list[ProductRead])
def list_products(db: Session = Depends(get_db)):
    return db.execute(select(Product).order_by(Product.name)).scalars().all()


@router.post("", status_code=201, response_model=ProductRead)
def create_product(payload: ProductCreate, db: Session = Depends(get_db)):
    p = Product(
        name=payload.name,
        category=payload.category,
        description=payload.description,
        price=payload.price,
        stock=payload.stock,
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


@router.post("/{product_id}/restock")
def restock(product_id: int, payload: RestockCreate, db: Session = Depends(get_db)):
    stock = restock_product(db, product_id, payload.quantity)
    return {"id": product_id, "stock": stock}
