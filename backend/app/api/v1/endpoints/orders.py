from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from backend.app.api.deps import (
    get_capabilities,
    get_db,
    get_settings,
    get_transition_engine,
)
from backend.app.core.config import Settings
from backend.app.db.introspection import SchemaCapabilities
from backend.app.schemas.orders import (
    OrderCreate,
    OrderCreated,
    OrderEnvelope,
    OrderItemsEnvelope,
    OrderPage,
    OrderTransition,
    OrderTransitionEnvelope,
)
from backend.services.orders import create_order, get_order, list_order_items, list_orders
from backend.services.transitions import OrderTransitionEngine

router = APIRouter(prefix="/orders")


@router.get("", response_model=OrderPage)
def list_orders_endpoint(
    page: int = 1,
    page_size: int = 20,
    device_id: str | None = None,
    db: Session = Depends(get_db),
    caps: SchemaCapabilities = Depends(get_capabilities),
    settings: Settings = Depends(get_settings),
):
    return list_orders(
        db,
        caps,
        page=page,
        page_size=page_size,
        device_id=device_id,
        max_page_size=settings.orders_max_page_size,
    )


@router.get("/{order_id}", response_model=OrderEnvelope)
def get_order_endpoint(
    order_id: int,
    device_id: str | None = None,
    db: Session = Depends(get_db),
    caps: SchemaCapabilities = Depends(get_capabilities),
):
    order = get_order(db, order_id, caps, device_id=device_id, with_items=True)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"order": order}


@router.get("/{order_id}/items", response_model=OrderItemsEnvelope)
def get_order_items_endpoint(
    order_id: int,
    db: Session = Depends(get_db),
    caps: SchemaCapabilities = Depends(get_capabilities),
):
    return {"items": list_order_items(db, order_id, caps)}


@router.post("", status_code=201, response_model=OrderCreated)
def create_order_endpoint(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    caps: SchemaCapabilities = Depends(get_capabilities),
    settings: Settings = Depends(get_settings),
):
    draft = payload.model_dump(exclude={"items"})
    items = [it.model_dump() for it in payload.items]
    result = create_order(db, draft, items, caps, code_prefix=settings.order_code_prefix)
    return {
        "order": result.order,
        "inserted_items": result.inserted_items,
        "skipped_items": [
            {"index": o.index, "product_id": o.product_id, "quantity": o.quantity, "reason": o.reason}
            for o in result.skipped
        ],
    }


@router.patch("/{order_id}/payment", response_model=OrderTransitionEnvelope)
def update_order_payment(
    order_id: int,
    payload: OrderTransition,
    background_tasks: BackgroundTasks,
    engine: OrderTransitionEngine = Depends(get_transition_engine),
):
    changes = payload.model_dump(exclude_unset=True, exclude={"device_id"})
    result = engine.transition(order_id, changes, device_id=payload.device_id)

    # après la réponse : l'issue de l'envoi n'affecte jamais la transition
    if result.notification is not None:
        background_tasks.add_task(engine.notify, result)
    return {"order": result.order}
