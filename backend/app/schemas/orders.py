from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

from backend.app.db.models.core_types import OrderChannel, OrderStatus, PaymentMethod


# ---------- Entrées ----------
class OrderItemIn(BaseModel):
    # types lâches : une ligne invalide est ignorée par le service, pas rejetée en 422
    product_id: Any = Field(default=None, validation_alias=AliasChoices("product_id", "productId"))
    quantity: Any = Field(default=None, validation_alias=AliasChoices("quantity", "qty"))
    price: Any = None


class OrderCreate(BaseModel):
    # champs validés par le service : erreur 400 homogène plutôt qu'un 422
    name: Any = None
    contact: str | None = None
    address: str | None = None
    payment: Any = None
    reference: str | None = Field(default=None, validation_alias=AliasChoices("reference", "ref"))
    total_price: Any = Field(default=None, validation_alias=AliasChoices("total_price", "totalPrice"))
    discount: Any = None
    net_total: Any = Field(default=None, validation_alias=AliasChoices("net_total", "netTotal"))
    status: Any = None
    type: Any = None
    device_id: Any = Field(default=None, validation_alias=AliasChoices("device_id", "deviceId"))
    notification_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("notification_token", "fcm_token", "fcmToken"),
    )
    items: list[OrderItemIn] = Field(default_factory=list)


class OrderTransition(BaseModel):
    device_id: str | None = Field(default=None, validation_alias=AliasChoices("device_id", "deviceId"))
    payment: Any = None
    reference: str | None = Field(default=None, validation_alias=AliasChoices("reference", "ref"))
    status: Any = None
    notification_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("notification_token", "fcm_token", "fcmToken"),
    )


# ---------- Sorties ----------
class OrderItemRead(BaseModel):
    id: int | None = None
    product_id: int | None
    name: str | None = None
    quantity: int
    price: float


class OrderRead(BaseModel):
    id: int
    order_code: str
    name: str
    contact: str | None = None
    address: str | None = None
    status: OrderStatus
    type: OrderChannel
    payment: PaymentMethod
    ref: str | None = None
    total_price: float
    discount: float
    net_total: float
    device_id: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class OrderDetailRead(OrderRead):
    items: list[OrderItemRead] = Field(default_factory=list)


class OrderTransitionRead(OrderRead):
    # renseignés uniquement pour une entrée en Processing
    items_processed: int | None = None
    stock_updates: int | None = None


class SkippedItemRead(BaseModel):
    index: int
    product_id: int | None = None
    quantity: int | None = None
    reason: str | None = None


class OrderPage(BaseModel):
    orders: list[OrderRead]
    page: int
    page_size: int
    total: int


class OrderEnvelope(BaseModel):
    order: OrderDetailRead


class OrderTransitionEnvelope(BaseModel):
    order: OrderTransitionRead


class OrderCreated(BaseModel):
    order: OrderRead
    inserted_items: int
    skipped_items: list[SkippedItemRead] = Field(default_factory=list)


class OrderItemsEnvelope(BaseModel):
    items: list[OrderItemRead]
