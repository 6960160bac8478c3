from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    DateTime,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db.base import Base
from backend.app.db.models.core_types import (
    OrderStatus,
    PaymentMethod,
    OrderChannel,
    enum_values,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- CATALOG ----------
class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str | None] = mapped_column(String(120))
    description: Mapped[str | None] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    # Seul l'inventory ledger écrit cette colonne
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_nonneg"),
        CheckConstraint("price >= 0", name="ck_products_price_nonneg"),
    )


# ---------- ORDERS ----------
class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    order_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact: Mapped[str | None] = mapped_column(String(120))
    address: Mapped[str | None] = mapped_column(Text)

    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status", values_callable=enum_values),
        default=OrderStatus.pending,
        nullable=False,
    )
    type: Mapped[OrderChannel] = mapped_column(
        Enum(OrderChannel, name="order_channel", values_callable=enum_values),
        default=OrderChannel.online,
        nullable=False,
    )
    payment: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, name="payment_method", values_callable=enum_values),
        default=PaymentMethod.cash,
        nullable=False,
    )
    ref: Mapped[str | None] = mapped_column(String(120))

    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    net_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Colonnes optionnelles : absentes des anciens schémas (cf. introspection)
    device_id: Mapped[str | None] = mapped_column(String(128), index=True)
    fcm_token: Mapped[str | None] = mapped_column(String(512))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    items: Mapped[list["OrderItem"]] = relationship(back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("total_price >= 0", name="ck_orders_total_nonneg"),
        CheckConstraint("discount >= 0", name="ck_orders_discount_nonneg"),
        CheckConstraint("net_total >= 0", name="ck_orders_net_total_nonneg"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id", ondelete="SET NULL"))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    # Prix figé au moment de la commande
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")
    product: Mapped[Product | None] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_qty_pos"),
        Index("ix_order_items_order_product", "order_id", "product_id"),
    )
