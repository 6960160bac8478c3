from __future__ import annotations

import logging
import secrets
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.db.introspection import SchemaCapabilities
from backend.app.db.models.core_types import OrderChannel, OrderStatus, PaymentMethod
from backend.app.db.models.models_v1 import Order, OrderItem, Product
from backend.services.errors import InvalidInput, TransactionFailed

logger = logging.getLogger(__name__)

ORDER_CODE_ATTEMPTS = 3

_BASE_COLUMNS = (
    Order.id,
    Order.order_code,
    Order.name,
    Order.contact,
    Order.address,
    Order.status,
    Order.type,
    Order.payment,
    Order.ref,
    Order.total_price,
    Order.discount,
    Order.net_total,
    Order.created_at,
)


@dataclass(frozen=True)
class LineItemOutcome:
    index: int
    product_id: int | None
    quantity: int | None
    inserted: bool
    reason: str | None = None


@dataclass
class OrderCreationResult:
    order: dict[str, Any]
    outcomes: list[LineItemOutcome] = field(default_factory=list)

    @property
    def inserted_items(self) -> int:
        return sum(1 for o in self.outcomes if o.inserted)

    @property
    def skipped(self) -> list[LineItemOutcome]:
        return [o for o in self.outcomes if not o.inserted]


# ---------- Projections ----------
def order_columns(capabilities: SchemaCapabilities) -> list:
    """Colonnes exposées d'une commande (fcm_token n'est jamais exposé)."""
    cols = list(_BASE_COLUMNS)
    if capabilities.has_device_id:
        cols.append(Order.device_id)
    return cols


def get_order(
    db: Session,
    order_id: int,
    capabilities: SchemaCapabilities,
    *,
    device_id: str | None = None,
    with_items: bool = False,
) -> dict[str, Any] | None:
    stmt = select(*order_columns(capabilities)).where(Order.id == order_id)
    if device_id and capabilities.has_device_id:
        stmt = stmt.where(Order.device_id == device_id)

    row = db.execute(stmt.limit(1)).first()
    if row is None:
        return None

    order = dict(row._mapping)
    if with_items and capabilities.has_order_items:
        order["items"] = list_order_items(db, order_id, capabilities)
    return order


def list_orders(
    db: Session,
    capabilities: SchemaCapabilities,
    *,
    page: int = 1,
    page_size: int = 20,
    device_id: str | None = None,
    max_page_size: int = 100,
) -> dict[str, Any]:
    page = max(int(page), 1)
    page_size = min(max(int(page_size), 1), max_page_size)

    stmt = select(*order_columns(capabilities))
    count_stmt = select(func.count(Order.id))
    if device_id and capabilities.has_device_id:
        stmt = stmt.where(Order.device_id == device_id)
        count_stmt = count_stmt.where(Order.device_id == device_id)

    rows = db.execute(
        stmt.order_by(Order.id.desc()).limit(page_size).offset((page - 1) * page_size)
    ).all()
    total = db.execute(count_stmt).scalar_one()

    return {
        "orders": [dict(r._mapping) for r in rows],
        "page": page,
        "page_size": page_size,
        "total": int(total),
    }


def list_order_items(
    db: Session,
    order_id: int,
    capabilities: SchemaCapabilities,
) -> list[dict[str, Any]]:
    if not capabilities.has_order_items:
        return []

    rows = db.execute(
        select(
            OrderItem.id,
            OrderItem.product_id,
            Product.name.label("name"),
            OrderItem.quantity,
            OrderItem.unit_price.label("price"),
        )
        .outerjoin(Product, Product.id == OrderItem.product_id)
        .where(OrderItem.order_id == order_id)
        .order_by(OrderItem.id.asc())
    ).all()
    return [
        {
            "id": r.id,
            "product_id": r.product_id,
            "name": r.name,
            "quantity": int(r.quantity or 0),
            "price": r.price if r.price is not None else Decimal("0"),
        }
        for r in rows
    ]


# ---------- Writes (utilisées par le moteur de transitions) ----------
def select_order_for_update(db: Session, order_id: int, capabilities: SchemaCapabilities):
    cols = [Order.id, Order.status]
    if capabilities.has_device_id:
        cols.append(Order.device_id)
    return db.execute(
        select(*cols).where(Order.id == order_id).limit(1).with_for_update()
    ).first()


def read_order_owner(db: Session, order_id: int):
    """(id, device_id) sans verrou, pour la pré-vérification d'appartenance."""
    return db.execute(
        select(Order.id, Order.device_id).where(Order.id == order_id).limit(1)
    ).first()


def read_notification_token(db: Session, order_id: int) -> str | None:
    return db.execute(
        select(Order.fcm_token).where(Order.id == order_id).limit(1)
    ).scalar_one_or_none()


def update_order_fields(db: Session, order_id: int, values: Mapping[str, Any]) -> int:
    """Un seul UPDATE pour tous les champs. Retourne le nombre de lignes touchées."""
    result = db.execute(
        update(Order)
        .where(Order.id == order_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


# ---------- Creation ----------
def generate_order_code(prefix: str = "ORD", now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000) % 1_000_000
    return f"{prefix}{millis:06d}{secrets.token_hex(2).upper()}"


def _as_positive_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite() or number != number.to_integral_value() or number <= 0:
        return None
    return int(number)


def _as_money(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise InvalidInput(f"{field_name} must be numeric", field=field_name)
    amount = Decimal(str(value))
    if not amount.is_finite() or amount < 0:
        raise InvalidInput(f"{field_name} must be a non-negative number", field=field_name)
    return amount


def _as_price(value: Any) -> Decimal | None:
    """Prix de ligne : nombre ou chaîne numérique ; None si inexploitable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount < 0:
        return None
    return amount


def parse_enum(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidInput(f"Invalid {field_name}. Must be one of: {allowed}", field=field_name) from None


def _required_text(value: Any, message: str, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(message, field=field_name)
    return value.strip()


def validate_order_draft(draft: Mapping[str, Any], capabilities: SchemaCapabilities) -> dict[str, Any]:
    """Valide et normalise une commande AVANT toute I/O. Retourne les valeurs à insérer."""
    name = _required_text(draft.get("name"), "Name is required", "name")
    if draft.get("total_price") is None:
        raise InvalidInput("Total price is required", field="total_price")
    total_price = _as_money(draft["total_price"], "total_price")
    device_id = _required_text(draft.get("device_id"), "Device ID is required", "device_id")

    discount = Decimal("0")
    if draft.get("discount") is not None:
        discount = _as_money(draft["discount"], "discount")
    if draft.get("net_total") is not None:
        net_total = _as_money(draft["net_total"], "net_total")
    else:
        net_total = max(total_price - discount, Decimal("0"))

    payment = PaymentMethod.cash
    if draft.get("payment") is not None:
        payment = parse_enum(PaymentMethod, draft["payment"], "payment method")
    channel = OrderChannel.online
    if draft.get("type") is not None:
        channel = parse_enum(OrderChannel, draft["type"], "type")
    if draft.get("status") is not None:
        status = parse_enum(OrderStatus, draft["status"], "status")
        if status is not OrderStatus.pending:
            raise InvalidInput("New orders must start as Pending", field="status")

    values: dict[str, Any] = {
        "name": name,
        "contact": draft.get("contact") or None,
        "address": draft.get("address") or None,
        "payment": payment,
        "ref": draft.get("reference") or None,
        "total_price": total_price,
        "discount": discount,
        "net_total": net_total,
        "status": OrderStatus.pending,
        "type": channel,
    }
    if capabilities.has_device_id:
        values["device_id"] = device_id
    if capabilities.has_fcm_token and draft.get("notification_token"):
        values["fcm_token"] = draft["notification_token"]
    return values


def _insert_order(db: Session, values: dict[str, Any], code_prefix: str) -> int:
    attempt = 0
    while True:
        attempt += 1
        code = generate_order_code(code_prefix)
        try:
            with db.begin_nested():
                result = db.execute(Order.__table__.insert().values(order_code=code, **values))
            return int(result.inserted_primary_key[0])
        except IntegrityError:
            # code unique : on régénère (le SAVEPOINT a déjà été annulé)
            if attempt >= ORDER_CODE_ATTEMPTS:
                raise
            logger.warning("order.code.collision", extra={"order_code": code, "attempt": attempt})


def _insert_line_item(db: Session, order_id: int, index: int, raw: Any) -> LineItemOutcome:
    if not isinstance(raw, Mapping):
        return LineItemOutcome(index, None, None, False, "malformed item")

    product_id = _as_positive_int(raw.get("product_id"))
    quantity = _as_positive_int(raw.get("quantity"))
    if product_id is None:
        return LineItemOutcome(index, None, quantity, False, "invalid product_id")
    if quantity is None:
        return LineItemOutcome(index, product_id, None, False, "invalid quantity")

    product = db.execute(select(Product.id, Product.price).where(Product.id == product_id)).first()
    if product is None:
        return LineItemOutcome(index, product_id, quantity, False, "product not found")

    # prix fourni s'il est exploitable, sinon prix catalogue (lecture non verrouillée)
    unit_price = _as_price(raw.get("price"))
    if unit_price is None:
        unit_price = product.price if product.price is not None else Decimal("0")

    try:
        with db.begin_nested():
            db.execute(
                OrderItem.__table__.insert().values(
                    order_id=order_id,
                    product_id=product_id,
                    quantity=quantity,
                    unit_price=unit_price,
                )
            )
    except OperationalError:
        raise
    except SQLAlchemyError as exc:
        logger.warning(
            "order.item.skipped",
            extra={"order_id": order_id, "product_id": product_id, "quantity": quantity, "error": str(exc)},
        )
        return LineItemOutcome(index, product_id, quantity, False, type(exc).__name__)

    return LineItemOutcome(index, product_id, quantity, True)


def create_order(
    db: Session,
    draft: Mapping[str, Any],
    items: Sequence[Any] | None,
    capabilities: SchemaCapabilities,
    *,
    code_prefix: str = "ORD",
) -> OrderCreationResult:
    """
    Crée une commande et ses lignes dans UNE transaction.

    Les lignes invalides (quantité <= 0, produit introuvable)
    sont ignorées et rapportées dans ``outcomes`` ; la commande est créée
    quand même. Toute autre erreur annule la commande entière.
    """
    values = validate_order_draft(draft, capabilities)

    outcomes: list[LineItemOutcome] = []
    try:
        order_id = _insert_order(db, values, code_prefix)
        if capabilities.has_order_items:
            for index, raw in enumerate(items or []):
                outcomes.append(_insert_line_item(db, order_id, index, raw))
        elif items:
            logger.warning("order.items.unsupported", extra={"order_id": order_id, "items": len(items)})
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("order.create.failed", extra={"customer": values["name"]})
        raise TransactionFailed("Order could not be created") from exc

    order = get_order(db, order_id, capabilities)
    result = OrderCreationResult(order=order, outcomes=outcomes)
    logger.info(
        "order.create",
        extra={
            "order_id": order_id,
            "order_code": order["order_code"],
            "inserted_items": result.inserted_items,
            "skipped_items": len(result.skipped),
        },
    )
    return result
