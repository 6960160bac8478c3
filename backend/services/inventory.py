from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import case, select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.db.introspection import SchemaCapabilities
from backend.app.db.models.models_v1 import OrderItem, Product
from backend.services.errors import InvalidInput, NotFound, TransactionFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockOutcome:
    product_id: int | None
    quantity: int
    applied: bool
    reason: str | None = None


@dataclass
class ReconciliationSummary:
    items_processed: int = 0
    stock_updates: int = 0
    outcomes: list[StockOutcome] = field(default_factory=list)

    @property
    def skipped(self) -> list[StockOutcome]:
        return [o for o in self.outcomes if not o.applied]


def _require_positive_qty(qty: int) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise InvalidInput("Quantity must be a positive integer", quantity=qty)
    return qty


def decrement_stock(db: Session, product_id: int, qty: int) -> bool:
    """
    stock = max(stock - qty, 0), en UNE instruction SQL.

    Jamais de lecture puis écriture : deux décréments concurrents sur le même
    produit sont sérialisés par le verrou de ligne de la base.
    Retourne True si une ligne produit a été touchée.
    """
    qty = _require_positive_qty(qty)
    remaining = Product.stock - qty
    result = db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=case((remaining > 0, remaining), else_=0))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def increment_stock(db: Session, product_id: int, qty: int) -> bool:
    qty = _require_positive_qty(qty)
    result = db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + qty)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def reconcile_order_stock(
    db: Session,
    order_id: int,
    capabilities: SchemaCapabilities,
) -> ReconciliationSummary:
    """
    Décrémente le stock pour chaque ligne de la commande.

    Doit tourner dans la transaction de la transition (ligne commande déjà
    verrouillée). Chaque ligne passe dans son propre SAVEPOINT : une ligne en
    erreur est enregistrée comme ignorée sans annuler les autres.
    Les erreurs opérationnelles (lock timeout, deadlock) remontent.
    """
    summary = ReconciliationSummary()
    if not capabilities.has_order_items:
        logger.warning(
            "inventory.reconcile.skipped",
            extra={"order_id": order_id, "reason": "order_items table missing"},
        )
        return summary

    # ordre stable par produit : même ordre de verrouillage entre commandes
    items = db.execute(
        select(OrderItem.product_id, OrderItem.quantity)
        .where(OrderItem.order_id == order_id)
        .order_by(OrderItem.product_id.asc(), OrderItem.id.asc())
    ).all()
    summary.items_processed = len(items)

    for product_id, quantity in items:
        qty = int(quantity or 0)
        if product_id is None or qty <= 0:
            summary.outcomes.append(StockOutcome(product_id, qty, False, "invalid line item"))
            continue

        try:
            with db.begin_nested():
                touched = decrement_stock(db, int(product_id), qty)
        except OperationalError:
            raise
        except SQLAlchemyError as exc:
            logger.warning(
                "inventory.decrement.failed",
                extra={"order_id": order_id, "product_id": product_id, "error": str(exc)},
            )
            summary.outcomes.append(StockOutcome(product_id, qty, False, type(exc).__name__))
            continue

        if touched:
            summary.stock_updates += 1
            summary.outcomes.append(StockOutcome(product_id, qty, True))
        else:
            summary.outcomes.append(StockOutcome(product_id, qty, False, "product not found"))

    logger.info(
        "inventory.reconcile",
        extra={
            "order_id": order_id,
            "items_processed": summary.items_processed,
            "stock_updates": summary.stock_updates,
        },
    )
    return summary


def restock_product(db: Session, product_id: int, qty: int) -> int:
    """Réassort : incrémente puis commit. Retourne le nouveau stock."""
    qty = _require_positive_qty(qty)
    try:
        touched = increment_stock(db, product_id, qty)
        if not touched:
            db.rollback()
            raise NotFound("Product not found", product_id=product_id)
        stock = db.execute(select(Product.stock).where(Product.id == product_id)).scalar_one()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("inventory.restock.failed", extra={"product_id": product_id})
        raise TransactionFailed(product_id=product_id) from exc

    logger.info("inventory.restock", extra={"product_id": product_id, "qty": qty, "stock": stock})
    return int(stock)
