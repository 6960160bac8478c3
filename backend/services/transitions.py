"""
Moteur de transitions de commande.

Une transition = une unité atomique :
    autorisation -> verrou de la ligne commande -> mise à jour des champs
    -> réconciliation du stock (une seule fois par entrée en Processing)
    -> commit -> résultat.

La notification push n'est PAS envoyée ici : elle est construite dans la
transaction et renvoyée dans le résultat ; ``notify()`` la délivre après
coup (tâche de fond côté HTTP).

Propriétés :
- le verrou FOR UPDATE sérialise les transitions d'une même commande
- le décrément de stock ne part que si le statut PRÉCÉDENT != Processing
  (retries, double-clics, requêtes concurrentes : un seul décrément)
- tout ou rien : en cas d'erreur SQL, rollback complet (statut inchangé)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from backend.app.db.introspection import SchemaCapabilities
from backend.app.db.models.core_types import OrderStatus, PaymentMethod
from backend.services.errors import (
    AccessDenied,
    InvalidInput,
    NothingToUpdate,
    NotFound,
    TransactionFailed,
)
from backend.services.inventory import ReconciliationSummary, reconcile_order_stock
from backend.services.notifications import (
    Notifier,
    PushMessage,
    build_status_notification,
    deliver,
)
from backend.services.orders import (
    get_order,
    parse_enum,
    read_notification_token,
    read_order_owner,
    select_order_for_update,
    update_order_fields,
)

logger = logging.getLogger(__name__)

TRANSITION_FIELDS = ("payment", "reference", "status", "notification_token")


@dataclass
class TransitionResult:
    order: dict[str, Any]
    previous_status: OrderStatus | None = None
    reconciliation: ReconciliationSummary | None = None
    notification: PushMessage | None = None

    @property
    def items_processed(self) -> int:
        return self.reconciliation.items_processed if self.reconciliation else 0

    @property
    def stock_updates(self) -> int:
        return self.reconciliation.stock_updates if self.reconciliation else 0


class OrderTransitionEngine:
    def __init__(
        self,
        session_factory: sessionmaker,
        capabilities: SchemaCapabilities,
        notifier: Notifier | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.capabilities = capabilities
        self.notifier = notifier

    # ---------- API ----------
    def transition(
        self,
        order_id: int,
        changes: Mapping[str, Any],
        *,
        device_id: str | None = None,
    ) -> TransitionResult:
        if isinstance(order_id, bool) or not isinstance(order_id, int) or order_id <= 0:
            raise InvalidInput("Invalid id", order_id=order_id)
        values, status = self._build_values(order_id, changes)

        with self.session_factory() as db:
            try:
                self._precheck_owner(db, order_id, device_id)
                if status is OrderStatus.processing:
                    result = self._transition_locked(db, order_id, device_id, values)
                else:
                    result = self._transition_plain(db, order_id, values)
            except SQLAlchemyError as exc:
                logger.exception(
                    "order.transition.failed",
                    extra={"order_id": order_id, "status": status.value if status else None},
                )
                raise TransactionFailed(order_id=order_id) from exc

        logger.info(
            "order.transition",
            extra={
                "order_id": order_id,
                "previous_status": result.previous_status.value if result.previous_status else None,
                "status": status.value if status else None,
                "items_processed": result.items_processed,
                "stock_updates": result.stock_updates,
            },
        )
        return result

    def notify(self, result: TransitionResult) -> bool:
        """Délivre la notification en attente. Ne lève jamais."""
        if result.notification is None or self.notifier is None:
            return False
        return deliver(self.notifier, result.notification)

    # ---------- Validation (avant toute I/O) ----------
    def _build_values(
        self,
        order_id: int,
        changes: Mapping[str, Any],
    ) -> tuple[dict[str, Any], OrderStatus | None]:
        unknown = sorted(set(changes) - set(TRANSITION_FIELDS))
        if unknown:
            raise InvalidInput(f"Unknown update fields: {', '.join(unknown)}", fields=unknown)

        values: dict[str, Any] = {}
        status: OrderStatus | None = None
        if "payment" in changes:
            values["payment"] = parse_enum(PaymentMethod, changes["payment"], "payment method")
        if "reference" in changes:
            values["ref"] = changes["reference"]
        if "status" in changes:
            status = parse_enum(OrderStatus, changes["status"], "status")
            values["status"] = status
        if "notification_token" in changes and self.capabilities.has_fcm_token:
            values["fcm_token"] = changes["notification_token"]

        if not values:
            raise NothingToUpdate(order_id=order_id)
        return values, status

    # ---------- Appartenance ----------
    def _check_owner(self, order_id: int, stored: str | None, device_id: str | None) -> None:
        if not device_id or not self.capabilities.has_device_id:
            return
        if stored and stored != device_id:
            logger.warning("order.transition.forbidden", extra={"order_id": order_id})
            raise AccessDenied(order_id=order_id)

    def _precheck_owner(self, db: Session, order_id: int, device_id: str | None) -> None:
        if not device_id or not self.capabilities.has_device_id:
            return
        with db.begin():
            row = read_order_owner(db, order_id)
        if row is None:
            raise NotFound(order_id=order_id)
        self._check_owner(order_id, row.device_id, device_id)

    # ---------- Transitions ----------
    def _transition_locked(
        self,
        db: Session,
        order_id: int,
        device_id: str | None,
        values: dict[str, Any],
    ) -> TransitionResult:
        with db.begin():
            row = select_order_for_update(db, order_id, self.capabilities)
            if row is None:
                raise NotFound(order_id=order_id)

            # re-vérification sous verrou (course lecture -> verrou)
            stored = row.device_id if self.capabilities.has_device_id else None
            self._check_owner(order_id, stored, device_id)

            previous = OrderStatus(row.status)
            update_order_fields(db, order_id, values)

            if previous is not OrderStatus.processing:
                summary = reconcile_order_stock(db, order_id, self.capabilities)
            else:
                summary = ReconciliationSummary()
                logger.info("inventory.reconcile.already_done", extra={"order_id": order_id})

            order = get_order(db, order_id, self.capabilities)
            notification = self._pending_notification(db, order, values)

        order["items_processed"] = summary.items_processed
        order["stock_updates"] = summary.stock_updates
        return TransitionResult(
            order=order,
            previous_status=previous,
            reconciliation=summary,
            notification=notification,
        )

    def _transition_plain(
        self,
        db: Session,
        order_id: int,
        values: dict[str, Any],
    ) -> TransitionResult:
        # pas d'effet de bord inter-entités : pas de verrou
        with db.begin():
            if not update_order_fields(db, order_id, values):
                raise NotFound(order_id=order_id)
            order = get_order(db, order_id, self.capabilities)
            notification = self._pending_notification(db, order, values)
        return TransitionResult(order=order, notification=notification)

    def _pending_notification(
        self,
        db: Session,
        order: dict[str, Any],
        values: dict[str, Any],
    ) -> PushMessage | None:
        if "status" not in values or not self.capabilities.has_fcm_token:
            return None
        token = values.get("fcm_token") or read_notification_token(db, order["id"])
        if not token:
            return None
        return build_status_notification(token, order["id"], order["order_code"], values["status"])
