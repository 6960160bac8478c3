"""
Notifications push (best effort).

Un échec d'envoi est loggé, jamais propagé : l'état de la commande déjà
commité fait foi, que la notification parte ou non.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Protocol

import firebase_admin
from firebase_admin import credentials, messaging

from backend.app.core.config import Settings
from backend.app.db.models.core_types import OrderStatus

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "store-backend"

# l'app Firebase nommée est globale au process : une seule initialisation
_init_lock = threading.Lock()

_STATUS_MESSAGES: dict[OrderStatus, tuple[str, str]] = {
    OrderStatus.processing: ("Order Being Processed", "Your order #{code} is now being prepared."),
    OrderStatus.completed: ("Order Completed", "Your order #{code} has been completed."),
    OrderStatus.delivered: ("Order Delivered!", "Your order #{code} has been delivered successfully."),
    OrderStatus.cancelled: ("Order Cancelled", "Your order #{code} has been cancelled."),
    OrderStatus.declined: ("Order Declined", "Your order #{code} was declined. Please contact support."),
}


@dataclass(frozen=True)
class PushMessage:
    token: str
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


class Notifier(Protocol):
    def send(self, message: PushMessage) -> None:
        """Envoie le message ; lève une exception en cas d'échec."""
        ...


def build_status_notification(
    token: str,
    order_id: int,
    order_code: str,
    status: OrderStatus,
) -> PushMessage:
    status = OrderStatus(status)
    title, body = _STATUS_MESSAGES.get(
        status,
        ("Order Update", "Your order #{code} status has been updated to {status}."),
    )
    return PushMessage(
        token=token,
        title=title,
        body=body.format(code=order_code, status=status.value),
        data={
            "orderId": str(order_id),
            "orderCode": str(order_code),
            "status": status.value,
        },
    )


def deliver(notifier: Notifier, message: PushMessage) -> bool:
    try:
        notifier.send(message)
    except Exception as exc:
        logger.warning(
            "notification.failed",
            extra={"order_id": message.data.get("orderId"), "error": str(exc)},
        )
        return False
    logger.info(
        "notification.sent",
        extra={"order_id": message.data.get("orderId"), "status": message.data.get("status")},
    )
    return True


class NullNotifier:
    """Utilisé quand aucun credential Firebase n'est configuré."""

    def send(self, message: PushMessage) -> None:
        logger.debug("notification.skipped", extra={"order_id": message.data.get("orderId")})


class FirebaseNotifier:
    """
    Firebase Cloud Messaging.

    Ordre de résolution des credentials :
    1. GOOGLE_APPLICATION_CREDENTIALS (application default)
    2. FIREBASE_SERVICE_ACCOUNT (chemin vers le JSON du compte de service)
    3. FIREBASE_SERVICE_ACCOUNT_JSON (JSON inline)

    Si l'initialisation échoue, l'envoi est désactivé (warning unique).
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._app: firebase_admin.App | None = None
        self._init_failed = False

    def _credential(self) -> credentials.Base | None:
        s = self._settings
        if s.google_application_credentials:
            return credentials.ApplicationDefault()
        if s.firebase_service_account:
            return credentials.Certificate(s.firebase_service_account)
        if s.firebase_service_account_json:
            return credentials.Certificate(json.loads(s.firebase_service_account_json))
        return None

    def _get_app(self) -> firebase_admin.App | None:
        if self._app is not None or self._init_failed:
            return self._app
        with _init_lock:
            if self._app is not None or self._init_failed:
                return self._app
            try:
                self._app = firebase_admin.get_app(FIREBASE_APP_NAME)
            except ValueError:
                try:
                    cred = self._credential()
                    if cred is None:
                        raise ValueError("no Firebase credential configured")
                    self._app = firebase_admin.initialize_app(cred, name=FIREBASE_APP_NAME)
                except (ValueError, OSError) as exc:
                    self._init_failed = True
                    logger.warning("notification.firebase.init_failed", extra={"error": str(exc)})
        return self._app

    def send(self, message: PushMessage) -> None:
        app = self._get_app()
        if app is None:
            raise RuntimeError("Firebase app is not initialized")

        messaging.send(
            messaging.Message(
                token=message.token,
                notification=messaging.Notification(title=message.title, body=message.body),
                data=message.data,
            ),
            app=app,
        )


def build_notifier(settings: Settings) -> Notifier:
    if settings.push_enabled:
        return FirebaseNotifier(settings)
    return NullNotifier()
