import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from backend.app.core.config import Settings
from backend.app.db.models.core_types import OrderStatus
from backend.services import notifications
from backend.services.notifications import (
    FirebaseNotifier,
    NullNotifier,
    PushMessage,
    build_notifier,
    build_status_notification,
    deliver,
)


@pytest.mark.parametrize(
    "status, title",
    [
        (OrderStatus.processing, "Order Being Processed"),
        (OrderStatus.completed, "Order Completed"),
        (OrderStatus.delivered, "Order Delivered!"),
        (OrderStatus.cancelled, "Order Cancelled"),
        (OrderStatus.declined, "Order Declined"),
    ],
)
def test_status_titles(status, title):
    msg = build_status_notification("tok", 7, "ORD123456ABCD", status)

    assert msg.title == title
    assert "#ORD123456ABCD" in msg.body
    assert msg.data == {"orderId": "7", "orderCode": "ORD123456ABCD", "status": status.value}


def test_unmapped_status_gets_generic_message():
    msg = build_status_notification("tok", 7, "ORD1", "Pending")

    assert msg.title == "Order Update"
    assert msg.body == "Your order #ORD1 status has been updated to Pending."


def test_deliver_logs_and_swallows_failures(caplog, failing_notifier):
    msg = PushMessage(token="tok", title="t", body="b", data={"orderId": "1"})

    with caplog.at_level(logging.WARNING, logger="backend.services.notifications"):
        assert deliver(failing_notifier, msg) is False

    [record] = [r for r in caplog.records if r.getMessage() == "notification.failed"]
    assert record.order_id == "1"
    assert "FCM unreachable" in record.error


def test_deliver_success(notifier):
    msg = PushMessage(token="tok", title="t", body="b")

    assert deliver(notifier, msg) is True
    assert notifier.sent == [msg]


def test_build_notifier_without_credentials_is_null():
    assert isinstance(build_notifier(Settings()), NullNotifier)
    NullNotifier().send(PushMessage(token="tok", title="t", body="b"))


def test_build_notifier_with_credentials_is_firebase():
    settings = Settings(firebase_service_account_json="{}")

    assert isinstance(build_notifier(settings), FirebaseNotifier)


def test_firebase_notifier_with_bad_credentials_disables_itself(caplog):
    notifier = FirebaseNotifier(Settings(firebase_service_account_json="not json"))

    with caplog.at_level(logging.WARNING, logger="backend.services.notifications"):
        delivered = deliver(notifier, PushMessage(token="tok", title="t", body="b", data={"orderId": "3"}))
        deliver(notifier, PushMessage(token="tok", title="t", body="b", data={"orderId": "3"}))

    assert delivered is False
    init_failures = [r for r in caplog.records if r.getMessage() == "notification.firebase.init_failed"]
    assert len(init_failures) == 1


def test_concurrent_first_sends_initialize_firebase_once(monkeypatch, caplog):
    """
    Deux envois en tâche de fond simultanés, app Firebase pas encore créée :
    une seule initialisation, aucun warning d'échec, les deux notifiers
    obtiennent la même app.
    """
    registry = {}
    init_calls = []

    def fake_get_app(name):
        if name not in registry:
            raise ValueError(f"The default Firebase app does not exist: {name}")
        return registry[name]

    def fake_initialize_app(cred, name):
        time.sleep(0.05)
        if name in registry:
            raise ValueError(f'The Firebase app named "{name}" already exists.')
        init_calls.append(name)
        registry[name] = object()
        return registry[name]

    monkeypatch.setattr(notifications.firebase_admin, "get_app", fake_get_app)
    monkeypatch.setattr(notifications.firebase_admin, "initialize_app", fake_initialize_app)
    monkeypatch.setattr(FirebaseNotifier, "_credential", lambda self: object())

    notifiers = [FirebaseNotifier(Settings(firebase_service_account_json="{}")) for _ in range(2)]
    barrier = threading.Barrier(len(notifiers))

    def first_app(n):
        barrier.wait()
        return n._get_app()

    with caplog.at_level(logging.WARNING, logger="backend.services.notifications"):
        with ThreadPoolExecutor(max_workers=len(notifiers)) as pool:
            apps = list(pool.map(first_app, notifiers))

    assert init_calls == [notifications.FIREBASE_APP_NAME]
    assert apps[0] is apps[1] is not None
    assert not any(n._init_failed for n in notifiers)
    assert "notification.firebase.init_failed" not in caplog.text
