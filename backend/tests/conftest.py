import os
from decimal import Decimal

import pytest
from sqlalchemy import select

from backend.app.core.config import Settings
from backend.app.db.base import Base
from backend.app.db.introspection import SchemaCapabilities
from backend.app.db.models.core_types import OrderStatus
from backend.app.db.models.models_v1 import Order, OrderItem, Product
from backend.app.db.session import create_db_engine, create_session_factory
from backend.services.notifications import PushMessage
from backend.services.orders import generate_order_code
from backend.services.transitions import OrderTransitionEngine


class RecordingNotifier:
    def __init__(self):
        self.sent: list[PushMessage] = []

    def send(self, message: PushMessage) -> None:
        self.sent.append(message)


class FailingNotifier:
    def send(self, message: PushMessage) -> None:
        raise ConnectionError("FCM unreachable")


@pytest.fixture
def settings(tmp_path) -> Settings:
    """
    Base SQLite jetable par test (fichier, pas :memory: : les tests de
    concurrence ouvrent plusieurs connexions).
    TEST_DATABASE_URL permet de rejouer la suite sur PostgreSQL.
    """
    url = os.getenv("TEST_DATABASE_URL") or f"sqlite:///{tmp_path / 'store.db'}"
    return Settings(database_url=url, db_lock_timeout_ms=30_000)


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings)
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def capabilities(engine) -> SchemaCapabilities:
    return SchemaCapabilities.resolve(engine)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()


@pytest.fixture
def transition_engine(session_factory, capabilities, notifier) -> OrderTransitionEngine:
    return OrderTransitionEngine(session_factory, capabilities, notifier=notifier)


# ---------- Factories ----------
# Sessions courtes : aucune transaction ne doit rester ouverte pendant
# qu'une transition tourne (SQLite verrouille toute la base).
@pytest.fixture
def make_product(session_factory):
    def _make(name="Rice 5kg", stock=10, price=Decimal("250.00")) -> int:
        with session_factory() as db, db.begin():
            p = Product(name=name, stock=stock, price=price)
            db.add(p)
            db.flush()
            return int(p.id)

    return _make


@pytest.fixture
def make_order(session_factory):
    def _make(
        items=(),
        *,
        device_id="device-A",
        status=OrderStatus.pending,
        fcm_token=None,
        total_price=Decimal("100.00"),
    ) -> int:
        with session_factory() as db, db.begin():
            order = Order(
                order_code=generate_order_code(),
                name="Juan Dela Cruz",
                total_price=total_price,
                net_total=total_price,
                status=status,
                device_id=device_id,
                fcm_token=fcm_token,
            )
            db.add(order)
            db.flush()
            for product_id, qty in items:
                db.add(OrderItem(order_id=order.id, product_id=product_id, quantity=qty, unit_price=Decimal("1.00")))
            return int(order.id)

    return _make


@pytest.fixture
def stock_of(session_factory):
    def _stock(product_id: int) -> int:
        with session_factory() as db, db.begin():
            return db.execute(select(Product.stock).where(Product.id == product_id)).scalar_one()

    return _stock


@pytest.fixture
def order_row(session_factory):
    def _row(order_id: int):
        with session_factory() as db, db.begin():
            return db.execute(
                select(Order.status, Order.payment, Order.ref, Order.device_id, Order.fcm_token)
                .where(Order.id == order_id)
            ).one()

    return _row
