from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import inspect
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)


def has_table(bind: Engine | Connection, table: str) -> bool:
    return inspect(bind).has_table(table)


def has_column(bind: Engine | Connection, table: str, column: str) -> bool:
    inspector = inspect(bind)
    if not inspector.has_table(table):
        return False
    return any(col["name"] == column for col in inspector.get_columns(table))


@dataclass(frozen=True)
class SchemaCapabilities:
    """
    Colonnes / tables optionnelles du schéma, résolues UNE fois au démarrage.

    Le moteur de transitions et le store les reçoivent en configuration :
    aucune requête information_schema par requête HTTP.
    """

    has_device_id: bool = True
    has_fcm_token: bool = True
    has_order_items: bool = True

    @classmethod
    def resolve(cls, bind: Engine | Connection) -> "SchemaCapabilities":
        inspector = inspect(bind)
        order_columns: set[str] = set()
        if inspector.has_table("orders"):
            order_columns = {col["name"] for col in inspector.get_columns("orders")}

        caps = cls(
            has_device_id="device_id" in order_columns,
            has_fcm_token="fcm_token" in order_columns,
            has_order_items=inspector.has_table("order_items"),
        )
        logger.info(
            "schema.capabilities",
            extra={
                "has_device_id": caps.has_device_id,
                "has_fcm_token": caps.has_fcm_token,
                "has_order_items": caps.has_order_items,
            },
        )
        return caps
