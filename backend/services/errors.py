"""
Erreurs métier du backend.

Toutes les erreurs dérivent de StoreError : un ``kind`` stable pour le
traitement programmatique (mapping HTTP), un message lisible, et des données
de contexte.
"""

from __future__ import annotations

import enum
from decimal import Decimal
from typing import Any


class ErrorKind(str, enum.Enum):
    validation = "VALIDATION"
    forbidden = "FORBIDDEN"
    not_found = "NOT_FOUND"
    no_op = "NO_OP"
    transaction_failed = "TRANSACTION_FAILED"


class StoreError(Exception):
    kind: ErrorKind = ErrorKind.validation
    default_message = "Invalid request"

    def __init__(self, message: str | None = None, **data: Any) -> None:
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "data": {
                k: str(v) if isinstance(v, Decimal) else v
                for k, v in self.data.items()
            },
        }


class InvalidInput(StoreError):
    kind = ErrorKind.validation
    default_message = "Invalid request"


class AccessDenied(StoreError):
    kind = ErrorKind.forbidden
    default_message = "Access denied. This order belongs to a different device."


class NotFound(StoreError):
    kind = ErrorKind.not_found
    default_message = "Order not found"


class NothingToUpdate(StoreError):
    kind = ErrorKind.no_op
    default_message = "No update fields"


class TransactionFailed(StoreError):
    kind = ErrorKind.transaction_failed
    default_message = "Transaction failed"
