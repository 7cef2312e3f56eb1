"""Domain exceptions for the order / payment / stock core.

Services raise these; `app.main` maps every `CommerceError` to an HTTP
response using its `status_code` and `detail`.
"""

import uuid
from decimal import Decimal
from typing import Any


class CommerceError(Exception):
    """Base exception for all domain errors."""

    status_code: int = 400

    def __init__(self, message: str, detail: Any = None):
        self.message = message
        self.detail = detail if detail is not None else message
        super().__init__(message)


class NotFoundError(CommerceError):
    """Raised when a referenced entity does not exist (or is not visible)."""

    status_code = 404

    def __init__(self, entity: str, key: Any = None):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found")


class ValidationFailedError(CommerceError):
    """Raised before any mutation when input cannot be accepted."""

    status_code = 400

    def __init__(self, message: str, items: list[dict[str, str]] | None = None):
        self.items = items or []
        detail: Any = message
        if self.items:
            detail = {"message": message, "items": self.items}
        super().__init__(message, detail)


class InsufficientStockError(CommerceError):
    """Raised when a product cannot cover the requested quantity."""

    status_code = 409

    def __init__(self, product_id: uuid.UUID, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock (have {available}, requested {requested})",
            {
                "message": "Insufficient stock",
                "product_id": str(product_id),
                "available": available,
                "requested": requested,
            },
        )


class InsufficientBalanceError(CommerceError):
    """Raised when a buyer's balance cannot cover an order."""

    status_code = 402

    def __init__(self, balance: Decimal, required: Decimal):
        self.balance = balance
        self.required = required
        self.shortage = required - balance
        super().__init__(
            "Insufficient balance",
            {
                "message": "Insufficient balance",
                "current_balance": str(balance),
                "required_amount": str(required),
                "shortage": str(self.shortage),
            },
        )


class IllegalTransitionError(CommerceError):
    """Raised for a state change the workflow does not allow."""

    status_code = 409

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Invalid {entity} transition: {current} -> {target}")


class PaymentNotAllowedError(CommerceError):
    """Raised when an order is not in a payable state."""

    status_code = 400


class SignatureError(CommerceError):
    """Raised when a webhook hash / signature does not verify."""

    status_code = 401


class ExternalServiceError(CommerceError):
    """Raised when the card gateway or carrier fails or times out."""

    status_code = 502

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(
            f"{service} request failed: {message}",
            f"{service} is unavailable, please try again later",
        )
