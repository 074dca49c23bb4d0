# healthnet/core/exceptions.py
from typing import Any

from fastapi import HTTPException, status


class DomainError(HTTPException):
    """
    Base class for business-rule failures.

    Services raise these; the handler registered in main.py renders them as
    {"status": "error", "code", "message", "details"}.
    """

    code = "domain_error"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(status_code=self.status_code_default, detail=message)
        self.message = message
        self.details = details or {}


class NotFound(DomainError):
    code = "not_found"
    status_code_default = status.HTTP_404_NOT_FOUND


class Unavailable(DomainError):
    """Drug is inactive, out of stock or no longer in the catalog."""

    code = "unavailable"


class InsufficientStock(DomainError):
    code = "insufficient_stock"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(
        self,
        drug_name: str,
        requested: int,
        available: int,
    ):
        super().__init__(
            f"Insufficient stock for '{drug_name}'. Only {available} available",
            details={
                "drug_name": drug_name,
                "requested": requested,
                "available": available,
            },
        )


class InvalidTransition(DomainError):
    code = "invalid_transition"

    def __init__(self, current: str, target: str, message: str | None = None):
        super().__init__(
            message or f"Cannot transition from {current} to {target}",
            details={"current": current, "target": target},
        )


class AlreadyPaid(DomainError):
    code = "already_paid"

    def __init__(self, order_number: str):
        super().__init__(
            "Order has already been paid",
            details={"order_number": order_number},
        )


class PaymentNotFound(DomainError):
    code = "payment_not_found"
    status_code_default = status.HTTP_404_NOT_FOUND

    def __init__(self, reference: str | None = None):
        super().__init__("Payment not found", details={"reference": reference})


class InvalidSignature(DomainError):
    code = "invalid_signature"
    status_code_default = status.HTTP_401_UNAUTHORIZED

    def __init__(self):
        super().__init__("Invalid signature")


class GatewayError(DomainError):
    """Communication failure, timeout or explicit rejection by the payment gateway."""

    code = "gateway_error"
    status_code_default = status.HTTP_502_BAD_GATEWAY


class OwnershipViolation(DomainError):
    code = "ownership_violation"
    status_code_default = status.HTTP_403_FORBIDDEN

    def __init__(self, resource: str):
        super().__init__(
            f"You do not have access to this {resource}",
            details={"resource": resource},
        )


class GatewayRejected(GatewayError):
    """The gateway answered but refused the request (status false or 4xx)."""

    code = "gateway_rejected"
