"""
Custom Exception Hierarchy

Every failure raised by the escrow ledger is one of two shapes:
``ValidationException`` (malformed input, with per-field messages) or a
``DomainError`` subclass (a rule of the ledger was violated, tagged with a
``kind``). Both render through ``AppException.to_dict`` for the admin API.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    ALREADY_EXISTS = "ERR_1003"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"

    # Booking errors (2xxx)
    BOOKING_NOT_FOUND = "ERR_2001"
    BOOKING_INVALID_STATE = "ERR_2002"
    BOOKING_ALREADY_RESOLVED = "ERR_2003"

    # Wallet errors (4xxx)
    WALLET_NOT_FOUND = "ERR_4001"
    INSUFFICIENT_FUNDS = "ERR_4002"
    INVALID_AMOUNT = "ERR_4003"
    WALLET_ALREADY_ACTIVE = "ERR_4004"

    # Ledger errors (6xxx)
    TRANSACTION_NOT_FOUND = "ERR_6001"
    INVALID_TRANSITION = "ERR_6002"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        fields: dict[str, str] | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        self.fields = dict(fields or {})
        if field:
            self.fields.setdefault(field, message)
        if self.fields:
            self.details["fields"] = self.fields


class NotFoundException(AppException):
    """Raised when a requested booking, wallet or transaction is missing"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class DomainError(AppException):
    """Base class for ledger rule violations; ``kind`` names the variant"""

    kind = "domain_error"

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 409,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )
        self.details["kind"] = self.kind


class InvalidStateError(DomainError):
    """Booking is not in the state the operation requires"""

    kind = "invalid_state"

    def __init__(self, booking_id: int, current_status: str, required_status: str):
        super().__init__(
            message=(
                f"Booking {booking_id} has status '{current_status}', "
                f"required '{required_status}'"
            ),
            error_code=ErrorCode.BOOKING_INVALID_STATE,
            details={
                "booking_id": booking_id,
                "current_status": current_status,
                "required_status": required_status,
            }
        )


class AlreadyResolvedError(DomainError):
    """The booking or transaction was already settled by another call"""

    kind = "already_resolved"

    def __init__(self, resource: str, identifier: int, current_status: str | None = None):
        super().__init__(
            message=f"{resource} {identifier} is already resolved",
            error_code=ErrorCode.BOOKING_ALREADY_RESOLVED,
            details={
                "resource": resource,
                "identifier": identifier,
                "current_status": current_status,
            }
        )


class InvalidTransitionError(DomainError):
    """Compare-and-swap status transition found an unexpected status"""

    kind = "invalid_transition"

    def __init__(self, transaction_id: int, current_status: str, expected: list[str], target: str):
        super().__init__(
            message=(
                f"Transaction {transaction_id} cannot move from '{current_status}' "
                f"to '{target}'"
            ),
            error_code=ErrorCode.INVALID_TRANSITION,
            details={
                "transaction_id": transaction_id,
                "current_status": current_status,
                "expected_statuses": expected,
                "target_status": target,
            }
        )
        self.transaction_id = transaction_id
        self.current_status = current_status


class InsufficientFundsError(DomainError):
    """A debit would drive a non-negative wallet field below zero"""

    kind = "insufficient_funds"

    def __init__(self, wallet_id: int | None, field: str, current: int, required: int):
        super().__init__(
            message=f"Insufficient funds in wallet {wallet_id}",
            error_code=ErrorCode.INSUFFICIENT_FUNDS,
            status_code=400,
            details={
                "wallet_id": wallet_id,
                "field": field,
                "current": current,
                "required": required,
            }
        )


class MissingWalletError(DomainError):
    """Required wallet is absent and cannot be created automatically"""

    kind = "missing_wallet"

    def __init__(self, owner: str, reason: str = "no active wallet"):
        super().__init__(
            message=f"Wallet not found for {owner}: {reason}",
            error_code=ErrorCode.WALLET_NOT_FOUND,
            status_code=404,
            details={"owner": owner, "reason": reason}
        )


class WalletAlreadyActiveError(DomainError):
    """A second active wallet would be created for the same owner"""

    kind = "wallet_already_active"

    def __init__(self, owner: str, wallet_id: int):
        super().__init__(
            message=f"{owner} already has active wallet {wallet_id}",
            error_code=ErrorCode.WALLET_ALREADY_ACTIVE,
            details={"owner": owner, "wallet_id": wallet_id}
        )
