"""Error taxonomy for the payment reconciliation core."""

from fastapi import status


class PaymentError(Exception):
    """Base exception for payment service errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(PaymentError):
    """Missing or invalid input, rejected before any external call."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class NotFoundError(PaymentError):
    """Referenced student, room, bill, ledger entry or intent does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class AlreadyPaidError(PaymentError):
    """The payment target is already settled."""

    def __init__(self, message: str = "This bill has already been paid") -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class DuplicateInFlightError(PaymentError):
    """A payment for the same target is already in progress."""

    def __init__(self, message: str = "A payment is already in progress for this bill") -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class SignatureInvalidError(PaymentError):
    """Gateway callback failed signature or freshness verification."""

    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(message, status.HTTP_401_UNAUTHORIZED)


class GatewayUnavailableError(PaymentError):
    """Outbound gateway call failed. No local state was changed; safe to retry."""

    def __init__(self, message: str, status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE) -> None:
        super().__init__(message, status_code)


class GatewayNotConfiguredError(GatewayUnavailableError):
    """Gateway credentials are missing."""

    def __init__(self, message: str = "Payment service is not configured. Please contact administrator.") -> None:
        super().__init__(message)


class AllocationError(PaymentError):
    """Fee schedule missing or term balances inconsistent with the payment."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY)
