"""Membership error taxonomy.

Every error carries an HTTP `status_code` and a stable `code` so clients
can tell "already processed" apart from "try again". Purchase errors
that happen after a transaction was written also carry its
`transaction_id`.
"""

from uuid import UUID


class MembershipError(Exception):
    """Base membership error."""

    status_code = 400

    def __init__(
        self,
        message: str,
        code: str = "membership_error",
        step: str | None = None,
        transaction_id: UUID | None = None,
    ):
        self.message = message
        self.code = code
        self.step = step
        self.transaction_id = transaction_id
        super().__init__(message)


class UnauthorizedError(MembershipError):
    """No authenticated user."""

    status_code = 401

    def __init__(self, message: str = "User not found / not logged in"):
        super().__init__(message, "unauthorized")


class MembershipValidationError(MembershipError):
    """Malformed purchase request."""

    def __init__(self, message: str):
        super().__init__(message, "validation_error")


class ProfileNotFoundError(MembershipError):
    """Profile does not exist."""

    status_code = 404

    def __init__(self, message: str = "Profile not found"):
        super().__init__(message, "profile_not_found")


class TransactionNotFoundError(MembershipError):
    """Transaction does not exist (or is not visible to the caller)."""

    status_code = 404

    def __init__(self, message: str = "Transaction not found"):
        super().__init__(message, "transaction_not_found")


class StoreError(MembershipError):
    """Persistence failure, tagged with the step that failed."""

    def __init__(
        self,
        message: str,
        step: str,
        transaction_id: UUID | None = None,
    ):
        super().__init__(message, "store_error", step, transaction_id)


class ProfileUpdateError(MembershipError):
    """Transaction succeeded but the profile upgrade did not persist.

    The payment is recorded; only the profile update must be retried
    (see TransactionProcessor.reapply_transaction).
    """

    def __init__(self, transaction_id: UUID, message: str | None = None):
        super().__init__(
            message or "Payment recorded but membership update failed",
            "profile_update_failed",
            "update_profile",
            transaction_id,
        )


class PaymentFailedError(MembershipError):
    """Payment confirmation was declined."""

    def __init__(self, transaction_id: UUID, reason: str | None = None):
        super().__init__(
            reason or "Payment was declined",
            "payment_failed",
            "confirm_payment",
            transaction_id,
        )


class TransactionStateError(MembershipError):
    """Transaction already left `pending`."""

    status_code = 409

    def __init__(self, transaction_id: UUID, message: str | None = None):
        super().__init__(
            message or "Transaction already processed",
            "transaction_already_processed",
            "update_transaction",
            transaction_id,
        )


class ConcurrentUpdateError(MembershipError):
    """Compare-and-swap lost against a concurrent writer."""

    status_code = 409

    def __init__(self, message: str = "Profile was modified concurrently"):
        super().__init__(message, "concurrent_update")


class SweepError(MembershipError):
    """Expiry sweep could not fetch its candidates."""

    status_code = 500

    def __init__(self, message: str = "Failed to fetch expired subscriptions"):
        super().__init__(message, "sweep_failed", "fetch_expired")
