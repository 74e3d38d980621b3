"""Payment confirmation collaborators.

The processor only needs a yes/no answer for a pending transaction.
Gateway adapters (Midtrans, QRIS, ...) live outside this package and
implement `PaymentConfirmer`.
"""

from dataclasses import dataclass
from typing import Protocol

from .models import Transaction


@dataclass(frozen=True)
class PaymentOutcome:
    """Result of confirming a payment."""

    approved: bool
    reason: str | None = None

    @classmethod
    def success(cls) -> "PaymentOutcome":
        return cls(approved=True)

    @classmethod
    def declined(cls, reason: str) -> "PaymentOutcome":
        return cls(approved=False, reason=reason)


class PaymentConfirmer(Protocol):
    """Confirms (or declines) payment for a pending transaction."""

    async def confirm(self, transaction: Transaction) -> PaymentOutcome: ...


class SimulatedPaymentConfirmer:
    """Approves every payment.

    Stand-in used until a real gateway adapter is configured.
    """

    async def confirm(self, transaction: Transaction) -> PaymentOutcome:  # noqa: ARG002
        return PaymentOutcome.success()
