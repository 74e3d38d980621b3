"""Membership module.

Premium membership purchases and entitlement:
- MembershipType: FREE, PREMIUM
- TransactionStatus: PENDING, SUCCESS, FAILED
- TransactionProcessor records purchases and upgrades profiles
- ExpirySweeper downgrades memberships past their expiry
- EntitlementGate answers premium access checks for content routes
"""

from .dependencies import PremiumUser, require_premium_access
from .exceptions import MembershipError
from .gate import AccessDecision, EntitlementGate
from .models import MembershipType, Profile, Transaction, TransactionStatus
from .router import membership_router, subscriptions_router, transactions_router
from .service import PurchaseResult, TransactionProcessor
from .store import EntitlementStore
from .sweeper import ExpirySweeper, SweepResult


__all__ = [
    "AccessDecision",
    "EntitlementGate",
    "EntitlementStore",
    "ExpirySweeper",
    "MembershipError",
    "MembershipType",
    "PremiumUser",
    "Profile",
    "PurchaseResult",
    "SweepResult",
    "Transaction",
    "TransactionProcessor",
    "TransactionStatus",
    "membership_router",
    "require_premium_access",
    "subscriptions_router",
    "transactions_router",
]
