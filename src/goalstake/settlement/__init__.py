"""
goalstake Settlement Layer
==========================

Modules:
    gateway: PaymentGateway contract and its value types
    stripe_gateway: Stripe REST adapter (aiohttp) with webhook signature checks
    engine: Commit / confirm / clear-pending / settle state machine
"""

from .gateway import (
    CheckoutSession,
    PaymentEvent,
    PaymentGateway,
    RefundReceipt,
    SessionMetadata,
    SessionStatus,
)
from .engine import (
    ClearResult,
    CommitResult,
    ConfirmResult,
    SettlementEngine,
    SettlementResult,
)

__all__ = [
    "CheckoutSession",
    "PaymentEvent",
    "PaymentGateway",
    "RefundReceipt",
    "SessionMetadata",
    "SessionStatus",
    "ClearResult",
    "CommitResult",
    "ConfirmResult",
    "SettlementEngine",
    "SettlementResult",
]
