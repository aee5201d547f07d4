"""
Payment Gateway Contract
========================
The capability the settlement engine needs from a card processor: open a
hosted checkout session, read a session back, issue a partial refund against
a captured charge, and turn a signed webhook delivery into an event.

Implementations raise ``GatewayError`` on any processor or transport failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from goalstake.core.paths import GoalAddress

PAYMENT_COMPLETED = "checkout.session.completed"
GOAL_PAYMENT = "goal_payment"


@dataclass(frozen=True)
class SessionMetadata:
    """Identity stamped on a checkout session when it is created."""
    user_id: str
    goal_id: str
    category_id: Optional[str] = None
    payment_type: str = GOAL_PAYMENT

    @classmethod
    def for_goal(cls, goal: GoalAddress) -> "SessionMetadata":
        return cls(user_id=goal.user_id, goal_id=goal.goal_id, category_id=goal.category_id)

    @classmethod
    def from_wire(cls, metadata: Optional[Dict[str, Any]]) -> Optional["SessionMetadata"]:
        """Parse processor metadata (camelCase keys); None if ids are missing."""
        metadata = metadata or {}
        user_id = metadata.get("userId")
        goal_id = metadata.get("goalId")
        if not user_id or not goal_id:
            return None
        return cls(
            user_id=user_id,
            goal_id=goal_id,
            category_id=metadata.get("categoryId") or None,
            payment_type=metadata.get("type", GOAL_PAYMENT),
        )

    def to_wire(self) -> Dict[str, str]:
        return {
            "userId": self.user_id,
            "goalId": self.goal_id,
            "categoryId": self.category_id or "",
            "type": self.payment_type,
        }

    def matches(self, goal: GoalAddress) -> bool:
        return (
            self.user_id == goal.user_id
            and self.goal_id == goal.goal_id
            and (self.category_id or None) == goal.category_id
        )

    @property
    def goal(self) -> GoalAddress:
        return GoalAddress(user_id=self.user_id, goal_id=self.goal_id, category_id=self.category_id)


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


@dataclass(frozen=True)
class SessionStatus:
    session_id: str
    paid: bool
    charge_reference: Optional[str]
    metadata: Optional[SessionMetadata]


@dataclass(frozen=True)
class PaymentEvent:
    event_type: str
    session_id: str
    charge_reference: Optional[str]
    metadata: Optional[SessionMetadata]


@dataclass(frozen=True)
class RefundReceipt:
    refund_id: str
    amount: int
    metadata: Dict[str, str] = field(default_factory=dict)


class PaymentGateway(ABC):
    name: str = "gateway"

    @abstractmethod
    async def create_session(
        self,
        metadata: SessionMetadata,
        amount: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        description: Optional[str] = None,
    ) -> CheckoutSession:
        """Open a hosted checkout for ``amount`` (minor-unit-free currencies: whole units)."""

    @abstractmethod
    async def verify_session(self, session_id: str) -> SessionStatus:
        """Read a session back from the processor."""

    @abstractmethod
    async def refund_partial(
        self,
        charge_reference: str,
        amount: int,
        metadata: Optional[Dict[str, str]] = None,
    ) -> RefundReceipt:
        """Refund ``amount`` of a captured charge."""

    @abstractmethod
    def parse_event(self, payload: bytes, signature_header: Optional[str]) -> Optional[PaymentEvent]:
        """
        Verify and decode a webhook delivery.

        Returns None for event types the engine does not act on.

        Raises:
            ValidationError: On a bad signature or a malformed payload.
        """

    async def close(self) -> None:
        return None
