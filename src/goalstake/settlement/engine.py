"""
Settlement Engine
=================
Commitment lifecycle of a goal:

    NONE --commit--> PENDING --confirm / payment webhook--> LOCKED --settle*--> FULLY_REFUNDED
                     PENDING --clear_pending--> NONE

``commit`` opens a checkout for the stake, ``confirm`` (or the payment
webhook) locks the goal once the processor reports the charge as paid, and
``settle`` refunds a quarter of the stake for every milestone the goal's
ratio has reached that has not been refunded yet.

All writes for one goal run under a per-goal asyncio.Lock and re-read the
goal inside it, so racing confirm/webhook deliveries lock exactly once and
racing settlements never refund a milestone twice.
"""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from loguru import logger

from goalstake.core.config import SettlementConfig
from goalstake.core.exceptions import (
    GatewayError,
    GoalLockedError,
    GoalstakeError,
    PaymentIncompleteError,
    SessionMismatchError,
    ValidationError,
    wrap_gateway_exception,
)
from goalstake.core.models import Goal, GoalState
from goalstake.core.paths import GoalAddress
from goalstake.settlement.gateway import PaymentEvent, PaymentGateway, SessionMetadata
from goalstake.storage.base import DELETE_FIELD
from goalstake.tree.repository import TreeRepository

NOT_ELIGIBLE = "Goal is not eligible for refund"
NOTHING_DUE = "No refund eligible"
ALL_REFUNDS_FAILED = "Refund processing failed"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def refund_per_milestone(stake: int) -> int:
    return stake // 4


def eligible_milestones(ratio: int, refunded: List[int], milestones: Tuple[int, ...]) -> List[int]:
    """Milestones reached by ``ratio`` and not yet refunded, ascending."""
    done = set(refunded)
    return [m for m in sorted(milestones) if m <= ratio and m not in done]


@dataclass(frozen=True)
class CommitResult:
    url: str
    session_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "sessionId": self.session_id}


@dataclass(frozen=True)
class ConfirmResult:
    """``locked`` is True when this call performed the lock."""
    locked: bool
    already_locked: bool = False

    def to_dict(self) -> Dict[str, Any]:
        if self.already_locked:
            return {"success": True, "alreadyLocked": True}
        return {"success": True, "locked": self.locked}


@dataclass(frozen=True)
class ClearResult:
    success: bool
    cleared: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "cleared": self.cleared}


@dataclass(frozen=True)
class SettlementResult:
    refunded: bool
    refunded_milestones: List[int] = field(default_factory=list)
    refund_amount: int = 0
    failed_milestones: List[int] = field(default_factory=list)
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"refunded": self.refunded}
        if self.refunded:
            result["refundedMilestones"] = list(self.refunded_milestones)
            result["refundAmount"] = self.refund_amount
        if self.failed_milestones:
            result["failedMilestones"] = list(self.failed_milestones)
        if self.message:
            result["message"] = self.message
        return result


class SettlementEngine:
    def __init__(
        self,
        repository: TreeRepository,
        gateway: PaymentGateway,
        config: Optional[SettlementConfig] = None,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.repository = repository
        self.gateway = gateway
        self.config = config or SettlementConfig()
        self._clock = clock
        self._locks: "weakref.WeakValueDictionary[GoalAddress, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, goal: GoalAddress) -> asyncio.Lock:
        lock = self._locks.get(goal)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[goal] = lock
        return lock

    async def _call_gateway(self, operation: str, call: Callable[[], Awaitable[Any]], context: Optional[dict] = None):
        try:
            return await call()
        except GoalstakeError:
            raise
        except Exception as e:
            raise wrap_gateway_exception(self.gateway.name, operation, e, context) from e

    async def state(self, goal: GoalAddress) -> GoalState:
        record = await self.repository.get_goal(goal)
        return record.state(self.config.milestones)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def _return_urls(self, goal: GoalAddress, origin: str) -> Tuple[str, str]:
        base = f"{origin.rstrip('/')}/users/{goal.user_id}/payment"
        ids = {"goal_id": goal.goal_id, "category_id": goal.category_id or ""}
        # the processor substitutes {CHECKOUT_SESSION_ID}; it must stay unescaped
        success_url = f"{base}/success?session_id={{CHECKOUT_SESSION_ID}}&{urlencode(ids)}"
        cancel_url = f"{base}/cancel?{urlencode(ids)}"
        return success_url, cancel_url

    async def commit(self, goal: GoalAddress, amount: int, return_origin: Optional[str] = None) -> CommitResult:
        """
        Open a checkout session for staking ``amount`` on ``goal``.

        Raises:
            ValidationError: If ``amount`` is not a positive integer.
            GoalNotFoundError: If the goal does not exist.
            GoalLockedError: If the goal is already locked.
            GatewayError: If the processor call fails (nothing is written).
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("amount", "must be a positive integer", amount)

        async with self._lock_for(goal):
            record = await self.repository.get_goal(goal)
            if record.locked:
                raise GoalLockedError(goal.goal_id, "commit")

            success_url, cancel_url = self._return_urls(goal, return_origin or self.config.return_origin)
            session = await self._call_gateway(
                "create_session",
                lambda: self.gateway.create_session(
                    SessionMetadata.for_goal(goal),
                    amount,
                    self.config.currency,
                    success_url,
                    cancel_url,
                    description=record.title,
                ),
                goal.to_dict(),
            )
            await self.repository.merge_goal_fields(goal, {"stake": amount, "session_id": session.session_id})

        logger.info(f"Commit opened for goal '{goal.goal_id}': stake={amount}, session={session.session_id}")
        return CommitResult(url=session.url, session_id=session.session_id)

    # ------------------------------------------------------------------
    # Confirm / webhook
    # ------------------------------------------------------------------

    async def confirm(self, goal: GoalAddress, session_id: str) -> ConfirmResult:
        """
        Verify a checkout session with the processor and lock the goal.

        Raises:
            PaymentIncompleteError: If the session is not paid.
            SessionMismatchError: If the session was opened for another goal.
            GoalNotFoundError: If the goal does not exist.
        """
        if not isinstance(session_id, str) or not session_id:
            raise ValidationError("session_id", "must be a non-empty string", session_id)

        status = await self._call_gateway(
            "verify_session", lambda: self.gateway.verify_session(session_id), {"session_id": session_id}
        )
        if not status.paid:
            raise PaymentIncompleteError(session_id)
        if status.metadata is None or not status.metadata.matches(goal):
            raise SessionMismatchError(session_id, context=goal.to_dict())

        return await self._lock_goal(goal, status.charge_reference, session_id)

    async def handle_payment_completed(self, event: PaymentEvent) -> ConfirmResult:
        """Lock the goal named by a verified payment-completed webhook event."""
        if event.metadata is None:
            raise ValidationError("metadata", "payment event carries no goal metadata", event.session_id)
        return await self._lock_goal(event.metadata.goal, event.charge_reference, event.session_id)

    async def _lock_goal(self, goal: GoalAddress, charge_reference: Optional[str], session_id: str) -> ConfirmResult:
        async with self._lock_for(goal):
            record = await self.repository.get_goal(goal)
            if record.locked:
                logger.info(f"Goal '{goal.goal_id}' already locked (session {session_id})")
                return ConfirmResult(locked=False, already_locked=True)
            if record.stake is None:
                logger.warning(f"Locking goal '{goal.goal_id}' with no recorded stake")
            await self.repository.merge_goal_fields(goal, {
                "locked": True,
                "charge_reference": charge_reference,
                "session_id": session_id,
                "payment_completed_at": self._clock(),
            })
        logger.info(f"Goal '{goal.goal_id}' locked (charge {charge_reference})")
        return ConfirmResult(locked=True)

    # ------------------------------------------------------------------
    # Clear pending
    # ------------------------------------------------------------------

    async def clear_pending(self, goal: GoalAddress) -> ClearResult:
        """Abandon an unpaid commitment. No-op for locked or never-committed goals."""
        async with self._lock_for(goal):
            record = await self.repository.get_goal(goal)
            if record.state(self.config.milestones) is not GoalState.PENDING:
                return ClearResult(success=True, cleared=False)
            await self.repository.merge_goal_fields(goal, {"stake": DELETE_FIELD, "session_id": DELETE_FIELD})
        logger.info(f"Pending commitment cleared for goal '{goal.goal_id}'")
        return ClearResult(success=True, cleared=True)

    # ------------------------------------------------------------------
    # Settle
    # ------------------------------------------------------------------

    async def settle(self, goal: GoalAddress) -> SettlementResult:
        """
        Refund every reached, unrefunded milestone of a locked goal.

        Milestones are processed in ascending order. A refund that fails at
        the processor is skipped and reported in ``failed_milestones``; the
        next settlement retries it.
        """
        async with self._lock_for(goal):
            record = await self.repository.get_goal(goal)
            if not record.is_committed:
                return SettlementResult(refunded=False, message=NOT_ELIGIBLE)

            due = eligible_milestones(record.ratio, record.refunded_milestones, self.config.milestones)
            if not due:
                return SettlementResult(refunded=False, message=NOTHING_DUE)

            amount = refund_per_milestone(record.stake)
            succeeded, failed = await self._refund_milestones(goal, record, due, amount)

            if succeeded:
                merged = sorted(set(record.refunded_milestones) | set(succeeded))
                await self.repository.merge_goal_fields(goal, {
                    "refunded_milestones": merged,
                    "last_refunded_at": self._clock(),
                })

        if not succeeded:
            return SettlementResult(refunded=False, failed_milestones=failed, message=ALL_REFUNDS_FAILED)
        logger.info(
            f"Goal '{goal.goal_id}' settled milestones {succeeded} "
            f"({amount * len(succeeded)} refunded, {len(failed)} failed)"
        )
        return SettlementResult(
            refunded=True,
            refunded_milestones=succeeded,
            refund_amount=amount * len(succeeded),
            failed_milestones=failed,
        )

    async def _refund_milestones(
        self, goal: GoalAddress, record: Goal, due: List[int], amount: int
    ) -> Tuple[List[int], List[int]]:
        succeeded: List[int] = []
        failed: List[int] = []
        for milestone in due:
            if amount == 0:
                # stakes under 4 units have nothing to refund per milestone
                succeeded.append(milestone)
                continue
            metadata = {
                "userId": goal.user_id,
                "goalId": goal.goal_id,
                "categoryId": goal.category_id or "",
                "milestone": str(milestone),
            }
            try:
                await self._call_gateway(
                    "refund_partial",
                    lambda: self.gateway.refund_partial(record.charge_reference, amount, metadata),
                    {"milestone": milestone},
                )
            except GatewayError as e:
                logger.error(f"Refund for goal '{goal.goal_id}' milestone {milestone}% failed: {e}")
                failed.append(milestone)
                continue
            succeeded.append(milestone)
        return succeeded, failed

    async def on_goal_ratio_changed(self, goal: GoalAddress, ratio: int) -> None:
        """Ratio listener: settle committed goals as their ratio moves."""
        if not self.config.auto_settle:
            return
        record = await self.repository.find_goal(goal)
        if record is None or not record.is_committed:
            return
        if eligible_milestones(ratio, record.refunded_milestones, self.config.milestones):
            await self.settle(goal)
