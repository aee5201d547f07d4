"""
Goal Tree Records
=================
Category, Goal, Step and Todo records as they live in the document store.

Two document schemas exist. Current documents are snake_case and carry
``schema_version: 2``. Legacy documents use the older camelCase names
(``betAmount``, ``isLocked``, ``achieveMentRatio`` ...). Records resolve both
forms once, in ``from_document``; ``upgrade_changes`` produces the merge that
rewrites a legacy document to the current schema in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple

from goalstake.core.config import MILESTONES
from goalstake.core.exceptions import DataCorruptionError
from goalstake.storage.base import DELETE_FIELD, Document


class SchemaVersion(IntEnum):
    LEGACY = 1
    CURRENT = 2


class GoalState(Enum):
    """Commitment lifecycle of a goal."""
    NONE = "none"
    PENDING = "pending"
    LOCKED = "locked"
    FULLY_REFUNDED = "fully_refunded"


class DocumentRecord:
    """Mixin resolving legacy field names at the storage boundary."""

    # legacy name -> current name
    LEGACY_FIELDS: ClassVar[Dict[str, str]] = {}

    @classmethod
    def detect_schema(cls, doc: Document) -> SchemaVersion:
        if doc.get("schema_version") == SchemaVersion.CURRENT:
            return SchemaVersion.CURRENT
        if any(key in doc for key in cls.LEGACY_FIELDS):
            return SchemaVersion.LEGACY
        return SchemaVersion.CURRENT

    @classmethod
    def normalize(cls, doc: Document) -> Document:
        """Return ``doc`` keyed by current field names."""
        if cls.detect_schema(doc) is SchemaVersion.CURRENT:
            return dict(doc)
        normalized = {k: v for k, v in doc.items() if k not in cls.LEGACY_FIELDS}
        for legacy, current in cls.LEGACY_FIELDS.items():
            if legacy in doc and current not in normalized:
                normalized[current] = doc[legacy]
        return normalized

    @classmethod
    def upgrade_changes(cls, doc: Document) -> Document:
        """Merge payload migrating a legacy document; {} when already current."""
        if cls.detect_schema(doc) is SchemaVersion.CURRENT:
            return {}
        changes: Document = {}
        for legacy, current in cls.LEGACY_FIELDS.items():
            if legacy in doc:
                changes[legacy] = DELETE_FIELD
                changes.setdefault(current, doc[legacy])
        changes["schema_version"] = int(SchemaVersion.CURRENT)
        return changes


@dataclass
class Todo(DocumentRecord):
    id: str
    task: str
    is_finished: bool = False
    weight: Optional[float] = None

    LEGACY_FIELDS: ClassVar[Dict[str, str]] = {"isFinished": "is_finished"}

    @classmethod
    def from_document(cls, doc_id: str, doc: Document) -> "Todo":
        data = cls.normalize(doc)
        return cls(
            id=doc_id,
            task=str(data.get("task", "")),
            is_finished=bool(data.get("is_finished", False)),
            weight=data.get("weight"),
        )

    def to_document(self) -> Document:
        doc: Document = {
            "task": self.task,
            "is_finished": self.is_finished,
            "schema_version": int(SchemaVersion.CURRENT),
        }
        if self.weight is not None:
            doc["weight"] = self.weight
        return doc


@dataclass
class Step(DocumentRecord):
    id: str
    title: str
    steps: List["Step"] = field(default_factory=list)
    todos: List[Todo] = field(default_factory=list)

    @classmethod
    def from_document(cls, doc_id: str, doc: Document) -> "Step":
        return cls(id=doc_id, title=str(doc.get("title", "")))

    def to_document(self) -> Document:
        return {"title": self.title, "schema_version": int(SchemaVersion.CURRENT)}


@dataclass
class Goal(DocumentRecord):
    id: str
    title: str
    ratio: int = 0
    stake: Optional[int] = None
    locked: bool = False
    charge_reference: Optional[str] = None
    session_id: Optional[str] = None
    refunded_milestones: List[int] = field(default_factory=list)
    payment_completed_at: Optional[str] = None
    last_refunded_at: Optional[str] = None

    LEGACY_FIELDS: ClassVar[Dict[str, str]] = {
        "betAmount": "stake",
        "isLocked": "locked",
        "paymentIntentId": "charge_reference",
        "paymentSessionId": "session_id",
        "refundedPercentages": "refunded_milestones",
        "paymentCompletedAt": "payment_completed_at",
        "lastRefundedAt": "last_refunded_at",
    }

    @classmethod
    def from_document(cls, doc_id: str, doc: Document) -> "Goal":
        data = cls.normalize(doc)
        try:
            ratio = int(data.get("ratio") or 0)
            stake = data.get("stake")
            stake = int(stake) if stake is not None else None
            refunded = sorted({int(m) for m in data.get("refunded_milestones") or []})
        except (TypeError, ValueError) as exc:
            raise DataCorruptionError(doc_id, f"Malformed goal document ({exc})") from exc
        return cls(
            id=doc_id,
            title=str(data.get("title", "")),
            ratio=ratio,
            stake=stake,
            locked=bool(data.get("locked", False)),
            charge_reference=data.get("charge_reference"),
            session_id=data.get("session_id"),
            refunded_milestones=refunded,
            payment_completed_at=data.get("payment_completed_at"),
            last_refunded_at=data.get("last_refunded_at"),
        )

    def to_document(self) -> Document:
        doc: Document = {
            "title": self.title,
            "ratio": self.ratio,
            "locked": self.locked,
            "refunded_milestones": list(self.refunded_milestones),
            "schema_version": int(SchemaVersion.CURRENT),
        }
        optional = {
            "stake": self.stake,
            "charge_reference": self.charge_reference,
            "session_id": self.session_id,
            "payment_completed_at": self.payment_completed_at,
            "last_refunded_at": self.last_refunded_at,
        }
        doc.update({k: v for k, v in optional.items() if v is not None})
        return doc

    @property
    def is_committed(self) -> bool:
        """Locked with a stake and a capture reference: eligible for settlement."""
        return self.locked and bool(self.stake) and bool(self.charge_reference)

    def state(self, milestones: Tuple[int, ...] = MILESTONES) -> GoalState:
        if self.locked:
            if set(milestones) <= set(self.refunded_milestones):
                return GoalState.FULLY_REFUNDED
            return GoalState.LOCKED
        if self.stake is not None or self.session_id is not None:
            return GoalState.PENDING
        return GoalState.NONE


@dataclass
class Category(DocumentRecord):
    id: str
    achievement_ratio: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    LEGACY_FIELDS: ClassVar[Dict[str, str]] = {"achieveMentRatio": "achievement_ratio"}

    @classmethod
    def from_document(cls, doc_id: str, doc: Document) -> "Category":
        data = cls.normalize(doc)
        ratio = data.pop("achievement_ratio", 0)
        data.pop("schema_version", None)
        return cls(id=doc_id, achievement_ratio=int(ratio or 0), extra=data)


@dataclass
class GoalTree:
    """A goal with its fully materialized steps and todos."""
    goal: Goal
    steps: List[Step] = field(default_factory=list)
    todos: List[Todo] = field(default_factory=list)

    def iter_steps(self) -> Iterator[Step]:
        stack = list(reversed(self.steps))
        while stack:
            step = stack.pop()
            yield step
            stack.extend(reversed(step.steps))

    def iter_todos(self) -> Iterator[Todo]:
        yield from self.todos
        for step in self.iter_steps():
            yield from step.todos

    @property
    def step_count(self) -> int:
        return sum(1 for _ in self.iter_steps())
