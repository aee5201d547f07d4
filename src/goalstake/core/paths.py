"""
Storage Path Scheme
===================
Addresses for goals and tree nodes, and their mapping onto the hierarchical
store's alternating collection/document segments.

Current layout:
    users/{uid}/category/{categoryId}/goals/{goalId}[/steps/{stepId}]*[/todo/{todoId}]

Legacy layout (goals stored directly under the user, no category):
    users/{uid}/goals/{goalId}/steps/{stepId}/subStep/{subStepId}...
"""

from dataclasses import dataclass
from typing import Optional, Tuple

StorePath = Tuple[str, ...]

USERS = "users"
CATEGORY = "category"
GOALS = "goals"
STEPS = "steps"
LEGACY_SUBSTEPS = "subStep"
TODOS = "todo"


@dataclass(frozen=True)
class GoalAddress:
    """Locates one goal. ``category_id=None`` selects the legacy layout."""
    user_id: str
    goal_id: str
    category_id: Optional[str] = None

    @property
    def is_legacy(self) -> bool:
        return self.category_id is None

    def node(self, *step_ids: str) -> "NodeAddress":
        return NodeAddress(goal=self, step_ids=tuple(step_ids))

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "category_id": self.category_id, "goal_id": self.goal_id}


@dataclass(frozen=True)
class NodeAddress:
    """A goal followed by zero or more step ids, root first."""
    goal: GoalAddress
    step_ids: Tuple[str, ...] = ()

    @property
    def is_goal(self) -> bool:
        return not self.step_ids

    @property
    def depth(self) -> int:
        return len(self.step_ids)

    @property
    def node_id(self) -> str:
        return self.step_ids[-1] if self.step_ids else self.goal.goal_id

    @property
    def parent(self) -> "NodeAddress":
        if self.is_goal:
            raise ValueError("A goal node has no parent step")
        return NodeAddress(goal=self.goal, step_ids=self.step_ids[:-1])

    def child(self, step_id: str) -> "NodeAddress":
        return NodeAddress(goal=self.goal, step_ids=self.step_ids + (step_id,))


def format_path(path: StorePath) -> str:
    return "/".join(path)


def category_path(user_id: str, category_id: str) -> StorePath:
    return (USERS, user_id, CATEGORY, category_id)


def goals_collection(user_id: str, category_id: Optional[str]) -> StorePath:
    if category_id is None:
        return (USERS, user_id, GOALS)
    return category_path(user_id, category_id) + (GOALS,)


def goal_path(goal: GoalAddress) -> StorePath:
    return goals_collection(goal.user_id, goal.category_id) + (goal.goal_id,)


def steps_collection_name(goal: GoalAddress, depth: int) -> str:
    """Collection holding the children of a node at ``depth`` (0 = the goal)."""
    if goal.is_legacy and depth >= 1:
        return LEGACY_SUBSTEPS
    return STEPS


def node_path(node: NodeAddress) -> StorePath:
    path = goal_path(node.goal)
    for depth, step_id in enumerate(node.step_ids):
        path += (steps_collection_name(node.goal, depth), step_id)
    return path


def steps_collection(node: NodeAddress) -> StorePath:
    return node_path(node) + (steps_collection_name(node.goal, node.depth),)


def todos_collection(node: NodeAddress) -> StorePath:
    return node_path(node) + (TODOS,)


def todo_path(node: NodeAddress, todo_id: str) -> StorePath:
    return todos_collection(node) + (todo_id,)
