"""
Ratio Engine
============
Completion ratio = percentage of finished todos, rounded half up to an
integer in [0, 100]; 0 when there are no todos. Weights are stored but do
not take part.

A goal's ratio counts every todo in its subtree. A category's ratio counts
the union of the todos of all its goals (not an average of goal ratios).
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, List

from loguru import logger

from goalstake.core.models import Todo
from goalstake.core.paths import GoalAddress
from goalstake.tree.repository import TreeRepository

GoalRatioListener = Callable[[GoalAddress, int], Awaitable[Any]]


def completion_ratio(todos: Iterable[Todo]) -> int:
    total = 0
    finished = 0
    for todo in todos:
        total += 1
        if todo.is_finished:
            finished += 1
    if total == 0:
        return 0
    # round(100 * finished / total) with halves rounded up, in integers
    return (200 * finished + total) // (2 * total)


class RatioEngine:
    def __init__(self, repository: TreeRepository):
        self.repository = repository
        self._goal_listeners: List[GoalRatioListener] = []

    def add_goal_listener(self, listener: GoalRatioListener) -> None:
        """Called with ``(goal, ratio)`` after every goal recompute."""
        self._goal_listeners.append(listener)

    async def recompute_goal(self, goal: GoalAddress) -> int:
        """
        Recompute and persist a goal's ratio, then its category's.

        Raises:
            GoalNotFoundError: If the goal does not exist.
        """
        todos = await self.repository.collect_todos(goal)
        ratio = completion_ratio(todos)
        await self.repository.merge_goal_fields(goal, {"ratio": ratio})
        logger.debug(f"Goal '{goal.goal_id}' ratio={ratio} ({len(todos)} todos)")

        if goal.category_id is not None:
            await self.recompute_category(goal.user_id, goal.category_id)

        for listener in self._goal_listeners:
            await listener(goal, ratio)
        return ratio

    async def recompute_category(self, user_id: str, category_id: str) -> int:
        """Recompute and persist a category ratio over all of its goals' todos."""
        goals = await self.repository.list_goals(user_id, category_id)
        per_goal = await asyncio.gather(*(
            self.repository.collect_todos(GoalAddress(user_id, goal.id, category_id))
            for goal in goals
        ))
        todos = [todo for goal_todos in per_goal for todo in goal_todos]
        ratio = completion_ratio(todos)
        await self.repository.set_category_ratio(user_id, category_id, ratio)
        logger.debug(f"Category '{category_id}' ratio={ratio} ({len(goals)} goals, {len(todos)} todos)")
        return ratio

    async def get_category_ratio(self, user_id: str, category_id: str) -> int:
        """Stored category ratio; 0 when the category has never been computed."""
        category = await self.repository.get_category(user_id, category_id)
        return category.achievement_ratio if category is not None else 0
