"""
Tree Repository
===============
CRUD over Goals, Steps and Todos at arbitrary nesting depth, recursive
materialization of a goal's subtree, bottom-up cascading deletes and the
lock guard that freezes a committed goal's structure.

Materialization walks the tree level by level with an explicit frontier.
Every node on a level lists its child steps and its todos concurrently
(optionally capped by ``TreeConfig.max_concurrency``), and results are
attached to their parents through an arena keyed by step path, so sibling
order always follows store insertion order.

Structural mutations that change which todos exist (add/delete todo, step
and goal deletes that removed todos) notify the registered structure
listeners with ``(user_id, category_id)``; the container wires the ratio
engine's category recompute there.
"""

from __future__ import annotations

import asyncio
import contextlib
import math
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from loguru import logger

from goalstake.core.config import TreeConfig
from goalstake.core.exceptions import (
    ConflictError,
    GoalLockedError,
    GoalNotFoundError,
    StepNotFoundError,
    TodoNotFoundError,
    ValidationError,
)
from goalstake.core.models import Category, Goal, GoalTree, Step, Todo
from goalstake.core.paths import (
    GoalAddress,
    NodeAddress,
    category_path,
    format_path,
    goal_path,
    goals_collection,
    node_path,
    steps_collection,
    todo_path,
    todos_collection,
)
from goalstake.storage.base import Document, DocumentStore

StructureListener = Callable[[str, str], Awaitable[Any]]


def _require_text(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "must be a non-empty string", value)
    return value


def _require_weight(weight: Any) -> Optional[float]:
    if weight is None:
        return None
    valid = (isinstance(weight, (int, float)) and not isinstance(weight, bool)
             and math.isfinite(weight) and weight > 0)
    if not valid:
        raise ValidationError("weight", "must be a positive number", weight)
    return weight


class TreeRepository:
    """Goal tree persistence on top of a DocumentStore."""

    def __init__(self, store: DocumentStore, config: Optional[TreeConfig] = None):
        self.store = store
        self.config = config or TreeConfig()
        self._listeners: List[StructureListener] = []
        if self.config.max_concurrency:
            self._limit = asyncio.Semaphore(self.config.max_concurrency)
        else:
            self._limit = None

    def add_structure_listener(self, listener: StructureListener) -> None:
        self._listeners.append(listener)

    async def _structure_changed(self, goal: GoalAddress) -> None:
        if goal.category_id is None:
            return
        for listener in self._listeners:
            await listener(goal.user_id, goal.category_id)

    def _slot(self):
        return self._limit if self._limit is not None else contextlib.nullcontext()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _goal_document(self, goal: GoalAddress) -> Document:
        doc = await self.store.get(goal_path(goal))
        if doc is None:
            raise GoalNotFoundError(goal.goal_id, context=goal.to_dict())
        return doc

    async def get_goal(self, goal: GoalAddress) -> Goal:
        return Goal.from_document(goal.goal_id, await self._goal_document(goal))

    async def find_goal(self, goal: GoalAddress) -> Optional[Goal]:
        doc = await self.store.get(goal_path(goal))
        return Goal.from_document(goal.goal_id, doc) if doc is not None else None

    async def list_goals(self, user_id: str, category_id: Optional[str]) -> List[Goal]:
        docs = await self.store.list(goals_collection(user_id, category_id))
        return [Goal.from_document(doc_id, doc) for doc_id, doc in docs]

    async def get_category(self, user_id: str, category_id: str) -> Optional[Category]:
        doc = await self.store.get(category_path(user_id, category_id))
        return Category.from_document(category_id, doc) if doc is not None else None

    async def get_child_steps(self, node: NodeAddress) -> List[Step]:
        """Direct child steps of ``node`` (without their subtrees)."""
        async with self._slot():
            docs = await self.store.list(steps_collection(node))
        return [Step.from_document(doc_id, doc) for doc_id, doc in docs]

    async def list_todos(self, node: NodeAddress) -> List[Todo]:
        async with self._slot():
            docs = await self.store.list(todos_collection(node))
        return [Todo.from_document(doc_id, doc) for doc_id, doc in docs]

    async def get_todo(self, node: NodeAddress, todo_id: str) -> Todo:
        doc = await self.store.get(todo_path(node, todo_id))
        if doc is None:
            raise TodoNotFoundError(todo_id, context={"node": format_path(node_path(node))})
        return Todo.from_document(todo_id, doc)

    async def _expand(self, node: NodeAddress) -> Tuple[List[Step], List[Todo]]:
        steps, todos = await asyncio.gather(self.get_child_steps(node), self.list_todos(node))
        return steps, todos

    async def _materialize(self, root: NodeAddress) -> Tuple[List[Step], List[Todo]]:
        """Build every step and todo under ``root``; returns its direct children."""
        max_depth = self.config.max_depth
        arena: Dict[Tuple[str, ...], Step] = {}
        root_steps: List[Step] = []
        root_todos: List[Todo] = []
        frontier = [root]
        truncated = False

        while frontier:
            expanded = await asyncio.gather(*(self._expand(node) for node in frontier))
            next_frontier: List[NodeAddress] = []
            for node, (steps, todos) in zip(frontier, expanded):
                if node == root:
                    parent_steps, parent_todos = root_steps, root_todos
                else:
                    parent = arena[node.step_ids]
                    parent_steps, parent_todos = parent.steps, parent.todos
                parent_todos.extend(todos)
                for step in steps:
                    if step.id in node.step_ids:
                        logger.warning(
                            f"Step cycle at {format_path(node_path(node))}: '{step.id}' already on path, skipped"
                        )
                        continue
                    child = node.child(step.id)
                    arena[child.step_ids] = step
                    parent_steps.append(step)
                    if max_depth is not None and child.depth >= max_depth:
                        truncated = True
                        continue
                    next_frontier.append(child)
            frontier = next_frontier

        if truncated:
            logger.warning(f"Materialization of goal '{root.goal.goal_id}' truncated at depth {max_depth}")
        return root_steps, root_todos

    async def get_subtree(self, goal: GoalAddress) -> GoalTree:
        """The goal with its fully materialized steps and todos."""
        record = await self.get_goal(goal)
        steps, todos = await self._materialize(goal.node())
        return GoalTree(goal=record, steps=steps, todos=todos)

    async def get_step_subtree(self, node: NodeAddress) -> Step:
        """A single step with its materialized descendants."""
        if node.is_goal:
            raise ValidationError("node", "expected a step address, got a goal")
        doc = await self.store.get(node_path(node))
        if doc is None:
            raise StepNotFoundError(node.node_id, context={"node": format_path(node_path(node))})
        step = Step.from_document(node.node_id, doc)
        step.steps, step.todos = await self._materialize(node)
        return step

    async def collect_todos(self, goal: GoalAddress) -> List[Todo]:
        """Every todo of a goal, flattened. Raises GoalNotFoundError."""
        return list((await self.get_subtree(goal)).iter_todos())

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    async def _require_unlocked(self, goal: GoalAddress, operation: str) -> Goal:
        record = await self.get_goal(goal)
        if record.locked:
            raise GoalLockedError(goal.goal_id, operation)
        return record

    async def _require_node(self, node: NodeAddress) -> None:
        if node.is_goal:
            return
        if await self.store.get(node_path(node)) is None:
            raise StepNotFoundError(node.node_id, context={"node": format_path(node_path(node))})

    async def _insert(self, collection, data: Document, doc_id: Optional[str]) -> str:
        if doc_id is None:
            return await self.store.add(collection, data)
        path = tuple(collection) + (doc_id,)
        if await self.store.get(path) is not None:
            raise ConflictError(f"Document '{format_path(path)}' already exists", {"path": format_path(path)})
        await self.store.set(path, data)
        return doc_id

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    async def add_goal(
        self,
        user_id: str,
        category_id: Optional[str],
        title: str,
        *,
        goal_id: Optional[str] = None,
        ratio: int = 0,
    ) -> GoalAddress:
        record = Goal(id="", title=_require_text("title", title), ratio=ratio)
        new_id = await self._insert(goals_collection(user_id, category_id), record.to_document(), goal_id)
        address = GoalAddress(user_id=user_id, category_id=category_id, goal_id=new_id)
        logger.info(f"Goal created: {new_id} ('{title}')")
        return address

    async def update_goal(self, goal: GoalAddress, *, title: str) -> None:
        await self._require_unlocked(goal, "update_goal")
        await self.store.set(goal_path(goal), {"title": _require_text("title", title)}, merge=True)

    async def merge_goal_fields(self, goal: GoalAddress, changes: Document) -> None:
        """Engine-owned write path (ratio, stake, lock, refunds). Upgrades legacy documents."""
        doc = await self._goal_document(goal)
        payload = Goal.upgrade_changes(doc)
        payload.update(changes)
        await self.store.set(goal_path(goal), payload, merge=True)

    async def set_category_ratio(self, user_id: str, category_id: str, ratio: int) -> None:
        path = category_path(user_id, category_id)
        doc = await self.store.get(path) or {}
        payload = Category.upgrade_changes(doc)
        payload["achievement_ratio"] = ratio
        await self.store.set(path, payload, merge=True)

    async def delete_goal(self, goal: GoalAddress) -> bool:
        """Delete a goal and its whole subtree. Returns False if it was already gone."""
        record = await self.find_goal(goal)
        if record is None:
            logger.warning(f"delete_goal: goal '{goal.goal_id}' already absent")
            return False
        if record.locked:
            raise GoalLockedError(goal.goal_id, "delete_goal")
        removed_todos = await self._delete_subtree(goal.node())
        await self.store.delete(goal_path(goal))
        logger.info(f"Goal deleted: {goal.goal_id} ({removed_todos} todos removed)")
        await self._structure_changed(goal)
        return True

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def add_step(self, parent: NodeAddress, title: str, *, step_id: Optional[str] = None) -> NodeAddress:
        """Add a step under a goal or step. Returns the new step's address."""
        await self._require_unlocked(parent.goal, "add_step")
        await self._require_node(parent)
        record = Step(id="", title=_require_text("title", title))
        new_id = await self._insert(steps_collection(parent), record.to_document(), step_id)
        return parent.child(new_id)

    async def update_step(self, step: NodeAddress, *, title: str) -> None:
        if step.is_goal:
            raise ValidationError("step", "expected a step address, got a goal")
        await self._require_unlocked(step.goal, "update_step")
        await self._require_node(step)
        await self.store.set(node_path(step), {"title": _require_text("title", title)}, merge=True)

    async def delete_step(self, step: NodeAddress) -> bool:
        """Delete a step and its subtree. Returns False if it was already gone."""
        if step.is_goal:
            raise ValidationError("step", "expected a step address, got a goal")
        record = await self.find_goal(step.goal)
        if record is None or await self.store.get(node_path(step)) is None:
            logger.warning(f"delete_step: step '{step.node_id}' already absent")
            return False
        if record.locked:
            raise GoalLockedError(step.goal.goal_id, "delete_step")
        removed_todos = await self._delete_subtree(step)
        await self.store.delete(node_path(step))
        if removed_todos:
            await self._structure_changed(step.goal)
        return True

    async def _delete_subtree(self, root: NodeAddress) -> int:
        """Delete every descendant of ``root`` bottom-up; ``root`` itself is kept."""
        levels: List[List[NodeAddress]] = []
        frontier = [root]
        while frontier:
            levels.append(frontier)
            children = await asyncio.gather(*(self.get_child_steps(node) for node in frontier))
            frontier = [
                node.child(step.id)
                for node, steps in zip(frontier, children)
                for step in steps
                if step.id not in node.step_ids
            ]

        removed_todos = 0
        for level in reversed(levels):
            for node in level:
                todos = await self.list_todos(node)
                for todo in todos:
                    await self.store.delete(todo_path(node, todo.id))
                removed_todos += len(todos)
                if node != root:
                    await self.store.delete(node_path(node))
        return removed_todos

    # ------------------------------------------------------------------
    # Todos
    # ------------------------------------------------------------------

    async def add_todo(
        self,
        node: NodeAddress,
        task: str,
        *,
        is_finished: bool = False,
        weight: Optional[float] = None,
        todo_id: Optional[str] = None,
        recompute: bool = True,
    ) -> str:
        await self._require_unlocked(node.goal, "add_todo")
        await self._require_node(node)
        record = Todo(id="", task=_require_text("task", task), is_finished=bool(is_finished),
                      weight=_require_weight(weight))
        new_id = await self._insert(todos_collection(node), record.to_document(), todo_id)
        if recompute:
            await self._structure_changed(node.goal)
        return new_id

    async def update_todo(
        self,
        node: NodeAddress,
        todo_id: str,
        *,
        task: Optional[str] = None,
        is_finished: Optional[bool] = None,
        weight: Optional[float] = None,
    ) -> Todo:
        """
        Update a todo. Toggling ``is_finished`` stays allowed on a locked goal
        (that is how a committed goal progresses); task and weight edits do not.
        """
        record = await self.get_goal(node.goal)
        path = todo_path(node, todo_id)
        doc = await self.store.get(path)
        if doc is None:
            raise TodoNotFoundError(todo_id, context={"node": format_path(node_path(node))})

        changes: Document = {}
        if task is not None:
            changes["task"] = _require_text("task", task)
        if weight is not None:
            changes["weight"] = _require_weight(weight)
        if changes and record.locked:
            raise GoalLockedError(node.goal.goal_id, "update_todo")
        if is_finished is not None:
            changes["is_finished"] = bool(is_finished)
        if not changes:
            return Todo.from_document(todo_id, doc)

        payload = Todo.upgrade_changes(doc)
        payload.update(changes)
        await self.store.set(path, payload, merge=True)
        return Todo.from_document(todo_id, {**Todo.normalize(doc), **changes})

    async def delete_todo(self, node: NodeAddress, todo_id: str) -> bool:
        """Delete a todo. Returns False (after a warning) if it was already gone."""
        record = await self.find_goal(node.goal)
        path = todo_path(node, todo_id)
        if record is None or await self.store.get(path) is None:
            logger.warning(f"delete_todo: todo '{todo_id}' already absent")
            return False
        if record.locked:
            raise GoalLockedError(node.goal.goal_id, "delete_todo")
        await self.store.delete(path)
        await self._structure_changed(node.goal)
        return True
