"""
Transfer Codec
==============
Export a goal's full tree to a JSON document and import such a document as
a brand-new goal under a category.

Usage:
    ```python
    codec = TransferCodec(repository, ratio_engine)

    document = await codec.export(goal)
    result = await codec.import_goal("u1", "c2", document)
    ```

Import validates the whole document before writing anything, then creates
the goal, its todos and its steps breadth-first. It is not atomic: if a
write fails partway, ``TransferError.goal_id`` names the partial goal so the
caller can remove it with ``TreeRepository.delete_goal``.
"""

from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Tuple, Union

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from goalstake.core.exceptions import GoalstakeError, TransferError, ValidationError
from goalstake.core.models import GoalTree, Step, Todo
from goalstake.core.paths import GoalAddress, NodeAddress
from goalstake.transfer.schema import IdPolicy, TransferGoal, TransferStep, TransferTodo
from goalstake.tree.ratio import RatioEngine
from goalstake.tree.repository import TreeRepository


@dataclass
class ImportResult:
    """Result of an import operation."""
    goal: GoalAddress
    steps_created: int
    todos_created: int
    id_policy: IdPolicy
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def goal_id(self) -> str:
        return self.goal.goal_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "goalId": self.goal.goal_id,
            "stepsCreated": self.steps_created,
            "todosCreated": self.todos_created,
            "idPolicy": self.id_policy.value,
        }


def _todo_to_dict(todo: Todo) -> Dict[str, Any]:
    data: Dict[str, Any] = {"id": todo.id, "task": todo.task, "isFinished": todo.is_finished}
    if todo.weight is not None:
        data["weight"] = todo.weight
    return data


def _step_to_dict(step: Step) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": step.id,
        "title": step.title,
        "steps": [_step_to_dict(child) for child in step.steps],
    }
    if step.todos:
        data["todos"] = [_todo_to_dict(todo) for todo in step.todos]
    return data


def tree_to_document(tree: GoalTree) -> Dict[str, Any]:
    document: Dict[str, Any] = {
        "id": tree.goal.id,
        "title": tree.goal.title,
        "ratio": tree.goal.ratio,
        "steps": [_step_to_dict(step) for step in tree.steps],
    }
    if tree.todos:
        document["todos"] = [_todo_to_dict(todo) for todo in tree.todos]
    return document


def parse_document(document: Union[Dict[str, Any], TransferGoal]) -> TransferGoal:
    """Validate a transfer document. Raises ValidationError naming the first bad field."""
    if isinstance(document, TransferGoal):
        return document
    if not isinstance(document, dict):
        raise ValidationError("goalData", "must be a JSON object", type(document).__name__)
    try:
        return TransferGoal.model_validate(document)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "goalData"
        raise ValidationError(location, first.get("msg", "invalid"), context={"errors": e.error_count()})


class TransferCodec:
    def __init__(
        self,
        repository: TreeRepository,
        ratio_engine: Optional[RatioEngine] = None,
        default_id_policy: IdPolicy = IdPolicy.REGENERATE,
    ):
        self.repository = repository
        self.ratio_engine = ratio_engine
        self.default_id_policy = IdPolicy(default_id_policy)

    async def export(self, goal: GoalAddress) -> Dict[str, Any]:
        """Serialize a goal's full tree. Raises GoalNotFoundError."""
        tree = await self.repository.get_subtree(goal)
        logger.info(f"Exported goal '{goal.goal_id}' ({tree.step_count} steps)")
        return tree_to_document(tree)

    async def export_to_file(self, goal: GoalAddress, output_path: Union[str, Path]) -> Path:
        document = await self.export(goal)
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
        return path

    async def import_goal(
        self,
        user_id: str,
        category_id: Optional[str],
        document: Union[Dict[str, Any], TransferGoal],
        id_policy: Optional[IdPolicy] = None,
    ) -> ImportResult:
        """
        Create a new goal from a transfer document.

        Args:
            user_id: Owner of the new goal.
            category_id: Target category (None for the legacy layout).
            document: Transfer document (dict or parsed TransferGoal).
            id_policy: REGENERATE (fresh ids, default) or PRESERVE (reuse
                document ids; a clash raises ConflictError before any write).

        Raises:
            ValidationError: If the document is invalid. Nothing is written.
            TransferError: If a write fails after the goal was created.
        """
        goal_doc = parse_document(document)
        policy = IdPolicy(id_policy) if id_policy is not None else self.default_id_policy
        keep = policy is IdPolicy.PRESERVE

        goal = await self.repository.add_goal(
            user_id, category_id, goal_doc.title,
            goal_id=goal_doc.id if keep else None,
            ratio=goal_doc.ratio,
        )
        steps_created = 0
        todos_created = 0
        try:
            root = goal.node()
            todos_created += await self._add_todos(root, goal_doc.todos, keep)

            queue: Deque[Tuple[NodeAddress, List[TransferStep]]] = deque([(root, goal_doc.steps)])
            while queue:
                parent, children = queue.popleft()
                for child in children:
                    node = await self.repository.add_step(parent, child.title, step_id=child.id if keep else None)
                    steps_created += 1
                    todos_created += await self._add_todos(node, child.todos, keep)
                    if child.steps:
                        queue.append((node, child.steps))

            if self.ratio_engine is not None and category_id is not None:
                await self.ratio_engine.recompute_category(user_id, category_id)
        except GoalstakeError as e:
            logger.error(f"Import of '{goal_doc.title}' stopped after {steps_created + todos_created} nodes: {e}")
            raise TransferError(
                str(e),
                goal_id=goal.goal_id,
                nodes_created=1 + steps_created + todos_created,
                context={"cause": e.error_code},
            ) from e

        logger.info(
            f"Imported goal '{goal.goal_id}' ({steps_created} steps, {todos_created} todos, ids={policy.value})"
        )
        return ImportResult(goal=goal, steps_created=steps_created, todos_created=todos_created, id_policy=policy)

    async def _add_todos(self, node: NodeAddress, todos: List[TransferTodo], keep: bool) -> int:
        for todo in todos:
            await self.repository.add_todo(
                node,
                todo.task,
                is_finished=todo.is_finished,
                weight=todo.weight,
                todo_id=todo.id if keep else None,
                recompute=False,
            )
        return len(todos)

    async def import_from_file(
        self,
        user_id: str,
        category_id: Optional[str],
        input_path: Union[str, Path],
        id_policy: Optional[IdPolicy] = None,
    ) -> ImportResult:
        path = Path(input_path)
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValidationError("file", f"invalid JSON: {e}", str(path))
        return await self.import_goal(user_id, category_id, document, id_policy)
