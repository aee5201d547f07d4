"""
Tests for the Tree Repository
=============================
CRUD at arbitrary depth, subtree materialization, cascading deletes, the
lock guard and the legacy layout.
"""

import pytest

from goalstake.core.config import TreeConfig
from goalstake.core.exceptions import (
    ConflictError,
    GoalLockedError,
    GoalNotFoundError,
    StepNotFoundError,
    TodoNotFoundError,
    ValidationError,
)
from goalstake.core.paths import GoalAddress, goal_path, node_path, todo_path
from goalstake.storage import InMemoryDocumentStore
from goalstake.tree.repository import TreeRepository
from tests.mocks.trees import CATEGORY, USER, add_todos, new_goal


async def lock(repository, goal):
    await repository.merge_goal_fields(goal, {"locked": True, "stake": 1000, "charge_reference": "pi_1"})


class TestGoals:
    @pytest.mark.asyncio
    async def test_add_and_get_goal(self, repository):
        goal = await new_goal(repository, "Learn Go")
        record = await repository.get_goal(goal)
        assert record.title == "Learn Go"
        assert record.ratio == 0
        assert record.locked is False
        assert record.refunded_milestones == []

    @pytest.mark.asyncio
    async def test_get_missing_goal(self, repository):
        with pytest.raises(GoalNotFoundError):
            await repository.get_goal(GoalAddress(USER, "missing", CATEGORY))

    @pytest.mark.asyncio
    async def test_list_goals_in_insertion_order(self, repository):
        titles = ["a", "b", "c"]
        for title in titles:
            await new_goal(repository, title)
        goals = await repository.list_goals(USER, CATEGORY)
        assert [g.title for g in goals] == titles

    @pytest.mark.asyncio
    async def test_empty_title_rejected(self, repository):
        with pytest.raises(ValidationError):
            await repository.add_goal(USER, CATEGORY, "   ")

    @pytest.mark.asyncio
    async def test_update_goal_title(self, repository):
        goal = await new_goal(repository)
        await repository.update_goal(goal, title="Run two marathons")
        assert (await repository.get_goal(goal)).title == "Run two marathons"

    @pytest.mark.asyncio
    async def test_preserved_goal_id_conflict(self, repository):
        await repository.add_goal(USER, CATEGORY, "first", goal_id="fixed")
        with pytest.raises(ConflictError):
            await repository.add_goal(USER, CATEGORY, "second", goal_id="fixed")


class TestSubtree:
    @pytest.mark.asyncio
    async def test_materializes_arbitrary_depth_in_order(self, repository):
        goal = await new_goal(repository)
        root = goal.node()
        await add_todos(repository, root, [False])
        s1 = await repository.add_step(root, "step 1")
        s2 = await repository.add_step(root, "step 2")
        s1a = await repository.add_step(s1, "step 1a")
        s1a_i = await repository.add_step(s1a, "step 1a-i")
        await add_todos(repository, s1, [True, False])
        await add_todos(repository, s1a_i, [True])

        tree = await repository.get_subtree(goal)

        assert [t.task for t in tree.todos] == ["todo 0"]
        assert [s.title for s in tree.steps] == ["step 1", "step 2"]
        assert [s.title for s in tree.steps[0].steps] == ["step 1a"]
        deepest = tree.steps[0].steps[0].steps[0]
        assert deepest.id == s1a_i.node_id
        assert [t.is_finished for t in deepest.todos] == [True]
        assert tree.steps[1].id == s2.node_id
        assert len(list(tree.iter_todos())) == 4

    @pytest.mark.asyncio
    async def test_missing_collections_are_empty(self, repository):
        goal = await new_goal(repository)
        assert await repository.list_todos(goal.node()) == []
        assert await repository.get_child_steps(goal.node("ghost")) == []

    @pytest.mark.asyncio
    async def test_subtree_of_missing_goal(self, repository):
        with pytest.raises(GoalNotFoundError):
            await repository.get_subtree(GoalAddress(USER, "missing", CATEGORY))

    @pytest.mark.asyncio
    async def test_bounded_concurrency_gives_same_tree(self):
        store = InMemoryDocumentStore()
        unbounded = TreeRepository(store)
        bounded = TreeRepository(store, TreeConfig(max_concurrency=1))
        goal = await new_goal(unbounded)
        for i in range(4):
            step = await unbounded.add_step(goal.node(), f"step {i}")
            for j in range(3):
                child = await unbounded.add_step(step, f"step {i}.{j}")
                await add_todos(unbounded, child, [j % 2 == 0])

        assert await bounded.get_subtree(goal) == await unbounded.get_subtree(goal)

    @pytest.mark.asyncio
    async def test_max_depth_truncates_expansion(self, repository):
        shallow = TreeRepository(repository.store, TreeConfig(max_depth=1))
        goal = await new_goal(repository)
        s1 = await repository.add_step(goal.node(), "level 1")
        s2 = await repository.add_step(s1, "level 2")
        await add_todos(repository, s2, [True])

        tree = await shallow.get_subtree(goal)

        assert [s.title for s in tree.steps] == ["level 1"]
        assert tree.steps[0].steps == []

    @pytest.mark.asyncio
    async def test_get_step_subtree(self, repository):
        goal = await new_goal(repository)
        s1 = await repository.add_step(goal.node(), "parent")
        await repository.add_step(s1, "child")
        await add_todos(repository, s1, [False, True])

        step = await repository.get_step_subtree(s1)

        assert step.title == "parent"
        assert [s.title for s in step.steps] == ["child"]
        assert len(step.todos) == 2


class TestStepsAndTodos:
    @pytest.mark.asyncio
    async def test_add_step_under_missing_parent(self, repository):
        goal = await new_goal(repository)
        with pytest.raises(StepNotFoundError):
            await repository.add_step(goal.node("ghost"), "orphan")

    @pytest.mark.asyncio
    async def test_add_todo_to_missing_goal(self, repository):
        with pytest.raises(GoalNotFoundError):
            await repository.add_todo(GoalAddress(USER, "missing", CATEGORY).node(), "task")

    @pytest.mark.asyncio
    async def test_update_step(self, repository):
        goal = await new_goal(repository)
        step = await repository.add_step(goal.node(), "draft")
        await repository.update_step(step, title="final")
        assert (await repository.get_child_steps(goal.node()))[0].title == "final"

    @pytest.mark.asyncio
    async def test_update_todo(self, repository):
        goal = await new_goal(repository)
        [todo_id] = await add_todos(repository, goal.node(), [False])
        todo = await repository.update_todo(goal.node(), todo_id, is_finished=True, weight=2)
        assert todo.is_finished is True
        stored = await repository.get_todo(goal.node(), todo_id)
        assert stored.is_finished is True
        assert stored.weight == 2

    @pytest.mark.asyncio
    async def test_update_missing_todo(self, repository):
        goal = await new_goal(repository)
        with pytest.raises(TodoNotFoundError):
            await repository.update_todo(goal.node(), "ghost", is_finished=True)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("weight", [0, -1, True, "2", float("nan"), float("inf")])
    async def test_invalid_weight(self, repository, store, weight):
        goal = await new_goal(repository)
        before = len(store)
        with pytest.raises(ValidationError):
            await repository.add_todo(goal.node(), "task", weight=weight)
        assert len(store) == before

    @pytest.mark.asyncio
    async def test_update_rejects_non_finite_weight(self, repository):
        goal = await new_goal(repository)
        todo_id = await repository.add_todo(goal.node(), "task")
        with pytest.raises(ValidationError):
            await repository.update_todo(goal.node(), todo_id, weight=float("nan"))
        assert (await repository.get_todo(goal.node(), todo_id)).weight is None

    @pytest.mark.asyncio
    async def test_delete_todo_idempotent(self, repository):
        goal = await new_goal(repository)
        [todo_id] = await add_todos(repository, goal.node(), [False])
        assert await repository.delete_todo(goal.node(), todo_id) is True
        assert await repository.delete_todo(goal.node(), todo_id) is False
        assert await repository.list_todos(goal.node()) == []


class TestCascadingDeletes:
    @pytest.mark.asyncio
    async def test_delete_step_removes_subtree(self, repository, store):
        goal = await new_goal(repository)
        s1 = await repository.add_step(goal.node(), "s1")
        s1a = await repository.add_step(s1, "s1a")
        [deep_todo] = await add_todos(repository, s1a, [True])
        keep = await repository.add_step(goal.node(), "keep")

        assert await repository.delete_step(s1) is True

        assert await store.get(node_path(s1a)) is None
        assert await store.get(todo_path(s1a, deep_todo)) is None
        steps = await repository.get_child_steps(goal.node())
        assert [s.id for s in steps] == [keep.node_id]
        assert await repository.delete_step(s1) is False

    @pytest.mark.asyncio
    async def test_delete_goal_removes_everything(self, repository, store):
        goal = await new_goal(repository)
        s1 = await repository.add_step(goal.node(), "s1")
        await add_todos(repository, s1, [True, False])
        await add_todos(repository, goal.node(), [False])
        before = len(store)

        assert await repository.delete_goal(goal) is True

        assert len(store) == before - 5
        assert await repository.find_goal(goal) is None
        assert await repository.delete_goal(goal) is False


class TestLockGuard:
    @pytest.mark.asyncio
    async def test_structural_edits_rejected_when_locked(self, repository):
        goal = await new_goal(repository)
        step = await repository.add_step(goal.node(), "s1")
        [todo_id] = await add_todos(repository, step, [False])
        await lock(repository, goal)

        with pytest.raises(GoalLockedError):
            await repository.update_goal(goal, title="renamed")
        with pytest.raises(GoalLockedError):
            await repository.add_step(goal.node(), "s2")
        with pytest.raises(GoalLockedError):
            await repository.update_step(step, title="renamed")
        with pytest.raises(GoalLockedError):
            await repository.delete_step(step)
        with pytest.raises(GoalLockedError):
            await repository.add_todo(step, "more")
        with pytest.raises(GoalLockedError):
            await repository.delete_todo(step, todo_id)
        with pytest.raises(GoalLockedError):
            await repository.update_todo(step, todo_id, task="renamed")
        with pytest.raises(GoalLockedError):
            await repository.delete_goal(goal)

    @pytest.mark.asyncio
    async def test_progress_still_allowed_when_locked(self, repository):
        goal = await new_goal(repository)
        [todo_id] = await add_todos(repository, goal.node(), [False])
        await lock(repository, goal)

        todo = await repository.update_todo(goal.node(), todo_id, is_finished=True)

        assert todo.is_finished is True

    @pytest.mark.asyncio
    async def test_engine_fields_writable_when_locked(self, repository):
        goal = await new_goal(repository)
        await lock(repository, goal)
        await repository.merge_goal_fields(goal, {"ratio": 40})
        assert (await repository.get_goal(goal)).ratio == 40


class TestLegacyLayout:
    @pytest.mark.asyncio
    async def test_legacy_goal_uses_substep_collection(self, repository, store):
        goal = await repository.add_goal(USER, None, "legacy")
        s1 = await repository.add_step(goal.node(), "s1")
        s1a = await repository.add_step(s1, "s1a")
        await add_todos(repository, s1a, [True])

        assert goal_path(goal) == ("users", USER, "goals", goal.goal_id)
        assert "subStep" in node_path(s1a)
        tree = await repository.get_subtree(goal)
        assert tree.steps[0].steps[0].todos[0].is_finished is True

    @pytest.mark.asyncio
    async def test_legacy_document_upgraded_on_engine_write(self, repository, store):
        goal = GoalAddress(USER, "old", CATEGORY)
        await store.set(goal_path(goal), {"title": "old", "betAmount": 800, "isLocked": False})

        await repository.merge_goal_fields(goal, {"ratio": 20})

        raw = await store.get(goal_path(goal))
        assert raw == {"title": "old", "stake": 800, "locked": False, "ratio": 20, "schema_version": 2}
        assert (await repository.get_goal(goal)).stake == 800

    @pytest.mark.asyncio
    async def test_legacy_todo_toggle(self, repository, store):
        goal = await new_goal(repository)
        await store.set(todo_path(goal.node(), "t-old"), {"task": "old", "isFinished": False})

        await repository.update_todo(goal.node(), "t-old", is_finished=True)

        raw = await store.get(todo_path(goal.node(), "t-old"))
        assert raw == {"task": "old", "is_finished": True, "schema_version": 2}
