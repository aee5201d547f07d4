"""
Tests for the in-memory document store contract.
"""

import pytest

from goalstake.core.exceptions import ValidationError
from goalstake.storage import DELETE_FIELD, InMemoryDocumentStore

GOALS = ("users", "u1", "category", "c1", "goals")


@pytest.fixture
def memory_store():
    return InMemoryDocumentStore()


class TestInMemoryDocumentStore:
    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, memory_store):
        assert await memory_store.get(GOALS + ("nope",)) is None

    @pytest.mark.asyncio
    async def test_list_missing_collection_is_empty(self, memory_store):
        assert await memory_store.list(GOALS) == []

    @pytest.mark.asyncio
    async def test_add_generates_id_and_lists_in_insertion_order(self, memory_store):
        ids = [await memory_store.add(GOALS, {"title": f"goal {i}"}) for i in range(5)]
        assert len(set(ids)) == 5
        listed = await memory_store.list(GOALS)
        assert [doc_id for doc_id, _ in listed] == ids
        assert listed[2][1] == {"title": "goal 2"}

    @pytest.mark.asyncio
    async def test_rewrite_keeps_position(self, memory_store):
        await memory_store.set(GOALS + ("a",), {"n": 1})
        await memory_store.set(GOALS + ("b",), {"n": 2})
        await memory_store.set(GOALS + ("a",), {"n": 3})
        assert [doc_id for doc_id, _ in await memory_store.list(GOALS)] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_merge_and_delete_field(self, memory_store):
        path = GOALS + ("g1",)
        await memory_store.set(path, {"title": "t", "stake": 500, "session_id": "cs_1"})
        await memory_store.set(path, {"stake": DELETE_FIELD, "session_id": DELETE_FIELD, "ratio": 10}, merge=True)
        assert await memory_store.get(path) == {"title": "t", "ratio": 10}

    @pytest.mark.asyncio
    async def test_set_without_merge_replaces(self, memory_store):
        path = GOALS + ("g1",)
        await memory_store.set(path, {"title": "t", "stake": 500})
        await memory_store.set(path, {"title": "u"})
        assert await memory_store.get(path) == {"title": "u"}

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, memory_store):
        path = GOALS + ("g1",)
        await memory_store.set(path, {"refunded_milestones": [25]})
        doc = await memory_store.get(path)
        doc["refunded_milestones"].append(50)
        assert (await memory_store.get(path))["refunded_milestones"] == [25]

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, memory_store):
        path = GOALS + ("g1",)
        await memory_store.set(path, {"title": "t"})
        await memory_store.delete(path)
        await memory_store.delete(path)
        assert await memory_store.get(path) is None
        assert await memory_store.list(GOALS) == []

    @pytest.mark.asyncio
    async def test_delete_leaves_subcollections(self, memory_store):
        goal = GOALS + ("g1",)
        await memory_store.set(goal, {"title": "t"})
        await memory_store.set(goal + ("todo", "t1"), {"task": "x"})
        await memory_store.delete(goal)
        assert await memory_store.get(goal + ("todo", "t1")) == {"task": "x"}

    @pytest.mark.asyncio
    async def test_path_parity_is_checked(self, memory_store):
        with pytest.raises(ValidationError):
            await memory_store.get(GOALS)
        with pytest.raises(ValidationError):
            await memory_store.list(GOALS + ("g1",))
