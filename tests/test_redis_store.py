"""
Tests for RedisDocumentStore
============================
The redis.asyncio client is replaced by an AsyncMock.
"""

import json
import unittest
from unittest.mock import AsyncMock

from goalstake.core.config import StoreConfig
from goalstake.core.exceptions import (
    DataCorruptionError,
    StorageConnectionError,
    StorageError,
)
from goalstake.storage import DELETE_FIELD
from goalstake.storage.redis_store import RedisDocumentStore

GOALS = ("users", "u1", "category", "c1", "goals")


class TestRedisDocumentStore(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.mock_client = AsyncMock()
        self.store = RedisDocumentStore(StoreConfig(backend="redis", redis_prefix="gs"), client=self.mock_client)

    async def test_set_writes_document_and_index(self):
        self.mock_client.incr.return_value = 7

        await self.store.set(GOALS + ("g1",), {"title": "t", "stale": DELETE_FIELD})

        args, _ = self.mock_client.set.call_args
        self.assertEqual(args[0], "gs:doc:users/u1/category/c1/goals/g1")
        self.assertEqual(json.loads(args[1]), {"title": "t"})
        self.mock_client.zadd.assert_called_once_with(
            "gs:col:users/u1/category/c1/goals", {"g1": 7}, nx=True
        )

    async def test_get(self):
        self.mock_client.get.return_value = json.dumps({"title": "t"})
        self.assertEqual(await self.store.get(GOALS + ("g1",)), {"title": "t"})
        self.mock_client.get.assert_called_once_with("gs:doc:users/u1/category/c1/goals/g1")

    async def test_get_missing(self):
        self.mock_client.get.return_value = None
        self.assertIsNone(await self.store.get(GOALS + ("g1",)))

    async def test_get_corrupt_document(self):
        self.mock_client.get.return_value = "{not json"
        with self.assertRaises(DataCorruptionError):
            await self.store.get(GOALS + ("g1",))

    async def test_merge_reads_then_writes(self):
        self.mock_client.get.return_value = json.dumps({"title": "t", "stake": 500})
        self.mock_client.incr.return_value = 1

        await self.store.set(GOALS + ("g1",), {"stake": DELETE_FIELD, "locked": True}, merge=True)

        args, _ = self.mock_client.set.call_args
        self.assertEqual(json.loads(args[1]), {"title": "t", "locked": True})

    async def test_list_in_index_order_skips_missing(self):
        self.mock_client.zrange.return_value = ["a", "b", "c"]
        self.mock_client.mget.return_value = [json.dumps({"n": 1}), None, json.dumps({"n": 3})]

        listed = await self.store.list(GOALS)

        self.assertEqual(listed, [("a", {"n": 1}), ("c", {"n": 3})])
        self.mock_client.zrange.assert_called_once_with("gs:col:users/u1/category/c1/goals", 0, -1)

    async def test_list_empty_collection(self):
        self.mock_client.zrange.return_value = []
        self.assertEqual(await self.store.list(GOALS), [])
        self.mock_client.mget.assert_not_called()

    async def test_delete_removes_document_and_index_entry(self):
        await self.store.delete(GOALS + ("g1",))
        self.mock_client.delete.assert_called_once_with("gs:doc:users/u1/category/c1/goals/g1")
        self.mock_client.zrem.assert_called_once_with("gs:col:users/u1/category/c1/goals", "g1")

    async def test_connection_failure_is_wrapped(self):
        self.mock_client.get.side_effect = ConnectionError("Connection refused")
        with self.assertRaises(StorageConnectionError):
            await self.store.get(GOALS + ("g1",))

    async def test_generic_failure_is_wrapped(self):
        self.mock_client.zrange.side_effect = RuntimeError("WRONGTYPE")
        with self.assertRaises(StorageError):
            await self.store.list(GOALS)

    async def test_health(self):
        self.mock_client.ping.return_value = True
        self.assertTrue(await self.store.check_health())
        self.mock_client.ping.side_effect = ConnectionError("down")
        self.assertFalse(await self.store.check_health())

    async def test_add_uses_generated_id(self):
        self.mock_client.incr.return_value = 3
        doc_id = await self.store.add(GOALS, {"title": "t"})
        self.assertEqual(len(doc_id), 20)
        self.mock_client.zadd.assert_called_once_with(
            "gs:col:users/u1/category/c1/goals", {doc_id: 3}, nx=True
        )
