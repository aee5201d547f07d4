"""
Async Redis Document Store
==========================
Hierarchical document store on top of ``redis.asyncio``.

Layout:
    {prefix}:doc:{path}   JSON document
    {prefix}:col:{path}   sorted set of child ids, scored by insertion sequence
    {prefix}:seq          global insertion counter

Merge writes are read-modify-write and not atomic across clients; the
settlement engine serializes its own writes per goal.
"""

import json
from typing import Any, List, Optional, Tuple

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from loguru import logger

from goalstake.core.config import StoreConfig
from goalstake.core.exceptions import DataCorruptionError, wrap_storage_exception
from goalstake.core.paths import StorePath, format_path
from goalstake.storage.base import (
    Document,
    DocumentStore,
    apply_merge,
    ensure_collection_path,
    ensure_document_path,
    strip_deletes,
)


class RedisDocumentStore(DocumentStore):
    """
    Redis-backed store with connection pooling.

    Pass ``client`` explicitly for testing/DI; otherwise a pooled client is
    created from ``StoreConfig``.
    """

    backend_name = "redis"

    def __init__(self, config: Optional[StoreConfig] = None, client: Optional[Any] = None):
        self.config = config or StoreConfig(backend="redis")
        self.prefix = self.config.redis_prefix
        if client is not None:
            self.redis_client = client
        else:
            self.redis_client = self._client_from_pool()

    def _client_from_pool(self) -> "redis.Redis":
        logger.info(f"Initializing async Redis pool: {self.config.redis_url}")
        kwargs = {
            "max_connections": self.config.max_connections,
            "socket_timeout": self.config.socket_timeout,
            "decode_responses": True,
        }
        if self.config.password:
            kwargs["password"] = self.config.password
        pool = ConnectionPool.from_url(self.config.redis_url, **kwargs)
        return redis.Redis(connection_pool=pool)

    async def close(self) -> None:
        if self.redis_client:
            await self.redis_client.aclose()

    # --- Keys ---

    def _doc_key(self, path: StorePath) -> str:
        return f"{self.prefix}:doc:{format_path(path)}"

    def _col_key(self, collection: StorePath) -> str:
        return f"{self.prefix}:col:{format_path(collection)}"

    def _decode(self, path: StorePath, raw: Any) -> Document:
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            raise DataCorruptionError(
                resource_id=format_path(path),
                reason=f"Invalid JSON data: {e}",
                context={"key": self._doc_key(path)},
            )

    # --- Contract ---

    async def get(self, path: StorePath) -> Optional[Document]:
        ensure_document_path(path)
        try:
            raw = await self.redis_client.get(self._doc_key(path))
        except Exception as e:
            logger.error(f"Redis get failed for {format_path(path)}: {e}")
            raise wrap_storage_exception("redis", "get", e)
        if raw is None:
            return None
        return self._decode(path, raw)

    async def list(self, collection: StorePath) -> List[Tuple[str, Document]]:
        ensure_collection_path(collection)
        collection = tuple(collection)
        try:
            ids = await self.redis_client.zrange(self._col_key(collection), 0, -1)
            if not ids:
                return []
            raws = await self.redis_client.mget([self._doc_key(collection + (i,)) for i in ids])
        except Exception as e:
            logger.error(f"Redis list failed for {format_path(collection)}: {e}")
            raise wrap_storage_exception("redis", "list", e)

        results = []
        for doc_id, raw in zip(ids, raws):
            if raw is None:
                # index entry outlived its document
                logger.warning(f"Redis index references missing document {doc_id} in {format_path(collection)}")
                continue
            results.append((doc_id, self._decode(collection + (doc_id,), raw)))
        return results

    async def set(self, path: StorePath, data: Document, merge: bool = False) -> None:
        ensure_document_path(path)
        path = tuple(path)
        doc = apply_merge(await self.get(path), data) if merge else strip_deletes(data)
        payload = json.dumps(doc, default=str)
        try:
            await self.redis_client.set(self._doc_key(path), payload)
            seq = await self.redis_client.incr(f"{self.prefix}:seq")
            # nx keeps the original position when the document is rewritten
            await self.redis_client.zadd(self._col_key(path[:-1]), {path[-1]: seq}, nx=True)
        except Exception as e:
            logger.error(f"Redis set failed for {format_path(path)}: {e}")
            raise wrap_storage_exception("redis", "set", e)

    async def delete(self, path: StorePath) -> None:
        ensure_document_path(path)
        path = tuple(path)
        try:
            await self.redis_client.delete(self._doc_key(path))
            await self.redis_client.zrem(self._col_key(path[:-1]), path[-1])
        except Exception as e:
            logger.error(f"Redis delete failed for {format_path(path)}: {e}")
            raise wrap_storage_exception("redis", "delete", e)

    async def check_health(self) -> bool:
        try:
            return bool(await self.redis_client.ping())
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            return False
