"""
goalstake Storage Layer
=======================

Hierarchical document store used by the tree repository and the engines.

Modules:
    base: DocumentStore contract, DELETE_FIELD sentinel, merge helpers
    memory_store: In-process store (default, tests)
    redis_store: redis.asyncio backed store
"""

from .base import DELETE_FIELD, DocumentStore, new_document_id
from .memory_store import InMemoryDocumentStore
from .redis_store import RedisDocumentStore

__all__ = [
    "DELETE_FIELD",
    "DocumentStore",
    "new_document_id",
    "InMemoryDocumentStore",
    "RedisDocumentStore",
]
