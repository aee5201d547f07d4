"""
In-memory document store.

Default backend and the one the test-suite runs against. Documents are kept
in a flat dict keyed by path; each collection remembers its ids in insertion
order. Like the hosted store it models, deleting a document leaves documents
in its sub-collections untouched; cascading is the repository's job.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Dict, List, Optional, Tuple

from loguru import logger

from goalstake.storage.base import (
    Document,
    DocumentStore,
    apply_merge,
    ensure_collection_path,
    ensure_document_path,
    strip_deletes,
)
from goalstake.core.paths import StorePath


class InMemoryDocumentStore(DocumentStore):
    backend_name = "memory"

    def __init__(self):
        self._documents: Dict[StorePath, Document] = {}
        # collection path -> ordered id set (dict keys keep insertion order)
        self._collections: Dict[StorePath, Dict[str, None]] = {}

    async def get(self, path: StorePath) -> Optional[Document]:
        ensure_document_path(path)
        await asyncio.sleep(0)
        doc = self._documents.get(tuple(path))
        return copy.deepcopy(doc) if doc is not None else None

    async def list(self, collection: StorePath) -> List[Tuple[str, Document]]:
        ensure_collection_path(collection)
        await asyncio.sleep(0)
        collection = tuple(collection)
        ids = list(self._collections.get(collection, {}))
        return [
            (doc_id, copy.deepcopy(self._documents[collection + (doc_id,)]))
            for doc_id in ids
        ]

    async def set(self, path: StorePath, data: Document, merge: bool = False) -> None:
        ensure_document_path(path)
        await asyncio.sleep(0)
        path = tuple(path)
        existing = self._documents.get(path)
        if merge:
            doc = apply_merge(existing, data)
        else:
            doc = strip_deletes(data)
        self._documents[path] = copy.deepcopy(doc)
        self._collections.setdefault(path[:-1], {})[path[-1]] = None

    async def delete(self, path: StorePath) -> None:
        ensure_document_path(path)
        await asyncio.sleep(0)
        path = tuple(path)
        if self._documents.pop(path, None) is None:
            logger.debug(f"memory store: delete of absent document {'/'.join(path)}")
            return
        members = self._collections.get(path[:-1])
        if members is not None:
            members.pop(path[-1], None)
            if not members:
                del self._collections[path[:-1]]

    def __len__(self) -> int:
        return len(self._documents)
