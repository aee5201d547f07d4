"""
Hierarchical Document Store Contract
====================================
The abstract capability the tree repository and the engines require from a
storage backend: point read, ordered collection listing, insert with a
generated id, set / merge-update (with field deletion) and delete.

Paths alternate collection and document segments, so a document path has
an even number of segments and a collection path an odd number.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from goalstake.core.exceptions import ValidationError
from goalstake.core.paths import StorePath, format_path


class _DeleteField:
    """Sentinel: in a merge, removes the key from the stored document."""

    _instance: Optional["_DeleteField"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()

Document = Dict[str, Any]


def new_document_id() -> str:
    return uuid.uuid4().hex[:20]


def ensure_document_path(path: StorePath) -> None:
    if not path or len(path) % 2 != 0:
        raise ValidationError("path", "document paths need an even number of segments", format_path(path))


def ensure_collection_path(path: StorePath) -> None:
    if not path or len(path) % 2 != 1:
        raise ValidationError("path", "collection paths need an odd number of segments", format_path(path))


def apply_merge(existing: Optional[Document], data: Document) -> Document:
    """Merge ``data`` over ``existing``; DELETE_FIELD values drop the key."""
    merged = dict(existing or {})
    for key, value in data.items():
        if value is DELETE_FIELD:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def strip_deletes(data: Document) -> Document:
    return {k: v for k, v in data.items() if v is not DELETE_FIELD}


class DocumentStore(ABC):
    """
    Async hierarchical key-value store.

    Implementations raise StorageError subclasses on backend failure and
    never raise for a missing document or collection.
    """

    backend_name: str = "abstract"

    @abstractmethod
    async def get(self, path: StorePath) -> Optional[Document]:
        """Return the document at ``path`` or None."""

    @abstractmethod
    async def list(self, collection: StorePath) -> List[Tuple[str, Document]]:
        """Return ``(id, document)`` pairs in insertion order; [] if absent."""

    @abstractmethod
    async def set(self, path: StorePath, data: Document, merge: bool = False) -> None:
        """Write a document, replacing it unless ``merge`` is set."""

    @abstractmethod
    async def delete(self, path: StorePath) -> None:
        """Remove a document. Absent documents are ignored."""

    async def add(self, collection: StorePath, data: Document) -> str:
        """Insert under a generated id and return the id."""
        ensure_collection_path(collection)
        doc_id = new_document_id()
        await self.set(collection + (doc_id,), data)
        return doc_id

    async def exists(self, path: StorePath) -> bool:
        return await self.get(path) is not None

    async def close(self) -> None:
        return None
