"""
Document store abstraction.

The orchestrator only needs a small slice of a document database: keyed
get/set/update/delete, simple filtered queries, and atomic write batches.

Implementations:
- InMemoryDocumentStore: process-local, used by tests and local runs
- FirestoreDocumentStore: google-cloud-firestore, Application Default Credentials

All methods are synchronous. Async callers run them via asyncio.to_thread.
Returned documents are always copies; mutating them never touches the store.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

Filter = Tuple[str, str, Any]  # (field, op, value)

_OPERATORS = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a is not None and a < b,
    "<=": lambda a, b: a is not None and a <= b,
    ">": lambda a, b: a is not None and a > b,
    ">=": lambda a, b: a is not None and a >= b,
    "in": lambda a, b: a in b,
    "array_contains": lambda a, b: isinstance(a, (list, tuple)) and b in a,
}


class DocumentNotFound(KeyError):
    pass


@dataclass
class Document:
    id: str
    data: Dict[str, Any]


@dataclass
class WriteOp:
    kind: str  # set | update | delete
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]] = None
    merge: bool = False


@dataclass
class WriteBatch:
    """Ordered group of writes applied all-or-nothing by DocumentStore.commit."""

    ops: List[WriteOp] = field(default_factory=list)

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> "WriteBatch":
        self.ops.append(WriteOp("set", collection, doc_id, dict(data), merge))
        return self

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteBatch":
        self.ops.append(WriteOp("update", collection, doc_id, dict(data)))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self.ops.append(WriteOp("delete", collection, doc_id))
        return self


class DocumentStore(ABC):
    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Merge fields into an existing document. Raises DocumentNotFound."""

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        ...

    @abstractmethod
    def commit(self, batch: WriteBatch) -> None:
        ...

    def batch(self) -> WriteBatch:
        return WriteBatch()

    def close(self) -> None:
        pass


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _col(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._col(collection).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        with self._lock:
            self._apply(WriteOp("set", collection, doc_id, data, merge))

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._apply(WriteOp("update", collection, doc_id, data))

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self._apply(WriteOp("delete", collection, doc_id))

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        with self._lock:
            docs = [
                Document(doc_id, copy.deepcopy(data))
                for doc_id, data in self._col(collection).items()
                if all(_matches(data, f) for f in filters)
            ]
        if order_by:
            # Firestore drops documents missing the ordered field.
            docs = [d for d in docs if d.data.get(order_by) is not None]
            docs.sort(key=lambda d: d.data[order_by], reverse=descending)
        if limit is not None:
            docs = docs[:limit]
        return docs

    def commit(self, batch: WriteBatch) -> None:
        with self._lock:
            # Validate first so a failing update leaves nothing half-applied.
            pending: Dict[Tuple[str, str], bool] = {}
            for op in batch.ops:
                key = (op.collection, op.doc_id)
                exists = pending.get(key, op.doc_id in self._col(op.collection))
                if op.kind == "update" and not exists:
                    raise DocumentNotFound(f"{op.collection}/{op.doc_id}")
                pending[key] = op.kind != "delete"
            for op in batch.ops:
                self._apply(op)

    def _apply(self, op: WriteOp) -> None:
        col = self._col(op.collection)
        if op.kind == "delete":
            col.pop(op.doc_id, None)
            return
        data = copy.deepcopy(op.data or {})
        if op.kind == "update":
            if op.doc_id not in col:
                raise DocumentNotFound(f"{op.collection}/{op.doc_id}")
            col[op.doc_id].update(data)
        elif op.merge and op.doc_id in col:
            col[op.doc_id].update(data)
        else:
            col[op.doc_id] = data


def _matches(data: Dict[str, Any], flt: Filter) -> bool:
    field_name, op, value = flt
    try:
        compare = _OPERATORS[op]
    except KeyError:
        raise ValueError(f"Unsupported filter operator: {op}")
    try:
        return bool(compare(data.get(field_name), value))
    except TypeError:
        return False


# =============================================================================
# FIRESTORE
# =============================================================================

class FirestoreDocumentStore(DocumentStore):
    """google-cloud-firestore backed store. Collections map 1:1 to top-level collections."""

    def __init__(self, project: Optional[str] = None, client: Any = None):
        if client is None:
            from google.cloud import firestore

            client = firestore.Client(project=project) if project else firestore.Client()
        self._db = client

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        snap = self._db.collection(collection).document(doc_id).get()
        return snap.to_dict() if snap.exists else None

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        self._db.collection(collection).document(doc_id).set(data, merge=merge)

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        from google.api_core.exceptions import NotFound

        try:
            self._db.collection(collection).document(doc_id).update(data)
        except NotFound as e:
            raise DocumentNotFound(f"{collection}/{doc_id}") from e

    def delete(self, collection: str, doc_id: str) -> None:
        self._db.collection(collection).document(doc_id).delete()

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        from google.cloud import firestore

        query = self._db.collection(collection)
        for field_name, op, value in filters:
            query = query.where(filter=firestore.FieldFilter(field_name, op, value))
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        if limit is not None:
            query = query.limit(limit)
        return [Document(doc.id, doc.to_dict() or {}) for doc in query.stream()]

    def commit(self, batch: WriteBatch) -> None:
        fs_batch = self._db.batch()
        for op in batch.ops:
            ref = self._db.collection(op.collection).document(op.doc_id)
            if op.kind == "delete":
                fs_batch.delete(ref)
            elif op.kind == "update":
                fs_batch.update(ref, op.data or {})
            else:
                fs_batch.set(ref, op.data or {}, merge=op.merge)
        fs_batch.commit()
        logger.debug("Committed batch of %d writes", len(batch.ops))

    def close(self) -> None:
        close = getattr(self._db, "close", None)
        if callable(close):
            close()
