"""
Document store abstraction for Firestore, SQL (SQLAlchemy) and an in-memory test implementation.

Records are plain camelCase dicts keyed by (collection, doc_id). `update` takes
dotted field paths and understands the Firestore transforms `DELETE_FIELD`,
`ArrayUnion` and `ArrayRemove`, so handlers can be written once against the
Protocol.
"""

from __future__ import annotations

import copy
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol, Sequence

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1 import DELETE_FIELD, ArrayRemove, ArrayUnion
from google.cloud.firestore_v1.base_query import FieldFilter
from sqlalchemy import JSON, Column, Float, String, create_engine, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from shared.errors import RecordNotFoundError

# (field path, operator, value), the same shape Firestore's `where` takes.
QueryFilter = tuple[str, str, Any]

SUPPORTED_OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in", "array_contains")


class WriteBatch(Protocol):
    """Groups writes into one best-effort atomic commit."""

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        ...

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        ...

    def delete(self, collection: str, doc_id: str) -> None:
        ...

    def commit(self) -> None:
        ...


class DocumentStore(Protocol):
    """Interface for document store access."""

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        ...

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        ...

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        ...

    def delete(self, collection: str, doc_id: str) -> None:
        ...

    def query(
        self, collection: str, filters: Sequence[QueryFilter] = ()
    ) -> list[tuple[str, dict]]:
        ...

    def list_ids(self, collection: str) -> list[str]:
        ...

    def new_id(self, collection: str) -> str:
        ...

    def batch(self) -> WriteBatch:
        ...


def get_path(data: dict, path: str) -> Any:
    """Reads a dotted field path, returning None when any segment is missing."""
    value: Any = data
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def apply_updates(data: dict, updates: dict) -> dict:
    """Returns a copy of `data` with dotted-path updates and transforms applied."""
    result = copy.deepcopy(data)
    for path, value in updates.items():
        parts = path.split(".")
        node = result
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if value is DELETE_FIELD:
                    node = None
                    break
                child = {}
                node[part] = child
            node = child
        if node is None:
            continue
        leaf = parts[-1]
        if value is DELETE_FIELD:
            node.pop(leaf, None)
        elif isinstance(value, ArrayUnion):
            current = list(node.get(leaf) or [])
            for item in value.values:
                if item not in current:
                    current.append(item)
            node[leaf] = current
        elif isinstance(value, ArrayRemove):
            node[leaf] = [item for item in node.get(leaf) or [] if item not in value.values]
        else:
            node[leaf] = copy.deepcopy(value)
    return result


def merge_data(existing: dict, data: dict) -> dict:
    """Deep merges nested maps the way `set(..., merge=True)` does."""
    result = copy.deepcopy(existing)
    for key, value in data.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge_data(result[key], value)
        else:
            result = apply_updates(result, {key: value})
    return result


def matches(data: dict, filters: Iterable[QueryFilter]) -> bool:
    """Evaluates query filters; a missing field never matches."""
    for path, op, expected in filters:
        if op not in SUPPORTED_OPERATORS:
            raise ValueError(f"Unsupported query operator: {op}")
        actual = get_path(data, path)
        if actual is None:
            if op == "==" and expected is None:
                continue
            return False
        try:
            if op == "==" and not actual == expected:
                return False
            if op == "!=" and not actual != expected:
                return False
            if op == "<" and not actual < expected:
                return False
            if op == "<=" and not actual <= expected:
                return False
            if op == ">" and not actual > expected:
                return False
            if op == ">=" and not actual >= expected:
                return False
        except TypeError:
            return False
        if op == "in" and actual not in expected:
            return False
        if op == "array_contains" and (
            not isinstance(actual, list) or expected not in actual
        ):
            return False
    return True


def _strip_transforms(data: dict) -> dict:
    return apply_updates({}, data)


class InMemoryDocumentStore:
    """Simple in-memory document store for development and tests."""

    def __init__(self):
        self.collections: dict[str, dict[str, dict]] = {}
        self.write_count = 0

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.collections.clear()
        self.write_count = 0

    def _docs(self, collection: str) -> dict[str, dict]:
        return self.collections.setdefault(collection, {})

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        doc = self._docs(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        docs = self._docs(collection)
        if merge and doc_id in docs:
            docs[doc_id] = merge_data(docs[doc_id], data)
        else:
            docs[doc_id] = _strip_transforms(data)
        self.write_count += 1

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        docs = self._docs(collection)
        if doc_id not in docs:
            raise RecordNotFoundError(collection, doc_id)
        docs[doc_id] = apply_updates(docs[doc_id], updates)
        self.write_count += 1

    def delete(self, collection: str, doc_id: str) -> None:
        self._docs(collection).pop(doc_id, None)
        self.write_count += 1

    def query(
        self, collection: str, filters: Sequence[QueryFilter] = ()
    ) -> list[tuple[str, dict]]:
        return [
            (doc_id, copy.deepcopy(doc))
            for doc_id, doc in sorted(self._docs(collection).items())
            if matches(doc, filters)
        ]

    def list_ids(self, collection: str) -> list[str]:
        return sorted(self._docs(collection))

    def new_id(self, collection: str) -> str:
        return uuid.uuid4().hex[:20]

    def batch(self) -> "QueuedWriteBatch":
        return QueuedWriteBatch(self)


@dataclass
class QueuedWriteBatch:
    """Buffers writes and applies them on commit.

    Every update target is checked before anything is applied, so a batch
    referencing a missing document writes nothing.
    """

    store: Any
    operations: list[tuple] = field(default_factory=list)

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        self.operations.append(("set", collection, doc_id, data, merge))

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        self.operations.append(("update", collection, doc_id, updates, None))

    def delete(self, collection: str, doc_id: str) -> None:
        self.operations.append(("delete", collection, doc_id, None, None))

    def __len__(self) -> int:
        return len(self.operations)

    def commit(self) -> None:
        created: set[tuple[str, str]] = set()
        for kind, collection, doc_id, _, _ in self.operations:
            key = (collection, doc_id)
            if kind == "set":
                created.add(key)
            elif kind == "delete":
                created.discard(key)
            elif key not in created and self.store.get(collection, doc_id) is None:
                raise RecordNotFoundError(collection, doc_id)

        for kind, collection, doc_id, data, merge in self.operations:
            if kind == "set":
                self.store.set(collection, doc_id, data, merge=merge)
            elif kind == "update":
                self.store.update(collection, doc_id, data)
            else:
                self.store.delete(collection, doc_id)
        self.operations = []


class FirestoreDocumentStore:
    """Firestore-backed implementation using firebase-admin."""

    def __init__(self, client=None):
        if client is None:
            client = firestore.client()
        self._client = client

    def _ref(self, collection: str, doc_id: str):
        return self._client.collection(collection).document(doc_id)

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        snapshot = self._ref(collection, doc_id).get()
        if not snapshot.exists:
            return None
        return snapshot.to_dict()

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        self._ref(collection, doc_id).set(data, merge=merge)

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        try:
            self._ref(collection, doc_id).update(updates)
        except google_exceptions.NotFound as e:
            raise RecordNotFoundError(collection, doc_id) from e

    def delete(self, collection: str, doc_id: str) -> None:
        self._ref(collection, doc_id).delete()

    def query(
        self, collection: str, filters: Sequence[QueryFilter] = ()
    ) -> list[tuple[str, dict]]:
        query = self._client.collection(collection)
        for path, op, value in filters:
            query = query.where(filter=FieldFilter(path, op, value))
        return sorted(
            ((snapshot.id, snapshot.to_dict()) for snapshot in query.stream()),
            key=lambda pair: pair[0],
        )

    def list_ids(self, collection: str) -> list[str]:
        return [ref.id for ref in self._client.collection(collection).list_documents()]

    def new_id(self, collection: str) -> str:
        return self._client.collection(collection).document().id

    def batch(self) -> "FirestoreWriteBatch":
        return FirestoreWriteBatch(self._client)


class FirestoreWriteBatch:
    def __init__(self, client):
        self._client = client
        self._batch = client.batch()
        self._size = 0

    def _ref(self, collection: str, doc_id: str):
        return self._client.collection(collection).document(doc_id)

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        self._batch.set(self._ref(collection, doc_id), data, merge=merge)
        self._size += 1

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        self._batch.update(self._ref(collection, doc_id), updates)
        self._size += 1

    def delete(self, collection: str, doc_id: str) -> None:
        self._batch.delete(self._ref(collection, doc_id))
        self._size += 1

    def __len__(self) -> int:
        return self._size

    def commit(self) -> None:
        try:
            self._batch.commit()
        except google_exceptions.NotFound as e:
            raise RecordNotFoundError("batch", str(e)) from e


class SqlDocumentStore:
    """
    SQLAlchemy-backed implementation storing each document as a JSON row.
    Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDocumentStore")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self.Session() as session:
            row = session.get(DocumentRow, (collection, doc_id))
            return copy.deepcopy(row.data) if row else None

    def _set(self, session: Session, collection: str, doc_id: str, data: dict, merge: bool) -> None:
        row = session.get(DocumentRow, (collection, doc_id))
        if row and merge:
            row.data = merge_data(row.data, data)
            row.updated_at = time.time()
        elif row:
            row.data = _strip_transforms(data)
            row.updated_at = time.time()
        else:
            session.add(
                DocumentRow(
                    collection=collection,
                    doc_id=doc_id,
                    data=_strip_transforms(data),
                    updated_at=time.time(),
                )
            )

    def _update(self, session: Session, collection: str, doc_id: str, updates: dict) -> None:
        row = session.get(DocumentRow, (collection, doc_id))
        if not row:
            raise RecordNotFoundError(collection, doc_id)
        row.data = apply_updates(row.data, updates)
        row.updated_at = time.time()

    def _delete(self, session: Session, collection: str, doc_id: str) -> None:
        row = session.get(DocumentRow, (collection, doc_id))
        if row:
            session.delete(row)

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        with self.Session() as session:
            self._set(session, collection, doc_id, data, merge)
            session.commit()

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        with self.Session() as session:
            self._update(session, collection, doc_id, updates)
            session.commit()

    def delete(self, collection: str, doc_id: str) -> None:
        with self.Session() as session:
            self._delete(session, collection, doc_id)
            session.commit()

    def query(
        self, collection: str, filters: Sequence[QueryFilter] = ()
    ) -> list[tuple[str, dict]]:
        # Filters run in Python so dotted paths behave the same on every dialect.
        with self.Session() as session:
            stmt = (
                select(DocumentRow)
                .where(DocumentRow.collection == collection)
                .order_by(DocumentRow.doc_id.asc())
            )
            rows = session.execute(stmt).scalars().all()
            return [
                (row.doc_id, copy.deepcopy(row.data))
                for row in rows
                if matches(row.data, filters)
            ]

    def list_ids(self, collection: str) -> list[str]:
        with self.Session() as session:
            stmt = (
                select(DocumentRow.doc_id)
                .where(DocumentRow.collection == collection)
                .order_by(DocumentRow.doc_id.asc())
            )
            return list(session.execute(stmt).scalars().all())

    def new_id(self, collection: str) -> str:
        return uuid.uuid4().hex[:20]

    def batch(self) -> "SqlWriteBatch":
        return SqlWriteBatch(self)


@dataclass
class SqlWriteBatch:
    """Applies buffered writes inside one SQL transaction."""

    store: SqlDocumentStore
    operations: list[tuple] = field(default_factory=list)

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        self.operations.append(("set", collection, doc_id, data, merge))

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        self.operations.append(("update", collection, doc_id, updates, None))

    def delete(self, collection: str, doc_id: str) -> None:
        self.operations.append(("delete", collection, doc_id, None, None))

    def __len__(self) -> int:
        return len(self.operations)

    def commit(self) -> None:
        with self.store.Session() as session:
            for kind, collection, doc_id, data, merge in self.operations:
                if kind == "set":
                    self.store._set(session, collection, doc_id, data, merge)
                elif kind == "update":
                    self.store._update(session, collection, doc_id, data)
                else:
                    self.store._delete(session, collection, doc_id)
                session.flush()
            session.commit()
        self.operations = []


Base = declarative_base()


class DocumentRow(Base):
    __tablename__ = "documents"

    collection = Column(String, primary_key=True)
    doc_id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    updated_at = Column(Float, nullable=False)
