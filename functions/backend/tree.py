"""
Tree store abstraction for the Realtime Database and an in-memory test implementation.

Paths are slash separated ("/completedInspections/abc"). Writing None deletes
the node, and empty parents disappear, mirroring the Realtime Database.
"""

from __future__ import annotations

import copy
import uuid
from typing import Any, Callable, Optional, Protocol

from firebase_admin import db


class TreeStore(Protocol):
    """Interface for the path-addressed store that holds proxies."""

    def get(self, path: str) -> Any:
        ...

    def set(self, path: str, value: Any) -> None:
        ...

    def update(self, updates: dict[str, Any]) -> None:
        ...

    def delete(self, path: str) -> None:
        ...

    def child_keys(self, path: str) -> list[str]:
        ...

    def push(self, path: str, value: Any) -> str:
        ...

    def transaction(self, path: str, update_fn: Callable[[Any], Any]) -> Any:
        ...


def split_path(path: str) -> list[str]:
    return [part for part in path.split("/") if part]


def join_path(*parts: str) -> str:
    return "/" + "/".join(p.strip("/") for p in parts if p and p.strip("/"))


def _compact(value: Any) -> Any:
    """Drops None leaves, empty maps and empty lists, which the tree store cannot hold."""
    if isinstance(value, dict):
        result = {}
        for k, v in value.items():
            v = _compact(v)
            if v is not None:
                result[k] = v
        return result or None
    if isinstance(value, list):
        return [_compact(v) for v in value] or None
    return value


class InMemoryTreeStore:
    """Nested-dict tree for development and tests."""

    def __init__(self):
        self.root: dict = {}
        self.write_count = 0

    def reset(self) -> None:
        self.root = {}
        self.write_count = 0

    def _node(self, parts: list[str]) -> Any:
        node: Any = self.root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def _write(self, parts: list[str], value: Any) -> None:
        value = _compact(copy.deepcopy(value))
        if not parts:
            self.root = value if isinstance(value, dict) else {}
            return
        if value is None:
            self._remove(self.root, parts)
            return
        node = self.root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value

    def _remove(self, node: dict, parts: list[str]) -> None:
        head = parts[0]
        if head not in node:
            return
        if len(parts) == 1:
            del node[head]
            return
        child = node[head]
        if isinstance(child, dict):
            self._remove(child, parts[1:])
            if not child:
                del node[head]

    def get(self, path: str) -> Any:
        return copy.deepcopy(self._node(split_path(path)))

    def set(self, path: str, value: Any) -> None:
        self._write(split_path(path), value)
        self.write_count += 1

    def update(self, updates: dict[str, Any]) -> None:
        for path, value in updates.items():
            self._write(split_path(path), value)
        self.write_count += 1

    def delete(self, path: str) -> None:
        self._write(split_path(path), None)
        self.write_count += 1

    def child_keys(self, path: str) -> list[str]:
        node = self._node(split_path(path))
        return sorted(node) if isinstance(node, dict) else []

    def push(self, path: str, value: Any) -> str:
        key = uuid.uuid4().hex[:20]
        self.set(join_path(path, key), value)
        return key

    def transaction(self, path: str, update_fn: Callable[[Any], Any]) -> Any:
        new_value = update_fn(self.get(path))
        self.set(path, new_value)
        return new_value


class RealtimeTreeStore:
    """Firebase Realtime Database implementation using firebase-admin."""

    def __init__(self, url: Optional[str] = None):
        self.url = url

    def _ref(self, path: str):
        return db.reference(path, url=self.url)

    def get(self, path: str) -> Any:
        return self._ref(path).get()

    def set(self, path: str, value: Any) -> None:
        value = _compact(value)
        if value is None:
            self._ref(path).delete()
        else:
            self._ref(path).set(value)

    def update(self, updates: dict[str, Any]) -> None:
        # Multi-path update; None values delete their paths.
        payload = {path.lstrip("/"): _compact(value) for path, value in updates.items()}
        self._ref("/").update(payload)

    def delete(self, path: str) -> None:
        self._ref(path).delete()

    def child_keys(self, path: str) -> list[str]:
        value = self._ref(path).get(shallow=True)
        return sorted(value) if isinstance(value, dict) else []

    def push(self, path: str, value: Any) -> str:
        return self._ref(path).push(_compact(value)).key

    def transaction(self, path: str, update_fn: Callable[[Any], Any]) -> Any:
        return self._ref(path).transaction(update_fn)
