"""Composition result caches injected into the patch service."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Generic, Mapping, Optional, Protocol, TypeVar

T = TypeVar("T")


def cache_key(fields: Mapping[str, Any]) -> str:
    """Return the MD5 of ``fields`` serialised as sorted JSON."""
    payload = json.dumps(dict(fields), sort_keys=True, default=str)
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


class CompositionCache(Protocol[T]):
    def get(self, file_path: str, key: str) -> Optional[T]:
        ...

    def set(self, file_path: str, key: str, value: T) -> None:
        ...

    def clear(self, file_path: Optional[str] = None) -> None:
        ...


class InMemoryCompositionCache(Generic[T]):
    """Per-instance dictionary cache grouped by file path."""

    def __init__(self) -> None:
        self._entries: Dict[str, Dict[str, T]] = {}

    def get(self, file_path: str, key: str) -> Optional[T]:
        return self._entries.get(file_path, {}).get(key)

    def set(self, file_path: str, key: str, value: T) -> None:
        self._entries.setdefault(file_path, {})[key] = value

    def clear(self, file_path: Optional[str] = None) -> None:
        if file_path is None:
            self._entries.clear()
        else:
            self._entries.pop(file_path, None)

    def __len__(self) -> int:
        return sum(len(group) for group in self._entries.values())


class NullCompositionCache(Generic[T]):
    """Cache that never stores anything; used when caching is disabled."""

    def get(self, file_path: str, key: str) -> Optional[T]:
        return None

    def set(self, file_path: str, key: str, value: T) -> None:
        return None

    def clear(self, file_path: Optional[str] = None) -> None:
        return None
