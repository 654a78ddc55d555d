"""Bounded LRU cache for model responses."""

from __future__ import annotations

import hashlib
import json
import threading
from collections import OrderedDict

from codeloom.orchestration.schemas import ModelResponse, RequestOptions


def make_cache_key(prompt: str, options: RequestOptions) -> str:
    """sha256 of the normalized (prompt, options) pair.

    Line endings and surrounding whitespace in the prompt are normalized;
    options that do not change the output (timeout, use_cache) are
    excluded.
    """
    normalized = prompt.replace("\r\n", "\n").strip()
    payload = json.dumps(
        {"prompt": normalized, "options": options.cache_fields()},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ResponseCache:
    """Least-recently-used map guarded by a lock."""

    def __init__(self, max_size: int = 100) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._entries: OrderedDict[str, ModelResponse] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> ModelResponse | None:
        with self._lock:
            value = self._entries.get(key)
            if value is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def put(self, key: str, value: ModelResponse) -> None:
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
