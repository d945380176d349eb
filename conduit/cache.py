"""Tool result cache.

An explicit collaborator handed to the dispatcher, never a module-level
singleton, so each test (or each deployment) decides whether results are
reused and for how long.
"""

import hashlib
import json
import logging
from typing import Any, Dict, Optional

from cachetools import TTLCache

from conduit.orchestration.models import canonical_parameters

logger = logging.getLogger(__name__)


def cache_key(
    tool_name: str,
    arguments: Dict[str, Any],
    credentials: Optional[Dict[str, str]] = None,
) -> str:
    """Key derived from the tool name, canonical arguments and caller.

    Credentials decide whose data a tool returns, so a digest of the sorted
    credential map is part of the key. The raw values are never stored.
    """
    caller = hashlib.sha256(
        json.dumps(credentials or {}, sort_keys=True).encode("utf-8")
    ).hexdigest()[:16]
    return f"{caller}:{tool_name}:{canonical_parameters(arguments)}"


class ToolResultCache:
    """TTL-bounded store of raw tool-service results.

    A ttl of 0 disables the cache: ``get`` always misses and ``put`` is a
    no-op.
    """

    def __init__(self, ttl_seconds: float, maxsize: int = 256) -> None:
        self.ttl_seconds = ttl_seconds
        self._store: Optional[TTLCache] = (
            TTLCache(maxsize=maxsize, ttl=ttl_seconds) if ttl_seconds > 0 else None
        )
        self.hits = 0
        self.misses = 0

    @property
    def enabled(self) -> bool:
        return self._store is not None

    def get(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
        credentials: Optional[Dict[str, str]] = None,
    ) -> Optional[Any]:
        if self._store is None:
            return None
        key = cache_key(tool_name, arguments, credentials)
        if key in self._store:
            self.hits += 1
            logger.debug(f"Tool cache hit: {tool_name}")
            return self._store[key]
        self.misses += 1
        return None

    def put(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
        result: Any,
        credentials: Optional[Dict[str, str]] = None,
    ) -> None:
        if self._store is None or result is None:
            return
        self._store[cache_key(tool_name, arguments, credentials)] = result

    def clear(self) -> None:
        if self._store is not None:
            self._store.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._store) if self._store is not None else 0
