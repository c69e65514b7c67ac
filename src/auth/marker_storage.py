"""
Storage for the "previously authenticated" marker.

The marker only decides whether start-up should probe a protected resource;
it is not a credential, so it is stored in plain form.
"""
import os
import json
import logging
from typing import Any, Optional, Protocol

import redis.asyncio as aioredis

from utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)

MARKER_KEY = "isAuthenticated"
MARKER_VALUE = "true"


class MarkerStorage(Protocol):
    """Async key/value interface the session holder persists its marker through."""

    async def get(self, key: str) -> Optional[Any]: ...
    async def put(self, key: str, value: Any) -> None: ...
    async def delete(self, key: str) -> bool: ...


class InMemoryMarkerStorage:
    """Process-local storage; forgets everything on exit."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._values: dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Optional[Any]:
        return self._values.get(key)

    async def put(self, key: str, value: Any) -> None:
        self._values[key] = value

    async def delete(self, key: str) -> bool:
        return self._values.pop(key, None) is not None


class DiskMarkerStorage:
    """Keeps all keys in a single JSON file."""

    def __init__(self, file_path: str):
        self._file_path = os.path.expanduser(file_path)
        directory = os.path.dirname(self._file_path)
        if directory:
            os.makedirs(directory, exist_ok=True, mode=0o700)

    def _load(self) -> dict[str, Any]:
        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            logger.warning(f"Marker file {self._file_path} is corrupt, ignoring it: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        with open(self._file_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.chmod(self._file_path, 0o600)

    async def get(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    async def put(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    async def delete(self, key: str) -> bool:
        data = self._load()
        if key not in data:
            return False
        del data[key]
        self._save(data)
        return True


class RedisMarkerStorage:
    """Redis-backed storage, for clients that run in several processes."""

    def __init__(
        self,
        namespace: str = "portal",
        redis_key_prefix: str = "portal:session",
        redis_client: Optional[aioredis.Redis] = None,
        redis_url: Optional[str] = None,
    ):
        self._namespace = namespace
        self._redis_key_prefix = redis_key_prefix
        self._client = redis_client or get_redis_client(redis_url)

    def _make_key(self, key: str) -> str:
        return f"{self._redis_key_prefix}:{self._namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        return await self._client.get(self._make_key(key))

    async def put(self, key: str, value: Any) -> None:
        await self._client.set(self._make_key(key), str(value))

    async def delete(self, key: str) -> bool:
        result = await self._client.delete(self._make_key(key))
        return result > 0


def create_marker_storage(storage_type: str = "memory", **kwargs) -> MarkerStorage:
    """
    Create marker storage by name.

    Args:
        storage_type: "memory", "disk" or "redis".
        **kwargs: ``marker_path`` for disk storage; ``redis_url`` / ``namespace`` for redis.
    """
    if storage_type == "memory":
        logger.warning("Using in-memory marker storage - the session marker will not survive a restart")
        return InMemoryMarkerStorage()

    if storage_type == "disk":
        marker_path = kwargs.get("marker_path")
        if not marker_path:
            raise ValueError("marker_path must be provided for disk marker storage")
        return DiskMarkerStorage(marker_path)

    if storage_type == "redis":
        return RedisMarkerStorage(
            namespace=kwargs.get("namespace", "portal"),
            redis_url=kwargs.get("redis_url"),
        )

    raise ValueError(f"Unknown marker storage type '{storage_type}'")
