import json
import logging
import os
from typing import Any, Optional

import redis

from studio.cache import Cache
from studio.errors import CacheFailure

log = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "").strip()
REDIS_TIMEOUT = float(os.getenv("REDIS_TIMEOUT", "0.35") or 0.35)


class RedisCache(Cache):
    """JSON values in Redis. Connection is lazy; nothing hits the network until first command."""

    backend = "redis"

    def __init__(self, redis_url: Optional[str] = None, timeout: Optional[float] = None, client: Any = None):
        self.redis_url = (redis_url or REDIS_URL).strip()
        if client is not None:
            self._client = client
        else:
            t = timeout or REDIS_TIMEOUT
            self._client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_timeout=t,
                socket_connect_timeout=t,
            )

    def ping(self) -> bool:
        return bool(self._client.ping())

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self._client.get(key)
        except redis.RedisError as exc:
            raise CacheFailure(f"redis get failed: {exc!r}") from exc
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise CacheFailure(f"redis value for {key[:40]} is not JSON") from exc

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        raw = json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
        try:
            if ttl_seconds and ttl_seconds > 0:
                self._client.setex(key, int(ttl_seconds), raw)
            else:
                self._client.set(key, raw)
        except redis.RedisError as exc:
            raise CacheFailure(f"redis set failed: {exc!r}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise CacheFailure(f"redis delete failed: {exc!r}") from exc

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError as exc:
            log.warning("cache: redis close failed: %r", exc)
