from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Optional

from studio.errors import CacheFailure

log = logging.getLogger(__name__)

CACHE_DIR = os.getenv("CACHE_DIR", "").strip()


class Cache:
    """Best-effort key/value store with expiry. Never required for correctness."""

    backend = "none"

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


class NullCache(Cache):
    backend = "none"

    def get(self, key: str) -> Optional[Any]:
        return None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        return None

    def delete(self, key: str) -> None:
        return None


class FileCache(Cache):
    """One JSON file per key; writes go through a tmp file and an atomic replace."""

    backend = "file"

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        h = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{h}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                entry = json.load(f)
        except (OSError, ValueError) as exc:
            raise CacheFailure(f"file cache read failed for {path.name}: {exc!r}") from exc
        expires_at = entry.get("expires_at") or 0
        if expires_at and time.time() >= expires_at:
            try:
                path.unlink(missing_ok=True)
            except OSError:
                pass
            return None
        return entry.get("value")

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        path = self._path(key)
        entry = {
            "key": key,
            "expires_at": (time.time() + ttl_seconds) if ttl_seconds and ttl_seconds > 0 else 0,
            "value": value,
        }
        tmp = path.with_suffix(".json.tmp")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(entry, f, ensure_ascii=False, separators=(",", ":"), default=str)
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as exc:
            raise CacheFailure(f"file cache write failed for {path.name}: {exc!r}") from exc

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise CacheFailure(f"file cache delete failed: {exc!r}") from exc


def connect_cache(redis_url: Optional[str] = None, cache_dir: Optional[str] = None) -> Cache:
    """Build the process-wide cache once at startup.

    Redis when configured and reachable, then a file cache, then no cache.
    A failed connection degrades to the next option instead of failing startup.
    """
    from studio import redis_cache

    url = redis_url if redis_url is not None else redis_cache.REDIS_URL
    if url:
        try:
            cache = redis_cache.RedisCache(url)
            cache.ping()
            log.info("cache: connected to redis")
            return cache
        except Exception as exc:
            log.warning("cache: redis unavailable (%r); continuing without it", exc)

    directory = cache_dir if cache_dir is not None else CACHE_DIR
    if directory:
        try:
            cache = FileCache(directory)
            log.info("cache: using file cache dir=%s", directory)
            return cache
        except OSError as exc:
            log.warning("cache: file cache unavailable (%r); continuing without it", exc)

    log.info("cache: disabled")
    return NullCache()
