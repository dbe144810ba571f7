"""
Response cache

Two key/value stores with per-key expiry (in-process, or Redis when
REDIS_URL is set), a service object wrapping them for the application, and
the `cached` decorator used by GET handlers.
"""

import copy
import fnmatch
import functools
import json
import threading
import time
from typing import Any, Callable, Optional

import redis
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from config import Settings
from logging_config import get_logger

log = get_logger("cache")

ALIEN_LIST_TTL = 600
ALIEN_DETAIL_TTL = 900


class MemoryCacheBackend:
    """Thread-safe dict store; expired keys are dropped on read and by cleanup_expired()."""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._data[key]
                return None
            return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            self._data[key] = (self._clock() + ttl, copy.deepcopy(value))

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def flush_pattern(self, pattern: str) -> int:
        with self._lock:
            keys = [key for key in self._data if fnmatch.fnmatchcase(key, pattern)]
            for key in keys:
                del self._data[key]
        return len(keys)

    def cleanup_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (expires_at, _) in self._data.items() if expires_at <= now]
            for key in expired:
                del self._data[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class RedisCacheBackend:
    """Redis store. Values are JSON encoded and Redis handles expiry itself."""

    name = "redis"

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str, timeout: float = 2.0) -> "RedisCacheBackend":
        return cls(redis.Redis.from_url(
            url, decode_responses=True, socket_connect_timeout=timeout, socket_timeout=timeout,
        ))

    def ping(self) -> bool:
        return bool(self._client.ping())

    def get(self, key: str) -> Optional[Any]:
        raw = self._client.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any, ttl: int) -> None:
        self._client.setex(key, ttl, json.dumps(value))

    def delete(self, key: str) -> bool:
        return self._client.delete(key) > 0

    def flush_pattern(self, pattern: str) -> int:
        keys = list(self._client.scan_iter(match=pattern))
        if keys:
            self._client.delete(*keys)
        return len(keys)

    def cleanup_expired(self) -> int:
        return 0

    def clear(self) -> None:
        self._client.flushdb()

    def __len__(self) -> int:
        return self._client.dbsize()


class ResponseCache:
    """Application cache service. Backend failures are logged, never raised."""

    def __init__(self, backend=None, enabled: bool = True, default_ttl: int = 300):
        self.backend = backend if backend is not None else MemoryCacheBackend()
        self.enabled = enabled
        self.default_ttl = default_ttl

    def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            return self.backend.get(key)
        except Exception:
            log.exception("Cache get failed for key %s", key)
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        if not self.enabled:
            return
        try:
            self.backend.set(key, value, ttl or self.default_ttl)
            log.debug("Cached response for key: %s", key)
        except Exception:
            log.exception("Failed to cache response for key %s", key)

    def delete(self, key: str) -> None:
        if not self.enabled:
            return
        try:
            self.backend.delete(key)
        except Exception:
            log.exception("Cache delete failed for key %s", key)

    def flush_pattern(self, pattern: str) -> int:
        if not self.enabled:
            return 0
        try:
            return self.backend.flush_pattern(pattern)
        except Exception:
            log.exception("Cache flush failed for pattern %s", pattern)
            return 0

    def invalidate_aliens(self) -> None:
        self.flush_pattern("aliens:*")
        self.flush_pattern("alien:*")
        log.info("Invalidated all alien caches")

    def invalidate_alien(self, alien_id: str) -> None:
        self.delete(f"alien:detail:{alien_id}")
        self.flush_pattern("alien:related:*")
        self.flush_pattern("aliens:*")
        log.info("Invalidated cache for alien: %s", alien_id)

    def cleanup_expired(self) -> int:
        if not self.enabled:
            return 0
        try:
            return self.backend.cleanup_expired()
        except Exception:
            log.exception("Cache cleanup failed")
            return 0

    def size(self) -> int:
        if not self.enabled:
            return 0
        try:
            return len(self.backend)
        except Exception:
            log.exception("Cache size lookup failed")
            return 0

    def status(self) -> dict:
        return {"enabled": self.enabled, "backend": self.backend.name, "keys": self.size()}


def build_cache(settings: Settings) -> ResponseCache:
    """Memory cache by default; Redis when configured, switched off if unreachable."""
    if not settings.redis_url:
        return ResponseCache(MemoryCacheBackend(), enabled=settings.cache_enabled, default_ttl=settings.cache_default_ttl)

    backend = RedisCacheBackend.from_url(settings.redis_url)
    enabled = settings.cache_enabled
    if enabled:
        try:
            backend.ping()
            log.info("Connected to Redis cache")
        except redis.RedisError as e:
            log.warning("Redis unavailable, caching disabled: %s", e)
            enabled = False
    return ResponseCache(backend, enabled=enabled, default_ttl=settings.cache_default_ttl)


def get_cache(request: Request) -> ResponseCache:
    return request.app.state.cache


def query_key(prefix: str, *params: str, defaults: Optional[dict] = None) -> Callable[[Request], str]:
    """Key builder: prefix followed by the selected query params in order."""
    defaults = defaults or {}

    def build(request: Request) -> str:
        values = [request.query_params.get(name, str(defaults.get(name, ""))) for name in params]
        return ":".join([prefix, *values])

    return build


def path_key(prefix: str, param: str) -> Callable[[Request], str]:
    def build(request: Request) -> str:
        return f"{prefix}:{request.path_params[param]}"

    return build


def cached(ttl: int, key: Callable[[Request], str]):
    """Cache a GET handler's JSON result.

    The wrapped handler must take a `request: Request` parameter and return
    a JSON-able value. Requests sent with `Cache-Control: no-cache` skip the
    cache entirely; exceptions propagate and are never cached.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            request: Request = kwargs["request"]
            cache: ResponseCache = request.app.state.cache
            if not cache.enabled or request.headers.get("cache-control") == "no-cache":
                return func(*args, **kwargs)

            cache_key = key(request)
            hit = cache.get(cache_key)
            if hit is not None:
                log.debug("Cache HIT for key: %s", cache_key)
                return JSONResponse(
                    status_code=hit["status"],
                    content=hit["body"],
                    headers={"X-Cache": "HIT", "X-Cache-Key": cache_key},
                )

            log.debug("Cache MISS for key: %s", cache_key)
            result = func(*args, **kwargs)
            if isinstance(result, JSONResponse):
                status_code, body = result.status_code, json.loads(result.body)
            else:
                status_code, body = 200, jsonable_encoder(result)
            if 200 <= status_code < 300:
                cache.set(cache_key, {"status": status_code, "body": body}, ttl)
            return JSONResponse(
                status_code=status_code,
                content=body,
                headers={"X-Cache": "MISS", "X-Cache-Key": cache_key},
            )

        return wrapper

    return decorator
