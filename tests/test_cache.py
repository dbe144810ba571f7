"""Tests for the response cache and its HTTP behaviour."""

import fakeredis
import pytest
from fastapi.testclient import TestClient

from cache import MemoryCacheBackend, RedisCacheBackend, ResponseCache, build_cache
from main import create_app


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class BrokenBackend(MemoryCacheBackend):
    def get(self, key):
        raise RuntimeError("backend down")

    def set(self, key, value, ttl):
        raise RuntimeError("backend down")


class TestMemoryBackend:
    def test_expiry(self):
        clock = FakeClock()
        backend = MemoryCacheBackend(clock=clock)
        backend.set("k", {"v": 1}, ttl=10)
        assert backend.get("k") == {"v": 1}
        clock.now += 11
        assert backend.get("k") is None

    def test_values_are_copies(self):
        backend = MemoryCacheBackend()
        value = {"items": [1]}
        backend.set("k", value, ttl=10)
        value["items"].append(2)
        assert backend.get("k") == {"items": [1]}

    def test_flush_pattern(self):
        backend = MemoryCacheBackend()
        for key in ("aliens:list:1", "aliens:featured", "alien:detail:1", "user:1"):
            backend.set(key, 1, ttl=10)
        assert backend.flush_pattern("aliens:*") == 2
        assert backend.get("alien:detail:1") == 1
        assert backend.get("user:1") == 1

    def test_cleanup_expired(self):
        clock = FakeClock()
        backend = MemoryCacheBackend(clock=clock)
        backend.set("short", 1, ttl=5)
        backend.set("long", 1, ttl=50)
        clock.now += 10
        assert backend.cleanup_expired() == 1
        assert len(backend) == 1


class TestResponseCache:
    def test_backend_errors_are_swallowed(self):
        cache = ResponseCache(BrokenBackend())
        cache.set("k", 1)
        assert cache.get("k") is None

    def test_disabled_cache_stores_nothing(self):
        cache = ResponseCache(enabled=False)
        cache.set("k", 1)
        assert cache.get("k") is None

    def test_invalidate_alien(self):
        cache = ResponseCache()
        for key in ("alien:detail:a1", "alien:detail:a2", "alien:related:a2", "aliens:list:1:12"):
            cache.set(key, 1, ttl=60)
        cache.invalidate_alien("a1")
        assert cache.get("alien:detail:a1") is None
        assert cache.get("alien:related:a2") is None
        assert cache.get("aliens:list:1:12") is None
        assert cache.get("alien:detail:a2") == 1

    def test_invalidate_aliens(self):
        cache = ResponseCache()
        cache.set("alien:detail:a1", 1)
        cache.set("aliens:featured", 1)
        cache.invalidate_aliens()
        assert cache.size() == 0


class TestCachedRoutes:
    def test_miss_then_hit(self, client, make_alien):
        make_alien()
        first = client.get("/api/aliens")
        second = client.get("/api/aliens")
        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        assert second.headers["X-Cache-Key"].startswith("aliens:list:")
        assert first.json() == second.json()

    def test_query_params_change_key(self, client, make_alien):
        make_alien()
        client.get("/api/aliens?page=1")
        response = client.get("/api/aliens?page=2")
        assert response.headers["X-Cache"] == "MISS"

    def test_no_cache_header_bypasses(self, client, make_alien):
        make_alien()
        client.get("/api/aliens")
        response = client.get("/api/aliens", headers={"Cache-Control": "no-cache"})
        assert "X-Cache" not in response.headers

    def test_errors_are_not_cached(self, client):
        missing = "507f1f77bcf86cd799439011"
        client.get(f"/api/aliens/{missing}")
        response = client.get(f"/api/aliens/{missing}")
        assert response.status_code == 404
        assert "X-Cache" not in response.headers

    def test_stale_until_invalidated(self, client, db, make_alien):
        alien_id = make_alien(price=10.0)
        client.get(f"/api/aliens/{alien_id}")
        db["alien"].update_one({}, {"$set": {"price": 99.0}})
        cached = client.get(f"/api/aliens/{alien_id}")
        assert cached.headers["X-Cache"] == "HIT"
        assert cached.json()["data"]["price"] == 10.0

    def test_catalog_write_invalidates(self, client, admin_headers, make_alien):
        alien_id = make_alien(price=10.0)
        client.get(f"/api/aliens/{alien_id}")
        client.get("/api/aliens")
        client.put(f"/api/aliens/{alien_id}", json={"price": 20.0}, headers=admin_headers)

        detail = client.get(f"/api/aliens/{alien_id}")
        listing = client.get("/api/aliens")
        assert detail.headers["X-Cache"] == "MISS"
        assert detail.json()["data"]["price"] == 20.0
        assert listing.headers["X-Cache"] == "MISS"

    def test_disabled_cache_adds_no_headers(self, settings, db, make_alien):
        app = create_app(settings=settings, db=db, cache=ResponseCache(enabled=False))
        make_alien()
        with TestClient(app) as client:
            response = client.get("/api/aliens")
        assert response.status_code == 200
        assert "X-Cache" not in response.headers


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


class TestRedisBackend:
    def test_get_set_with_ttl(self, redis_client):
        backend = RedisCacheBackend(redis_client)
        backend.set("alien:detail:1", {"status": 200, "body": {"price": 10.0}}, ttl=30)
        assert backend.get("alien:detail:1") == {"status": 200, "body": {"price": 10.0}}
        assert 0 < redis_client.ttl("alien:detail:1") <= 30
        assert backend.get("alien:detail:2") is None

    def test_delete_and_flush_pattern(self, redis_client):
        backend = RedisCacheBackend(redis_client)
        for key in ("aliens:list:1", "aliens:featured", "alien:detail:1", "user:1"):
            backend.set(key, 1, ttl=60)
        assert backend.flush_pattern("aliens:*") == 2
        assert backend.delete("alien:detail:1") is True
        assert backend.delete("alien:detail:1") is False
        assert len(backend) == 1

    def test_cached_routes_use_redis(self, settings, db, redis_client, make_alien):
        app = create_app(settings=settings, db=db, cache=ResponseCache(RedisCacheBackend(redis_client)))
        make_alien()
        with TestClient(app) as client:
            first = client.get("/api/aliens")
            second = client.get("/api/aliens")
            health = client.get("/api/health").json()["data"]
        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        assert first.json() == second.json()
        assert health["cache"] == {"enabled": True, "backend": "redis", "keys": 1}


class TestBuildCache:
    def test_memory_without_redis_url(self, settings):
        cache = build_cache(settings)
        assert cache.status() == {"enabled": True, "backend": "memory", "keys": 0}

    def test_redis_when_reachable(self, settings, redis_client, monkeypatch):
        monkeypatch.setattr(RedisCacheBackend, "from_url", classmethod(lambda cls, url: cls(redis_client)))
        cache = build_cache(settings.model_copy(update={"redis_url": "redis://cache:6379/0"}))
        cache.set("aliens:featured", [1])
        assert cache.enabled is True
        assert redis_client.exists("aliens:featured") == 1

    def test_unreachable_redis_disables_cache(self, settings):
        cache = build_cache(settings.model_copy(update={"redis_url": "redis://127.0.0.1:1/0"}))
        assert cache.enabled is False
        assert cache.get("anything") is None
        assert cache.status() == {"enabled": False, "backend": "redis", "keys": 0}
