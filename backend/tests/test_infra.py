from app import app
from infra import cache_manager, rate_limiter
from infra.cache_manager import CacheScope, cache_get, cache_set, invalidate_cache


def test_cache_entries_are_namespaced_per_user():
    cache_manager.reset_cache()
    cache_set("dashboard", ("2026-10-12",), {"user": 1}, 60, scope=CacheScope(1))
    cache_set("dashboard", ("2026-10-12",), {"user": 2}, 60, scope=CacheScope(2))

    assert cache_get("dashboard", ("2026-10-12",), scope=CacheScope(1)) == {"user": 1}
    assert cache_get("dashboard", ("2026-10-12",), scope=CacheScope(2)) == {"user": 2}
    assert cache_get("dashboard", ("2026-10-12",), scope=CacheScope(3)) is None


def test_cache_returns_copies_and_expires():
    cache_manager.reset_cache()
    clock = {"now": 1000.0}
    cache_manager.set_time_provider(lambda: clock["now"])
    try:
        value = {"items": [1]}
        cache_set("usage", ("w",), value, 60, scope=CacheScope(1))
        value["items"].append(2)
        cached = cache_get("usage", ("w",), scope=CacheScope(1))
        assert cached == {"items": [1]}
        cached["items"].append(3)
        assert cache_get("usage", ("w",), scope=CacheScope(1)) == {"items": [1]}

        clock["now"] += 61
        assert cache_get("usage", ("w",), scope=CacheScope(1)) is None
    finally:
        cache_manager.set_time_provider(__import__("time").time)


def test_invalidate_cache_drops_prefix_for_all_users():
    cache_manager.reset_cache()
    cache_set("dashboard", ("a",), 1, 60, scope=CacheScope(1))
    cache_set("dashboard", ("a",), 2, 60, scope=CacheScope(2))
    cache_set("usage", ("a",), 3, 60, scope=CacheScope(1))

    invalidate_cache("dashboard")

    assert cache_manager.cache_size() == 1
    assert cache_get("usage", ("a",), scope=CacheScope(1)) == 3


def test_user_invalidator_keeps_other_users_views():
    cache_manager.reset_cache()
    cache_set("dashboard", ("2026-10-12",), 1, 60, scope=CacheScope(1))
    cache_set("dashboard", ("2026-10-12",), 12, 60, scope=CacheScope(12))
    cache_set("usage", ("2026-10-12", "historical"), 2, 60, scope=CacheScope(1))

    invalidate = cache_manager.user_invalidator(1)
    invalidate("dashboard")
    invalidate("usage")

    assert cache_get("dashboard", ("2026-10-12",), scope=CacheScope(1)) is None
    assert cache_get("usage", ("2026-10-12", "historical"), scope=CacheScope(1)) is None
    assert cache_get("dashboard", ("2026-10-12",), scope=CacheScope(12)) == 12


def test_rate_limiter_sliding_window():
    rate_limiter.reset()
    clock = {"now": 0.0}
    rate_limiter.set_time_provider(lambda: clock["now"])
    try:
        assert rate_limiter.check_rate_limit("start_log", "user:1", 2, 60) is False
        assert rate_limiter.check_rate_limit("start_log", "user:1", 2, 60) is False
        assert rate_limiter.check_rate_limit("start_log", "user:1", 2, 60) is True
        assert rate_limiter.check_rate_limit("start_log", "user:2", 2, 60) is False
        clock["now"] = 61.0
        assert rate_limiter.check_rate_limit("start_log", "user:1", 2, 60) is False
    finally:
        rate_limiter.set_time_provider(__import__("time").time)
        rate_limiter.reset()


def test_mutating_endpoints_are_rate_limited(client, headers, monkeypatch):
    monkeypatch.setitem(app.config["RATE_LIMITS"], "add_activity", {"limit": 2, "window": 60})

    for name in ("Chess", "Piano"):
        assert client.post("/activities", json={"name": name}, headers=headers).status_code == 201

    limited = client.post("/activities", json={"name": "Go"}, headers=headers)
    assert limited.status_code == 429
    assert limited.get_json()["error"]["code"] == "too_many_requests"
