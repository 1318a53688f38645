"""Tests for the /api/cache administration routes."""

from models.cache import CacheCategory


async def seed(cache, emails=2, events=1):
    for i in range(emails):
        await cache.set(f"emails:{i}", {"i": i}, CacheCategory.EMAILS)
    for i in range(events):
        await cache.set(f"events:{i}", {"i": i}, CacheCategory.EVENTS)


async def test_stats(client, cache):
    await seed(cache)

    response = await client.get("/api/cache/stats")

    body = response.json()
    assert body["success"] is True
    assert body["data"] == {"total": 3, "byCategory": {"emails": 2, "events": 1}, "expiredCount": 0}


async def test_stats_when_disconnected(client, database):
    await database.shutdown()

    response = await client.get("/api/cache/stats")

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["data"]["total"] == 0


async def test_detailed_stats(client, cache, clock):
    await seed(cache)
    await cache.set("summary:old", "x", CacheCategory.SUMMARY, ttl_seconds=1)
    clock.advance(5)

    response = await client.get("/api/cache/stats/detailed")

    data = response.json()["data"]
    assert data["total"] == 4
    assert data["expiredCount"] == 1
    assert data["fresh"] == 3


async def test_list_entries(client, cache):
    await seed(cache)

    response = await client.get("/api/cache/emails/entries", params={"limit": 1})

    body = response.json()
    assert body["category"] == "emails"
    assert body["count"] == 1
    assert body["entries"][0]["key"].startswith("emails:")
    assert body["entries"][0]["expiresAt"].endswith("+00:00")


async def test_clear_category(client, cache):
    await seed(cache)

    response = await client.delete("/api/cache/emails")

    assert response.json() == {
        "success": True,
        "category": "emails",
        "deletedCount": 2,
        "message": "Cleared 2 cache entries",
    }
    assert (await cache.stats()).total == 1


async def test_clear_all(client, cache):
    await seed(cache, emails=10, events=5)

    response = await client.delete("/api/cache/all")

    assert response.json()["deletedCount"] == 15
    assert (await cache.stats()).total == 0


async def test_unknown_category_is_rejected(client, cache):
    await seed(cache)

    response = await client.delete("/api/cache/weather")

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "emails" in body["allowed"]
    assert "all" in body["allowed"]
    assert (await cache.stats()).total == 3


async def test_unknown_category_entries_rejected(client):
    response = await client.get("/api/cache/all/entries")

    assert response.status_code == 400


async def test_clear_when_disconnected(client, database):
    await database.shutdown()

    response = await client.delete("/api/cache/emails")

    assert response.status_code == 503
    assert response.json()["deletedCount"] == 0


async def test_force_cleanup_route(client, cache, clock):
    await cache.set("emails:old", [], CacheCategory.EMAILS, ttl_seconds=1)
    clock.advance(2)

    response = await client.post("/api/cache/cleanup")

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["deletedCount"] == 1


async def test_force_cleanup_route_when_disconnected(client, database):
    await database.shutdown()

    response = await client.post("/api/cache/cleanup")

    assert response.status_code == 503
    assert response.json()["success"] is False


async def test_cleanup_status_route(client):
    response = await client.get("/api/cache/cleanup/status")

    assert response.json() == {"isRunning": False, "nextRunEstimate": None, "intervalMinutes": 15}
