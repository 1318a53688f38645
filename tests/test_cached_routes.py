"""Route-level caching: hits, misses, forced refresh and store outages."""

from unittest.mock import AsyncMock

from core.entry_store import StoreResult
from core.errors import StoreUnavailable
from models.cache import CacheCategory

EMAILS_REPLY = 'Here you go:\n[{"id": "m1", "subject": "Lunch?", "sender": "sam@example.com"}]'


async def test_mail_miss_then_hit(client, agent):
    agent.run.return_value = EMAILS_REPLY

    first = await client.get("/api/mail")
    second = await client.get("/api/mail")

    assert first.status_code == 200
    assert first.json()["cached"] is False
    assert first.json()["data"][0]["subject"] == "Lunch?"

    body = second.json()
    assert body["cached"] is True
    assert body["message"] == "Response served from cache"
    assert body["data"] == first.json()["data"]
    assert agent.run.await_count == 1


async def test_empty_result_is_served_from_cache(client, agent):
    agent.run.return_value = "No important emails today."

    await client.get("/api/mail")
    second = await client.get("/api/mail")

    assert second.json()["cached"] is True
    assert second.json()["data"] == []
    assert agent.run.await_count == 1


async def test_forced_refresh_runs_handler_and_rewrites_entry(client, agent):
    agent.run.return_value = EMAILS_REPLY
    await client.get("/api/mail")

    agent.run.return_value = '[{"id": "m2", "subject": "Updated"}]'
    refreshed = await client.get("/api/mail", params={"refresh": "true"})
    after = await client.get("/api/mail")

    assert refreshed.json()["cached"] is False
    assert refreshed.json()["data"][0]["subject"] == "Updated"
    assert after.json()["cached"] is True
    assert after.json()["data"][0]["subject"] == "Updated"
    assert agent.run.await_count == 2


async def test_entry_expires_after_ttl(client, agent, clock):
    agent.run.return_value = '[{"id": "x"}]'
    await client.post("/api/agent/query", json={"query": "status"})

    clock.advance(301)
    again = await client.post("/api/agent/query", json={"query": "status"})

    assert again.json()["cached"] is False
    assert agent.run.await_count == 2


async def test_agent_query_cached_per_query_and_steps(client, agent):
    agent.run.return_value = "Sunny"

    first = await client.post("/api/agent/query", json={"query": "Weather?"})
    repeat = await client.post("/api/agent/query", json={"query": "Weather?"})
    other_steps = await client.post("/api/agent/query", json={"query": "Weather?", "maxSteps": 8})

    assert first.json()["data"]["response"] == "Sunny"
    assert repeat.json()["cached"] is True
    assert other_steps.json()["cached"] is False
    assert agent.run.await_count == 2


async def test_agent_query_body_refresh_flag(client, agent):
    await client.post("/api/agent/query", json={"query": "Weather?"})
    forced = await client.post("/api/agent/query", json={"query": "Weather?", "refresh": True})

    assert forced.json()["cached"] is False
    assert agent.run.await_count == 2


async def test_agent_query_without_query_is_rejected_and_not_cached(client, agent, cache):
    response = await client.post("/api/agent/query", json={})

    assert response.status_code == 400
    assert (await cache.stats()).total == 0
    agent.run.assert_not_awaited()


async def test_agent_test_route_uses_its_own_category(client, agent, cache):
    await client.post("/api/agent/query", json={"query": "ping"})
    test_call = await client.post("/api/agent/test", json={"query": "ping"})

    assert test_call.json()["cached"] is False
    stats = await cache.stats()
    assert stats.by_category == {"agent_response": 1, "agent_test": 1}


async def test_agent_failure_is_not_cached(client, agent, cache):
    agent.run.side_effect = RuntimeError("rate limited")

    response = await client.post("/api/agent/query", json={"query": "Weather?"})

    assert response.status_code == 500
    assert (await cache.stats()).total == 0


async def test_tools_cached_for_half_hour(client, agent, cache):
    agent.run.return_value = "calendar, gmail"

    await client.get("/api/agent/tools")
    hit = await client.get("/api/agent/tools")
    entries = await cache.list_by_category(CacheCategory.AGENT_TOOLS)

    assert hit.json()["cached"] is True
    assert entries[0].expires_at - entries[0].created_at == 1800


async def test_summary_shares_key_when_only_later_items_differ(client, agent):
    emails = [{"id": f"m{i}", "subject": f"Subject {i}"} for i in range(4)]
    events = [{"id": "e1", "title": "Gym", "time": "7am"}]
    agent.run.return_value = "First summary"

    first = await client.post("/api/agent/summary", json={"emails": emails, "events": events})

    changed = emails[:3] + [{"id": "m99", "subject": "Brand new"}]
    agent.run.return_value = "Second summary"
    second = await client.post("/api/agent/summary", json={"emails": changed, "events": events})

    assert first.json()["data"]["summary"] == "First summary"
    assert second.json()["cached"] is True
    assert second.json()["data"]["summary"] == "First summary"
    assert agent.run.await_count == 1


async def test_summary_fallback_is_not_cached(client, agent, cache):
    agent.run.side_effect = RuntimeError("model overloaded")

    response = await client.post("/api/agent/summary", json={"emails": [], "events": []})

    assert response.status_code == 200
    assert response.json()["data"]["fallback"] is True
    assert (await cache.stats()).total == 0


async def test_summary_requires_emails_and_events(client):
    response = await client.post("/api/agent/summary", json={"emails": []})

    assert response.status_code == 400


async def test_agent_status_is_never_cached(client, cache):
    response = await client.get("/api/agent/status")

    assert response.json()["data"]["agentAvailable"] is True
    assert "cached" not in response.json()
    assert (await cache.stats()).total == 0


async def test_unavailable_agent_returns_503(client, agent):
    agent.is_available = False

    response = await client.get("/api/mail")

    assert response.status_code == 503


async def test_store_down_still_serves_requests(client, agent, database):
    agent.run.return_value = EMAILS_REPLY
    await database.shutdown()

    first = await client.get("/api/mail")
    second = await client.get("/api/mail")

    assert first.status_code == second.status_code == 200
    assert first.json()["cached"] is False
    assert second.json()["cached"] is False
    assert agent.run.await_count == 2


async def test_cache_read_error_is_treated_as_miss(client, agent, cache, monkeypatch):
    agent.run.return_value = EMAILS_REPLY
    monkeypatch.setattr(cache, "get", AsyncMock(side_effect=RuntimeError("boom")))

    response = await client.get("/api/mail")

    assert response.status_code == 200
    assert response.json()["cached"] is False


async def test_failed_write_back_still_serves_response(client, agent, store, monkeypatch):
    agent.run.return_value = EMAILS_REPLY
    upsert = AsyncMock(return_value=StoreResult.failure(StoreUnavailable("upsert", "disk full")))
    monkeypatch.setattr(store, "upsert", upsert)

    first = await client.get("/api/mail")
    second = await client.get("/api/mail")

    for response in (first, second):
        assert response.status_code == 200
        assert response.json()["cached"] is False
        assert response.json()["data"][0]["subject"] == "Lunch?"
    assert upsert.await_count == 2
    assert agent.run.await_count == 2


async def test_write_back_records_request_metadata(client, agent, cache):
    agent.run.return_value = EMAILS_REPLY

    await client.get("/api/mail", headers={"user-agent": "dashboard-test"})
    entry = (await cache.list_by_category(CacheCategory.EMAILS))[0]

    assert entry.metadata_json["userAgent"] == "dashboard-test"
    assert entry.metadata_json["source"] == "agent"
    assert entry.metadata_json["count"] == 1
