"""Tests for per-category cache key derivation."""

from datetime import datetime, timezone

from core.refresh import RefreshRequest
from middleware.cache import derive_cache_key, refresh_requested
from models.cache import CacheCategory


def make_request(category, body=None, query_params=None, path="/api/test"):
    return RefreshRequest(
        key="",
        category=category,
        path=path,
        query_params=query_params or {},
        body=body or {},
    )


def test_agent_query_key_uses_query_and_default_steps():
    req = make_request(CacheCategory.AGENT_RESPONSE, body={"query": "Plan My Weekend"})

    assert derive_cache_key(CacheCategory.AGENT_RESPONSE, req, 0) == "agent_response:plan_my_weekend:5"


def test_agent_query_key_varies_with_max_steps():
    a = make_request(CacheCategory.AGENT_TEST, body={"query": "hi", "maxSteps": 3})
    b = make_request(CacheCategory.AGENT_TEST, body={"query": "hi", "maxSteps": 7})

    assert derive_cache_key(CacheCategory.AGENT_TEST, a, 0) != derive_cache_key(CacheCategory.AGENT_TEST, b, 0)


def test_agent_query_key_falls_back_to_query_string():
    req = make_request(CacheCategory.AGENT_RESPONSE, query_params={"q": "weather"})

    assert derive_cache_key(CacheCategory.AGENT_RESPONSE, req, 0) == "agent_response:weather:5"


def test_tools_key_changes_every_half_hour():
    req = make_request(CacheCategory.AGENT_TOOLS)
    base = 1800 * 1000

    assert derive_cache_key(CacheCategory.AGENT_TOOLS, req, base) == \
        derive_cache_key(CacheCategory.AGENT_TOOLS, req, base + 1799)
    assert derive_cache_key(CacheCategory.AGENT_TOOLS, req, base) != \
        derive_cache_key(CacheCategory.AGENT_TOOLS, req, base + 1800)


def test_emails_key_changes_every_five_minutes():
    req = make_request(CacheCategory.EMAILS)
    base = 300 * 1000

    assert derive_cache_key(CacheCategory.EMAILS, req, base) == "emails:1000"
    assert derive_cache_key(CacheCategory.EMAILS, req, base + 299) == "emails:1000"
    assert derive_cache_key(CacheCategory.EMAILS, req, base + 300) == "emails:1001"


def test_events_key_uses_date_param():
    req = make_request(CacheCategory.EVENTS, query_params={"date": "2025-10-11"})

    assert derive_cache_key(CacheCategory.EVENTS, req, 0) == "events:2025-10-11"


def test_events_key_defaults_to_current_utc_date():
    now = datetime(2025, 10, 9, 23, 59, tzinfo=timezone.utc).timestamp()
    req = make_request(CacheCategory.EVENTS)

    assert derive_cache_key(CacheCategory.EVENTS, req, now) == "events:2025-10-09"


def test_summary_key_fingerprints_counts_and_leading_items():
    body = {
        "emails": [{"id": "m1"}, {"subject": "Lunch?"}],
        "events": [{"title": "Gym"}],
    }
    req = make_request(CacheCategory.AGENT_SUMMARY, body=body)

    assert derive_cache_key(CacheCategory.AGENT_SUMMARY, req, 0) == "agent_summary:2:1:m1_lunch_:gym"


def test_summary_key_ignores_items_past_the_third():
    emails = [{"id": f"m{i}"} for i in range(4)]
    changed = emails[:3] + [{"id": "different"}]
    a = make_request(CacheCategory.AGENT_SUMMARY, body={"emails": emails, "events": []})
    b = make_request(CacheCategory.AGENT_SUMMARY, body={"emails": changed, "events": []})

    assert derive_cache_key(CacheCategory.AGENT_SUMMARY, a, 0) == \
        derive_cache_key(CacheCategory.AGENT_SUMMARY, b, 0)


def test_refresh_flag_from_query_or_body():
    assert refresh_requested(make_request(CacheCategory.EMAILS, query_params={"refresh": "true"}))
    assert refresh_requested(make_request(CacheCategory.EMAILS, query_params={"refresh": "TRUE"}))
    assert refresh_requested(make_request(CacheCategory.AGENT_RESPONSE, body={"refresh": True}))
    assert not refresh_requested(make_request(CacheCategory.AGENT_RESPONSE, body={"refresh": "true"}))
    assert not refresh_requested(make_request(CacheCategory.EMAILS, query_params={"refresh": "1"}))
