"""Centralized constants for cache key derivation and routing.

Single source of truth for bucket windows and request field names used when
deriving cache keys, so routes and the cache dependencies agree on them.
"""

from typing import FrozenSet

# =============================================================================
# KEY DERIVATION
# =============================================================================

# Tool listings rarely change; one key per 30-minute window
AGENT_TOOLS_BUCKET_SECONDS = 30 * 60

# Inbox snapshots; one key per 5-minute window
EMAILS_BUCKET_SECONDS = 5 * 60

# Step limit assumed when a request does not send maxSteps
DEFAULT_AGENT_MAX_STEPS = 5

# Summary keys fingerprint only the first N emails/events
SUMMARY_FINGERPRINT_ITEMS = 3

# =============================================================================
# REQUEST FIELDS
# =============================================================================

REFRESH_PARAM = "refresh"
QUERY_BODY_FIELD = "query"
QUERY_PARAM = "q"
MAX_STEPS_FIELD = "maxSteps"
DATE_PARAM = "date"

# Methods whose JSON body participates in key derivation
BODY_METHODS: FrozenSet[str] = frozenset(["POST", "PUT", "PATCH"])

# =============================================================================
# ADMIN
# =============================================================================

# Pseudo-category accepted by DELETE /api/cache/{category}
CLEAR_ALL_CATEGORY = "all"

DEFAULT_ENTRY_LIST_LIMIT = 10
