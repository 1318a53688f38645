"""Cache entry model and category definitions.

One table of key/value rows with TTL expiry. Categories are a closed set used
for bulk invalidation, statistics grouping and key-derivation rule selection.
"""

import time
from datetime import datetime, timezone
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional
from sqlalchemy import Index
from sqlmodel import SQLModel, Field, Column, JSON


class CacheCategory(str, Enum):
    """Closed classification tag on an entry."""
    AGENT_RESPONSE = "agent_response"
    AGENT_TEST = "agent_test"
    AGENT_TOOLS = "agent_tools"
    AGENT_SUMMARY = "agent_summary"
    EMAILS = "emails"
    EVENTS = "events"
    SUMMARY = "summary"


class CacheEntry(SQLModel, table=True):
    """Durable cached value with expiry.

    Uniqueness is by key alone; category never participates in identity.
    Timestamps are unix seconds.
    """

    __tablename__ = "cache_entries"
    __table_args__ = (
        Index("ix_cache_entries_category_created_at", "category", "created_at"),
    )

    key: str = Field(primary_key=True, max_length=512)
    category: str = Field(index=True, max_length=50)
    payload: Any = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: float = Field(default_factory=time.time, index=True)
    updated_at: float = Field(default_factory=time.time)
    expires_at: float = Field(index=True)
    metadata_json: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    def ttl_remaining(self, now: Optional[float] = None) -> float:
        """Seconds until logical expiry (negative once expired)."""
        return self.expires_at - (time.time() if now is None else now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "category": self.category,
            "data": self.payload,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "expiresAt": _iso(self.expires_at),
            "metadata": self.metadata_json or {},
        }


@dataclass
class CacheStats:
    """Store-wide counts, computed fresh on each call."""
    total: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)
    expired_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "byCategory": dict(self.by_category),
            "expiredCount": self.expired_count,
        }


@dataclass
class DetailedCacheStats(CacheStats):
    """CacheStats plus the count of entries that are still live."""
    fresh: int = 0

    @classmethod
    def from_stats(cls, stats: CacheStats) -> "DetailedCacheStats":
        return cls(
            total=stats.total,
            by_category=dict(stats.by_category),
            expired_count=stats.expired_count,
            fresh=max(stats.total - stats.expired_count, 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["fresh"] = self.fresh
        return data


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
