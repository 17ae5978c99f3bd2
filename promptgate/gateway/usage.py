"""Per-request usage accounting.

Every completed gateway call (provider call or cache hit) produces one
``UsageRecord``. Where records go is up to the ``UsageRecorder`` passed to
the gateway; recording is best-effort and never fails the request.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol


@dataclass(frozen=True)
class UsageRecord:
    workspace_id: str
    user_id: str
    model: str
    provider: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    estimated_cost: float
    endpoint: str
    request_id: str
    response_time_ms: int
    cache_hit: bool
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "workspace_id": self.workspace_id,
            "user_id": self.user_id,
            "model": self.model,
            "provider": self.provider,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "estimated_cost": self.estimated_cost,
            "endpoint": self.endpoint,
            "request_id": self.request_id,
            "response_time_ms": self.response_time_ms,
            "cache_hit": self.cache_hit,
            "created_at": self.created_at.isoformat(),
        }


class UsageRecorder(Protocol):
    async def record(self, usage: UsageRecord) -> None: ...


class InMemoryUsageRecorder:
    """Keeps the most recent records in memory (development and tests)."""

    def __init__(self, max_records: int = 10_000):
        self.records: deque[UsageRecord] = deque(maxlen=max_records)

    async def record(self, usage: UsageRecord) -> None:
        self.records.append(usage)

    def for_workspace(self, workspace_id: str) -> list[UsageRecord]:
        return [r for r in self.records if r.workspace_id == workspace_id]

    def summary(self, workspace_id: str) -> dict:
        """Totals for one workspace."""
        records = self.for_workspace(workspace_id)
        return {
            "requests": len(records),
            "cache_hits": sum(r.cache_hit for r in records),
            "total_tokens": sum(r.total_tokens for r in records),
            "estimated_cost": sum(r.estimated_cost for r in records),
        }
