from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UsageRecord:
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    team_id: str | None = None
    session_id: str | None = None
    endpoint: str = "agent_loop"
    success: bool = True


class UsageRecorder(Protocol):
    def record_usage(self, record: UsageRecord) -> float:
        """Persist one model call and return its cost."""
        ...


class NullUsageRecorder:
    def record_usage(self, record: UsageRecord) -> float:
        return 0.0


def record_safely(recorder: UsageRecorder | None, record: UsageRecord) -> float:
    if recorder is None:
        return 0.0
    try:
        cost = recorder.record_usage(record)
    except Exception as exc:  # noqa: BLE001
        logger.warning("usage recording failed for %s/%s: %s", record.provider, record.model, exc)
        return 0.0
    if not isinstance(cost, (int, float)) or isinstance(cost, bool) or cost < 0:
        logger.warning("usage recorder returned an invalid cost: %r", cost)
        return 0.0
    return float(cost)
