from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable

EventSink = Callable[["TraceEvent"], None]


@dataclass(slots=True)
class TraceEvent:
    ts: float
    kind: str
    data: dict[str, Any] = field(default_factory=dict)


class TraceWriter:
    """Appends loop events to a JSONL file; usable directly as an event sink."""

    def __init__(self, session_id: str, base_dir: Path | None = None) -> None:
        self.session_id = session_id
        self.base_dir = base_dir or Path("data") / "traces"

    @property
    def path(self) -> Path:
        return self.base_dir / f"{self.session_id}.jsonl"

    def write(self, event: TraceEvent) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(asdict(event), ensure_ascii=False, default=str)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(payload + "\n")
        return self.path

    def __call__(self, event: TraceEvent) -> None:
        self.write(event)


def emit(sink: EventSink | None, kind: str, **data: Any) -> None:
    if sink is None:
        return
    sink(TraceEvent(ts=time.time(), kind=kind, data=data))


def tagged_sink(sink: EventSink | None, **tags: Any) -> EventSink | None:
    """Wrap a sink so every forwarded event carries extra data fields."""
    if sink is None:
        return None

    def forward(event: TraceEvent) -> None:
        sink(TraceEvent(ts=event.ts, kind=event.kind, data={**event.data, **tags}))

    return forward


def fan_out(*sinks: EventSink | None) -> EventSink | None:
    active = [sink for sink in sinks if sink is not None]
    if not active:
        return None
    if len(active) == 1:
        return active[0]

    def forward(event: TraceEvent) -> None:
        for sink in active:
            sink(event)

    return forward


def read_events(path: Path) -> list[TraceEvent]:
    events: list[TraceEvent] = []
    if not path.exists():
        return events
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        payload = json.loads(line)
        if not isinstance(payload, dict) or not isinstance(payload.get("kind"), str):
            raise ValueError("trace lines must be objects with a kind")
        events.append(
            TraceEvent(
                ts=float(payload.get("ts", 0.0)),
                kind=payload["kind"],
                data=payload.get("data") or {},
            )
        )
    return events
