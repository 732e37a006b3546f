from __future__ import annotations

import argparse
import json
from pathlib import Path

from crewloop.core.tracing import read_events
from crewloop.runtime.checkpoints import open_store, summarize


def main() -> None:
    parser = argparse.ArgumentParser(description="Show a session's checkpoint summary and trace tail.")
    parser.add_argument("session_id", help="Session identifier to load.")
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=Path("data"),
        help="Base data directory (default: data).",
    )
    parser.add_argument(
        "--backend",
        choices=("file", "sqlite"),
        default="file",
        help="Checkpoint store kind (default: file).",
    )
    parser.add_argument(
        "--lines",
        type=int,
        default=20,
        help="Number of trace events to print (default: 20).",
    )
    args = parser.parse_args()

    store = open_store(args.backend, args.base_dir / "checkpoints")
    checkpoint = store.load(args.session_id)
    if checkpoint is None:
        print(f"No checkpoint found for session {args.session_id!r}.")
    else:
        print(json.dumps(summarize(checkpoint), indent=2))

    trace_path = args.base_dir / "traces" / f"{args.session_id}.jsonl"
    if not trace_path.exists():
        raise SystemExit(f"[missing] {trace_path}")
    print(f"\n== {trace_path.name} ==")
    for event in read_events(trace_path)[-args.lines :]:
        print(f"{event.ts:.3f} {event.kind} {json.dumps(event.data, default=str)[:160]}")


if __name__ == "__main__":
    main()
