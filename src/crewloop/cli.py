from __future__ import annotations

import argparse
import json
import logging
from typing import Any

from crewloop.backends import list_backends
from crewloop.config import load_settings
from crewloop.core.tracing import TraceEvent
from crewloop.errors import CrewloopError
from crewloop.runtime import controller

logger = logging.getLogger("crewloop")


def _print_event(event: TraceEvent) -> None:
    team = event.data.get("delegated_team")
    prefix = f"[{team}] " if team else ""
    detail = {key: value for key, value in event.data.items() if key != "delegated_team"}
    print(f"{prefix}{event.kind} {json.dumps(detail, default=str)[:200]}")


def _environment(args: argparse.Namespace) -> controller.Environment:
    return controller.build_environment(load_settings())


def _emit_result(payload: dict[str, Any], as_json: bool, headline: str) -> None:
    if as_json:
        print(json.dumps(payload, indent=2, default=str))
    else:
        print(headline)


def _run_command(args: argparse.Namespace) -> int:
    env = _environment(args)
    result = controller.run_team(
        env,
        args.team,
        args.task,
        provider=args.provider,
        trigger=args.trigger,
        max_iterations=args.max_iterations,
        event_sink=_print_event if args.verbose else None,
    )
    _emit_result(
        result.to_dict(),
        args.json,
        f"{result.team_name}: {result.completion_summary}\n"
        f"iterations={result.iterations} completed={result.completed} session={result.session_id}",
    )
    return 0 if result.success else 1


def _resume_command(args: argparse.Namespace) -> int:
    env = _environment(args)
    result = controller.resume_team(
        env,
        args.session,
        provider=args.provider,
        trigger=args.trigger,
        max_iterations=args.max_iterations,
        event_sink=_print_event if args.verbose else None,
    )
    _emit_result(
        result.to_dict(),
        args.json,
        f"{result.team_name}: {result.completion_summary}\n"
        f"iterations={result.iterations} completed={result.completed}",
    )
    return 0 if result.success else 1


def _orchestrate_command(args: argparse.Namespace) -> int:
    env = _environment(args)
    result = controller.orchestrate(
        env,
        args.message,
        provider=args.provider,
        event_sink=_print_event if args.verbose else None,
    )
    _emit_result(result.to_dict(), args.json, result.user_response)
    return 0 if result.error is None else 1


def _checkpoints_command(args: argparse.Namespace) -> int:
    env = _environment(args)
    if args.resumable:
        items = env.checkpoints.resumable_checkpoints(args.team)
    else:
        items = env.checkpoints.team_checkpoints(args.team)
    if args.json:
        print(json.dumps(items, indent=2))
        return 0
    if not items:
        print("No checkpoints.")
    for item in items:
        print(
            f"{item['session_id']}  {item['team_id']:<14} {item['status']:<11} "
            f"iteration={item['iteration']}  {item['task'][:60]}"
        )
    return 0


def _cleanup_command(args: argparse.Namespace) -> int:
    env = _environment(args)
    removed = env.checkpoints.cleanup_old(args.max_age_hours)
    print(f"Removed {len(removed)} checkpoint(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crewloop")
    subparsers = parser.add_subparsers(dest="command", required=True)
    providers = list_backends()

    run_parser = subparsers.add_parser("run", help="Run one team's agent loop on a task")
    run_parser.add_argument("--team", required=True)
    run_parser.add_argument("--task", required=True)
    run_parser.add_argument("--provider", choices=providers)
    run_parser.add_argument("--max-iterations", type=int)
    run_parser.add_argument("--trigger", action="store_true", help="Run as an owner-triggered action")
    run_parser.add_argument("--json", action="store_true")
    run_parser.add_argument("--verbose", "-v", action="store_true")
    run_parser.set_defaults(func=_run_command)

    resume_parser = subparsers.add_parser("resume", help="Resume a checkpointed team run")
    resume_parser.add_argument("--session", required=True)
    resume_parser.add_argument("--provider", choices=providers)
    resume_parser.add_argument("--max-iterations", type=int)
    resume_parser.add_argument("--trigger", action="store_true")
    resume_parser.add_argument("--json", action="store_true")
    resume_parser.add_argument("--verbose", "-v", action="store_true")
    resume_parser.set_defaults(func=_resume_command)

    orchestrate_parser = subparsers.add_parser("orchestrate", help="Send a request to the orchestrator")
    orchestrate_parser.add_argument("--message", required=True)
    orchestrate_parser.add_argument("--provider", choices=providers)
    orchestrate_parser.add_argument("--json", action="store_true")
    orchestrate_parser.add_argument("--verbose", "-v", action="store_true")
    orchestrate_parser.set_defaults(func=_orchestrate_command)

    checkpoints_parser = subparsers.add_parser("checkpoints", help="List checkpoints")
    checkpoints_parser.add_argument("--team")
    checkpoints_parser.add_argument("--resumable", action="store_true")
    checkpoints_parser.add_argument("--json", action="store_true")
    checkpoints_parser.set_defaults(func=_checkpoints_command)

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete expired finished checkpoints")
    cleanup_parser.add_argument("--max-age-hours", type=float)
    cleanup_parser.set_defaults(func=_cleanup_command)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except (CrewloopError, ValueError) as exc:
        logger.error("%s", exc)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
