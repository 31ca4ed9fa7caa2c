from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import uvicorn

from .api import create_app
from .models import HookContext, PostHookContext
from .paths import discover_workspace_root
from .service import GovernanceService, IntentSelectionError


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_BLOCKED = 2


def _service(workspace: str | None) -> GovernanceService:
    root = Path(workspace).resolve() if workspace else discover_workspace_root()
    return GovernanceService.create(root)


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _read_context(path: str | None) -> Any:
    raw = Path(path).read_text(encoding="utf-8") if path else sys.stdin.read()
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Hook context is not valid JSON: {exc}") from exc


def main() -> int:
    parser = argparse.ArgumentParser(description="intentgate governance hook CLI")
    parser.add_argument("--workspace", default=None, help="Workspace root (defaults to nearest .orchestration/.git)")
    parser.add_argument("--verbose", action="store_true", help="Log hook activity to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    pre_cmd = sub.add_parser("pre", help="Run pre-hooks for one tool call")
    pre_cmd.add_argument("--context-file", default=None, help="Path to context JSON (stdin when omitted)")

    post_cmd = sub.add_parser("post", help="Run post-hooks after a tool call")
    post_cmd.add_argument("--context-file", default=None, help="Path to post-context JSON (stdin when omitted)")

    intents_cmd = sub.add_parser("intents", help="Active intent registry operations")
    intents_sub = intents_cmd.add_subparsers(dest="intents_command", required=True)
    intents_sub.add_parser("list", help="List active intents")
    intents_show = intents_sub.add_parser("show", help="Show one intent")
    intents_show.add_argument("intent_id")
    intents_sub.add_parser("validate", help="Validate the registry file against its schema")

    select_cmd = sub.add_parser("select", help="Select an active intent and print its context block")
    select_cmd.add_argument("intent_id")
    select_cmd.add_argument("--mutation-class", required=True, choices=["AST_REFACTOR", "INTENT_EVOLUTION"])
    select_cmd.add_argument("--format", choices=["xml", "json"], default="xml")

    snapshot_cmd = sub.add_parser("snapshot", help="Capture a read snapshot for a file")
    snapshot_cmd.add_argument("path")

    trace_cmd = sub.add_parser("trace", help="Agent trace operations")
    trace_sub = trace_cmd.add_subparsers(dest="trace_command", required=True)
    trace_tail = trace_sub.add_parser("tail", help="Print the most recent trace records")
    trace_tail.add_argument("--limit", type=int, default=10)
    trace_sub.add_parser("status", help="Show trace file path and record count")

    api_cmd = sub.add_parser("api", help="Run local API server")
    api_cmd.add_argument("--host", default="127.0.0.1")
    api_cmd.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        stream=sys.stderr,
        format="[intentgate] %(levelname)s %(name)s: %(message)s",
    )
    service = _service(args.workspace)
    workspace = str(service.workspace)

    try:
        if args.command == "pre":
            context = HookContext.from_dict(_read_context(args.context_file), default_cwd=workspace)
            decision = asyncio.run(service.pre_check(context))
            _print(decision.to_dict())
            return EXIT_OK if decision.allow else EXIT_BLOCKED

        if args.command == "post":
            post_context = PostHookContext.from_dict(_read_context(args.context_file), default_cwd=workspace)
            report = asyncio.run(service.post_record(post_context))
            for error in report.errors:
                print(f"[intentgate] {error}", file=sys.stderr)
            _print(report.to_dict())
            return EXIT_OK

        if args.command == "intents":
            if args.intents_command == "list":
                _print(service.list_intents())
                return EXIT_OK
            if args.intents_command == "show":
                _print(service.get_intent(args.intent_id))
                return EXIT_OK
            if args.intents_command == "validate":
                result = service.validate_registry()
                _print(result)
                return EXIT_OK if result["ok"] else EXIT_ERROR

        if args.command == "select":
            selection = service.select_intent(args.intent_id, args.mutation_class)
            if args.format == "json":
                _print(selection.to_dict())
            else:
                print(selection.context_xml)
            return EXIT_OK

        if args.command == "snapshot":
            rel_path, snapshot = service.capture_snapshot(args.path)
            _print({"path": rel_path, "snapshot": snapshot.to_dict()})
            return EXIT_OK

        if args.command == "trace":
            if args.trace_command == "tail":
                _print(service.trace_tail(args.limit))
                return EXIT_OK
            if args.trace_command == "status":
                _print(service.trace_status())
                return EXIT_OK

        if args.command == "api":
            app = create_app(service)
            uvicorn.run(app, host=args.host, port=args.port, log_level="info")
            return EXIT_OK
    except IntentSelectionError as exc:
        _print(exc.to_dict())
        return EXIT_ERROR
    except (OSError, ValueError) as exc:
        print(f"[intentgate] {exc}", file=sys.stderr)
        return EXIT_ERROR

    return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
