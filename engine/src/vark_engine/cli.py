from __future__ import annotations

import argparse
import json
import sys
from uuid import uuid4

import uvicorn

from .api import create_app
from .errors import VarkError
from .paths import discover_repo_root
from .quiz import QuizInput
from .service import AssessmentService


def _service() -> AssessmentService:
    repo_root = discover_repo_root()
    return AssessmentService.create(repo_root)


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _print_history(history: list[dict]) -> None:
    print(f"{len(history)} record(s)")
    for entry in history:
        pct = entry["percentages"]
        print(
            f"- {entry['timestamp']} :: {entry['name']} :: "
            f"A {pct['A']}% | B {pct['B']}% | C {pct['C']}% | D {pct['D']}%"
        )


def main() -> int:
    parser = argparse.ArgumentParser(description="VARK self-assessment CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    login_cmd = sub.add_parser("login", help="Sign in with a federated identity token")
    login_cmd.add_argument("--token", default=None, help="Identity token (reads stdin when omitted)")

    sub.add_parser("guest", help="Continue as guest (results are not stored)")
    sub.add_parser("logout", help="Sign out and clear cached session state")
    sub.add_parser("whoami", help="Show the resolved identity")

    submit_cmd = sub.add_parser("submit", help="Submit quiz scores (must sum to the configured total)")
    submit_cmd.add_argument("--name", required=True, help="Full name shown in the history")
    submit_cmd.add_argument("--a", default="", help="A - Visual")
    submit_cmd.add_argument("--b", default="", help="B - Auditory")
    submit_cmd.add_argument("--c", default="", help="C - Read/Write")
    submit_cmd.add_argument("--d", default="", help="D - Kinesthetic")

    history_cmd = sub.add_parser("history", help="List stored results, newest first")
    history_cmd.add_argument("--format", choices=["text", "json"], default="text")

    sub.add_parser("config", help="Print the effective assessment configuration")

    api_cmd = sub.add_parser("api", help="Run local API server")
    api_cmd.add_argument("--host", default="127.0.0.1")
    api_cmd.add_argument("--port", type=int, default=8000)

    telemetry_cmd = sub.add_parser("telemetry", help="Telemetry operations")
    telemetry_sub = telemetry_cmd.add_subparsers(dest="telemetry_command", required=True)
    telemetry_sub.add_parser("status", help="Show telemetry status")
    telemetry_purge = telemetry_sub.add_parser("purge", help="Purge local telemetry events older than a range")
    telemetry_purge.add_argument("--older-than", default=None, help="Range like 30d or 720h")

    args = parser.parse_args()
    service = _service()
    trace_id = f"cli:{uuid4()}"

    if args.command == "login":
        token = args.token if args.token is not None else sys.stdin.read().strip()
        try:
            identity = service.sign_in_with_token(token, source="cli", trace_id=trace_id)
        except VarkError as exc:
            _print_json(exc.to_dict())
            return 1
        _print_json({"identity": identity.to_dict(), "source_kind": service.source_kind})
        return 0

    if args.command == "guest":
        identity = service.sign_in_as_guest(source="cli", trace_id=trace_id)
        _print_json({"identity": identity.to_dict(), "source_kind": service.source_kind})
        return 0

    if args.command == "logout":
        _print_json(service.logout(source="cli", trace_id=trace_id))
        return 0

    if args.command == "whoami":
        identity = service.identity
        _print_json({"identity": identity.to_dict() if identity else None, "source_kind": service.source_kind})
        return 0 if identity else 1

    if args.command == "submit":
        quiz = QuizInput(name=args.name, a=args.a, b=args.b, c=args.c, d=args.d)
        outcome = service.submit(quiz, source="cli", trace_id=trace_id)
        _print_json(outcome.to_dict())
        return 0 if outcome.ok else 1

    if args.command == "history":
        if service.identity is None:
            print("Not signed in. Run `vark login` or `vark guest` first.", file=sys.stderr)
            return 1
        history = [record.to_dict() for record in service.history]
        if args.format == "json":
            _print_json(history)
        else:
            _print_history(history)
        return 0

    if args.command == "config":
        _print_json(service.config.to_dict())
        return 0

    if args.command == "api":
        app = create_app(service)
        uvicorn.run(app, host=args.host, port=args.port, log_level="info")
        return 0

    if args.command == "telemetry":
        if args.telemetry_command == "status":
            _print_json(service.telemetry_status())
            return 0
        if args.telemetry_command == "purge":
            try:
                _print_json(service.telemetry_purge(older_than=args.older_than))
            except ValueError as exc:
                print(str(exc), file=sys.stderr)
                return 2
            return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
