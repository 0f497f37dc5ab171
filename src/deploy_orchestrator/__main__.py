"""Entry point for `python -m deploy_orchestrator` and the `deploy-orchestrator` CLI script."""

from __future__ import annotations

import argparse
import json
import logging
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError

from deploy_orchestrator.catalog import propose_solution
from deploy_orchestrator.errors import InvalidRequestError, OrchestratorError
from deploy_orchestrator.models import ResourceDescriptor, SolutionCandidate
from deploy_orchestrator.orchestrator import DeploymentOrchestrator
from deploy_orchestrator.settings import RuntimeSettings

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_INPUT = 2

_FAILED_STATUSES = {"generation_failed", "deploy_failed"}
_RESOURCE_LIST = TypeAdapter(list[ResourceDescriptor])


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Configure, generate and deploy a recommended solution")
    parser.add_argument(
        "--state-store-root",
        type=Path,
        default=None,
        help="Directory holding solution records and candidates (overrides DEPLOY_STATE_STORE_ROOT)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    register = commands.add_parser("register", help="Register a solution candidate from a resources file")
    register.add_argument("--resources", type=Path, required=True, help="JSON list of resource descriptors")
    register.add_argument("--intent", default="", help="User intent the solution addresses")
    register.add_argument("--kind", default="resources", help="Manifest kind, e.g. resources or helm")
    register.add_argument("--solution-id", default=None, help="Use this id instead of generating one")

    choose = commands.add_parser("choose", help="Choose (or resume) a solution")
    choose.add_argument("solution_id")

    answer = commands.add_parser("answer", help="Submit one stage's answers")
    answer.add_argument("solution_id")
    answer.add_argument("--stage", required=True, choices=["required", "basic", "advanced", "open"])
    answer.add_argument("--answers", required=True, help='JSON object, e.g. \'{"name": "my-app"}\'')

    generate = commands.add_parser("generate", help="Generate and dry-run validate manifests")
    generate.add_argument("solution_id")
    generate.add_argument("--max-attempts", type=int, default=None)

    deploy = commands.add_parser("deploy", help="Apply generated manifests")
    deploy.add_argument("solution_id")
    deploy.add_argument("--timeout", type=int, default=None, help="Readiness wait in seconds (1-600)")

    show = commands.add_parser("show", help="Print the stored solution record")
    show.add_argument("solution_id")
    return parser.parse_args(argv)


def load_candidate(args: argparse.Namespace, orchestrator: DeploymentOrchestrator) -> SolutionCandidate:
    try:
        resources = _RESOURCE_LIST.validate_json(args.resources.read_text(encoding="utf-8"))
    except OSError as exc:
        raise InvalidRequestError("resources", f"Unable to read {args.resources}: {exc}") from exc
    except ValidationError as exc:
        raise InvalidRequestError("resources", f"Invalid resources file {args.resources}: {exc}") from exc
    if args.solution_id is None:
        return propose_solution(orchestrator.catalog, intent=args.intent, resources=resources, solution_kind=args.kind)
    try:
        candidate = SolutionCandidate(
            solution_id=args.solution_id,
            intent=args.intent,
            resources=resources,
            solution_kind=args.kind,
        )
    except ValidationError as exc:
        raise InvalidRequestError("resources", str(exc)) from exc
    return orchestrator.catalog.register(candidate)


def run_command(args: argparse.Namespace, orchestrator: DeploymentOrchestrator) -> dict[str, Any]:
    if args.command == "register":
        return load_candidate(args, orchestrator).model_dump(mode="json")
    if args.command == "choose":
        return orchestrator.choose_solution(args.solution_id)
    if args.command == "answer":
        try:
            answers = json.loads(args.answers)
        except json.JSONDecodeError as exc:
            raise InvalidRequestError("answers", f"--answers must be valid JSON: {exc}") from exc
        return orchestrator.answer_question(args.solution_id, args.stage, answers)
    if args.command == "generate":
        return orchestrator.generate_manifests(args.solution_id, max_attempts=args.max_attempts)
    if args.command == "deploy":
        return orchestrator.deploy_manifests(args.solution_id, timeout_seconds=args.timeout)
    return orchestrator.get_solution(args.solution_id).model_dump(mode="json")


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Must be set before any settings object is constructed.
    if args.state_store_root is not None:
        os.environ["DEPLOY_STATE_STORE_ROOT"] = str(args.state_store_root.resolve())

    try:
        orchestrator = DeploymentOrchestrator.from_settings(RuntimeSettings.from_env())
    except ValueError as exc:
        logging.error("Invalid configuration: %s", exc)
        return EXIT_FAILED

    try:
        payload = run_command(args, orchestrator)
    except InvalidRequestError as exc:
        logging.error("Invalid input: %s", exc.message)
        print(json.dumps({"status": "error", "error": exc.to_payload()}, indent=2))
        return EXIT_BAD_INPUT
    except OrchestratorError as exc:
        logging.error("%s failed: %s", args.command, exc.message)
        print(json.dumps({"status": "error", "error": exc.to_payload()}, indent=2))
        return EXIT_FAILED

    print(json.dumps(payload, indent=2, default=str))
    return EXIT_FAILED if payload.get("status") in _FAILED_STATUSES else EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
