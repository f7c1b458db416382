"""Command-line interface: plan, run, replay and script export."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv

from testair_ai.llm_client import LLMClientError
from testair_ai.models import PlanRequest, parse_provider
from testair_ai.planner import create_plan_from_prompt, planner_adapter_for_provider
from testair_ai.repair import DEFAULT_ADAPTER_TIMEOUT_S, repair_adapter_for_provider, run_with_repair
from testair_core.compiler import compiled_to_dry_run_lines, generate_playwright_script
from testair_core.errors import TestairError
from testair_core.models import RunResult
from testair_core.runner import DEFAULT_TIMEOUT_MS, RunOptions, load_run_result
from testair_core.schema import load_plan
from testair_core.secret_resolver import redact_plan


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="testair", description="AI-assisted deterministic website testing")
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser("plan", help="Generate a plan from a natural-language description")
    plan_parser.add_argument("prompt", help="Natural language test description")
    plan_parser.add_argument("--url", help="Optional base URL for planning")
    plan_parser.add_argument("--provider", default="mock", help="AI provider: mock|openai (default: mock)")

    run_parser = subparsers.add_parser("run", help="Execute a plan JSON file")
    run_parser.add_argument("plan", help="Path to plan JSON file")
    run_parser.add_argument("--env", help="Path to .env file holding secret values")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print compiled deterministic steps without executing browser",
    )
    run_parser.add_argument(
        "--artifacts-root",
        default="runs",
        help="Root output directory for run artifacts (default: runs)",
    )
    run_parser.add_argument(
        "--repair-attempts",
        type=int,
        default=0,
        help="Number of constrained repair attempts after failure (default: 0)",
    )
    run_parser.add_argument("--provider", default="mock", help="AI provider for repair loop: mock|openai")
    run_parser.add_argument(
        "--repair-timeout",
        type=float,
        default=DEFAULT_ADAPTER_TIMEOUT_S,
        help="Seconds to wait for the repair adapter (default: 30)",
    )
    run_parser.add_argument(
        "--timeout",
        type=int,
        default=DEFAULT_TIMEOUT_MS,
        help="Default action timeout in milliseconds",
    )
    run_parser.add_argument("--headed", action="store_true", help="Run browser in headed mode (default is headless)")

    replay_parser = subparsers.add_parser("replay", help="Print a persisted run")
    replay_parser.add_argument("run_id", help="Run ID (folder under artifacts root)")
    replay_parser.add_argument("--artifacts-root", default="runs", help="Root output directory for run artifacts")

    script_parser = subparsers.add_parser("script", help="Export a Playwright script skeleton for a plan")
    script_parser.add_argument("plan", help="Path to plan JSON file")
    return parser


def print_summary(result: RunResult) -> None:
    print(f"runId={result.run_id} status={result.status} durationMs={result.duration_ms}")
    for step in result.steps:
        print(f"{step.status.upper():<6} step={step.index + 1} {step.description} ({step.duration_ms}ms)")
        if step.error:
            print(f"  error={step.error}")
    if result.outputs:
        print(f"outputs={json.dumps(result.outputs, ensure_ascii=False)}")
    print(f"artifacts={result.artifacts.run_dir}")


def _cmd_plan(args: argparse.Namespace) -> int:
    adapter = planner_adapter_for_provider(parse_provider(args.provider))
    plan = asyncio.run(create_plan_from_prompt(PlanRequest(prompt=args.prompt, url=args.url), adapter))
    print(json.dumps(redact_plan(plan).to_dict(), ensure_ascii=False, indent=2))
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    plan = load_plan(Path(args.plan))
    if args.dry_run:
        for line in compiled_to_dry_run_lines(plan):
            print(line)

    options = RunOptions(
        artifacts_root=Path(args.artifacts_root),
        env_file=Path(args.env) if args.env else None,
        timeout_ms=args.timeout,
        headless=not args.headed,
        dry_run=args.dry_run,
    )
    adapter = repair_adapter_for_provider(parse_provider(args.provider))
    result = asyncio.run(
        run_with_repair(
            plan,
            options,
            adapter,
            max_attempts=args.repair_attempts,
            adapter_timeout_s=args.repair_timeout,
        ))
    print_summary(result)
    return 0 if result.status == "passed" else 1


def _cmd_replay(args: argparse.Namespace) -> int:
    result = load_run_result(Path(args.artifacts_root), args.run_id)
    print_summary(result)
    print(f"trace={result.artifacts.trace_path}")
    if result.artifacts.failure_screenshot_path:
        print(f"failureScreenshot={result.artifacts.failure_screenshot_path}")
    if result.artifacts.failure_dom_path:
        print(f"failureDom={result.artifacts.failure_dom_path}")
    return 0


def _cmd_script(args: argparse.Namespace) -> int:
    print(generate_playwright_script(load_plan(Path(args.plan))), end="")
    return 0


COMMANDS = {
    "plan": _cmd_plan,
    "run": _cmd_run,
    "replay": _cmd_replay,
    "script": _cmd_script,
}


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)

    try:
        return COMMANDS[args.command](args)
    except (TestairError, LLMClientError, OSError, ValueError) as exc:
        logging.error("%s", exc)
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
