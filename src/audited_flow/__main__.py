"""Entry point for `python -m audited_flow` and the `audited-flow` CLI script."""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace
from typing import Any

from dotenv import load_dotenv

from audited_flow.engine import run_flow
from audited_flow.errors import FlowError
from audited_flow.models import Step
from audited_flow.settings import FlowSettings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the odd-draft demo flow and print its audit report")
    parser.add_argument("--value", type=int, default=0, help="Initial `value` of the flow state")
    parser.add_argument("--max-iterations", type=int, default=None, help="Iteration cap for the demo step")
    parser.add_argument("--delay-ms", type=int, default=None, help="Pause between a revise and the next critique")
    parser.add_argument(
        "--exclude-timestamps",
        action="store_true",
        help="Hash audit entries without timestamps so identical runs share a root",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    return parser.parse_args(argv)


def build_demo_steps(*, max_iterations: int | None = None, delay_ms: int | None = None) -> list[Step]:
    """One step: draft `value + 1`, reject even drafts, revise by incrementing."""

    async def draft(state: dict[str, Any]) -> dict[str, Any]:
        return {**state, "draft": (state.get("value") or 0) + 1}

    def critique(state: dict[str, Any]) -> list[str]:
        return ["must be odd"] if state["draft"] % 2 == 0 else []

    async def revise(state: dict[str, Any], critiques: list[str], _previous: dict[str, Any]) -> dict[str, Any]:
        return {**state, "draft": state["draft"] + 1, "fixed": len(critiques)}

    return [Step(draft=draft, critique=critique, revise=revise, max_iterations=max_iterations, delay_ms=delay_ms)]


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    load_dotenv()

    try:
        settings = FlowSettings.from_env()
    except ValueError as exc:
        logging.error("Invalid flow settings: %s", exc)
        return 1
    if args.exclude_timestamps:
        settings = replace(settings, hash_timestamps=False)

    execution = run_flow(
        {"value": args.value},
        build_demo_steps(max_iterations=args.max_iterations, delay_ms=args.delay_ms),
        settings=settings,
    )
    report: dict[str, Any] = {
        "audit_entries": len(execution.audit),
        "audit_root": execution.audit_root,
    }
    try:
        report["result"] = execution.final_state
    except FlowError as exc:
        logging.error("Flow execution failed: %s", exc)
        report["error"] = str(exc)
        print(json.dumps(report, indent=2, default=str))
        return 1

    print(json.dumps(report, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
