#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict

sys.path.insert(0, str(Path(__file__).parent.parent))

from autopilot.config import get_settings
from autopilot.services.automation import DisputeAutomationService
from autopilot.services.sql_store import SqlStore


async def _sweep(service: DisputeAutomationService, args: argparse.Namespace) -> Dict[str, Any]:
    report = await service.sweep(args.merchant_id)
    return report.as_dict()


async def _queue(service: DisputeAutomationService, args: argparse.Namespace) -> Dict[str, Any]:
    view = await service.queue(args.merchant_id)
    return {
        "ready_count": view.ready_count,
        "blocked_counts": view.blocked_counts,
        "items": [
            {"id": item.dispute.id, "amount": item.dispute.amount, "due_by": item.dispute.due_by, **item.readiness.as_dict()}
            for item in view.items[: args.limit]
        ],
    }


async def _optimize(service: DisputeAutomationService, args: argparse.Namespace) -> Dict[str, Any]:
    if not args.merchant_id:
        raise SystemExit("--merchant-id is required for optimize")
    result = await service.optimize_reasons(args.merchant_id, min_cases=args.min_cases, min_win_rate_pct=args.min_win_rate)
    if result is None:
        raise SystemExit(f"Merchant not found: {args.merchant_id}")
    return {"merchant_id": args.merchant_id, **result.as_dict()}


async def _metrics(service: DisputeAutomationService, args: argparse.Namespace) -> Dict[str, Any]:
    return await service.metrics(args.merchant_id)


COMMANDS = {
    "sweep": _sweep,
    "queue": _queue,
    "optimize": _optimize,
    "metrics": _metrics,
}


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Operate the dispute automation engine from the shell.")
    parser.add_argument("command", choices=sorted(COMMANDS))
    parser.add_argument("--merchant-id", default=None)
    parser.add_argument("--limit", type=int, default=50)
    parser.add_argument("--min-cases", type=int, default=settings.optimizer_min_cases)
    parser.add_argument("--min-win-rate", type=float, default=settings.optimizer_min_win_rate_pct)
    parser.add_argument("--out", default=None)
    args = parser.parse_args()

    service = DisputeAutomationService(SqlStore())
    report = asyncio.run(COMMANDS[args.command](service, args))

    text = json.dumps(report, indent=2)
    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(text)
    print(text)

    if args.command == "sweep" and report.get("failed"):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
