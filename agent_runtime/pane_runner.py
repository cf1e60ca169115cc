"""Entry point executed inside one session pane.

Runs a single agent from an execution plan in-process and writes the
resulting ``PaneStatus`` to ``<status-dir>/pane-<index>.json``. The agent is
rebuilt from the descriptor carried in the plan, falling back to the
default catalog entry of the same name.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from agent_runtime.config import config, configure_logging
from agent_runtime.core.models import ExecutionOptions
from agent_runtime.orchestration.orchestrator import Orchestrator
from agent_runtime.orchestration.session_host import ExecutionPlan, PaneState, PaneStatus
from agent_runtime.runtime import build_orchestrator, find_default_agent

logger = logging.getLogger(__name__)


async def run_pane(
    plan: ExecutionPlan,
    index: int,
    orchestrator: Optional[Orchestrator] = None,
) -> PaneStatus:
    pane = plan.pane(index)
    if orchestrator is None:
        descriptor = pane.descriptor or find_default_agent(pane.agent_name)
        orchestrator = build_orchestrator(config, agents=[descriptor])
    await orchestrator.initialize_all()
    try:
        result = await orchestrator.execute_task(
            [pane.agent_name],
            plan.payload,
            options=ExecutionOptions(
                priority=plan.priority,
                timeout=plan.timeout,
                task_id=f"{plan.task_id}-pane-{index}",
            ),
            context={**plan.context, "description": plan.description, "session": plan.session_name},
        )
    finally:
        await orchestrator.shutdown_all()

    entry = result.per_agent[0]
    return PaneStatus(
        pane_index=index,
        agent_name=pane.agent_name,
        state=PaneState.SUCCEEDED if entry.success else PaneState.FAILED,
        exit_code=0 if entry.success else 1,
        output=entry.result,
        error=entry.error,
        elapsed_ms=entry.elapsed_ms,
    )


def write_status(status_dir: Path, status: PaneStatus) -> Path:
    """Write atomically so pollers never read a partial file."""
    target = status_dir / f"pane-{status.pane_index}.json"
    scratch = target.with_suffix(".tmp")
    scratch.write_text(json.dumps(status.to_dict(), default=str), encoding="utf-8")
    scratch.replace(target)
    return target


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one agent pane of a session plan")
    parser.add_argument("--plan", required=True, type=Path, help="Path to plan.json")
    parser.add_argument("--pane", required=True, type=int, help="Pane index to run")
    parser.add_argument("--status-dir", required=True, type=Path, help="Directory for pane status files")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(config.log_level)
    plan = ExecutionPlan.from_dict(json.loads(args.plan.read_text(encoding="utf-8")))
    status = asyncio.run(run_pane(plan, args.pane))
    write_status(args.status_dir, status)
    logger.info("Pane %d (%s) finished: %s", status.pane_index, status.agent_name, status.state.value)
    return status.exit_code or 0


if __name__ == "__main__":
    sys.exit(main())
