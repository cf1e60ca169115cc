"""CLI demonstration of orchestrator-managed task execution."""
from __future__ import annotations

import asyncio
import json
import sys
from typing import List, NoReturn, Optional

from agent_runtime.config import config, configure_logging
from agent_runtime.core.errors import AgentRuntimeError
from agent_runtime.runtime import build_orchestrator
from agent_runtime.services.task_files import TaskSubmission, load_task_file

DEMO_TASK = TaskSubmission(
    description="Prepare a financial audit summary and a marketing campaign brief",
    payload={"quarter": "Q3", "region": "EMEA"},
)


async def main(task_file: Optional[str] = None) -> int:
    submission = load_task_file(task_file) if task_file else DEMO_TASK
    orchestrator = build_orchestrator(config)
    await orchestrator.initialize_all()
    try:
        status = orchestrator.get_system_status()
        print(f"Runtime {status.state.value} with {status.total_agents} agents")
        for agent in orchestrator.list_agents():
            print(f"  {agent.name} [{agent.category}] {', '.join(sorted(agent.capabilities))}")

        try:
            result = await orchestrator.execute_task(
                submission.target,
                submission.payload,
                options=submission.options(),
                context=submission.context,
            )
        except AgentRuntimeError as exc:
            print(f"Task rejected: {exc}", file=sys.stderr)
            return 1
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0 if result.success else 2
    finally:
        await orchestrator.shutdown_all()


def run(argv: Optional[List[str]] = None) -> NoReturn:
    args = sys.argv[1:] if argv is None else argv
    configure_logging(config.log_level)
    sys.exit(asyncio.run(main(args[0] if args else None)))


if __name__ == "__main__":
    run()
