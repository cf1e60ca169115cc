"""Tests for redaction, job history and task files."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from agent_runtime.core.errors import WorkflowError
from agent_runtime.core.models import AgentResult, JobResult, Task, TaskPriority, utcnow
from agent_runtime.core.redaction import mask, preview, redact
from agent_runtime.services.history import JobHistory
from agent_runtime.services.task_files import TaskSubmission, load_task_file, load_workflow_file


def _job(task_id: str, success: bool = True) -> JobResult:
    now = utcnow()
    return JobResult.aggregate(
        task_id, [AgentResult("a", success, result="r", attempts=1)], started_at=now, finished_at=now
    )


def test_mask_keeps_edges_of_long_values() -> None:
    assert mask("short") == "*****"
    assert mask("sk-1234567890") == "sk*********90"


def test_redact_masks_sensitive_keys_and_patterns() -> None:
    data = {
        "api_key": "abcdefghijklmnop",
        "nested": [{"Password": "p"}],
        "note": "mail ops@example.com with token=abc123456789",
        "count": 3,
    }

    cleaned = redact(data)

    assert cleaned["api_key"].startswith("ab") and cleaned["api_key"].endswith("op")
    assert "abcdefghijklmnop" not in json.dumps(cleaned)
    assert cleaned["nested"][0]["Password"] == "*"
    assert "ops@example.com" not in cleaned["note"]
    assert "abc123456789" not in cleaned["note"]
    assert cleaned["count"] == 3
    assert data["api_key"] == "abcdefghijklmnop"


def test_preview_is_short_and_single_line() -> None:
    text = preview({"secret": "value-123456", "body": "line one\nline two " * 20}, limit=40)

    assert "\n" not in text
    assert text.endswith("...")
    assert "value-123456" not in text


def test_history_is_bounded_and_newest_first() -> None:
    history = JobHistory(limit=3)
    for index in range(5):
        history.record(_job(f"t-{index}"))

    assert len(history) == 3
    assert [job.task_id for job in history.recent()] == ["t-4", "t-3", "t-2"]
    assert [job.task_id for job in history.recent(1)] == ["t-4"]
    assert history.get("t-3").task_id == "t-3"
    assert history.get("t-0") is None


def test_history_persists_redacted_documents(tmp_path: Path) -> None:
    history = JobHistory(limit=5, output_dir=tmp_path)
    task = Task(task_id="t-1", priority=TaskPriority.HIGH, payload={"token": "tok-ABCDEFGHIJ"}, description="sync")

    history.record(_job("t-1"), task)

    saved = json.loads((tmp_path / "tasks" / "t-1.json").read_text())
    assert saved["task"]["priority"] == "high"
    assert saved["task"]["payload"]["token"] != "tok-ABCDEFGHIJ"
    assert saved["result"]["taskId"] == "t-1"


def test_load_structured_task_files(tmp_path: Path) -> None:
    yaml_file = tmp_path / "task.yaml"
    yaml_file.write_text(
        "description: Review the vendor contract\n"
        "priority: high\n"
        "timeout: 30\n"
        "payload:\n"
        "  vendor: Acme\n"
        "context:\n"
        "  capabilities: [legal]\n"
    )
    json_file = tmp_path / "task.json"
    json_file.write_text(json.dumps({"agents": ["legal-advisor"], "payload": {"x": 1}, "max_retries": 1}))

    from_yaml = load_task_file(yaml_file)
    from_json = load_task_file(json_file)

    assert from_yaml.target == "Review the vendor contract"
    assert from_yaml.priority is TaskPriority.HIGH
    assert from_yaml.options().timeout == 30.0
    assert from_yaml.payload == {"vendor": "Acme"}
    assert from_yaml.context == {"capabilities": ["legal"]}
    assert from_json.target == ["legal-advisor"]
    assert from_json.options().max_retries == 1


def test_load_text_task_files(tmp_path: Path) -> None:
    markdown = tmp_path / "brief.md"
    markdown.write_text("# Launch\nPlan a marketing campaign\n")

    submission = load_task_file(markdown)

    assert submission == TaskSubmission(
        description="# Launch\nPlan a marketing campaign",
        payload="# Launch\nPlan a marketing campaign",
    )
    assert load_task_file(markdown, fmt="txt").description == submission.description


def test_invalid_task_files_are_rejected(tmp_path: Path) -> None:
    empty = tmp_path / "empty.txt"
    empty.write_text("   \n")
    no_target = tmp_path / "bad.json"
    no_target.write_text(json.dumps({"payload": 1}))
    listing = tmp_path / "list.yml"
    listing.write_text("- a\n- b\n")
    unknown = tmp_path / "task.toml"
    unknown.write_text("x = 1")

    for path in (empty, no_target, listing, unknown):
        with pytest.raises(ValueError):
            load_task_file(path)


def test_auth_marker_matches_whole_words_only() -> None:
    cleaned = redact(
        {
            "author": "Jane Example",
            "authority": "board",
            "auth": "basic-credential-1",
            "authToken": "abcdefghijkl",
            "X-Auth-User": "svc-account-42",
            "Authorization": "Bearer abcdefghijkl",
        }
    )

    assert cleaned["author"] == "Jane Example"
    assert cleaned["authority"] == "board"
    assert cleaned["auth"] != "basic-credential-1"
    assert cleaned["authToken"] != "abcdefghijkl"
    assert cleaned["X-Auth-User"] != "svc-account-42"
    assert cleaned["Authorization"] != "Bearer abcdefghijkl"


def test_load_workflow_file(tmp_path: Path) -> None:
    path = tmp_path / "month-end.yaml"
    path.write_text(
        "id: month-end\n"
        "name: Month end\n"
        "stop_on_failure: false\n"
        "steps:\n"
        "  - agent: data-engineer\n"
        "    name: extract\n"
        "    payload: ledger\n"
        "  - agent: financial-analyst\n"
        "    depends_on: [extract]\n"
        "    priority: high\n"
    )

    workflow = load_workflow_file(path)

    assert workflow.workflow_id == "month-end"
    assert workflow.stop_on_failure is False
    assert [step.step_name for step in workflow.steps] == ["extract", "financial-analyst"]
    assert workflow.steps[1].depends_on == ("extract",)
    assert workflow.steps[1].priority is TaskPriority.HIGH


def test_invalid_workflow_files_are_rejected(tmp_path: Path) -> None:
    no_steps = tmp_path / "empty.json"
    no_steps.write_text(json.dumps({"id": "empty"}))
    no_agent = tmp_path / "agentless.yml"
    no_agent.write_text("id: agentless\nsteps:\n  - name: orphan\n")
    text = tmp_path / "flow.txt"
    text.write_text("steps")

    with pytest.raises(ValueError):
        load_workflow_file(no_steps)
    with pytest.raises(ValueError):
        load_workflow_file(text)
    with pytest.raises(WorkflowError):
        load_workflow_file(no_agent)
