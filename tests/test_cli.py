from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from integration_queue.__main__ import main
from integration_queue.catalog import default_catalog

HOOKS_SOURCE = '''
from integration_queue.installer import IntegrationHooks


async def _apply(integration, context):
    return {"files": [f"src/{integration.key}.ts"]}


async def _broken(integration, context):
    raise RuntimeError("pnpm add failed")


HOOKS = {key: IntegrationHooks(apply=_apply) for key in ("orpc", "tanstack-start", "postgresql", "better-auth")}
BROKEN_BACKEND = {**HOOKS, "orpc": IntegrationHooks(apply=_broken)}
ORPC_ONLY = {"orpc": IntegrationHooks(apply=_apply)}


def build_hooks():
    return dict(HOOKS)
'''


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in (
        "INTEGRATIONS_CATALOG_PATH",
        "INTEGRATIONS_EVENTS_LOG",
        "INTEGRATIONS_STATE_STORE_ROOT",
        "INTEGRATIONS_HOOKS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def hooks_module(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> str:
    module_dir = tmp_path / "hooks_pkg"
    module_dir.mkdir()
    (module_dir / "project_hooks.py").write_text(HOOKS_SOURCE, encoding="utf-8")
    monkeypatch.syspath_prepend(str(module_dir))
    monkeypatch.delitem(sys.modules, "project_hooks", raising=False)
    return "project_hooks"


def _cli(tmp_path: Path, *args: str) -> int:
    return main(["--state-store", str(tmp_path / "store"), *args])


def _statuses(tmp_path: Path, capsys: pytest.CaptureFixture[str], version_id: str) -> dict[str, str]:
    capsys.readouterr()
    assert _cli(tmp_path, "status", version_id) == 0
    return {record["integration"]["key"]: record["status"] for record in json.loads(capsys.readouterr().out)}


def test_order_prints_categories(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["order", "authentication", "backend", "database"]) == 0

    assert capsys.readouterr().out.splitlines() == ["backend", "database", "authentication"]


def test_order_with_unknown_category_fails() -> None:
    assert main(["order", "payments"]) == 1


def test_full_flow(tmp_path: Path, capsys: pytest.CaptureFixture[str], hooks_module: str) -> None:
    assert _cli(tmp_path, "create-version", "v1", "--project", "proj-1") == 0
    assert _cli(tmp_path, "enqueue", "v1", "better-auth", "postgresql", "orpc", "tanstack-start") == 0
    assert _cli(tmp_path, "configure", "v1", "postgresql", "--var", "DATABASE_URL") == 0
    capsys.readouterr()

    assert _cli(tmp_path, "run", "v1", "--hooks", f"{hooks_module}:HOOKS") == 0
    result = json.loads(capsys.readouterr().out)
    assert result == {
        "status": "completed",
        "installed": ["orpc", "tanstack-start", "postgresql", "better-auth"],
        "blocked": [],
        "rounds": 3,
    }

    assert _cli(tmp_path, "status", "v1") == 0
    records = json.loads(capsys.readouterr().out)
    assert {record["status"] for record in records} == {"installed"}
    assert {tuple(record["metadata"]["files"]) for record in records} == {
        ("src/orpc.ts",),
        ("src/tanstack-start.ts",),
        ("src/postgresql.ts",),
        ("src/better-auth.ts",),
    }


def test_run_refuses_without_hooks(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _cli(tmp_path, "create-version", "v1", "--project", "proj-1")
    _cli(tmp_path, "enqueue", "v1", "orpc")

    assert _cli(tmp_path, "run", "v1") == 1
    assert _statuses(tmp_path, capsys, "v1") == {"orpc": "queued"}


def test_run_uses_hooks_setting(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], hooks_module: str
) -> None:
    monkeypatch.setenv("INTEGRATIONS_HOOKS", f"{hooks_module}:build_hooks")
    _cli(tmp_path, "create-version", "v1", "--project", "proj-1")
    _cli(tmp_path, "enqueue", "v1", "orpc")

    assert _cli(tmp_path, "run", "v1") == 0
    assert _statuses(tmp_path, capsys, "v1") == {"orpc": "installed"}


def test_run_fails_keys_without_registered_hooks(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], hooks_module: str
) -> None:
    _cli(tmp_path, "create-version", "v1", "--project", "proj-1")
    _cli(tmp_path, "enqueue", "v1", "orpc", "tanstack-start")
    capsys.readouterr()

    assert _cli(tmp_path, "run", "v1", "--hooks", f"{hooks_module}:ORPC_ONLY") == 1
    result = json.loads(capsys.readouterr().out)
    assert result["failed_key"] == "tanstack-start"
    assert result["message"] == "No install hooks registered for integration tanstack-start"
    assert _statuses(tmp_path, capsys, "v1") == {"orpc": "installed", "tanstack-start": "failed"}


def test_run_hook_failure_returns_error(tmp_path: Path, capsys: pytest.CaptureFixture[str], hooks_module: str) -> None:
    _cli(tmp_path, "create-version", "v1", "--project", "proj-1")
    _cli(tmp_path, "enqueue", "v1", "orpc")
    capsys.readouterr()

    assert _cli(tmp_path, "run", "v1", "--hooks", f"{hooks_module}:BROKEN_BACKEND") == 1
    result = json.loads(capsys.readouterr().out)
    assert result == {"status": "error", "failed_key": "orpc", "message": "pnpm add failed", "installed": []}

    assert _cli(tmp_path, "retry", "v1", "orpc") == 0
    assert _cli(tmp_path, "run", "v1", "--hooks", f"{hooks_module}:HOOKS") == 0
    assert _statuses(tmp_path, capsys, "v1") == {"orpc": "installed"}


def test_run_with_unresolvable_hooks_fails(tmp_path: Path, hooks_module: str) -> None:
    _cli(tmp_path, "create-version", "v1", "--project", "proj-1")

    assert _cli(tmp_path, "run", "v1", "--hooks", "no_such_hooks_module:HOOKS") == 1
    assert _cli(tmp_path, "run", "v1", "--hooks", f"{hooks_module}:MISSING") == 1
    assert _cli(tmp_path, "run", "v1", "--hooks", hooks_module) == 1


def test_run_reports_blocked_integrations(tmp_path: Path, capsys: pytest.CaptureFixture[str], hooks_module: str) -> None:
    _cli(tmp_path, "create-version", "v1", "--project", "proj-1")
    _cli(tmp_path, "enqueue", "v1", "better-auth")
    capsys.readouterr()

    assert _cli(tmp_path, "run", "v1", "--hooks", f"{hooks_module}:HOOKS") == 0
    assert json.loads(capsys.readouterr().out)["blocked"] == ["better-auth"]


def test_child_version_installs_on_top_of_parent(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], hooks_module: str
) -> None:
    hooks = f"{hooks_module}:HOOKS"
    _cli(tmp_path, "create-version", "v1", "--project", "proj-1")
    _cli(tmp_path, "enqueue", "v1", "orpc")
    assert _cli(tmp_path, "run", "v1", "--hooks", hooks) == 0
    _cli(tmp_path, "create-version", "v2", "--project", "proj-1", "--parent", "v1")
    _cli(tmp_path, "enqueue", "v2", "orpc", "postgresql", "--var", "DATABASE_URL")
    capsys.readouterr()

    assert _cli(tmp_path, "run", "v2", "--hooks", hooks) == 0
    assert json.loads(capsys.readouterr().out)["installed"] == ["postgresql"]


def test_events_log_setting_writes_status_events(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], hooks_module: str
) -> None:
    monkeypatch.setenv("INTEGRATIONS_EVENTS_LOG", "events.jsonl")
    _cli(tmp_path, "create-version", "v1", "--project", "proj-1")
    _cli(tmp_path, "enqueue", "v1", "orpc")

    assert _cli(tmp_path, "run", "v1", "--hooks", f"{hooks_module}:HOOKS") == 0
    events = [json.loads(line) for line in (tmp_path / "events.jsonl").read_text(encoding="utf-8").splitlines()]
    assert [event["status"] for event in events] == ["installing", "installed"]


def test_custom_catalog_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    catalog_path = tmp_path / "catalog.json"
    catalog_path.write_text(default_catalog().to_document().model_dump_json(), encoding="utf-8")

    assert main(["--catalog", str(catalog_path), "order"]) == 0
    assert capsys.readouterr().out.splitlines() == ["backend", "frontend", "database", "authentication"]


def test_errors_return_nonzero(tmp_path: Path, hooks_module: str) -> None:
    assert _cli(tmp_path, "run", "missing-version", "--hooks", f"{hooks_module}:HOOKS") == 1
    assert _cli(tmp_path, "create-version", "v1", "--project", "proj-1") == 0
    assert _cli(tmp_path, "enqueue", "v1", "redis") == 1
    assert _cli(tmp_path, "retry", "v1", "orpc") == 1
    assert _cli(tmp_path, "enqueue", "v1", "orpc", "--options-json", '{"orpc": {"openapi": "maybe"}}') == 1
