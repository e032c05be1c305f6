from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from conftest import load_json, make_project, run_cli


PASSING_TEST = "def test_ok():\n    assert 1 + 1 == 2\n"
FAILING_TEST = "def test_broken():\n    assert 1 + 1 == 3\n"


def python_project(project: Path, test_body: str) -> Path:
    return make_project(project, {"pyproject.toml": "", "test_sample.py": test_body})


def test_run_passing_suite(project: Path) -> None:
    python_project(project, PASSING_TEST)
    proc = run_cli(
        project,
        "run",
        "--format",
        "json",
        "--out-file",
        "run.json",
        env={"RUNNER_SELECT_PYTHON": sys.executable},
    )
    payload = json.loads(proc.stdout)
    assert payload["status"] == "passed"
    assert payload["exit_code"] == 0
    assert payload["command"] == [sys.executable, "-m", "pytest"]
    assert "1 passed" in payload["stdout"]
    assert load_json(project / "run.json")["status"] == "passed"


def test_run_failing_suite_propagates_exit_code(project: Path) -> None:
    python_project(project, PASSING_TEST + "\n\n" + FAILING_TEST)
    proc = run_cli(project, "run", expect_code=1, env={"RUNNER_SELECT_PYTHON": sys.executable})
    assert "1 failed" in proc.stdout
    assert "-m pytest" in proc.stderr


def test_run_with_filter_only_selects_matching_tests(project: Path) -> None:
    python_project(project, PASSING_TEST + "\n\n" + FAILING_TEST)
    proc = run_cli(
        project,
        "run",
        "--test",
        "test_ok",
        "--format",
        "json",
        env={"RUNNER_SELECT_PYTHON": sys.executable},
    )
    payload = json.loads(proc.stdout)
    assert payload["status"] == "passed"
    assert payload["command"][-2:] == ["-k", "test_ok"]


def test_run_missing_executable(project: Path) -> None:
    python_project(project, PASSING_TEST)
    proc = run_cli(
        project,
        "run",
        "--format",
        "json",
        expect_code=127,
        env={"RUNNER_SELECT_PYTHON": "definitely-not-a-python-binary"},
    )
    payload = json.loads(proc.stdout)
    assert payload["status"] == "error"
    assert "executable not found" in payload["stderr"]


def test_run_timeout(project: Path) -> None:
    python_project(project, "import time\n\n\ndef test_slow():\n    time.sleep(30)\n")
    proc = run_cli(
        project,
        "run",
        "--timeout-seconds",
        "1",
        "--format",
        "json",
        expect_code=124,
        env={"RUNNER_SELECT_PYTHON": sys.executable},
    )
    payload = json.loads(proc.stdout)
    assert payload["status"] == "timeout"
    assert "timed out" in payload["stderr"]


def test_run_unknown_project(project: Path) -> None:
    proc = run_cli(project, "run", expect_code=1)
    assert "unknown project type" in proc.stderr


def test_run_non_executable_interpreter(project: Path, tmp_path: Path) -> None:
    python_project(project, PASSING_TEST)
    fake_python = tmp_path / "fake-python"
    fake_python.write_text("not a program\n", encoding="utf-8")
    fake_python.chmod(0o644)

    proc = run_cli(
        project,
        "run",
        "--format",
        "json",
        "--out-file",
        "r.json",
        expect_code=126,
        env={"RUNNER_SELECT_PYTHON": str(fake_python)},
    )
    payload = json.loads(proc.stdout)
    assert payload["status"] == "error"
    assert payload["exit_code"] == 126
    assert "cannot execute" in payload["stderr"]
    assert load_json(project / "r.json")["exit_code"] == 126


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
def test_run_signal_killed_child_maps_to_shell_code(project: Path) -> None:
    python_project(
        project,
        "import os\nimport signal\n\n\ndef test_killed():\n    os.kill(os.getpid(), signal.SIGTERM)\n",
    )
    proc = run_cli(
        project,
        "run",
        "--format",
        "json",
        expect_code=143,
        env={"RUNNER_SELECT_PYTHON": sys.executable},
    )
    payload = json.loads(proc.stdout)
    assert payload["status"] == "failed"
    assert payload["exit_code"] == 143
