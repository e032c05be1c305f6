from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
CLI_MODULE = "runner_select.cli"


def run_cmd(
    args: list[str],
    cwd: Path,
    expect_code: int = 0,
    env: dict[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    full_env = dict(os.environ)
    full_env.pop("RUNNER_SELECT_PYTHON", None)
    if env:
        full_env.update(env)
    proc = subprocess.run(args, cwd=str(cwd), text=True, capture_output=True, check=False, env=full_env)
    if proc.returncode != expect_code:
        raise AssertionError(
            f"command failed\ncwd={cwd}\nargs={args}\n"
            f"expected={expect_code} got={proc.returncode}\n"
            f"stdout:\n{proc.stdout}\n\nstderr:\n{proc.stderr}"
        )
    return proc


def run_cli(
    project_dir: Path,
    *cli_args: str,
    expect_code: int = 0,
    env: dict[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    args = [sys.executable, "-m", CLI_MODULE, *cli_args, "--project-dir", str(project_dir)]
    return run_cmd(args, cwd=REPO_ROOT, expect_code=expect_code, env=env)


def make_project(root: Path, files: dict[str, str]) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


def package_json(scripts: dict[str, str] | None = None) -> str:
    obj: dict = {"name": "demo", "version": "1.0.0"}
    if scripts is not None:
        obj["scripts"] = scripts
    return json.dumps(obj, indent=2) + "\n"


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    project_dir = tmp_path / "proj"
    project_dir.mkdir()
    return project_dir


def load_json(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))
