#!/usr/bin/env python3
"""
Test runner selection for a project directory.

Maps the marker files present in a project root (lock files, manifests) to a
single command template that runs the project's test suite. Precedence is
fixed and the first match wins:

  1. uv.lock                -> uv run pytest
  2. poetry.lock            -> poetry run pytest
  3. Pipfile.lock           -> pipenv run pytest
  4. other Python manifest  -> python -m pytest
  5. package.json test script -> <pm> run <script>
  6. JS/TS marker only      -> <pm> test
  7. nothing recognized     -> UnresolvableProjectType
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jsonschema


PYTHON_ENV_VAR = "RUNNER_SELECT_PYTHON"
DEFAULT_PYTHON = "python"

PYTHON_LOCK_MARKERS = [
    ("uv.lock", "uv"),
    ("poetry.lock", "poetry"),
    ("Pipfile.lock", "pipenv"),
]
PYTHON_MANIFEST_MARKERS = [
    "pyproject.toml",
    "setup.py",
    "setup.cfg",
    "requirements.txt",
    "pytest.ini",
    "tox.ini",
    "conftest.py",
]
JS_MANIFEST = "package.json"
JS_LOCK_MARKERS = [
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("package-lock.json", "npm"),
]
DEFAULT_JS_PACKAGE_MANAGER = "npm"
JS_FRAMEWORKS = ["vitest", "jest"]
GENERIC_JS_FRAMEWORK = "js"
TEST_SCRIPT_NAMES = ["test", "test:unit", "unit"]
NPM_PLACEHOLDER_TEST_SCRIPT = 'echo "Error: no test specified" && exit 1'

PACKAGE_SCRIPTS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "scripts": {
            "type": "object",
            "additionalProperties": {"type": "string"},
        },
    },
}

# (coverage tokens, filter flag)
FRAMEWORK_EXTRAS = {
    "pytest": (["--cov"], "-k"),
    "jest": (["--coverage"], "-t"),
    "vitest": (["--coverage"], "-t"),
    "js": ([], None),
}


class UnresolvableProjectType(RuntimeError):
    def __init__(self, project_root: Path, checked: list[str]) -> None:
        self.project_root = project_root
        self.checked = list(checked)
        super().__init__(
            f"unknown project type: {project_root}\n"
            f"checked markers: {', '.join(self.checked)}\n"
            "add a lock file or manifest, or run the tests manually"
        )


class UnsupportedTestOptions(RuntimeError):
    def __init__(self, framework: str, command: tuple[str, ...]) -> None:
        self.framework = framework
        super().__init__(
            f"cannot add coverage or test filter flags for framework '{framework}': "
            f"{' '.join(command)}\n"
            "the test script calls an unrecognized runner; pass its flags manually"
        )


@dataclass(frozen=True)
class Resolution:
    framework: str
    command: tuple[str, ...]
    language: str
    package_manager: str | None = None
    marker: str | None = None
    script: str | None = None

    def command_with(self, coverage: bool = False, test_filter: str | None = None) -> list[str]:
        """Return the command with optional coverage/filter tokens appended."""
        coverage_tokens, filter_flag = FRAMEWORK_EXTRAS[self.framework]
        if filter_flag is None and (coverage or test_filter):
            raise UnsupportedTestOptions(self.framework, self.command)
        extras: list[str] = []
        if coverage:
            extras.extend(coverage_tokens)
        if test_filter:
            extras.extend([filter_flag, test_filter])
        if not extras:
            return list(self.command)
        if self.package_manager == "npm":
            # npm only forwards arguments that follow a `--` separator.
            extras.insert(0, "--")
        return [*self.command, *extras]

    def to_dict(self) -> dict[str, Any]:
        return {
            "framework": self.framework,
            "command": list(self.command),
            "language": self.language,
            "package_manager": self.package_manager,
            "marker": self.marker,
            "script": self.script,
        }


def checked_markers() -> list[str]:
    names = [name for name, _ in PYTHON_LOCK_MARKERS]
    names.extend(PYTHON_MANIFEST_MARKERS)
    names.append(JS_MANIFEST)
    names.extend(name for name, _ in JS_LOCK_MARKERS)
    return names


def python_executable() -> str:
    return os.environ.get(PYTHON_ENV_VAR) or DEFAULT_PYTHON


def load_package_scripts(manifest: Path) -> dict[str, str]:
    """Return the `scripts` mapping of package.json, or {} when unusable."""
    try:
        obj = json.loads(manifest.read_text(encoding="utf-8"))
        jsonschema.validate(instance=obj, schema=PACKAGE_SCRIPTS_SCHEMA)
    except (OSError, ValueError, jsonschema.ValidationError):
        return {}
    return dict(obj.get("scripts") or {})


def find_test_script(scripts: dict[str, str]) -> str | None:
    for name in TEST_SCRIPT_NAMES:
        body = scripts.get(name, "").strip()
        if body and body != NPM_PLACEHOLDER_TEST_SCRIPT:
            return name
    return None


def js_framework_for(script_body: str) -> str:
    """Return the runner a JS test script calls; "js" when it is not recognized."""
    for framework in JS_FRAMEWORKS:
        if re.search(rf"\b{framework}\b", script_body):
            return framework
    return GENERIC_JS_FRAMEWORK


def _resolve_python(root: Path) -> Resolution | None:
    for name, manager in PYTHON_LOCK_MARKERS:
        if (root / name).is_file():
            return Resolution(
                framework="pytest",
                command=(manager, "run", "pytest"),
                language="python",
                package_manager=manager,
                marker=name,
            )
    for name in PYTHON_MANIFEST_MARKERS:
        if (root / name).is_file():
            return Resolution(
                framework="pytest",
                command=(python_executable(), "-m", "pytest"),
                language="python",
                marker=name,
            )
    return None


def _resolve_js(root: Path) -> Resolution | None:
    lock_marker = None
    manager = DEFAULT_JS_PACKAGE_MANAGER
    for name, candidate in JS_LOCK_MARKERS:
        if (root / name).is_file():
            lock_marker, manager = name, candidate
            break

    manifest = root / JS_MANIFEST
    scripts = load_package_scripts(manifest) if manifest.is_file() else {}
    script = find_test_script(scripts)
    if script is not None:
        return Resolution(
            framework=js_framework_for(scripts[script]),
            command=(manager, "run", script),
            language="javascript",
            package_manager=manager,
            marker=JS_MANIFEST,
            script=script,
        )

    if lock_marker is None and not manifest.is_file():
        return None
    return Resolution(
        framework=js_framework_for(scripts.get("test", "")),
        command=(manager, "test"),
        language="javascript",
        package_manager=manager,
        marker=lock_marker or JS_MANIFEST,
    )


def resolve(project_root: Path | str) -> Resolution:
    root = Path(project_root)
    if not root.is_dir():
        raise NotADirectoryError(f"project root is not a directory: {root}")

    resolution = _resolve_python(root) or _resolve_js(root)
    if resolution is None:
        raise UnresolvableProjectType(root, checked_markers())
    return resolution
