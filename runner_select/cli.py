#!/usr/bin/env python3
"""
runner-select v0

CLI to pick, and optionally run, the test command for a target project.
"""

from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import jsonschema

from runner_select.selector import (
    JS_LOCK_MARKERS,
    JS_MANIFEST,
    PYTHON_LOCK_MARKERS,
    PYTHON_MANIFEST_MARKERS,
    UnresolvableProjectType,
    python_executable,
    resolve,
)


REPORT_VERSION = "v0"
EXIT_UNRESOLVED = 1
EXIT_TIMEOUT = 124
EXIT_NOT_EXECUTABLE = 126
EXIT_MISSING_EXECUTABLE = 127
EXIT_SIGNAL_BASE = 128

REPORT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["version", "run_at", "project_dir", "status"],
    "properties": {
        "version": {"const": REPORT_VERSION},
        "run_at": {"type": "string"},
        "project_dir": {"type": "string"},
        "status": {"enum": ["resolved", "unresolved", "passed", "failed", "timeout", "error"]},
        "framework": {"type": "string"},
        "command": {"type": "array", "items": {"type": "string"}},
        "checked_markers": {"type": "array", "items": {"type": "string"}},
        "exit_code": {"type": "integer"},
        "duration_seconds": {"type": "number"},
    },
}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def atomic_write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.tmp.", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        try:
            if tmp_path.exists():
                tmp_path.unlink()
        except FileNotFoundError:
            pass


def write_report(project_dir: Path, raw_out_file: str | None, report: dict[str, Any]) -> None:
    if not raw_out_file:
        return
    jsonschema.validate(instance=report, schema=REPORT_SCHEMA)
    out = Path(raw_out_file)
    if not out.is_absolute():
        out = project_dir / out
    atomic_write_text(out, json.dumps(report, indent=2, sort_keys=True) + "\n")


def base_report(project_dir: Path, status: str) -> dict[str, Any]:
    return {
        "version": REPORT_VERSION,
        "run_at": utc_now(),
        "project_dir": str(project_dir),
        "status": status,
    }


def unresolved_report(project_dir: Path, exc: UnresolvableProjectType) -> dict[str, Any]:
    report = base_report(project_dir, "unresolved")
    report["checked_markers"] = exc.checked
    report["reason"] = "unknown project type"
    return report


def resolve_project(args: argparse.Namespace) -> int:
    project_dir = Path(args.project_dir).resolve()
    try:
        resolution = resolve(project_dir)
    except UnresolvableProjectType as exc:
        report = unresolved_report(project_dir, exc)
        if args.format == "json":
            print(json.dumps(report, indent=2, sort_keys=True))
        write_report(project_dir, args.out_file, report)
        print(str(exc), file=sys.stderr)
        return EXIT_UNRESOLVED

    command = resolution.command_with(coverage=args.coverage, test_filter=args.test)
    report = base_report(project_dir, "resolved")
    report.update(resolution.to_dict())
    report["command"] = command

    if args.format == "json":
        print(json.dumps(report, indent=2, sort_keys=True))
    else:
        print(f"framework: {resolution.framework}")
        print(f"package_manager: {resolution.package_manager or '-'}")
        print(f"marker: {resolution.marker or '-'}")
        if resolution.script:
            print(f"script: {resolution.script}")
        print(f"command: {' '.join(command)}")

    write_report(project_dir, args.out_file, report)
    return 0


def marker_rules() -> list[dict[str, Any]]:
    rules: list[dict[str, Any]] = []
    for name, manager in PYTHON_LOCK_MARKERS:
        rules.append({"marker": name, "language": "python", "package_manager": manager})
    for name in PYTHON_MANIFEST_MARKERS:
        rules.append({"marker": name, "language": "python", "package_manager": None})
    rules.append({"marker": JS_MANIFEST, "language": "javascript", "package_manager": None})
    for name, manager in JS_LOCK_MARKERS:
        rules.append({"marker": name, "language": "javascript", "package_manager": manager})
    return rules


def markers_project(args: argparse.Namespace) -> int:
    rules = marker_rules()
    if args.format == "json":
        print(json.dumps({"version": REPORT_VERSION, "markers": rules}, indent=2, sort_keys=True))
    else:
        for idx, rule in enumerate(rules, start=1):
            print(f"{idx}. {rule['marker']} [{rule['language']}] {rule['package_manager'] or '-'}")
        print(f"python_fallback: {python_executable()} -m pytest")
    return 0


def run_project(args: argparse.Namespace) -> int:
    project_dir = Path(args.project_dir).resolve()
    try:
        resolution = resolve(project_dir)
    except UnresolvableProjectType as exc:
        report = unresolved_report(project_dir, exc)
        if args.format == "json":
            print(json.dumps(report, indent=2, sort_keys=True))
        write_report(project_dir, args.out_file, report)
        print(str(exc), file=sys.stderr)
        return EXIT_UNRESOLVED

    command = resolution.command_with(coverage=args.coverage, test_filter=args.test)
    report = base_report(project_dir, "error")
    report.update(resolution.to_dict())
    report["command"] = command

    started = time.monotonic()
    stdout = ""
    stderr = ""
    try:
        proc = subprocess.run(
            command,
            cwd=str(project_dir),
            capture_output=True,
            text=True,
            check=False,
            timeout=args.timeout_seconds,
        )
        # a negative return code means the child was killed by that signal
        exit_code = proc.returncode if proc.returncode >= 0 else EXIT_SIGNAL_BASE - proc.returncode
        stdout, stderr = proc.stdout, proc.stderr
        report["status"] = "passed" if exit_code == 0 else "failed"
    except FileNotFoundError:
        exit_code = EXIT_MISSING_EXECUTABLE
        stderr = f"executable not found: {command[0]}\n"
    except OSError as exc:
        exit_code = EXIT_NOT_EXECUTABLE
        stderr = f"cannot execute {command[0]}: {exc}\n"
    except subprocess.TimeoutExpired as exc:
        exit_code = EXIT_TIMEOUT
        report["status"] = "timeout"
        stdout = _decode(exc.stdout)
        stderr = _decode(exc.stderr) + f"timed out after {args.timeout_seconds}s\n"

    report["exit_code"] = exit_code
    report["duration_seconds"] = round(time.monotonic() - started, 3)
    report["stdout"] = stdout
    report["stderr"] = stderr

    if args.format == "json":
        print(json.dumps(report, indent=2, sort_keys=True))
    else:
        print(f"$ {' '.join(command)}", file=sys.stderr)
        if stdout:
            print(stdout, end="")
        if stderr:
            print(stderr, file=sys.stderr, end="")

    write_report(project_dir, args.out_file, report)
    return exit_code


def _decode(raw: str | bytes | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="runner-select v0")
    sub = parser.add_subparsers(dest="cmd", required=True)

    def add_extra_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--coverage", action="store_true", help="Append the framework's coverage flag.")
        p.add_argument("--test", help="Only run tests matching this name.")

    def add_output_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--format", choices=["text", "json"], default="text")
        p.add_argument("--out-file", help="Write the JSON report here (relative to --project-dir).")

    p_resolve = sub.add_parser("resolve", help="Print the test command for a project.")
    p_resolve.add_argument("--project-dir", required=True)
    add_extra_args(p_resolve)
    add_output_args(p_resolve)
    p_resolve.set_defaults(func=resolve_project)

    p_markers = sub.add_parser("markers", help="List checked marker files in precedence order.")
    p_markers.add_argument("--format", choices=["text", "json"], default="text")
    p_markers.set_defaults(func=markers_project)

    p_run = sub.add_parser("run", help="Resolve and execute the test command once.")
    p_run.add_argument("--project-dir", required=True)
    p_run.add_argument(
        "--timeout-seconds",
        type=float,
        default=None,
        help="Kill the test process after this many seconds (default: no limit).",
    )
    add_extra_args(p_run)
    add_output_args(p_run)
    p_run.set_defaults(func=run_project)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except (NotADirectoryError, RuntimeError) as exc:
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
