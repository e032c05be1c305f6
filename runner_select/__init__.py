"""Pick the test command for a project from its marker files."""

from runner_select.selector import (
    Resolution,
    UnresolvableProjectType,
    UnsupportedTestOptions,
    checked_markers,
    resolve,
)

__all__ = ["Resolution", "UnresolvableProjectType", "UnsupportedTestOptions", "checked_markers", "resolve"]
