"""Shared output helpers for envctl commands."""

import json
import sys
from typing import Any, List

from devenv.core.exceptions import DevEnvError
from devenv.core.models import EnvironmentRecord


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def report_error(cli_instance, error: Exception) -> int:
    """Print a surfaced error and return the failure exit code.

    DevEnvError carries its kind; anything else is reported as internal.
    """
    if isinstance(error, DevEnvError):
        kind, message, payload = error.kind, error.message, error.to_dict()
    else:
        kind, message = "internal", str(error) or error.__class__.__name__
        payload = {"kind": kind, "message": message, "environment": None, "operation": None}

    if getattr(cli_instance, "json", False):
        print_json({"error": payload})
    print(f"Error [{kind}]: {message}", file=sys.stderr)
    return 1


def describe_record(record: EnvironmentRecord) -> List[str]:
    """Human-readable detail lines for one environment."""
    lines = [
        f"Name:       {record.name}",
        f"Status:     {record.status}",
        f"Branch:     {record.branch} (from {record.base_branch})",
        f"Worktree:   {record.worktree_path or '-'}",
        f"Container:  {record.container_name}"
        + (f" ({record.container_id})" if record.container_id else ""),
        f"Image:      {record.image_ref or '-'}",
        f"Created:    {record.created_at}",
        f"Updated:    {record.updated_at}",
    ]
    if record.error:
        lines.append(
            f"Error:      [{record.error.kind}] {record.error.message}"
            + (f" during {record.error.operation}" if record.error.operation else "")
        )
    return lines


def print_table(records: List[EnvironmentRecord]) -> None:
    if not records:
        print("No environments")
        return
    name_width = max(len("NAME"), *(len(r.name) for r in records))
    branch_width = max(len("BRANCH"), *(len(r.branch) for r in records))
    print(f"{'NAME':<{name_width}}  {'STATUS':<10}  {'BRANCH':<{branch_width}}  CONTAINER")
    for r in records:
        print(
            f"{r.name:<{name_width}}  {r.status:<10}  {r.branch:<{branch_width}}  "
            f"{r.container_id or '-'}"
        )
