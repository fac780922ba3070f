"""
envctl list command implementation.

Lists environments, optionally filtered by status and reconciled against the
live containers.
"""

import argparse

from devenv.cli.output import print_json, print_table, report_error
from devenv.core.exceptions import DevEnvError


def cmd_list(cli_instance, args: argparse.Namespace) -> int:
    """List environments.

    Args:
        cli_instance: EnvCLI instance with engine
        args: Parsed command-line arguments with: status (optional), reconcile

    Returns:
        Exit code (0 on success, 1 on error)
    """
    try:
        records = cli_instance.engine.list(
            status=getattr(args, "status", None),
            reconcile=bool(getattr(args, "reconcile", False)),
        )
    except DevEnvError as e:
        return report_error(cli_instance, e)

    if cli_instance.json:
        print_json([r.to_dict() for r in records])
    else:
        print_table(records)
    return 0
