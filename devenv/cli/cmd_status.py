"""
envctl status command implementation.

Displays one environment, reconciled against its live container.
"""

import argparse

from devenv.cli.output import describe_record, print_json, report_error
from devenv.core.exceptions import DevEnvError


def cmd_status(cli_instance, args: argparse.Namespace) -> int:
    """Display environment status.

    Args:
        cli_instance: EnvCLI instance with engine
        args: Parsed command-line arguments with: name, no_reconcile

    Returns:
        Exit code (0 on success, 1 on error)
    """
    try:
        record = cli_instance.engine.status(
            args.name, reconcile=not getattr(args, "no_reconcile", False)
        )
    except DevEnvError as e:
        return report_error(cli_instance, e)

    if cli_instance.json:
        print_json(record.to_dict())
    else:
        for line in describe_record(record):
            print(line)
    return 0
