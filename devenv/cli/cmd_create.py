"""
envctl create command implementation.

Provisions a worktree and builds the environment image.
"""

import argparse

from devenv.cli.output import describe_record, print_json, report_error
from devenv.core.exceptions import DevEnvError


def cmd_create(cli_instance, args: argparse.Namespace) -> int:
    """Create a new environment.

    Args:
        cli_instance: EnvCLI instance with engine
        args: Parsed command-line arguments with: name, branch, base

    Returns:
        Exit code (0 on success, 1 on error)
    """
    try:
        record = cli_instance.engine.create(
            args.name,
            branch=getattr(args, "branch", None),
            base_branch=getattr(args, "base", None),
        )
    except DevEnvError as e:
        return report_error(cli_instance, e)

    if cli_instance.json:
        print_json(record.to_dict())
    else:
        print(f"Environment created: {record.name}")
        for line in describe_record(record):
            print(f"  {line}")
    return 0
