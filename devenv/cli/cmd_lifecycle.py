"""
envctl start, stop, and destroy command implementations.

Each command performs one engine lifecycle transition.
"""

import argparse

from devenv.cli.output import print_json, report_error
from devenv.core.exceptions import DevEnvError


def cmd_start(cli_instance, args: argparse.Namespace) -> int:
    """Start an environment container.

    Legal from: ready, stopped

    Returns:
        Exit code (0 on success, 1 on error)
    """
    try:
        record = cli_instance.engine.start(args.name)
    except DevEnvError as e:
        return report_error(cli_instance, e)

    if cli_instance.json:
        print_json(record.to_dict())
    else:
        print(f"Environment started: {record.name} (container {record.container_id})")
    return 0


def cmd_stop(cli_instance, args: argparse.Namespace) -> int:
    """Stop an environment container, keeping it for the next start.

    Legal from: running

    Returns:
        Exit code (0 on success, 1 on error)
    """
    try:
        record = cli_instance.engine.stop(args.name)
    except DevEnvError as e:
        return report_error(cli_instance, e)

    if cli_instance.json:
        print_json(record.to_dict())
    else:
        print(f"Environment stopped: {record.name}")
    return 0


def cmd_destroy(cli_instance, args: argparse.Namespace) -> int:
    """Destroy an environment: container, worktree and record.

    Destroying a name that does not exist succeeds without side effects.

    Args:
        cli_instance: EnvCLI instance with engine
        args: Parsed command-line arguments with: name, force

    Returns:
        Exit code (0 on success, 1 on error)
    """
    try:
        destroyed = cli_instance.engine.destroy(
            args.name, force=bool(getattr(args, "force", False))
        )
    except DevEnvError as e:
        return report_error(cli_instance, e)

    if cli_instance.json:
        print_json({"name": args.name, "destroyed": destroyed})
    elif destroyed:
        print(f"Environment destroyed: {args.name}")
    else:
        print(f"No environment named {args.name}; nothing to destroy")
    return 0
