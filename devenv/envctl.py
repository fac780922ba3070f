#!/usr/bin/env python3
"""
envctl: Development environment management CLI.

Commands:
  create   Create a worktree-backed environment and build its image
  list     List environments (optionally reconciled against containers)
  start    Start an environment container
  stop     Stop an environment container
  status   Show one environment, reconciled against its container
  destroy  Remove container, worktree and record
  exec     Run a command inside a running environment
  server   Run the control-plane websocket server
  config   Show or edit configuration (show, get, set, path)
"""

import argparse
import logging
import sys
from typing import List, Optional

from devenv.cli import EnvCLI
from devenv.cli.output import report_error
from devenv.core.models import EnvironmentRecord


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="envctl", description="Development environment management CLI"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Config file (default: $DEVENV_CONFIG or ~/.config/devenv/config.yaml)",
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # 'create' command
    create_parser = subparsers.add_parser(
        "create", help="Create a worktree-backed environment"
    )
    create_parser.add_argument("name", help="Environment name")
    create_parser.add_argument(
        "--branch", default=None, help="Branch to check out (default: the name)"
    )
    create_parser.add_argument(
        "--from",
        dest="base",
        default=None,
        help="Base branch for a new branch (default: config default_base_branch)",
    )

    # 'list' command
    list_parser = subparsers.add_parser("list", help="List environments")
    list_parser.add_argument(
        "--status",
        choices=sorted(EnvironmentRecord.VALID_STATUSES),
        help="Filter by status",
    )
    list_parser.add_argument(
        "--reconcile",
        action="store_true",
        help="Check each environment against its live container first",
    )

    # lifecycle commands
    start_parser = subparsers.add_parser("start", help="Start an environment (ready/stopped -> running)")
    start_parser.add_argument("name", help="Environment name")

    stop_parser = subparsers.add_parser("stop", help="Stop an environment (running -> stopped)")
    stop_parser.add_argument("name", help="Environment name")

    status_parser = subparsers.add_parser("status", help="Show one environment")
    status_parser.add_argument("name", help="Environment name")
    status_parser.add_argument(
        "--no-reconcile",
        action="store_true",
        help="Report the stored status without inspecting the container",
    )

    destroy_parser = subparsers.add_parser(
        "destroy", help="Remove container, worktree and record"
    )
    destroy_parser.add_argument("name", help="Environment name")
    destroy_parser.add_argument(
        "--force",
        action="store_true",
        help="Discard uncommitted changes in the worktree",
    )

    # 'exec' command
    exec_parser = subparsers.add_parser(
        "exec", help="Run a command in a running environment"
    )
    exec_parser.add_argument("name", help="Environment name")
    exec_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds before the command is killed (default: config exec_timeout)",
    )
    exec_parser.add_argument(
        "command", nargs=argparse.REMAINDER, help="Command to run, after --"
    )

    # 'server' command
    server_parser = subparsers.add_parser(
        "server", help="Run the control-plane websocket server"
    )
    server_parser.add_argument("--host", default=None, help="Bind address (default: config server_host)")
    server_parser.add_argument("--port", type=int, default=None, help="Port (default: config server_port)")

    # 'config' command
    config_parser = subparsers.add_parser("config", help="Show or edit configuration")
    config_sub = config_parser.add_subparsers(dest="config_action")
    config_sub.add_parser("show", help="Show the effective configuration")
    get_parser = config_sub.add_parser("get", help="Show one configuration value")
    get_parser.add_argument("key", help="Config key")
    set_parser = config_sub.add_parser("set", help="Persist one configuration value")
    set_parser.add_argument("key", help="Config key")
    set_parser.add_argument("value", help="New value")
    config_sub.add_parser("path", help="Show the config file in use")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for envctl CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
    )
    if args.command == "server" and not args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    if not args.command:
        parser.print_help()
        return 1

    cli = EnvCLI(config_path=args.config, json_output=args.json)

    handlers = {
        "create": cli.cmd_create,
        "list": cli.cmd_list,
        "start": cli.cmd_start,
        "stop": cli.cmd_stop,
        "status": cli.cmd_status,
        "destroy": cli.cmd_destroy,
        "exec": cli.cmd_exec,
        "server": cli.cmd_server,
        "config": cli.cmd_config,
    }

    try:
        return handlers[args.command](args)
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logging.getLogger(__name__).debug("Unexpected error", exc_info=True)
        return report_error(cli, e)


if __name__ == "__main__":
    sys.exit(main())
