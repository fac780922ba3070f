"""
envctl server command implementation.

Runs the control-plane websocket server in the foreground.
"""

import argparse

from devenv.cli.output import report_error
from devenv.core.exceptions import AdapterUnavailableError, DevEnvError
from devenv.server import ControlPlaneServer


def cmd_server(cli_instance, args: argparse.Namespace) -> int:
    """Serve the control-plane protocol until interrupted.

    Args:
        cli_instance: EnvCLI instance with config and engine
        args: Parsed command-line arguments with: host, port

    Returns:
        Exit code (0 on clean shutdown, 1 on error)
    """
    host, port = getattr(args, "host", None), getattr(args, "port", None)
    try:
        host = host or cli_instance.config.server_host
        port = port or cli_instance.config.server_port
        server = ControlPlaneServer(cli_instance.config, cli_instance.engine)
        print(f"Control-plane listening on ws://{host}:{port}/ws")
        server.run(host=host, port=port)
    except DevEnvError as e:
        return report_error(cli_instance, e)
    except OSError as e:
        # Typically the port is already bound
        return report_error(
            cli_instance, AdapterUnavailableError(f"cannot listen on {host}:{port}: {e}")
        )
    return 0
