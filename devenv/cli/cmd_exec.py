"""
envctl exec command implementation.

Runs a shell command inside a running environment, streaming its output.
"""

import argparse
import shlex
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import List

from devenv.cli.output import print_json, report_error
from devenv.core.exceptions import DevEnvError, ValidationError
from devenv.core.models import OutputChunk


def build_command(words: List[str]) -> str:
    """Turn the words after ``--`` into one shell command line.

    A single word is passed through unquoted so ``envctl exec env "a && b"``
    keeps its shell syntax.
    """
    if words and words[0] == "--":
        words = words[1:]
    if not words:
        raise ValidationError("no command given (usage: envctl exec <name> -- <command>)")
    if len(words) == 1:
        return words[0]
    return shlex.join(words)


def cmd_exec(cli_instance, args: argparse.Namespace) -> int:
    """Execute a command in an environment.

    Output streams to this process's stdout and stderr as it arrives;
    Ctrl-C cancels the command.

    Args:
        cli_instance: EnvCLI instance with engine
        args: Parsed command-line arguments with: name, command, timeout

    Returns:
        The command's exit code, or 1 on error
    """
    try:
        command = build_command(list(args.command or []))
        engine = cli_instance.engine
    except DevEnvError as e:
        return report_error(cli_instance, e)

    collected = {"stdout": [], "stderr": []}

    def on_output(chunk: OutputChunk) -> None:
        if cli_instance.json:
            collected[chunk.stream].append(chunk.data)
            return
        stream = sys.stdout if chunk.stream == "stdout" else sys.stderr
        stream.write(chunk.data)
        stream.flush()

    cancel_event = threading.Event()
    with ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(
            engine.execute_stream,
            args.name,
            command,
            on_output,
            timeout=getattr(args, "timeout", None),
            cancel_event=cancel_event,
        )
        try:
            try:
                result = future.result()
            except KeyboardInterrupt:
                cancel_event.set()
                result = future.result()
        except DevEnvError as e:
            return report_error(cli_instance, e)

    if cli_instance.json:
        payload = result.to_dict()
        payload["stdout"] = "".join(collected["stdout"])
        payload["stderr"] = "".join(collected["stderr"])
        print_json(payload)
    if result.cancelled:
        print("Command cancelled", file=sys.stderr)
        return 130
    return result.exit_code
