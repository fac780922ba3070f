"""
envctl config command implementation.

Shows, reads and writes the YAML configuration file.
"""

import argparse
from dataclasses import fields

import yaml

from devenv.cli.output import print_json, report_error
from devenv.core.exceptions import DevEnvError, ValidationError
from devenv.support.config import DevEnvConfig, set_config_value


def cmd_config(cli_instance, args: argparse.Namespace) -> int:
    """Inspect or edit configuration.

    Actions:
    - show: effective configuration (file values over defaults)
    - get KEY: one effective value
    - set KEY VALUE: persist a value into the config file
    - path: the config file in use

    Returns:
        Exit code (0 on success, 1 on error)
    """
    action = getattr(args, "config_action", None) or "show"
    config_path = cli_instance.config_path

    try:
        if action == "path":
            if cli_instance.json:
                print_json({"path": str(config_path), "exists": config_path.exists()})
            else:
                print(config_path)
            return 0

        if action == "show":
            data = cli_instance.config.to_dict()
            if cli_instance.json:
                print_json(data)
            else:
                print(yaml.safe_dump(data, sort_keys=True), end="")
            return 0

        if action == "get":
            known = {f.name for f in fields(DevEnvConfig)}
            if args.key not in known:
                raise ValidationError(f"Unknown config key: {args.key}")
            value = getattr(cli_instance.config, args.key)
            if cli_instance.json:
                print_json({args.key: value})
            elif isinstance(value, list):
                print(" ".join(value))
            else:
                print("" if value is None else value)
            return 0

        if action == "set":
            config = set_config_value(config_path, args.key, args.value)
            cli_instance.config = config
            if cli_instance.json:
                print_json({args.key: getattr(config, args.key)})
            else:
                print(f"Set {args.key} in {config_path}")
            return 0

        raise ValidationError(f"Unknown config action: {action}")
    except DevEnvError as e:
        return report_error(cli_instance, e)
