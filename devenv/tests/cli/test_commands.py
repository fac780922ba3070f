"""
Tests for envctl commands.

Tests cover:
- Lifecycle commands against an injected engine (fake adapters)
- Error reporting: exit code 1 and "Error [kind]: message" on stderr
- --json output shapes
- exec command-line assembly and exit codes
- Argument parsing through envctl.main
"""

import argparse
import json

import pytest

from devenv import envctl
from devenv.cli import EnvCLI
from devenv.cli.cmd_exec import build_command
from devenv.core.exceptions import ValidationError
from devenv.core.models import ExecResult


@pytest.fixture
def cli(config, engine, tmp_path):
    """EnvCLI wired to the fake-adapter engine and a temp config path."""
    return EnvCLI(
        config_path=str(tmp_path / "config.yaml"), config=config, engine=engine
    )


def ns(**kwargs):
    return argparse.Namespace(**kwargs)


class TestCreateAndList:
    """Test create, list and status output."""

    def test_create_prints_summary(self, cli, capsys):
        assert cli.cmd_create(ns(name="feature-x", branch=None, base=None)) == 0
        out = capsys.readouterr().out
        assert "Environment created: feature-x" in out
        assert "Status:     ready" in out

    def test_create_json(self, cli, capsys):
        cli.json = True
        assert cli.cmd_create(ns(name="feature-x", branch="topic", base="main")) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["name"] == "feature-x"
        assert data["branch"] == "topic"
        assert data["status"] == "ready"

    def test_create_duplicate_reports_kind(self, cli, capsys):
        """Test an already-existing name exits 1 with its error kind."""
        cli.cmd_create(ns(name="feature-x", branch=None, base=None))
        capsys.readouterr()

        assert cli.cmd_create(ns(name="feature-x", branch=None, base=None)) == 1
        err = capsys.readouterr().err
        assert err.startswith("Error [already_exists]:")

    def test_create_invalid_name(self, cli, capsys):
        assert cli.cmd_create(ns(name="../x", branch=None, base=None)) == 1
        assert "Error [invalid_argument]" in capsys.readouterr().err

    def test_list_empty(self, cli, capsys):
        assert cli.cmd_list(ns(status=None, reconcile=False)) == 0
        assert capsys.readouterr().out.strip() == "No environments"

    def test_list_table(self, cli, capsys):
        cli.cmd_create(ns(name="alpha", branch=None, base=None))
        cli.cmd_create(ns(name="beta", branch=None, base=None))
        capsys.readouterr()

        assert cli.cmd_list(ns(status=None, reconcile=False)) == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].split() == ["NAME", "STATUS", "BRANCH", "CONTAINER"]
        assert [line.split()[0] for line in lines[1:]] == ["alpha", "beta"]

    def test_list_json_filtered(self, cli, capsys):
        cli.cmd_create(ns(name="alpha", branch=None, base=None))
        cli.cmd_create(ns(name="beta", branch=None, base=None))
        cli.cmd_start(ns(name="beta"))
        capsys.readouterr()

        cli.json = True
        assert cli.cmd_list(ns(status="running", reconcile=True)) == 0
        data = json.loads(capsys.readouterr().out)
        assert [r["name"] for r in data] == ["beta"]

    def test_status_unknown(self, cli, capsys):
        assert cli.cmd_status(ns(name="ghost", no_reconcile=False)) == 1
        assert "Error [not_found]" in capsys.readouterr().err

    def test_status_shows_reconciled_error(self, cli, runtime, capsys):
        """Test a container removed outside the tool is shown as error."""
        cli.cmd_create(ns(name="feature-x", branch=None, base=None))
        cli.cmd_start(ns(name="feature-x"))
        record = cli.engine.registry.get("feature-x")
        runtime.remove_externally(record.container_id)
        capsys.readouterr()

        assert cli.cmd_status(ns(name="feature-x", no_reconcile=False)) == 0
        out = capsys.readouterr().out
        assert "Status:     error" in out
        assert "[not_found]" in out


class TestLifecycleCommands:
    """Test start, stop and destroy."""

    def test_start_stop(self, cli, capsys):
        cli.cmd_create(ns(name="feature-x", branch=None, base=None))
        assert cli.cmd_start(ns(name="feature-x")) == 0
        assert "Environment started: feature-x" in capsys.readouterr().out
        assert cli.cmd_stop(ns(name="feature-x")) == 0
        assert "Environment stopped: feature-x" in capsys.readouterr().out

    def test_stop_when_not_running(self, cli, capsys):
        cli.cmd_create(ns(name="feature-x", branch=None, base=None))
        capsys.readouterr()
        assert cli.cmd_stop(ns(name="feature-x")) == 1
        assert "Error [invalid_transition]" in capsys.readouterr().err

    def test_destroy(self, cli, capsys):
        cli.cmd_create(ns(name="feature-x", branch=None, base=None))
        capsys.readouterr()
        assert cli.cmd_destroy(ns(name="feature-x", force=False)) == 0
        assert "Environment destroyed: feature-x" in capsys.readouterr().out

    def test_destroy_nonexistent_succeeds(self, cli, capsys):
        """Test destroying an unknown name is a successful no-op."""
        assert cli.cmd_destroy(ns(name="ghost", force=False)) == 0
        assert "nothing to destroy" in capsys.readouterr().out

    def test_destroy_json(self, cli, capsys):
        cli.json = True
        assert cli.cmd_destroy(ns(name="ghost", force=False)) == 0
        assert json.loads(capsys.readouterr().out) == {"name": "ghost", "destroyed": False}

    def test_destroy_dirty_needs_force(self, cli, vcs, capsys):
        record = cli.engine.create("feature-x")
        vcs.dirty.add(record.worktree_path)
        assert cli.cmd_destroy(ns(name="feature-x", force=False)) == 1
        assert "Error [conflict]" in capsys.readouterr().err
        assert cli.cmd_destroy(ns(name="feature-x", force=True)) == 0

    def test_error_json_payload(self, cli, capsys):
        """Test --json errors go to stdout as a structured object."""
        cli.json = True
        assert cli.cmd_start(ns(name="ghost")) == 1
        captured = capsys.readouterr()
        payload = json.loads(captured.out)["error"]
        assert payload["kind"] == "not_found"
        assert payload["environment"] == "ghost"
        assert "Error [not_found]" in captured.err


class TestExec:
    """Test the exec command."""

    @pytest.fixture
    def running(self, cli):
        cli.engine.create("feature-x")
        cli.engine.start("feature-x")
        return cli

    def test_build_command_single_word_kept_verbatim(self):
        assert build_command(["--", "make test && echo ok"]) == "make test && echo ok"

    def test_build_command_quotes_words(self):
        assert build_command(["echo", "a b"]) == "echo 'a b'"

    def test_build_command_empty(self):
        with pytest.raises(ValidationError):
            build_command(["--"])

    def test_exec_streams_output(self, running, capsys):
        code = running.cmd_exec(ns(name="feature-x", command=["--", "echo", "hi"], timeout=None))
        assert code == 0
        assert capsys.readouterr().out == "hi\n"

    def test_exec_returns_command_exit_code(self, running, runtime):
        runtime.exec_handler = lambda command: ExecResult(exit_code=7, stderr="boom\n")
        assert running.cmd_exec(ns(name="feature-x", command=["false"], timeout=None)) == 7

    def test_exec_json(self, running, runtime, capsys):
        running.json = True
        runtime.exec_handler = lambda command: ExecResult(exit_code=1, stdout="o\n", stderr="e\n")
        assert running.cmd_exec(ns(name="feature-x", command=["x"], timeout=None)) == 1
        data = json.loads(capsys.readouterr().out)
        assert data["exitCode"] == 1
        assert data["stdout"] == "o\n"
        assert data["stderr"] == "e\n"

    def test_exec_not_running(self, cli, capsys):
        cli.engine.create("feature-x")
        assert cli.cmd_exec(ns(name="feature-x", command=["ls"], timeout=None)) == 1
        assert "Error [invalid_transition]" in capsys.readouterr().err

    def test_exec_without_command(self, running, capsys):
        assert running.cmd_exec(ns(name="feature-x", command=[], timeout=None)) == 1
        assert "Error [invalid_argument]" in capsys.readouterr().err


class TestConfigCommand:
    """Test config show/get/set/path."""

    def test_path(self, cli, tmp_path, capsys):
        assert cli.cmd_config(ns(config_action="path")) == 0
        assert capsys.readouterr().out.strip() == str(tmp_path / "config.yaml")

    def test_get_known_and_unknown(self, cli, config, capsys):
        assert cli.cmd_config(ns(config_action="get", key="repo_root")) == 0
        assert capsys.readouterr().out.strip() == config.repo_root
        assert cli.cmd_config(ns(config_action="get", key="nope")) == 1
        assert "Unknown config key" in capsys.readouterr().err

    def test_set_persists_and_reloads(self, cli, tmp_path, capsys):
        assert cli.cmd_config(ns(config_action="set", key="server_port", value="9000")) == 0
        assert cli.config.server_port == 9000
        assert "server_port: 9000" in (tmp_path / "config.yaml").read_text()

    def test_set_invalid_value(self, cli, capsys):
        assert cli.cmd_config(ns(config_action="set", key="server_port", value="abc")) == 1
        assert "Error [invalid_argument]" in capsys.readouterr().err

    def test_show(self, cli, capsys):
        assert cli.cmd_config(ns(config_action="show")) == 0
        assert "default_base_branch: main" in capsys.readouterr().out


class TestMain:
    """Test argument parsing and dispatch through envctl.main."""

    def test_no_command_prints_help(self, capsys):
        assert envctl.main([]) == 1
        assert "usage: envctl" in capsys.readouterr().out

    def test_config_path_command(self, tmp_path, capsys):
        path = tmp_path / "custom.yaml"
        assert envctl.main(["--config", str(path), "config", "path"]) == 0
        assert capsys.readouterr().out.strip() == str(path)

    def test_config_env_var(self, tmp_path, monkeypatch, capsys):
        path = tmp_path / "from-env.yaml"
        monkeypatch.setenv("DEVENV_CONFIG", str(path))
        assert envctl.main(["--json", "config", "path"]) == 0
        assert json.loads(capsys.readouterr().out) == {"path": str(path), "exists": False}

    def test_bad_config_file_reported(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("unknown_key: 1\n")
        assert envctl.main(["--config", str(path), "config", "show"]) == 1
        assert "Error [invalid_argument]" in capsys.readouterr().err

    def test_parser_shapes(self):
        parser = envctl.build_parser()
        args = parser.parse_args(["create", "feature-x", "--from", "develop"])
        assert (args.name, args.branch, args.base) == ("feature-x", None, "develop")

        args = parser.parse_args(["exec", "feature-x", "--", "ls", "-la"])
        assert build_command(args.command) == "ls -la"

        args = parser.parse_args(["destroy", "feature-x", "--force"])
        assert args.force is True

    def test_invalid_status_filter_rejected(self):
        with pytest.raises(SystemExit):
            envctl.main(["list", "--status", "paused"])
