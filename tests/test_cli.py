"""Tests for the conductor CLI: option resolution, run wiring, base-url."""

import argparse
from unittest.mock import MagicMock, patch

import pytest

from conductor.cli import main, options_from_args
from conductor.core.errors import ConfigParseError
from conductor.stages.base import BuildEvent
from conductor.workspace import load_workspace
from tests.helpers import make_configs, write_json

WORKSPACE = {
    "projects": {
        "app": {
            "root": "apps/app",
            "targets": {
                "serve": {
                    "command": "npm start -- --port {{PORT}}",
                    "options": {"port": 4300, "servePath": "shop"},
                    "configurations": {"production": {"publicHost": "shop.example.com", "ssl": True}},
                },
            },
        },
        "app-e2e": {
            "root": "apps/app-e2e",
            "targets": {
                "e2e": {
                    "options": {
                        "tsConfig": "apps/app-e2e/tsconfig.e2e.json",
                        "runnerConfig": "apps/app-e2e/runner.json",
                        "devServerTarget": "app:serve",
                    },
                    "configurations": {"watch": {"watch": True}},
                },
            },
        },
    },
}


def _args(**overrides):
    defaults = dict(target="", ts_config="", runner_config="", dev_server_target="", watch=False)
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


@pytest.fixture
def workspace(tmp_path):
    return load_workspace(write_json(tmp_path / "workspace.json", WORKSPACE))


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for var in ("CONDUCTOR_WORKSPACE", "CONDUCTOR_TSC", "CONDUCTOR_DRIVER",
                "CONDUCTOR_KILL_GRACE_S", "CONDUCTOR_EVENTS_DIR", "CONDUCTOR_ACTIVITY_LOG"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


class TestOptionsFromArgs:
    def test_from_workspace_target(self, workspace, tmp_path):
        opts = options_from_args(_args(target="app-e2e:e2e"), workspace)
        assert opts.ts_config == str(tmp_path / "apps/app-e2e/tsconfig.e2e.json")
        assert opts.runner_config == str(tmp_path / "apps/app-e2e/runner.json")
        assert opts.dev_server_target == "app:serve"
        assert opts.watch is False

    def test_target_configuration(self, workspace):
        assert options_from_args(_args(target="app-e2e:e2e:watch"), workspace).watch is True

    def test_flags_take_precedence(self, workspace):
        opts = options_from_args(_args(
            target="app-e2e:e2e", ts_config="/x/tsconfig.json",
            dev_server_target="app:serve:production", watch=True,
        ), workspace)
        assert opts.ts_config == "/x/tsconfig.json"
        assert opts.dev_server_target == "app:serve:production"
        assert opts.watch is True

    def test_flags_only(self):
        opts = options_from_args(_args(ts_config="a.json", runner_config="b.json"), None)
        assert (opts.ts_config, opts.runner_config, opts.dev_server_target) == ("a.json", "b.json", "")

    def test_missing_ts_config(self):
        with pytest.raises(ConfigParseError, match="compiler config"):
            options_from_args(_args(runner_config="b.json"), None)

    def test_target_needs_workspace(self):
        with pytest.raises(ConfigParseError):
            options_from_args(_args(target="app-e2e:e2e"), None)


class TestMain:
    def test_no_command(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_run_missing_configs_reports_error(self, capsys):
        assert main(["run"]) == 1
        assert "ERROR" in capsys.readouterr().err

    def test_run_bad_config_file(self, tmp_path, capsys):
        _, runner_config = make_configs(tmp_path)
        with patch("conductor.cli.signal.signal"):
            rc = main(["run", "--ts-config", str(tmp_path / "missing.json"),
                       "--runner-config", runner_config])
        assert rc == 1
        assert "file not found" in capsys.readouterr().err

    def test_run_wires_pipeline(self, tmp_path):
        ts_config, runner_config = make_configs(tmp_path)
        pipeline = MagicMock()
        pipeline.run.return_value = iter([BuildEvent(True)])
        with patch("conductor.cli.build_pipeline", return_value=pipeline) as build, \
                patch("conductor.cli.signal.signal") as sig:
            rc = main(["run", "--ts-config", ts_config, "--runner-config", runner_config,
                       "--events-dir", str(tmp_path / "events")])
        assert rc == 0
        options = build.call_args.args[0]
        assert options.ts_config == ts_config
        assert build.call_args.kwargs["terminate_host_on_completion"] is True
        assert build.call_args.kwargs["settings"].events_dir == str(tmp_path / "events")
        assert sig.call_count == 2

    def test_watch_does_not_terminate_host(self, tmp_path):
        ts_config, runner_config = make_configs(tmp_path)
        pipeline = MagicMock()
        pipeline.run.return_value = iter([BuildEvent(False, "test run exited with code 1")])
        with patch("conductor.cli.build_pipeline", return_value=pipeline) as build, \
                patch("conductor.cli.signal.signal"):
            main(["run", "--ts-config", ts_config, "--runner-config", runner_config, "--watch"])
        assert build.call_args.kwargs["terminate_host_on_completion"] is False
        assert build.call_args.args[0].watch is True

    def test_base_url(self, workspace, tmp_path, capsys):
        assert main(["base-url", "app:serve", "--workspace", str(tmp_path / "workspace.json")]) == 0
        assert capsys.readouterr().out.strip() == "http://localhost:4300/shop"

    def test_base_url_public_host(self, workspace, capsys):
        assert main(["base-url", "app:serve:production"]) == 0
        assert capsys.readouterr().out.strip() == "https://shop.example.com"

    def test_base_url_unknown_target(self, workspace, capsys):
        assert main(["base-url", "ghost:serve"]) == 1
        assert "unknown project" in capsys.readouterr().err
