"""Tests for pytest_gamify.plugin: options, parameters and the session hook."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

from pytest_gamify import constants
from pytest_gamify.models import BuildResult, BuildSummary
from pytest_gamify.plugin import (
    INI_OPTIONS,
    GamifyPlugin,
    _build_number,
    build_parameters,
    pytest_addoption,
    pytest_configure,
)


def _make_config(options: dict | None = None, ini: dict | None = None, root: str = "/tmp/shop"):
    options = options or {}
    ini_values = {name: default for name, (_, default) in INI_OPTIONS.items()}
    ini_values.update(ini or {})
    config = MagicMock()
    config.getoption.side_effect = lambda key, default=None: options.get(key, default)
    config.getini.side_effect = lambda name: ini_values[name]
    config.rootpath = Path(root)
    return config


def describe_pytest_addoption():
    def it_registers_options_and_ini_keys():
        parser = MagicMock()
        group = parser.getgroup.return_value
        pytest_addoption(parser)

        flags = [c.args[0] for c in group.addoption.call_args_list]
        assert "--gamify" in flags
        assert "--gamify-state-dir" in flags
        ini_names = [c.args[0] for c in parser.addini.call_args_list]
        assert ini_names == list(INI_OPTIONS)


def describe_pytest_configure():
    def it_registers_the_plugin_when_enabled():
        config = _make_config({"gamify": True})
        pytest_configure(config)
        plugin = config.pluginmanager.register.call_args[0][0]
        assert isinstance(plugin, GamifyPlugin)

    def it_stays_out_of_the_way_by_default():
        config = _make_config()
        pytest_configure(config)
        config.pluginmanager.register.assert_not_called()


def describe_build_parameters():
    def it_reads_the_ini_file():
        config = _make_config(
            {"gamify_branch": "main"}, {"gamify_challenges": "5", "gamify_stored_challenges": "1"}
        )
        parameters = build_parameters(config)
        assert parameters.project_name == "shop"
        assert parameters.workspace == "/tmp/shop"
        assert parameters.current_challenges_count == 5
        assert parameters.stored_challenges_count == 1
        assert parameters.jacoco_csv_path == constants.JACOCO_CSV_PATH

    def it_falls_back_to_defaults_for_bad_numbers():
        config = _make_config({"gamify_branch": "main"}, {"gamify_challenges": "lots"})
        assert build_parameters(config).current_challenges_count == constants.CURRENT_CHALLENGES

    def it_asks_git_for_the_branch():
        config = _make_config({"gamify_project": "web"})
        with patch("pytest_gamify.plugin.current_branch", return_value="feature") as branch:
            parameters = build_parameters(config)
        branch.assert_called_once_with("/tmp/shop")
        assert parameters.branch == "feature"
        assert parameters.project_name == "web"


def describe_build_number():
    def it_prefers_the_option():
        assert _build_number(_make_config({"gamify_build_number": 12})) == 12

    def it_reads_the_environment(monkeypatch):
        monkeypatch.setenv("BUILD_NUMBER", "41")
        assert _build_number(_make_config()) == 41

    def it_ignores_garbage(monkeypatch):
        monkeypatch.setenv("BUILD_NUMBER", "abc")
        assert _build_number(_make_config()) == 0


def describe_gamify_plugin():
    def _run(exitstatus, options=None, tmp_path=None):
        config = _make_config(
            {"gamify_branch": "main", **(options or {})}, root=str(tmp_path or "/tmp/shop")
        )
        session = MagicMock()
        session.config = config
        summary = BuildSummary("shop", 3, BuildResult.SUCCESS)
        engine_cls = MagicMock()
        engine_cls.return_value.run.return_value = summary
        with patch("pytest_gamify.plugin.Engine", engine_cls):
            GamifyPlugin(config).pytest_sessionfinish(session, exitstatus=exitstatus)
        return engine_cls, session

    def it_maps_the_exit_status_to_the_build_result():
        engine_cls, _ = _run(0)
        run = engine_cls.return_value.run.call_args[0][1]
        assert run.result is BuildResult.SUCCESS

        engine_cls, _ = _run(1)
        run = engine_cls.return_value.run.call_args[0][1]
        assert run.result is BuildResult.FAILURE

    def it_keeps_state_below_the_root():
        engine_cls, _ = _run(0)
        store = engine_cls.call_args[0][0]
        assert store.root == "/tmp/shop/.gamify"

    def it_writes_the_terminal_report():
        _, session = _run(0)
        written = session.config.get_terminal_writer.return_value.write.call_args[0][0]
        assert "gamify challenges" in written

    def it_appends_the_leaderboard_on_request(tmp_path):
        _, session = _run(0, {"gamify_leaderboard": True}, tmp_path)
        written = session.config.get_terminal_writer.return_value.write.call_args[0][0]
        assert "gamify challenges" in written
        assert "gamify leaderboard" in written

    def it_leaves_the_leaderboard_out_by_default(tmp_path):
        _, session = _run(0, tmp_path=tmp_path)
        written = session.config.get_terminal_writer.return_value.write.call_args[0][0]
        assert "gamify leaderboard" not in written

    def it_writes_a_json_summary_on_request(tmp_path):
        target = tmp_path / "summary.json"
        _run(0, {"gamify_json": str(target)}, tmp_path)
        assert json.loads(target.read_text())["project"] == "shop"
