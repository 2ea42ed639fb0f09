"""pytest plugin entry point for gamified test runs."""

from __future__ import annotations

import logging
import os

from pytest_gamify import constants
from pytest_gamify.engine import Engine
from pytest_gamify.git_diff import current_branch
from pytest_gamify.models import BuildParameters, BuildResult, BuildRun
from pytest_gamify.output import format_json_report, format_leaderboard, format_terminal_report
from pytest_gamify.resources import ResourceLimits
from pytest_gamify.store import GameStore, PersistenceError

logger = logging.getLogger(__name__)

INI_OPTIONS: dict[str, tuple[str, str]] = {
    "gamify_challenges": ("Number of current challenges per user", str(constants.CURRENT_CHALLENGES)),
    "gamify_quests": ("Number of current quests per user", str(constants.CURRENT_QUESTS)),
    "gamify_stored_challenges": ("Number of challenges a user may store", str(constants.STORED_CHALLENGES)),
    "gamify_search_commits": ("Commits searched for changed files", str(constants.SEARCH_COMMIT_COUNT)),
    "gamify_jacoco_csv": ("JaCoCo CSV report, relative to the root", constants.JACOCO_CSV_PATH),
    "gamify_jacoco_results": ("JaCoCo HTML report directory, relative to the root", constants.JACOCO_RESULTS_PATH),
    "gamify_mutation_report": ("PIT mutations.xml, relative to the root", constants.MUTATION_REPORT_PATH),
    "gamify_auto_join": ("Let the author of HEAD join the project automatically", "false"),
}


def pytest_addoption(parser):  # type: ignore[no-untyped-def]
    group = parser.getgroup("gamify", "test challenges and quests")
    group.addoption(
        "--gamify", action="store_true", default=False, help="Evaluate and generate challenges"
    )
    group.addoption(
        "--gamify-project", default=None, help="Project name (default: name of the root directory)"
    )
    group.addoption(
        "--gamify-state-dir", default=".gamify", help="Directory holding users and projects"
    )
    group.addoption(
        "--gamify-branch", default=None, help="Branch of this build (default: checked-out branch)"
    )
    group.addoption(
        "--gamify-build-number", type=int, default=None, help="Number of this build"
    )
    group.addoption(
        "--gamify-max-workers", type=int, default=None, help="Max users processed in parallel"
    )
    group.addoption(
        "--gamify-json", default=None, help="Also write the summary as JSON to this file"
    )
    group.addoption(
        "--gamify-leaderboard",
        action="store_true",
        default=False,
        help="Show scores of all participants and teams",
    )
    for name, (help_text, default) in INI_OPTIONS.items():
        parser.addini(name, help_text, default=default)


def pytest_configure(config):  # type: ignore[no-untyped-def]
    if config.getoption("gamify", default=False):
        config.pluginmanager.register(GamifyPlugin(config), "gamify-plugin")


def _ini_int(config, name: str) -> int:  # type: ignore[no-untyped-def]
    value = config.getini(name)
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s = %r", name, value)
        return 0


def _ini_bool(config, name: str) -> bool:  # type: ignore[no-untyped-def]
    return str(config.getini(name)).strip().lower() in ("1", "true", "yes", "on")


def build_parameters(config) -> BuildParameters:  # type: ignore[no-untyped-def]
    """Collect project settings from the command line and ini file."""
    workspace = str(config.rootpath)
    branch = config.getoption("gamify_branch", default=None) or current_branch(workspace)
    # Non-positive counts fall back to the defaults in BuildParameters
    return BuildParameters(
        project_name=config.getoption("gamify_project", default=None) or config.rootpath.name,
        branch=branch,
        workspace=workspace,
        jacoco_results_path=config.getini("gamify_jacoco_results"),
        jacoco_csv_path=config.getini("gamify_jacoco_csv"),
        mutation_report_path=config.getini("gamify_mutation_report"),
        current_challenges_count=_ini_int(config, "gamify_challenges"),
        current_quests_count=_ini_int(config, "gamify_quests"),
        stored_challenges_count=_ini_int(config, "gamify_stored_challenges"),
        search_commit_count=_ini_int(config, "gamify_search_commits"),
    )


def _build_number(config) -> int:  # type: ignore[no-untyped-def]
    number = config.getoption("gamify_build_number", default=None)
    if number is not None:
        return number
    try:
        return int(os.environ.get("BUILD_NUMBER", "0"))
    except ValueError:
        return 0


class GamifyPlugin:
    def __init__(self, config):  # type: ignore[no-untyped-def]
        self.config = config

    def pytest_sessionfinish(self, session, exitstatus):  # type: ignore[no-untyped-def]
        parameters = build_parameters(self.config)
        result = BuildResult.SUCCESS if exitstatus == 0 else BuildResult.FAILURE
        run = BuildRun(number=_build_number(self.config), result=result)

        state_dir = self.config.getoption("gamify_state_dir", default=".gamify")
        store = GameStore(os.path.join(parameters.workspace, state_dir))
        engine = Engine(
            store,
            limits=ResourceLimits(
                max_cores=self.config.getoption("gamify_max_workers", default=None)
            ),
            auto_join=_ini_bool(self.config, "gamify_auto_join"),
        )
        summary = engine.run(parameters, run)

        json_path = self.config.getoption("gamify_json", default=None)
        if json_path:
            with open(json_path, "w", encoding="utf-8") as f:
                f.write(format_json_report(summary))

        report = format_terminal_report(summary)
        if self.config.getoption("gamify_leaderboard", default=False):
            try:
                report += format_leaderboard(store.load_project(parameters))
            except PersistenceError:
                logger.exception("Could not load %s for the leaderboard", parameters.project_name)

        tw = (
            session.config.get_terminal_writer()
            if hasattr(session.config, "get_terminal_writer")
            else None
        )
        if tw:
            tw.write(report)
        else:
            print(report)
