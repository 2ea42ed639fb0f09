"""Tests for pytest_gamify.engine: one build across all participants."""

import random
from unittest.mock import MagicMock, patch

from pytest_gamify import constants
from pytest_gamify.achievements import Achievement
from pytest_gamify.challenges import build_challenge, class_challenge
from pytest_gamify.engine import Engine
from pytest_gamify.lifecycle import GameUser, Project
from pytest_gamify.models import BuildResult, BuildRun
from pytest_gamify.quests import Quest, QuestStep
from pytest_gamify.resources import ResourceLimits
from pytest_gamify.store import GameStore, PersistenceError

ADA = GameUser("ada", full_name="Ada", email="ada@example.com")
BEGINNER = Achievement("Beginner", "Solve a challenge", "solve_x_challenges", parameters={"solveNumber": "1"})

LINES = [
    (8, "nc", "", "        if (imag &lt; 0.0) {"),
    (9, "nc", "", "            return true;"),
    (11, "nc", "", "        return false;"),
]


def _setup(workspace, tmp_path, join: bool = True):
    store = GameStore(str(tmp_path / "state"))
    store.save_users({"ada": ADA})
    if join:
        project = Project("demo")
        project.join("ada")
        store.save_project(project)

    details = workspace.write_source()
    details.add_user("ada@example.com")
    workspace.write_csv([("com.example", "Complex", 4, 6)])
    workspace.write_methods([("isNegative()", 4, 3)])
    workspace.write_lines(LINES)
    workspace.parameters.challenge_weights = {"line": 1.0}
    return store, details


def _engine(store, details, **overrides) -> Engine:
    defaults = dict(
        notifier=MagicMock(),
        limits=ResourceLimits(max_cores=2),
        achievements=[BEGINNER],
        rng=random.Random(7),
        file_source=lambda parameters: [details],
        head_identity=lambda workspace: ("Ada", "ada@example.com"),
    )
    defaults.update(overrides)
    return Engine(store, **defaults)


def describe_engine_run():
    def it_generates_then_solves_challenges_across_builds(workspace, tmp_path):
        store, details = _setup(workspace, tmp_path)
        engine = _engine(store, details)

        first = engine.run(workspace.parameters, BuildRun(1, BuildResult.SUCCESS))
        assert first.generated == 3
        assert first.solved == 0
        [ada] = first.users
        assert ada.quests_generated == 1
        assert first.notifications_sent == 1

        state = store.load_project(workspace.parameters).participant("ada")
        assert len(state.current_challenges) == 3

        workspace.write_lines([(n, "fc", "", text) for n, _, _, text in LINES])
        second = engine.run(workspace.parameters, BuildRun(2, BuildResult.SUCCESS))
        [ada] = second.users
        assert ada.solved == 3
        assert ada.score == 6
        assert ada.achievements == ["Beginner"]

        state = store.load_project(workspace.parameters).participant("ada")
        assert len(state.completed_challenges) == 3
        assert "Beginner" in state.completed_achievements
        # Nothing left to cover on the changed file
        [dummy] = state.get_current_challenges()
        assert dummy.payload.message == constants.Error.GENERATION

    def it_challenges_the_author_of_a_failed_build(workspace, tmp_path):
        store, details = _setup(workspace, tmp_path)
        engine = _engine(store, details)

        summary = engine.run(workspace.parameters, BuildRun(1, BuildResult.FAILURE))
        state = store.load_project(workspace.parameters).participant("ada")
        kinds = [c.kind.value for c in state.get_current_challenges()]
        assert kinds.count("build") == 1
        assert len(kinds) == 3
        assert summary.generated == 3

    def it_drops_dummies_at_the_start_of_each_build(workspace, tmp_path):
        store, details = _setup(workspace, tmp_path)
        engine = _engine(store, details, file_source=lambda parameters: [])

        engine.run(workspace.parameters, BuildRun(1, BuildResult.SUCCESS))
        engine.run(workspace.parameters, BuildRun(2, BuildResult.SUCCESS))
        state = store.load_project(workspace.parameters).participant("ada")
        dummies = state.get_current_challenges()
        assert [d.payload.message for d in dummies] == [constants.NOTHING_DEVELOPED]
        assert state.completed_challenges == []

    def it_rejects_stored_challenges_whose_source_vanished(workspace, tmp_path):
        store, details = _setup(workspace, tmp_path)
        project = store.load_project(workspace.parameters)
        state = project.participant("ada")
        stored = class_challenge(workspace.details("src/main/java/com/example/Gone.java"), 10, 4, branch="main")
        state.new_challenge(stored)
        state.store_challenge(stored, limit=2)
        store.save_project(project)

        summary = _engine(store, details).run(workspace.parameters, BuildRun(1, BuildResult.SUCCESS))
        assert summary.unsolvable == 1
        state = store.load_project(workspace.parameters).participant("ada")
        assert state.stored_challenges == []
        assert state.rejected_challenges == [(stored.id, constants.NOT_SOLVABLE)]

    def it_auto_joins_the_head_author(workspace, tmp_path):
        store, details = _setup(workspace, tmp_path, join=False)
        engine = _engine(
            store, details, auto_join=True, head_identity=lambda workspace: ("Bob", "bob@example.com")
        )

        summary = engine.run(workspace.parameters, BuildRun(1, BuildResult.SUCCESS))
        assert [u.user_id for u in summary.users] == ["bob@example.com"]
        assert "bob@example.com" in store.load_users()
        assert store.load_project(workspace.parameters).participant("bob@example.com") is not None

    def it_leaves_non_participants_alone(workspace, tmp_path):
        store, details = _setup(workspace, tmp_path, join=False)
        summary = _engine(store, details).run(workspace.parameters, BuildRun(1, BuildResult.SUCCESS))
        assert summary.users == []

    def it_isolates_failures_per_user(workspace, tmp_path):
        store, details = _setup(workspace, tmp_path)
        with patch(
            "pytest_gamify.engine.generate_new_challenges", side_effect=RuntimeError("boom")
        ):
            summary = _engine(store, details).run(
                workspace.parameters, BuildRun(1, BuildResult.SUCCESS)
            )
        assert [u.user_id for u in summary.failed] == ["ada"]

    def it_still_reports_when_saving_fails(workspace, tmp_path):
        store, details = _setup(workspace, tmp_path)
        engine = _engine(store, details)
        with patch.object(store, "save_project", side_effect=PersistenceError("disk full")):
            summary = engine.run(workspace.parameters, BuildRun(1, BuildResult.SUCCESS))
        assert summary.generated == 3
        assert summary.wall_time_seconds >= 0

    def it_solves_quest_steps_one_build_at_a_time(workspace, tmp_path):
        store, details = _setup(workspace, tmp_path)
        project = store.load_project(workspace.parameters)
        quest = Quest("Fix it", [QuestStep("a", build_challenge()), QuestStep("b", build_challenge())])
        project.participant("ada").new_quest(quest)
        store.save_project(project)
        engine = _engine(store, details)

        first = engine.run(workspace.parameters, BuildRun(1, BuildResult.SUCCESS))
        assert first.users[0].quest_steps_solved == 1
        assert first.users[0].quests_solved == 0
        second = engine.run(workspace.parameters, BuildRun(2, BuildResult.SUCCESS))
        assert second.users[0].quests_solved == 1

    def it_keeps_a_corrupt_project_document_for_recovery(workspace, tmp_path):
        store, details = _setup(workspace, tmp_path)
        path = store.project_file("demo")
        with open(path, "w", encoding="utf-8") as f:
            f.write('{"participants": {"ada": {"score": 42')

        _engine(store, details).run(workspace.parameters, BuildRun(1, BuildResult.SUCCESS))
        with open(path + ".corrupt", encoding="utf-8") as f:
            assert '"score": 42' in f.read()

    def it_skips_the_build_when_state_cannot_be_loaded(workspace, tmp_path):
        store, details = _setup(workspace, tmp_path)
        engine = _engine(store, details)
        with patch.object(store, "load_project", side_effect=PersistenceError("denied")):
            with patch.object(store, "save_project") as save:
                summary = engine.run(workspace.parameters, BuildRun(1, BuildResult.SUCCESS))
        save.assert_not_called()
        assert summary.users == []
