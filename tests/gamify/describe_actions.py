"""Tests for pytest_gamify.actions: rejecting, storing and sending challenges."""

import random
import threading
from unittest.mock import MagicMock, patch

import pytest

from pytest_gamify import constants
from pytest_gamify.actions import (
    ActionError,
    GameSession,
    _normalize_reason,
    _select,
    do_add_team,
    do_add_user_to_team,
    do_delete_team,
    do_participate_alone,
    do_reject_challenge,
    do_reject_quest,
    do_remove_user_from_project,
    do_reset_project,
    do_restore_challenge,
    do_send_challenge,
    do_store_challenge,
    do_undo_store_challenge,
)
from pytest_gamify.challenges import (
    Challenge,
    ChallengeKind,
    LineCoverageData,
    MutationData,
    dummy_challenge,
)
from pytest_gamify.lifecycle import GameUser, InvariantViolation, Project
from pytest_gamify.models import (
    BuildParameters,
    MutationRecord,
    MutationStatus,
    Mutator,
    SourceFileDetails,
)
from pytest_gamify.quests import Quest, QuestStep, placeholder_quest
from pytest_gamify.render import escaped
from pytest_gamify.store import PersistenceError


def _line(number: int) -> Challenge:
    return Challenge(
        ChallengeKind.LINE,
        LineCoverageData(number, f"x{number}++;", "nc"),
        details=SourceFileDetails("src/main/java/com/example/Complex.java", BuildParameters()),
        branch="main",
        project_name="demo",
    )


def _mutant(mutator: Mutator, description: str) -> Challenge:
    record = MutationRecord(
        source_file="Complex.java",
        mutated_class="com.example.Complex",
        mutated_method="isNegative",
        method_description="()Z",
        line_number=8,
        mutator=mutator,
        description=description,
        status=MutationStatus.SURVIVED,
    )
    return Challenge(
        ChallengeKind.MUTATION,
        MutationData(record, "        if (imag < 0.0) {"),
        details=SourceFileDetails("src/main/java/com/example/Complex.java", BuildParameters()),
        branch="main",
        project_name="demo",
    )


def _make_session(**overrides) -> GameSession:
    project = Project("demo")
    users = {
        "ada": GameUser("ada", full_name="Ada"),
        "bob": GameUser("bob", full_name="Bob"),
        "eve": GameUser("eve"),
    }
    project.join("ada")
    project.join("bob")
    defaults = dict(
        project=project,
        users=users,
        parameters=BuildParameters(project_name="demo", branch="main", stored_challenges_count=2),
        user_id="ada",
        file_source=lambda parameters: [],
        rng=random.Random(1),
    )
    defaults.update(overrides)
    return GameSession(**defaults)


def _give(session: GameSession, user_id: str, *challenges: Challenge) -> None:
    state = session.project.participant(user_id)
    for challenge in challenges:
        state.new_challenge(challenge)


def _snapshot(session: GameSession, user_id: str) -> tuple:
    state = session.project.participant(user_id)
    return (
        list(state.current_challenges),
        list(state.completed_challenges),
        list(state.rejected_challenges),
        list(state.stored_challenges),
    )


def describe_normalize_reason():
    def it_refuses_empty_reasons():
        assert _normalize_reason("") is None

    def it_substitutes_blank_reasons():
        assert _normalize_reason("   ") == constants.NO_REASON_PROVIDED

    def it_keeps_real_reasons():
        assert _normalize_reason("too hard") == "too hard"


def describe_do_reject_challenge():
    def it_moves_the_challenge_to_rejected():
        session = _make_session()
        challenge = _line(1)
        _give(session, "ada", challenge)

        result = do_reject_challenge(session, escaped(challenge), "too hard")
        assert result.ok
        assert result.message.startswith("Challenge rejected")
        state = session.project.participant("ada")
        assert state.get_rejected_challenges() == [(challenge, "too hard")]

    def it_requires_a_reason():
        session = _make_session()
        challenge = _line(1)
        _give(session, "ada", challenge)
        result = do_reject_challenge(session, escaped(challenge), "")
        assert result.error is ActionError.NO_REASON
        assert session.project.participant("ada").current_challenges == [challenge.id]

    def it_refuses_dummies():
        session = _make_session()
        dummy = dummy_challenge(constants.NOTHING_DEVELOPED)
        _give(session, "ada", dummy)
        assert do_reject_challenge(session, escaped(dummy), "x").error is ActionError.REJECT_DUMMY

    def it_reports_unknown_selections():
        session = _make_session()
        assert do_reject_challenge(session, "nope", "x").error is ActionError.NO_CHALLENGE_EXISTS

    def it_requires_a_signed_in_participant():
        assert do_reject_challenge(_make_session(user_id=None), "x", "y").error is ActionError.NO_USER
        assert (
            do_reject_challenge(_make_session(user_id="eve"), "x", "y").error
            is ActionError.NOT_PARTICIPATING
        )

    def it_refills_the_freed_slot_when_the_workspace_exists(tmp_path):
        parameters = BuildParameters(project_name="demo", branch="main", workspace=str(tmp_path))
        session = _make_session(parameters=parameters)
        challenge = _line(1)
        _give(session, "ada", challenge)

        result = do_reject_challenge(session, escaped(challenge), "x")
        assert result.message == "Challenge rejected: New Challenge generated"
        # No changed files, so the slot holds a dummy
        current = session.project.participant("ada").get_current_challenges()
        assert [c.is_dummy for c in current] == [True]

    def it_reports_saving_failures_but_keeps_the_move():
        store = MagicMock()
        store.save_project.side_effect = PersistenceError("disk full")
        session = _make_session(store=store)
        challenge = _line(1)
        _give(session, "ada", challenge)

        result = do_reject_challenge(session, escaped(challenge), "x")
        assert result.error is ActionError.SAVING
        assert session.project.participant("ada").rejected_challenges == [(challenge.id, "x")]

    def it_reports_a_challenge_moved_meanwhile_as_missing():
        session = _make_session()
        challenge = _line(1)
        _give(session, "ada", challenge)
        state = session.project.participant("ada")

        with patch.object(state, "reject_challenge", side_effect=InvariantViolation("gone")):
            result = do_reject_challenge(session, escaped(challenge), "x")
        assert result.error is ActionError.NO_CHALLENGE_EXISTS


def describe_do_restore_challenge():
    def it_moves_rejected_challenges_back():
        session = _make_session()
        challenge = _line(1)
        _give(session, "ada", challenge)
        do_reject_challenge(session, escaped(challenge), "x")

        assert do_restore_challenge(session, escaped(challenge)).ok
        assert session.project.participant("ada").current_challenges == [challenge.id]


def describe_do_store_challenge():
    def it_stops_at_the_storage_limit_without_changes():
        session = _make_session()
        challenges = [_line(n) for n in (1, 2, 3)]
        _give(session, "ada", *challenges)

        assert do_store_challenge(session, escaped(challenges[0])).ok
        assert do_store_challenge(session, escaped(challenges[1])).ok
        before = _snapshot(session, "ada")

        result = do_store_challenge(session, escaped(challenges[2]))
        assert result.error is ActionError.STORAGE_LIMIT
        assert result.message == constants.Error.STORAGE_LIMIT
        assert _snapshot(session, "ada") == before
        assert challenges[2].stored == 0

    def it_refuses_dummies():
        session = _make_session()
        dummy = dummy_challenge(constants.NOTHING_DEVELOPED)
        _give(session, "ada", dummy)
        assert do_store_challenge(session, escaped(dummy)).error is ActionError.STORE_DUMMY

    def it_undoes_a_store():
        session = _make_session()
        challenge = _line(1)
        _give(session, "ada", challenge)
        do_store_challenge(session, escaped(challenge))

        assert do_undo_store_challenge(session, escaped(challenge)).ok
        assert session.project.participant("ada").current_challenges == [challenge.id]

    def it_holds_the_user_lock_from_lookup_to_move():
        session = _make_session()
        challenge = _line(1)
        _give(session, "ada", challenge)
        state = session.project.participant("ada")
        state.store_challenge(challenge, limit=2)
        losses = []

        def reject_as_unsolvable():
            try:
                state.reject_stored_challenge(challenge, constants.NOT_SOLVABLE)
            except InvariantViolation as e:
                losses.append(e)

        build = threading.Thread(target=reject_as_unsolvable)

        def select_then_build(challenges, selection):
            found = _select(challenges, selection)
            build.start()
            build.join(timeout=0.2)
            return found

        with patch("pytest_gamify.actions._select", side_effect=select_then_build):
            result = do_undo_store_challenge(session, escaped(challenge))
        build.join()

        assert result.ok
        assert state.current_challenges == [challenge.id]
        assert len(losses) == 1

    def it_tells_mutants_on_the_same_line_apart():
        session = _make_session()
        boundary = _mutant(Mutator.CONDITIONALS_BOUNDARY, "changed conditional boundary")
        negated = _mutant(Mutator.NEGATE_CONDITIONALS, "negated conditional")
        _give(session, "ada", boundary, negated)

        assert escaped(boundary) != escaped(negated)
        assert do_store_challenge(session, escaped(negated)).ok
        assert session.project.participant("ada").stored_challenges == [negated.id]

    def it_refuses_ambiguous_selections():
        session = _make_session()
        first, twin = _line(1), _line(1)
        _give(session, "ada", first, twin)
        before = _snapshot(session, "ada")

        result = do_store_challenge(session, escaped(first))
        assert result.error is ActionError.AMBIGUOUS_SELECTION
        assert _snapshot(session, "ada") == before


def describe_do_send_challenge():
    def _stored(session: GameSession) -> Challenge:
        challenge = _line(1)
        _give(session, "ada", challenge)
        do_store_challenge(session, escaped(challenge))
        return challenge

    def it_moves_the_challenge_and_notifies_the_recipient():
        notifier = MagicMock()
        session = _make_session(notifier=notifier)
        challenge = _stored(session)

        result = do_send_challenge(session, escaped(challenge), "bob")
        assert result.ok
        assert session.project.participant("ada").stored_challenges == []
        assert session.project.participant("bob").stored_challenges == [challenge.id]
        recipient, subject, text = notifier.notify.call_args[0]
        assert recipient.id == "bob"
        assert "Ada sent you a challenge" in text

    def it_refuses_sending_to_oneself():
        session = _make_session()
        challenge = _stored(session)
        before = _snapshot(session, "ada")

        result = do_send_challenge(session, escaped(challenge), "ada")
        assert result.error is ActionError.RECEIVER_IS_SELF
        assert _snapshot(session, "ada") == before

    @pytest.mark.parametrize(
        "to, error",
        [("nobody", ActionError.USER_NOT_FOUND), ("eve", ActionError.NOT_PARTICIPATING)],
    )
    def it_validates_the_recipient(to, error):
        session = _make_session()
        challenge = _stored(session)
        assert do_send_challenge(session, escaped(challenge), to).error is error
        assert session.project.participant("ada").stored_challenges == [challenge.id]

    def it_checks_the_recipients_storage_limit():
        session = _make_session()
        challenge = _stored(session)
        session.project.participant("bob").stored_challenges.extend(["a", "b"])

        result = do_send_challenge(session, escaped(challenge), "bob")
        assert result.error is ActionError.STORAGE_LIMIT
        assert session.project.participant("ada").stored_challenges == [challenge.id]

    def it_can_be_disabled_per_project():
        parameters = BuildParameters(project_name="demo", can_send_challenge=False)
        session = _make_session(parameters=parameters)
        assert do_send_challenge(session, "x", "bob").error is ActionError.SENDING_DISABLED

    def it_only_sends_stored_challenges():
        session = _make_session()
        challenge = _line(1)
        _give(session, "ada", challenge)
        assert do_send_challenge(session, escaped(challenge), "bob").error is ActionError.NO_CHALLENGE_EXISTS


def describe_do_reject_quest():
    def _quest(current: int = 0) -> Quest:
        return Quest("Lines over lines - Complex", [QuestStep("Cover a line", _line(n)) for n in (1, 2)], current)

    def it_rejects_and_leaves_a_placeholder():
        session = _make_session()
        state = session.project.participant("ada")
        quest = _quest()
        state.new_quest(quest)

        assert do_reject_quest(session, "Lines over lines - Complex", "boring").ok
        assert state.get_rejected_quests() == [(quest, "boring")]
        assert [q.name for q in state.get_current_quests()] == [constants.REJECTED_QUEST]

    def it_keeps_started_quests_as_unfinished():
        session = _make_session()
        state = session.project.participant("ada")
        quest = _quest(current=1)
        state.new_quest(quest)

        do_reject_quest(session, str(quest), "boring")
        assert state.get_unfinished_quests() == [(quest, "boring")]

    def it_refuses_placeholders():
        session = _make_session()
        state = session.project.participant("ada")
        state.new_quest(placeholder_quest(constants.NO_QUEST))
        assert do_reject_quest(session, constants.NO_QUEST, "x").error is ActionError.REJECT_DUMMY

    def it_reports_unknown_quests():
        assert do_reject_quest(_make_session(), "nope", "x").error is ActionError.NO_QUEST_EXISTS


def describe_teams():
    def it_adds_teams_in_sorted_order():
        session = _make_session()
        assert do_add_team(session, "red").ok
        assert do_add_team(session, "blue").ok
        assert session.project.teams == ["blue", "red"]

    @pytest.mark.parametrize(
        "name, error", [("", ActionError.NO_TEAM_NAME), ("  ", ActionError.NO_TEAM_NAME)]
    )
    def it_requires_a_team_name(name, error):
        assert do_add_team(_make_session(), name).error is error

    def it_refuses_taken_team_names():
        session = _make_session()
        do_add_team(session, "red")
        result = do_add_team(session, "red")
        assert result.error is ActionError.TEAM_NAME_TAKEN
        assert result.message == constants.Error.TEAM_NAME_TAKEN

    def it_adds_users_to_a_team():
        session = _make_session()
        do_add_team(session, "red")
        assert do_add_user_to_team(session, "red", "eve").ok
        assert session.project.participant("eve").team == "red"
        assert session.project.members("red") == ["eve"]

    @pytest.mark.parametrize(
        "team, user, error",
        [
            ("", "eve", ActionError.NO_TEAM),
            ("blue", "eve", ActionError.UNKNOWN_TEAM),
            ("red", "zed", ActionError.UNKNOWN_USER),
            ("red", "ada", ActionError.USER_ALREADY_IN_TEAM),
        ],
    )
    def it_validates_team_membership(team, user, error):
        session = _make_session()
        do_add_team(session, "red")
        assert do_add_user_to_team(session, team, user).error is error

    def it_lets_users_participate_alone():
        session = _make_session()
        assert do_participate_alone(session, "eve").ok
        assert session.project.participant("eve").team == constants.NO_TEAM_TEAM_NAME

    def it_removes_the_members_of_a_deleted_team():
        session = _make_session()
        do_add_team(session, "red")
        do_add_user_to_team(session, "red", "eve")

        assert do_delete_team(session, "red").ok
        assert session.project.teams == []
        assert session.project.participant("eve") is None
        assert session.project.participant("ada") is not None

    def it_refuses_to_delete_unknown_teams():
        session = _make_session()
        assert do_delete_team(session, "").error is ActionError.NO_TEAM
        assert do_delete_team(session, "red").error is ActionError.UNKNOWN_TEAM

    def it_saves_team_changes():
        store = MagicMock()
        session = _make_session(store=store)
        do_add_team(session, "red")
        store.save_project.assert_called_once_with(session.project)


def describe_do_remove_user_from_project():
    def it_drops_the_participant_and_their_challenges():
        session = _make_session()
        challenge = _line(1)
        _give(session, "bob", challenge)

        assert do_remove_user_from_project(session, "bob").ok
        assert session.project.participant("bob") is None
        assert challenge not in session.project.arena.challenges()

    def it_validates_the_user():
        session = _make_session()
        assert do_remove_user_from_project(session, "zed").error is ActionError.UNKNOWN_USER
        assert do_remove_user_from_project(session, "eve").error is ActionError.NOT_PARTICIPATING


def describe_do_reset_project():
    def it_clears_progress_but_keeps_participants():
        session = _make_session()
        challenge = _line(1)
        _give(session, "ada", challenge)
        state = session.project.participant("ada")
        state.complete_challenge(challenge)
        do_add_team(session, "red")

        assert do_reset_project(session).ok
        assert state.score == 0
        assert state.completed_challenges == []
        assert session.project.arena.challenges() == []
        assert session.project.participant("ada") is state
        assert session.project.teams == ["red"]
