"""User actions on challenges and quests, returning validation results."""

from __future__ import annotations

import logging
import os
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from pytest_gamify import constants, git_diff
from pytest_gamify.challenges import Challenge
from pytest_gamify.events import Notifier
from pytest_gamify.factory import generate_new_challenges
from pytest_gamify.lifecycle import (
    GameUser,
    InvariantViolation,
    LimitReached,
    Project,
    UserProjectState,
    transfer_stored,
)
from pytest_gamify.models import BuildParameters, SourceFileDetails
from pytest_gamify.quests import placeholder_quest
from pytest_gamify.render import describe, escaped
from pytest_gamify.reports import ReportReader
from pytest_gamify.store import GameStore, PersistenceError

logger = logging.getLogger(__name__)


class ActionError(str, Enum):
    NO_REASON = "NoReason"
    NO_USER = "NoUser"
    NOT_PARTICIPATING = "NotParticipating"
    NO_CHALLENGE_EXISTS = "NoChallengeExists"
    NO_QUEST_EXISTS = "NoQuestExists"
    REJECT_DUMMY = "RejectDummy"
    STORE_DUMMY = "StoreDummy"
    STORAGE_LIMIT = "StorageLimit"
    RECEIVER_IS_SELF = "ReceiverIsSelf"
    USER_NOT_FOUND = "UserNotFound"
    SENDING_DISABLED = "SendingDisabled"
    AMBIGUOUS_SELECTION = "AmbiguousSelection"
    NO_TEAM_NAME = "NoTeamName"
    NO_TEAM = "NoTeam"
    UNKNOWN_TEAM = "UnknownTeam"
    UNKNOWN_USER = "UnknownUser"
    USER_ALREADY_IN_TEAM = "UserAlreadyInTeam"
    TEAM_NAME_TAKEN = "TeamNameTaken"
    SAVING = "Saving"


MESSAGES: dict[ActionError, str] = {
    ActionError.NO_REASON: constants.Error.NO_REASON,
    ActionError.NO_USER: constants.Error.NO_USER_SIGNED_IN,
    ActionError.NOT_PARTICIPATING: constants.Error.NOT_PARTICIPATING,
    ActionError.NO_CHALLENGE_EXISTS: constants.Error.NO_CHALLENGE_EXISTS,
    ActionError.NO_QUEST_EXISTS: constants.Error.NO_QUEST_EXISTS,
    ActionError.REJECT_DUMMY: constants.Error.REJECT_DUMMY,
    ActionError.STORE_DUMMY: constants.Error.STORE_DUMMY,
    ActionError.STORAGE_LIMIT: constants.Error.STORAGE_LIMIT,
    ActionError.RECEIVER_IS_SELF: constants.Error.RECEIVER_IS_SELF,
    ActionError.USER_NOT_FOUND: constants.Error.USER_NOT_FOUND,
    ActionError.SENDING_DISABLED: constants.Error.SENDING_DISABLED,
    ActionError.AMBIGUOUS_SELECTION: constants.Error.AMBIGUOUS_SELECTION,
    ActionError.NO_TEAM_NAME: constants.Error.NO_TEAM_NAME,
    ActionError.NO_TEAM: constants.Error.NO_TEAM,
    ActionError.UNKNOWN_TEAM: constants.Error.UNKNOWN_TEAM,
    ActionError.UNKNOWN_USER: constants.Error.UNKNOWN_USER,
    ActionError.USER_ALREADY_IN_TEAM: constants.Error.USER_ALREADY_IN_TEAM,
    ActionError.TEAM_NAME_TAKEN: constants.Error.TEAM_NAME_TAKEN,
    ActionError.SAVING: constants.Error.SAVING,
}


@dataclass(frozen=True)
class ActionResult:
    ok: bool
    message: str
    error: ActionError | None = None

    @classmethod
    def success(cls, message: str) -> ActionResult:
        return cls(True, message)

    @classmethod
    def failure(cls, error: ActionError) -> ActionResult:
        return cls(False, MESSAGES[error], error)


@dataclass
class GameSession:
    """The signed-in user acting on one project."""

    project: Project
    users: dict[str, GameUser]
    parameters: BuildParameters
    user_id: str | None = None
    store: GameStore | None = None
    notifier: Notifier | None = None
    file_source: Callable[[BuildParameters], list[SourceFileDetails]] = git_diff.last_changed_files
    rng: random.Random = field(default_factory=random.Random)


def _participant(session: GameSession) -> tuple[GameUser, UserProjectState] | ActionResult:
    if session.user_id is None or session.user_id not in session.users:
        return ActionResult.failure(ActionError.NO_USER)
    state = session.project.participant(session.user_id)
    if state is None:
        return ActionResult.failure(ActionError.NOT_PARTICIPATING)
    return session.users[session.user_id], state


def _normalize_reason(reason: str) -> str | None:
    if not reason:
        return None
    if not reason.strip():
        return constants.NO_REASON_PROVIDED
    return reason


def _select(challenges: list[Challenge], selection: str) -> Challenge | ActionResult:
    matches = [challenge for challenge in challenges if escaped(challenge) == selection]
    if not matches:
        return ActionResult.failure(ActionError.NO_CHALLENGE_EXISTS)
    if len(matches) > 1:
        logger.warning("%d challenges match %r", len(matches), selection)
        return ActionResult.failure(ActionError.AMBIGUOUS_SELECTION)
    return matches[0]


def _save(session: GameSession) -> ActionResult | None:
    if session.store is None:
        return None
    try:
        session.store.save_project(session.project)
    except PersistenceError:
        # The in-memory move stays applied
        logger.exception("Saving project %s failed", session.project.name)
        return ActionResult.failure(ActionError.SAVING)
    return None


def generate_after_rejection(
    session: GameSession, user: GameUser, state: UserProjectState
) -> str:
    """Refill the freed slot and describe what happened."""
    parameters = session.parameters
    text = ": No additional Challenge generated"
    if len(state.current_challenges) >= parameters.current_challenges_count:
        return text + " (Enough Challenges already)"
    if not os.path.isdir(parameters.workspace):
        return text + " (Workspace deleted or on remote machine)"
    files = session.file_source(parameters)
    with ReportReader(parameters.report_timeout) as reader:
        generate_new_challenges(user, state, parameters, files, reader, session.rng)
    return ": New Challenge generated"


def do_reject_challenge(session: GameSession, selection: str, reason: str) -> ActionResult:
    reason = _normalize_reason(reason)
    if reason is None:
        return ActionResult.failure(ActionError.NO_REASON)
    found = _participant(session)
    if isinstance(found, ActionResult):
        return found
    user, state = found

    # A build pass may move the same challenge; lookup and move happen under one lock
    with state.lock:
        challenge = _select(state.get_current_challenges(), selection)
        if isinstance(challenge, ActionResult):
            return challenge
        if challenge.is_dummy:
            return ActionResult.failure(ActionError.REJECT_DUMMY)
        try:
            state.reject_challenge(challenge, reason)
        except InvariantViolation:
            return ActionResult.failure(ActionError.NO_CHALLENGE_EXISTS)

    generated = generate_after_rejection(session, user, state)
    return _save(session) or ActionResult.success(f"Challenge rejected{generated}")


def do_restore_challenge(session: GameSession, selection: str) -> ActionResult:
    found = _participant(session)
    if isinstance(found, ActionResult):
        return found
    _, state = found

    with state.lock:
        challenge = _select([c for c, _ in state.get_rejected_challenges()], selection)
        if isinstance(challenge, ActionResult):
            return challenge
        try:
            state.restore_challenge(challenge)
        except InvariantViolation:
            return ActionResult.failure(ActionError.NO_CHALLENGE_EXISTS)
    return _save(session) or ActionResult.success("Challenge restored")


def do_store_challenge(session: GameSession, selection: str) -> ActionResult:
    found = _participant(session)
    if isinstance(found, ActionResult):
        return found
    user, state = found

    with state.lock:
        challenge = _select(state.get_current_challenges(), selection)
        if isinstance(challenge, ActionResult):
            return challenge
        if challenge.is_dummy:
            return ActionResult.failure(ActionError.STORE_DUMMY)
        try:
            state.store_challenge(challenge, session.parameters.stored_challenges_count)
        except LimitReached:
            return ActionResult.failure(ActionError.STORAGE_LIMIT)
        except InvariantViolation:
            return ActionResult.failure(ActionError.NO_CHALLENGE_EXISTS)

    generated = generate_after_rejection(session, user, state)
    return _save(session) or ActionResult.success(f"Challenge stored{generated}")


def do_undo_store_challenge(session: GameSession, selection: str) -> ActionResult:
    found = _participant(session)
    if isinstance(found, ActionResult):
        return found
    _, state = found

    with state.lock:
        challenge = _select(state.get_stored_challenges(), selection)
        if isinstance(challenge, ActionResult):
            return challenge
        try:
            state.undo_store_challenge(challenge)
        except InvariantViolation:
            return ActionResult.failure(ActionError.NO_CHALLENGE_EXISTS)
    return _save(session) or ActionResult.success("Challenge restored")


def do_send_challenge(session: GameSession, selection: str, to: str) -> ActionResult:
    if not session.parameters.can_send_challenge:
        return ActionResult.failure(ActionError.SENDING_DISABLED)
    found = _participant(session)
    if isinstance(found, ActionResult):
        return found
    user, state = found

    challenge = _select(state.get_stored_challenges(), selection)
    if isinstance(challenge, ActionResult):
        return challenge
    other = session.users.get(to)
    if other is None:
        return ActionResult.failure(ActionError.USER_NOT_FOUND)
    if other.id == user.id:
        return ActionResult.failure(ActionError.RECEIVER_IS_SELF)
    other_state = session.project.participant(other.id)
    if other_state is None:
        return ActionResult.failure(ActionError.NOT_PARTICIPATING)

    # transfer_stored checks ownership again under both locks
    try:
        transfer_stored(state, other_state, challenge, session.parameters.stored_challenges_count)
    except LimitReached:
        return ActionResult.failure(ActionError.STORAGE_LIMIT)
    except InvariantViolation:
        return ActionResult.failure(ActionError.NO_CHALLENGE_EXISTS)

    saved = _save(session)
    if saved is not None:
        return saved
    if session.notifier is not None and other.notifications:
        session.notifier.notify(
            other,
            "New challenge",
            f"{user.full_name or user.id} sent you a challenge in {session.project.name}: "
            f"{escaped(challenge)}",
        )
    logger.info("%s sent %s to %s", user.id, describe(challenge), other.id)
    return ActionResult.success("Challenge sent")


def do_reject_quest(session: GameSession, selection: str, reason: str) -> ActionResult:
    reason = _normalize_reason(reason)
    if reason is None:
        return ActionResult.failure(ActionError.NO_REASON)
    found = _participant(session)
    if isinstance(found, ActionResult):
        return found
    _, state = found

    with state.lock:
        quest = next((q for q in state.get_current_quests() if str(q) == selection), None)
        if quest is None:
            return ActionResult.failure(ActionError.NO_QUEST_EXISTS)
        if quest.is_placeholder:
            return ActionResult.failure(ActionError.REJECT_DUMMY)
        try:
            state.reject_quest(quest, reason)
        except InvariantViolation:
            return ActionResult.failure(ActionError.NO_QUEST_EXISTS)
        state.new_quest(placeholder_quest(constants.REJECTED_QUEST))
    return _save(session) or ActionResult.success("Quest rejected")


# Project administration

def do_add_team(session: GameSession, team_name: str) -> ActionResult:
    if not team_name.strip():
        return ActionResult.failure(ActionError.NO_TEAM_NAME)
    try:
        session.project.add_team(team_name)
    except InvariantViolation:
        return ActionResult.failure(ActionError.TEAM_NAME_TAKEN)
    return _save(session) or ActionResult.success(f"Team {team_name} added")


def do_delete_team(session: GameSession, team_name: str) -> ActionResult:
    """Delete a team; its members leave the project and lose their progress."""
    if not team_name:
        return ActionResult.failure(ActionError.NO_TEAM)
    try:
        members = session.project.remove_team(team_name)
    except InvariantViolation:
        return ActionResult.failure(ActionError.UNKNOWN_TEAM)
    logger.info("Deleted team %s of %s with members %s", team_name, session.project.name, members)
    return _save(session) or ActionResult.success(f"Team {team_name} deleted")


def do_add_user_to_team(session: GameSession, team_name: str, user_id: str) -> ActionResult:
    if not team_name:
        return ActionResult.failure(ActionError.NO_TEAM)
    if team_name != constants.NO_TEAM_TEAM_NAME and team_name not in session.project.teams:
        return ActionResult.failure(ActionError.UNKNOWN_TEAM)
    user = session.users.get(user_id)
    if user is None:
        return ActionResult.failure(ActionError.UNKNOWN_USER)
    if session.project.participant(user.id) is not None:
        return ActionResult.failure(ActionError.USER_ALREADY_IN_TEAM)
    session.project.join(user.id, team_name)
    return _save(session) or ActionResult.success(f"{user.id} added to team {team_name}")


def do_participate_alone(session: GameSession, user_id: str) -> ActionResult:
    return do_add_user_to_team(session, constants.NO_TEAM_TEAM_NAME, user_id)


def do_remove_user_from_project(session: GameSession, user_id: str) -> ActionResult:
    user = session.users.get(user_id)
    if user is None:
        return ActionResult.failure(ActionError.UNKNOWN_USER)
    if session.project.participant(user.id) is None:
        return ActionResult.failure(ActionError.NOT_PARTICIPATING)
    session.project.leave(user.id)
    return _save(session) or ActionResult.success(f"{user.id} removed from {session.project.name}")


def do_reset_project(session: GameSession) -> ActionResult:
    """Drop every challenge, quest, score and achievement of the project."""
    session.project.reset()
    return _save(session) or ActionResult.success(f"{session.project.name} reset")
