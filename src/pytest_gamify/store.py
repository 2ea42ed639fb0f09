"""JSON persistence of users and per-project game state."""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from dataclasses import asdict
from typing import Any
from xml.sax.saxutils import quoteattr

from pytest_gamify.achievements import Achievement
from pytest_gamify.challenges import (
    PAYLOAD_TYPES,
    Challenge,
    ChallengeKind,
    MutationData,
)
from pytest_gamify.lifecycle import GameUser, Project, UserProjectState
from pytest_gamify.models import (
    BuildParameters,
    MutationRecord,
    MutationStatus,
    Mutator,
    SourceFileDetails,
)
from pytest_gamify.quests import Quest, QuestStep
from pytest_gamify.render import quest_to_xml, to_xml as challenge_to_xml

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class PersistenceError(OSError):
    """Game state could not be read or written."""


# Challenges and quests

def challenge_to_dict(challenge: Challenge) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": challenge.id,
        "kind": challenge.kind.value,
        "payload": asdict(challenge.payload),
        "branch": challenge.branch,
        "project_name": challenge.project_name,
        "created": challenge.created,
        "solved": challenge.solved,
        "rejected": challenge.rejected,
        "stored": challenge.stored,
        "solved_coverage": challenge.solved_coverage,
    }
    if challenge.details is not None:
        data["file_path"] = challenge.details.file_path
        data["changed_by"] = sorted(challenge.details.changed_by)
    return data


def _payload_from_dict(kind: ChallengeKind, data: dict[str, Any]) -> Any:
    if kind is ChallengeKind.MUTATION:
        record = dict(data["record"])
        record["mutator"] = Mutator.parse(record["mutator"])
        record["status"] = MutationStatus.parse(record["status"])
        return MutationData(MutationRecord(**record), data.get("original_line", ""))
    return PAYLOAD_TYPES[kind](**data)


def challenge_from_dict(data: dict[str, Any], parameters: BuildParameters) -> Challenge:
    kind = ChallengeKind(data["kind"])
    details = None
    if data.get("file_path"):
        details = SourceFileDetails(data["file_path"], parameters)
        for identity in data.get("changed_by", []):
            details.add_user(identity)
    return Challenge(
        kind,
        _payload_from_dict(kind, data.get("payload", {})),
        details=details,
        branch=data.get("branch", ""),
        project_name=data.get("project_name", parameters.project_name),
        created=data.get("created", 0),
        solved=data.get("solved", 0),
        rejected=data.get("rejected", 0),
        stored=data.get("stored", 0),
        solved_coverage=data.get("solved_coverage", 0.0),
        id=data["id"],
    )


def quest_to_dict(quest: Quest) -> dict[str, Any]:
    return {
        "id": quest.id,
        "name": quest.name,
        "created": quest.created,
        "solved": quest.solved,
        "current_step": quest.current_step,
        "steps": [
            {"description": step.description, "challenge": challenge_to_dict(step.challenge)}
            for step in quest.steps
        ],
    }


def quest_from_dict(data: dict[str, Any], parameters: BuildParameters) -> Quest:
    return Quest(
        name=data["name"],
        steps=[
            QuestStep(step["description"], challenge_from_dict(step["challenge"], parameters))
            for step in data.get("steps", [])
        ],
        current_step=data.get("current_step", 0),
        created=data.get("created", 0),
        solved=data.get("solved", 0),
        id=data["id"],
    )


# Participants

def _state_to_dict(state: UserProjectState) -> dict[str, Any]:
    with state.lock:
        return {
            "team": state.team,
            "score": state.score,
            "current_challenges": list(state.current_challenges),
            "completed_challenges": list(state.completed_challenges),
            "rejected_challenges": [list(pair) for pair in state.rejected_challenges],
            "stored_challenges": list(state.stored_challenges),
            "current_quests": list(state.current_quests),
            "completed_quests": list(state.completed_quests),
            "rejected_quests": [list(pair) for pair in state.rejected_quests],
            "unfinished_quests": [list(pair) for pair in state.unfinished_quests],
            "achievements": dict(state.completed_achievements),
        }


def _state_from_dict(state: UserProjectState, data: dict[str, Any]) -> None:
    # Lists missing from older documents start out empty
    state.team = data.get("team", "")
    state.score = data.get("score", 0)
    state.current_challenges = list(data.get("current_challenges", []))
    state.completed_challenges = list(data.get("completed_challenges", []))
    state.rejected_challenges = [tuple(p) for p in data.get("rejected_challenges", [])]
    state.stored_challenges = list(data.get("stored_challenges", []))
    state.current_quests = list(data.get("current_quests", []))
    state.completed_quests = list(data.get("completed_quests", []))
    state.rejected_quests = [tuple(p) for p in data.get("rejected_quests", [])]
    state.unfinished_quests = [tuple(p) for p in data.get("unfinished_quests", [])]
    state.completed_achievements = dict(data.get("achievements", {}))


def project_to_dict(project: Project) -> dict[str, Any]:
    return {
        "name": project.name,
        "challenges": {c.id: challenge_to_dict(c) for c in project.arena.challenges()},
        "quests": {q.id: quest_to_dict(q) for q in project.arena.quests()},
        "teams": list(project.teams),
        "participants": {
            user_id: _state_to_dict(state) for user_id, state in sorted(project.states.items())
        },
    }


def project_from_dict(data: dict[str, Any], parameters: BuildParameters) -> Project:
    project = Project(data.get("name", parameters.project_name))
    project.teams = sorted(data.get("teams", []))
    for challenge_data in data.get("challenges", {}).values():
        project.arena.add_challenge(challenge_from_dict(challenge_data, parameters))
    for quest_data in data.get("quests", {}).values():
        project.arena.add_quest(quest_from_dict(quest_data, parameters))
    for user_id, state_data in data.get("participants", {}).items():
        _state_from_dict(project.join(user_id), state_data)
    return project


def user_to_dict(user: GameUser) -> dict[str, Any]:
    return {
        "id": user.id,
        "full_name": user.full_name,
        "git_names": sorted(user.git_names),
        "email": user.email,
        "notifications": user.notifications,
        "pseudonym": user.pseudonym,
    }


def user_from_dict(data: dict[str, Any]) -> GameUser:
    user = GameUser(
        id=data["id"],
        full_name=data.get("full_name", ""),
        git_names=set(data.get("git_names", [])),
        email=data.get("email", ""),
        notifications=data.get("notifications", True),
    )
    if data.get("pseudonym"):
        user.pseudonym = data["pseudonym"]
    return user


# XML view

def _counted(tag: str, children: list[str], indentation: int) -> list[str]:
    pad = " " * indentation
    if not children:
        return [f'{pad}<{tag} count="0"/>']
    return [f'{pad}<{tag} count="{len(children)}">', *children, f"{pad}</{tag}>"]


def user_to_xml(
    user: GameUser, state: UserProjectState, achievements: list[Achievement] | None = None
) -> str:
    """Counted lifecycle lists of one participant."""
    inner = 4
    child = 8
    with state.lock:
        lines = [
            f"<User id={quoteattr(user.pseudonym)} project={quoteattr(state.project_name)} "
            f"score={quoteattr(str(state.score))}>"
        ]
        lines += _counted(
            "CurrentChallenges",
            [challenge_to_xml(c, indentation=child) for c in state.get_current_challenges()],
            inner,
        )
        lines += _counted(
            "CompletedChallenges",
            [challenge_to_xml(c, indentation=child) for c in state.get_completed_challenges()],
            inner,
        )
        lines += _counted(
            "StoredChallenges",
            [challenge_to_xml(c, indentation=child) for c in state.get_stored_challenges()],
            inner,
        )
        lines += _counted(
            "RejectedChallenges",
            [challenge_to_xml(c, r, child) for c, r in state.get_rejected_challenges()],
            inner,
        )
        lines += _counted(
            "CurrentQuests",
            [quest_to_xml(q, indentation=child) for q in state.get_current_quests()],
            inner,
        )
        lines += _counted(
            "CompletedQuests",
            [quest_to_xml(q, indentation=child) for q in state.get_completed_quests()],
            inner,
        )
        lines += _counted(
            "RejectedQuests",
            [quest_to_xml(q, r, child) for q, r in state.get_rejected_quests()],
            inner,
        )
        lines += _counted(
            "UnfinishedQuests",
            [quest_to_xml(q, r, child) for q, r in state.get_unfinished_quests()],
            inner,
        )
        by_title = {a.title: a for a in achievements or []}
        lines += _counted(
            "Achievements",
            [
                by_title[title].to_xml(solved, child)
                if title in by_title
                else f"{' ' * child}<Achievement title={quoteattr(title)} solved={quoteattr(str(solved))}/>"
                for title, solved in state.completed_achievements.items()
            ],
            inner,
        )
    lines.append("</User>")
    return "\n".join(lines)


def to_xml(
    project: Project, users: dict[str, GameUser], achievements: list[Achievement] | None = None
) -> str:
    return "\n".join(
        user_to_xml(users.get(user_id, GameUser(user_id)), state, achievements)
        for user_id, state in sorted(project.states.items())
    )


class GameStore:
    """Users and projects as JSON documents below ``root``."""

    def __init__(self, root: str) -> None:
        self.root = root

    @property
    def users_file(self) -> str:
        return os.path.join(self.root, "users.json")

    def project_file(self, name: str) -> str:
        safe = _UNSAFE.sub("_", name) or "_"
        return os.path.join(self.root, "projects", f"{safe}.json")

    def _read(self, path: str) -> Any:
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Could not read {path}: {e}") from e
        except ValueError as e:
            # The broken document stays beside the fresh one
            corrupt = path + ".corrupt"
            logger.warning("Moving unreadable state file %s to %s: %s", path, corrupt, e)
            try:
                os.replace(path, corrupt)
            except OSError as move_error:
                raise PersistenceError(f"Could not move {path} aside: {move_error}") from move_error
            return None

    def _write(self, path: str, data: Any) -> None:
        directory = os.path.dirname(path)
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, sort_keys=True)
                os.replace(tmp_path, path)
            except BaseException:
                os.unlink(tmp_path)
                raise
        except OSError as e:
            raise PersistenceError(f"Could not save {path}: {e}") from e

    def load_users(self) -> dict[str, GameUser]:
        data = self._read(self.users_file) or {}
        users = [user_from_dict(entry) for entry in data.get("users", [])]
        return {user.id: user for user in users}

    def save_users(self, users: dict[str, GameUser]) -> None:
        self._write(
            self.users_file,
            {"users": [user_to_dict(u) for _, u in sorted(users.items())]},
        )

    def load_project(self, parameters: BuildParameters) -> Project:
        data = self._read(self.project_file(parameters.project_name))
        if data is None:
            return Project(parameters.project_name)
        return project_from_dict(data, parameters)

    def save_project(self, project: Project) -> None:
        self._write(self.project_file(project.name), project_to_dict(project))
        logger.debug("Saved project %s", project.name)

    def to_xml(self, project: Project, achievements: list[Achievement] | None = None) -> str:
        return to_xml(project, self.load_users(), achievements)
