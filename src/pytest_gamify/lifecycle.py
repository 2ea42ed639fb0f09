"""Per-user, per-project ownership of challenges and quests.

Records live once in a project-wide arena keyed by id; every lifecycle list
holds ids only. Each move removes an id from exactly one list and appends it
to exactly one other, under the owning user's lock.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterator

from pytest_gamify.challenges import Challenge
from pytest_gamify.evaluation import score
from pytest_gamify.models import now_millis

if TYPE_CHECKING:
    from pytest_gamify.quests import Quest

logger = logging.getLogger(__name__)


class InvariantViolation(ValueError):
    """A lifecycle move that would break single ownership or a limit."""


class LimitReached(InvariantViolation):
    """A move that would exceed a storage limit."""


@dataclass
class GameUser:
    id: str
    full_name: str = ""
    git_names: set[str] = field(default_factory=set)
    email: str = ""
    notifications: bool = True
    pseudonym: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def identities(self) -> set[str]:
        """Every name or address this user commits under."""
        names = {self.id, self.full_name, self.email, *self.git_names}
        return {n for n in names if n}

    def matches(self, authors: set[str]) -> bool:
        return bool(self.identities & authors)


class ChallengeArena:
    """Challenge and quest records of one project, keyed by id."""

    def __init__(self) -> None:
        self._challenges: dict[str, Challenge] = {}
        self._quests: dict[str, Quest] = {}
        self._lock = threading.Lock()

    def add_challenge(self, challenge: Challenge) -> None:
        with self._lock:
            self._challenges[challenge.id] = challenge

    def challenge(self, challenge_id: str) -> Challenge:
        with self._lock:
            return self._challenges[challenge_id]

    def discard_challenge(self, challenge_id: str) -> None:
        with self._lock:
            self._challenges.pop(challenge_id, None)

    def add_quest(self, quest: Quest) -> None:
        with self._lock:
            self._quests[quest.id] = quest

    def quest(self, quest_id: str) -> Quest:
        with self._lock:
            return self._quests[quest_id]

    def discard_quest(self, quest_id: str) -> None:
        with self._lock:
            self._quests.pop(quest_id, None)

    def challenges(self) -> list[Challenge]:
        with self._lock:
            return list(self._challenges.values())

    def quests(self) -> list[Quest]:
        with self._lock:
            return list(self._quests.values())


def _take(ids: list[str], item_id: str, list_name: str) -> None:
    try:
        ids.remove(item_id)
    except ValueError:
        raise InvariantViolation(f"{item_id} is not in {list_name}") from None


def _take_pair(pairs: list[tuple[str, str]], item_id: str, list_name: str) -> str:
    for index, (candidate, reason) in enumerate(pairs):
        if candidate == item_id:
            del pairs[index]
            return reason
    raise InvariantViolation(f"{item_id} is not in {list_name}")


class UserProjectState:
    """Lifecycle lists, score and achievements of one user in one project."""

    def __init__(self, user_id: str, project_name: str, arena: ChallengeArena) -> None:
        self.user_id = user_id
        self.project_name = project_name
        self.arena = arena
        self.team = ""
        self.score = 0
        self.current_challenges: list[str] = []
        self.completed_challenges: list[str] = []
        self.rejected_challenges: list[tuple[str, str]] = []
        self.stored_challenges: list[str] = []
        self.current_quests: list[str] = []
        self.completed_quests: list[str] = []
        self.rejected_quests: list[tuple[str, str]] = []
        self.unfinished_quests: list[tuple[str, str]] = []
        self.completed_achievements: dict[str, int] = {}
        self.lock = threading.RLock()

    # Views

    def _challenge_ids(self) -> Iterator[str]:
        yield from self.current_challenges
        yield from self.completed_challenges
        yield from (cid for cid, _ in self.rejected_challenges)
        yield from self.stored_challenges

    def _resolve(self, ids: list[str]) -> list[Challenge]:
        return [self.arena.challenge(cid) for cid in ids]

    def get_current_challenges(self) -> list[Challenge]:
        with self.lock:
            return self._resolve(self.current_challenges)

    def get_completed_challenges(self) -> list[Challenge]:
        with self.lock:
            return self._resolve(self.completed_challenges)

    def get_rejected_challenges(self) -> list[tuple[Challenge, str]]:
        with self.lock:
            return [(self.arena.challenge(cid), reason) for cid, reason in self.rejected_challenges]

    def get_stored_challenges(self) -> list[Challenge]:
        with self.lock:
            return self._resolve(self.stored_challenges)

    def all_challenges(self) -> list[Challenge]:
        with self.lock:
            return self._resolve(list(self._challenge_ids()))

    def owns(self, challenge: Challenge) -> bool:
        with self.lock:
            return challenge.id in set(self._challenge_ids())

    def get_current_quests(self) -> list[Quest]:
        with self.lock:
            return [self.arena.quest(qid) for qid in self.current_quests]

    def get_completed_quests(self) -> list[Quest]:
        with self.lock:
            return [self.arena.quest(qid) for qid in self.completed_quests]

    def get_rejected_quests(self) -> list[tuple[Quest, str]]:
        with self.lock:
            return [(self.arena.quest(qid), reason) for qid, reason in self.rejected_quests]

    def get_unfinished_quests(self) -> list[tuple[Quest, str]]:
        with self.lock:
            return [(self.arena.quest(qid), reason) for qid, reason in self.unfinished_quests]

    # Challenge moves

    def new_challenge(self, challenge: Challenge) -> None:
        with self.lock:
            if challenge.id in set(self._challenge_ids()):
                raise InvariantViolation(f"{challenge.id} is already owned by {self.user_id}")
            self.arena.add_challenge(challenge)
            self.current_challenges.append(challenge.id)

    def complete_challenge(self, challenge: Challenge) -> int:
        """Move a solved challenge to completed and award its score."""
        with self.lock:
            _take(self.current_challenges, challenge.id, "current challenges")
            if not challenge.solved:
                challenge.solved = now_millis()
            self.completed_challenges.append(challenge.id)
            points = score(challenge)
            self.score += points
            return points

    def reject_challenge(self, challenge: Challenge, reason: str) -> None:
        with self.lock:
            _take(self.current_challenges, challenge.id, "current challenges")
            challenge.rejected = now_millis()
            self.rejected_challenges.append((challenge.id, reason))

    def restore_challenge(self, challenge: Challenge) -> None:
        with self.lock:
            _take_pair(self.rejected_challenges, challenge.id, "rejected challenges")
            challenge.rejected = 0
            self.current_challenges.append(challenge.id)

    def store_challenge(self, challenge: Challenge, limit: int) -> None:
        with self.lock:
            if len(self.stored_challenges) >= limit:
                raise LimitReached(f"{self.user_id} reached the storage limit of {limit}")
            _take(self.current_challenges, challenge.id, "current challenges")
            challenge.stored = now_millis()
            self.stored_challenges.append(challenge.id)

    def undo_store_challenge(self, challenge: Challenge) -> None:
        with self.lock:
            _take(self.stored_challenges, challenge.id, "stored challenges")
            challenge.stored = 0
            self.current_challenges.append(challenge.id)

    def reject_stored_challenge(self, challenge: Challenge, reason: str) -> None:
        with self.lock:
            _take(self.stored_challenges, challenge.id, "stored challenges")
            challenge.stored = 0
            challenge.rejected = now_millis()
            self.rejected_challenges.append((challenge.id, reason))

    def remove_stored_challenge(self, challenge: Challenge) -> None:
        with self.lock:
            _take(self.stored_challenges, challenge.id, "stored challenges")

    def add_stored_challenge(self, challenge: Challenge) -> None:
        with self.lock:
            if challenge.id in set(self._challenge_ids()):
                raise InvariantViolation(f"{challenge.id} is already owned by {self.user_id}")
            self.stored_challenges.append(challenge.id)

    def drop_dummies(self) -> int:
        """Remove all dummy challenges; they only live for one build."""
        with self.lock:
            dummies = [c for c in self.get_current_challenges() if c.is_dummy]
            for dummy in dummies:
                self.current_challenges.remove(dummy.id)
                self.arena.discard_challenge(dummy.id)
            return len(dummies)

    # Quest moves

    def new_quest(self, quest: Quest) -> None:
        with self.lock:
            self.arena.add_quest(quest)
            self.current_quests.append(quest.id)

    def complete_quest(self, quest: Quest) -> int:
        with self.lock:
            _take(self.current_quests, quest.id, "current quests")
            if not quest.solved:
                quest.solved = now_millis()
            if not quest.steps:
                self.arena.discard_quest(quest.id)
                return 0
            self.completed_quests.append(quest.id)
            points = quest.score
            self.score += points
            return points

    def reject_quest(self, quest: Quest, reason: str) -> None:
        """Started quests become unfinished, untouched ones rejected."""
        with self.lock:
            _take(self.current_quests, quest.id, "current quests")
            if not quest.steps:
                self.arena.discard_quest(quest.id)
                return
            if quest.current_step > 0:
                self.unfinished_quests.append((quest.id, reason))
            else:
                self.rejected_quests.append((quest.id, reason))

    # Score and achievements

    def add_score(self, points: int) -> None:
        if points < 0:
            raise InvariantViolation("score never decreases")
        with self.lock:
            self.score += points

    def complete_achievement(self, title: str) -> None:
        with self.lock:
            self.completed_achievements.setdefault(title, now_millis())

    def reset(self) -> None:
        """Forget all progress in the project."""
        with self.lock:
            for cid in list(self._challenge_ids()):
                self.arena.discard_challenge(cid)
            for qid in self.current_quests + self.completed_quests:
                self.arena.discard_quest(qid)
            for qid, _ in self.rejected_quests + self.unfinished_quests:
                self.arena.discard_quest(qid)
            self.current_challenges.clear()
            self.completed_challenges.clear()
            self.rejected_challenges.clear()
            self.stored_challenges.clear()
            self.current_quests.clear()
            self.completed_quests.clear()
            self.rejected_quests.clear()
            self.unfinished_quests.clear()
            self.completed_achievements.clear()
            self.score = 0


def transfer_stored(
    sender: UserProjectState, recipient: UserProjectState, challenge: Challenge, limit: int
) -> None:
    """Move a stored challenge between users as one step.

    Both locks are taken in user id order so concurrent sends cannot deadlock.
    """
    if sender is recipient or sender.user_id == recipient.user_id:
        raise InvariantViolation("cannot send a challenge to its owner")
    first, second = sorted((sender, recipient), key=lambda state: state.user_id)
    with first.lock, second.lock:
        if challenge.id not in sender.stored_challenges:
            raise InvariantViolation(f"{challenge.id} is not stored by {sender.user_id}")
        if len(recipient.stored_challenges) >= limit:
            raise LimitReached(f"{recipient.user_id} reached the storage limit of {limit}")
        sender.remove_stored_challenge(challenge)
        recipient.add_stored_challenge(challenge)


class Project:
    """All participants of one project sharing a single arena."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.arena = ChallengeArena()
        self.states: dict[str, UserProjectState] = {}
        self.teams: list[str] = []
        self._lock = threading.Lock()

    def participant(self, user_id: str) -> UserProjectState | None:
        with self._lock:
            return self.states.get(user_id)

    def join(self, user_id: str, team: str = "") -> UserProjectState:
        with self._lock:
            state = self.states.get(user_id)
            if state is None:
                state = UserProjectState(user_id, self.name, self.arena)
                self.states[user_id] = state
                logger.info("%s joined project %s", user_id, self.name)
            if team:
                state.team = team
            return state

    def leave(self, user_id: str) -> None:
        with self._lock:
            state = self.states.pop(user_id, None)
        if state is not None:
            state.reset()

    def add_team(self, team: str) -> None:
        with self._lock:
            if team in self.teams:
                raise InvariantViolation(f"team {team} already exists in {self.name}")
            self.teams.append(team)
            self.teams.sort()

    def members(self, team: str) -> list[str]:
        with self._lock:
            return sorted(user_id for user_id, state in self.states.items() if state.team == team)

    def remove_team(self, team: str) -> list[str]:
        """Delete a team; its members stop participating."""
        with self._lock:
            if team not in self.teams:
                raise InvariantViolation(f"team {team} does not exist in {self.name}")
            self.teams.remove(team)
        members = self.members(team)
        for user_id in members:
            self.leave(user_id)
        return members

    def reset(self) -> None:
        """Clear the progress of every participant; memberships stay."""
        with self._lock:
            states = list(self.states.values())
        for state in states:
            state.reset()
        logger.info("Reset project %s", self.name)
