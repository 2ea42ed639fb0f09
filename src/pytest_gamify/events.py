"""Structured events published by the build pipeline and their delivery."""

from __future__ import annotations

import logging
import queue
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Protocol

from pytest_gamify.lifecycle import GameUser
from pytest_gamify.models import now_millis

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    CHALLENGE_GENERATED = "ChallengeGenerated"
    CHALLENGE_SOLVED = "ChallengeSolved"
    CHALLENGE_UNSOLVABLE = "ChallengeUnsolvable"
    QUEST_GENERATED = "QuestGenerated"
    QUEST_STEP_SOLVED = "QuestStepSolved"
    QUEST_SOLVED = "QuestSolved"
    QUEST_UNSOLVABLE = "QuestUnsolvable"
    ACHIEVEMENT_SOLVED = "AchievementSolved"


# Headings of the notification text, in display order
SECTIONS: dict[EventKind, str] = {
    EventKind.CHALLENGE_SOLVED: "Solved challenges",
    EventKind.CHALLENGE_UNSOLVABLE: "Unsolvable challenges",
    EventKind.CHALLENGE_GENERATED: "New challenges",
    EventKind.QUEST_STEP_SOLVED: "Solved quest steps",
    EventKind.QUEST_SOLVED: "Solved quests",
    EventKind.QUEST_UNSOLVABLE: "Unsolvable quests",
    EventKind.QUEST_GENERATED: "New quests",
    EventKind.ACHIEVEMENT_SOLVED: "Unlocked achievements",
}


@dataclass(frozen=True)
class Event:
    kind: EventKind
    user_id: str
    project_name: str
    text: str
    build_number: int = 0
    timestamp: int = field(default_factory=now_millis)


class EventChannel:
    """Outbound queue the pipeline publishes to without blocking."""

    def __init__(self) -> None:
        self._queue: queue.Queue[Event] = queue.Queue()

    def publish(self, event: Event) -> None:
        self._queue.put_nowait(event)

    def drain(self) -> list[Event]:
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


def group_by_user(events: Iterable[Event]) -> dict[str, list[Event]]:
    grouped: dict[str, list[Event]] = defaultdict(list)
    for event in events:
        grouped[event.user_id].append(event)
    return dict(grouped)


def summary_text(project_name: str, build_number: int, events: list[Event]) -> str:
    """Plain-text summary of one user's events in one build."""
    lines = [f"Build #{build_number} of {project_name}"]
    for kind, heading in SECTIONS.items():
        texts = [e.text for e in events if e.kind is kind]
        if not texts:
            continue
        lines.append("")
        lines.append(f"{heading}:")
        lines.extend(f"- {text}" for text in texts)
    return "\n".join(lines)


class Notifier(Protocol):
    def notify(self, user: GameUser, subject: str, text: str) -> None: ...


class LoggingNotifier:
    """Writes notifications to the log instead of sending them."""

    def notify(self, user: GameUser, subject: str, text: str) -> None:
        logger.info("Notification for %s: %s\n%s", user.id, subject, text)


def deliver(
    events: list[Event],
    users: dict[str, GameUser],
    project_name: str,
    build_number: int,
    notifier: Notifier,
) -> int:
    """Send one summary per user; returns the number of notifications sent."""
    sent = 0
    for user_id, user_events in group_by_user(events).items():
        user = users.get(user_id)
        if user is None or not user.notifications:
            continue
        try:
            notifier.notify(
                user,
                f"Gamification results of {project_name}",
                summary_text(project_name, build_number, user_events),
            )
        except Exception:
            logger.exception("Notifying %s failed", user_id)
            continue
        sent += 1
    return sent
