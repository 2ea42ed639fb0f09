"""Achievements and the registry of predicates that unlock them."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable
from xml.sax.saxutils import quoteattr

from pytest_gamify import constants
from pytest_gamify.challenges import ChallengeKind
from pytest_gamify.lifecycle import UserProjectState
from pytest_gamify.models import BuildParameters, BuildRun, SourceFileDetails

if TYPE_CHECKING:
    from pytest_gamify.reports import ReportReader

logger = logging.getLogger(__name__)

ACHIEVEMENTS_FILE = Path(__file__).with_name("achievements.json")


@dataclass
class AchievementContext:
    """What a predicate may look at after one user's build pass."""

    state: UserProjectState
    parameters: BuildParameters
    run: BuildRun
    files: list[SourceFileDetails] = field(default_factory=list)
    solved_this_build: int = 0
    reader: ReportReader | None = None


@dataclass(frozen=True)
class Achievement:
    title: str
    description: str
    kind: str
    secret: bool = False
    parameters: dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    def __str__(self) -> str:
        return f"{self.title}: {self.description}"

    def to_xml(self, solved: int = 0, indentation: int = 0) -> str:
        return (
            f"{' ' * indentation}<Achievement title={quoteattr(self.title)} "
            f"description={quoteattr(self.description)} secret={quoteattr(str(self.secret).lower())} "
            f"solved={quoteattr(str(solved))}/>"
        )


Predicate = Callable[[AchievementContext, dict[str, str]], bool]


def _number(parameters: dict[str, str], key: str) -> int:
    try:
        return int(parameters[key])
    except (KeyError, ValueError):
        # Misconfigured thresholds can never be reached
        return 2**31 - 1


def solve_first_build_fail(context: AchievementContext, parameters: dict[str, str]) -> bool:
    return any(
        c.kind is ChallengeKind.BUILD for c in context.state.get_completed_challenges()
    )


def solve_x_challenges(context: AchievementContext, parameters: dict[str, str]) -> bool:
    return len(context.state.completed_challenges) >= _number(parameters, "solveNumber")


def solve_x_at_once(context: AchievementContext, parameters: dict[str, str]) -> bool:
    return context.solved_this_build >= _number(parameters, "solveNumber")


def solve_challenge_kind(context: AchievementContext, parameters: dict[str, str]) -> bool:
    wanted = parameters.get("challengeKind", "")
    solved = [c for c in context.state.get_completed_challenges() if c.kind.value == wanted]
    return len(solved) >= _number(parameters, "solveNumber")


def reach_score(context: AchievementContext, parameters: dict[str, str]) -> bool:
    return context.state.score >= _number(parameters, "score")


def have_class_with_coverage(context: AchievementContext, parameters: dict[str, str]) -> bool:
    threshold = _number(parameters, "coverage") / 100
    reader = context.reader
    return any(
        (reader.coverage(f) if reader is not None else f.coverage) >= threshold and f.files_exist()
        for f in context.files
    )


REGISTRY: dict[str, Predicate] = {
    "solve_first_build_fail": solve_first_build_fail,
    "solve_x_challenges": solve_x_challenges,
    "solve_x_at_once": solve_x_at_once,
    "solve_challenge_kind": solve_challenge_kind,
    "reach_score": reach_score,
    "have_class_with_coverage": have_class_with_coverage,
}


def parse_achievements(data: list[dict]) -> list[Achievement]:
    """Build achievements from JSON data, rejecting unknown kinds."""
    achievements = []
    for entry in data:
        kind = entry["kind"]
        if kind not in REGISTRY:
            raise ValueError(f"Unknown achievement kind {kind!r} for {entry.get('title')!r}")
        achievements.append(
            Achievement(
                title=entry["title"],
                description=entry["description"],
                kind=kind,
                secret=bool(entry.get("secret", False)),
                parameters={k: str(v) for k, v in entry.get("parameters", {}).items()},
            )
        )
    return achievements


def load_achievements() -> list[Achievement]:
    text = ACHIEVEMENTS_FILE.read_text(encoding="utf-8")
    return parse_achievements(json.loads(text))


def unsolved(state: UserProjectState, achievements: list[Achievement]) -> list[Achievement]:
    return [a for a in achievements if a.title not in state.completed_achievements]


def solved_time_text(state: UserProjectState, achievement: Achievement) -> str:
    solved = state.completed_achievements.get(achievement.title, 0)
    return str(solved) if solved else constants.NOT_SOLVED


def check_achievements(
    context: AchievementContext, achievements: list[Achievement]
) -> list[Achievement]:
    """Unlock every achievement whose predicate now holds."""
    unlocked = []
    for achievement in unsolved(context.state, achievements):
        try:
            holds = REGISTRY[achievement.kind](context, achievement.parameters)
        except Exception:
            logger.exception("Checking achievement %r failed", achievement.title)
            continue
        if holds:
            context.state.complete_achievement(achievement.title)
            unlocked.append(achievement)
    return unlocked
