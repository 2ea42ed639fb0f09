"""Multi-step quests built from challenges of one class or package."""

from __future__ import annotations

import logging
import random
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from pytest_gamify import constants
from pytest_gamify.challenges import Challenge
from pytest_gamify.evaluation import Outcome, evaluate, score
from pytest_gamify.factory import (
    make_class_challenge,
    make_line_challenge,
    make_method_challenge,
    make_mutation_challenge,
    undetected_mutations,
    user_files,
)
from pytest_gamify.lifecycle import GameUser, UserProjectState
from pytest_gamify.models import BuildParameters, BuildRun, SourceFileDetails, now_millis
from pytest_gamify.reports import ReportReader
from pytest_gamify.selector import filter_candidates

logger = logging.getLogger(__name__)

STEPS_PER_QUEST = 3


@dataclass
class QuestStep:
    description: str
    challenge: Challenge


@dataclass(eq=False)
class Quest:
    """Steps are solved in order; a quest without steps is always complete."""

    name: str
    steps: list[QuestStep]
    current_step: int = 0
    created: int = field(default_factory=now_millis)
    solved: int = 0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_placeholder(self) -> bool:
        return not self.steps

    @property
    def is_complete(self) -> bool:
        return self.current_step >= len(self.steps)

    @property
    def score(self) -> int:
        return sum(score(step.challenge) for step in self.steps)

    @property
    def current(self) -> QuestStep | None:
        if self.is_complete:
            return None
        return self.steps[self.current_step]

    def __str__(self) -> str:
        return self.name


def placeholder_quest(name: str) -> Quest:
    return Quest(name, [])


class QuestProgress(str, Enum):
    OPEN = "open"
    STEP_SOLVED = "step_solved"
    SOLVED = "solved"
    UNSOLVABLE = "unsolvable"


def advance(
    quest: Quest, parameters: BuildParameters, run: BuildRun, reader: ReportReader
) -> QuestProgress:
    """Evaluate the current step of ``quest`` and move past it once solved."""
    step = quest.current
    if step is None:
        return QuestProgress.SOLVED
    outcome = evaluate(step.challenge, parameters, run, reader)
    if outcome is Outcome.UNSOLVABLE:
        return QuestProgress.UNSOLVABLE
    if outcome is Outcome.OPEN:
        return QuestProgress.OPEN
    quest.current_step += 1
    if quest.is_complete:
        quest.solved = now_millis()
        return QuestProgress.SOLVED
    return QuestProgress.STEP_SOLVED


# Generators return None when their prerequisite does not hold

QuestGenerator = Callable[
    [UserProjectState, list[SourceFileDetails], BuildParameters, ReportReader, random.Random],
    "Quest | None",
]


def _distinct(
    make: Callable,
    details: SourceFileDetails,
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
    count: int,
    taken: set,
) -> list[Challenge]:
    seen = set(taken)
    challenges = []
    for _ in range(count):
        challenge = make(details, parameters, reader, rng, seen)
        if challenge is None:
            break
        seen.add(challenge.location_key)
        challenges.append(challenge)
    return challenges


def _taken(state: UserProjectState) -> set:
    keys = {c.location_key for c in state.all_challenges()}
    for quest in state.get_current_quests():
        keys.update(step.challenge.location_key for step in quest.steps)
    return keys


def _steps(challenges: list[Challenge], descriptions: list[str]) -> list[QuestStep]:
    return [QuestStep(d, c) for d, c in zip(descriptions, challenges)]


def lines_quest(
    state: UserProjectState,
    files: list[SourceFileDetails],
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
) -> Quest | None:
    taken = _taken(state)
    for details in rng.sample(files, len(files)):
        challenges = _distinct(
            make_line_challenge, details, parameters, reader, rng, STEPS_PER_QUEST, taken
        )
        if len(challenges) == STEPS_PER_QUEST:
            return Quest(
                f"Lines over lines - {details.file_name}",
                _steps(challenges, ["Cover a line"] * STEPS_PER_QUEST),
            )
    return None


def methods_quest(
    state: UserProjectState,
    files: list[SourceFileDetails],
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
) -> Quest | None:
    taken = _taken(state)
    for details in rng.sample(files, len(files)):
        challenges = _distinct(
            make_method_challenge, details, parameters, reader, rng, STEPS_PER_QUEST, taken
        )
        if len(challenges) == STEPS_PER_QUEST:
            return Quest(
                f"More than methods - {details.file_name}",
                _steps(challenges, ["Cover more lines of a method"] * STEPS_PER_QUEST),
            )
    return None


def package_quest(
    state: UserProjectState,
    files: list[SourceFileDetails],
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
) -> Quest | None:
    taken = _taken(state)
    packages: dict[str, list[SourceFileDetails]] = defaultdict(list)
    for details in files:
        packages[details.package_name].append(details)
    for package in rng.sample(sorted(packages), len(packages)):
        challenges = []
        for details in packages[package]:
            challenge = make_class_challenge(details, parameters, reader, rng, taken)
            if challenge is not None:
                challenges.append(challenge)
            if len(challenges) == STEPS_PER_QUEST:
                return Quest(
                    f"Incremental - {package}",
                    _steps(challenges, ["Cover more lines of a class"] * STEPS_PER_QUEST),
                )
    return None


def _chain(
    name: str,
    order: list[tuple[Callable, str]],
    state: UserProjectState,
    files: list[SourceFileDetails],
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
) -> Quest | None:
    """Steps on one class in the given order, for users who solved before."""
    if not state.completed_challenges:
        return None
    taken = _taken(state)
    for details in rng.sample(files, len(files)):
        challenges = []
        for make, _ in order:
            challenge = make(details, parameters, reader, rng, taken)
            if challenge is None:
                break
            challenges.append(challenge)
        if len(challenges) == len(order):
            return Quest(
                f"{name} - {details.file_name}",
                _steps(challenges, [description for _, description in order]),
            )
    return None


def expanding_quest(
    state: UserProjectState,
    files: list[SourceFileDetails],
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
) -> Quest | None:
    order = [
        (make_line_challenge, "Cover a line"),
        (make_method_challenge, "Cover more lines of the method"),
        (make_class_challenge, "Cover more lines of the class"),
    ]
    return _chain("Expanding", order, state, files, parameters, reader, rng)


def decreasing_quest(
    state: UserProjectState,
    files: list[SourceFileDetails],
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
) -> Quest | None:
    order = [
        (make_class_challenge, "Cover more lines of the class"),
        (make_method_challenge, "Cover more lines of a method"),
        (make_line_challenge, "Cover a line"),
    ]
    return _chain("Decreasing", order, state, files, parameters, reader, rng)


def mutation_quest(
    state: UserProjectState,
    files: list[SourceFileDetails],
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
) -> Quest | None:
    taken = _taken(state)
    for details in rng.sample(files, len(files)):
        if len(undetected_mutations(details, reader)) < STEPS_PER_QUEST:
            continue
        challenges = _distinct(
            make_mutation_challenge, details, parameters, reader, rng, STEPS_PER_QUEST, taken
        )
        if len(challenges) == STEPS_PER_QUEST:
            return Quest(
                f"Mutation - {details.file_name}",
                _steps(challenges, ["Kill a mutant"] * STEPS_PER_QUEST),
            )
    return None


GENERATORS: dict[str, QuestGenerator] = {
    "lines": lines_quest,
    "methods": methods_quest,
    "package": package_quest,
    "expanding": expanding_quest,
    "decreasing": decreasing_quest,
    "mutation": mutation_quest,
}


def generate_new_quests(
    user: GameUser,
    state: UserProjectState,
    parameters: BuildParameters,
    files: list[SourceFileDetails],
    reader: ReportReader,
    rng: random.Random,
    on_generated: Callable[[Quest], None] | None = None,
) -> int:
    """Fill the user's current quests up to the project's quest cap.

    A placeholder stands in while no real quest can be built. It is kept
    across builds, so it is announced once, and removed when a real quest
    takes its place.
    """
    with state.lock:
        placeholders = [q for q in state.get_current_quests() if q.is_placeholder]
        candidates = filter_candidates(user_files(user, files), reader, sort=True)
        generated = 0
        while len(state.current_quests) - len(placeholders) < parameters.current_quests_count:
            quest = _build_quest(state, candidates, parameters, reader, rng)
            if quest is None:
                break
            state.new_quest(quest)
            generated += 1
            if on_generated is not None:
                on_generated(quest)

        if len(state.current_quests) > len(placeholders):
            stale = placeholders
        elif placeholders:
            stale = placeholders[1:]
        else:
            stale = []
            quest = placeholder_quest(constants.NO_QUEST)
            state.new_quest(quest)
            generated += 1
            if on_generated is not None:
                on_generated(quest)
        for placeholder in stale:
            state.complete_quest(placeholder)
    return generated


def _build_quest(
    state: UserProjectState,
    candidates: list[SourceFileDetails],
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
) -> Quest | None:
    for kind in rng.sample(sorted(GENERATORS), len(GENERATORS)):
        quest = GENERATORS[kind](state, candidates, parameters, reader, rng)
        if quest is not None:
            return quest
    return None
