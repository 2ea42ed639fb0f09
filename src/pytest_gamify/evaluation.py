"""Score, solvability and solved checks per challenge kind."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, cast

from pytest_gamify.challenges import (
    Challenge,
    ChallengeKind,
    ClassCoverageData,
    LineCoverageData,
    MethodCoverageData,
    MutationData,
)
from pytest_gamify.models import (
    BuildParameters,
    BuildResult,
    BuildRun,
    LineInfo,
    MutationStatus,
    now_millis,
)
from pytest_gamify.reports import ReportReader

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    OPEN = "open"
    SOLVED = "solved"
    UNSOLVABLE = "unsolvable"


Check = Callable[[Challenge, BuildRun, ReportReader], bool]


# Scores

def _class_score(challenge: Challenge) -> int:
    payload = cast(ClassCoverageData, challenge.payload)
    return 2 if payload.coverage >= 0.8 else 1


def _method_score(challenge: Challenge) -> int:
    payload = cast(MethodCoverageData, challenge.payload)
    return 3 if payload.covered_fraction > 0.8 else 2


def _line_score(challenge: Challenge) -> int:
    payload = cast(LineCoverageData, challenge.payload)
    return 3 if payload.coverage_type == "pc" else 2


def _mutation_score(challenge: Challenge) -> int:
    payload = cast(MutationData, challenge.payload)
    return 5 if payload.record.status is MutationStatus.SURVIVED else 4


SCORES: dict[ChallengeKind, Callable[[Challenge], int]] = {
    ChallengeKind.CLASS: _class_score,
    ChallengeKind.METHOD: _method_score,
    ChallengeKind.LINE: _line_score,
    ChallengeKind.MUTATION: _mutation_score,
    ChallengeKind.BUILD: lambda challenge: 1,
    ChallengeKind.DUMMY: lambda challenge: 0,
}


def score(challenge: Challenge) -> int:
    return SCORES[challenge.kind](challenge)


# Line lookup

def find_line(lines: list[LineInfo], baseline: LineCoverageData) -> LineInfo | None:
    """The line with the baseline text closest to its original position."""
    wanted = baseline.line_content.strip()
    matches = [line for line in lines if line.content.strip() == wanted]
    if not matches:
        return None
    return min(matches, key=lambda line: abs(line.line_number - baseline.line_number))


def _baseline_line(payload: LineCoverageData) -> LineInfo:
    return LineInfo(
        line_number=payload.line_number,
        content=payload.line_content,
        coverage_type=payload.coverage_type,
        missed_branches=payload.missed_branches,
        total_branches=payload.total_branches,
    )


# Solvability

def _file_exists(challenge: Challenge) -> bool:
    return challenge.details is not None and challenge.details.files_exist()


def _class_solvable(challenge: Challenge, run: BuildRun, reader: ReportReader) -> bool:
    if not _file_exists(challenge):
        return False
    summaries = reader.summaries(challenge.details)
    if summaries is None:
        return True
    return challenge.details.qualified_name in summaries


def _method_solvable(challenge: Challenge, run: BuildRun, reader: ReportReader) -> bool:
    payload = cast(MethodCoverageData, challenge.payload)
    if not _file_exists(challenge):
        return False
    methods = reader.methods(challenge.details)
    if methods is None:
        return True
    return any(m.method_name == payload.method_name for m in methods)


def _line_solvable(challenge: Challenge, run: BuildRun, reader: ReportReader) -> bool:
    payload = cast(LineCoverageData, challenge.payload)
    if not _file_exists(challenge):
        return False
    lines = reader.lines(challenge.details)
    if lines is None:
        return True
    return find_line(lines, payload) is not None


def _mutation_solvable(challenge: Challenge, run: BuildRun, reader: ReportReader) -> bool:
    return _file_exists(challenge)


SOLVABLE: dict[ChallengeKind, Check] = {
    ChallengeKind.CLASS: _class_solvable,
    ChallengeKind.METHOD: _method_solvable,
    ChallengeKind.LINE: _line_solvable,
    ChallengeKind.MUTATION: _mutation_solvable,
    ChallengeKind.BUILD: lambda challenge, run, reader: True,
    ChallengeKind.DUMMY: lambda challenge, run, reader: True,
}


# Solved checks compare the current report against the generation baseline

def _class_solved(challenge: Challenge, run: BuildRun, reader: ReportReader) -> bool:
    payload = cast(ClassCoverageData, challenge.payload)
    summary = reader.summary(challenge.details)
    if summary is None:
        return False
    return summary.missed_lines < payload.missed_lines


def _method_solved(challenge: Challenge, run: BuildRun, reader: ReportReader) -> bool:
    payload = cast(MethodCoverageData, challenge.payload)
    methods = reader.methods(challenge.details)
    if methods is None:
        return False
    for method in methods:
        if method.method_name == payload.method_name:
            return method.missed_lines < payload.missed_lines
    return False


def _line_solved(challenge: Challenge, run: BuildRun, reader: ReportReader) -> bool:
    payload = cast(LineCoverageData, challenge.payload)
    lines = reader.lines(challenge.details)
    if lines is None:
        return False
    current = find_line(lines, payload)
    if current is None:
        return False
    return current.missed < _baseline_line(payload).missed


def _mutation_solved(challenge: Challenge, run: BuildRun, reader: ReportReader) -> bool:
    payload = cast(MutationData, challenge.payload)
    records = reader.mutations(challenge.details)
    if records is None:
        return False
    for record in records:
        if record == payload.record:
            return record.detected
    # The mutant disappeared from a present report
    return True


SOLVED: dict[ChallengeKind, Check] = {
    ChallengeKind.CLASS: _class_solved,
    ChallengeKind.METHOD: _method_solved,
    ChallengeKind.LINE: _line_solved,
    ChallengeKind.MUTATION: _mutation_solved,
    ChallengeKind.BUILD: lambda challenge, run, reader: run.result is BuildResult.SUCCESS,
    ChallengeKind.DUMMY: lambda challenge, run, reader: False,
}


def _on_other_branch(challenge: Challenge, parameters: BuildParameters) -> bool:
    return bool(challenge.branch) and challenge.branch != parameters.branch


def is_solvable(
    challenge: Challenge, parameters: BuildParameters, run: BuildRun, reader: ReportReader
) -> bool:
    if _on_other_branch(challenge, parameters):
        return True
    if challenge.details is not None:
        challenge.details.update(parameters)
    return SOLVABLE[challenge.kind](challenge, run, reader)


def is_solved(
    challenge: Challenge, parameters: BuildParameters, run: BuildRun, reader: ReportReader
) -> bool:
    if _on_other_branch(challenge, parameters):
        return False
    if challenge.details is not None:
        challenge.details.update(parameters)
    return SOLVED[challenge.kind](challenge, run, reader)


def _record_solve(challenge: Challenge, reader: ReportReader) -> None:
    challenge.solved = now_millis()
    if challenge.details is None:
        return
    summary = reader.summary(challenge.details)
    if summary is not None:
        challenge.solved_coverage = summary.coverage
        challenge.details.coverage = summary.coverage


def evaluate(
    challenge: Challenge, parameters: BuildParameters, run: BuildRun, reader: ReportReader
) -> Outcome:
    """Check one open challenge against the current build.

    A solved challenge is stamped with its solve time and coverage. Errors
    while reading reports leave the challenge open for the next build.
    """
    try:
        if not is_solvable(challenge, parameters, run, reader):
            return Outcome.UNSOLVABLE
        if not is_solved(challenge, parameters, run, reader):
            return Outcome.OPEN
        _record_solve(challenge, reader)
    except Exception:
        logger.exception("Could not evaluate %s challenge %s", challenge.kind.value, challenge.id)
        return Outcome.OPEN
    return Outcome.SOLVED
