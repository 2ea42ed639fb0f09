"""Turn changed files and their reports into new challenges."""

from __future__ import annotations

import logging
import random
from typing import Callable

from pytest_gamify import constants
from pytest_gamify.challenges import (
    Challenge,
    ChallengeKind,
    LineCoverageData,
    MethodCoverageData,
    MutationData,
    build_challenge,
    class_challenge,
    dummy_challenge,
)
from pytest_gamify.lifecycle import GameUser, UserProjectState
from pytest_gamify.models import (
    BuildParameters,
    BuildResult,
    BuildRun,
    MutationStatus,
    SourceFileDetails,
)
from pytest_gamify.reports import ReportReader
from pytest_gamify.selector import choose_kind, filter_candidates, select_by_rank

logger = logging.getLogger(__name__)

Constructor = Callable[
    [SourceFileDetails, BuildParameters, ReportReader, random.Random, set], "Challenge | None"
]


def _context(parameters: BuildParameters) -> dict[str, str]:
    return {"branch": parameters.branch, "project_name": parameters.project_name}


def _pick(
    candidates: list[Challenge], taken: set, rng: random.Random
) -> Challenge | None:
    fresh = [c for c in candidates if c.location_key not in taken]
    if not fresh:
        return None
    return rng.choice(fresh)


def make_class_challenge(
    details: SourceFileDetails,
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
    taken: set,
) -> Challenge | None:
    summary = reader.summary(details)
    if summary is None or summary.lines == 0 or summary.missed_lines == 0:
        return None
    challenge = class_challenge(
        details, summary.lines, summary.missed_lines, **_context(parameters)
    )
    return _pick([challenge], taken, rng)


def make_method_challenge(
    details: SourceFileDetails,
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
    taken: set,
) -> Challenge | None:
    methods = reader.methods(details) or []
    candidates = [
        Challenge(
            ChallengeKind.METHOD,
            MethodCoverageData(m.method_name, m.first_line_id, m.lines, m.missed_lines),
            details=details,
            **_context(parameters),
        )
        for m in methods
        if m.missed_lines > 0
    ]
    return _pick(candidates, taken, rng)


def make_line_challenge(
    details: SourceFileDetails,
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
    taken: set,
) -> Challenge | None:
    lines = reader.lines(details) or []
    candidates = [
        Challenge(
            ChallengeKind.LINE,
            LineCoverageData(
                line.line_number,
                line.content,
                line.coverage_type,
                line.missed_branches,
                line.total_branches,
            ),
            details=details,
            **_context(parameters),
        )
        for line in lines
        if line.coverage_type in ("nc", "pc") and line.content.strip()
    ]
    return _pick(candidates, taken, rng)


def read_source_line(details: SourceFileDetails, line_number: int) -> str:
    try:
        with open(details.file, encoding="utf-8") as f:
            for number, line in enumerate(f, start=1):
                if number == line_number:
                    return line.rstrip("\r\n")
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("Cannot read line %d of %s: %s", line_number, details.file, e)
    return ""


def undetected_mutations(details: SourceFileDetails, reader: ReportReader) -> list:
    records = reader.mutations(details) or []
    return [
        r
        for r in records
        if not r.detected and r.status in (MutationStatus.SURVIVED, MutationStatus.NO_COVERAGE)
    ]


def make_mutation_challenge(
    details: SourceFileDetails,
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
    taken: set,
) -> Challenge | None:
    candidates = [
        Challenge(
            ChallengeKind.MUTATION,
            MutationData(record, read_source_line(details, record.line_number)),
            details=details,
            **_context(parameters),
        )
        for record in undetected_mutations(details, reader)
    ]
    return _pick(candidates, taken, rng)


CONSTRUCTORS: dict[str, Constructor] = {
    ChallengeKind.CLASS.value: make_class_challenge,
    ChallengeKind.METHOD.value: make_method_challenge,
    ChallengeKind.LINE.value: make_line_challenge,
    ChallengeKind.MUTATION.value: make_mutation_challenge,
}


def _kind_weights(
    details: SourceFileDetails, parameters: BuildParameters, reader: ReportReader
) -> dict[str, float]:
    weights = {k: w for k, w in parameters.challenge_weights.items() if k in CONSTRUCTORS}
    # Mutation challenges need mutants of this class in the report
    if not undetected_mutations(details, reader):
        weights.pop(ChallengeKind.MUTATION.value, None)
    return weights


def generate_challenge(
    pool: list[SourceFileDetails],
    parameters: BuildParameters,
    reader: ReportReader,
    rng: random.Random,
    taken: set,
) -> Challenge | None:
    """Build one challenge, dropping files from ``pool`` that yield none."""
    for _ in range(constants.MAX_GENERATION_ATTEMPTS):
        details = select_by_rank(pool, rng, parameters.rank_bias)
        if details is None:
            return None
        kind = choose_kind(_kind_weights(details, parameters, reader), rng)
        challenge = None
        if kind is not None:
            challenge = CONSTRUCTORS[kind](details, parameters, reader, rng, taken)
        if challenge is not None:
            return challenge
        logger.debug("No %s challenge for %s, trying another file", kind, details.file_path)
        pool.remove(details)
    return None


def user_files(user: GameUser, files: list[SourceFileDetails]) -> list[SourceFileDetails]:
    return [f for f in files if user.matches(f.changed_by)]


def generate_new_challenges(
    user: GameUser,
    state: UserProjectState,
    parameters: BuildParameters,
    files: list[SourceFileDetails],
    reader: ReportReader,
    rng: random.Random,
    max_challenges: int | None = None,
    on_generated: Callable[[Challenge], None] | None = None,
) -> int:
    """Fill the user's current challenges up to ``max_challenges``.

    Returns the number of challenges added. A dummy takes the slot when no
    file of the user yields a challenge.
    """
    cap = parameters.current_challenges_count if max_challenges is None else max_challenges
    with state.lock:
        taken = {c.location_key for c in state.all_challenges()}
        pool = filter_candidates(user_files(user, files), reader, sort=True)
        generated = 0

        while len(state.current_challenges) < cap:
            if pool:
                challenge = generate_challenge(pool, parameters, reader, rng, taken)
                message = constants.Error.GENERATION
            else:
                challenge = None
                message = constants.NOTHING_DEVELOPED
            if challenge is None:
                challenge = dummy_challenge(message, **_context(parameters))
                if challenge.location_key in taken:
                    break
            state.new_challenge(challenge)
            taken.add(challenge.location_key)
            generated += 1
            if on_generated is not None:
                on_generated(challenge)
            if challenge.is_dummy:
                break

    logger.debug("Generated %d challenges for %s", generated, user.id)
    return generated


def generate_build_challenge(
    user: GameUser,
    state: UserProjectState,
    parameters: BuildParameters,
    run: BuildRun,
    head_authors: set[str],
) -> Challenge | None:
    """Ask the author of a broken build to fix it."""
    if run.result is BuildResult.SUCCESS or not user.matches(head_authors):
        return None
    with state.lock:
        if any(c.kind is ChallengeKind.BUILD for c in state.get_current_challenges()):
            return None
        challenge = build_challenge(**_context(parameters))
        state.new_challenge(challenge)
    return challenge
