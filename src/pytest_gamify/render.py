"""Human-readable and XML renderings of challenges and quests.

``escaped`` strings are stable and are what a UI hands back to identify the
challenge a user selected.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Callable, cast
from xml.sax.saxutils import quoteattr

from pytest_gamify import constants, mutation_diff
from pytest_gamify.challenges import (
    Challenge,
    ChallengeKind,
    ClassCoverageData,
    DummyData,
    LineCoverageData,
    MethodCoverageData,
    MutationData,
)
from pytest_gamify.evaluation import score
from pytest_gamify.models import SourceFileDetails

if TYPE_CHECKING:
    from pytest_gamify.quests import Quest

_TAG = re.compile(r"<[^>]+>")

XML_TAGS: dict[ChallengeKind, str] = {
    ChallengeKind.CLASS: "ClassCoverageChallenge",
    ChallengeKind.METHOD: "MethodCoverageChallenge",
    ChallengeKind.LINE: "LineCoverageChallenge",
    ChallengeKind.MUTATION: "MutationTestChallenge",
    ChallengeKind.BUILD: "BuildChallenge",
    ChallengeKind.DUMMY: "DummyChallenge",
}


def _location(challenge: Challenge) -> str:
    details = cast(SourceFileDetails, challenge.details)
    return (
        f"in class <b>{details.file_name}</b> in package <b>{details.package_name}</b> "
        f"(created for branch {challenge.branch})"
    )


def _describe_class(challenge: Challenge) -> str:
    return f"Write a test to cover more lines {_location(challenge)}"


def _describe_method(challenge: Challenge) -> str:
    payload = cast(MethodCoverageData, challenge.payload)
    return (
        f"Write a test to cover more lines of method <b>{payload.method_name}</b> "
        f"{_location(challenge)}"
    )


def _describe_line(challenge: Challenge) -> str:
    payload = cast(LineCoverageData, challenge.payload)
    verb = "fully cover" if payload.coverage_type == "pc" else "cover"
    return (
        f"Write a test to {verb} line <b>{payload.line_number}</b> "
        f"{_location(challenge)}"
    )


def _describe_mutation(challenge: Challenge) -> str:
    record = cast(MutationData, challenge.payload).record
    # Several mutants can share a line; mutator and description tell them apart
    return (
        f"Write a test to kill the mutant <i>{record.description}</i> ({record.mutator.value}) "
        f"at line <b>{record.line_number}</b> of method <b>{record.mutated_method}</b> "
        f"{_location(challenge)}"
    )


def _describe_dummy(challenge: Challenge) -> str:
    return cast(DummyData, challenge.payload).message


DESCRIBERS: dict[ChallengeKind, Callable[[Challenge], str]] = {
    ChallengeKind.CLASS: _describe_class,
    ChallengeKind.METHOD: _describe_method,
    ChallengeKind.LINE: _describe_line,
    ChallengeKind.MUTATION: _describe_mutation,
    ChallengeKind.BUILD: lambda challenge: "Let the build run successfully",
    ChallengeKind.DUMMY: _describe_dummy,
}


def describe(challenge: Challenge) -> str:
    """Single-line description with HTML emphasis."""
    return DESCRIBERS[challenge.kind](challenge)


def strip_tags(text: str) -> str:
    return _TAG.sub("", text)


def escaped(challenge: Challenge) -> str:
    return strip_tags(describe(challenge))


def mutation_snippet(challenge: Challenge) -> str:
    """The mutated source line, or a hint when it cannot be reconstructed."""
    payload = cast(MutationData, challenge.payload)
    mutated = mutation_diff.render(payload.original_line, payload.record)
    return mutated if mutated else constants.MUTATION_FALLBACK


def _variant_attributes(challenge: Challenge) -> dict[str, object]:
    payload = challenge.payload
    if isinstance(payload, ClassCoverageData):
        return {"coverage": f"{payload.coverage:.2f}", "coverageAtSolved": f"{challenge.solved_coverage:.2f}"}
    if isinstance(payload, MethodCoverageData):
        return {"method": payload.method_name, "lines": payload.lines, "missedLines": payload.missed_lines}
    if isinstance(payload, LineCoverageData):
        return {"line": payload.line_number, "coverageType": payload.coverage_type}
    if isinstance(payload, MutationData):
        return {
            "method": payload.record.mutated_method,
            "line": payload.record.line_number,
            "mutator": payload.record.mutator.value,
            "status": payload.record.status.value,
        }
    if isinstance(payload, DummyData):
        return {"message": payload.message}
    return {}


def to_xml(challenge: Challenge, reason: str = "", indentation: int = 0) -> str:
    attributes: dict[str, object] = {
        "project": challenge.project_name,
        "branch": challenge.branch,
    }
    if challenge.details is not None:
        attributes["class"] = challenge.details.file_name
        attributes["package"] = challenge.details.package_name
    attributes.update(created=challenge.created, solved=challenge.solved)
    attributes.update(_variant_attributes(challenge))
    attributes["score"] = score(challenge)
    if reason:
        attributes["reason"] = reason
    rendered = " ".join(f"{key}={quoteattr(str(value))}" for key, value in attributes.items())
    return f"{' ' * indentation}<{XML_TAGS[challenge.kind]} {rendered}/>"


def quest_to_xml(quest: Quest, reason: str = "", indentation: int = 0) -> str:
    attributes = (
        f"name={quoteattr(quest.name)} created={quoteattr(str(quest.created))} "
        f"solved={quoteattr(str(quest.solved))} currentStep={quoteattr(str(quest.current_step))}"
    )
    if reason:
        attributes += f" reason={quoteattr(reason)}"
    pad = " " * indentation
    if not quest.steps:
        return f"{pad}<Quest {attributes}/>"
    lines = [f"{pad}<Quest {attributes}>"]
    lines.extend(to_xml(step.challenge, indentation=indentation + 4) for step in quest.steps)
    lines.append(f"{pad}</Quest>")
    return "\n".join(lines)
