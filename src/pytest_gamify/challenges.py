"""Challenge variants and the baselines they capture at generation time."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from pytest_gamify.models import MutationRecord, SourceFileDetails, now_millis


class ChallengeKind(str, Enum):
    CLASS = "class"
    METHOD = "method"
    LINE = "line"
    MUTATION = "mutation"
    BUILD = "build"
    DUMMY = "dummy"


@dataclass(frozen=True)
class ClassCoverageData:
    lines: int
    missed_lines: int
    coverage: float


@dataclass(frozen=True)
class MethodCoverageData:
    method_name: str
    first_line_id: str
    lines: int
    missed_lines: int

    @property
    def covered_fraction(self) -> float:
        if self.lines == 0:
            return 1.0
        return (self.lines - self.missed_lines) / self.lines


@dataclass(frozen=True)
class LineCoverageData:
    line_number: int
    line_content: str
    coverage_type: str
    missed_branches: int = 0
    total_branches: int = 0


@dataclass(frozen=True)
class MutationData:
    record: MutationRecord
    original_line: str = ""


@dataclass(frozen=True)
class BuildData:
    pass


@dataclass(frozen=True)
class DummyData:
    message: str


Payload = Union[
    ClassCoverageData, MethodCoverageData, LineCoverageData, MutationData, BuildData, DummyData
]

PAYLOAD_TYPES: dict[ChallengeKind, type] = {
    ChallengeKind.CLASS: ClassCoverageData,
    ChallengeKind.METHOD: MethodCoverageData,
    ChallengeKind.LINE: LineCoverageData,
    ChallengeKind.MUTATION: MutationData,
    ChallengeKind.BUILD: BuildData,
    ChallengeKind.DUMMY: DummyData,
}


@dataclass(eq=False)
class Challenge:
    """One test-improvement goal owned by exactly one lifecycle list.

    Challenges compare by identity; two challenges on the same location are
    told apart by ``location_key``.
    """

    kind: ChallengeKind
    payload: Payload
    details: SourceFileDetails | None = None
    branch: str = ""
    project_name: str = ""
    created: int = field(default_factory=now_millis)
    solved: int = 0
    rejected: int = 0
    stored: int = 0
    solved_coverage: float = 0.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        expected = PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.kind.value} challenge needs {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )

    @property
    def is_dummy(self) -> bool:
        return self.kind is ChallengeKind.DUMMY

    @property
    def is_open(self) -> bool:
        return not (self.solved or self.rejected or self.stored)

    @property
    def location_key(self) -> tuple[str, str, object]:
        """Identifies the code location so no location is challenged twice."""
        qualified = self.details.qualified_name if self.details is not None else ""
        payload = self.payload
        if isinstance(payload, MethodCoverageData):
            return (self.kind.value, qualified, payload.method_name)
        if isinstance(payload, LineCoverageData):
            return (self.kind.value, qualified, payload.line_number)
        if isinstance(payload, MutationData):
            return (self.kind.value, qualified, payload.record)
        if isinstance(payload, DummyData):
            return (self.kind.value, qualified, payload.message)
        return (self.kind.value, qualified, "")


def class_challenge(details: SourceFileDetails, lines: int, missed_lines: int, **kwargs) -> Challenge:  # type: ignore[no-untyped-def]
    coverage = 1.0 if lines == 0 else (lines - missed_lines) / lines
    return Challenge(
        ChallengeKind.CLASS,
        ClassCoverageData(lines=lines, missed_lines=missed_lines, coverage=coverage),
        details=details,
        **kwargs,
    )


def dummy_challenge(message: str, **kwargs) -> Challenge:  # type: ignore[no-untyped-def]
    return Challenge(ChallengeKind.DUMMY, DummyData(message), **kwargs)


def build_challenge(**kwargs) -> Challenge:  # type: ignore[no-untyped-def]
    return Challenge(ChallengeKind.BUILD, BuildData(), **kwargs)
