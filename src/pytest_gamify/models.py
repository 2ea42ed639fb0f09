"""Data models for coverage, mutation and build information."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field, replace
from enum import Enum

from pytest_gamify import constants


def now_millis() -> int:
    return int(time.time() * 1000)


class BuildResult(str, Enum):
    """Outcome of the build a pipeline run belongs to."""

    SUCCESS = "SUCCESS"
    UNSTABLE = "UNSTABLE"
    FAILURE = "FAILURE"
    ABORTED = "ABORTED"


@dataclass
class BuildParameters:
    """Per-project configuration and the context of the current build."""

    project_name: str = ""
    branch: str = ""
    workspace: str = ""
    jacoco_results_path: str = constants.JACOCO_RESULTS_PATH
    jacoco_csv_path: str = constants.JACOCO_CSV_PATH
    mutation_report_path: str = constants.MUTATION_REPORT_PATH
    current_challenges_count: int = constants.CURRENT_CHALLENGES
    current_quests_count: int = constants.CURRENT_QUESTS
    stored_challenges_count: int = constants.STORED_CHALLENGES
    search_commit_count: int = constants.SEARCH_COMMIT_COUNT
    can_send_challenge: bool = True
    report_timeout: float = constants.REPORT_TIMEOUT
    rank_bias: float = constants.RANK_BIAS
    challenge_weights: dict[str, float] = field(
        default_factory=lambda: dict(constants.CHALLENGE_WEIGHTS)
    )

    def __post_init__(self) -> None:
        if self.current_challenges_count <= 0:
            self.current_challenges_count = constants.CURRENT_CHALLENGES
        if self.current_quests_count <= 0:
            self.current_quests_count = constants.CURRENT_QUESTS
        if self.stored_challenges_count < 0:
            self.stored_challenges_count = constants.STORED_CHALLENGES
        if self.search_commit_count <= 0:
            self.search_commit_count = constants.SEARCH_COMMIT_COUNT

    def for_workspace(self, workspace: str) -> BuildParameters:
        return replace(self, workspace=workspace)


@dataclass(frozen=True)
class BuildRun:
    """The build whose reports are evaluated."""

    number: int
    result: BuildResult
    started: int = field(default_factory=now_millis)


def compute_package_name(file_path: str) -> str:
    """Derive the dotted package of a source file from its repository path.

    ``src/main/java/com/example/Complex.java`` becomes ``com.example``.
    Without a ``src`` segment every directory counts as part of the package.
    """
    parts = [p for p in file_path.replace("\\", "/").split("/") if p]
    directories = parts[:-1]
    if "src" in directories:
        directories = directories[directories.index("src") + 1:]
        if directories and directories[0] in ("main", "test"):
            directories = directories[1:]
        if directories and directories[0] in constants.SOURCE_ROOTS:
            directories = directories[1:]
    return ".".join(directories)


class SourceFileDetails:
    """A source file taken from the VCS history of the project.

    Name, package and extension are derived once from ``file_path`` and never
    recomputed. Only the workspace may change between builds (see ``update``).
    """

    def __init__(self, file_path: str, parameters: BuildParameters) -> None:
        self.file_path = file_path.replace("\\", "/")
        self.parameters = parameters
        last_part = self.file_path.rsplit("/", 1)[-1]
        self.file_name = last_part.split(".")[0]
        self.file_extension = last_part[len(self.file_name) + 1:]
        self.package_name = compute_package_name(self.file_path)
        self.changed_by: set[str] = set()
        # Line coverage in [0, 1], filled in by ReportReader.coverage
        self.coverage = 0.0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SourceFileDetails):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __repr__(self) -> str:
        return f"SourceFileDetails({self.file_path!r})"

    def _key(self) -> tuple[str, str, str, str]:
        return (self.file_path, self.package_name, self.file_name, self.file_extension)

    @property
    def qualified_name(self) -> str:
        if not self.package_name:
            return self.file_name
        return f"{self.package_name}.{self.file_name}"

    @property
    def file(self) -> str:
        return os.path.join(self.parameters.workspace, self.file_path)

    @property
    def jacoco_csv_file(self) -> str:
        return os.path.join(self.parameters.workspace, self.parameters.jacoco_csv_path)

    @property
    def jacoco_method_file(self) -> str:
        return os.path.join(
            self.parameters.workspace,
            self.parameters.jacoco_results_path,
            self.package_name,
            f"{self.file_name}.html",
        )

    @property
    def jacoco_source_file(self) -> str:
        return os.path.join(
            self.parameters.workspace,
            self.parameters.jacoco_results_path,
            self.package_name,
            f"{self.file_name}.{self.file_extension}.html",
        )

    @property
    def mutation_report(self) -> str:
        return os.path.join(self.parameters.workspace, self.parameters.mutation_report_path)

    def add_user(self, identity: str) -> None:
        self.changed_by.add(identity)

    def files_exist(self) -> bool:
        return os.path.isfile(self.file)

    def reports_exist(self) -> bool:
        return os.path.isfile(self.jacoco_method_file) and os.path.isfile(self.jacoco_source_file)

    def update(self, parameters: BuildParameters) -> SourceFileDetails:
        """Point the file at the workspace of the current build."""
        if parameters.workspace != self.parameters.workspace:
            self.parameters = self.parameters.for_workspace(parameters.workspace)
            self.coverage = 0.0
        return self


@dataclass(frozen=True)
class ClassSummary:
    """One row of the coverage summary."""

    package_name: str
    class_name: str
    lines: int
    missed_lines: int
    branches: int = 0
    missed_branches: int = 0
    instructions: int = 0
    missed_instructions: int = 0
    methods: int = 0
    missed_methods: int = 0

    @property
    def qualified_name(self) -> str:
        if not self.package_name:
            return self.class_name
        return f"{self.package_name}.{self.class_name}"

    @property
    def coverage(self) -> float:
        # Classes without executable lines count as fully covered
        if self.lines == 0:
            return 1.0
        return (self.lines - self.missed_lines) / self.lines


@dataclass(frozen=True)
class MethodInfo:
    """One method of a class from the per-method table."""

    method_name: str
    first_line_id: str
    lines: int
    missed_lines: int

    def __post_init__(self) -> None:
        if self.missed_lines > self.lines:
            raise ValueError(
                f"{self.method_name}: missed lines {self.missed_lines} exceed lines {self.lines}"
            )


@dataclass(frozen=True)
class LineInfo:
    """Coverage of one source line: ``fc`` full, ``pc`` partial, ``nc`` none."""

    line_number: int
    content: str
    coverage_type: str
    missed_branches: int = 0
    total_branches: int = 0

    @property
    def missed(self) -> int:
        if self.coverage_type == "fc":
            return 0
        if self.coverage_type == "pc":
            return self.missed_branches
        return max(1, self.total_branches)


class MutationStatus(str, Enum):
    NO_COVERAGE = "NO_COVERAGE"
    SURVIVED = "SURVIVED"
    KILLED = "KILLED"

    @classmethod
    def parse(cls, value: str | None) -> MutationStatus:
        try:
            return cls(value)
        except ValueError:
            return cls.KILLED


class Mutator(str, Enum):
    CONDITIONALS_BOUNDARY = "ConditionalsBoundaryMutator"
    INCREMENTS = "IncrementsMutator"
    INVERT_NEGS = "InvertNegsMutator"
    MATH = "MathMutator"
    NEGATE_CONDITIONALS = "NegateConditionalsMutator"
    VOID_METHOD_CALLS = "VoidMethodCallMutator"
    EMPTY_RETURNS = "EmptyObjectReturnValsMutator"
    FALSE_RETURNS = "BooleanFalseReturnValsMutator"
    TRUE_RETURNS = "BooleanTrueReturnValsMutator"
    NULL_RETURNS = "NullReturnValsMutator"
    PRIMITIVE_RETURNS = "PrimitiveReturnsMutator"
    UNKNOWN = "UnknownMutator"

    @classmethod
    def parse(cls, value: str | None) -> Mutator:
        """Map a fully qualified mutator class to its kind."""
        simple_name = (value or "").strip().rsplit(".", 1)[-1]
        try:
            return cls(simple_name)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class MutationRecord:
    """One mutant of the mutation report.

    Equality covers the fields that identify the mutant. The outcome of a run
    (detected, status, tests run, killing test) is excluded so that the same
    mutant compares equal across two reports.
    """

    source_file: str
    mutated_class: str
    mutated_method: str
    method_description: str
    line_number: int
    mutator: Mutator
    description: str
    detected: bool = field(default=False, compare=False)
    status: MutationStatus = field(default=MutationStatus.KILLED, compare=False)
    number_of_tests_run: int = field(default=0, compare=False)
    killing_test: str = field(default="", compare=False)

    @property
    def outer_class(self) -> str:
        return self.mutated_class.split("$", 1)[0]


@dataclass
class UserSummary:
    """What one build changed for one participant."""

    user_id: str
    generated: int = 0
    solved: int = 0
    unsolvable: int = 0
    quests_generated: int = 0
    quest_steps_solved: int = 0
    quests_solved: int = 0
    achievements: list[str] = field(default_factory=list)
    score: int = 0
    failed: bool = False


@dataclass
class BuildSummary:
    project_name: str
    build_number: int
    result: BuildResult
    users: list[UserSummary] = field(default_factory=list)
    notifications_sent: int = 0
    wall_time_seconds: float = 0.0

    @property
    def generated(self) -> int:
        return sum(u.generated for u in self.users)

    @property
    def solved(self) -> int:
        return sum(u.solved for u in self.users)

    @property
    def unsolvable(self) -> int:
        return sum(u.unsolvable for u in self.users)

    @property
    def failed(self) -> list[UserSummary]:
        return [u for u in self.users if u.failed]
