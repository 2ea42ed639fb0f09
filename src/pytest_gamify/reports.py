"""Readers for JaCoCo coverage and PIT mutation reports."""

from __future__ import annotations

import csv
import logging
import os
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable
from xml.etree import ElementTree

from bs4 import BeautifulSoup

from pytest_gamify.models import (
    ClassSummary,
    LineInfo,
    MethodInfo,
    MutationRecord,
    MutationStatus,
    Mutator,
    SourceFileDetails,
)

logger = logging.getLogger(__name__)

_BRANCHES_MISSED = re.compile(r"(\d+) of (\d+) branches missed")
_ALL_BRANCHES = re.compile(r"All (\d+) branches (missed|covered)")

# Column positions in the JaCoCo per-method table
_LINES_MISSED_COLUMN = 7
_LINES_COLUMN = 8


class ReportUnavailable(Exception):
    """A report is missing, unreadable or malformed."""


def _to_int(text: str) -> int:
    cleaned = text.strip().replace(",", "").replace(".", "")
    return int(cleaned) if cleaned else 0


def _read_text(path: str) -> str:
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ReportUnavailable(f"{path}: {e}") from e


def read_class_summaries(csv_path: str) -> dict[str, ClassSummary]:
    """Parse the JaCoCo CSV summary into rows keyed by qualified class name."""
    content = _read_text(csv_path)
    summaries: dict[str, ClassSummary] = {}
    try:
        for row in csv.DictReader(content.splitlines()):
            line_missed = int(row["LINE_MISSED"])
            line_covered = int(row["LINE_COVERED"])
            summary = ClassSummary(
                package_name=row["PACKAGE"],
                class_name=row["CLASS"],
                lines=line_missed + line_covered,
                missed_lines=line_missed,
                branches=int(row["BRANCH_MISSED"]) + int(row["BRANCH_COVERED"]),
                missed_branches=int(row["BRANCH_MISSED"]),
                instructions=int(row["INSTRUCTION_MISSED"]) + int(row["INSTRUCTION_COVERED"]),
                missed_instructions=int(row["INSTRUCTION_MISSED"]),
                methods=int(row["METHOD_MISSED"]) + int(row["METHOD_COVERED"]),
                missed_methods=int(row["METHOD_MISSED"]),
            )
            summaries[summary.qualified_name] = summary
    except (KeyError, TypeError, ValueError) as e:
        raise ReportUnavailable(f"{csv_path}: malformed summary ({e})") from e
    return summaries


def read_method_entries(html_path: str) -> list[MethodInfo]:
    """Parse the per-method table of a JaCoCo class page."""
    soup = BeautifulSoup(_read_text(html_path), "html.parser")
    table = soup.find("table", id="coveragetable")
    if table is None or table.tbody is None:
        raise ReportUnavailable(f"{html_path}: no coverage table")

    methods: list[MethodInfo] = []
    try:
        for row in table.tbody.find_all("tr"):
            cells = row.find_all("td")
            anchor = cells[0].find("a")
            name = cells[0].get_text(strip=True)
            first_line = ""
            if anchor is not None and "#" in anchor.get("href", ""):
                first_line = anchor["href"].split("#", 1)[1]
            methods.append(
                MethodInfo(
                    method_name=name,
                    first_line_id=first_line,
                    lines=_to_int(cells[_LINES_COLUMN].get_text()),
                    missed_lines=_to_int(cells[_LINES_MISSED_COLUMN].get_text()),
                )
            )
    except (IndexError, ValueError) as e:
        raise ReportUnavailable(f"{html_path}: malformed method table ({e})") from e
    return methods


def _branch_counts(title: str | None) -> tuple[int, int]:
    if not title:
        return 0, 0
    match = _BRANCHES_MISSED.search(title)
    if match:
        return int(match.group(1)), int(match.group(2))
    match = _ALL_BRANCHES.search(title)
    if match:
        total = int(match.group(1))
        return (total if match.group(2) == "missed" else 0), total
    return 0, 0


def read_line_entries(html_path: str) -> list[LineInfo]:
    """Parse the annotated source page of a class into per-line coverage."""
    soup = BeautifulSoup(_read_text(html_path), "html.parser")
    lines: list[LineInfo] = []
    for span in soup.find_all("span", id=re.compile(r"^L\d+$")):
        classes = span.get("class") or []
        coverage_type = next((c for c in classes if c in ("fc", "pc", "nc")), None)
        if coverage_type is None:
            continue
        missed, total = _branch_counts(span.get("title"))
        lines.append(
            LineInfo(
                line_number=int(span["id"][1:]),
                content=span.get_text(),
                coverage_type=coverage_type,
                missed_branches=missed,
                total_branches=total,
            )
        )
    return lines


def _child_text(element: ElementTree.Element, tag: str) -> str:
    child = element.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def parse_mutation(element: ElementTree.Element) -> MutationRecord:
    """Convert one ``<mutation>`` element into a record."""
    return MutationRecord(
        source_file=_child_text(element, "sourceFile"),
        mutated_class=_child_text(element, "mutatedClass"),
        mutated_method=_child_text(element, "mutatedMethod"),
        method_description=_child_text(element, "methodDescription"),
        line_number=int(_child_text(element, "lineNumber") or 0),
        mutator=Mutator.parse(_child_text(element, "mutator")),
        description=_child_text(element, "description"),
        detected=element.get("detected", "false").lower() == "true",
        status=MutationStatus.parse(element.get("status")),
        number_of_tests_run=int(element.get("numberOfTestsRun") or 0),
        killing_test=_child_text(element, "killingTest"),
    )


def parse_mutation_line(line: str) -> MutationRecord:
    """Parse a single serialized ``<mutation>`` element."""
    try:
        return parse_mutation(ElementTree.fromstring(line))
    except (ElementTree.ParseError, ValueError) as e:
        raise ReportUnavailable(f"malformed mutation: {e}") from e


def read_mutations(xml_path: str) -> list[MutationRecord]:
    """Parse every mutation of a PIT XML report."""
    if not os.path.isfile(xml_path):
        raise ReportUnavailable(f"{xml_path}: does not exist")
    try:
        root = ElementTree.parse(xml_path).getroot()
        return [parse_mutation(element) for element in root.iter("mutation")]
    except (ElementTree.ParseError, OSError, ValueError) as e:
        raise ReportUnavailable(f"{xml_path}: {e}") from e


class ReportReader:
    """Shared, memoising access to the reports of one build.

    Every file is parsed at most once. Parsing runs on a small executor so a
    slow filesystem is bounded by ``timeout``; an absent, broken or timed out
    report is returned as ``None``.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="gamify-reports")
        self._futures: dict[tuple[str, str], Future[Any]] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> ReportReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _load(self, kind: str, path: str, parser: Callable[[str], Any]) -> Any:
        key = (kind, path)
        with self._lock:
            future = self._futures.get(key)
            if future is None:
                future = self._executor.submit(parser, path)
                self._futures[key] = future
        try:
            return future.result(timeout=self.timeout)
        except ReportUnavailable as e:
            logger.debug("Report unavailable: %s", e)
        except FutureTimeoutError:
            logger.warning("Reading %s timed out after %.1fs", path, self.timeout)
        return None

    def summaries(self, details: SourceFileDetails) -> dict[str, ClassSummary] | None:
        return self._load("csv", details.jacoco_csv_file, read_class_summaries)

    def summary(self, details: SourceFileDetails) -> ClassSummary | None:
        summaries = self.summaries(details)
        if summaries is None:
            return None
        return summaries.get(details.qualified_name)

    def coverage(self, details: SourceFileDetails) -> float:
        """Line coverage of the class, 0 without a summary; cached on ``details``."""
        summary = self.summary(details)
        details.coverage = summary.coverage if summary is not None else 0.0
        return details.coverage

    def methods(self, details: SourceFileDetails) -> list[MethodInfo] | None:
        return self._load("methods", details.jacoco_method_file, read_method_entries)

    def lines(self, details: SourceFileDetails) -> list[LineInfo] | None:
        return self._load("lines", details.jacoco_source_file, read_line_entries)

    def all_mutations(self, details: SourceFileDetails) -> list[MutationRecord] | None:
        return self._load("mutations", details.mutation_report, read_mutations)

    def mutations(self, details: SourceFileDetails) -> list[MutationRecord] | None:
        """Mutations of the class of ``details``, nested classes included."""
        records = self.all_mutations(details)
        if records is None:
            return None
        return [r for r in records if r.outer_class == details.qualified_name]

    def has_mutation_report(self, details: SourceFileDetails) -> bool:
        return self.all_mutations(details) is not None
