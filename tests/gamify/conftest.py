"""Fixtures writing JaCoCo and PIT reports into a throwaway workspace."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from pytest_gamify.models import BuildParameters, SourceFileDetails

CSV_HEADER = (
    "GROUP,PACKAGE,CLASS,INSTRUCTION_MISSED,INSTRUCTION_COVERED,BRANCH_MISSED,"
    "BRANCH_COVERED,LINE_MISSED,LINE_COVERED,COMPLEXITY_MISSED,COMPLEXITY_COVERED,"
    "METHOD_MISSED,METHOD_COVERED"
)

SOURCE_PATH = "src/main/java/com/example/Complex.java"

SOURCE = """package com.example;

public class Complex {
    private double real;
    private double imag;

    public boolean isNegative() {
        if (imag < 0.0) {
            return true;
        }
        return false;
    }
}
"""


class Workspace:
    """A project checkout with helpers to (re)write its reports."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.parameters = BuildParameters(
            project_name="demo", branch="main", workspace=str(root)
        )

    def path(self, relative: str) -> Path:
        target = self.root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        return target

    def write_source(self, relative: str = SOURCE_PATH, text: str = SOURCE) -> SourceFileDetails:
        self.path(relative).write_text(text)
        return SourceFileDetails(relative, self.parameters)

    def details(self, relative: str = SOURCE_PATH) -> SourceFileDetails:
        return SourceFileDetails(relative, self.parameters)

    def write_csv(self, rows: list[tuple[str, str, int, int]]) -> None:
        """Rows of (package, class, missed lines, covered lines)."""
        lines = [CSV_HEADER]
        for package, cls, missed, covered in rows:
            lines.append(f"demo,{package},{cls},{missed * 3},{covered * 3},1,1,{missed},{covered},1,1,1,1")
        self.path(self.parameters.jacoco_csv_path).write_text("\n".join(lines) + "\n")

    def write_methods(
        self, methods: list[tuple[str, int, int]], package: str = "com.example", cls: str = "Complex"
    ) -> None:
        """Methods as (name, lines, missed lines)."""
        rows = []
        for i, (name, lines, missed) in enumerate(methods):
            rows.append(
                f'<tr><td id="a{i}"><a href="{cls}.java.html#L{10 + i}" class="el_method">{name}</a></td>'
                f'<td class="bar" id="b{i}">x</td><td class="ctr2" id="c{i}">50%</td>'
                f'<td class="bar" id="d{i}"></td><td class="ctr2" id="e{i}">n/a</td>'
                f'<td class="ctr1" id="f{i}">0</td><td class="ctr2" id="g{i}">1</td>'
                f'<td class="ctr1" id="h{i}">{missed}</td><td class="ctr2" id="i{i}">{lines}</td>'
                f'<td class="ctr1" id="j{i}">0</td><td class="ctr2" id="k{i}">1</td></tr>'
            )
        html = (
            "<html><body>"
            '<table class="coverage" cellspacing="0" id="coveragetable">'
            "<thead><tr><td>Element</td><td>Missed Instructions</td><td>Cov.</td>"
            "<td>Missed Branches</td><td>Cov.</td><td>Missed</td><td>Cxty</td>"
            "<td>Missed</td><td>Lines</td><td>Missed</td><td>Methods</td></tr></thead>"
            "<tfoot><tr><td>Total</td></tr></tfoot>"
            f"<tbody>{''.join(rows)}</tbody></table></body></html>"
        )
        self.path(
            os.path.join(self.parameters.jacoco_results_path, package, f"{cls}.html")
        ).write_text(html)

    def write_lines(
        self,
        lines: list[tuple[int, str, str, str]],
        package: str = "com.example",
        cls: str = "Complex",
    ) -> None:
        """Lines as (number, coverage class, title, content)."""
        spans = []
        for number, coverage, title, content in lines:
            title_attr = f' title="{title}"' if title else ""
            spans.append(f'<span class="{coverage}" id="L{number}"{title_attr}>{content}</span>')
        html = (
            '<html><body><pre class="source lang-java linenums">'
            + "\n".join(spans)
            + "</pre></body></html>"
        )
        self.path(
            os.path.join(self.parameters.jacoco_results_path, package, f"{cls}.java.html")
        ).write_text(html)

    def write_mutations(self, mutations: list[dict]) -> None:
        entries = []
        for m in mutations:
            entries.append(
                f"<mutation detected='{str(m.get('detected', False)).lower()}' "
                f"status='{m.get('status', 'SURVIVED')}' numberOfTestsRun='{m.get('tests', 1)}'>"
                f"<sourceFile>Complex.java</sourceFile>"
                f"<mutatedClass>{m.get('cls', 'com.example.Complex')}</mutatedClass>"
                f"<mutatedMethod>{m.get('method', 'isNegative')}</mutatedMethod>"
                f"<methodDescription>()Z</methodDescription>"
                f"<lineNumber>{m.get('line', 8)}</lineNumber>"
                f"<mutator>org.pitest.mutationtest.engine.gregor.mutators.{m.get('mutator', 'ConditionalsBoundaryMutator')}</mutator>"
                f"<killingTest>{m.get('killing_test', '')}</killingTest>"
                f"<description>{m.get('description', 'changed conditional boundary')}</description>"
                "</mutation>"
            )
        xml = "<?xml version='1.0' encoding='UTF-8'?><mutations>" + "".join(entries) + "</mutations>"
        self.path(self.parameters.mutation_report_path).write_text(xml)


@pytest.fixture
def workspace(tmp_path):
    return Workspace(tmp_path)
