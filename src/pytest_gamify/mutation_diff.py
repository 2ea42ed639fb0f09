"""Reconstruct the mutated version of a source line from a mutation record."""

from __future__ import annotations

import re
from typing import Callable

from pytest_gamify.models import MutationRecord, Mutator

# Operator swaps tried in order; the first operator present in the line wins
BOUNDARY_SWAPS: list[tuple[str, str]] = [
    (" <= ", " < "),
    (" >= ", " > "),
    (" < ", " <= "),
    (" > ", " >= "),
]

NEGATION_SWAPS: list[tuple[str, str]] = [
    (" == ", " != "),
    (" != ", " == "),
    (" <= ", " > "),
    (" >= ", " < "),
    (" < ", " >= "),
    (" > ", " <= "),
]

INCREMENT_SWAPS: list[tuple[str, str]] = [
    ("++", "--"),
    ("--", "++"),
    (" += ", " -= "),
    (" -= ", " += "),
]

# The first operator in table order is replaced, wherever it sits in the line
MATH_SWAPS: list[tuple[str, str]] = [
    (" + ", " - "),
    (" - ", " + "),
    (" * ", " / "),
    (" / ", " * "),
    (" % ", " * "),
    (" && ", " || "),
    (" || ", " && "),
    (" << ", " >> "),
    (" >>> ", " << "),
    (" >> ", " << "),
]

LINE_REMOVED = "line removed"

_CONDITION = re.compile(r"^(\s*(?:if|while)\s*\()(.*)(\)\s*\{?\s*)$")
_RETURN = re.compile(r"\breturn\b\s*(.*?);")
_LAMBDA = re.compile(r"->\s*(.*?);")
_EMPTY_REPLACEMENT = re.compile(r"with (.*?) for ")
_LAST_WORD = re.compile(r"\w+$")
_UNARY_KEYWORDS = ("return", "case", "yield", "throw")


def _first_swap(line: str, swaps: list[tuple[str, str]]) -> str:
    for original, replacement in swaps:
        if original in line:
            return line.replace(original, replacement, 1)
    return ""


def _boundary(line: str, record: MutationRecord) -> str:
    return _first_swap(line, BOUNDARY_SWAPS)


def _negate(line: str, record: MutationRecord) -> str:
    swapped = _first_swap(line, NEGATION_SWAPS)
    if swapped:
        return swapped
    match = _CONDITION.match(line)
    if match is None:
        return ""
    return f"{match.group(1)}!({match.group(2)}){match.group(3)}"


def _increments(line: str, record: MutationRecord) -> str:
    return _first_swap(line, INCREMENT_SWAPS)


def _math(line: str, record: MutationRecord) -> str:
    return _first_swap(line, MATH_SWAPS)


def _is_unary_minus(line: str, index: int) -> bool:
    if line[index + 1:index + 2] in ("-", "="):
        return False
    prefix = line[:index].rstrip()
    if not prefix:
        return True
    if prefix[-1] == "-":
        return False
    if prefix[-1] in ")]":
        return False
    word = _LAST_WORD.search(prefix)
    if word is None:
        return True
    return word.group(0) in _UNARY_KEYWORDS


def _invert_negs(line: str, record: MutationRecord) -> str:
    for index, char in enumerate(line):
        if char == "-" and _is_unary_minus(line, index):
            return line[:index] + line[index + 1:]
    return ""


def _void_call(line: str, record: MutationRecord) -> str:
    return LINE_REMOVED


def _replace_return(line: str, value: str) -> str:
    match = _RETURN.search(line)
    if match is None:
        match = _LAMBDA.search(line)
    if match is None:
        return ""
    return line[:match.start(1)] + value + line[match.end(1):]


def _empty_value(description: str) -> str:
    match = _EMPTY_REPLACEMENT.search(description)
    if match is None:
        return ""
    value = match.group(1).strip()
    if value == '""':
        return value
    if re.fullmatch(r"-?\d+(\.\d+)?", value):
        return "0"
    return f"{value}()"


def _empty_returns(line: str, record: MutationRecord) -> str:
    value = _empty_value(record.description)
    if not value:
        return ""
    return _replace_return(line, value)


def _constant_return(value: str) -> Callable[[str, MutationRecord], str]:
    def render_return(line: str, record: MutationRecord) -> str:
        return _replace_return(line, value)

    return render_return


RENDERERS: dict[Mutator, Callable[[str, MutationRecord], str]] = {
    Mutator.CONDITIONALS_BOUNDARY: _boundary,
    Mutator.NEGATE_CONDITIONALS: _negate,
    Mutator.INCREMENTS: _increments,
    Mutator.MATH: _math,
    Mutator.INVERT_NEGS: _invert_negs,
    Mutator.VOID_METHOD_CALLS: _void_call,
    Mutator.EMPTY_RETURNS: _empty_returns,
    Mutator.FALSE_RETURNS: _constant_return("false"),
    Mutator.TRUE_RETURNS: _constant_return("true"),
    Mutator.NULL_RETURNS: _constant_return("null"),
    Mutator.PRIMITIVE_RETURNS: _constant_return("0"),
}


def render(line: str, record: MutationRecord) -> str:
    """Return ``line`` as the mutant sees it, or ``""`` when it cannot be rebuilt."""
    renderer = RENDERERS.get(record.mutator)
    if renderer is None:
        return ""
    return renderer(line, record)
