"""Candidate filtering and rank-weighted random selection."""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING, Callable, Iterable, Sequence, TypeVar

from pytest_gamify import constants
from pytest_gamify.models import SourceFileDetails

if TYPE_CHECKING:
    from pytest_gamify.reports import ReportReader

logger = logging.getLogger(__name__)

T = TypeVar("T")


def filter_candidates(
    files: Iterable[SourceFileDetails],
    reader: ReportReader | None = None,
    *,
    remove_without_reports: bool = True,
    remove_fully_covered: bool = True,
    sort: bool = False,
) -> list[SourceFileDetails]:
    """Drop ineligible files, keeping VCS recency order unless ``sort`` is set.

    ``files`` itself is left untouched so the same input can be filtered
    again with different flags. With a ``reader`` each candidate's coverage is
    refreshed from the current summary, otherwise the recorded value is used.
    """
    candidates = list(files)
    if remove_without_reports:
        candidates = [f for f in candidates if f.files_exist() and f.reports_exist()]
    if reader is not None:
        for f in candidates:
            reader.coverage(f)
    if remove_fully_covered:
        candidates = [f for f in candidates if f.coverage < 1.0]
    if sort:
        # sorted() is stable, equal coverage keeps recency order
        candidates = sorted(candidates, key=lambda f: f.coverage)
    return candidates


def rank_weights(count: int, bias: float = constants.RANK_BIAS) -> list[float]:
    """Linear ranking weights, highest for the first element.

    ``bias`` in [1, 2] is the expected share of the best element relative to
    the average; 1 means uniform.
    """
    if count <= 0:
        return []
    if count == 1:
        return [1.0]
    return [
        (2 - bias + 2 * (bias - 1) * (count - 1 - i) / (count - 1)) / count
        for i in range(count)
    ]


def select_by_rank(
    items: Sequence[T], rng: random.Random, bias: float = constants.RANK_BIAS
) -> T | None:
    """Draw one element, favouring those at the front of ``items``."""
    if not items:
        return None
    return rng.choices(list(items), weights=rank_weights(len(items), bias), k=1)[0]


def weighted_draw(
    items: Sequence[T],
    count: int,
    rng: random.Random,
    *,
    accept: Callable[[T], bool] | None = None,
    bias: float = constants.RANK_BIAS,
    max_attempts: int = constants.MAX_GENERATION_ATTEMPTS,
) -> list[T]:
    """Draw up to ``count`` distinct elements without replacement.

    Elements failing ``accept`` are discarded. After ``max_attempts``
    consecutive rejections the draw stops and returns what it has.
    """
    pool = list(items)
    drawn: list[T] = []
    failures = 0
    while pool and len(drawn) < count and failures < max_attempts:
        index = rng.choices(range(len(pool)), weights=rank_weights(len(pool), bias), k=1)[0]
        item = pool.pop(index)
        if accept is not None and not accept(item):
            failures += 1
            continue
        failures = 0
        drawn.append(item)
    if len(drawn) < count:
        logger.debug("Drew %d of %d requested candidates", len(drawn), count)
    return drawn


def choose_kind(weights: dict[str, float], rng: random.Random) -> str | None:
    """Pick a key of ``weights`` proportionally to its value."""
    kinds = [k for k, w in weights.items() if w > 0]
    if not kinds:
        return None
    return rng.choices(kinds, weights=[weights[k] for k in kinds], k=1)[0]
