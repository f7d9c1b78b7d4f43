"""Checkout suggestions for the remaining score."""

from __future__ import annotations

from darts.logic.enums import DARTS_PER_TURN, FinishRule
from darts.logic.segments import Segment, all_segments

MAX_DART_SCORE = 60
_SEARCH_LIMIT = 5
_SUGGESTION_LIMIT = 3

# Highest-scoring segments first so the search finds short routes early.
_ORDERED_SEGMENTS: tuple[Segment, ...] = tuple(sorted(all_segments(), key=lambda s: s.scored, reverse=True))


def compute_checkout_suggestions(
    remaining_score: int,
    darts_left: int = DARTS_PER_TURN,
    finish_rule: FinishRule = FinishRule.DOUBLE_OUT,
) -> list[list[str]]:
    """Up to three routes (lists of segment labels) that finish ``remaining_score``.

    Under double-out the last dart of every route is a double or the inner bull.
    Shorter routes come first.
    """
    if darts_left <= 0 or remaining_score <= 0:
        return []
    if remaining_score > darts_left * MAX_DART_SCORE:
        return []

    found: list[list[str]] = []
    seen: set[tuple[str, ...]] = set()

    def finishes_on(segment: Segment) -> bool:
        return finish_rule != FinishRule.DOUBLE_OUT or segment.is_double

    def search(remaining: int, darts: int, path: list[str]) -> None:
        for segment in _ORDERED_SEGMENTS:
            if len(found) >= _SEARCH_LIMIT:
                return
            if segment.scored > remaining:
                continue
            after = remaining - segment.scored
            route = [*path, segment.label]
            if after == 0:
                if finishes_on(segment) and tuple(route) not in seen:
                    seen.add(tuple(route))
                    found.append(route)
                continue
            if darts > 1:
                search(after, darts - 1, route)

    search(remaining_score, darts_left, [])
    found.sort(key=len)
    return found[:_SUGGESTION_LIMIT]
