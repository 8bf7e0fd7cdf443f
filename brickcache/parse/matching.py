"""Fuzzy name matching for marketplace id resolution."""
import logging
from typing import Optional, Protocol, Sequence

from rapidfuzz import fuzz

from brickcache.parse.bricklink import normalize_string

logger = logging.getLogger(__name__)


class Matcher(Protocol):
    def best_match(self, target: str, candidates: Sequence[str]) -> Optional[tuple[int, float]]:
        """Index and score (0..1) of the closest candidate, or None."""
        ...


class RapidFuzzMatcher:
    """Similarity ratio over normalised names."""

    def __init__(self, min_score: float = 0.0):
        self.min_score = min_score

    def best_match(self, target: str, candidates: Sequence[str]) -> Optional[tuple[int, float]]:
        if not target or not candidates:
            return None

        best_index = None
        best_score = -1.0
        for index, candidate in enumerate(candidates):
            score = fuzz.ratio(target, candidate) / 100.0
            # Ties keep the earlier row
            if score > best_score:
                best_index, best_score = index, score

        if best_index is None or best_score < self.min_score:
            return None
        return best_index, best_score


def match_minifig_row(
    name: str, rows: list[dict[str, str]], matcher: Matcher
) -> Optional[dict[str, str]]:
    """Pick the inventory row whose name is closest to ``name``."""
    target = normalize_string(name)
    names = [normalize_string(row["name"]) for row in rows]
    match = matcher.best_match(target, names)
    if match is None:
        return None
    index, score = match
    logger.debug(f"Best match for '{target}': '{names[index]}' ({score:.2f})")
    return rows[index]
