"""Parse Rebrickable catalog API payloads."""
import logging
from typing import Any, Optional

from brickcache.fetch.errors import MalformedResponseError
from brickcache.parse.models import ColorEntry, MinifigMetadata, dedupe_colors

logger = logging.getLogger(__name__)

DEFAULT_SET_COLOR = "Black"


def _results(payload: Any, what: str) -> list[dict[str, Any]]:
    if not isinstance(payload, dict) or not isinstance(payload.get("results"), list):
        raise MalformedResponseError(f"Expected a results list in {what} response")
    return [item for item in payload["results"] if isinstance(item, dict)]


def parse_part_colors(payload: Any) -> list[ColorEntry]:
    """
    Map ``parts/{id}/colors/`` results to colour entries.

    Rebrickable returns ``color_id``, ``color_name`` and ``part_img_url`` per
    colour; duplicates by colour id are dropped, first one wins.
    """
    colors = [
        ColorEntry(
            color_id=item.get("color_id"),
            color=item.get("color_name"),
            element_image=item.get("part_img_url"),
        )
        for item in _results(payload, "part colors")
        if item.get("color_id") is not None
    ]
    return dedupe_colors(colors)


def parse_part_name(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        raise MalformedResponseError("Expected an object in part details response")
    return payload.get("name")


def parse_minifig_details(payload: Any) -> MinifigMetadata:
    if not isinstance(payload, dict) or not payload.get("set_num"):
        raise MalformedResponseError("Expected set_num in minifig details response")
    return MinifigMetadata(
        minifig_id_rebrickable=payload["set_num"],
        minifig_name=payload.get("name"),
        minifig_image=payload.get("set_img_url"),
    )


def parse_set_numbers(payload: Any) -> list[str]:
    """Set numbers from a ``minifigs/{id}/sets/`` response."""
    return [item["set_num"] for item in _results(payload, "minifig sets") if item.get("set_num")]


def numeric_set_prefix(set_number: str) -> Optional[int]:
    """``"75192-1"`` -> ``75192``; None when the prefix is not all digits."""
    prefix = set_number.split("-", 1)[0]
    if not prefix.isdigit():
        return None
    return int(prefix)


def lowest_numeric_set(set_numbers: list[str]) -> Optional[str]:
    """The set with the smallest numeric prefix, ignoring non-numeric ones."""
    candidates = [
        (number, set_number)
        for set_number in set_numbers
        if (number := numeric_set_prefix(set_number)) is not None
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda candidate: candidate[0])[1]


def parse_set_parts_page(payload: Any) -> tuple[list[dict[str, Any]], Optional[str]]:
    """Non-spare inventory lines of one page plus the next page URL."""
    items = [item for item in _results(payload, "set parts") if not item.get("is_spare")]
    for item in items:
        part = item.get("part")
        if not isinstance(part, dict) or not part.get("part_num"):
            raise MalformedResponseError("Expected part.part_num in set parts response")
    return items, payload.get("next")


def set_item_color(item: dict[str, Any]) -> ColorEntry:
    """The colour a set inventory line was observed in."""
    color = item.get("color") or {}
    part = item.get("part") or {}
    return ColorEntry(
        color_id=color.get("id") or 0,
        color=color.get("name") or DEFAULT_SET_COLOR,
        element_image=part.get("part_img_url"),
    )
