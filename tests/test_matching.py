"""Tests for fuzzy minifig matching and Rebrickable parsing helpers."""
import pytest

from brickcache.fetch.errors import MalformedResponseError
from brickcache.parse.matching import RapidFuzzMatcher, match_minifig_row
from brickcache.parse.models import ColorEntry, PartMetadata, dedupe_colors
from brickcache.parse.rebrickable import (
    lowest_numeric_set,
    parse_part_colors,
    parse_set_parts_page,
    set_item_color,
)
from conftest import part_colors_payload

ROWS = [
    {"name": "Qui-Gon Jinn", "id": "sw0003"},
    {"name": "Darth Maul", "id": "sw0004"},
    {"name": "Brick 2 x 4", "id": "3001"},
]


def test_best_match_picks_closest_name():
    """The most similar normalised name wins."""
    row = match_minifig_row("Qui-Gon Jinn", ROWS, RapidFuzzMatcher())
    assert row["id"] == "sw0003"


def test_match_tolerates_punctuation_and_case():
    """Names are normalised before scoring."""
    row = match_minifig_row("darth maul!", ROWS, RapidFuzzMatcher())
    assert row["id"] == "sw0004"


def test_ties_keep_earlier_row():
    """Equal scores resolve to the first candidate."""
    matcher = RapidFuzzMatcher()
    assert matcher.best_match("abc", ["abd", "abe"]) == (0, pytest.approx(2 / 3))


def test_min_score_rejects_weak_matches():
    """A threshold turns poor matches into no match."""
    matcher = RapidFuzzMatcher(min_score=0.9)
    assert match_minifig_row("Han Solo", ROWS, matcher) is None


def test_no_rows_no_match():
    """Nothing to compare yields None."""
    assert match_minifig_row("Qui-Gon Jinn", [], RapidFuzzMatcher()) is None


def test_lowest_numeric_set_ignores_non_numeric():
    """SWCOLLECT-1 style ids are skipped."""
    assert lowest_numeric_set(["75000-1", "SWCOLLECT-1", "7101-1"]) == "7101-1"
    assert lowest_numeric_set(["SWCOLLECT-1"]) is None
    assert lowest_numeric_set([]) is None


def test_part_colors_are_deduplicated():
    """Duplicate colour ids keep the first entry."""
    colors = parse_part_colors(part_colors_payload((4, "Red"), (4, "Red again"), (1, "Blue")))

    assert [color.color for color in colors] == ["Red", "Blue"]
    assert colors[0].color_id == "4"
    assert colors[0].to_api() == {
        "colorId": "4",
        "color": "Red",
        "elementImage": "https://cdn.rebrickable.com/media/parts/4.jpg",
    }


def test_part_colors_require_results():
    """A payload without a results list is malformed."""
    with pytest.raises(MalformedResponseError):
        parse_part_colors({"detail": "nope"})


def test_set_parts_page_drops_spares():
    """Spare parts are not part of the imported inventory."""
    payload = {
        "next": "https://rebrickable.com/api/v3/lego/sets/75192-1/parts/?page=2",
        "results": [
            {"part": {"part_num": "3001"}, "color": {"id": 4, "name": "Red"}, "is_spare": False},
            {"part": {"part_num": "3002"}, "color": {"id": 1, "name": "Blue"}, "is_spare": True},
        ],
    }
    items, next_url = parse_set_parts_page(payload)

    assert [item["part"]["part_num"] for item in items] == ["3001"]
    assert next_url.endswith("page=2")


def test_set_parts_page_rejects_lines_without_part_number():
    """A non-spare line with no part number is malformed."""
    payload = {"next": None, "results": [{"part": None, "color": {"id": 4, "name": "Red"}, "quantity": 1}]}

    with pytest.raises(MalformedResponseError):
        parse_set_parts_page(payload)


def test_set_item_color_defaults_to_black():
    """A line without colour info is recorded as Black."""
    color = set_item_color({"part": {"part_num": "3001"}})
    assert color.color_id == "0"
    assert color.color == "Black"


def test_invalid_part_is_never_incomplete():
    """Invalid and cacheIncomplete are mutually exclusive."""
    part = PartMetadata(element_id="x", invalid=True, cache_incomplete=True)
    assert part.cache_incomplete is False
    assert part.is_complete() is False


def test_sentinel_colour_shape():
    """The empty sentinel serialises to a single flag."""
    assert ColorEntry.sentinel().to_api() == {"empty": True}
    assert dedupe_colors([ColorEntry.sentinel(), ColorEntry.sentinel()]) == [
        ColorEntry.sentinel(),
        ColorEntry.sentinel(),
    ]
