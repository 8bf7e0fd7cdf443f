"""Parse BrickLink inventory pages and catalog search results."""
import logging
import re
from typing import Any, Optional

from selectolax.parser import HTMLParser, Node

from brickcache.parse.models import PriceData

logger = logging.getLogger(__name__)

INVENTORY_ROW_SELECTOR = "table.ta tr.IV_ITEM"

_DASH_SPACING = re.compile(r"\s*-\s*")
_DISALLOWED = re.compile(r"[^a-z0-9-\s]")
_WHITESPACE = re.compile(r"\s+")
_NOT_NUMERIC = re.compile(r"[^0-9.-]+")


def normalize_string(value: Optional[str]) -> str:
    """Trim, lowercase, tighten dashes, strip punctuation and collapse whitespace."""
    if not value:
        return ""
    normalized = value.strip().lower()
    normalized = _DASH_SPACING.sub("-", normalized)
    normalized = _DISALLOWED.sub("", normalized)
    return _WHITESPACE.sub(" ", normalized)


def _cell_text(node: Optional[Node], selector: str) -> str:
    if node is None:
        return ""
    target = node.css_first(selector)
    return target.text(strip=True) if target else ""


def parse_inventory_minifigs(html_content: str) -> list[dict[str, str]]:
    """
    Extract minifig rows from a BrickLink set inventory page.

    Each row of ``table.ta`` with class ``IV_ITEM`` lists one item; the third
    cell holds the catalog link whose text is the BrickLink id and the
    fourth cell holds the item name in bold.
    Returns a list of ``{"name": ..., "id": ...}`` dicts.
    """
    if not html_content:
        return []

    parser = HTMLParser(html_content)
    rows = []
    for row in parser.css(INVENTORY_ROW_SELECTOR):
        cells = row.css("td")
        if len(cells) < 4:
            continue
        name = _cell_text(cells[3], "b")
        item_id = _cell_text(cells[2], "a")
        if name and item_id:
            rows.append({"name": name, "id": item_id})

    logger.debug(f"Parsed {len(rows)} inventory rows")
    return rows


def strip_currency(value: Any) -> Optional[float]:
    """Turn ``"US $12.34"`` into ``12.34``; anything non-numeric becomes None."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    cleaned = _NOT_NUMERIC.sub("", str(value))
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def average_of_min_max(min_value: Any, max_value: Any) -> Optional[float]:
    low = strip_currency(min_value)
    high = strip_currency(max_value)
    if low is None or high is None:
        return None
    return round((low + high) / 2, 2)


def first_search_item(payload: Any) -> Optional[dict[str, Any]]:
    """First item of ``result.typeList[0].items``, if the payload has one."""
    if not isinstance(payload, dict):
        return None
    result = payload.get("result")
    if not isinstance(result, dict):
        return None
    type_list = result.get("typeList") or []
    if not type_list or not isinstance(type_list[0], dict):
        return None
    items = type_list[0].get("items") or []
    if not items or not isinstance(items[0], dict):
        return None
    return items[0]


def parse_price_search(payload: Any) -> Optional[PriceData]:
    """Build PriceData from a catalog search response, or None when empty."""
    item = first_search_item(payload)
    if item is None:
        return None

    return PriceData(
        min_price_new=strip_currency(item.get("mNewMinPrice")),
        max_price_new=strip_currency(item.get("mNewMaxPrice")),
        avg_price_new=average_of_min_max(item.get("mNewMinPrice"), item.get("mNewMaxPrice")),
        min_price_used=strip_currency(item.get("mUsedMinPrice")),
        max_price_used=strip_currency(item.get("mUsedMaxPrice")),
        avg_price_used=average_of_min_max(item.get("mUsedMinPrice"), item.get("mUsedMaxPrice")),
    )
