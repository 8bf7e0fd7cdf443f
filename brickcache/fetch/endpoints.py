"""URL builders for Rebrickable and BrickLink endpoints."""
from urllib.parse import urlencode

from brickcache.config import config


def rebrickable_url(path: str) -> str:
    """Absolute Rebrickable API URL for a relative path."""
    if path.startswith("http"):
        return path
    return f"{config.REBRICKABLE_BASE_URL}/{path.lstrip('/')}"


def part_url(element_id: str) -> str:
    return rebrickable_url(f"parts/{element_id}/")


def part_colors_url(element_id: str) -> str:
    return rebrickable_url(f"parts/{element_id}/colors/")


def minifig_url(minifig_id: str) -> str:
    return rebrickable_url(f"minifigs/{minifig_id}/")


def minifig_sets_url(minifig_id: str) -> str:
    return rebrickable_url(f"minifigs/{minifig_id}/sets/")


def set_parts_url(set_id: str, page_size: int = 1000) -> str:
    return rebrickable_url(f"sets/{set_id}/parts/?page_size={page_size}")


def bricklink_inventory_url(set_number: str) -> str:
    """BrickLink inventory page (HTML) for a set."""
    return f"{config.BRICKLINK_BASE_URL}/catalogItemInv.asp?S={set_number}"


def bricklink_search_url(query: str, item_type: str = "M") -> str:
    """BrickLink catalog search (JSON) for an item id."""
    params = urlencode(
        {
            "q": query,
            "st": 0,
            "type": item_type,
            "nosuperlot": 1,
            "showempty": 1,
            "rpp": 25,
            "pi": 1,
        }
    )
    return f"{config.BRICKLINK_BASE_URL}/ajax/clone/search/searchproduct.ajax?{params}"
