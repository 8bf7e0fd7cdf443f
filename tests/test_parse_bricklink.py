"""Tests for BrickLink inventory and search parsing."""
from brickcache.parse.bricklink import (
    average_of_min_max,
    first_search_item,
    normalize_string,
    parse_inventory_minifigs,
    parse_price_search,
    strip_currency,
)
from conftest import search_payload


def test_inventory_rows_from_golden_page(inventory_html):
    """Only IV_ITEM rows of table.ta with four cells are returned."""
    rows = parse_inventory_minifigs(inventory_html)

    assert rows == [
        {"name": "Qui-Gon Jinn", "id": "sw0003"},
        {"name": "Darth Maul", "id": "sw0004"},
        {"name": "Brick 2 x 4", "id": "3001"},
    ]


def test_inventory_empty_page():
    """Empty or table-less HTML yields no rows."""
    assert parse_inventory_minifigs("") == []
    assert parse_inventory_minifigs("<html><body><p>No inventory</p></body></html>") == []


def test_normalize_string():
    """Lowercase, tight dashes, punctuation dropped, whitespace collapsed."""
    assert normalize_string("  Qui-Gon  Jinn ") == "qui-gon jinn"
    assert normalize_string("Battle Droid - Tan (Back Plate)") == "battle droid-tan back plate"
    assert normalize_string("") == ""
    assert normalize_string(None) == ""


def test_strip_currency():
    """Currency prefixes and separators are removed."""
    assert strip_currency("US $12.34") == 12.34
    assert strip_currency("EUR 0.50") == 0.5
    assert strip_currency(3) == 3.0
    assert strip_currency("N/A") is None
    assert strip_currency(None) is None


def test_average_rounds_to_cents():
    """Average of min and max keeps two decimals."""
    assert average_of_min_max("US $1.00", "US $2.50") == 1.75
    assert average_of_min_max("US $1.00", "US $2.02") == 1.51
    assert average_of_min_max("US $1.00", None) is None


def test_parse_price_search():
    """The first search item becomes PriceData with averages."""
    price = parse_price_search(search_payload())

    assert price.min_price_new == 10.0
    assert price.max_price_new == 14.0
    assert price.avg_price_new == 12.0
    assert price.min_price_used == 4.0
    assert price.max_price_used == 6.0
    assert price.avg_price_used == 5.0
    assert price.currency_code == "USD"
    assert price.currency_symbol == "$"


def test_parse_price_search_without_items():
    """No listing means no price."""
    assert parse_price_search({"result": {"typeList": []}}) is None
    assert parse_price_search({"result": {"typeList": [{"items": []}]}}) is None
    assert parse_price_search(["unexpected"]) is None
    assert first_search_item(None) is None


def test_price_api_shape_is_camel_case():
    """PriceData serialises with camelCase keys."""
    payload = parse_price_search(search_payload()).to_api()

    assert payload["minPriceNew"] == 10.0
    assert payload["avgPriceUsed"] == 5.0
    assert payload["currencyCode"] == "USD"
