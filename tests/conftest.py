"""Shared fixtures: a scripted upstream, fake time and a wired context."""
import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Keep the data dir out of the working tree
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="brickcache-tests-"))

import httpx
import pytest
import pytest_asyncio

from brickcache.context import AppContext
from brickcache.fetch.client import FetchClient
from brickcache.fetch.rate_limit import RateLimiter

FIXTURES = Path(__file__).parent / "fixtures"

RB = "/api/v3/lego"
INVENTORY_PATH = "/catalogItemInv.asp"
SEARCH_PATH = "/ajax/clone/search/searchproduct.ajax"


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeSleep:
    """Records requested sleeps instead of waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


class Upstream:
    """
    Canned responses keyed by URL path.

    A route may be a single canned response, a list consumed in order (the
    last one repeats) or a callable taking the request.
    """

    def __init__(self):
        self.routes: dict[str, object] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, status: int = 200, json=None, text=None, headers=None) -> None:
        self.routes[path] = {"status": status, "json": json, "text": text, "headers": headers}

    def add_sequence(self, path: str, responses: list[dict]) -> None:
        self.routes[path] = list(responses)

    def add_callable(self, path: str, handler) -> None:
        self.routes[path] = handler

    def count(self, path: str) -> int:
        return sum(1 for request in self.requests if request.url.path == path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"detail": "Not found."})
        if callable(route):
            return route(request)
        if isinstance(route, list):
            canned = route.pop(0) if len(route) > 1 else route[0]
        else:
            canned = route
        if canned.get("text") is not None:
            return httpx.Response(canned["status"], text=canned["text"], headers=canned.get("headers"))
        return httpx.Response(canned["status"], json=canned.get("json"), headers=canned.get("headers"))


def make_fetch_client(upstream: Upstream, sleep: FakeSleep) -> FetchClient:
    return FetchClient(
        client=httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)),
        rate_limiter=RateLimiter(rate_per_second=1000, burst_size=1000),
        api_key="test-key",
        retries=3,
        retry_delay=1.0,
        sleep=sleep,
    )


def part_colors_payload(*colors: tuple) -> dict:
    return {
        "count": len(colors),
        "next": None,
        "previous": None,
        "results": [
            {
                "color_id": color_id,
                "color_name": name,
                "num_sets": 1,
                "num_set_parts": 1,
                "part_img_url": f"https://cdn.rebrickable.com/media/parts/{color_id}.jpg",
                "elements": [],
            }
            for color_id, name in colors
        ],
    }


def search_payload(new_min="US $10.00", new_max="US $14.00", used_min="US $4.00", used_max="US $6.00") -> dict:
    return {
        "result": {
            "typeList": [
                {
                    "type": "M",
                    "items": [
                        {
                            "idItem": 1,
                            "strItemNo": "sw0001a",
                            "strItemName": "Battle Droid Tan with Back Plate",
                            "mNewMinPrice": new_min,
                            "mNewMaxPrice": new_max,
                            "mUsedMinPrice": used_min,
                            "mUsedMaxPrice": used_max,
                        }
                    ],
                }
            ]
        }
    }


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def run_sleep() -> FakeSleep:
    """Cooldowns between batches."""
    return FakeSleep()


@pytest.fixture
def retry_sleep() -> FakeSleep:
    """Backoff waits inside the fetch wrapper."""
    return FakeSleep()


@pytest.fixture
def inventory_html() -> str:
    return (FIXTURES / "bricklink_inventory.html").read_text(encoding="utf-8")


@pytest_asyncio.fixture
async def context(tmp_path, upstream, clock, run_sleep, retry_sleep):
    ctx = AppContext(
        db_path=tmp_path / "cache.db",
        client=make_fetch_client(upstream, retry_sleep),
        runs_file=tmp_path / "runs.jsonl",
        sleep=run_sleep,
        clock=clock,
    )
    await ctx.initialize()
    yield ctx
    await ctx.aclose()
