"""FastAPI application exposing enrichment, prices and table records."""
import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import APIKeyHeader

from brickcache.config import config
from brickcache.context import AppContext
from brickcache.fetch.errors import RateLimitedError, UpstreamError, UpstreamNotFoundError
from brickcache.parse.models import CamelModel, MinifigRef

logger = logging.getLogger(__name__)

app = FastAPI(title="Brick Inventory Cache API", version="0.1.0")

# API Key security (if configured)
API_KEY_HEADER = APIKeyHeader(name="X-API-KEY", auto_error=False)

_context: Optional[AppContext] = None


def verify_api_key(api_key: str = Depends(API_KEY_HEADER)) -> bool:
    """Verify API key if configured."""
    if config.API_KEY:
        if not api_key or api_key != config.API_KEY:
            raise HTTPException(status_code=403, detail="Invalid API key")
    return True


def set_context(context: Optional[AppContext]) -> None:
    global _context
    _context = context


def get_context() -> AppContext:
    if _context is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return _context


@app.on_event("startup")
async def startup():
    """Initialize on startup."""
    if _context is None:
        set_context(AppContext())
    await _context.initialize()


@app.on_event("shutdown")
async def shutdown():
    if _context is not None:
        await _context.aclose()


def upstream_http_error(e: Exception) -> HTTPException:
    """Map upstream failures on the request path to HTTP errors."""
    if isinstance(e, UpstreamNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, RateLimitedError):
        headers = {"Retry-After": str(int(e.retry_after))} if e.retry_after else None
        return HTTPException(status_code=429, detail=str(e), headers=headers)
    logger.error(f"Upstream failure: {e}")
    return HTTPException(status_code=502, detail=f"Upstream failure: {e}")


class EnrichRequest(CamelModel):
    """Ids to enrich in the background."""
    ids: list[str]
    table_id: Optional[str] = None
    owner_id: Optional[str] = None


class NewBrick(CamelModel):
    element_id: str
    element_color_id: Optional[str] = None
    element_color: Optional[str] = None
    quantity_on_hand: int = 0
    quantity_required: int = 0


class AddBricksRequest(CamelModel):
    owner_id: str = "default"
    bricks: list[NewBrick]


class NewMinifig(CamelModel):
    minifig_id_rebrickable: str
    minifig_id_bricklink: Optional[str] = None
    quantity_on_hand: int = 0
    quantity_required: int = 0


class AddMinifigsRequest(CamelModel):
    owner_id: str = "default"
    minifigs: list[NewMinifig]


class BrickUpdate(CamelModel):
    element_id: Optional[str] = None
    element_color_id: Optional[str] = None
    element_color: Optional[str] = None
    quantity_on_hand: Optional[int] = None
    quantity_required: Optional[int] = None
    count_complete: Optional[bool] = None
    highlighted: Optional[bool] = None


@app.get("/health")
async def health(context: AppContext = Depends(get_context)):
    """Health check endpoint (no auth required)."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cache": {**await context.metadata_store.get_stats(), **context.cache.stats()},
        "active_runs": len(context.registry.active()),
    }


@app.post("/enrich/parts", status_code=202)
async def enrich_parts(
    request: EnrichRequest,
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    """Start a background colour enrichment run."""
    if not request.ids:
        raise HTTPException(status_code=400, detail="No ids provided")
    accepted = context.enrichment.enrich_batch(request.ids, request.table_id, request.owner_id)
    return accepted.to_api()


@app.post("/enrich/minifigs", status_code=202)
async def enrich_minifigs(
    request: EnrichRequest,
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    """Start a background minifig details run."""
    if not request.ids:
        raise HTTPException(status_code=400, detail="No ids provided")
    accepted = context.enrichment.enrich_minifigs(request.ids, request.table_id, request.owner_id)
    return accepted.to_api()


@app.get("/enrich/{batch_id}")
async def enrich_status(
    batch_id: str,
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    status = context.enrichment.batch_status(batch_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Unknown batch id")
    return status


@app.get("/parts/{element_id}")
async def get_part(
    element_id: str,
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    """Cached metadata for a part, fetched on first request."""
    part = await context.enrichment.get_part_metadata(element_id)
    if part is not None:
        return part.to_api()
    try:
        part = await context.enrichment.enrich_one(element_id)
    except (UpstreamError, httpx.HTTPError) as e:
        raise upstream_http_error(e) from e
    return part.to_api()


@app.post("/parts/{element_id}/refresh")
async def refresh_part(
    element_id: str,
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    """Fetch a part now unless its cache entry is complete and fresh."""
    try:
        part = await context.enrichment.enrich_one(element_id)
    except (UpstreamError, httpx.HTTPError) as e:
        raise upstream_http_error(e) from e
    return part.to_api()


@app.post("/minifigs/price")
async def minifig_price(
    ref: MinifigRef,
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    price = await context.enrichment.get_minifig_price_with_trend(ref)
    return price.to_api()


@app.post("/prices/refresh-expired", status_code=202)
async def refresh_expired_prices(
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    accepted = await context.enrichment.refresh_expired_prices()
    return accepted.to_api()


@app.get("/sets/{set_id}/parts")
async def set_parts(
    set_id: str,
    table_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    enrich: bool = True,
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    """Set inventory joined with cached colours."""
    try:
        return await context.enrichment.import_set(set_id, table_id, owner_id, enrich=enrich)
    except (UpstreamError, httpx.HTTPError) as e:
        raise upstream_http_error(e) from e


@app.get("/tables/{table_id}/bricks")
async def list_bricks(
    table_id: str,
    owner_id: Optional[str] = None,
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    bricks = await context.enrichment.list_bricks(table_id, owner_id)
    return [brick.to_api() for brick in bricks]


@app.post("/tables/{table_id}/bricks", status_code=201)
async def add_bricks(
    table_id: str,
    request: AddBricksRequest,
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    """Add bricks to a table and enrich them in the background."""
    records, accepted = await context.enrichment.add_bricks(
        table_id, request.owner_id, [brick.model_dump() for brick in request.bricks]
    )
    return {"bricks": [record.to_api() for record in records], **accepted.to_api()}


@app.get("/tables/{table_id}/minifigs")
async def list_minifigs(
    table_id: str,
    owner_id: Optional[str] = None,
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    minifigs = await context.enrichment.list_minifigs(table_id, owner_id)
    return [minifig.to_api() for minifig in minifigs]


@app.post("/tables/{table_id}/minifigs", status_code=201)
async def add_minifigs(
    table_id: str,
    request: AddMinifigsRequest,
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    records, accepted = await context.enrichment.add_minifigs(
        table_id, request.owner_id, [minifig.model_dump() for minifig in request.minifigs]
    )
    return {"minifigs": [record.to_api() for record in records], **accepted.to_api()}


@app.patch("/bricks/{uuid}")
async def update_brick(
    uuid: str,
    changes: BrickUpdate,
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    brick = await context.enrichment.update_brick(uuid, changes.model_dump(exclude_unset=True))
    if brick is None:
        raise HTTPException(status_code=404, detail="Brick not found")
    return brick.to_api()


@app.delete("/bricks/{uuid}", status_code=204)
async def delete_brick(
    uuid: str,
    context: AppContext = Depends(get_context),
    _: bool = Depends(verify_api_key),
):
    if not await context.enrichment.delete_brick(uuid):
        raise HTTPException(status_code=404, detail="Brick not found")
