"""Data models for catalog metadata, prices and user-owned records."""
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer, model_validator
from pydantic.alias_generators import to_camel

INVALID_ELEMENT_NAME = "Invalid/Missing ID"
UNKNOWN_MINIFIG_NAME = "Unknown Minifig"

PRICE_FIELDS = (
    "min_price_new",
    "max_price_new",
    "avg_price_new",
    "min_price_used",
    "max_price_used",
    "avg_price_used",
)


class CamelModel(BaseModel):
    """Snake-case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ColorEntry(CamelModel):
    """One colour a part is available in, or the ``{empty: true}`` sentinel."""

    color_id: Optional[str] = None
    color: Optional[str] = None
    element_image: Optional[str] = None
    empty: Optional[bool] = None

    @field_validator("color_id", mode="before")
    @classmethod
    def _color_id_as_str(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value)

    @model_serializer(mode="wrap")
    def _drop_unset(self, handler):
        return {key: value for key, value in handler(self).items() if value is not None}

    @classmethod
    def sentinel(cls) -> "ColorEntry":
        return cls(empty=True)


def dedupe_colors(colors: list[ColorEntry]) -> list[ColorEntry]:
    """Keep the first entry per colorId, preserving order."""
    seen: set[str] = set()
    unique = []
    for entry in colors:
        if entry.color_id is not None:
            if entry.color_id in seen:
                continue
            seen.add(entry.color_id)
        unique.append(entry)
    return unique


class PartMetadata(CamelModel):
    """Shared metadata for a part, keyed by element id."""

    element_id: str
    element_name: Optional[str] = None
    invalid: bool = False
    cache_incomplete: bool = False
    available_colors: list[ColorEntry] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _invalid_is_terminal(self) -> "PartMetadata":
        # An invalid id is never waiting for more colours
        if self.invalid:
            self.cache_incomplete = False
        return self

    def is_stale(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_complete(self, now: Optional[datetime] = None) -> bool:
        """Valid, complete and (when ``now`` is given) not past expiry."""
        if self.invalid or self.cache_incomplete:
            return False
        return now is None or not self.is_stale(now)

    @classmethod
    def invalid_placeholder(cls, element_id: str, expires_at: Optional[datetime] = None) -> "PartMetadata":
        return cls(
            element_id=element_id,
            element_name=INVALID_ELEMENT_NAME,
            invalid=True,
            available_colors=[ColorEntry.sentinel()],
            expires_at=expires_at,
        )


class MinifigMetadata(CamelModel):
    """Shared metadata for a minifig, keyed by its Rebrickable id."""

    minifig_id_rebrickable: str
    minifig_name: Optional[str] = None
    minifig_image: Optional[str] = None
    minifig_id_bricklink: Optional[str] = None
    expires_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _to_price(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return round(number, 2)


class PriceData(CamelModel):
    """Marketplace price range for new and used condition."""

    min_price_new: Optional[float] = None
    max_price_new: Optional[float] = None
    avg_price_new: Optional[float] = None
    min_price_used: Optional[float] = None
    max_price_used: Optional[float] = None
    avg_price_used: Optional[float] = None
    currency_code: str = "USD"
    currency_symbol: str = "$"

    @field_validator(*PRICE_FIELDS, mode="before")
    @classmethod
    def _format_price(cls, value: Any) -> Optional[float]:
        return _to_price(value)

    @field_validator("currency_code", "currency_symbol", mode="before")
    @classmethod
    def _default_currency(cls, value: Any, info) -> str:
        if value:
            return value
        return "USD" if info.field_name == "currency_code" else "$"


class Trend(CamelModel):
    direction: Literal["none", "up", "down"] = "none"
    percentage: float = 0.0


class PriceTrends(CamelModel):
    min_price_new: Trend = Field(default_factory=Trend)
    max_price_new: Trend = Field(default_factory=Trend)
    avg_price_new: Trend = Field(default_factory=Trend)
    min_price_used: Trend = Field(default_factory=Trend)
    max_price_used: Trend = Field(default_factory=Trend)
    avg_price_used: Trend = Field(default_factory=Trend)
    last_updated: Optional[datetime] = None


class PriceWithTrends(PriceData):
    trends: PriceTrends = Field(default_factory=PriceTrends)


class MinifigPriceSnapshot(CamelModel):
    """The live price row for a minifig."""

    minifig_id_rebrickable: str
    price_data: PriceData
    is_expired: bool = False
    expires_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_live(self, now: datetime) -> bool:
        return not self.is_expired and self.expires_at > now


class PriceHistoryEntry(CamelModel):
    """An archived price snapshot."""

    id: Optional[int] = None
    minifig_id_rebrickable: str
    price_data: PriceData
    created_at: datetime
    expires_at: datetime


class MinifigRef(CamelModel):
    """What callers know about a minifig when asking for its price."""

    minifig_id_rebrickable: str
    minifig_id_bricklink: Optional[str] = None
    minifig_name: Optional[str] = None
    minifig_image: Optional[str] = None


def _new_uuid() -> str:
    return str(uuid.uuid4())


class UserBrick(CamelModel):
    """A brick placed in a table by an owner."""

    uuid: str = Field(default_factory=_new_uuid)
    element_id: str
    element_color_id: Optional[str] = None
    element_color: Optional[str] = None
    quantity_on_hand: int = 0
    quantity_required: int = 0
    count_complete: bool = False
    highlighted: bool = False
    invalid: bool = False
    table_id: str
    owner_id: str = "default"

    @field_validator("element_color_id", mode="before")
    @classmethod
    def _color_id_as_str(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value)


class UserMinifig(CamelModel):
    """A minifig placed in a table by an owner."""

    uuid: str = Field(default_factory=_new_uuid)
    minifig_id_rebrickable: str
    minifig_id_bricklink: Optional[str] = None
    quantity_on_hand: int = 0
    quantity_required: int = 0
    count_complete: bool = False
    highlighted: bool = False
    invalid: bool = False
    table_id: str
    owner_id: str = "default"


class EnrichedBrick(UserBrick):
    element_name: Optional[str] = None
    element_image: Optional[str] = None
    available_colors: list[ColorEntry] = Field(default_factory=list)
    cache_incomplete: bool = False


class EnrichedMinifig(UserMinifig):
    minifig_name: str = UNKNOWN_MINIFIG_NAME
    minifig_image: Optional[str] = None
    price_data: Optional[PriceData] = None
    needs_price_refresh: bool = False


class EnrichmentAccepted(CamelModel):
    """Immediate acknowledgement of a background run."""

    accepted: bool = True
    batch_id: str
    count: int


class OutcomeStatus(str, Enum):
    HIT = "hit"
    FETCHED = "fetched"
    INCOMPLETE = "incomplete"
    INVALID = "invalid"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


@dataclass
class FetchOutcome:
    """Result of enriching one id."""

    item_id: str
    status: OutcomeStatus
    error: Optional[str] = None

    @property
    def rate_limited(self) -> bool:
        return self.status is OutcomeStatus.RATE_LIMITED

    @property
    def terminal(self) -> bool:
        return self.status in (OutcomeStatus.INVALID, OutcomeStatus.NOT_FOUND)


@dataclass
class PriceFetchResult:
    """Result of a marketplace price lookup."""

    price_data: Optional[PriceData] = None
    rate_limited: bool = False
    item_name: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.price_data is not None
