import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class SlabOut(BaseModel):
    """Slab with its current (latest) price, if any."""

    id: uuid.UUID
    cert_number: Optional[str] = None
    grader: Optional[str] = None
    grade: Optional[str] = None
    set_name: Optional[str] = None
    card_name: Optional[str] = None
    card_number: Optional[str] = None
    variant: Optional[str] = None
    image_url: Optional[str] = None
    parse_status: str
    platform: str
    market_price: Optional[float] = None
    price_currency: Optional[str] = None
    price_confidence: Optional[str] = None
    price_source: Optional[str] = None
    price_retrieved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PriceOut(BaseModel):
    source: str
    market_price: float
    currency: str
    confidence: str
    retrieved_at: datetime

    class Config:
        from_attributes = True


class SlabDetailOut(SlabOut):
    owner_address: str
    contract_address: str
    token_id: str
    catalog_card_id: Optional[str] = None
    fingerprint_text: Optional[str] = None
    price_history: list[PriceOut]


class Pagination(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int


class SlabsResponse(BaseModel):
    request_id: str
    api_latency_ms: int
    data: list[SlabOut]
    pagination: Pagination


class SetProgressOut(BaseModel):
    set_name: str
    owned_count: int
    total_cards: int
    completion_pct: float
    release_year: Optional[int] = None
    series: Optional[str] = None
    logo_url: Optional[str] = None
    symbol_url: Optional[str] = None
    preview_image_url: Optional[str] = None


class SetGroupOut(BaseModel):
    set_name: str | None
    owned_count: int
    total_cards: int
    completion_pct: float
    slabs: list[SlabOut]


class NeededCardOut(BaseModel):
    upstream_card_id: str
    card_name: str
    card_number: str
    image_small: Optional[str] = None
    image_large: Optional[str] = None


class SetDetailOut(BaseModel):
    set_name: str
    series: Optional[str] = None
    total_cards: int
    release_year: Optional[int] = None
    logo_url: Optional[str] = None
    symbol_url: Optional[str] = None
    owned_count: int
    completion_pct: float
    owned_cards: list[SlabOut]
    needed_cards: list[NeededCardOut]


class AddressSummaryOut(BaseModel):
    address: str
    total_slabs: int
    priced_slabs: int
    total_sets: int
    estimated_value_usd: float
    last_synced_at: datetime | None
    sync_status: str
    pricing_scheduled: bool
    sets: list[SetProgressOut]


class HealthResponse(BaseModel):
    database: str
    catalog_sets: int = 0
    catalog_seeded: bool = False
    last_sync_status: str | None = None
    last_sync_job: str | None = None


class SyncRunOut(BaseModel):
    run_id: uuid.UUID
    job_name: str
    status: str
    records_processed: int
    error_message: str | None = None
    started_at: datetime | None
    ended_at: datetime | None

    class Config:
        from_attributes = True


class TriggerResponse(BaseModel):
    success: bool
    job: str
    status: str
    records_processed: int = 0
    error: str | None = None
