from __future__ import annotations

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None


class CalculateResponse(BaseModel):
    # keys are pack sizes as strings, largest first
    packs: dict[str, int]
    total: int


class AllocationRecord(BaseModel):
    id: int
    order_quantity: int
    packs: dict[str, int]
    total: int
    created_at: str
    # catalog the allocation was computed with, largest first
    pack_sizes: list[int] = []


class RecentResponse(BaseModel):
    allocations: list[AllocationRecord]


class HealthResponse(BaseModel):
    ok: bool
    version: str
    time: str
