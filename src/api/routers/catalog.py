"""
GET /catalog, GET /catalog/{source} -- metadata endpoints.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.insights.service import InsightsService, get_service

router = APIRouter()


class FieldItem(BaseModel):
    name: str
    type: str


class FilterItem(BaseModel):
    key: str
    kind: str


class DimensionItem(BaseModel):
    name: str
    kind: str
    top_n: int | None = None


class SourceDetail(BaseModel):
    name: str
    fields: list[FieldItem]
    filters: list[FilterItem]
    dimensions: list[DimensionItem]
    rankings: list[str]


class CatalogResponse(BaseModel):
    sources: list[str]


@router.get("/catalog", response_model=CatalogResponse)
def full_catalog(service: InsightsService = Depends(get_service)) -> CatalogResponse:
    """Return the names of every readable source."""
    return CatalogResponse(sources=service.catalog.source_names())


@router.get("/catalog/{source}", response_model=SourceDetail)
def source_detail(source: str, service: InsightsService = Depends(get_service)) -> SourceDetail:
    """Return one source's fields, filter keys, dimensions and rankings."""
    return SourceDetail(**service.catalog.describe(source))
