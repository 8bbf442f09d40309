"""
GET /sources/{source}[/count|/analytics|/values/{field}|/{id}] -- data endpoints.

Every query parameter that is not a paging or dimension parameter is
treated as a filter and handed to the normaliser, which drops anything
the source does not declare.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from src.insights.service import InsightsService, get_service

router = APIRouter()

RESERVED_PARAMS = {"page", "page_size", "limit", "offset", "dimensions"}


class Pagination(BaseModel):
    page: int
    pageSize: int
    offset: int
    hasMore: bool


class ListResponse(BaseModel):
    data: list[dict]
    pagination: Pagination


class CountResponse(BaseModel):
    count: int


class ValuesResponse(BaseModel):
    field: str
    values: list[str]


class BucketItem(BaseModel):
    name: str
    value: int | float


class AnalyticsResponse(BaseModel):
    status: str
    cached: bool
    stale: bool
    dimensions: dict[str, list[BucketItem]]
    rankings: dict[str, list[BucketItem]]
    totalRecords: int
    truncated: bool


def _filters(request: Request) -> dict[str, str]:
    return {k: v for k, v in request.query_params.items() if k not in RESERVED_PARAMS}


@router.get("/{source}", response_model=ListResponse)
def list_records(
    source: str,
    request: Request,
    page: int = 1,
    page_size: int | None = None,
    limit: int | None = None,
    offset: int | None = None,
    service: InsightsService = Depends(get_service),
):
    """One page of filtered records (``limit``/``offset`` override ``page``/``page_size``)."""
    result = service.list_page(
        source,
        _filters(request),
        page=page,
        page_size=limit if limit is not None else page_size,
        offset=offset,
    )
    if not result.ok:
        raise HTTPException(status_code=502, detail=result.error)
    return ListResponse(
        data=result.records,
        pagination=Pagination(
            page=result.page,
            pageSize=result.page_size,
            offset=result.offset,
            hasMore=result.has_more,
        ),
    )


@router.get("/{source}/count", response_model=CountResponse)
def count_records(source: str, request: Request, service: InsightsService = Depends(get_service)):
    result = service.get_count(source, _filters(request))
    if not result.ok:
        raise HTTPException(status_code=502, detail=result.error)
    return CountResponse(count=result.count)


@router.get("/{source}/analytics", response_model=AnalyticsResponse)
def source_analytics(
    source: str,
    request: Request,
    dimensions: str | None = Query(None, description="Comma-separated dimension / ranking names"),
    service: InsightsService = Depends(get_service),
):
    """Chart buckets over the whole filtered set (cached)."""
    names = [d.strip() for d in dimensions.split(",") if d.strip()] if dimensions else None
    response = service.get_aggregation(source, _filters(request), names)
    return AnalyticsResponse(**response.to_dict())


@router.get("/{source}/values/{field}", response_model=ValuesResponse)
def field_values(source: str, field: str, service: InsightsService = Depends(get_service)):
    """Distinct values of one field, for filter dropdowns."""
    result = service.distinct_values(source, field)
    if not result.ok:
        raise HTTPException(status_code=502, detail=result.error)
    return ValuesResponse(field=field, values=result.values)


@router.get("/{source}/{record_id}")
def get_record(source: str, record_id: str, service: InsightsService = Depends(get_service)) -> dict:
    result = service.get_record(source, record_id)
    if not result.ok:
        raise HTTPException(status_code=502, detail=result.error)
    if result.record is None:
        raise HTTPException(status_code=404, detail=f"No {source} record with id {record_id}")
    return result.record
