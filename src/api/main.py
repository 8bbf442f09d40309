"""
FastAPI application entry-point.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.routers import cache, catalog, sources
from src.core.errors import AggregationError, UnknownSourceError
from src.core.logging import get_logger
from src.db.connection import dispose_engine

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    dispose_engine()


app = FastAPI(
    title="Market Intelligence Insights API",
    version="0.1.0",
    description="Filtered lists, counts and chart aggregations over the market-intelligence catalog",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sources.router, prefix="/sources", tags=["Sources"])
app.include_router(catalog.router, tags=["Catalog"])
app.include_router(cache.router, prefix="/cache", tags=["Cache"])


@app.exception_handler(UnknownSourceError)
def unknown_source_handler(request: Request, exc: UnknownSourceError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(AggregationError)
def aggregation_failed_handler(request: Request, exc: AggregationError):
    logger.error("Aggregation request %s failed: %s", request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"status": "failed", "error": str(exc), "rowsScanned": exc.rows_scanned},
    )


@app.get("/health")
def health():
    return {"status": "ok"}
