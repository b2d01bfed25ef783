"""
FastAPI read API for the valuation dashboard.

Read endpoints serve views built by the aggregator from the snapshot store;
`/api/cron/fetch-metrics` triggers one fetch cycle for an external scheduler.

Run locally with:
    uvicorn src.api.main:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.core.catalog import get_pair_by_id
from src.core.config import settings
from src.core.log import get_logger
from src.pipelines.flows.fetch_metrics import ProviderClients, default_notifier, run_fetch_cycle
from src.schemas.metrics import (
    DEFAULT_HISTORY_LIMIT,
    MAX_HISTORY_LIMIT,
    ApiResponse,
    HistoryData,
    LatestMetricsData,
    MetricType,
    PairHistoryData,
    PairsData,
)
from src.services.aggregator import MetricsAggregator
from src.services.alerts import WebhookAlertNotifier
from src.services.snapshot_store import SnapshotStore

PAIR_ID_MIN = 1
PAIR_ID_MAX = 10


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _format_validation_errors(exc: RequestValidationError) -> str:
    messages = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("query", "header", "body")]
        messages.append(f"{'.'.join(loc)}: {err.get('msg')}")
    return ", ".join(messages)


def get_store(request: Request) -> SnapshotStore:
    return request.app.state.store


def get_aggregator(store: SnapshotStore = Depends(get_store)) -> MetricsAggregator:
    return MetricsAggregator(store)


async def _last_updated(aggregator: MetricsAggregator) -> str:
    last = await aggregator.get_last_update_time()
    return (last or datetime.now(timezone.utc)).isoformat()


def create_app(
    store: SnapshotStore | None = None,
    *,
    providers: ProviderClients | None = None,
    notifier: WebhookAlertNotifier | None = None,
) -> FastAPI:
    """Build the API app.

    A `store` passed in is used as-is and never closed by the app; otherwise
    one is opened on startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned: SnapshotStore | None = None
        if getattr(app.state, "store", None) is None:
            owned = await SnapshotStore().open()
            app.state.store = owned
        try:
            yield
        finally:
            if owned is not None:
                await owned.close()
                app.state.store = None

    app = FastAPI(
        title=settings.APP_NAME,
        description="TradFi vs DeFi valuation metrics",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.providers = providers
    app.state.notifier = notifier

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, f"Invalid parameters: {_format_validation_errors(exc)}")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        get_logger(__name__).error(f"API {request.url.path} error: {exc!r}")
        return _error(500, "Internal server error")

    @app.get("/api/latest", response_model=ApiResponse[LatestMetricsData])
    async def latest(
        category: Optional[str] = Query(None, description="TradFi or DeFi category, case-insensitive"),
        aggregator: MetricsAggregator = Depends(get_aggregator),
    ):
        pairs = await aggregator.get_all_pair_comparisons(category=category)
        data = LatestMetricsData(pairs=pairs, last_updated=await _last_updated(aggregator))
        return ApiResponse[LatestMetricsData](success=True, data=data)

    @app.get("/api/pairs", response_model=ApiResponse[PairsData])
    async def pairs(
        id: Optional[int] = Query(None, ge=PAIR_ID_MIN, le=PAIR_ID_MAX),
        aggregator: MetricsAggregator = Depends(get_aggregator),
    ):
        details = await aggregator.get_pair_details(pair_id=id)
        data = PairsData(pairs=details, last_updated=await _last_updated(aggregator))
        return ApiResponse[PairsData](success=True, data=data)

    @app.get("/api/history", response_model=ApiResponse[HistoryData])
    async def history(
        entity: str = Query(..., min_length=1),
        metric: MetricType = Query(...),
        limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
        aggregator: MetricsAggregator = Depends(get_aggregator),
    ):
        series = await aggregator.get_historical_metrics(entity, metric, limit)
        data = HistoryData(series=series, last_updated=await _last_updated(aggregator))
        return ApiResponse[HistoryData](success=True, data=data)

    @app.get("/api/pair-history", response_model=ApiResponse[PairHistoryData])
    async def pair_history(
        id: int = Query(..., ge=PAIR_ID_MIN, le=PAIR_ID_MAX),
        limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
        aggregator: MetricsAggregator = Depends(get_aggregator),
    ):
        pair = get_pair_by_id(id)
        if pair is None:
            return _error(404, f"Unknown pair {id}")
        history = await aggregator.get_pair_historical_data(pair.tradfi.id, pair.defi.id, limit)
        data = PairHistoryData(history=history, last_updated=await _last_updated(aggregator))
        return ApiResponse[PairHistoryData](success=True, data=data)

    @app.get("/api/cron/fetch-metrics")
    async def cron_fetch_metrics(
        request: Request,
        authorization: Optional[str] = Header(None),
        store: SnapshotStore = Depends(get_store),
    ):
        secret = settings.CRON_SECRET
        if secret and authorization != f"Bearer {secret}":
            return _error(401, "Unauthorized")

        state = request.app.state
        cycle = await run_fetch_cycle(
            store=store,
            providers=state.providers or ProviderClients.from_settings(),
            notifier=state.notifier if state.notifier is not None else default_notifier(),
        )
        return cycle.to_response().model_dump(mode="json", by_alias=True)

    return app


app = create_app()
