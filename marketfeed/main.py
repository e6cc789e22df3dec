from __future__ import annotations

from datetime import datetime
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from marketfeed.config import Settings
from marketfeed.gate import ClientRateLimiter
from marketfeed.logging_utils import setup_logger
from marketfeed.provider import MarketDataProvider, YahooMarketData
from marketfeed.service import MarketDataService, parse_symbol_request
from marketfeed.watchlist import WatchlistStore

logger = logging.getLogger(__name__)

_UNLIMITED_PATHS = ("/api/health",)


def _client_ip(request: Request) -> str:
    fwd = request.headers.get("x-forwarded-for", "").strip()
    if fwd:
        return fwd.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[MarketDataProvider] = None,
    service: Optional[MarketDataService] = None,
) -> FastAPI:
    settings = settings or (service.settings if service is not None else Settings.from_env())
    setup_logger(settings.log_level)
    if service is None:
        service = MarketDataService(provider or YahooMarketData(timeout=settings.upstream_timeout), settings)
    watchlist = WatchlistStore(settings.watchlist_file)
    limiter = ClientRateLimiter(settings.rate_limit_rpm)

    app = FastAPI(title="marketfeed API")
    app.state.service = service
    app.state.watchlist = watchlist

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        path = request.url.path
        if not settings.rate_limit_enabled or not path.startswith("/api") or path in _UNLIMITED_PATHS:
            return await call_next(request)
        allowed, remaining = limiter.check(_client_ip(request))
        if not allowed:
            return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"}, headers={"Retry-After": "60"})
        response = await call_next(request)
        if limiter.rpm > 0:
            response.headers["X-RateLimit-Limit"] = str(limiter.rpm)
            response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response

    @app.on_event("shutdown")
    def _on_shutdown():
        service.shutdown()

    @app.get("/api/health")
    def health():
        return {
            "status": "ok",
            "ts": datetime.utcnow().isoformat(),
            **service.stats(),
        }

    @app.post("/api/market")
    async def market_data(request: Request):
        try:
            body = await request.json()
            symbols = parse_symbol_request(body)
            if symbols is None:
                return JSONResponse({})
            result = await run_in_threadpool(service.get_market_data, symbols)
        except Exception:
            logger.exception("market data request failed")
            return JSONResponse(status_code=500, content={"error": "Failed"})
        headers = {}
        if result.degraded:
            headers["X-Market-Degraded"] = "1"
        if result.pending:
            headers["X-History-Pending"] = ",".join(result.pending)
        return JSONResponse(result.data, headers=headers)

    @app.get("/api/watchlist")
    def get_watchlist():
        try:
            return watchlist.load()
        except Exception:
            logger.exception("failed to load watchlist")
            return JSONResponse(status_code=500, content={"error": "Failed to load watchlist"})

    @app.api_route("/api/watchlist", methods=["POST", "PUT"])
    async def put_watchlist(request: Request):
        try:
            body = await request.json()
        except ValueError:
            logger.warning("watchlist body is not valid JSON")
            return JSONResponse(status_code=500, content={"error": "Failed to save watchlist"})
        if not isinstance(body, list):
            return JSONResponse(status_code=400, content={"error": "Invalid format"})
        try:
            await run_in_threadpool(watchlist.save, body)
        except OSError:
            logger.exception("failed to save watchlist")
            return JSONResponse(status_code=500, content={"error": "Failed to save watchlist"})
        return {"success": True}

    return app


app = create_app()
