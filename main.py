import asyncio
import random
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.database import Database

import admin
import auth
import cart
import catalog
import orders
import wishlist
from cache import ResponseCache, build_cache
from config import Settings
from database import connect, ensure_indexes
from errors import install_handlers
from logging_config import get_logger, setup_logging
from middleware import install_middleware
from monitoring import ErrorMonitor, PerformanceMonitor
from payment import PaymentProcessor
from ratelimit import RateLimiter
from seed import ensure_admin_exists, seed_aliens

log = get_logger("app")


async def run_maintenance(app: FastAPI, interval: float) -> None:
    """Periodic cleanup of the error monitor and expired cache entries."""
    while True:
        await asyncio.sleep(interval)
        app.state.error_monitor.cleanup()
        removed = app.state.cache.cleanup_expired()
        log.debug("Maintenance run: %d expired cache entries removed", removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    db: Database = app.state.db
    ensure_indexes(db)
    ensure_admin_exists(db, settings)
    if settings.seed_on_startup:
        seed_aliens(db)
    task = asyncio.create_task(run_maintenance(app, settings.maintenance_interval))
    log.info("Alien Black Market API started (%s)", settings.environment)
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("Alien Black Market API stopped")


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[Database] = None,
    cache: Optional[ResponseCache] = None,
    payment_processor: Optional[PaymentProcessor] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)

    app = FastAPI(title="Alien Black Market API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db if db is not None else connect(settings)
    app.state.cache = cache or build_cache(settings)
    app.state.payment_processor = payment_processor or PaymentProcessor(random.Random())
    app.state.error_monitor = ErrorMonitor()
    app.state.perf_monitor = PerformanceMonitor()
    app.state.rate_limiter = RateLimiter.from_settings(settings) if settings.rate_limit_enabled else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=sorted({settings.client_url, "http://localhost:3000"}),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Response-Time", "X-Cache", "X-Cache-Key"],
    )
    install_middleware(app)
    install_handlers(app)

    for module in (auth, catalog, cart, orders, wishlist, admin):
        app.include_router(module.router)

    Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")

    @app.get("/")
    def root():
        return {"message": "Alien Black Market API running"}

    @app.get("/api/health")
    def health(request: Request):
        state = request.app.state
        database = "connected"
        try:
            state.db.command("ping")
        except Exception as e:
            log.warning("Database ping failed: %s", str(e)[:80])
            database = "disconnected"
        errors = state.error_monitor.health_status()
        healthy = database == "connected" and errors["status"] != "critical"
        body = {
            "success": healthy,
            "data": {
                "status": "OK" if healthy else "DEGRADED",
                "environment": settings.environment,
                "database": database,
                "cache": state.cache.status(),
                "errors": errors,
            },
        }
        return JSONResponse(status_code=200 if healthy else 503, content=jsonable_encoder(body))

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=Settings.from_env().port)
