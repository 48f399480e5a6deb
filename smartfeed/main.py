"""
SmartFeed API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Initialise DB connection pool (TiDB) and create tables if not present
  3. Connect the feed cache backend (in-process or Redis)
  4. Start the Kafka producer when analytics go to Kafka
  5. Start the ad server client
  6. Start the analytics dispatcher and the cache sweeper
  7. Expose Prometheus /metrics endpoint
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from smartfeed.bootstrap import start_engine, stop_engine
from smartfeed.config import settings
from smartfeed.routers import feed
from smartfeed.telemetry import instrument_app, setup_tracing

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing(settings.service_name, settings.environment, settings.otel_exporter_otlp_endpoint)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting SmartFeed API (env=%s)", settings.environment)

    app.state.engine = await start_engine(settings)

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await stop_engine(app.state.engine)
    app.state.engine = None


app = FastAPI(
    title="SmartFeed API",
    description=(
        "Multi-lane smart feed: concurrent candidate lanes, weighted ranking, "
        "diversity filtering and monetization with a guaranteed fallback."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(feed.router, prefix="/feed", tags=["Feed"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
# Mounted at /metrics — scraped by Prometheus
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
