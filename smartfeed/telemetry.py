"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics for the feed pipeline (latency, candidates per lane,
    lane failures, cache hits, fallbacks, monetization, analytics errors)

Metrics are module-level singletons so the engine can count without knowing
whether an exporter is configured. Tracing is initialised once at startup.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
FEED_LATENCY = Histogram(
    "feed_latency_seconds",
    "Latency of a freshly generated smart feed",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0],
)

FEED_CANDIDATES_TOTAL = Counter(
    "feed_candidates_total",
    "Scored candidates produced per lane",
    ["lane"],
)

SOURCE_FAILURES_TOTAL = Counter(
    "feed_source_failures_total",
    "Lane fetches that raised and contributed an empty list",
    ["lane"],
)

CACHE_REQUESTS_TOTAL = Counter(
    "feed_cache_requests_total",
    "Feed cache lookups",
    ["result"],  # 'hit' or 'miss'
)

FALLBACK_TOTAL = Counter(
    "feed_fallback_total",
    "Feeds served from the recent-posts fallback",
)

MONETIZATION_INSERTS_TOTAL = Counter(
    "feed_monetization_inserts_total",
    "Ads and sponsored posts spliced into feeds",
    ["kind"],  # 'ad' or 'sponsored'
)

ANALYTICS_ERRORS_TOTAL = Counter(
    "feed_analytics_errors_total",
    "Feed analytics events dropped or failed to record",
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing(service_name: str, environment: str, otlp_endpoint: str) -> None:
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    resource = Resource.create(
        {
            "service.name": service_name,
            "deployment.environment": environment,
        }
    )

    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info("OTel tracing configured → %s", otlp_endpoint)
    except Exception as exc:
        logger.warning("Could not connect to OTLP exporter: %s — traces disabled", exc)

    trace.set_tracer_provider(provider)

    # Auto-instrument popular libraries so their spans appear in traces
    HTTPXClientInstrumentor().instrument()
    RedisInstrumentor().instrument()
    SQLAlchemyInstrumentor().instrument()


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    FastAPIInstrumentor.instrument_app(app)
