"""Prometheus metrics instrumentation for the data access service."""

from prometheus_client import Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator, metrics

# Custom metrics

# Backend queries counter (one per shard/window query)
backend_queries_total = Counter(
    "streammarker_backend_queries_total",
    "Total number of queries issued to measurement backends",
    ["backend", "kind"],
)

# Backend query latency
backend_query_seconds = Histogram(
    "streammarker_backend_query_seconds",
    "Time spent waiting on measurement backend queries",
    ["backend", "kind"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# Geo cache lookups
geo_cache_lookups_total = Counter(
    "streammarker_geo_cache_lookups_total",
    "Timezone cache lookups by result",
    ["result"],
)

# Latest-reading failures isolated per sensor
latest_reading_failures_total = Counter(
    "streammarker_latest_reading_failures_total",
    "Sensors omitted from latest-readings responses because their query failed",
    ["backend"],
)

# Geo cache size gauge
geo_cache_entries = Gauge(
    "streammarker_geo_cache_entries",
    "Number of entries currently held in the timezone cache",
)


def setup_metrics(app) -> Instrumentator:
    """Set up Prometheus metrics instrumentation for FastAPI app."""
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/health/live", "/health/ready", "/healthcheck", "/metrics"],
        env_var_name="METRICS_ENABLED",
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    )

    instrumentator.add(
        metrics.default(
            metric_namespace="",
            metric_subsystem="",
            latency_highr_buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )
    )

    # Readings payloads can be large; track response size
    instrumentator.add(
        metrics.response_size(
            metric_namespace="",
            metric_subsystem="",
            should_include_handler=True,
            should_include_method=True,
            should_include_status=True,
        )
    )

    instrumentator.instrument(app)

    return instrumentator


def expose_metrics(app, instrumentator: Instrumentator) -> None:
    """Expose the /metrics endpoint."""
    instrumentator.expose(app, include_in_schema=False, should_gzip=True)


# Helper functions for updating custom metrics


def record_backend_query(backend: str, kind: str, duration: float) -> None:
    """Count a backend query and record its latency."""
    backend_queries_total.labels(backend=backend, kind=kind).inc()
    backend_query_seconds.labels(backend=backend, kind=kind).observe(duration)


def record_geo_cache_lookup(hit: bool) -> None:
    """Increment geo cache hit/miss counter."""
    geo_cache_lookups_total.labels(result="hit" if hit else "miss").inc()


def record_latest_reading_failure(backend: str) -> None:
    """Increment isolated latest-reading failure counter."""
    latest_reading_failures_total.labels(backend=backend).inc()


def set_geo_cache_entries(count: int) -> None:
    """Set current timezone cache size."""
    geo_cache_entries.set(count)
