"""Metric names and Prometheus metric definitions for GraphQL instrumentation."""

from prometheus_client import CollectorRegistry, Counter, Histogram

# --- Wire contract with the metrics backend ---

RESOLVE_ERROR = "resolve_error"
RESPONSE_TIME = "response_time"

# --- Prometheus backend ---

# Kept apart from the default registry so the scrape view only exposes GraphQL metrics.
REGISTRY = CollectorRegistry(auto_describe=True)

graphql_resolve_errors_total = Counter(
    "graphql_resolve_errors_total",
    "Total number of GraphQL resolver errors",
    ["resolve_name", "error", "operation_name", "query_hash", "tags"],
    registry=REGISTRY,
)

graphql_response_time_seconds = Histogram(
    "graphql_response_time_seconds",
    "Duration of GraphQL HTTP requests in seconds",
    ["operation_name", "query_hash"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=REGISTRY,
)
