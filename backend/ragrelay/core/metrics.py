"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: HTTP rate, errors, duration
- Provider Metrics: LLM / embedding requests, latency, errors, retries
- Pipeline Metrics: per-stage latency, outcomes, classification categories
- Retrieval Metrics: similarity search latency and match counts

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
"""
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

from ragrelay.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

http_requests_total = Counter(
    "ragrelay_http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "ragrelay_http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "ragrelay_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

# ============================================================================
# PROVIDER METRICS
# ============================================================================

provider_requests_total = Counter(
    "ragrelay_provider_requests_total",
    "Total number of requests sent to LLM / embedding providers",
    ["operation", "family", "model"],
    registry=registry,
)

provider_request_duration_seconds = Histogram(
    "ragrelay_provider_request_duration_seconds",
    "Provider request latency in seconds",
    ["operation", "family"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

provider_errors_total = Counter(
    "ragrelay_provider_errors_total",
    "Total number of provider call failures",
    ["destination", "error_type"],
    registry=registry,
)

provider_retries_total = Counter(
    "ragrelay_provider_retries_total",
    "Total number of retried provider calls",
    ["destination"],
    registry=registry,
)

# ============================================================================
# PIPELINE METRICS
# ============================================================================

pipeline_stage_duration_seconds = Histogram(
    "ragrelay_pipeline_stage_duration_seconds",
    "Duration of each RAG pipeline stage in seconds",
    ["stage"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

pipeline_runs_total = Counter(
    "ragrelay_pipeline_runs_total",
    "Total number of RAG pipeline runs by outcome",
    ["outcome", "failed_stage"],
    registry=registry,
)

classification_total = Counter(
    "ragrelay_classification_total",
    "Query classification outcomes",
    ["category"],
    registry=registry,
)

similarity_search_duration_seconds = Histogram(
    "ragrelay_similarity_search_duration_seconds",
    "Similarity search latency in seconds",
    ["algorithm"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
    registry=registry,
)

similarity_matches = Histogram(
    "ragrelay_similarity_matches",
    "Number of matches returned per similarity search",
    buckets=[0, 1, 3, 5, 10, 20, 30, 50, 100],
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record HTTP request metrics (RED)."""
    status = str(status_code)
    http_requests_total.labels(method=method, endpoint=endpoint, status=status).inc()
    if status_code >= 400:
        http_errors_total.labels(
            method=method, endpoint=endpoint, status_code=status
        ).inc()
    http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
        duration_seconds
    )


def record_provider_request(
    operation: str,
    family: str,
    model: str,
    duration_seconds: float,
) -> None:
    provider_requests_total.labels(operation=operation, family=family, model=model).inc()
    provider_request_duration_seconds.labels(operation=operation, family=family).observe(
        duration_seconds
    )


def record_provider_error(destination: str, error_type: str) -> None:
    provider_errors_total.labels(destination=destination, error_type=error_type).inc()


def record_provider_retry(destination: str) -> None:
    provider_retries_total.labels(destination=destination).inc()


def record_pipeline_stage(stage: str, duration_seconds: float) -> None:
    pipeline_stage_duration_seconds.labels(stage=stage).observe(duration_seconds)


def record_pipeline_run(outcome: str, failed_stage: str = "") -> None:
    """
    Record the terminal state of one pipeline run.

    Args:
        outcome: "done" or "errored"
        failed_stage: Stage that raised (empty for successful runs)
    """
    pipeline_runs_total.labels(outcome=outcome, failed_stage=failed_stage).inc()


def record_classification(category: str) -> None:
    classification_total.labels(category=category).inc()


def record_similarity_search(algorithm: str, duration_seconds: float, matches: int) -> None:
    similarity_search_duration_seconds.labels(algorithm=algorithm).observe(duration_seconds)
    similarity_matches.observe(matches)


def get_metrics() -> bytes:
    """Render all metrics in Prometheus text format."""
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
