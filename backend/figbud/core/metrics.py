"""
Prometheus metrics for the assistant service.

Metric groups:
- RED metrics for the HTTP surface
- Cache hits/misses per cache type
- LLM backend calls: latency, errors, tokens, cost
- Orchestration: attempts per backend/phase, call outcomes, validation failures
- Intent extraction and enrichment
- Process resources (CPU, memory)

Naming follows Prometheus conventions (`_total` counters, `_seconds`
histograms).
"""
from typing import Optional

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from figbud.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

# ============================================================================
# CACHE METRICS
# ============================================================================

cache_hits_total = Counter(
    "cache_hits_total",
    "Total number of cache hits",
    ["cache_type"],  # e.g. "ai_response"
    registry=registry,
)

cache_misses_total = Counter(
    "cache_misses_total",
    "Total number of cache misses",
    ["cache_type"],
    registry=registry,
)

# ============================================================================
# LLM BACKEND METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Total number of LLM backend HTTP calls",
    ["backend", "model"],
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "LLM backend call latency in seconds",
    ["backend", "model"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0, 30.0],
    registry=registry,
)

llm_errors_total = Counter(
    "llm_errors_total",
    "Total number of LLM backend errors",
    ["backend", "error_type"],
    registry=registry,
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total number of LLM tokens",
    ["backend", "model", "direction"],  # direction: input | output
    registry=registry,
)

llm_cost_usd_total = Counter(
    "llm_cost_usd_total",
    "Estimated LLM spend in USD",
    ["backend", "model"],
    registry=registry,
)

# ============================================================================
# ORCHESTRATION METRICS
# ============================================================================

orchestration_attempts_total = Counter(
    "orchestration_attempts_total",
    "Backend attempts made by the orchestrator",
    ["backend", "phase", "outcome"],  # phase: primary | fallback
    registry=registry,
)

orchestration_results_total = Counter(
    "orchestration_results_total",
    "Orchestration calls by terminal outcome",
    ["outcome"],  # cache_hit | primary | fallback | all_failed
    registry=registry,
)

orchestration_duration_seconds = Histogram(
    "orchestration_duration_seconds",
    "End-to-end orchestration latency in seconds",
    ["outcome"],
    buckets=[0.005, 0.05, 0.25, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

validation_failures_total = Counter(
    "validation_failures_total",
    "Candidate responses rejected by the validator",
    ["error"],
    registry=registry,
)

# ============================================================================
# INTENT / ENRICHMENT METRICS
# ============================================================================

intent_confidence_distribution = Histogram(
    "intent_confidence_distribution",
    "Distribution of intent confidence scores",
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
    registry=registry,
)

intent_actions_total = Counter(
    "intent_actions_total",
    "Detected intent actions",
    ["action"],
    registry=registry,
)

enrichment_lookups_total = Counter(
    "enrichment_lookups_total",
    "Collaborator lookups issued by the enrichment pipeline",
    ["kind", "status"],  # kind: catalog | tutorials
    registry=registry,
)

# ============================================================================
# RESOURCE METRICS
# ============================================================================

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "System CPU usage percentage",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "System memory usage in bytes",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """
    Normalize an endpoint path for metric labels.

    Examples:
        /chat/message?x=1 -> /chat/message
        /health/ -> /health
    """
    if "?" in path:
        path = path.split("?")[0]
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/")
    return path or "/"


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record RED metrics for one HTTP request."""
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_cache_hit(cache_type: str) -> None:
    cache_hits_total.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str) -> None:
    cache_misses_total.labels(cache_type=cache_type).inc()


def record_llm_request(backend: str, model: str, duration_seconds: float) -> None:
    llm_requests_total.labels(backend=backend, model=model).inc()
    llm_request_duration_seconds.labels(backend=backend, model=model).observe(
        duration_seconds
    )


def record_llm_error(backend: str, error_type: str) -> None:
    llm_errors_total.labels(backend=backend, error_type=error_type).inc()


def record_llm_tokens_and_cost(
    backend: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    cost_usd: float,
) -> None:
    """Record token usage and estimated spend for one backend call."""
    if input_tokens:
        llm_tokens_total.labels(backend=backend, model=model, direction="input").inc(
            input_tokens
        )
    if output_tokens:
        llm_tokens_total.labels(backend=backend, model=model, direction="output").inc(
            output_tokens
        )
    if cost_usd > 0:
        llm_cost_usd_total.labels(backend=backend, model=model).inc(cost_usd)


def record_orchestration_attempt(backend: str, phase: str, outcome: str) -> None:
    """
    Record one orchestration attempt.

    Args:
        backend: Backend name
        phase: "primary" or "fallback"
        outcome: "success", "invalid" or "error"
    """
    orchestration_attempts_total.labels(
        backend=backend, phase=phase, outcome=outcome
    ).inc()


def record_orchestration_result(outcome: str, duration_seconds: float) -> None:
    orchestration_results_total.labels(outcome=outcome).inc()
    orchestration_duration_seconds.labels(outcome=outcome).observe(duration_seconds)


def record_validation_failure(error: Optional[str]) -> None:
    validation_failures_total.labels(error=error or "unknown").inc()


def record_intent(action: Optional[str], confidence: float) -> None:
    intent_actions_total.labels(action=action or "none").inc()
    intent_confidence_distribution.observe(confidence)


def record_enrichment_lookup(kind: str, status: str) -> None:
    enrichment_lookups_total.labels(kind=kind, status=status).inc()


def update_resource_metrics() -> None:
    """Refresh CPU and memory gauges (called on scrape)."""
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_bytes.set(psutil.virtual_memory().used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """Prometheus text exposition of the registry."""
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
