"""Prometheus metrics definitions."""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Histogram Buckets (optimized by latency category)
# =============================================================================

# FAST: DB queries, CPU computation (0.5ms ~ 5s)
_BUCKETS_FAST = (
    0.0005, 0.001, 0.002, 0.005, 0.01,
    0.02, 0.05, 0.1, 0.2, 0.5,
    1, 2, 5,
)

# SLOW: Docker operations, stop grace periods included (100ms ~ 180s)
_BUCKETS_SLOW = (
    0.1, 0.2, 0.39, 0.77, 1.5,
    3, 6, 12, 23, 46,
    91, 180,
)

# =============================================================================
# HTTP
# =============================================================================

HTTP_REQUESTS_TOTAL = Counter(
    "giftmgr_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "giftmgr_http_request_duration_seconds",
    "HTTP request duration",
    ["method", "endpoint"],
    buckets=_BUCKETS_FAST,
)

# =============================================================================
# Lifecycle operations
# =============================================================================

LIFECYCLE_OPERATIONS_TOTAL = Counter(
    "giftmgr_lifecycle_operations_total",
    "Lifecycle operations by operation and result",
    ["operation", "result"],  # result: success | failure
)

DOCKER_API_DURATION = Histogram(
    "giftmgr_docker_api_duration_seconds",
    "Docker Engine API call duration",
    ["operation"],
    buckets=_BUCKETS_SLOW,
)

DOCKER_API_ERRORS_TOTAL = Counter(
    "giftmgr_docker_api_errors_total",
    "Docker Engine API call failures",
    ["operation", "kind"],  # kind: not_found | runtime
)

# =============================================================================
# Reconciler
# =============================================================================

RECONCILE_DURATION = Histogram(
    "giftmgr_reconcile_duration_seconds",
    "Reconciliation pass duration",
    buckets=_BUCKETS_SLOW,
)

RECONCILE_CORRECTIONS_TOTAL = Counter(
    "giftmgr_reconcile_corrections_total",
    "Status corrections applied by the reconciler",
    ["kind"],  # kind: status | container_cleared
)

INSTANCES_TOTAL = Gauge(
    "giftmgr_instances",
    "Instances by stored status after the last reconciliation pass",
    ["status"],
)

# =============================================================================
# SSE
# =============================================================================

SSE_ACTIVE_CONNECTIONS = Gauge(
    "giftmgr_sse_active_connections",
    "Currently active SSE connections",
)

SSE_MESSAGES_TOTAL = Counter(
    "giftmgr_sse_messages_total",
    "SSE messages sent",
    ["event_type"],
)
