"""Logging field schema - v1.0

Standard fields (added to all logs):
- schema_version: Log schema version
- service: Service name (gift-instance-manager)
- event: Event type (operation_failed, reconcile_complete, etc.)
- trace_id: Request trace ID
- duration_ms: Duration in milliseconds

High cardinality fields (OK in logs, NOT in metric labels):
- instance_id: Instance ID
- instance_name: Instance name
- container_id: Container reference
"""

from enum import StrEnum


class LogEvent(StrEnum):
    """Standard log event types.

    Use these event types in the 'event' extra field for consistent
    log filtering and analysis.
    """

    # Lifecycle operations
    OPERATION_SUCCESS = "operation_success"
    OPERATION_FAILED = "operation_failed"
    CONTAINER_CREATED = "container_created"
    CONTAINER_MISSING = "container_missing"
    CONTAINER_CLEANUP_FAILED = "container_cleanup_failed"

    # Store events
    INSTANCE_CREATED = "instance_created"
    INSTANCE_UPDATED = "instance_updated"
    INSTANCE_DELETED = "instance_deleted"
    INSTANCE_CONFLICT = "instance_conflict"

    # Reconciler events
    RECONCILE_COMPLETE = "reconcile_complete"
    RECONCILE_FAILED = "reconcile_failed"
    RECONCILE_SKIPPED = "reconcile_skipped"
    STATE_CHANGED = "state_changed"
    STATUS_PUBLISHED = "status_published"

    # Infrastructure events
    DB_CONNECTED = "db_connected"
    DB_ERROR = "db_error"
    REDIS_CONNECTED = "redis_connected"
    DOCKER_CONNECTED = "docker_connected"
    DOCKER_UNAVAILABLE = "docker_unavailable"
    DOCKER_API_ERROR = "docker_api_error"

    # Lifecycle events
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"

    # API events
    REQUEST_COMPLETE = "request_complete"
    REQUEST_FAILED = "request_failed"
    REQUEST_SLOW = "request_slow"
    UNHANDLED_ERROR = "unhandled_error"

    # SSE events
    SSE_CONNECTED = "sse_connected"
    SSE_DISCONNECTED = "sse_disconnected"
    SSE_RECEIVED = "sse_received"

