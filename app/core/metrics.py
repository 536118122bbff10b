"""Prometheus metrics for monitoring"""
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest
import time
from functools import wraps
from typing import Callable

registry = CollectorRegistry()

request_count = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status'],
    registry=registry
)

request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=registry
)

db_operations = Counter(
    'db_operations_total',
    'Total database operations',
    ['operation', 'table', 'status'],
    registry=registry
)

db_query_duration = Histogram(
    'db_query_duration_seconds',
    'Database query duration in seconds',
    ['table', 'operation'],
    registry=registry
)

optimistic_conflicts = Counter(
    'optimistic_lock_conflicts_total',
    'Concurrent write conflicts detected on commit',
    ['operation'],
    registry=registry
)

order_transitions = Counter(
    'order_transitions_total',
    'Order status transitions applied',
    ['from_status', 'to_status', 'trigger'],
    registry=registry
)

payment_sessions = Counter(
    'payment_sessions_total',
    'Payment session creation attempts',
    ['status'],
    registry=registry
)

payment_reconciliations = Counter(
    'payment_reconciliations_total',
    'Payment reconciliation outcomes',
    ['result'],
    registry=registry
)

gateway_duration = Histogram(
    'gateway_request_duration_seconds',
    'Payment gateway call duration in seconds',
    ['operation'],
    registry=registry
)

scheduler_transitions = Counter(
    'scheduler_transitions_total',
    'Orders moved by the scheduled status sweep',
    ['rule'],
    registry=registry
)

scheduler_failures = Counter(
    'scheduler_failures_total',
    'Orders the scheduled sweep failed to move',
    ['rule'],
    registry=registry
)

rate_limit_exceeded = Counter(
    'rate_limit_exceeded_total',
    'Total rate limit exceeded events',
    ['user_id'],
    registry=registry
)

webhook_deliveries = Counter(
    'webhook_deliveries_total',
    'Total webhook delivery attempts',
    ['status'],
    registry=registry
)

webhook_duration = Histogram(
    'webhook_delivery_duration_seconds',
    'Webhook delivery duration in seconds',
    ['status'],
    registry=registry
)

redis_connected = Gauge(
    'redis_connected',
    'Redis connection status (1=connected, 0=disconnected)',
    registry=registry
)

db_connected = Gauge(
    'db_connected',
    'Database connection status (1=connected, 0=disconnected)',
    registry=registry
)


def track_db_operation(operation: str, table: str):
    """Record duration and outcome of a service-level write against `table`"""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            status = "error"
            try:
                result = await func(*args, **kwargs)
                status = "success"
                return result
            finally:
                db_query_duration.labels(table=table, operation=operation).observe(time.perf_counter() - start_time)
                db_operations.labels(operation=operation, table=table, status=status).inc()
        return wrapper
    return decorator


def get_metrics_text() -> str:
    return generate_latest(registry).decode('utf-8')
