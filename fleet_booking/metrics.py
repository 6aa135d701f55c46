"""
Prometheus metrics for fleet booking

Metrics Categories:
- Reservations: attempts by outcome, conflicts, lifecycle operations
- Dashboard: snapshot cache hits/misses, refresh duration and failures
"""
from prometheus_client import (
    Counter, Histogram,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

# Custom registry (allows multiple app instances in tests)
registry = CollectorRegistry()

# ============================================================
# Reservation Metrics
# ============================================================

reservation_attempts_total = Counter(
    'reservation_attempts_total',
    'Total reservation create/reschedule attempts',
    ['operation', 'outcome'],
    registry=registry
)

reservation_conflicts_total = Counter(
    'reservation_conflicts_total',
    'Total requests rejected for overlapping an existing booking',
    ['operation'],
    registry=registry
)

reservation_operations_total = Counter(
    'reservation_operations_total',
    'Lifecycle operations on existing reservations',
    ['operation', 'outcome'],
    registry=registry
)

# ============================================================
# Dashboard Metrics
# ============================================================

snapshot_cache_requests_total = Counter(
    'snapshot_cache_requests_total',
    'Dashboard snapshot lookups',
    ['result'],  # hit, miss, error
    registry=registry
)

snapshot_refresh_duration_seconds = Histogram(
    'snapshot_refresh_duration_seconds',
    'Dashboard snapshot recomputation duration',
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
    registry=registry
)

snapshot_refresh_failures_total = Counter(
    'snapshot_refresh_failures_total',
    'Dashboard refreshes that failed and kept the previous snapshot',
    [],
    registry=registry
)

optimistic_rollbacks_total = Counter(
    'optimistic_rollbacks_total',
    'Optimistic dashboard edits discarded by reloading authoritative state',
    ['kind'],
    registry=registry
)


def render_metrics():
    """Exposition payload and content type for the /metrics endpoint"""
    return generate_latest(registry), CONTENT_TYPE_LATEST
