"""
Prometheus collectors for composite_sync components.

Collectors live in the global REGISTRY; import this module (or anything that
uses it) at startup and expose them with ``prometheus_client.start_http_server``.
"""

from prometheus_client import Counter, Histogram


# --- KV long-poll ---

KV_POLL_TOTAL = Counter(
    "kv_poll_total",
    "Completed KV long-poll requests",
    ["path_kind", "outcome"],
)

KV_SNAPSHOT_DELIVERED_TOTAL = Counter(
    "kv_snapshot_delivered_total",
    "KV snapshots delivered to watch callbacks",
    ["path_kind"],
)

# --- Topology ---

TOPOLOGY_PREFIX_SWITCH_TOTAL = Counter(
    "topology_prefix_switch_total",
    "Times the data watch was switched to a new structure prefix",
)

TOPOLOGY_TRANSFORM_TOTAL = Counter(
    "topology_transform_total",
    "Structure transformations by outcome",
    ["outcome"],
)

# --- Writer ---

WRITER_ATTEMPTS_TOTAL = Counter(
    "writer_attempts_total",
    "Destination write attempts by outcome",
    ["outcome"],
)

WRITER_ATTEMPT_LATENCY_MS = Histogram(
    "writer_attempt_latency_ms",
    "Destination write attempt latency in milliseconds",
    buckets=[1, 2.5, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000],
)

# --- Reconciliation ---

RECONCILE_PASS_TOTAL = Counter(
    "reconcile_pass_total",
    "Reconciliation passes by resulting phase",
    ["phase"],
)

RECONCILE_STEP_TOTAL = Counter(
    "reconcile_step_total",
    "Reconciliation step executions by outcome",
    ["step", "outcome"],
)


class MetricsRegistry:
    """Centralized access to composite_sync metrics."""

    kv_poll_total = KV_POLL_TOTAL
    kv_snapshot_delivered_total = KV_SNAPSHOT_DELIVERED_TOTAL
    topology_prefix_switch_total = TOPOLOGY_PREFIX_SWITCH_TOTAL
    topology_transform_total = TOPOLOGY_TRANSFORM_TOTAL
    writer_attempts_total = WRITER_ATTEMPTS_TOTAL
    writer_attempt_latency_ms = WRITER_ATTEMPT_LATENCY_MS
    reconcile_pass_total = RECONCILE_PASS_TOTAL
    reconcile_step_total = RECONCILE_STEP_TOTAL


# Singleton instance
metrics_registry = MetricsRegistry()
