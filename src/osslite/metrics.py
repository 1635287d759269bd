"""Prometheus metrics definitions for osslite.

All custom metrics use the ``osslite_`` prefix. These are
application-level operation metrics; ``prometheus-fastapi-instrumentator``
provides the HTTP-level ones (request count, duration, sizes).

Counters reset to zero on restart. The objects/buckets gauges are seeded
from the metadata store on startup.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# Operation counter (labels: operation, status)
oss_operations_total: Counter | None = None

# ACL changes (label: permission)
acl_updates_total: Counter | None = None

objects_total: Gauge | None = None
buckets_total: Gauge | None = None

bytes_received_total: Counter | None = None
bytes_sent_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Must be called once when metrics are enabled. When metrics are
    disabled in config the module-level references stay ``None`` and no
    collectors are registered in the global registry.
    """
    global _initialized
    global oss_operations_total, acl_updates_total, objects_total, buckets_total
    global bytes_received_total, bytes_sent_total

    if _initialized:
        return

    oss_operations_total = Counter(
        "osslite_operations_total",
        "Total OSS operations by type and outcome",
        ["operation", "status"],
    )

    acl_updates_total = Counter(
        "osslite_acl_updates_total",
        "Object ACL values persisted, by permission",
        ["permission"],
    )

    objects_total = Gauge(
        "osslite_objects_total",
        "Total number of objects across all buckets",
    )

    buckets_total = Gauge(
        "osslite_buckets_total",
        "Total number of buckets",
    )

    bytes_received_total = Counter(
        "osslite_bytes_received_total",
        "Total bytes received in request bodies",
    )

    bytes_sent_total = Counter(
        "osslite_bytes_sent_total",
        "Total bytes sent in response bodies",
    )

    _initialized = True


def record_acl_update(permission: str) -> None:
    """Count one persisted object ACL value, if metrics are enabled."""
    if acl_updates_total is not None:
        acl_updates_total.labels(permission=permission).inc()
