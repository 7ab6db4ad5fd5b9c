# File: metrics.py

from prometheus_client import Counter, Gauge, Histogram

METRICS = {
    "reconciliation_latency": Histogram(
        "nsg_controller_reconciliation_duration_ms",
        "Time taken for a reconciliation pass in milliseconds",
        buckets=(50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000),
    ),
    "reconciliations": Counter(
        "nsg_controller_reconciliations_total",
        "Count of reconciliation passes by outcome",
        ["result"],
    ),
    "signals": Counter(
        "nsg_controller_signals_total",
        "Count of update signals by triggering pod event",
        ["event"],
    ),
    "pods_skipped": Counter(
        "nsg_controller_pods_skipped_total",
        "Target pods left out of a synthesis pass",
        ["reason"],
    ),
    "managed_rules": Gauge(
        "nsg_controller_managed_rules",
        "Number of controller-owned rules written on the last successful pass",
    ),
    "foreign_rules": Gauge(
        "nsg_controller_foreign_rules",
        "Number of foreign rules preserved on the last successful pass",
    ),
    "last_success_timestamp": Gauge(
        "nsg_controller_last_success_timestamp_seconds",
        "Unix time of the last successful reconciliation pass",
    ),
}
