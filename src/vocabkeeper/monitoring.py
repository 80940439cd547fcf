"""Monitoring configuration for the storage layer."""
from prometheus_client import Counter, Gauge, Histogram, start_http_server

# Backend metrics
active_backend = Gauge(
    "vocabkeeper_active_backend",
    "1 for the storage backend currently serving requests",
    ["backend"],
)

backend_fallbacks = Counter(
    "vocabkeeper_backend_fallbacks_total",
    "Total number of times the structured backend was unavailable",
)

# Storage operation metrics
storage_operations = Counter(
    "vocabkeeper_storage_operations_total",
    "Total number of storage operations",
    ["operation", "backend"],
)

storage_errors = Counter(
    "vocabkeeper_storage_errors_total",
    "Total number of failed storage operations",
    ["operation", "error_type"],
)

operation_duration = Histogram(
    "vocabkeeper_operation_duration_seconds",
    "Duration of storage operations in seconds",
    ["operation"],
    buckets=[0.001, 0.01, 0.1, 0.5, 1.0, 5.0],
)

# Migration metrics
migrations = Counter(
    "vocabkeeper_migrations_total",
    "Total number of legacy migrations by outcome",
    ["state"],
)

# Backup metrics
backups_created = Counter(
    "vocabkeeper_backups_created_total",
    "Total number of backups created",
    ["kind"],
)

backups_pruned = Counter(
    "vocabkeeper_backups_pruned_total",
    "Total number of automatic backups deleted by the retention policy",
)

backup_failures = Counter(
    "vocabkeeper_backup_failures_total",
    "Total number of automatic backups that failed",
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
