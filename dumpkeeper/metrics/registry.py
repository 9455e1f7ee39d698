from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Separate from the default registry so textfile exports hold only backup
# metrics, not process/platform collectors.
REGISTRY = CollectorRegistry()

DUMPS_TOTAL = Counter(
    "dumpkeeper_dumps_total",
    "Database dumps attempted, by outcome.",
    ["status"],
    registry=REGISTRY,
)

DUMP_DURATION_SECONDS = Histogram(
    "dumpkeeper_dump_duration_seconds",
    "Wall time of one dump-and-compress pipeline.",
    ["status"],
    buckets=(1, 5, 15, 60, 300, 900, 1800, 3600, 7200, 21600),
    registry=REGISTRY,
)

DUMP_BYTES = Gauge(
    "dumpkeeper_dump_bytes",
    "Size of the most recent successful compressed dump.",
    ["database"],
    registry=REGISTRY,
)

PRUNED_FILES_TOTAL = Counter(
    "dumpkeeper_pruned_files_total",
    "Expired dump files handled by retention pruning.",
    ["status"],
    registry=REGISTRY,
)

LAST_RUN_TIMESTAMP_SECONDS = Gauge(
    "dumpkeeper_last_run_timestamp_seconds",
    "Unix time the last backup run finished, by result.",
    ["result"],
    registry=REGISTRY,
)
