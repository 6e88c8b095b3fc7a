from prometheus_client import Counter, Histogram

items_imported_total = Counter("transfer_items_imported_total", "Media items created on the destination")
items_failed_total = Counter(
    "transfer_items_failed_total",
    "Media items that failed to stage, upload or be created",
    ["stage"],
)
bytes_imported_total = Counter("transfer_bytes_imported_total", "Bytes of media content imported")
containers_created_total = Counter("transfer_containers_created_total", "Containers created on the destination")
batch_calls_total = Counter("transfer_batch_calls_total", "Batch create calls issued")
batch_failures_total = Counter(
    "transfer_batch_failures_total",
    "Batch create calls that failed as a whole",
    ["kind"],
)
batch_create_seconds = Histogram(
    "transfer_batch_create_seconds",
    "Duration of batch create calls in seconds",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)
