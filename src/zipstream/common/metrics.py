"""
Prometheus metrics for pipeline monitoring.

Focused on essential metrics:
- Message production and consumption counts
- Consumer lag, offsets and partition assignment
- Error rates by category
- Archive outcomes and rows transformed
- Reference cache refreshes
- Connection health
"""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Transport
# =============================================================================

messages_produced_counter = Counter(
    "zipstream_messages_produced_total",
    "Total messages produced",
    labelnames=["topic"],
)

messages_consumed_counter = Counter(
    "zipstream_messages_consumed_total",
    "Total messages consumed",
    labelnames=["topic", "consumer_group"],
)

consumer_lag_gauge = Gauge(
    "zipstream_consumer_lag",
    "Messages between the consumed offset and the partition high-water mark",
    labelnames=["topic", "partition", "consumer_group"],
)

consumer_offset_gauge = Gauge(
    "zipstream_consumer_offset",
    "Last processed offset",
    labelnames=["topic", "partition", "consumer_group"],
)

processing_errors_counter = Counter(
    "zipstream_processing_errors_total",
    "Message processing errors by category",
    labelnames=["topic", "consumer_group", "error_category"],
)

producer_errors_counter = Counter(
    "zipstream_producer_errors_total",
    "Producer send errors",
    labelnames=["topic", "error_type"],
)

connection_status_gauge = Gauge(
    "zipstream_connection_status",
    "Connection status (1=connected, 0=disconnected)",
    labelnames=["component"],
)

consumer_assigned_partitions_gauge = Gauge(
    "zipstream_consumer_assigned_partitions",
    "Partitions currently assigned to the consumer",
    labelnames=["consumer_group"],
)

message_processing_duration_seconds = Histogram(
    "zipstream_message_processing_duration_seconds",
    "Time spent handling one inbound message",
    labelnames=["topic", "consumer_group"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# =============================================================================
# Archive processing
# =============================================================================

archive_outcomes_counter = Counter(
    "zipstream_archive_outcomes_total",
    "Archive notifications by outcome",
    labelnames=["outcome", "reason"],
)

rows_transformed_counter = Counter(
    "zipstream_rows_transformed_total",
    "Tabular rows converted into records",
)

records_published_counter = Counter(
    "zipstream_records_published_total",
    "Enriched records published",
    labelnames=["source"],
)

# =============================================================================
# Reference cache
# =============================================================================

reference_refresh_counter = Counter(
    "zipstream_reference_refresh_total",
    "Reference snapshot refresh attempts",
    labelnames=["success"],
)

reference_entries_gauge = Gauge(
    "zipstream_reference_entries",
    "Datasets in the current reference snapshot",
)


def record_message_produced(topic: str, message_bytes: int, success: bool = True) -> None:
    """Record a produced message."""
    messages_produced_counter.labels(topic=topic).inc()
    if not success:
        producer_errors_counter.labels(topic=topic, error_type="send_failed").inc()


def record_message_consumed(topic: str, consumer_group: str) -> None:
    """Record a consumed message."""
    messages_consumed_counter.labels(topic=topic, consumer_group=consumer_group).inc()


def record_processing_error(topic: str, consumer_group: str, error_category: str) -> None:
    """Record a message processing error."""
    processing_errors_counter.labels(
        topic=topic, consumer_group=consumer_group, error_category=error_category
    ).inc()


def record_producer_error(topic: str, error_type: str) -> None:
    """Record a producer error."""
    producer_errors_counter.labels(topic=topic, error_type=error_type).inc()


def update_consumer_lag(topic: str, partition: int, consumer_group: str, lag: int) -> None:
    consumer_lag_gauge.labels(
        topic=topic, partition=str(partition), consumer_group=consumer_group
    ).set(lag)


def update_consumer_offset(topic: str, partition: int, consumer_group: str, offset: int) -> None:
    consumer_offset_gauge.labels(
        topic=topic, partition=str(partition), consumer_group=consumer_group
    ).set(offset)


def update_connection_status(component: str, connected: bool) -> None:
    connection_status_gauge.labels(component=component).set(1 if connected else 0)


def update_assigned_partitions(consumer_group: str, count: int) -> None:
    consumer_assigned_partitions_gauge.labels(consumer_group=consumer_group).set(count)


def record_archive_outcome(outcome: str, reason: str = "") -> None:
    """Record how an archive notification was resolved (published/dropped/failed)."""
    archive_outcomes_counter.labels(outcome=outcome, reason=reason).inc()


def record_rows_transformed(count: int) -> None:
    rows_transformed_counter.inc(count)


def record_records_published(source: str, count: int) -> None:
    """Record published records; source is "rows" or "secondary"."""
    records_published_counter.labels(source=source).inc(count)


def record_reference_refresh(success: bool, entries: int | None = None) -> None:
    reference_refresh_counter.labels(success="true" if success else "false").inc()
    if entries is not None:
        reference_entries_gauge.set(entries)


__all__ = [
    "messages_produced_counter",
    "messages_consumed_counter",
    "consumer_lag_gauge",
    "consumer_offset_gauge",
    "processing_errors_counter",
    "producer_errors_counter",
    "connection_status_gauge",
    "consumer_assigned_partitions_gauge",
    "message_processing_duration_seconds",
    "archive_outcomes_counter",
    "rows_transformed_counter",
    "records_published_counter",
    "reference_refresh_counter",
    "reference_entries_gauge",
    "record_message_produced",
    "record_message_consumed",
    "record_processing_error",
    "record_producer_error",
    "update_consumer_lag",
    "update_consumer_offset",
    "update_connection_status",
    "update_assigned_partitions",
    "record_archive_outcome",
    "record_rows_transformed",
    "record_records_published",
    "record_reference_refresh",
]
