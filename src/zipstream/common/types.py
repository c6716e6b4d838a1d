"""Transport-agnostic message types for the Kafka consumer and producer."""

from dataclasses import dataclass

__all__ = [
    "PipelineMessage",
    "ProduceResult",
    "from_consumer_record",
]


@dataclass(frozen=True)
class PipelineMessage:
    """Transport-agnostic message received from Kafka."""

    topic: str
    partition: int
    offset: int
    timestamp: int
    key: bytes | None = None
    value: bytes | None = None
    headers: list[tuple[str, bytes]] | None = None


@dataclass(frozen=True)
class ProduceResult:
    """Transport-agnostic confirmation of a published message."""

    topic: str
    partition: int
    offset: int


def from_consumer_record(record) -> PipelineMessage:
    """Convert aiokafka ConsumerRecord to PipelineMessage."""
    headers = None
    if getattr(record, "headers", None):
        headers = [(k, v) for k, v in record.headers]

    return PipelineMessage(
        topic=record.topic,
        partition=record.partition,
        offset=record.offset,
        timestamp=record.timestamp,
        key=record.key,
        value=record.value,
        headers=headers,
    )
