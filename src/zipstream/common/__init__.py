"""Kafka transport shared by zipstream workers."""

from zipstream.common.consumer import MessageConsumer
from zipstream.common.producer import MessageProducer
from zipstream.common.types import PipelineMessage, ProduceResult, from_consumer_record

__all__ = [
    "MessageConsumer",
    "MessageProducer",
    "PipelineMessage",
    "ProduceResult",
    "from_consumer_record",
]
