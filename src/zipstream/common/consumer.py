"""Message consumer with per-worker config, message log context and error classification."""

import asyncio
import itertools
import logging
import time
from collections.abc import Awaitable, Callable

from aiokafka import AIOKafkaConsumer
from aiokafka.structs import ConsumerRecord, TopicPartition

from config.config import MessageConfig
from core.errors import ErrorCategory, wrap_exception
from core.logging import MessageLogContext, log_worker_error
from core.utils import generate_worker_id
from zipstream.common.kafka_config import build_kafka_security_config
from zipstream.common.metrics import (
    message_processing_duration_seconds,
    record_message_consumed,
    record_processing_error,
    update_assigned_partitions,
    update_connection_status,
    update_consumer_lag,
    update_consumer_offset,
)
from zipstream.common.types import PipelineMessage, from_consumer_record

logger = logging.getLogger(__name__)


class MessageConsumer:
    """Async message consumer that hands each record to a handler and commits after it.

    Handler errors are classified: transient ones (timeouts, lost
    connections, auth) leave the offset uncommitted so the message is
    redelivered after a restart or rebalance; permanent ones are logged and
    committed past.
    """

    def __init__(
        self,
        config: MessageConfig,
        domain: str,
        worker_name: str,
        topics: list[str],
        message_handler: Callable[[PipelineMessage], Awaitable[None]],
        instance_id: str | None = None,
    ):
        if not topics:
            raise ValueError("At least one topic must be specified")

        self.config = config
        self.domain = domain
        self.worker_name = worker_name
        self.instance_id = instance_id
        self.topics = topics
        self.message_handler = message_handler
        self._consumer: AIOKafkaConsumer | None = None
        self._running = False

        prefix = f"{domain}-{worker_name}"
        if instance_id:
            prefix = f"{prefix}-{instance_id}"
        self.worker_id = generate_worker_id(prefix)

        self.consumer_config = config.get_worker_config(domain, worker_name, "consumer")
        self.group_id = config.get_consumer_group(domain, worker_name)

        logger.info(
            "Initialized message consumer",
            extra={
                "domain": domain,
                "worker_name": worker_name,
                "topics": topics,
                "group_id": self.group_id,
                "bootstrap_servers": config.bootstrap_servers,
            },
        )

    # Optional consumer config keys forwarded to AIOKafkaConsumer if present
    _OPTIONAL_CONSUMER_KEYS = (
        "heartbeat_interval_ms",
        "fetch_min_bytes",
        "fetch_max_wait_ms",
    )

    def _build_kafka_config(self) -> dict:
        """Build the AIOKafkaConsumer configuration dict."""
        client_id = f"{self.domain}-{self.worker_name}"
        if self.instance_id:
            client_id = f"{client_id}-{self.instance_id}"

        cfg = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "group_id": self.group_id,
            "client_id": client_id,
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "connections_max_idle_ms": self.config.connections_max_idle_ms,
            "enable_auto_commit": self.consumer_config.get("enable_auto_commit", False),
            "auto_offset_reset": self.consumer_config.get("auto_offset_reset", "earliest"),
            "max_poll_records": self.consumer_config.get("max_poll_records", 100),
            "max_poll_interval_ms": self.consumer_config.get("max_poll_interval_ms", 300000),
            "session_timeout_ms": self.consumer_config.get("session_timeout_ms", 30000),
        }

        for key in self._OPTIONAL_CONSUMER_KEYS:
            if key in self.consumer_config:
                cfg[key] = self.consumer_config[key]

        cfg.update(build_kafka_security_config(self.config))
        return cfg

    async def start(self) -> None:
        """Connect and run the consume loop until stop() or cancellation."""
        if self._running:
            logger.warning("Consumer already running, ignoring duplicate start call")
            return

        logger.info("Starting message consumer", extra={"topics": self.topics, "group_id": self.group_id})

        self._consumer = AIOKafkaConsumer(*self.topics, **self._build_kafka_config())
        await self._consumer.start()
        self._running = True
        update_connection_status("consumer", connected=True)

        try:
            await self._consume_loop()
        except asyncio.CancelledError:
            logger.info("Consumer loop cancelled, shutting down")
            raise
        except Exception:
            logger.error("Consumer loop terminated with error", exc_info=True)
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        if self._consumer is None:
            logger.debug("Consumer not running or already stopped")
            return

        logger.info("Stopping message consumer")
        self._running = False

        try:
            await self._consumer.commit()
            await self._consumer.stop()
            logger.info("Message consumer stopped successfully")
        except Exception:
            logger.error("Error stopping message consumer", exc_info=True)
            raise
        finally:
            update_connection_status("consumer", connected=False)
            update_assigned_partitions(self.group_id, 0)
            self._consumer = None

    async def _wait_for_assignment(self) -> bool:
        """Wait for partition assignment, logging once. Returns True when assigned."""
        logged_waiting = False
        while self._running and self._consumer:
            assignment = self._consumer.assignment()
            if assignment:
                partition_info = [f"{tp.topic}:{tp.partition}" for tp in assignment]
                logger.info(
                    "Partition assignment received, starting message consumption",
                    extra={"group_id": self.group_id, "partitions": len(assignment), "assigned": partition_info},
                )
                update_assigned_partitions(self.group_id, len(assignment))
                return True
            if not logged_waiting:
                logger.info(
                    "Waiting for partition assignment (consumer group rebalance in progress)",
                    extra={"group_id": self.group_id, "topics": self.topics},
                )
                logged_waiting = True
            await asyncio.sleep(0.5)
        return False

    async def _fetch_and_process_batch(self) -> bool:
        """Fetch a batch of messages and process them.

        Returns False if the consumer was stopped mid-batch, True otherwise.
        """
        data = await self._consumer.getmany(timeout_ms=1000)

        for message in itertools.chain.from_iterable(data.values()):
            if not self._running:
                return False
            await self._process_message(message)
        return True

    async def _consume_loop(self) -> None:
        logger.info("Starting message consumption loop", extra={"topics": self.topics, "group_id": self.group_id})

        if not await self._wait_for_assignment():
            return

        while self._running and self._consumer:
            try:
                if not await self._fetch_and_process_batch():
                    return
            except asyncio.CancelledError:
                logger.info("Consumption loop cancelled")
                raise
            except Exception:
                logger.error("Error in consumption loop", exc_info=True)
                await asyncio.sleep(1)

    async def _process_message(self, message: ConsumerRecord) -> None:
        with MessageLogContext(
            topic=message.topic,
            partition=message.partition,
            offset=message.offset,
            key=message.key.decode("utf-8", errors="replace") if message.key else None,
            consumer_group=self.group_id,
        ):
            start_time = time.perf_counter()
            pipeline_message = from_consumer_record(message)

            try:
                await self.message_handler(pipeline_message)

                await self._consumer.commit()

                self._update_partition_metrics(message)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                duration = time.perf_counter() - start_time
                await self._handle_processing_error(message, e, duration)

            finally:
                duration = time.perf_counter() - start_time
                message_processing_duration_seconds.labels(
                    topic=message.topic, consumer_group=self.group_id
                ).observe(duration)
                record_message_consumed(message.topic, self.group_id)

    # Error categories that leave the offset uncommitted for redelivery
    _RETRIABLE_CATEGORIES = {
        ErrorCategory.TRANSIENT: "Transient error - offset left uncommitted for redelivery",
        ErrorCategory.AUTH: "Authentication error - offset left uncommitted for redelivery",
        ErrorCategory.CIRCUIT_OPEN: "Circuit open - offset left uncommitted for redelivery",
    }

    async def _handle_processing_error(
        self,
        message: ConsumerRecord,
        error: Exception,
        duration: float,
    ) -> None:
        classified_error = wrap_exception(
            error,
            context={"topic": message.topic, "partition": message.partition, "offset": message.offset},
        )
        error_category = classified_error.category
        record_processing_error(message.topic, self.group_id, error_category.value)

        common_context = {
            "error_category": error_category.value,
            "error_type": type(error).__name__,
            "duration_ms": round(duration * 1000, 2),
        }

        retry_msg = self._RETRIABLE_CATEGORIES.get(error_category)
        if retry_msg:
            logger.warning(retry_msg, extra=common_context, exc_info=True)
            return

        log_worker_error(
            logger,
            "Permanent error processing message - skipping",
            exc=error,
            **common_context,
        )
        if self._consumer is not None:
            await self._consumer.commit()

    def _update_partition_metrics(self, message: ConsumerRecord) -> None:
        if not self._consumer:
            return

        try:
            update_consumer_offset(message.topic, message.partition, self.group_id, message.offset)

            highwater = self._consumer.highwater(TopicPartition(message.topic, message.partition))
            if highwater is not None:
                lag = highwater - (message.offset + 1)
                update_consumer_lag(message.topic, message.partition, self.group_id, lag)

        except Exception as e:
            logger.debug(
                "Failed to update partition metrics",
                extra={"topic": message.topic, "partition": message.partition, "error": str(e)},
            )

    @property
    def is_running(self) -> bool:
        return self._running and self._consumer is not None


__all__ = [
    "MessageConsumer",
]
