"""Message producer with per-worker config and metrics."""

import asyncio
import json
import logging
import time
from typing import Any

from aiokafka import AIOKafkaProducer
from pydantic import BaseModel

from config.config import MessageConfig
from core.utils.json_serializers import json_serializer
from zipstream.common.kafka_config import build_kafka_security_config
from zipstream.common.metrics import (
    record_message_produced,
    record_producer_error,
    update_connection_status,
)
from zipstream.common.types import ProduceResult

logger = logging.getLogger(__name__)

MessageValue = BaseModel | dict[str, Any] | str | bytes


def _encode_value(value: MessageValue) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, BaseModel):
        return value.model_dump_json().encode("utf-8")
    return json.dumps(value, default=json_serializer).encode("utf-8")


def _encode_key(key: str | bytes | None) -> bytes | None:
    if key is None or isinstance(key, bytes):
        return key
    return key.encode("utf-8")


class MessageProducer:
    """Async message producer with worker-specific config."""

    def __init__(
        self,
        config: MessageConfig,
        domain: str,
        worker_name: str,
    ):
        # Worker-specific overrides merged over producer_defaults
        self.config = config
        self.domain = domain
        self.worker_name = worker_name
        self._producer: AIOKafkaProducer | None = None
        self._started = False
        self.producer_config = config.get_worker_config(domain, worker_name, "producer")

        logger.info(
            "Initialized message producer",
            extra={
                "domain": domain,
                "worker_name": worker_name,
                "bootstrap_servers": config.bootstrap_servers,
                "security_protocol": config.security_protocol,
            },
        )

    def _resolve_acks_and_idempotence(self) -> tuple[Any, bool]:
        """Resolve acks value and idempotence setting, enforcing mutual constraints."""
        acks_value = self.producer_config.get("acks", "all")
        if isinstance(acks_value, str) and acks_value.isdigit():
            acks_value = int(acks_value)

        enable_idempotence = self.producer_config.get("enable_idempotence", True)
        if enable_idempotence and acks_value != "all":
            logger.warning(
                "Overriding acks to 'all' because enable_idempotence=True requires it",
                extra={"configured_acks": acks_value, "worker_name": self.worker_name},
            )
            acks_value = "all"

        return acks_value, enable_idempotence

    def _build_kafka_config(self) -> dict[str, Any]:
        acks_value, enable_idempotence = self._resolve_acks_and_idempotence()

        kafka_config: dict[str, Any] = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "connections_max_idle_ms": self.config.connections_max_idle_ms,
            "acks": acks_value,
            "retry_backoff_ms": self.producer_config.get("retry_backoff_ms", 1000),
            "enable_idempotence": enable_idempotence,
            "max_request_size": self.producer_config.get("max_request_size", 10 * 1024 * 1024),
        }

        if "linger_ms" in self.producer_config:
            kafka_config["linger_ms"] = self.producer_config["linger_ms"]

        if "batch_size" in self.producer_config:
            kafka_config["max_batch_size"] = self.producer_config["batch_size"]

        if "compression_type" in self.producer_config:
            compression = self.producer_config["compression_type"]
            kafka_config["compression_type"] = None if compression == "none" else compression

        kafka_config.update(build_kafka_security_config(self.config))
        return kafka_config

    async def start(self) -> None:
        if self._started:
            logger.warning("Producer already started, ignoring duplicate start call")
            return

        logger.info("Starting message producer")

        kafka_config = self._build_kafka_config()
        self._producer = AIOKafkaProducer(**kafka_config)
        await self._producer.start()
        self._started = True
        update_connection_status("producer", connected=True)

        logger.info(
            "Message producer started successfully",
            extra={
                "bootstrap_servers": self.config.bootstrap_servers,
                "acks": kafka_config["acks"],
                "compression_type": self.producer_config.get("compression_type", "none"),
            },
        )

    async def stop(self) -> None:
        # Errors during stop are logged, not raised, so they cannot mask the shutdown cause
        if self._producer is None:
            logger.debug("Producer already stopped")
            return

        logger.info("Stopping message producer")

        try:
            if self._started:
                await self._producer.flush()
            await self._producer.stop()
            logger.info("Message producer stopped successfully")
        except Exception as e:
            logger.error(
                "Error stopping message producer",
                extra={"error": str(e)},
                exc_info=True,
            )
        finally:
            update_connection_status("producer", connected=False)
            self._producer = None
            self._started = False

    async def send(
        self,
        topic: str,
        key: str | bytes | None,
        value: MessageValue,
        headers: dict[str, str] | None = None,
    ) -> ProduceResult:
        """Send one message and wait for the broker acknowledgement."""
        if not self._started or self._producer is None:
            raise RuntimeError("Producer not started. Call start() first.")

        value_bytes = _encode_value(value)
        headers_list = [(k, v.encode("utf-8")) for k, v in headers.items()] if headers else None

        try:
            metadata = await self._producer.send_and_wait(
                topic,
                key=_encode_key(key),
                value=value_bytes,
                headers=headers_list,
            )
        except Exception as e:
            record_message_produced(topic, len(value_bytes), success=False)
            logger.error(
                "Failed to send message",
                extra={"topic": topic, "key": key, "error": str(e)},
                exc_info=True,
            )
            raise

        record_message_produced(topic, len(value_bytes), success=True)
        return ProduceResult(topic=metadata.topic, partition=metadata.partition, offset=metadata.offset)

    async def send_batch(
        self,
        topic: str,
        messages: list[tuple[str | bytes | None, MessageValue]],
    ) -> list[ProduceResult]:
        """Enqueue all messages, then wait for every acknowledgement.

        Results are returned in the order given. The first failed delivery
        is raised once all sends have settled.
        """
        if not self._started or self._producer is None:
            raise RuntimeError("Producer not started. Call start() first.")

        if not messages:
            return []

        start_time = time.perf_counter()
        futures = []
        total_bytes = 0
        try:
            for key, value in messages:
                value_bytes = _encode_value(value)
                total_bytes += len(value_bytes)
                futures.append(
                    await self._producer.send(topic, key=_encode_key(key), value=value_bytes)
                )

            outcomes = await asyncio.gather(*futures, return_exceptions=True)
        except Exception as e:
            record_producer_error(topic, type(e).__name__)
            logger.error(
                "Failed to enqueue batch",
                extra={"topic": topic, "error": str(e)},
                exc_info=True,
            )
            raise

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        avg_bytes = total_bytes // len(messages)
        results: list[ProduceResult] = []
        first_error: BaseException | None = None
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                record_message_produced(topic, avg_bytes, success=False)
                first_error = first_error or outcome
                continue
            record_message_produced(topic, avg_bytes, success=True)
            results.append(
                ProduceResult(topic=outcome.topic, partition=outcome.partition, offset=outcome.offset)
            )

        if first_error is not None:
            logger.error(
                "Failed to send batch",
                extra={"topic": topic, "row_count": len(messages), "duration_ms": duration_ms, "error": str(first_error)},
            )
            raise first_error

        logger.debug(
            "Batch sent successfully",
            extra={"topic": topic, "records_published": len(results), "duration_ms": duration_ms},
        )
        return results

    async def flush(self) -> None:
        if not self._started or self._producer is None:
            raise RuntimeError("Producer not started. Call start() first.")
        await self._producer.flush()

    @property
    def is_started(self) -> bool:
        return self._started and self._producer is not None


__all__ = [
    "MessageProducer",
    "ProduceResult",
]
