"""
Pipeline Worker Base

A worker is a long-running process that:
- Consumes batches from one Kafka topic with its own consumer group
- Exposes Prometheus metrics and a health endpoint
- Shuts down cleanly on SIGTERM/SIGINT
"""

import asyncio
import signal
from abc import ABC, abstractmethod
from typing import Optional
from dataclasses import dataclass
from enum import Enum

from telemetry_alerts.core.config import Config
from telemetry_alerts.core.broker import Broker, StartFrom

from telemetry_alerts.core.metrics import MetricsServer, metrics
from telemetry_alerts.core.logging import get_logger

logger = get_logger("worker.base", labels={"component": "worker-base"})


class WorkerState(Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class WorkerConfig:
    """Configuration for a pipeline worker."""
    name: str
    topic: str
    group_id: str
    metrics_port: int = 9090
    batch_size: int = 100
    poll_timeout_ms: int = 1000
    start_from: StartFrom = StartFrom.COMMITTED


class PipelineWorker(ABC):
    """
    Base class for pipeline workers.

    Subclasses implement:
    - process_batch(): Handle one polled batch of messages
    - Optional: setup(), teardown() for init/cleanup
    """

    def __init__(self, config: WorkerConfig):
        self.config = config
        self.state = WorkerState.STOPPED
        self._broker: Optional[Broker] = None
        self._metrics_server: Optional[MetricsServer] = None

    @property
    def name(self) -> str:
        return self.config.name

    @abstractmethod
    async def process_batch(self, messages: list) -> None:
        """
        Process one batch. Override this.

        Per-item failures must be handled inside; an exception escaping
        here is logged and the batch is counted as failed.
        """
        pass

    async def setup(self) -> None:
        """Optional: Called once before processing starts."""
        pass

    async def teardown(self) -> None:
        """Optional: Called once after processing stops."""
        pass

    async def _handle_batch(self, messages: list) -> None:
        """Internal batch handler with metrics."""
        metrics.kafka_messages_consumed.inc(len(messages))
        try:
            await self.process_batch(messages)
        except Exception as e:
            metrics.pipeline_errors.labels(stage="batch").inc()
            logger.exception(f"Error processing batch: {e}", extra={"labels": {"worker": self.name}})

    async def run(self) -> None:
        """Main entry point - runs the worker."""
        self.state = WorkerState.STARTING
        logger.info(f"Starting worker: {self.name}", extra={"labels": {"worker": self.name}})

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._signal_handler)

        self._metrics_server = MetricsServer(self.config.metrics_port)
        self._metrics_server.start()
        logger.info(f"Metrics server on port {self.config.metrics_port}", extra={"labels": {"worker": self.name}})

        self._broker = Broker(Config.KAFKA_BOOTSTRAP_SERVERS)
        await self.setup()

        await self._broker.connect_consumer(
            topic=self.config.topic,
            group_id=self.config.group_id,
            start_from=self.config.start_from,
        )

        self.state = WorkerState.RUNNING
        logger.info(f"Consuming from {self.config.topic} (group: {self.config.group_id})", extra={"labels": {"worker": self.name, "topic": self.config.topic, "group": self.config.group_id}})

        try:
            await self._broker.consume_batches(
                self._handle_batch,
                max_records=self.config.batch_size,
                timeout_ms=self.config.poll_timeout_ms,
            )
        except asyncio.CancelledError:
            pass
        finally:
            await self._shutdown()

    def _signal_handler(self):
        """Handle shutdown signals."""
        logger.warning("Shutdown signal received", extra={"labels": {"worker": self.name}})
        if self._broker:
            self._broker.stop()

    async def _shutdown(self) -> None:
        """Clean shutdown."""
        if self.state == WorkerState.STOPPED:
            return

        self.state = WorkerState.STOPPING
        logger.info("Shutting down...", extra={"labels": {"worker": self.name}})

        await self.teardown()

        if self._broker:
            await self._broker.disconnect()

        if self._metrics_server:
            self._metrics_server.stop()

        self.state = WorkerState.STOPPED
        logger.info("Stopped", extra={"labels": {"worker": self.name}})


def run_worker(worker: PipelineWorker):
    asyncio.run(worker.run())
