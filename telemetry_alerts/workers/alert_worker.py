"""
Alert Worker

Consumes raw sensor frames, evaluates them against the configured
thresholds and publishes alert state changes.
"""

import asyncio
from datetime import timedelta
from typing import Optional

from telemetry_alerts.workers.base import PipelineWorker, WorkerConfig, run_worker
from telemetry_alerts.handlers import KafkaAlertPublisher, PipelineRunner, ThresholdRefresher
from telemetry_alerts.pipelines.registry import ThresholdRegistry, default_threshold_rules
from telemetry_alerts.pipelines.store import AlertStore
from telemetry_alerts.core.config import Config
from telemetry_alerts.core.database import Database, ThresholdSource
from telemetry_alerts.core.logging import get_logger

logger = get_logger("worker.alert", labels={"component": "alert-worker"})


class AlertWorker(PipelineWorker):
    """
    Decode-and-alert worker.

    Thresholds come from Postgres and are re-read every
    THRESHOLD_REFRESH_SECONDS; if Postgres is unreachable the worker keeps
    evaluating with the last snapshot it loaded.
    """

    def __init__(self, database: Optional[Database] = None):
        super().__init__(WorkerConfig(
            name="alerter",
            topic=Config.KAFKA_FRAME_TOPIC,
            group_id=Config.KAFKA_GROUP_ID,
            metrics_port=Config.METRICS_PORT,
            batch_size=Config.KAFKA_BATCH_SIZE,
            poll_timeout_ms=Config.KAFKA_POLL_TIMEOUT_MS,
        ))

        self.registry = ThresholdRegistry()
        self.store = AlertStore()
        self.database = database or Database(Config.POSTGRES_URL)
        self.refresher = ThresholdRefresher(
            self.registry,
            ThresholdSource(self.database).fetch,
            max_age=timedelta(seconds=Config.THRESHOLD_REFRESH_SECONDS),
        )
        self.runner: Optional[PipelineRunner] = None
        self._refresh_task: Optional[asyncio.Task] = None

    async def setup(self) -> None:
        await self._broker.connect_producer()
        self.runner = PipelineRunner(
            self.registry,
            self.store,
            publisher=KafkaAlertPublisher(self._broker, Config.KAFKA_ALERT_TOPIC),
            concurrency=Config.BATCH_CONCURRENCY,
        )

        if not await asyncio.to_thread(self.refresher.refresh, True):
            logger.warning("No threshold configuration at startup, using default rules")
            self.registry.refresh(default_threshold_rules())

        self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(Config.THRESHOLD_REFRESH_SECONDS)
            await asyncio.to_thread(self.refresher.refresh, True)

    async def process_batch(self, messages: list) -> None:
        result = await self.runner.process_batch(messages)
        if result.has_errors():
            logger.warning(
                f"Batch of {len(messages)}: {len(result.errors)} failed, {len(result.deltas)} alert changes",
                extra={"labels": {"worker": self.name}},
            )

    async def teardown(self) -> None:
        if self._refresh_task:
            self._refresh_task.cancel()


if __name__ == "__main__":
    run_worker(AlertWorker())
