"""
Pipeline Handlers

Connects the pure pipelines to infrastructure (Kafka, metrics, DB).
This is the ONLY place pipelines meet infrastructure.
"""

import asyncio
import inspect
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional

from telemetry_alerts.core.broker import Broker
from telemetry_alerts.core.logging import get_logger
from telemetry_alerts.core.metrics import metrics
from telemetry_alerts.pipelines.alerting import AlertEvaluator
from telemetry_alerts.pipelines.base import (
    Alert,
    AlertDelta,
    AlertStatus,
    DeltaKind,
    ItemError,
    PipelineResult,
    Reading,
    ThresholdRule,
    parse_time,
)
from telemetry_alerts.pipelines.decoder import FrameDecoder
from telemetry_alerts.pipelines.errors import ConfigUnavailable, MalformedFrame, NoUsableFields
from telemetry_alerts.pipelines.registry import ThresholdRegistry
from telemetry_alerts.pipelines.store import AlertStore

logger = get_logger("handlers", labels={"component": "handlers"})

Publisher = Callable[[AlertDelta], Any]


class ThresholdRefresher:
    """
    Keeps a ThresholdRegistry fed from the configuration source.

    A failed fetch keeps the last good snapshot and flags the refresher as
    degraded until the next successful fetch.

    Example:
        refresher = ThresholdRefresher(registry, ThresholdSource(db).fetch)
        refresher.refresh()              # only fetches when stale
        refresher.refresh(force=True)    # after a configuration edit
    """

    def __init__(
        self,
        registry: ThresholdRegistry,
        fetch: Callable[[], Iterable[ThresholdRule]],
        max_age: timedelta = timedelta(minutes=5),
    ):
        self.registry = registry
        self.fetch = fetch
        self.max_age = max_age
        self.degraded = False
        self.last_error: Optional[ConfigUnavailable] = None

    def refresh(self, force: bool = False) -> bool:
        """Returns True when a new snapshot was installed."""
        if not force and not self.registry.is_stale(self.max_age):
            return False

        try:
            rules = list(self.fetch())
        except Exception as e:
            error = e if isinstance(e, ConfigUnavailable) else ConfigUnavailable(str(e))
            self._mark_degraded(error)
            return False

        self.registry.refresh(rules)
        if self.degraded:
            logger.info("Threshold configuration available again")
        self.degraded = False
        self.last_error = None
        metrics.threshold_refreshes.labels(outcome="ok").inc()
        metrics.thresholds_active.set(len(self.registry))
        metrics.thresholds_degraded.set(0)
        return True

    def _mark_degraded(self, error: ConfigUnavailable):
        self.degraded = True
        self.last_error = error
        metrics.threshold_refreshes.labels(outcome="failed").inc()
        metrics.thresholds_degraded.set(1)
        logger.warning(
            f"Threshold refresh failed, evaluating with last known snapshot ({len(self.registry)} rules): {error}",
            extra={"labels": {"reason": error.reason}},
        )


class KafkaAlertPublisher:
    """Publishes alert deltas to a topic, keyed by device for ordering."""

    def __init__(self, broker: Broker, topic: str):
        self.broker = broker
        self.topic = topic

    async def __call__(self, delta: AlertDelta):
        await self.broker.publish(self.topic, delta.to_dict(), key=delta.device_id)


class PipelineRunner:
    """
    Runs frames through decode -> evaluate -> merge -> publish.

    Batches are processed with partial success: every failed item is
    reported in the result and never stops its siblings. Devices run
    concurrently up to `concurrency`; readings of one device run in order.

    Example:
        runner = PipelineRunner(registry, store, publisher=KafkaAlertPublisher(broker, topic))
        result = await runner.process_batch(messages)
        result.errors  # [ItemError(index=3, error=BadMagic(...))]
    """

    def __init__(
        self,
        registry: ThresholdRegistry,
        store: AlertStore,
        publisher: Optional[Publisher] = None,
        decoder: Optional[FrameDecoder] = None,
        concurrency: int = 4,
    ):
        self.registry = registry
        self.store = store
        self.publisher = publisher
        self.decoder = decoder or FrameDecoder()
        self.evaluator = AlertEvaluator(registry)
        self.concurrency = max(1, concurrency)

    def to_reading(self, message, hint_timestamp: Optional[datetime] = None) -> Reading:
        """
        Accepts a raw frame or log line, a {"raw": ..., "timestamp": ...}
        message, or an already decoded {"deviceId": ..., "fields": {...}} reading.
        """
        if isinstance(message, str):
            return self.decoder.decode(message, hint_timestamp)
        if not isinstance(message, dict):
            raise MalformedFrame(f"unsupported message type {type(message).__name__}")
        if "raw" in message:
            return self.decoder.decode(message["raw"], parse_time(message.get("timestamp")) or hint_timestamp)
        if "fields" in message and "deviceId" in message:
            reading = Reading.from_dict(message)
            if not reading.fields:
                raise NoUsableFields(f"reading for {reading.device_id} has no numeric fields")
            return reading
        raise MalformedFrame("message has neither a raw frame nor decoded fields")

    async def process_frame(self, message, hint_timestamp: Optional[datetime] = None) -> PipelineResult:
        return await self.process_batch([message], hint_timestamp)

    async def process_batch(self, messages: list, hint_timestamp: Optional[datetime] = None) -> PipelineResult:
        result = PipelineResult()
        by_device: dict[str, list[tuple[int, Reading]]] = {}

        for index, message in enumerate(messages):
            try:
                reading = self.to_reading(message, hint_timestamp)
            except Exception as e:
                reason = getattr(e, "reason", type(e).__name__)
                metrics.decode_errors.labels(reason=reason).inc()
                logger.warning(f"Frame {index} rejected: {e}", extra={"labels": {"reason": reason}})
                result.errors.append(ItemError(index=index, error=e))
                continue
            metrics.frames_decoded.labels(sensor_kind=reading.sensor_kind.value).inc()
            result.readings.append(reading)
            by_device.setdefault(reading.device_id, []).append((index, reading))

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_device(device_id: str, items: list[tuple[int, Reading]]) -> PipelineResult:
            async with semaphore:
                return await self._run_device(device_id, items)

        device_results = await asyncio.gather(
            *(run_device(device_id, items) for device_id, items in by_device.items())
        )
        for device_result in device_results:
            result.extend(device_result)

        self._update_live_gauge()
        return result

    async def _run_device(self, device_id: str, items: list[tuple[int, Reading]]) -> PipelineResult:
        result = PipelineResult()
        for position, (index, reading) in enumerate(items):
            stage = "evaluate"
            try:
                candidates = self.evaluator.evaluate(reading)
                for candidate in candidates:
                    metrics.alert_candidates.labels(severity=candidate.severity.value).inc()
                stage = "merge"
                deltas = self.store.merge(device_id, candidates)
            except Exception as e:
                metrics.pipeline_errors.labels(stage=stage).inc()
                logger.error(
                    f"{stage} failed for {device_id}: {e}",
                    extra={"labels": {"device_id": device_id, "stage": stage}},
                )
                result.errors.append(ItemError(index=index, error=e, device_id=device_id))
                if stage == "merge":
                    skipped = len(items) - position - 1
                    if skipped:
                        logger.warning(
                            f"Skipping {skipped} remaining readings of {device_id} this batch",
                            extra={"labels": {"device_id": device_id}},
                        )
                    break
                continue

            result.deltas.extend(deltas)
            for delta in deltas:
                await self.publish(delta)
        return result

    async def publish(self, delta: AlertDelta) -> None:
        """Best-effort delivery; failures never undo the store change."""
        metrics.alert_deltas.labels(kind=delta.kind.value).inc()
        if self.publisher is None:
            return
        try:
            outcome = self.publisher(delta)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            metrics.publish_failures.inc()
            logger.error(
                f"Publish of {delta.kind.value} for {delta.alert.alert_id} failed: {e}",
                extra={"labels": {"device_id": delta.device_id, "kind": delta.kind.value}},
            )

    # Operator actions: apply to the store, then publish the change if any

    async def acknowledge(self, alert_id: str, actor: str) -> Alert:
        before = self.store.get(alert_id)
        alert = self.store.acknowledge(alert_id, actor)
        if alert != before:
            await self.publish(AlertDelta(DeltaKind.ACKNOWLEDGED, alert))
        return alert

    async def resolve(self, alert_id: str, actor: str) -> Alert:
        before = self.store.get(alert_id)
        alert = self.store.resolve(alert_id, actor)
        if alert != before:
            await self.publish(AlertDelta(DeltaKind.RESOLVED, alert))
        return alert

    async def dismiss(self, alert_id: str, actor: Optional[str] = None) -> Alert:
        alert = self.store.dismiss(alert_id, actor)
        await self.publish(AlertDelta(DeltaKind.DISMISSED, alert))
        self._update_live_gauge()
        return alert

    def _update_live_gauge(self):
        stats = self.store.stats()
        for status in AlertStatus:
            metrics.alerts_live.labels(status=status.value).set(stats[status.value])
