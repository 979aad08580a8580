"""
Telemetry Alerts Entry Point

Can run in two modes:
1. Worker mode (default): consume frames from Kafka, publish alert changes
2. Replay mode: push a sensor log file through the pipeline offline

Usage:
    # Worker mode (production)
    python -m telemetry_alerts.main

    # Replay mode (debugging a captured log)
    python -m telemetry_alerts.main --replay sensor.log --thresholds thresholds.json
"""

import argparse
import asyncio
import json
from typing import Optional

from telemetry_alerts.core.config import Config
from telemetry_alerts.core.logging import get_logger
from telemetry_alerts.handlers import PipelineRunner
from telemetry_alerts.pipelines.base import AlertDelta, ThresholdRule
from telemetry_alerts.pipelines.registry import ThresholdRegistry, default_threshold_rules
from telemetry_alerts.pipelines.store import AlertStore

logger = get_logger("main", labels={"component": "main"})


def load_rules(path: Optional[str]) -> list[ThresholdRule]:
    """Rules from a JSON list of threshold objects, or the defaults."""
    if not path:
        return default_threshold_rules()
    with open(path) as f:
        return [ThresholdRule.from_dict(item) for item in json.load(f)]


def log_delta(delta: AlertDelta):
    logger.info(
        f"[{delta.kind.value.upper()}] {delta.alert.message}",
        extra={"labels": {"device_id": delta.device_id, "alert": delta.alert.to_dict()}},
    )


async def replay(path: str, thresholds: Optional[str] = None, batch_size: int = Config.KAFKA_BATCH_SIZE) -> dict:
    """Run every frame line of a log file through decode, evaluate and merge."""
    registry = ThresholdRegistry(load_rules(thresholds))
    store = AlertStore()
    runner = PipelineRunner(registry, store, publisher=log_delta, concurrency=Config.BATCH_CONCURRENCY)

    with open(path) as f:
        lines = [line.strip() for line in f if line.strip()]

    failed = 0
    for start in range(0, len(lines), batch_size):
        result = await runner.process_batch(lines[start:start + batch_size])
        failed += len(result.errors)

    summary = {"frames": len(lines), "failed": failed, **store.stats()}
    logger.info(f"Replay complete: {summary}", extra={"labels": summary})
    return summary


def run_worker():
    """Run the alert worker (production mode)."""
    from telemetry_alerts.workers.alert_worker import AlertWorker
    from telemetry_alerts.workers.base import run_worker as start_worker

    logger.info("Starting worker: alerter")
    start_worker(AlertWorker())


def main(argv=None):
    parser = argparse.ArgumentParser(description="Telemetry alerts service")
    parser.add_argument(
        "--replay", "-r",
        type=str,
        help="Replay a sensor log file (one frame or '<timestamp> <hex>' per line) instead of consuming Kafka."
    )
    parser.add_argument(
        "--thresholds", "-t",
        type=str,
        help="JSON file with threshold rules for replay mode. Defaults to the built-in rules."
    )

    args = parser.parse_args(argv)

    if args.replay:
        asyncio.run(replay(args.replay, args.thresholds))
    else:
        run_worker()


if __name__ == "__main__":
    main()
