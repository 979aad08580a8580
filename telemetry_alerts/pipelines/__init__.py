"""
Decode-and-Alert Pipelines

Pure data processing logic. No knowledge of Kafka, metrics, or databases.
Frames go in, readings, alert candidates and alert deltas come out.
"""

from telemetry_alerts.pipelines.alerting import AlertEvaluator, evaluate
from telemetry_alerts.pipelines.decoder import FrameDecoder, decode
from telemetry_alerts.pipelines.registry import ThresholdRegistry
from telemetry_alerts.pipelines.store import AlertStore

__all__ = [
    "AlertEvaluator",
    "AlertStore",
    "FrameDecoder",
    "ThresholdRegistry",
    "decode",
    "evaluate",
]
