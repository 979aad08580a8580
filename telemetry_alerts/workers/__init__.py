"""
Pipeline Workers

Long-running Kafka consumers that drive the pipelines.
"""

from telemetry_alerts.workers.base import PipelineWorker, WorkerConfig, run_worker

__all__ = ["PipelineWorker", "WorkerConfig", "run_worker"]
