"""
Configuration

Load settings from environment variables.
"""

import os


class Config:
    # Postgres (threshold configuration source)
    POSTGRES_URL = os.getenv(
        "POSTGRES_URL",
        f"postgresql://{os.getenv('POSTGRES_USER', 'iot')}:{os.getenv('POSTGRES_PASSWORD', 'iot123')}@{os.getenv('POSTGRES_HOST', 'localhost')}:{os.getenv('POSTGRES_PORT', '5432')}/{os.getenv('POSTGRES_DB', 'devices')}"
    )

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
    KAFKA_FRAME_TOPIC = os.getenv("KAFKA_FRAME_TOPIC", "iot.frames")
    KAFKA_ALERT_TOPIC = os.getenv("KAFKA_ALERT_TOPIC", "iot.alerts")
    KAFKA_GROUP_ID = os.getenv("KAFKA_GROUP_ID", "telemetry-alerts")
    KAFKA_BATCH_SIZE = int(os.getenv("KAFKA_BATCH_SIZE", "100"))
    KAFKA_POLL_TIMEOUT_MS = int(os.getenv("KAFKA_POLL_TIMEOUT_MS", "1000"))

    # Pipeline
    THRESHOLD_REFRESH_SECONDS = int(os.getenv("THRESHOLD_REFRESH_SECONDS", "300"))
    BATCH_CONCURRENCY = int(os.getenv("BATCH_CONCURRENCY", "4"))

    # Metrics
    METRICS_PORT = int(os.getenv("METRICS_PORT", "9090"))
