"""
Prometheus Metrics Server

Simple HTTP server that exposes /metrics endpoint.
"""


from prometheus_client import Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST
from http.server import HTTPServer, BaseHTTPRequestHandler
from threading import Thread


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        if self.path == "/metrics":
            self.send_response(200)
            self.send_header("Content-Type", CONTENT_TYPE_LATEST)
            self.end_headers()
            self.wfile.write(generate_latest())
        elif self.path == "/health":
            self.send_response(200)
            self.send_header("Content-Type", "text/plain")
            self.end_headers()
            self.wfile.write(b"OK")
        else:
            self.send_response(404)
            self.end_headers()

    def log_message(self, *args):
        pass


class Metrics:
    """Container for all application metrics."""

    # Decoder metrics
    frames_decoded = Counter(
        "telemetry_frames_decoded_total",
        "Total frames decoded into readings",
        ["sensor_kind"]
    )

    decode_errors = Counter(
        "telemetry_decode_errors_total",
        "Total frames rejected by the decoder",
        ["reason"]
    )

    # Evaluation metrics
    alert_candidates = Counter(
        "telemetry_alert_candidates_total",
        "Total threshold violations detected",
        ["severity"]
    )

    alert_deltas = Counter(
        "telemetry_alert_deltas_total",
        "Total alert state changes",
        ["kind"]
    )

    alerts_live = Gauge(
        "telemetry_alerts_live",
        "Alerts currently held in the store",
        ["status"]
    )

    pipeline_errors = Counter(
        "telemetry_pipeline_errors_total",
        "Total per-item pipeline failures",
        ["stage"]
    )

    # Threshold configuration metrics
    threshold_refreshes = Counter(
        "telemetry_threshold_refreshes_total",
        "Threshold refresh attempts",
        ["outcome"]
    )

    thresholds_active = Gauge(
        "telemetry_thresholds_active",
        "Active threshold rules in the registry"
    )

    thresholds_degraded = Gauge(
        "telemetry_thresholds_degraded",
        "1 while evaluation runs on a stale threshold snapshot"
    )

    # Publisher metrics
    publish_failures = Counter(
        "telemetry_publish_failures_total",
        "Alert deltas that could not be published"
    )

    # Kafka metrics
    kafka_messages_consumed = Counter(
        "telemetry_kafka_messages_consumed_total",
        "Total Kafka messages consumed"
    )


# Global metrics instance
metrics = Metrics()


class MetricsServer:
    def __init__(self, port: int = 9090):
        self.port = port
        self._server = None
        self._thread = None

    def start(self):
        self._server = HTTPServer(("0.0.0.0", self.port), _Handler)
        self._thread = Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self):
        if self._server:
            self._server.shutdown()
