"""Decode sensor telemetry frames and keep a live threshold alert lifecycle."""

__version__ = "0.1.0"
