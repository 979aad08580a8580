"""
Pipeline Errors

DecodeError subclasses carry a stable `reason` used for metrics labels.
"""


class PipelineError(Exception):
    """Base class for errors raised by the pipelines."""


class DecodeError(PipelineError):
    reason = "decode_error"


class MalformedFrame(DecodeError):
    reason = "malformed_frame"


class BadMagic(DecodeError):
    reason = "bad_magic"


class TruncatedFrame(DecodeError):
    reason = "truncated_frame"


class UnsupportedLength(DecodeError):
    reason = "unsupported_length"


class NoUsableFields(DecodeError):
    reason = "no_usable_fields"


class ConfigUnavailable(PipelineError):
    """Threshold configuration could not be fetched."""
    reason = "config_unavailable"


class NotFoundError(PipelineError, KeyError):
    """Operator action on an alert id the store does not hold."""
    reason = "not_found"

    def __init__(self, alert_id: str):
        super().__init__(alert_id)
        self.alert_id = alert_id

    def __str__(self) -> str:
        return f"Alert not found: {self.alert_id}"
