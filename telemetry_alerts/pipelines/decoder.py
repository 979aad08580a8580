"""
Frame Decoding Pipeline

Turns a hex-encoded sensor frame into a typed Reading.
No infrastructure dependencies - pure data processing.

Frame layout (big-endian):

    offset  width  field
    0       2      header magic (FE DC)
    2       1      protocol version, value / 10
    3       6      sensor id
    9       4      session id (u32)
    13      1      order byte
    14      2      payload length in bytes (u16)
    16      n      payload, 4-byte fields in a per-kind order
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from telemetry_alerts.core.logging import get_logger
from telemetry_alerts.pipelines.base import Reading, SensorKind, utcnow
from telemetry_alerts.pipelines.errors import (
    BadMagic,
    MalformedFrame,
    NoUsableFields,
    TruncatedFrame,
    UnsupportedLength,
)

logger = get_logger("pipelines.decoder", labels={"component": "decoder"})

MAGIC = "FEDC"
HEADER_BYTES = 16
FIELD_BYTES = 4
MAX_PAYLOAD_BYTES = 1024
MAX_FRAME_CHARS = 2048
# hex with one separator per byte, plus a leading timestamp
MAX_LINE_CHARS = MAX_FRAME_CHARS * 3 // 2 + 64

SENSOR_KINDS = {
    "16098522754E": SensorKind.AIR_QUALITY,
    "124A7DA90849": SensorKind.WEATHER,
}

_SEPARATORS = re.compile(r"[\s:]")
_HEX = re.compile(r"^[0-9A-F]*$")
_LOG_LINE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}[\sT]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})?)\s+([A-Fa-f0-9][A-Fa-f0-9\s:]*)$"
)


def to_signed(word: int) -> int:
    """Reinterpret an unsigned 32-bit word as two's complement."""
    return word - 0x100000000 if word > 0x7FFFFFFF else word


def rssi_to_dbm(raw: float) -> float:
    if raw == 0:
        return -100
    return max(-100, min(0, -(100 - raw)))


@dataclass(frozen=True)
class FieldSpec:
    """
    One payload field.

    Example:
        FieldSpec("temperature", scale=10, signed=True, valid_range=(-50, 100))
    """
    name: str
    scale: float = 1
    signed: bool = False
    valid_range: Optional[tuple] = None
    convert: Optional[Callable[[float], float]] = None
    optional: bool = False

    def decode(self, word: int) -> Optional[float]:
        """Scale and range-check a raw word; None means the field is dropped."""
        value = to_signed(word) if self.signed else word
        if self.scale != 1:
            value = round(value / self.scale, 2)
        if self.valid_range is not None:
            low, high = self.valid_range
            if value < low or value > high:
                logger.warning(
                    f"{self.name} value {value} outside [{low}, {high}], dropped",
                    extra={"labels": {"field": self.name}},
                )
                return None
        if self.convert is not None:
            value = self.convert(value)
        return value


TEMPERATURE = FieldSpec("temperature", scale=10, signed=True, valid_range=(-50, 100))
HUMIDITY = FieldSpec("humidity", scale=10, valid_range=(0, 100))
PM2_5 = FieldSpec("pm2_5", valid_range=(0, 1000))
PM10 = FieldSpec("pm10", valid_range=(0, 1000))
SIGNAL_STRENGTH = FieldSpec("signal_strength", valid_range=(0, 100), convert=rssi_to_dbm)
ERROR_CODE = FieldSpec("error_code", valid_range=(0, 65535))

LAYOUTS = {
    SensorKind.WEATHER: (
        TEMPERATURE,
        HUMIDITY,
        FieldSpec("atmospheric_pressure", scale=100, valid_range=(800, 1200)),
        PM2_5,
        PM10,
        FieldSpec("wind_speed", scale=10, valid_range=(0, 100)),
        FieldSpec("wind_direction", valid_range=(0, 360)),
        FieldSpec("rainfall", scale=10, valid_range=(0, 1000)),
        FieldSpec("total_solar_radiation", valid_range=(0, 2000)),
        SIGNAL_STRENGTH,
        ERROR_CODE,
        FieldSpec("firmware_version", scale=10, valid_range=(0, 25.5), optional=True),
    ),
    SensorKind.AIR_QUALITY: (
        TEMPERATURE,
        HUMIDITY,
        PM2_5,
        PM10,
        FieldSpec("noise", scale=10, valid_range=(0, 200)),
        FieldSpec("ultrasonic_liquid_level", scale=1000, valid_range=(0, 10)),
        SIGNAL_STRENGTH,
        ERROR_CODE,
    ),
    SensorKind.GENERIC: (
        TEMPERATURE,
        HUMIDITY,
        SIGNAL_STRENGTH,
        ERROR_CODE,
    ),
}


def parse_log_line(line: str) -> tuple[str, Optional[datetime]]:
    """
    Split a `<timestamp> <hex>` log line into hex and timestamp.

    Lines without a leading timestamp are returned unchanged with no time.
    """
    match = _LOG_LINE.match(line.strip())
    if not match:
        return line, None
    stamp, hex_part = match.groups()
    try:
        timestamp = datetime.fromisoformat(stamp.replace("Z", "+00:00").replace(" ", "T"))
    except ValueError:
        logger.warning(f"Invalid timestamp in log line: {stamp}")
        timestamp = None
    return hex_part, timestamp


def clean_hex(raw: str) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise MalformedFrame("frame must be a non-empty string")
    cleaned = _SEPARATORS.sub("", raw).upper()
    if not _HEX.match(cleaned):
        raise MalformedFrame("frame contains non-hex characters")
    return cleaned


class FrameDecoder:
    """
    Decodes frames into Readings using the per-kind layout table.

    Example:
        decoder = FrameDecoder()
        reading = decoder.decode("FEDC01124A7DA90849...")
        reading.fields["temperature"]  # 23.7
    """

    def __init__(self, sensor_kinds: Optional[dict] = None, layouts: Optional[dict] = None):
        self.sensor_kinds = SENSOR_KINDS if sensor_kinds is None else sensor_kinds
        self.layouts = LAYOUTS if layouts is None else layouts

    @property
    def name(self) -> str:
        return "frame_decoder"

    def decode(self, raw: str, hint_timestamp: Optional[datetime] = None) -> Reading:
        """Decode one frame or raise a DecodeError subclass."""
        if isinstance(raw, str) and len(raw) > MAX_LINE_CHARS:
            raise UnsupportedLength(f"input is {len(raw)} chars (max {MAX_LINE_CHARS})")
        hex_part, logged_at = parse_log_line(raw) if isinstance(raw, str) else (raw, None)
        cleaned = clean_hex(hex_part)

        if len(cleaned) >= len(MAGIC) and cleaned[:4] != MAGIC:
            raise BadMagic(f"header {cleaned[:4]!r}, expected {MAGIC!r}")
        if len(cleaned) % 2:
            raise MalformedFrame(f"odd hex length {len(cleaned)}")
        if len(cleaned) < HEADER_BYTES * 2:
            raise MalformedFrame(f"frame is {len(cleaned)} hex chars, header needs {HEADER_BYTES * 2}")
        if len(cleaned) > MAX_FRAME_CHARS:
            raise UnsupportedLength(f"frame is {len(cleaned)} hex chars (max {MAX_FRAME_CHARS})")

        data = bytes.fromhex(cleaned)
        sensor_id = data[3:9].hex().upper()
        payload_length = int.from_bytes(data[14:16], "big")

        if payload_length > MAX_PAYLOAD_BYTES:
            raise UnsupportedLength(f"declared payload {payload_length} bytes (max {MAX_PAYLOAD_BYTES})")
        available = len(data) - HEADER_BYTES
        if payload_length > available:
            raise TruncatedFrame(f"declared payload {payload_length} bytes, only {available} present")

        kind = self.sensor_kinds.get(sensor_id, SensorKind.GENERIC)
        payload = data[HEADER_BYTES:HEADER_BYTES + payload_length]
        fields, raw_values = self._walk(kind, payload)

        if not fields:
            raise NoUsableFields(f"no field of {kind.value} frame {sensor_id} passed validation")

        return Reading(
            device_id=sensor_id,
            sensor_kind=kind,
            fields=fields,
            timestamp=logged_at or hint_timestamp or utcnow(),
            version=data[2] / 10.0,
            session_id=int.from_bytes(data[9:13], "big"),
            order=data[13],
            payload_length=payload_length,
            raw=raw_values,
        )

    def _walk(self, kind: SensorKind, payload: bytes) -> tuple[dict, dict]:
        fields = {}
        raw_values = {}
        offset = 0
        for spec in self.layouts[kind]:
            if offset + FIELD_BYTES > len(payload):
                if not spec.optional:
                    logger.warning(
                        f"{kind.value} payload ends before {spec.name}",
                        extra={"labels": {"sensor_kind": kind.value}},
                    )
                break
            word = int.from_bytes(payload[offset:offset + FIELD_BYTES], "big")
            offset += FIELD_BYTES
            raw_values[spec.name] = word
            value = spec.decode(word)
            if value is not None:
                fields[spec.name] = value

        if offset < len(payload):
            logger.debug(
                f"{len(payload) - offset} trailing payload bytes ignored",
                extra={"labels": {"sensor_kind": kind.value}},
            )
        return fields, raw_values


_default_decoder = FrameDecoder()


def decode(raw: str, hint_timestamp: Optional[datetime] = None) -> Reading:
    return _default_decoder.decode(raw, hint_timestamp)
