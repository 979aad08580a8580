import time

import pytest
from datetime import datetime, timezone

from telemetry_alerts.pipelines.base import SensorKind
from telemetry_alerts.pipelines.decoder import (
    FrameDecoder,
    decode,
    parse_log_line,
    rssi_to_dbm,
    to_signed,
)
from telemetry_alerts.pipelines.errors import (
    BadMagic,
    DecodeError,
    MalformedFrame,
    NoUsableFields,
    TruncatedFrame,
    UnsupportedLength,
)

WEATHER_ID = "124A7DA90849"
AIR_QUALITY_ID = "16098522754E"

# temperature, humidity, pressure, pm2.5, pm10, wind speed, wind dir,
# rainfall, solar radiation, rssi, error code
WEATHER_WORDS = [0xED, 500, 101325, 12, 20, 35, 180, 0, 400, 80, 0]


def build_frame(sensor_id=WEATHER_ID, words=(), version=0x0A, session=1, order=3, length=None, magic="FEDC"):
    payload = "".join(f"{w & 0xFFFFFFFF:08X}" for w in words)
    length = len(payload) // 2 if length is None else length
    return f"{magic}{version:02X}{sensor_id}{session:08X}{order:02X}{length:04X}{payload}"


class TestWeatherFrame:
    def test_decodes_all_fields(self):
        reading = decode(build_frame(words=WEATHER_WORDS, session=0x01020304))

        assert reading.device_id == WEATHER_ID
        assert reading.sensor_kind == SensorKind.WEATHER
        assert reading.version == 1.0
        assert reading.session_id == 0x01020304
        assert reading.order == 3
        assert reading.payload_length == 44
        assert reading.fields == {
            "temperature": 23.7,
            "humidity": 50.0,
            "atmospheric_pressure": 1013.25,
            "pm2_5": 12,
            "pm10": 20,
            "wind_speed": 3.5,
            "wind_direction": 180,
            "rainfall": 0.0,
            "total_solar_radiation": 400,
            "signal_strength": -20,
            "error_code": 0,
        }

    def test_optional_trailing_version(self):
        reading = decode(build_frame(words=WEATHER_WORDS + [15]))
        assert reading.fields["firmware_version"] == 1.5

    def test_out_of_range_field_is_dropped_not_clamped(self):
        words = list(WEATHER_WORDS)
        words[1] = 1500  # humidity 150.0 %
        reading = decode(build_frame(words=words))

        assert "humidity" not in reading.fields
        assert reading.fields["temperature"] == 23.7
        assert reading.raw["humidity"] == 1500

    def test_short_payload_leaves_later_fields_absent(self):
        reading = decode(build_frame(words=[0xED, 500]))
        assert reading.fields == {"temperature": 23.7, "humidity": 50.0}

    def test_never_reads_past_declared_length(self):
        frame = build_frame(words=WEATHER_WORDS, length=8)
        reading = decode(frame)
        assert set(reading.fields) == {"temperature", "humidity"}


class TestFieldConversion:
    def test_signed_reinterpretation(self):
        assert to_signed(0xFFFFFFFF) == -1
        assert to_signed(0x7FFFFFFF) == 0x7FFFFFFF

    def test_negative_temperature(self):
        reading = decode(build_frame(words=[0xFFFFFFFF, 500]))
        assert reading.fields["temperature"] == -0.1

    def test_rssi_mapping(self):
        assert rssi_to_dbm(0) == -100
        assert rssi_to_dbm(100) == 0
        assert rssi_to_dbm(50) == -50

    def test_rssi_raw_out_of_range_dropped(self):
        reading = decode(build_frame(sensor_id="000000000001", words=[0xED, 500, 150, 0]))
        assert "signal_strength" not in reading.fields

    def test_air_quality_scales(self):
        reading = decode(build_frame(sensor_id=AIR_QUALITY_ID, words=[250, 400, 35, 60, 455, 2500, 100, 7]))

        assert reading.sensor_kind == SensorKind.AIR_QUALITY
        assert reading.fields["noise"] == 45.5
        assert reading.fields["ultrasonic_liquid_level"] == 2.5
        assert reading.fields["signal_strength"] == 0
        assert reading.fields["error_code"] == 7


class TestGenericFallback:
    def test_unknown_id_uses_generic_layout(self):
        reading = decode(build_frame(sensor_id="AABBCCDDEEFF", words=[215, 455, 60, 0]))

        assert reading.sensor_kind == SensorKind.GENERIC
        assert reading.device_id == "AABBCCDDEEFF"
        assert reading.fields == {
            "temperature": 21.5,
            "humidity": 45.5,
            "signal_strength": -40,
            "error_code": 0,
        }

    def test_custom_sensor_table(self):
        decoder = FrameDecoder(sensor_kinds={"AABBCCDDEEFF": SensorKind.WEATHER})
        reading = decoder.decode(build_frame(sensor_id="AABBCCDDEEFF", words=WEATHER_WORDS))
        assert reading.sensor_kind == SensorKind.WEATHER

    def test_empty_sensor_table_means_all_generic(self):
        decoder = FrameDecoder(sensor_kinds={})
        reading = decoder.decode(build_frame(words=WEATHER_WORDS))
        assert reading.sensor_kind == SensorKind.GENERIC


class TestRejections:
    def test_bad_magic(self):
        with pytest.raises(BadMagic):
            decode(build_frame(words=WEATHER_WORDS, magic="ABCD"))

    def test_bad_magic_regardless_of_length(self):
        with pytest.raises(BadMagic):
            decode("1234")

    def test_bad_magic_with_odd_length(self):
        with pytest.raises(BadMagic):
            decode("ABCD0" + "0" * 40)

    def test_truncated_frame(self):
        frame = build_frame(words=WEATHER_WORDS, length=48)
        with pytest.raises(TruncatedFrame):
            decode(frame)

    def test_declared_length_too_large(self):
        with pytest.raises(UnsupportedLength):
            decode(build_frame(words=[0xED], length=2000))

    def test_frame_too_long(self):
        with pytest.raises(UnsupportedLength):
            decode(build_frame(words=[0] * 300))

    def test_oversized_log_line_rejected_quickly(self):
        line = "2024-01-01 00:00:00" + " " * 40000 + "G"
        started = time.monotonic()
        with pytest.raises(UnsupportedLength):
            decode(line)
        assert time.monotonic() - started < 1

    def test_whitespace_run_before_bad_char(self):
        with pytest.raises(MalformedFrame):
            decode("2024-01-01 00:00:00" + " " * 2000 + "G")

    def test_non_hex(self):
        with pytest.raises(MalformedFrame):
            decode("FEDCZZ" + "0" * 40)

    def test_odd_length(self):
        with pytest.raises(MalformedFrame):
            decode(build_frame(words=WEATHER_WORDS) + "0")

    def test_shorter_than_header(self):
        with pytest.raises(MalformedFrame):
            decode("FEDC0A124A7D")

    def test_empty(self):
        with pytest.raises(MalformedFrame):
            decode("   ")

    def test_no_usable_fields(self):
        frame = build_frame(sensor_id="AABBCCDDEEFF", words=[2000, 2000, 200, 70000])
        with pytest.raises(NoUsableFields):
            decode(frame)

    def test_empty_payload_has_no_usable_fields(self):
        with pytest.raises(NoUsableFields):
            decode(build_frame(words=[]))

    def test_errors_share_base_class(self):
        for frame in ("1234", build_frame(words=WEATHER_WORDS, length=48)):
            with pytest.raises(DecodeError) as exc:
                decode(frame)
            assert exc.value.reason in ("bad_magic", "truncated_frame")


class TestInputForms:
    def test_separators_are_stripped(self):
        frame = build_frame(words=WEATHER_WORDS)
        spaced = " ".join(frame[i:i + 2] for i in range(0, len(frame), 2))
        colons = ":".join(frame[i:i + 2] for i in range(0, len(frame), 2))

        assert decode(spaced).fields == decode(frame).fields
        assert decode(colons.lower()).fields == decode(frame).fields

    def test_hint_timestamp(self):
        hint = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        reading = decode(build_frame(words=WEATHER_WORDS), hint_timestamp=hint)
        assert reading.timestamp == hint

    def test_defaults_to_decode_time(self):
        before = datetime.now(timezone.utc)
        reading = decode(build_frame(words=WEATHER_WORDS))
        assert reading.timestamp >= before

    def test_log_line_timestamp_wins(self):
        hint = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        line = "2024-06-20 14:45:30 " + build_frame(words=WEATHER_WORDS)
        reading = decode(line, hint_timestamp=hint)

        assert reading.timestamp.year == 2024
        assert reading.timestamp.month == 6
        assert reading.timestamp.hour == 14

    def test_parse_log_line(self):
        hex_part, timestamp = parse_log_line("2024-06-20T14:45:30Z FEDC0A")
        assert hex_part == "FEDC0A"
        assert timestamp == datetime(2024, 6, 20, 14, 45, 30, tzinfo=timezone.utc)

    def test_parse_plain_hex(self):
        assert parse_log_line("FEDC0A") == ("FEDC0A", None)
