import asyncio
import json

from telemetry_alerts.main import load_rules, replay
from telemetry_alerts.pipelines.base import Direction

WEATHER_ID = "124A7DA90849"


def weather_frame(temperature_raw):
    words = [temperature_raw, 500, 101325, 12, 20, 35, 180, 0, 400, 80, 0]
    payload = "".join(f"{w:08X}" for w in words)
    return f"FEDC0A{WEATHER_ID}0000000103{len(payload) // 2:04X}{payload}"


class TestLoadRules:
    def test_defaults(self):
        parameters = [rule.parameter for rule in load_rules(None)]
        assert parameters == ["temperature", "humidity", "pm2_5"]

    def test_from_file(self, tmp_path):
        path = tmp_path / "thresholds.json"
        path.write_text(json.dumps([
            {"parameter": "ultrasonic_liquid_level", "warningThreshold": 2, "criticalThreshold": 1},
            {"parameter": "noise", "warningThreshold": 70, "direction": "above"},
        ]))
        rules = load_rules(str(path))

        assert rules[0].violation_direction == Direction.BELOW
        assert rules[1].direction == Direction.ABOVE


class TestReplay:
    def test_replays_log_file(self, tmp_path):
        log = tmp_path / "sensor.log"
        log.write_text("\n".join([
            "2024-06-20 14:45:30 " + weather_frame(380),
            "2024-06-20 14:46:30 " + weather_frame(420),
            "garbage line",
            "",
            "2024-06-20 14:47:30 " + weather_frame(250),
        ]))

        summary = asyncio.run(replay(str(log), batch_size=2))

        assert summary["frames"] == 4
        assert summary["failed"] == 1
        assert summary["total"] == 1
        assert summary["resolved"] == 1
        assert summary["critical"] == 1
