from datetime import datetime, timezone

from telemetry_alerts.pipelines.alerting import AlertEvaluator, check_rule, evaluate
from telemetry_alerts.pipelines.base import Direction, Reading, SensorKind, Severity, ThresholdRule
from telemetry_alerts.pipelines.registry import ThresholdRegistry

CAPTURED = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


def reading(**fields):
    return Reading(
        device_id="device7",
        sensor_kind=SensorKind.WEATHER,
        fields=fields,
        timestamp=CAPTURED,
    )


class TestCheckRule:
    def test_ascending_critical(self):
        rule = ThresholdRule("temperature", warning_level=30, critical_level=40)
        assert check_rule(rule, 41) == (Severity.CRITICAL, 40)

    def test_ascending_below_warning(self):
        rule = ThresholdRule("temperature", warning_level=30, critical_level=40)
        assert check_rule(rule, 25) is None

    def test_boundary_is_inclusive(self):
        rule = ThresholdRule("temperature", warning_level=30, critical_level=40)
        assert check_rule(rule, 30) == (Severity.WARNING, 30)
        assert check_rule(rule, 40) == (Severity.CRITICAL, 40)

    def test_descending(self):
        rule = ThresholdRule("ultrasonic_liquid_level", warning_level=2.0, critical_level=1.0)
        assert check_rule(rule, 0.5) == (Severity.CRITICAL, 1.0)
        assert check_rule(rule, 1.5) == (Severity.WARNING, 2.0)
        assert check_rule(rule, 3.0) is None

    def test_warning_only(self):
        rule = ThresholdRule("noise", warning_level=70)
        assert check_rule(rule, 75) == (Severity.WARNING, 70)
        assert check_rule(rule, 65) is None

    def test_critical_only_with_explicit_direction(self):
        rule = ThresholdRule("signal_strength", critical_level=-90, direction=Direction.BELOW)
        assert check_rule(rule, -95) == (Severity.CRITICAL, -90)
        assert check_rule(rule, -60) is None


class TestEvaluate:
    def setup_method(self):
        self.registry = ThresholdRegistry([
            ThresholdRule("temperature", warning_level=20, critical_level=30, description="Temperature monitoring"),
            ThresholdRule("pm25", warning_level=35, critical_level=55),
        ])

    def test_warning_candidate(self):
        candidates = evaluate(reading(temperature=23.7), self.registry)

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.device_id == "device7"
        assert candidate.parameter == "temperature"
        assert candidate.severity == Severity.WARNING
        assert candidate.current_value == 23.7
        assert candidate.threshold_value == 20
        assert candidate.detected_at == CAPTURED
        assert candidate.description == "Temperature monitoring"
        assert candidate.message == "TEMPERATURE exceeded warning threshold: 23.7 (threshold: 20)"

    def test_critical_suppresses_warning(self):
        candidates = evaluate(reading(temperature=35), self.registry)
        assert [(c.parameter, c.severity) for c in candidates] == [("temperature", Severity.CRITICAL)]

    def test_parameters_without_rule_are_skipped(self):
        assert evaluate(reading(humidity=99.0, wind_speed=40.0), self.registry) == []

    def test_alias_configured_rule(self):
        candidates = evaluate(reading(pm2_5=60), self.registry)
        assert candidates[0].severity == Severity.CRITICAL
        assert candidates[0].threshold_value == 55

    def test_one_candidate_per_violating_parameter(self):
        candidates = evaluate(reading(temperature=31, pm2_5=40, humidity=50.0), self.registry)
        assert sorted(c.parameter for c in candidates) == ["pm2_5", "temperature"]

    def test_deterministic(self):
        sample = reading(temperature=31, pm2_5=40)
        assert evaluate(sample, self.registry) == evaluate(sample, self.registry)

    def test_accepts_snapshot_mapping(self):
        snapshot = self.registry.snapshot()
        assert evaluate(reading(temperature=23.7), snapshot) == evaluate(reading(temperature=23.7), self.registry)

    def test_default_description(self):
        candidates = evaluate(reading(pm2_5=40), self.registry)
        assert candidates[0].description == "pm2_5 warning threshold exceeded"


class TestAlertEvaluator:
    def test_uses_current_registry(self):
        registry = ThresholdRegistry()
        evaluator = AlertEvaluator(registry)
        assert evaluator.evaluate(reading(temperature=45)) == []

        registry.refresh([ThresholdRule("temperature", 30, 40)])
        assert evaluator.evaluate(reading(temperature=45))[0].severity == Severity.CRITICAL
