"""
Alert Evaluation Pipeline

Evaluates threshold rules against decoded readings to produce alert candidates.
No infrastructure dependencies - pure data processing.
"""

from typing import Mapping, Optional, Union

from telemetry_alerts.pipelines.base import (
    AlertCandidate,
    Direction,
    Reading,
    Severity,
    ThresholdRule,
)
from telemetry_alerts.pipelines.registry import ThresholdRegistry, canonical_parameter

Thresholds = Union[ThresholdRegistry, Mapping[str, ThresholdRule]]

_OPERATOR_TEXT = {
    Direction.ABOVE: "exceeded",
    Direction.BELOW: "dropped below",
}


def crosses(value: float, level: Optional[float], direction: Direction) -> bool:
    if level is None:
        return False
    if direction is Direction.BELOW:
        return value <= level
    return value >= level


def check_rule(rule: ThresholdRule, value: float) -> Optional[tuple[Severity, float]]:
    """
    Returns (severity, crossed level) or None.

    Critical is checked first so it always wins over warning.
    """
    direction = rule.violation_direction
    if crosses(value, rule.critical_level, direction):
        return Severity.CRITICAL, rule.critical_level
    if crosses(value, rule.warning_level, direction):
        return Severity.WARNING, rule.warning_level
    return None


def alert_message(parameter: str, value: float, severity: Severity, level: float, direction: Direction) -> str:
    return f"{parameter.upper()} {_OPERATOR_TEXT[direction]} {severity.value} threshold: {value} (threshold: {level})"


def _lookup(thresholds: Thresholds, parameter: str) -> Optional[ThresholdRule]:
    if isinstance(thresholds, ThresholdRegistry):
        return thresholds.lookup(parameter)
    return thresholds.get(canonical_parameter(parameter))


def evaluate(reading: Reading, thresholds: Thresholds) -> list[AlertCandidate]:
    """
    One candidate per violating parameter of the reading.

    Deterministic: the result depends only on the reading and the rules.
    """
    candidates = []
    for parameter, value in reading.fields.items():
        if value is None:
            continue
        rule = _lookup(thresholds, parameter)
        if rule is None:
            continue

        result = check_rule(rule, value)
        if result is None:
            continue

        severity, level = result
        candidates.append(AlertCandidate(
            device_id=reading.device_id,
            parameter=parameter,
            severity=severity,
            current_value=value,
            threshold_value=level,
            message=alert_message(parameter, value, severity, level, rule.violation_direction),
            description=rule.description or f"{parameter} {severity.value} threshold exceeded",
            detected_at=reading.timestamp,
        ))
    return candidates


class AlertEvaluator:
    """
    Evaluates readings against a threshold registry.

    Example:
        evaluator = AlertEvaluator(registry)
        candidates = evaluator.evaluate(reading)
    """

    def __init__(self, registry: ThresholdRegistry):
        self.registry = registry

    @property
    def name(self) -> str:
        return "alert_evaluator"

    def evaluate(self, reading: Reading) -> list[AlertCandidate]:
        # Pin one snapshot so a concurrent refresh cannot split the evaluation
        return evaluate(reading, self.registry.snapshot())
