"""
Threshold Registry

In-memory snapshot of the active threshold rules, keyed by parameter.
Readers never lock; refresh swaps the whole snapshot in one assignment.
"""

import threading
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from telemetry_alerts.core.logging import get_logger
from telemetry_alerts.pipelines.base import ThresholdRule, utcnow

logger = get_logger("pipelines.registry", labels={"component": "threshold-registry"})

# Names used by the threshold configuration -> decoded field names
PARAMETER_ALIASES = {
    "pm25": "pm2_5",
    "atmosphericPressure": "atmospheric_pressure",
    "windSpeed": "wind_speed",
    "windDir": "wind_direction",
    "totalSolarRadiation": "total_solar_radiation",
    "signalStrength": "signal_strength",
}


def canonical_parameter(parameter: str) -> str:
    return PARAMETER_ALIASES.get(parameter, parameter)


def default_threshold_rules() -> list[ThresholdRule]:
    """Rules used when no configuration source is available."""
    return [
        ThresholdRule("temperature", 35, 40, "Temperature monitoring for environmental safety"),
        ThresholdRule("humidity", 70, 85, "Humidity levels for comfort and equipment safety"),
        ThresholdRule("pm2_5", 35, 55, "PM2.5 air quality monitoring"),
    ]


class ThresholdRegistry:
    """
    Active threshold rules with O(1) lookup by parameter.

    Example:
        registry = ThresholdRegistry()
        registry.refresh([ThresholdRule("temperature", warning_level=20, critical_level=30)])
        registry.lookup("temperature").critical_level  # 30
    """

    def __init__(self, rules: Optional[Iterable[ThresholdRule]] = None):
        self._rules: Mapping[str, ThresholdRule] = MappingProxyType({})
        self._write_lock = threading.Lock()
        self.refreshed_at: Optional[datetime] = None
        if rules is not None:
            self.refresh(rules)

    def refresh(self, rules: Iterable[ThresholdRule]) -> None:
        """Replace the snapshot with the active, usable rules."""
        snapshot = {}
        for rule in rules:
            if not rule.is_active:
                continue
            if not rule.is_usable:
                logger.warning(
                    f"Rule for {rule.parameter} has no warning or critical level, skipped",
                    extra={"labels": {"parameter": rule.parameter}},
                )
                continue
            if rule.is_ambiguous:
                logger.warning(
                    f"Rule for {rule.parameter} has no explicit direction, treating as {rule.violation_direction.value}",
                    extra={"labels": {"parameter": rule.parameter}},
                )
            snapshot[canonical_parameter(rule.parameter)] = rule

        with self._write_lock:
            self._rules = MappingProxyType(snapshot)
            self.refreshed_at = utcnow()
        logger.info(f"Loaded {len(snapshot)} active thresholds")

    def clear(self) -> None:
        """Drop every rule and mark the registry stale."""
        with self._write_lock:
            self._rules = MappingProxyType({})
            self.refreshed_at = None
        logger.info("Threshold cache cleared")

    def lookup(self, parameter: str) -> Optional[ThresholdRule]:
        return self._rules.get(canonical_parameter(parameter))

    def snapshot(self) -> Mapping[str, ThresholdRule]:
        """The current rule map; later refreshes never mutate it."""
        return self._rules

    def is_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        if self.refreshed_at is None:
            return True
        return (now or utcnow()) - self.refreshed_at >= max_age

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, parameter: str) -> bool:
        return canonical_parameter(parameter) in self._rules
