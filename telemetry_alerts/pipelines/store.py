"""
Alert Store

Canonical set of live alerts keyed by (device_id, parameter).

Merges evaluation candidates into existing alerts while keeping their
lifecycle, resolves alerts whose condition cleared, and applies operator
actions. Writes are serialized per device; alerts are immutable values that
are swapped on change, so listing never needs a lock.
"""

import threading
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterable, Optional

from telemetry_alerts.core.logging import get_logger
from telemetry_alerts.pipelines.base import (
    Alert,
    AlertCandidate,
    AlertDelta,
    AlertStatus,
    DeltaKind,
    Severity,
    utcnow,
)
from telemetry_alerts.pipelines.errors import NotFoundError

logger = get_logger("pipelines.store", labels={"component": "alert-store"})


def alert_key(device_id: str, parameter: str) -> str:
    return f"{device_id}:{parameter}"


def _strongest(candidates: Iterable[AlertCandidate]) -> list[AlertCandidate]:
    """At most one candidate per parameter, critical beats warning."""
    chosen: dict[str, AlertCandidate] = {}
    for candidate in candidates:
        current = chosen.get(candidate.parameter)
        if current is None or candidate.severity.rank > current.severity.rank:
            chosen[candidate.parameter] = candidate
    return list(chosen.values())


class AlertStore:
    """
    In-memory alert state with idempotent lifecycle transitions.

    Example:
        store = AlertStore()
        deltas = store.merge("124A7DA90849", evaluate(reading, registry))
        store.acknowledge(deltas[0].alert.alert_id, "operator@example.com")
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._alerts: dict[str, Alert] = {}
        self._by_device: dict[str, set] = defaultdict(set)
        # Alert ids whose parameter was in the candidate set of the latest cycle
        self._violating: set = set()
        self._device_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, device_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._device_locks.get(device_id)
            if lock is None:
                lock = self._device_locks[device_id] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # Evaluation cycle
    # ------------------------------------------------------------------

    def merge(self, device_id: str, candidates: Iterable[AlertCandidate],
              now: Optional[datetime] = None) -> list[AlertDelta]:
        """
        Reconcile one evaluation cycle of a device with the stored alerts.

        Vanished parameters are resolved before candidates are applied, so a
        parameter that changes severity within a cycle yields one `updated`
        delta rather than a resolve/create pair.
        """
        candidates = list(candidates)
        for candidate in candidates:
            if candidate.device_id != device_id:
                raise ValueError(
                    f"candidate for device {candidate.device_id} merged into cycle of {device_id}"
                )

        with self._lock_for(device_id):
            now = now or self.clock()
            violating_now = {c.parameter for c in candidates}
            deltas = self._resolve_vanished(device_id, violating_now, now)
            for candidate in _strongest(candidates):
                deltas.append(self._apply(candidate, now))

        if deltas:
            logger.info(
                f"Merged {len(candidates)} candidates into {device_id}: {len(deltas)} deltas",
                extra={"labels": {"device_id": device_id}},
            )
        return deltas

    def _resolve_vanished(self, device_id: str, violating_now: set, now: datetime) -> list[AlertDelta]:
        deltas = []
        for alert_id in sorted(self._by_device.get(device_id, ())):
            alert = self._alerts[alert_id]
            if alert.parameter in violating_now:
                continue
            self._violating.discard(alert_id)
            if alert.status is AlertStatus.RESOLVED:
                continue
            resolved = replace(
                alert,
                status=AlertStatus.RESOLVED,
                resolved_at=now,
                resolved_by=None,
                last_updated=now,
            )
            self._alerts[alert_id] = resolved
            deltas.append(AlertDelta(DeltaKind.RESOLVED, resolved))
        return deltas

    def _apply(self, candidate: AlertCandidate, now: datetime) -> AlertDelta:
        alert_id = alert_key(candidate.device_id, candidate.parameter)
        existing = self._alerts.get(alert_id)
        # A resolved alert whose condition cleared starts a new episode
        reopened = (
            existing is not None
            and existing.status is AlertStatus.RESOLVED
            and alert_id not in self._violating
        )
        self._violating.add(alert_id)

        if existing is None or reopened:
            alert = Alert(
                alert_id=alert_id,
                device_id=candidate.device_id,
                parameter=candidate.parameter,
                severity=candidate.severity,
                current_value=candidate.current_value,
                threshold_value=candidate.threshold_value,
                first_detected=now,
                last_updated=now,
                message=candidate.message,
                description=candidate.description,
            )
            self._alerts[alert_id] = alert
            self._by_device[candidate.device_id].add(alert_id)
            return AlertDelta(DeltaKind.CREATED, alert)

        changes = {
            "current_value": candidate.current_value,
            "last_updated": now,
            "occurrence_count": existing.occurrence_count + 1,
        }
        if candidate.severity.rank > existing.severity.rank:
            changes.update(
                severity=candidate.severity,
                threshold_value=candidate.threshold_value,
                message=candidate.message,
            )
        elif candidate.severity is existing.severity:
            changes.update(threshold_value=candidate.threshold_value, message=candidate.message)
        updated = replace(existing, **changes)
        self._alerts[alert_id] = updated
        return AlertDelta(DeltaKind.UPDATED, updated)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def _require(self, alert_id: str) -> Alert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise NotFoundError(alert_id)
        return alert

    def acknowledge(self, alert_id: str, actor: str, now: Optional[datetime] = None) -> Alert:
        """Active -> acknowledged. Acknowledged or resolved alerts are returned unchanged."""
        device_id = self._require(alert_id).device_id
        with self._lock_for(device_id):
            alert = self._require(alert_id)
            if alert.status is not AlertStatus.ACTIVE:
                return alert
            now = now or self.clock()
            alert = replace(
                alert,
                status=AlertStatus.ACKNOWLEDGED,
                acknowledged_by=actor,
                acknowledged_at=now,
                last_updated=now,
            )
            self._alerts[alert_id] = alert
        logger.info(f"Alert acknowledged: {alert_id}", extra={"labels": {"actor": actor}})
        return alert

    def resolve(self, alert_id: str, actor: str, now: Optional[datetime] = None) -> Alert:
        """Resolve by operator. Already resolved alerts are returned unchanged."""
        device_id = self._require(alert_id).device_id
        with self._lock_for(device_id):
            alert = self._require(alert_id)
            if alert.status is AlertStatus.RESOLVED:
                return alert
            now = now or self.clock()
            alert = replace(
                alert,
                status=AlertStatus.RESOLVED,
                resolved_by=actor,
                resolved_at=now,
                last_updated=now,
            )
            self._alerts[alert_id] = alert
        logger.info(f"Alert resolved: {alert_id}", extra={"labels": {"actor": actor}})
        return alert

    def dismiss(self, alert_id: str, actor: Optional[str] = None) -> Alert:
        """Remove the alert; the next violation creates a fresh one."""
        device_id = self._require(alert_id).device_id
        with self._lock_for(device_id):
            alert = self._require(alert_id)
            del self._alerts[alert_id]
            self._by_device[device_id].discard(alert_id)
            self._violating.discard(alert_id)
        logger.info(f"Alert dismissed: {alert_id}", extra={"labels": {"actor": actor or "system"}})
        return alert

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def get(self, alert_id: str) -> Optional[Alert]:
        return self._alerts.get(alert_id)

    def list_alerts(self, device_id: Optional[str] = None,
                    status: Optional[AlertStatus] = None) -> list[Alert]:
        alerts = list(self._alerts.values())
        if device_id is not None:
            alerts = [a for a in alerts if a.device_id == device_id]
        if status is not None:
            alerts = [a for a in alerts if a.status is status]
        return sorted(alerts, key=lambda a: (a.device_id, a.parameter))

    def stats(self) -> dict:
        alerts = list(self._alerts.values())
        return {
            "total": len(alerts),
            "active": sum(1 for a in alerts if a.status is AlertStatus.ACTIVE),
            "acknowledged": sum(1 for a in alerts if a.status is AlertStatus.ACKNOWLEDGED),
            "resolved": sum(1 for a in alerts if a.status is AlertStatus.RESOLVED),
            "critical": sum(1 for a in alerts if a.severity is Severity.CRITICAL),
            "warning": sum(1 for a in alerts if a.severity is Severity.WARNING),
        }

    def __len__(self) -> int:
        return len(self._alerts)
