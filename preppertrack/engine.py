"""Expiration notification derivation and scheduled scanning."""

import logging
import math
import threading
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from .capabilities import Clock
from .delivery import DeliveryGate
from .models import (
    InventoryItem,
    NotificationPriority,
    NotificationRecord,
    NotificationSettings,
    NotificationType,
    PermissionState,
)
from .store import NotificationStore

logger = logging.getLogger(__name__)

SCAN_JOB_ID = "expiration_scan"
_DAY = timedelta(days=1)


@dataclass
class ScanInput:
    """What a scan reads from application state."""
    inventory: List[InventoryItem]
    settings: NotificationSettings


def _parse_expiration(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def days_until(expiration: date, now: datetime) -> int:
    """Whole days until midnight of ``expiration``, rounded up."""
    remaining = datetime.combine(expiration, time.min) - now
    return math.ceil(remaining / _DAY)


def alert_priority(alert_days: int) -> NotificationPriority:
    if alert_days <= 7:
        return NotificationPriority.HIGH
    if alert_days <= 30:
        return NotificationPriority.MEDIUM
    return NotificationPriority.LOW


def derive_notifications(
    inventory: Iterable[InventoryItem],
    settings: NotificationSettings,
    now: datetime,
) -> List[NotificationRecord]:
    """
    Derive expiration notifications for the current inventory.

    An item is flagged for offset ``d`` only on the scan where it is exactly
    ``d`` days from expiring; past-due items are flagged regardless of the
    configured offsets. Ids are deterministic so re-deriving is idempotent.

    Args:
        inventory: Items to check.
        settings: Notification settings (gates and offsets).
        now: Current local time.

    Returns:
        Candidate records, possibly already present in the store.
    """
    if not settings.enable_notifications or not settings.expiration_alerts:
        return []

    offsets = sorted(settings.expiration_days)
    records = []
    for item in inventory:
        expiration = _parse_expiration(item.expiration_date)
        if expiration is None:
            continue

        remaining = days_until(expiration, now)
        for alert_days in offsets:
            if remaining != alert_days:
                continue
            records.append(NotificationRecord(
                id=f"exp-{item.id}-{alert_days}",
                type=NotificationType.EXPIRATION,
                title="Item Expiring Soon",
                message=f"{item.name} expires in {alert_days} days",
                timestamp=now,
                priority=alert_priority(alert_days),
                item_id=item.id,
                alert_days=alert_days,
            ))

        if remaining < 0:
            records.append(NotificationRecord(
                id=f"expired-{item.id}",
                type=NotificationType.EXPIRATION,
                title="Item Expired",
                message=f"{item.name} expired {abs(remaining)} days ago",
                timestamp=now,
                priority=NotificationPriority.CRITICAL,
                item_id=item.id,
            ))
    return records


class NotificationEngine:
    """
    Scans inventory for expiration alerts on a fixed interval.

    ``start`` runs one scan immediately and then schedules the rest;
    ``stop`` tears the scheduler down. Scans are serialized.
    """

    def __init__(
        self,
        snapshot_provider: Callable[[], ScanInput],
        store: NotificationStore,
        gate: DeliveryGate,
        clock: Clock,
        interval_minutes: int = 60,
    ):
        self.snapshot_provider = snapshot_provider
        self.store = store
        self.gate = gate
        self.clock = clock
        self.interval_minutes = interval_minutes
        self._scheduler: Optional[BackgroundScheduler] = None
        self._scan_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def scan(self) -> List[NotificationRecord]:
        """
        Run one derivation pass.

        Returns:
            The records newly added to the store.
        """
        with self._scan_lock:
            snapshot = self.snapshot_provider()
            now = self.clock.now()
            candidates = derive_notifications(snapshot.inventory, snapshot.settings, now)
            added = self.store.merge(candidates)
            logger.info(
                f"Expiration scan: {len(candidates)} candidate(s), {len(added)} new, "
                f"{self.store.unread_count()} unread"
            )
            self.gate.deliver(added, snapshot.settings, snapshot.inventory, self.store)
            return added

    def _scheduled_scan(self) -> None:
        try:
            self.scan()
        except Exception as e:
            # Keep the schedule alive; the next tick retries
            logger.error(f"Scheduled scan failed: {e}", exc_info=True)

    def start(self) -> None:
        if self._scheduler is not None:
            return
        self.scan()
        scheduler = BackgroundScheduler()
        scheduler.add_job(
            self._scheduled_scan,
            "interval",
            minutes=self.interval_minutes,
            id=SCAN_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(f"Notification engine started (scan every {self.interval_minutes} min)")

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Notification engine stopped")

    def request_permission(self) -> PermissionState:
        """
        Ask the host for notification permission.

        A failed request resolves to ``denied``. Delivery re-reads the
        provider on every scan, so a grant takes effect on the next scan.
        """
        try:
            result = self.gate.permission_provider.request()
        except (EOFError, OSError) as e:
            logger.error(f"Notification permission request failed: {e}")
            return PermissionState.DENIED
        logger.info(f"Notification permission: {result.value}")
        return result
