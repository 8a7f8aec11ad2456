"""Delivery gating for newly derived notifications.

Decides, per new record, whether to show a system notification, play the
alert tone and send an expiration email.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Dict, Iterable, Optional, Set

from .capabilities import Clock, EmailSender, PermissionProvider, SoundEmitter, SystemNotifier
from .db import get_sent_email_keys, mark_email_sent
from .email_notifier import build_expiration_email
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

EMAIL_ALERT_DAYS = 7
AUTO_DISMISS_SECONDS = 5.0

_URGENT = (NotificationPriority.HIGH, NotificationPriority.CRITICAL)


def _minute_of_day(value: str) -> Optional[int]:
    try:
        hours, minutes = value.split(":")
        hours, minutes = int(hours), int(minutes)
    except (AttributeError, ValueError):
        return None
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return None
    return hours * 60 + minutes


def is_quiet_hours(settings: NotificationSettings, now: datetime) -> bool:
    """
    Check whether ``now`` falls inside the configured quiet window.

    Both ends are inclusive. When start >= end the window wraps midnight.
    Malformed times are treated as no quiet window.
    """
    if not settings.enable_quiet_hours:
        return False

    start = _minute_of_day(settings.quiet_start)
    end = _minute_of_day(settings.quiet_end)
    if start is None or end is None:
        logger.warning(f"Ignoring malformed quiet hours {settings.quiet_start!r}-{settings.quiet_end!r}")
        return False

    current = now.hour * 60 + now.minute
    if start < end:
        return start <= current <= end
    return current >= start or current <= end


class SentEmailSet:
    """
    Keys of expiration emails already sent.

    Independent of the notification store: reading or clearing a record
    never re-enables its email.
    """

    def __init__(self, conn: Optional[sqlite3.Connection] = None):
        self._conn = conn
        self._keys: Set[str] = get_sent_email_keys(conn) if conn else set()

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: str) -> None:
        self._keys.add(key)
        if self._conn is not None:
            mark_email_sent(self._conn, key)


class DeliveryGate:
    """Applies permission, quiet hours and channel settings to new notifications."""

    def __init__(
        self,
        permission_provider: PermissionProvider,
        notifier: SystemNotifier,
        sound_emitter: SoundEmitter,
        email_sender: EmailSender,
        clock: Clock,
        sent_emails: Optional[SentEmailSet] = None,
    ):
        self.permission_provider = permission_provider
        self.notifier = notifier
        self.sound_emitter = sound_emitter
        self.email_sender = email_sender
        self.clock = clock
        self.sent_emails = sent_emails if sent_emails is not None else SentEmailSet()

    def deliver(
        self,
        records: Iterable[NotificationRecord],
        settings: NotificationSettings,
        inventory: Iterable[InventoryItem],
        store: NotificationStore,
    ) -> None:
        """
        Deliver records that were newly added to the store in this scan.

        Args:
            records: Only the newly added records.
            settings: Current notification settings.
            inventory: Current inventory, used for email content.
            store: Store whose records get ``email_sent`` updated.
        """
        records = list(records)
        if not records:
            return

        # Permission can change mid-session, so it is re-read every time
        permission = self.permission_provider.current()
        items: Dict[str, InventoryItem] = {item.id: item for item in inventory}

        for record in records:
            self._show_system_notification(record, settings, permission)
            self._send_expiration_email(record, settings, items, store)

        if any(record.priority in _URGENT for record in records):
            self._play_sound(settings)

    def _show_system_notification(
        self,
        record: NotificationRecord,
        settings: NotificationSettings,
        permission: PermissionState,
    ) -> None:
        if not settings.push_notifications or permission != PermissionState.GRANTED:
            return
        if record.priority not in _URGENT:
            return
        critical = record.priority == NotificationPriority.CRITICAL
        self.notifier.show(
            title=record.title,
            body=record.message,
            tag=record.id,
            require_interaction=critical,
            timeout_seconds=None if critical else AUTO_DISMISS_SECONDS,
        )

    def _play_sound(self, settings: NotificationSettings) -> None:
        if not settings.sound_alerts:
            return
        if is_quiet_hours(settings, self.clock.now()):
            logger.debug("Alert tone suppressed during quiet hours")
            return
        self.sound_emitter.play()

    def _send_expiration_email(
        self,
        record: NotificationRecord,
        settings: NotificationSettings,
        items: Dict[str, InventoryItem],
        store: NotificationStore,
    ) -> None:
        if record.type != NotificationType.EXPIRATION or record.alert_days != EMAIL_ALERT_DAYS:
            return
        if not (settings.email_expiration_alerts and settings.email_notifications):
            return
        to_email = settings.email_config.to_email
        if not to_email:
            return

        key = f"exp-{record.item_id}-{record.alert_days}"
        if key in self.sent_emails:
            logger.debug(f"Expiration email {key} already sent")
            return

        item = items.get(record.item_id)
        name = item.name if item else record.item_id
        expiration_date = item.expiration_date if item else ""
        options = build_expiration_email(name, record.alert_days, expiration_date, to_email)

        result = self.email_sender.send(options, settings)
        if not result.success:
            logger.warning(f"Expiration email for {name} not sent: {result.message}")
            return

        self.sent_emails.add(key)
        store.set_email_sent(record.id)
        logger.info(f"Expiration email sent for {name} to {to_email}")
