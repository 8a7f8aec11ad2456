"""Notification store: the list of derived notifications and their read state."""

import logging
import sqlite3
from typing import Iterable, List, Optional

from .db import load_notifications, save_notifications
from .models import NotificationRecord, NotificationType

logger = logging.getLogger(__name__)


class NotificationStore:
    """
    Holds notification records keyed by id.

    Every mutation replaces the whole list, so concurrent writers resolve
    as last-writer-wins. Records are only removed by ``clear``/``clear_all``;
    re-deriving notifications never prunes them.
    """

    def __init__(self, conn: Optional[sqlite3.Connection] = None):
        self._conn = conn
        self._records: List[NotificationRecord] = load_notifications(conn) if conn else []

    @property
    def records(self) -> List[NotificationRecord]:
        return list(self._records)

    def _replace(self, records: List[NotificationRecord]) -> None:
        self._records = records
        if self._conn is not None:
            save_notifications(self._conn, records)

    def get(self, notification_id: str) -> Optional[NotificationRecord]:
        for record in self._records:
            if record.id == notification_id:
                return record
        return None

    def merge(self, candidates: Iterable[NotificationRecord]) -> List[NotificationRecord]:
        """
        Append candidates whose id is not already present.

        Args:
            candidates: Freshly derived records.

        Returns:
            The records that were actually added.
        """
        known = {record.id for record in self._records}
        added = []
        for candidate in candidates:
            if candidate.id in known:
                continue
            known.add(candidate.id)
            added.append(candidate)
        if added:
            self._replace(self._records + added)
            logger.debug(f"Added {len(added)} notification(s) to store")
        return added

    def mark_as_read(self, notification_id: str) -> None:
        self._replace([
            record.with_changes(read=True) if record.id == notification_id else record
            for record in self._records
        ])

    def mark_all_as_read(self) -> None:
        self._replace([record.with_changes(read=True) for record in self._records])

    def set_email_sent(self, notification_id: str) -> None:
        self._replace([
            record.with_changes(email_sent=True) if record.id == notification_id else record
            for record in self._records
        ])

    def clear(self, notification_id: str) -> None:
        self._replace([record for record in self._records if record.id != notification_id])

    def clear_all(self) -> None:
        self._replace([])

    def unread_count(self) -> int:
        return sum(1 for record in self._records if not record.read)

    def by_type(self, notification_type: NotificationType) -> List[NotificationRecord]:
        return [record for record in self._records if record.type == notification_type]
