"""SQLite storage for application state, notifications and sent emails."""

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, List, Optional, Set

from .models import AppSnapshot, NotificationRecord

# State keys, mirroring the camelCase sections of a backup file
INVENTORY = "inventory"
HOUSEHOLD = "household"
HOUSEHOLD_GROUPS = "householdGroups"
SETTINGS = "settings"
RATIONING_SCENARIOS = "rationingScenarios"
SELECTED_RATIONING_SCENARIO = "selectedRationingScenario"
NOTIFICATION_SETTINGS = "notificationSettings"


def init_db(db_path: str) -> sqlite3.Connection:
    """
    Initialize the database and create tables if they don't exist.

    Args:
        db_path: Path to the SQLite database file (``:memory:`` for tests).

    Returns:
        A connection to the database.
    """
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS app_state (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id TEXT PRIMARY KEY,
            position INTEGER NOT NULL,
            data TEXT NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS sent_emails (
            key TEXT PRIMARY KEY,
            sent_at TEXT NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
    """)
    conn.commit()
    return conn


def get_state(conn: sqlite3.Connection, key: str, default: Any = None) -> Any:
    """Read a JSON value from the key-value state table."""
    cursor = conn.execute("SELECT value FROM app_state WHERE key = ?", (key,))
    row = cursor.fetchone()
    return json.loads(row[0]) if row else default


def set_state(conn: sqlite3.Connection, key: str, value: Any) -> None:
    """Write a JSON value to the key-value state table."""
    conn.execute(
        "INSERT OR REPLACE INTO app_state (key, value) VALUES (?, ?)",
        (key, json.dumps(value))
    )
    conn.commit()


def load_snapshot(conn: sqlite3.Connection) -> AppSnapshot:
    """Read the full application state."""
    return AppSnapshot(
        inventory=get_state(conn, INVENTORY, []),
        household=get_state(conn, HOUSEHOLD, []),
        household_groups=get_state(conn, HOUSEHOLD_GROUPS, []),
        settings=get_state(conn, SETTINGS, {}),
        rationing_scenarios=get_state(conn, RATIONING_SCENARIOS, []),
        selected_rationing_scenario=get_state(conn, SELECTED_RATIONING_SCENARIO, "normal"),
        notification_settings=get_state(conn, NOTIFICATION_SETTINGS, {}),
    )


def load_notifications(conn: sqlite3.Connection) -> List[NotificationRecord]:
    cursor = conn.execute("SELECT data FROM notifications ORDER BY position")
    return [NotificationRecord.from_dict(json.loads(row[0])) for row in cursor.fetchall()]


def save_notifications(conn: sqlite3.Connection, records: List[NotificationRecord]) -> None:
    """
    Replace the stored notification list.

    Args:
        conn: Database connection.
        records: The complete list, in display order.
    """
    with conn:
        conn.execute("DELETE FROM notifications")
        conn.executemany(
            "INSERT INTO notifications (id, position, data) VALUES (?, ?, ?)",
            [
                (record.id, position, json.dumps(record.to_dict()))
                for position, record in enumerate(records)
            ]
        )


def get_sent_email_keys(conn: sqlite3.Connection) -> Set[str]:
    cursor = conn.execute("SELECT key FROM sent_emails")
    return {row[0] for row in cursor.fetchall()}


def mark_email_sent(conn: sqlite3.Connection, key: str) -> None:
    now = datetime.now(timezone.utc).isoformat()
    conn.execute(
        "INSERT OR IGNORE INTO sent_emails (key, sent_at) VALUES (?, ?)",
        (key, now)
    )
    conn.commit()


def get_meta(conn: sqlite3.Connection, key: str) -> Optional[str]:
    """
    Get a metadata value from the database.

    Args:
        conn: Database connection.
        key: Metadata key.

    Returns:
        The metadata value, or None if not found.
    """
    cursor = conn.execute("SELECT value FROM meta WHERE key = ?", (key,))
    row = cursor.fetchone()
    return row[0] if row else None


def set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
        (key, value)
    )
    conn.commit()
