"""Host capabilities consumed by the notification engine.

The engine only talks to these interfaces; the console bindings below are
what the command-line application wires in.
"""

import logging
import sqlite3
import sys
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from .db import get_meta, set_meta
from .models import EmailOptions, EmailResult, NotificationSettings, PermissionState

logger = logging.getLogger(__name__)

PERMISSION_META_KEY = "notification_permission"


class Clock(ABC):
    """Wall clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current local time."""
        pass


class PermissionProvider(ABC):
    """Grants or denies permission to show system notifications."""

    @abstractmethod
    def current(self) -> PermissionState:
        """Return the permission state as currently recorded."""
        pass

    @abstractmethod
    def request(self) -> PermissionState:
        """
        Ask the user for permission.

        Returns:
            The resulting permission state.
        """
        pass


class SoundEmitter(ABC):
    """Plays the alert tone."""

    @abstractmethod
    def play(self) -> None:
        pass


class SystemNotifier(ABC):
    """Shows native notifications."""

    @abstractmethod
    def show(
        self,
        title: str,
        body: str,
        tag: str,
        require_interaction: bool,
        timeout_seconds: Optional[float],
    ) -> None:
        """
        Display a notification.

        Args:
            title: Notification title.
            body: Notification text.
            tag: Stable id; a newer notification with the same tag replaces the old one.
            require_interaction: Keep the notification until the user dismisses it.
            timeout_seconds: Auto-dismiss delay, or None to persist.
        """
        pass


class EmailSender(ABC):
    """Sends an alert email through the user's configured provider."""

    @abstractmethod
    def send(self, options: EmailOptions, settings: NotificationSettings) -> EmailResult:
        pass


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now()


class StoredPermissionProvider(PermissionProvider):
    """Permission recorded in the database; requested interactively on the console."""

    def __init__(self, conn: sqlite3.Connection, input_func=input):
        self.conn = conn
        self.input_func = input_func

    def current(self) -> PermissionState:
        value = get_meta(self.conn, PERMISSION_META_KEY)
        try:
            return PermissionState(value) if value else PermissionState.DEFAULT
        except ValueError:
            logger.warning(f"Ignoring unknown stored permission state {value!r}")
            return PermissionState.DEFAULT

    def request(self) -> PermissionState:
        answer = self.input_func("Allow PrepperTrack to show desktop notifications? [y/N] ")
        result = PermissionState.GRANTED if answer.strip().lower() in ("y", "yes") else PermissionState.DENIED
        set_meta(self.conn, PERMISSION_META_KEY, result.value)
        logger.info(f"Notification permission {result.value}")
        return result


class TerminalBellSoundEmitter(SoundEmitter):
    def __init__(self, stream=None):
        self.stream = stream or sys.stdout

    def play(self) -> None:
        self.stream.write("\a")
        self.stream.flush()


class ConsoleNotifier(SystemNotifier):
    """Prints notifications to the terminal."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout

    def show(self, title, body, tag, require_interaction, timeout_seconds):
        marker = "!!" if require_interaction else "--"
        self.stream.write(f"[{marker}] {title}: {body}\n")
        self.stream.flush()
        logger.debug(f"Displayed notification {tag} (timeout={timeout_seconds})")
