from datetime import datetime
from typing import List

import pytest

from preppertrack.capabilities import Clock, EmailSender, PermissionProvider, SoundEmitter, SystemNotifier
from preppertrack.db import init_db
from preppertrack.delivery import DeliveryGate, SentEmailSet
from preppertrack.engine import NotificationEngine, ScanInput
from preppertrack.models import (
    EmailOptions,
    EmailResult,
    EmailSettings,
    InventoryItem,
    NotificationSettings,
    PermissionState,
)
from preppertrack.store import NotificationStore

NOW = datetime(2026, 10, 17, 9, 0)


class FakeClock(Clock):
    def __init__(self, now: datetime = NOW):
        self.current = now

    def now(self) -> datetime:
        return self.current


class FakePermissionProvider(PermissionProvider):
    def __init__(self, state: PermissionState = PermissionState.DEFAULT, answer: PermissionState = PermissionState.GRANTED):
        self.state = state
        self.answer = answer
        self.requests = 0

    def current(self) -> PermissionState:
        return self.state

    def request(self) -> PermissionState:
        self.requests += 1
        self.state = self.answer
        return self.state


class RecordingSoundEmitter(SoundEmitter):
    def __init__(self):
        self.plays = 0

    def play(self) -> None:
        self.plays += 1


class RecordingNotifier(SystemNotifier):
    def __init__(self):
        self.shown = []

    def show(self, title, body, tag, require_interaction, timeout_seconds):
        self.shown.append({
            "title": title,
            "body": body,
            "tag": tag,
            "require_interaction": require_interaction,
            "timeout_seconds": timeout_seconds,
        })


class RecordingEmailSender(EmailSender):
    def __init__(self, success: bool = True):
        self.success = success
        self.sent: List[EmailOptions] = []

    def send(self, options, settings) -> EmailResult:
        self.sent.append(options)
        return EmailResult(self.success, None if self.success else "provider down")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def permission():
    return FakePermissionProvider()


@pytest.fixture
def sound():
    return RecordingSoundEmitter()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def conn():
    connection = init_db(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def settings():
    return NotificationSettings(
        enable_notifications=True,
        expiration_alerts=True,
        expiration_days={7, 30},
        push_notifications=True,
        sound_alerts=True,
        enable_quiet_hours=False,
        email_notifications=True,
        email_expiration_alerts=True,
        email_config=EmailSettings(from_name="Prepper", from_email="alerts@example.com", to_email="me@example.com"),
        email_provider="smtp",
    )


@pytest.fixture
def inventory():
    return [
        InventoryItem(id="rice", name="Rice", expiration_date="2026-10-24"),      # 7 days out
        InventoryItem(id="beans", name="Beans", expiration_date="2026-11-16"),    # 30 days out
        InventoryItem(id="water", name="Water", expiration_date="2026-10-14"),    # 3 days past
        InventoryItem(id="flour", name="Flour", expiration_date="2026-12-25"),
        InventoryItem(id="radio", name="Radio"),
    ]


@pytest.fixture
def scan_state(inventory, settings):
    """Mutable scan input the engine reads on every scan."""
    return ScanInput(inventory=list(inventory), settings=settings)


@pytest.fixture
def store():
    return NotificationStore()


@pytest.fixture
def gate(permission, notifier, sound, email_sender, clock):
    return DeliveryGate(
        permission_provider=permission,
        notifier=notifier,
        sound_emitter=sound,
        email_sender=email_sender,
        clock=clock,
        sent_emails=SentEmailSet(),
    )


@pytest.fixture
def engine(scan_state, store, gate, clock):
    return NotificationEngine(
        snapshot_provider=lambda: scan_state,
        store=store,
        gate=gate,
        clock=clock,
        interval_minutes=60,
    )
