"""Data models for inventory, settings and notifications."""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class SanitizationType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    EMAIL = "email"
    DATE = "date"
    ARRAY = "array"


class NotificationType(str, Enum):
    EXPIRATION = "expiration"
    LOW_STOCK = "lowStock"
    SYSTEM = "system"
    SECURITY = "security"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PermissionState(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    DEFAULT = "default"


def _is_whole_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value) and value.is_integer()


@dataclass
class InventoryItem:
    """An inventory item as held in application state."""
    id: str
    name: str
    expiration_date: Optional[str] = None  # ISO YYYY-MM-DD
    category: str = ""
    quantity: float = 0
    unit: str = ""
    storage_location: str = ""
    calories_per_unit: Optional[float] = None
    usage_rate_per_person_per_day: float = 0
    cost: Optional[float] = None
    notes: Optional[str] = None
    date_added: str = ""
    last_updated: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InventoryItem":
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            expiration_date=data.get("expirationDate") or None,
            category=data.get("category", ""),
            quantity=data.get("quantity", 0),
            unit=data.get("unit", ""),
            storage_location=data.get("storageLocation", ""),
            calories_per_unit=data.get("caloriesPerUnit"),
            usage_rate_per_person_per_day=data.get("usageRatePerPersonPerDay", 0),
            cost=data.get("cost"),
            notes=data.get("notes"),
            date_added=data.get("dateAdded", ""),
            last_updated=data.get("lastUpdated", ""),
        )


@dataclass
class EmailSettings:
    """Email/SMS provider configuration held in notification settings."""
    from_name: str = ""
    from_email: str = ""
    to_email: str = ""
    api_key: str = ""
    domain: str = ""
    account_sid: str = ""
    auth_token: str = ""
    from_phone: str = ""
    to_phone: str = ""
    access_token: str = ""
    host: str = ""
    port: str = ""
    username: str = ""
    password: str = ""

    _KEYS = {
        "from_name": "fromName",
        "from_email": "fromEmail",
        "to_email": "toEmail",
        "api_key": "apiKey",
        "domain": "domain",
        "account_sid": "accountSid",
        "auth_token": "authToken",
        "from_phone": "fromPhone",
        "to_phone": "toPhone",
        "access_token": "accessToken",
        "host": "host",
        "port": "port",
        "username": "username",
        "password": "password",
    }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EmailSettings":
        data = data or {}
        return cls(**{
            attr: str(data.get(key) or "")
            for attr, key in cls._KEYS.items()
        })

    def to_dict(self) -> Dict[str, str]:
        return {key: getattr(self, attr) for attr, key in self._KEYS.items()}


@dataclass
class NotificationSettings:
    """User notification preferences."""
    enable_notifications: bool = True
    expiration_alerts: bool = True
    expiration_days: Set[int] = field(default_factory=lambda: {7, 30})
    push_notifications: bool = False
    sound_alerts: bool = True
    enable_quiet_hours: bool = False
    quiet_start: str = "22:00"
    quiet_end: str = "07:00"
    email_notifications: bool = False
    email_expiration_alerts: bool = False
    email_config: EmailSettings = field(default_factory=EmailSettings)
    email_provider: str = "none"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "NotificationSettings":
        """Build settings from the stored camelCase dict, defaulting missing keys."""
        data = data or {}
        defaults = cls()
        days = data.get("expirationDays")
        if isinstance(days, (list, tuple, set)):
            expiration_days = {
                int(d) for d in days
                if _is_whole_number(d)
            }
        else:
            expiration_days = set(defaults.expiration_days)
        return cls(
            enable_notifications=bool(data.get("enableNotifications", defaults.enable_notifications)),
            expiration_alerts=bool(data.get("expirationAlerts", defaults.expiration_alerts)),
            expiration_days=expiration_days,
            push_notifications=bool(data.get("pushNotifications", defaults.push_notifications)),
            sound_alerts=bool(data.get("soundAlerts", defaults.sound_alerts)),
            enable_quiet_hours=bool(data.get("enableQuietHours", defaults.enable_quiet_hours)),
            quiet_start=str(data.get("quietStart") or defaults.quiet_start),
            quiet_end=str(data.get("quietEnd") or defaults.quiet_end),
            email_notifications=bool(data.get("emailNotifications", defaults.email_notifications)),
            email_expiration_alerts=bool(data.get("emailExpirationAlerts", defaults.email_expiration_alerts)),
            email_config=EmailSettings.from_dict(data.get("emailConfig")),
            email_provider=str(data.get("emailProvider") or defaults.email_provider),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enableNotifications": self.enable_notifications,
            "expirationAlerts": self.expiration_alerts,
            "expirationDays": sorted(self.expiration_days),
            "pushNotifications": self.push_notifications,
            "soundAlerts": self.sound_alerts,
            "enableQuietHours": self.enable_quiet_hours,
            "quietStart": self.quiet_start,
            "quietEnd": self.quiet_end,
            "emailNotifications": self.email_notifications,
            "emailExpirationAlerts": self.email_expiration_alerts,
            "emailConfig": self.email_config.to_dict(),
            "emailProvider": self.email_provider,
        }


@dataclass
class NotificationRecord:
    """A derived notification held in the notification store."""
    id: str            # exp-{itemId}-{alertDays} or expired-{itemId}
    type: NotificationType
    title: str
    message: str
    timestamp: datetime
    priority: NotificationPriority
    read: bool = False
    email_sent: bool = False
    item_id: Optional[str] = None
    alert_days: Optional[int] = None  # matched offset; None for expired records

    def with_changes(self, **changes: Any) -> "NotificationRecord":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "priority": self.priority.value,
            "read": self.read,
            "emailSent": self.email_sent,
            "itemId": self.item_id,
            "alertDays": self.alert_days,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationRecord":
        return cls(
            id=data["id"],
            type=NotificationType(data["type"]),
            title=data.get("title", ""),
            message=data.get("message", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            priority=NotificationPriority(data["priority"]),
            read=bool(data.get("read", False)),
            email_sent=bool(data.get("emailSent", False)),
            item_id=data.get("itemId"),
            alert_days=data.get("alertDays"),
        )


@dataclass
class FileUpload:
    """Represents a file selected for import."""
    name: str
    size: int
    type: str          # declared MIME type
    content: bytes = b""


@dataclass
class ValidationResult:
    is_valid: bool
    error: Optional[str] = None


@dataclass
class EmailOptions:
    """An outgoing email/SMS message."""
    to: str
    subject: str
    text: str
    html: Optional[str] = None


@dataclass
class EmailResult:
    success: bool
    message: Optional[str] = None


@dataclass
class AppSnapshot:
    """Snapshot of the persisted application state."""
    inventory: List[Dict[str, Any]] = field(default_factory=list)
    household: List[Dict[str, Any]] = field(default_factory=list)
    household_groups: List[Dict[str, Any]] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)
    rationing_scenarios: List[Dict[str, Any]] = field(default_factory=list)
    selected_rationing_scenario: str = "normal"
    notification_settings: Dict[str, Any] = field(default_factory=dict)

    def inventory_items(self) -> List[InventoryItem]:
        return [InventoryItem.from_dict(item) for item in self.inventory if isinstance(item, dict)]

    def get_notification_settings(self) -> NotificationSettings:
        return NotificationSettings.from_dict(self.notification_settings)
