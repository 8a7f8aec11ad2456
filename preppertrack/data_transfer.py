"""Backup export (JSON/CSV) and staged JSON import."""

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import db
from .models import AppSnapshot, FileUpload
from .sanitization import (
    sanitize_household_member,
    sanitize_inventory_item,
    sanitize_json_data,
    sanitize_text,
    validate_file_upload,
)

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0.0"
REQUIRED_SECTIONS = ("inventory", "household", "settings")

INVENTORY_COLUMNS = [
    "Name", "Category", "Quantity", "Unit", "Expiration Date", "Storage Location",
    "Calories Per Unit", "Usage Rate", "Cost", "Notes",
]
HOUSEHOLD_COLUMNS = [
    "Name", "Age", "Activity Level", "Daily Calories", "Daily Water", "Group ID",
    "Skills", "Medical Conditions",
]


class ImportValidationError(ValueError):
    """The upload or its contents cannot be imported. State is untouched."""


class ImportStateError(RuntimeError):
    """An import action was attempted in the wrong state."""


class ImportState(str, Enum):
    IDLE = "idle"
    STAGED = "staged"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


@dataclass
class ImportReport:
    """Outcome of applying a staged import."""
    inventory_imported: int = 0
    household_imported: int = 0
    groups_imported: int = 0
    scenarios_imported: int = 0
    settings_updated: bool = False
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def build_export_data(snapshot: AppSnapshot, now: datetime) -> Dict[str, Any]:
    """Assemble and sanitize the backup document."""
    return sanitize_json_data({
        "inventory": snapshot.inventory,
        "household": snapshot.household,
        "householdGroups": snapshot.household_groups,
        "settings": snapshot.settings,
        "rationingScenarios": snapshot.rationing_scenarios,
        "selectedRationingScenario": snapshot.selected_rationing_scenario,
        "exportedAt": now.isoformat(),
        "version": EXPORT_VERSION,
    })


def export_json(snapshot: AppSnapshot, now: datetime) -> Tuple[str, str]:
    """
    Export the application state as a pretty-printed JSON backup.

    Returns:
        (filename, content)
    """
    content = json.dumps(build_export_data(snapshot, now), indent=2)
    return f"preppertrack-backup-{now.date().isoformat()}.json", content


def _csv_field(value: Any) -> str:
    if value is None:
        value = ""
    elif isinstance(value, bool):
        value = "true" if value else "false"
    text = str(value)
    return '"' + text.replace('"', '""') + '"'


def _csv_row(values: List[Any]) -> str:
    return ",".join(_csv_field(value) for value in values)


def _joined(values: Any) -> str:
    if isinstance(values, list):
        return "; ".join(str(value) for value in values)
    return ""


def _or_blank(value: Any) -> Any:
    return value if value else ""


def export_csv(snapshot: AppSnapshot, now: datetime) -> Tuple[str, str]:
    """
    Export inventory and household members as CSV.

    Settings and rationing scenarios are not part of the CSV export.

    Returns:
        (filename, content)
    """
    lines = [
        "# PrepperTrack Data Export",
        f"# Exported on: {now.strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "## Inventory",
        ",".join(INVENTORY_COLUMNS),
    ]
    for item in snapshot.inventory:
        lines.append(_csv_row([
            item.get("name"),
            item.get("category"),
            item.get("quantity"),
            item.get("unit"),
            _or_blank(item.get("expirationDate")),
            item.get("storageLocation"),
            _or_blank(item.get("caloriesPerUnit")),
            item.get("usageRatePerPersonPerDay"),
            _or_blank(item.get("cost")),
            _or_blank(item.get("notes")),
        ]))
    lines += ["", "## Household Members", ",".join(HOUSEHOLD_COLUMNS)]
    for member in snapshot.household:
        lines.append(_csv_row([
            member.get("name"),
            member.get("age"),
            member.get("activityLevel"),
            member.get("dailyCalories"),
            member.get("dailyWaterLiters"),
            _or_blank(member.get("groupId")),
            _joined(member.get("skills")),
            _joined(member.get("medicalConditions")),
        ]))
    return f"preppertrack-export-{now.date().isoformat()}.csv", "\n".join(lines)


def _present(value: Any) -> bool:
    """Empty containers count as present; null, false, 0 and "" do not."""
    if isinstance(value, (dict, list)):
        return True
    return bool(value)


def parse_import(upload: FileUpload) -> Dict[str, Any]:
    """
    Validate, parse and sanitize an uploaded backup.

    Raises:
        ImportValidationError: With a single user-facing message.
    """
    validation = validate_file_upload(upload)
    if not validation.is_valid:
        raise ImportValidationError(validation.error or "Invalid file")

    try:
        raw = json.loads(upload.content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ImportValidationError(f"Import failed: {e}")

    data = sanitize_json_data(raw)
    if not isinstance(data, dict) or not all(_present(data.get(key)) for key in REQUIRED_SECTIONS):
        raise ImportValidationError("Invalid backup file format - missing required data sections")
    if not isinstance(data["inventory"], list):
        raise ImportValidationError("Invalid inventory data format")
    if not isinstance(data["household"], list):
        raise ImportValidationError("Invalid household data format")
    return data


def _has_identity(entry: Any) -> bool:
    return isinstance(entry, dict) and bool(entry.get("id")) and bool(entry.get("name"))


class ImportSession:
    """
    Two-phase import: stage a parsed backup, then confirm or cancel.

    Nothing is written until ``confirm``. A staged payload older than the
    timeout is discarded as if cancelled.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        timeout_seconds: int = 300,
        now_func: Callable[[], datetime] = datetime.now,
    ):
        self.conn = conn
        self.timeout = timedelta(seconds=timeout_seconds)
        self.now_func = now_func
        self._state = ImportState.IDLE
        self._pending: Optional[Dict[str, Any]] = None
        self._staged_at: Optional[datetime] = None

    @property
    def state(self) -> ImportState:
        self._expire_if_stale()
        return self._state

    @property
    def pending(self) -> Optional[Dict[str, Any]]:
        self._expire_if_stale()
        return self._pending

    def _expire_if_stale(self) -> None:
        if self._state != ImportState.STAGED or self._staged_at is None:
            return
        if self.now_func() - self._staged_at > self.timeout:
            logger.info("Staged import expired without confirmation; discarding")
            self._discard(ImportState.CANCELLED)

    def _discard(self, state: ImportState) -> None:
        self._pending = None
        self._staged_at = None
        self._state = state

    def stage(self, upload: FileUpload) -> Dict[str, int]:
        """
        Parse and hold an upload for confirmation.

        Returns:
            Counts of what would be imported, for the confirmation prompt.

        Raises:
            ImportValidationError: If the upload is rejected; any previously
                staged payload is kept.
        """
        data = parse_import(upload)
        self._pending = data
        self._staged_at = self.now_func()
        self._state = ImportState.STAGED
        summary = {
            "inventory": len(data["inventory"]),
            "household": len(data["household"]),
            "householdGroups": len(data.get("householdGroups") or []),
        }
        logger.info(f"Import staged: {summary}")
        return summary

    def cancel(self) -> None:
        self._discard(ImportState.CANCELLED)
        logger.info("Import cancelled")

    def confirm(self) -> ImportReport:
        """
        Replace inventory and household state with the staged payload.

        Application is best-effort: each entity is written independently and
        failures are collected in the report rather than rolled back.

        Raises:
            ImportStateError: If nothing is staged (or it expired).
        """
        if self.state != ImportState.STAGED or self._pending is None:
            raise ImportStateError("No import is staged for confirmation")

        data = self._pending
        self._discard(ImportState.CONFIRMED)
        report = ImportReport()
        try:
            self._apply(data, report)
        except sqlite3.Error as e:
            logger.error(f"Import confirmation failed: {e}", exc_info=True)
            report.errors.append(f"Failed to import data: {e}")
        logger.info(
            f"Import applied: {report.inventory_imported} items, {report.household_imported} members, "
            f"{report.groups_imported} groups, {report.scenarios_imported} scenarios, "
            f"{report.skipped} skipped, {len(report.errors)} error(s)"
        )
        return report

    def _apply(self, data: Dict[str, Any], report: ImportReport) -> None:
        db.set_state(self.conn, db.INVENTORY, [])
        db.set_state(self.conn, db.HOUSEHOLD, [])
        db.set_state(self.conn, db.HOUSEHOLD_GROUPS, [])

        inventory = []
        for entry in data["inventory"]:
            item = sanitize_inventory_item(entry)
            if item is None or not _has_identity(item):
                report.skipped += 1
                continue
            inventory.append(item)
        db.set_state(self.conn, db.INVENTORY, inventory)
        report.inventory_imported = len(inventory)

        household = []
        for entry in data["household"]:
            member = sanitize_household_member(entry)
            if member is None or not _has_identity(member):
                report.skipped += 1
                continue
            household.append(member)
        db.set_state(self.conn, db.HOUSEHOLD, household)
        report.household_imported = len(household)

        groups = data.get("householdGroups")
        if isinstance(groups, list):
            valid_groups = [group for group in groups if _has_identity(group)]
            report.skipped += len(groups) - len(valid_groups)
            db.set_state(self.conn, db.HOUSEHOLD_GROUPS, valid_groups)
            report.groups_imported = len(valid_groups)

        if isinstance(data.get("settings"), dict):
            settings = db.get_state(self.conn, db.SETTINGS, {})
            settings.update(data["settings"])
            db.set_state(self.conn, db.SETTINGS, settings)
            report.settings_updated = True

        scenarios = data.get("rationingScenarios")
        if isinstance(scenarios, list):
            existing = db.get_state(self.conn, db.RATIONING_SCENARIOS, [])
            for scenario in scenarios:
                if not _has_identity(scenario):
                    report.skipped += 1
                    continue
                existing.append(scenario)
                report.scenarios_imported += 1
            db.set_state(self.conn, db.RATIONING_SCENARIOS, existing)

        selected = data.get("selectedRationingScenario")
        if selected:
            db.set_state(self.conn, db.SELECTED_RATIONING_SCENARIO, sanitize_text(selected))
