"""Main entry point for the PrepperTrack notification engine."""

import argparse
import logging
import os
import signal
import sqlite3
import sys
import threading
from pathlib import Path
from typing import List, Optional

from .capabilities import ConsoleNotifier, StoredPermissionProvider, SystemClock, TerminalBellSoundEmitter
from .config import AppConfig, load_config
from .data_transfer import ImportSession, ImportValidationError, export_csv, export_json
from .db import get_meta, init_db, load_snapshot, set_meta
from .delivery import DeliveryGate, SentEmailSet
from .email_notifier import ProviderEmailSender
from .engine import NotificationEngine, ScanInput
from .models import FileUpload, NotificationRecord, NotificationType
from .notification_settings import SettingsError, describe, load_settings_file, update_notification_settings
from .store import NotificationStore

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def build_engine(config: AppConfig, conn: sqlite3.Connection) -> NotificationEngine:
    """Wire the engine to the database and console capabilities."""
    clock = SystemClock()

    def snapshot_provider() -> ScanInput:
        snapshot = load_snapshot(conn)
        return ScanInput(
            inventory=snapshot.inventory_items(),
            settings=snapshot.get_notification_settings(),
        )

    gate = DeliveryGate(
        permission_provider=StoredPermissionProvider(conn),
        notifier=ConsoleNotifier(),
        sound_emitter=TerminalBellSoundEmitter(),
        email_sender=ProviderEmailSender(config.credentials),
        clock=clock,
        sent_emails=SentEmailSet(conn),
    )
    return NotificationEngine(
        snapshot_provider=snapshot_provider,
        store=NotificationStore(conn),
        gate=gate,
        clock=clock,
        interval_minutes=config.scheduler.scan_interval_minutes,
    )


def _print_records(records: List[NotificationRecord]) -> None:
    if not records:
        print("No notifications.")
        return
    for record in records:
        status = " " if record.read else "*"
        email = " [emailed]" if record.email_sent else ""
        print(
            f"{status} {record.id:<32} {record.priority.value:<8} "
            f"{record.timestamp:%Y-%m-%d %H:%M}  {record.title}: {record.message}{email}"
        )


def cmd_scan(config: AppConfig, conn: sqlite3.Connection, args) -> int:
    engine = build_engine(config, conn)
    added = engine.scan()
    set_meta(conn, "last_scan", engine.clock.now().isoformat())
    _print_records(added)
    return 0


def cmd_run(config: AppConfig, conn: sqlite3.Connection, args) -> int:
    engine = build_engine(config, conn)
    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    engine.start()
    try:
        stop_event.wait()
    finally:
        engine.stop()
    return 0


def cmd_notifications(config: AppConfig, conn: sqlite3.Connection, args) -> int:
    store = NotificationStore(conn)
    if args.read:
        store.mark_as_read(args.read)
    if args.read_all:
        store.mark_all_as_read()
    if args.clear:
        store.clear(args.clear)
    if args.clear_all:
        store.clear_all()

    records = store.by_type(NotificationType(args.type)) if args.type else store.records
    _print_records(records)
    print(f"{store.unread_count()} unread")
    last_scan = get_meta(conn, "last_scan")
    if last_scan:
        print(f"Last scan: {last_scan}")
    return 0


def cmd_settings(config: AppConfig, conn: sqlite3.Connection, args) -> int:
    if args.action == "show":
        settings = load_snapshot(conn).get_notification_settings()
    else:
        try:
            if args.action == "set":
                settings = update_notification_settings(conn, {args.key: args.value})
            else:
                settings = load_settings_file(conn, args.file)
        except SettingsError as e:
            print("Settings rejected:")
            for key, error in sorted(e.errors.items()):
                print(f"  {key}: {error}")
            return 1

    for line in describe(settings):
        print(line)
    return 0


def cmd_permission(config: AppConfig, conn: sqlite3.Connection, args) -> int:
    engine = build_engine(config, conn)
    result = engine.request_permission()
    print(f"Notification permission: {result.value}")
    return 0


def cmd_export(config: AppConfig, conn: sqlite3.Connection, args) -> int:
    snapshot = load_snapshot(conn)
    now = SystemClock().now()
    if args.format == "csv":
        filename, content = export_csv(snapshot, now)
    else:
        filename, content = export_json(snapshot, now)

    out_dir = Path(args.out or config.export_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / filename
    path.write_text(content, encoding="utf-8")
    logger.info(f"Exported {args.format.upper()} backup to {path}")
    print(path)
    return 0


def cmd_import(config: AppConfig, conn: sqlite3.Connection, args) -> int:
    path = Path(args.file)
    content = path.read_bytes()
    upload = FileUpload(
        name=path.name,
        size=len(content),
        type=args.mime_type,
        content=content,
    )
    session = ImportSession(conn, timeout_seconds=config.imports.confirm_timeout_seconds)
    try:
        summary = session.stage(upload)
    except ImportValidationError as e:
        print(f"Import rejected: {e}")
        return 1

    print(
        "This will permanently delete all current data and replace it with:\n"
        f"  {summary['inventory']} inventory items\n"
        f"  {summary['household']} household members\n"
        f"  {summary['householdGroups']} household groups"
    )
    if not args.yes:
        answer = input("Proceed? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            session.cancel()
            print("Import cancelled.")
            return 0

    report = session.confirm()
    print(
        f"Imported {report.inventory_imported} items, {report.household_imported} members, "
        f"{report.groups_imported} groups ({report.skipped} skipped)."
    )
    for error in report.errors:
        print(f"  error: {error}")
    return 0 if report.success else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="preppertrack",
        description="Emergency-preparedness inventory alerts, backups and imports"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("scan", help="Run one expiration scan and deliver new alerts")
    subparsers.add_parser("run", help="Scan now and then on a fixed interval until interrupted")

    notifications = subparsers.add_parser("notifications", help="List and manage notifications")
    notifications.add_argument("--read", metavar="ID", help="Mark one notification as read")
    notifications.add_argument("--read-all", action="store_true", help="Mark all notifications as read")
    notifications.add_argument("--clear", metavar="ID", help="Remove one notification")
    notifications.add_argument("--clear-all", action="store_true", help="Remove all notifications")
    notifications.add_argument(
        "--type",
        choices=[t.value for t in NotificationType],
        default=None,
        help="Only list notifications of this type"
    )

    settings = subparsers.add_parser("settings", help="Show or change notification settings")
    actions = settings.add_subparsers(dest="action", required=True)
    actions.add_parser("show", help="Print the current settings")
    set_action = actions.add_parser("set", help="Change one setting")
    set_action.add_argument("key", help="Setting name, e.g. quietStart or emailConfig.toEmail")
    set_action.add_argument("value", help="New value; expirationDays takes a comma-separated list")
    load_action = actions.add_parser("load", help="Apply settings from a JSON file")
    load_action.add_argument("file", help="Path to a JSON object of settings")

    subparsers.add_parser("permission", help="Ask for permission to show desktop notifications")

    export = subparsers.add_parser("export", help="Export a backup")
    export.add_argument("--format", choices=["json", "csv"], default="json")
    export.add_argument("--out", default=None, help="Output directory (default: EXPORT_DIR)")

    importer = subparsers.add_parser("import", help="Import a JSON backup, replacing current data")
    importer.add_argument("file", help="Path to the backup file")
    importer.add_argument("--mime-type", default="application/json", help="Declared MIME type of the file")
    importer.add_argument("--yes", action="store_true", help="Confirm without prompting")
    return parser


COMMANDS = {
    "scan": cmd_scan,
    "run": cmd_run,
    "notifications": cmd_notifications,
    "settings": cmd_settings,
    "permission": cmd_permission,
    "export": cmd_export,
    "import": cmd_import,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with command-line argument parsing."""
    args = build_parser().parse_args(argv)
    try:
        config = load_config()
    except ValueError as e:
        _configure_logging(os.getenv("LOG_LEVEL", "INFO").upper())
        logger.error(f"Invalid configuration: {e}")
        return 1

    _configure_logging(config.log_level)
    logger.debug(f"Opening database at {config.db_path}")
    conn = init_db(config.db_path)
    try:
        return COMMANDS[args.command](config, conn, args)
    except Exception as e:
        logger.error(f"Fatal error in {args.command}: {e}", exc_info=True)
        return 1
    finally:
        conn.close()


if __name__ == "__main__":
    sys.exit(main())
