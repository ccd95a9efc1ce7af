"""Command line entry point for backup maintenance."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from labcore.logging_utils import configure_json_logging
from labcore.paths import resolve_working_dir
from labcore.settings import SettingsProvider

from .api import BackupService
from .errors import BackupError, RestoreRollbackError
from .types import BackupType, OperationResult, RetentionSummary

LOGGER = logging.getLogger("labbackup.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ROLLBACK_FAILED = 2


def _result_payload(result: OperationResult) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"ok": result.ok, "message": result.message}
    if result.record is not None:
        payload["backup"] = result.record.to_dict()
    return payload


def _retention_payload(summary: RetentionSummary) -> Dict[str, Any]:
    return {
        "ok": not summary.failed,
        "deleted": summary.deleted_count,
        "removed": summary.removed,
        "failed": summary.failed,
        "freed_bytes": summary.freed_bytes,
    }


def _parse_date(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid ISO date: {value}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="labbackup", description="Manage lab data store backups")
    parser.add_argument("--home", dest="home", default=None, help="Working directory (defaults to LABBACKUP_HOME)")
    parser.add_argument("--actor", dest="actor", default="", help="Name recorded as the operator")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Take a snapshot of the live store")
    create.add_argument("--description", default="")
    create.add_argument(
        "--type",
        dest="backup_type",
        default=BackupType.MANUAL.value,
        choices=[kind.value for kind in BackupType if kind is not BackupType.IMPORTED],
    )

    listing = sub.add_parser("list", help="List catalogued backups, newest first")
    listing.add_argument("--type", dest="backup_type", default=None, choices=[kind.value for kind in BackupType])
    listing.add_argument("--since", type=_parse_date, default=None)
    listing.add_argument("--until", type=_parse_date, default=None)

    verify = sub.add_parser("verify", help="Check a backup's size, checksum and structure")
    verify.add_argument("backup_id", type=int, nargs="?")
    verify.add_argument("--all", action="store_true", help="Verify every backup")

    restore = sub.add_parser("restore", help="Restore a backup over the live store")
    restore.add_argument("backup_id", type=int)

    delete = sub.add_parser("delete", help="Delete a backup and its file")
    delete.add_argument("backup_id", type=int)

    cleanup = sub.add_parser("cleanup", help="Apply the retention policy")
    cleanup.add_argument("--max", dest="max_to_keep", type=int, default=None)
    cleanup.add_argument("--corrupted", action="store_true", help="Delete corrupted backups instead")

    export = sub.add_parser("export", help="Copy a backup file out of the backup directory")
    export.add_argument("backup_id", type=int)
    export.add_argument("destination", type=Path)

    imp = sub.add_parser("import", help="Register an external backup file")
    imp.add_argument("source", type=Path)
    imp.add_argument("--description", default="")

    info = sub.add_parser("info", help="Describe one backup")
    info.add_argument("backup_id", type=int)

    export_list = sub.add_parser("export-list", help="Write the backup list as CSV")
    export_list.add_argument("output", type=Path)

    scheduled = sub.add_parser("scheduled", help="Run the scheduled backup if it is due")
    scheduled.add_argument("--force", action="store_true", help="Ignore the interval")

    auto = sub.add_parser("auto-backup", help="Turn scheduled backups on or off")
    auto.add_argument("state", choices=["on", "off"])
    auto.add_argument("--hours", type=int, default=24, help="Interval between scheduled backups")

    sub.add_parser("size", help="Show the total size of all backups")
    return parser


def _run(service: BackupService, args: argparse.Namespace) -> Dict[str, Any]:
    actor = args.actor
    command = args.command
    if command == "create":
        return _result_payload(service.create_backup(args.description, args.backup_type, actor))
    if command == "list":
        if args.since or args.until:
            start = args.since or datetime.min
            end = args.until or datetime.max
            records = service.list_by_date_range(start, end)
            if args.backup_type:
                records = [record for record in records if record.backup_type.value == args.backup_type]
        elif args.backup_type:
            records = service.list_by_type(args.backup_type)
        else:
            records = service.list_backups()
        return {"ok": True, "backups": [record.to_dict() for record in records]}
    if command == "verify":
        if args.all:
            return _result_payload(service.verify_all(actor or "System"))
        if args.backup_id is None:
            return {"ok": False, "message": "backup id or --all is required"}
        return _result_payload(service.verify_backup(args.backup_id, actor))
    if command == "restore":
        return _result_payload(service.restore_backup(args.backup_id, actor))
    if command == "delete":
        return _result_payload(service.delete_backup(args.backup_id, actor))
    if command == "cleanup":
        if args.corrupted:
            return _retention_payload(service.cleanup_corrupted())
        if args.max_to_keep is not None and args.max_to_keep < 0:
            return {"ok": False, "message": f"--max must not be negative, got {args.max_to_keep}"}
        return _retention_payload(service.cleanup_excess(args.max_to_keep))
    if command == "export":
        return _result_payload(service.export_backup(args.backup_id, args.destination, actor))
    if command == "import":
        return _result_payload(service.import_backup(args.source, args.description, actor))
    if command == "info":
        record = service.get_backup(args.backup_id)
        return {"ok": record is not None, "message": service.describe_backup(args.backup_id)}
    if command == "export-list":
        return _result_payload(service.export_catalog_csv(args.output))
    if command == "scheduled":
        if not args.force and not service.is_scheduled_backup_due():
            return {"ok": True, "message": "Scheduled backup not due"}
        return _result_payload(service.run_scheduled_backup(actor or "System"))
    if command == "auto-backup":
        return _result_payload(service.schedule_auto_backup(args.state == "on", args.hours))
    if command == "size":
        return {"ok": True, "total_size_bytes": service.total_size(), "total_size": service.summary().total_size_formatted}
    raise ValueError(f"unknown command {command}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    working_dir = Path(args.home).expanduser().resolve() if args.home else resolve_working_dir()
    settings = SettingsProvider(working_dir)
    configure_json_logging("labbackup", working_dir=working_dir, level=settings.get_log_level())

    try:
        with BackupService.from_working_dir(working_dir, settings=settings) as service:
            try:
                payload = _run(service, args)
            finally:
                service.store.close()
    except RestoreRollbackError as exc:
        LOGGER.critical("Restore rollback failed: %s", exc)
        print(json.dumps({"ok": False, "fatal": True, "message": str(exc)}, indent=2))
        return EXIT_ROLLBACK_FAILED
    except BackupError as exc:
        LOGGER.exception("Backup command failed: %s", exc)
        print(json.dumps({"ok": False, "message": str(exc)}, indent=2))
        return EXIT_FAILED

    print(json.dumps(payload, indent=2))
    return EXIT_OK if payload.get("ok") else EXIT_FAILED


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
