"""
Content Sentinel command line.

Usage:
    python content_sentinel.py run
    python content_sentinel.py check <content_id>
    python content_sentinel.py backup --all
    python content_sentinel.py backup <content_id> --force
    python content_sentinel.py verify-backups --deep
    python content_sentinel.py restore <content_id> --output restored.bin
    python content_sentinel.py status
    python content_sentinel.py validate-config
    python content_sentinel.py register <content_id> <cid> --type video --priority high
"""

import sys
import json
import time
import logging
import argparse

from sentinel.app import build_sentinel
from sentinel.config import load_sentinel_config
from sentinel.config_validator import ConfigValidator
from sentinel.constants import HIGH_PRIORITY, LOG_FORMAT, NORMAL_PRIORITY
from sentinel.events import (
    BACKUP_CREATED, CONTENT_RECOVERED, CONTENT_RECOVERY_FAILED, CONTENT_UNRECOVERABLE,
)
from sentinel.exceptions import SentinelError
from sentinel.repository.base import ContentRecord, ContentType

logger = logging.getLogger("content_sentinel")


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def _log_event(event):
    def _listener(payload):
        logger.info(f"{event}: {payload.get('content_id', '')} {payload.get('cid', '')}".rstrip())
    return _listener


def cmd_run(app, args):
    """Run the scheduler until interrupted."""
    for event in (CONTENT_RECOVERED, CONTENT_RECOVERY_FAILED, CONTENT_UNRECOVERABLE, BACKUP_CREATED):
        app.event_bus.subscribe(event, _log_event(event))

    app.scheduler.start(run_immediately=True)
    print("Content Sentinel running. Press Ctrl+C to stop.")
    try:
        while app.scheduler.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        app.scheduler.stop()
    return 0


def cmd_check(app, args):
    """Verify one item now, recovering it if needed."""
    record = app.repository.get_by_id(args.content_id)
    if record is None:
        print(f"Error: Unknown content '{args.content_id}'.")
        return 1
    if not record.cid:
        print(f"Error: Content '{args.content_id}' has no CID.")
        return 1

    verification = app.scheduler.verify_content(record)
    if verification is None:
        print(f"Verification of '{args.content_id}' failed; see log for details.")
        return 1

    print(f"{record.cid}: available on {verification.available_count}/{verification.total_gateways} gateways")
    for result in verification.gateway_results.values():
        state = "ok" if result.available else (result.error or f"HTTP {result.status_code}")
        print(f"  {result.gateway:<28} {state}")

    updated = app.repository.get_by_id(args.content_id)
    if not verification.available and updated is not None:
        if updated.unrecoverable:
            print("Content is marked unrecoverable.")
        elif updated.recovery_success:
            print(f"Recovered (attempt {updated.recovery_attempts}).")
        else:
            print(f"Recovery attempt {updated.recovery_attempts} failed.")
    return 0


def cmd_backup(app, args):
    """Back up one item or every published item."""
    if args.all:
        report = app.backup_store.backup_all_content(force=args.force)
        print(f"Backed up {report.total} item(s): {report.summary()}")
        for detail in report.details:
            if not detail.get('success'):
                print(f"  - {detail.get('content_id')}: {detail.get('reason')}")
        return 0 if report.failed == 0 else 1

    result = app.backup_store.create_backup(args.content_id, force=args.force)
    if not result.success:
        print(f"Error: {result.error_message}")
        return 1
    if result.already_exists:
        print(f"Backup already exists: {result.path}")
    elif result.metadata_only:
        print(f"Content too large, metadata backed up: {result.path}")
    else:
        print(f"Backup created: {result.path} ({result.size} bytes)")
    return 0


def cmd_verify_backups(app, args):
    report = app.backup_store.verify_backups(deep=args.deep)
    print(f"Checked {report.total_checked} backup(s): {report.summary()}")
    for detail in report.details:
        if detail.get('status') != 'verified':
            print(f"  - {detail.get('content_id')}: {detail.get('status')} {detail.get('reason') or ''}".rstrip())
    return 0 if report.corrupted == 0 and report.missing == 0 else 1


def cmd_restore(app, args):
    result = app.backup_store.restore_from_backup(args.content_id)
    if not result.success:
        print(f"Error: {result.error_message}")
        return 1

    with open(args.output, 'wb') as f:
        f.write(result.data)
    print(f"Restored {args.content_id} ({result.cid}) to {args.output} ({len(result.data)} bytes)")
    return 0


def cmd_status(app, args):
    _print_json({
        'scheduler': app.scheduler.get_status(),
        'content': app.repository.count_by_state(),
        'backups': app.backup_store.get_statistics(),
        'recovery': app.attempt_log.get_recovery_statistics(),
        'pinning': app.pin_provider.rate_limiter.get_status(),
    })
    return 0


def cmd_register(app, args):
    """Add or replace a content item in the local repository."""
    existing = app.repository.get_by_id(args.content_id)
    record = existing or ContentRecord(content_id=args.content_id, cid=args.cid)
    record.cid = args.cid
    record.content_type = ContentType(args.type)
    record.priority = args.priority
    if args.title is not None:
        record.title = args.title

    app.repository.upsert(record)
    print(f"Registered {args.content_id} -> {args.cid}")
    return 0


def cmd_validate_config(config):
    result = ConfigValidator(config).validate_all()
    for error in result['errors']:
        print(f"ERROR: {error}")
    for warning in result['warnings']:
        print(f"WARNING: {warning}")
    if result['valid']:
        print(f"Configuration is valid ({result['warning_count']} warning(s)).")
        return 0
    print(f"Configuration has {result['error_count']} error(s).")
    return 1


def build_parser():
    parser = argparse.ArgumentParser(
        description="Content Sentinel: keep content-addressed content retrievable",
    )
    parser.add_argument("--config", help="Path to settings.ini (default: project root)")
    parser.add_argument("--log-level", help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Run the verification scheduler")

    check = subparsers.add_parser("check", help="Verify one content item now")
    check.add_argument("content_id")

    backup = subparsers.add_parser("backup", help="Create local backups")
    target = backup.add_mutually_exclusive_group(required=True)
    target.add_argument("--all", action="store_true", help="Back up all published content")
    target.add_argument("content_id", nargs="?")
    backup.add_argument("--force", action="store_true", help="Replace existing backups")

    verify = subparsers.add_parser("verify-backups", help="Check backup files against the index")
    verify.add_argument("--deep", action="store_true", help="Also decode each backup and check its hash")

    restore = subparsers.add_parser("restore", help="Write a backup's bytes to a file")
    restore.add_argument("content_id")
    restore.add_argument("--output", required=True, help="Destination file")

    subparsers.add_parser("status", help="Show scheduler, content and backup status")
    subparsers.add_parser("validate-config", help="Validate settings.ini and environment")

    register = subparsers.add_parser("register", help="Add a content item to the repository")
    register.add_argument("content_id")
    register.add_argument("cid")
    register.add_argument("--type", choices=[t.value for t in ContentType], default=ContentType.DOCUMENT.value)
    register.add_argument("--priority", choices=[NORMAL_PRIORITY, HIGH_PRIORITY], default=NORMAL_PRIORITY)
    register.add_argument("--title")

    return parser


COMMANDS = {
    "run": cmd_run,
    "check": cmd_check,
    "backup": cmd_backup,
    "verify-backups": cmd_verify_backups,
    "restore": cmd_restore,
    "status": cmd_status,
    "register": cmd_register,
}


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        config = load_sentinel_config(args.config)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    logging.basicConfig(level=(args.log_level or config.log_level).upper(), format=LOG_FORMAT)

    if args.command == "validate-config":
        return cmd_validate_config(config)

    app = build_sentinel(config)
    try:
        return COMMANDS[args.command](app, args)
    except SentinelError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    finally:
        app.close()


if __name__ == "__main__":
    sys.exit(main())
