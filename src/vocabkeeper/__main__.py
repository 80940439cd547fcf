"""Command line entry point for the storage layer."""
import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, List, Optional

from vocabkeeper.config import Settings, ensure_directories, settings
from vocabkeeper.errors import StorageError
from vocabkeeper.logging_config import setup_logging
from vocabkeeper.monitoring import start_monitoring
from vocabkeeper.services.scheduler_service import BackupScheduler
from vocabkeeper.services.storage_service import StorageService

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def show_info(storage: StorageService, args: argparse.Namespace) -> int:
    _print_json(await storage.get_storage_info())
    return 0


async def export_data(storage: StorageService, args: argparse.Namespace) -> int:
    document = await storage.export_data()
    text = json.dumps(document, indent=2, ensure_ascii=False)
    if args.file == "-":
        print(text)
    else:
        Path(args.file).write_text(text, encoding="utf-8")
        logger.info(
            "Exported %d words and %d lessons to %s",
            len(document["words"]),
            len(document["lessons"]),
            args.file,
        )
    return 0


async def import_data(storage: StorageService, args: argparse.Namespace) -> int:
    document = json.loads(Path(args.file).read_text(encoding="utf-8"))
    snapshot = await storage.import_data(document)
    _print_json(snapshot.stats())
    return 0


async def create_backup(storage: StorageService, args: argparse.Namespace) -> int:
    backup = await storage.create_backup(args.description)
    _print_json(backup.summary())
    return 0


async def list_backups(storage: StorageService, args: argparse.Namespace) -> int:
    backups = await storage.list_backups(automatic=args.automatic)
    _print_json([backup.summary() for backup in backups])
    return 0


async def restore_backup(storage: StorageService, args: argparse.Namespace) -> int:
    backup = await storage.restore_from_backup(args.backup_id)
    _print_json(backup.summary())
    return 0


async def delete_backup(storage: StorageService, args: argparse.Namespace) -> int:
    if not await storage.delete_backup(args.backup_id):
        print(f"Backup {args.backup_id} not found", file=sys.stderr)
        return 1
    return 0


async def migrate(storage: StorageService, args: argparse.Namespace) -> int:
    result = await storage.start_migration(
        create_backup=not args.no_backup,
        clear_legacy=args.clear_legacy,
        overwrite_existing=args.overwrite,
    )
    _print_json({
        "state": result.state.value,
        "message": result.message,
        "stats": result.stats,
        "errors": result.errors,
        "backup_path": result.backup_path,
        "verification": result.verification.to_dict() if result.verification else None,
    })
    result.require_success()
    return 0


async def verify(storage: StorageService, args: argparse.Namespace) -> int:
    report = await storage.verify_migration()
    _print_json(report.to_dict())
    return 0 if report.success else 1


async def serve(storage: StorageService, args: argparse.Namespace) -> int:
    """Keep the storage open and run scheduled backups until interrupted."""
    await storage.ensure_ready()

    port = storage.settings.monitoring.port
    if port:
        start_monitoring(port)
        logger.info("Metrics exposed on port %d", port)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    scheduler = BackupScheduler(storage)
    await scheduler.start()
    try:
        await stop_event.wait()
        logger.info("Received exit signal, shutting down...")
    finally:
        await scheduler.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vocabkeeper",
        description="Manage the vocabulary storage: export, import, backups and migration.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    commands = parser.add_subparsers(dest="command", required=True)

    info = commands.add_parser("info", help="Show the active backend and record counts")
    info.set_defaults(handler=show_info)

    export = commands.add_parser("export", help="Write an export document")
    export.add_argument("file", help="Target file, or - for stdout")
    export.set_defaults(handler=export_data)

    import_ = commands.add_parser("import", help="Merge an export document or legacy backup file")
    import_.add_argument("file")
    import_.set_defaults(handler=import_data)

    backup = commands.add_parser("backup", help="Manage backups of the structured store")
    backup_commands = backup.add_subparsers(dest="backup_command", required=True)

    backup_create = backup_commands.add_parser("create", help="Create a manual backup")
    backup_create.add_argument("-d", "--description", default="Manual backup")
    backup_create.set_defaults(handler=create_backup)

    backup_list = backup_commands.add_parser("list", help="List backups, newest first")
    kind = backup_list.add_mutually_exclusive_group()
    kind.add_argument("--automatic", dest="automatic", action="store_const", const=True, default=None)
    kind.add_argument("--manual", dest="automatic", action="store_const", const=False)
    backup_list.set_defaults(handler=list_backups)

    backup_restore = backup_commands.add_parser("restore", help="Replace live data with a backup")
    backup_restore.add_argument("backup_id", type=int)
    backup_restore.set_defaults(handler=restore_backup)

    backup_delete = backup_commands.add_parser("delete", help="Delete a backup")
    backup_delete.add_argument("backup_id", type=int)
    backup_delete.set_defaults(handler=delete_backup)

    migration = commands.add_parser("migrate", help="Copy legacy data into the structured store")
    migration.add_argument("--clear-legacy", action="store_true", help="Remove legacy data afterwards")
    migration.add_argument("--overwrite", action="store_true", help="Proceed even if structured data exists")
    migration.add_argument("--no-backup", action="store_true", help="Skip the legacy backup file")
    migration.set_defaults(handler=migrate)

    verification = commands.add_parser("verify", help="Compare legacy and structured record counts")
    verification.set_defaults(handler=verify)

    serving = commands.add_parser("serve", help="Run scheduled automatic backups until interrupted")
    serving.set_defaults(handler=serve)

    return parser


async def main(args: argparse.Namespace, config: Optional[Settings] = None) -> int:
    """Run one command against a fresh storage service."""
    config = config or settings
    ensure_directories(config.paths)
    storage = StorageService(config)
    try:
        return await args.handler(storage, args)
    except StorageError as e:
        logger.error("%s failed: %s", args.command, str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        logger.error("%s failed: %s", args.command, str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 2
    finally:
        storage.close()


def run(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, configure logging and run the command."""
    args = build_parser().parse_args(argv)
    setup_logging(f"Starting vocabkeeper {VERSION} ({args.command})", level=args.log_level)
    try:
        return asyncio.run(main(args))
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
        return 130


if __name__ == "__main__":
    sys.exit(run())
