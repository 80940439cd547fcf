"""Service for creating, pruning and restoring backups of the structured store."""
import logging
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from vocabkeeper.config import AUTO_BACKUP_KEEP
from vocabkeeper.errors import RecordNotFound, StorageError
from vocabkeeper.models.entities import FORMAT_VERSION, Backup, utcnow
from vocabkeeper.models.models import BackupRecord
from vocabkeeper.monitoring import backup_failures, backups_created, backups_pruned

if TYPE_CHECKING:
    from vocabkeeper.storage.structured_store import StructuredStore

logger = logging.getLogger(__name__)

AUTO_BACKUP_DESCRIPTION = "Auto backup"


class BackupService:
    """Backups of the live collections, with retention for automatic ones.

    Automatic backups are recognized by their ``automatic`` flag only; the
    description is free text and never inspected. Manual backups are never
    pruned.
    """

    def __init__(self, store: "StructuredStore", keep_automatic: int = AUTO_BACKUP_KEEP):
        """Initialize the service for a structured store."""
        self.store = store
        self.keep_automatic = keep_automatic

    def create_backup(self, description: str = "Manual backup", automatic: bool = False) -> Backup:
        """Snapshot all four live collections into a new backup."""
        with self.store.session() as db:
            snapshot = self.store.read_snapshot(db)
            record = BackupRecord(
                timestamp=utcnow(),
                description=description,
                data=snapshot.to_dict(),
                format_version=FORMAT_VERSION,
                automatic=automatic,
            )
            db.add(record)
            db.flush()
            backup = Backup(
                id=record.id,
                timestamp=record.timestamp,
                description=description,
                data=snapshot,
                format_version=FORMAT_VERSION,
                automatic=automatic,
            )

        backups_created.labels(kind="automatic" if automatic else "manual").inc()
        logger.info(
            "Backup %d created (%s): %d words, %d lessons",
            backup.id,
            description,
            len(snapshot.words),
            len(snapshot.lessons),
        )
        return backup

    def create_automatic_backup(self) -> Optional[Backup]:
        """Create an automatic backup and apply the retention policy.

        Failures are logged and reported as None so that the triggering
        save is never blocked.
        """
        try:
            backup = self.create_backup(AUTO_BACKUP_DESCRIPTION, automatic=True)
            self.prune_automatic_backups()
            return backup
        except (SQLAlchemyError, StorageError) as e:
            backup_failures.inc()
            logger.error("Automatic backup failed: %s", str(e))
            return None

    def list_backups(self, automatic: Optional[bool] = None) -> List[Backup]:
        """List backups, newest first."""
        with self.store.session() as db:
            query = db.query(BackupRecord)
            if automatic is not None:
                query = query.filter(BackupRecord.automatic == automatic)
            records = query.order_by(BackupRecord.timestamp.desc(), BackupRecord.id.desc()).all()
            return [record.to_entity() for record in records]

    def get_backup(self, backup_id: int) -> Optional[Backup]:
        """Get a backup by its ID."""
        with self.store.session() as db:
            record = db.get(BackupRecord, backup_id)
            return record.to_entity() if record else None

    def delete_backup(self, backup_id: int) -> bool:
        """Delete a backup. Returns False when it did not exist."""
        with self.store.session() as db:
            record = db.get(BackupRecord, backup_id)
            if record is None:
                return False
            db.delete(record)
        logger.info("Backup %d deleted", backup_id)
        return True

    def restore_from_backup(self, backup_id: int) -> Backup:
        """Replace the live collections with the content of a backup."""
        backup = self.get_backup(backup_id)
        if backup is None:
            raise RecordNotFound("backups", backup_id)

        self.store.replace_all(backup.data)
        logger.info(
            "Restored backup %d (%s): %d words, %d lessons",
            backup.id,
            backup.description,
            len(backup.data.words),
            len(backup.data.lessons),
        )
        return backup

    def prune_automatic_backups(self, keep: Optional[int] = None) -> List[int]:
        """Delete automatic backups beyond the newest ``keep``. Returns deleted ids."""
        keep = self.keep_automatic if keep is None else keep
        with self.store.session() as db:
            records = (
                db.query(BackupRecord)
                .filter(BackupRecord.automatic.is_(True))
                .order_by(BackupRecord.timestamp.desc(), BackupRecord.id.desc())
                .all()
            )
            deleted = [record.id for record in records[keep:]]
            for record in records[keep:]:
                db.delete(record)

        if deleted:
            backups_pruned.inc(len(deleted))
            logger.info("Pruned %d automatic backups: %s", len(deleted), deleted)
        return deleted

    def last_automatic_backup_time(self) -> Optional[datetime]:
        """Get the timestamp of the newest automatic backup."""
        with self.store.session() as db:
            record = (
                db.query(BackupRecord)
                .filter(BackupRecord.automatic.is_(True))
                .order_by(BackupRecord.timestamp.desc())
                .first()
            )
            return record.timestamp if record else None
