"""Service for moving legacy data into the structured store."""
import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from vocabkeeper.errors import MigrationRefused, MigrationVerificationMismatch, StorageError
from vocabkeeper.models.entities import Snapshot, format_timestamp, utcnow
from vocabkeeper.monitoring import migrations
from vocabkeeper.storage.simple_store import SimpleStore
from vocabkeeper.storage.structured_store import MIGRATION_STATE_KEY, StructuredStore

logger = logging.getLogger(__name__)

POST_MIGRATION_BACKUP_DESCRIPTION = "Post-migration backup"


class MigrationState(str, Enum):
    """Steps of a migration run."""
    IDLE = "idle"
    DETECT_NEEDED = "detect_needed"
    BACKUP_CREATED = "backup_created"
    COPYING = "copying"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"
    LEGACY_CLEARED = "legacy_cleared"
    REFUSED = "refused"
    NOT_NEEDED = "not_needed"


# Marker values left behind by a run that did not complete
INTERRUPTED_STATES = {MigrationState.COPYING, MigrationState.VERIFYING, MigrationState.FAILED}
SUCCESS_STATES = {MigrationState.COMPLETED, MigrationState.LEGACY_CLEARED, MigrationState.NOT_NEEDED}


@dataclass
class CountCheck:
    """Expected (legacy) and actual (structured) record counts."""
    expected: int
    actual: int

    @property
    def match(self) -> bool:
        return self.expected == self.actual

    def to_dict(self) -> Dict[str, Any]:
        return {"expected": self.expected, "actual": self.actual, "match": self.match}


@dataclass
class VerificationReport:
    """Outcome of comparing the legacy store with the structured store."""
    words: CountCheck
    lessons: CountCheck
    progress: CountCheck
    issues: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.words.match and self.lessons.match and self.progress.match

    @property
    def is_clean(self) -> bool:
        """Counts agree and no referential issue was found."""
        return self.success and not self.issues

    def summary(self) -> str:
        if self.error:
            return f"verification error: {self.error}"
        return (
            f"words {self.words.actual}/{self.words.expected}, "
            f"lessons {self.lessons.actual}/{self.lessons.expected}, "
            f"progress {self.progress.actual}/{self.progress.expected}, "
            f"{len(self.issues)} issue(s)"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "words": self.words.to_dict(),
            "lessons": self.lessons.to_dict(),
            "progress": self.progress.to_dict(),
            "issues": list(self.issues),
            "error": self.error,
        }


@dataclass
class MigrationResult:
    """Outcome of a migration run. Failures are reported here, not raised."""
    state: MigrationState
    message: str
    stats: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    verification: Optional[VerificationReport] = None
    backup_path: Optional[Path] = None

    @property
    def success(self) -> bool:
        return self.state in SUCCESS_STATES

    @property
    def refused(self) -> bool:
        return self.state == MigrationState.REFUSED

    def require_success(self) -> "MigrationResult":
        """Raise the matching exception unless the run succeeded."""
        if self.refused:
            raise MigrationRefused(self.message)
        if self.verification is not None and not self.verification.success:
            raise MigrationVerificationMismatch(self.verification)
        if not self.success:
            raise StorageError(self.message)
        return self


@dataclass
class MigrationStatus:
    """Progress of the current or last run."""
    state: MigrationState = MigrationState.IDLE
    progress: int = 0
    errors: List[str] = field(default_factory=list)
    backup_created: bool = False

    @property
    def completed(self) -> bool:
        return self.state in (MigrationState.COMPLETED, MigrationState.LEGACY_CLEARED)


class MigrationService:
    """One-time copy of the legacy store into the structured store.

    Lessons are copied before words, then progress and settings, each step
    awaited in turn. The structured store keeps a marker of the last step
    reached; a run interrupted half way is repeated with
    ``overwrite_existing=True``, which clears the partial copy first.
    """

    def __init__(self, legacy: SimpleStore, target: StructuredStore, backup_dir: Path):
        """Initialize the service with both stores and the legacy backup directory."""
        self.legacy = legacy
        self.target = target
        self.backup_dir = Path(backup_dir)
        self.status = MigrationStatus()

    # Detection

    def has_legacy_data(self) -> bool:
        return self.legacy.has_data()

    def has_structured_data(self) -> bool:
        return self.target.has_data()

    def migration_marker(self) -> Optional[MigrationState]:
        value = self.target.get_meta(MIGRATION_STATE_KEY)
        return MigrationState(value) if value else None

    def is_interrupted(self) -> bool:
        """Check whether a previous run stopped before completing."""
        return self.migration_marker() in INTERRUPTED_STATES

    def needs_migration(self) -> bool:
        """Legacy data exists and the structured store is empty or half migrated."""
        if not self.has_legacy_data():
            return False
        return not self.has_structured_data() or self.is_interrupted()

    # Status

    def get_status(self) -> MigrationStatus:
        return replace(self.status, errors=list(self.status.errors))

    def reset_status(self) -> None:
        self.status = MigrationStatus()

    def _set_state(self, state: MigrationState, progress: Optional[int] = None) -> None:
        self.status.state = state
        if progress is not None:
            self.status.progress = progress
        logger.debug("Migration state: %s (%d%%)", state.value, self.status.progress)

    def _mark(self, state: MigrationState) -> None:
        self.target.set_meta(MIGRATION_STATE_KEY, state.value)

    # Legacy backup file

    def write_legacy_backup(self, snapshot: Snapshot) -> Path:
        """Write the legacy data to a JSON file before anything is changed."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        now = utcnow()
        path = self.backup_dir / f"vocabulary-backup-{now:%Y-%m-%d}.json"
        if path.exists():
            path = self.backup_dir / f"vocabulary-backup-{now:%Y-%m-%d_%H%M%S_%f}.json"

        payload = {
            "timestamp": format_timestamp(now),
            "source": self.legacy.storage_type,
            "data": snapshot.to_dict(),
            "note": "Backup created before migration to the structured store",
        }
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info("Legacy data backed up to %s", path)
        return path

    # Migration

    def migrate(
        self,
        create_backup: bool = True,
        clear_legacy: bool = False,
        overwrite_existing: bool = False,
    ) -> MigrationResult:
        """Copy legacy data into the structured store and verify it."""
        self.reset_status()
        self._set_state(MigrationState.DETECT_NEEDED, 10)
        logger.info("Starting data migration...")
        result = MigrationResult(MigrationState.IDLE, "")

        try:
            if not self.has_legacy_data():
                logger.info("No legacy data found, migration not needed")
                result = MigrationResult(MigrationState.NOT_NEEDED, "No data to migrate")
                self._set_state(result.state, 100)
                return result

            if self.has_structured_data() and not overwrite_existing:
                logger.warning("Structured store already has data, migration refused")
                result = MigrationResult(
                    MigrationState.REFUSED,
                    "Structured store already contains data. Use overwrite_existing to proceed.",
                )
                self._set_state(result.state)
                return result

            resuming = overwrite_existing and self.is_interrupted()
            snapshot = self.legacy.snapshot()
            result.stats = snapshot.stats()

            if create_backup:
                result.backup_path = self.write_legacy_backup(snapshot)
                self.status.backup_created = True
                self._set_state(MigrationState.BACKUP_CREATED, 20)

            self._copy(snapshot, resuming)

            self._set_state(MigrationState.VERIFYING, 90)
            self._mark(MigrationState.VERIFYING)
            result.verification = self.verify_migration(snapshot)
            if not result.verification.success:
                self._mark(MigrationState.FAILED)
                result.state = MigrationState.FAILED
                result.message = f"Migration verification failed: {result.verification.summary()}"
                logger.error(result.message)
                self._set_state(result.state)
                return result
            for issue in result.verification.issues:
                logger.warning("Migration issue: %s", issue)

            self._post_migration_backup(result)
            self._mark(MigrationState.COMPLETED)
            result.state = MigrationState.COMPLETED
            result.message = "Migration completed successfully"

            if clear_legacy:
                self.clear_legacy()
                result.state = MigrationState.LEGACY_CLEARED

            self._set_state(result.state, 100)
            logger.info("Migration completed: %s", result.stats)
            return result

        except Exception as e:
            logger.exception("Migration failed: %s", str(e))
            self.status.errors.append(str(e))
            self._set_state(MigrationState.FAILED)
            try:
                self._mark(MigrationState.FAILED)
            except Exception as mark_error:
                logger.error("Could not record migration failure: %s", str(mark_error))
            result.state = MigrationState.FAILED
            result.message = f"Migration failed: {e}"
            return result

        finally:
            result.errors = list(self.status.errors)
            migrations.labels(state=result.state.value).inc()

    def _copy(self, snapshot: Snapshot, resuming: bool = False) -> None:
        self._mark(MigrationState.COPYING)
        self._set_state(MigrationState.COPYING, 30)

        if resuming:
            # The structured store must end up matching the current legacy data
            logger.info("Clearing partially migrated data before copying again")
            self.target.clear_all_data()

        # Words reference lessons, so lessons go first
        if snapshot.lessons:
            logger.info("Migrating %d lessons...", len(snapshot.lessons))
            self.target.upsert_lessons(snapshot.lessons)
        self._set_state(MigrationState.COPYING, 50)

        if snapshot.words:
            logger.info("Migrating %d words...", len(snapshot.words))
            self.target.upsert_words(snapshot.words)
        self._set_state(MigrationState.COPYING, 70)

        if snapshot.progress is not None:
            logger.info("Migrating quiz progress...")
            self.target.save_progress(snapshot.progress)
        self._set_state(MigrationState.COPYING, 80)

        settings = {key: value for key, value in snapshot.settings.items() if value is not None}
        if settings:
            logger.info("Migrating %d settings...", len(settings))
            self.target.save_settings(settings)

    def _post_migration_backup(self, result: MigrationResult) -> None:
        try:
            self.target.create_backup(POST_MIGRATION_BACKUP_DESCRIPTION)
        except Exception as e:
            # The data is already verified; a missing backup is not a failed migration
            logger.warning("Post-migration backup failed: %s", str(e))
            self.status.errors.append(f"Post-migration backup failed: {e}")

    def verify_migration(self, snapshot: Optional[Snapshot] = None) -> VerificationReport:
        """Compare legacy and structured counts and check lesson references."""
        try:
            legacy = snapshot if snapshot is not None else self.legacy.snapshot()
            words = self.target.get_all_words()
            lessons = self.target.get_all_lessons()
            progress = self.target.get_progress()
        except Exception as e:
            logger.error("Verification failed: %s", str(e))
            return VerificationReport(
                words=CountCheck(0, 0),
                lessons=CountCheck(0, 0),
                progress=CountCheck(0, 0),
                error=str(e),
            )

        issues = []
        legacy_word_ids = {word.id for word in legacy.words}
        legacy_lesson_ids = {lesson.id for lesson in legacy.lessons}
        if len(legacy_word_ids) < len(legacy.words):
            issues.append(f"{len(legacy.words) - len(legacy_word_ids)} duplicate word id(s) in legacy data")
        if len(legacy_lesson_ids) < len(legacy.lessons):
            issues.append(f"{len(legacy.lessons) - len(legacy_lesson_ids)} duplicate lesson id(s) in legacy data")

        lesson_ids = {lesson.id for lesson in lessons}
        for word in words:
            if word.lesson_id not in lesson_ids:
                issues.append(
                    f"Word {word.id} ({word.english}) references missing lesson {word.lesson_id}"
                )

        report = VerificationReport(
            words=CountCheck(len(legacy_word_ids), len(words)),
            lessons=CountCheck(len(legacy_lesson_ids), len(lessons)),
            progress=CountCheck(int(legacy.progress is not None), int(progress is not None)),
            issues=issues,
        )
        logger.info("Migration verification: %s", report.summary())
        return report

    def clear_legacy(self) -> None:
        """Remove the legacy keys once the structured store holds the data."""
        self.legacy.clear()
        self._mark(MigrationState.LEGACY_CLEARED)
        logger.info("Legacy store cleared after migration")
