"""Service that routes every persistence call to the active backend."""
import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from vocabkeeper.config import SIMPLE_BACKEND, STORAGE_BACKENDS, Settings
from vocabkeeper.errors import BackendUnavailable
from vocabkeeper.models.entities import (
    CURRENT_LESSON_SETTING,
    PRACTICE_LESSONS_SETTING,
    Backup,
    Category,
    Lesson,
    Progress,
    Snapshot,
    Word,
    utcnow,
)
from vocabkeeper.monitoring import (
    active_backend,
    backend_fallbacks,
    backup_failures,
    operation_duration,
    storage_errors,
    storage_operations,
)
from vocabkeeper.services.migration_service import (
    MigrationResult,
    MigrationService,
    MigrationState,
    MigrationStatus,
    VerificationReport,
)
from vocabkeeper.storage.base import EntityStore
from vocabkeeper.storage.simple_store import SimpleStore
from vocabkeeper.storage.structured_store import StructuredStore

logger = logging.getLogger(__name__)


def _as_word(item: Any) -> Word:
    return Word.from_dict(item) if isinstance(item, Mapping) else item


def _as_lesson(item: Any) -> Lesson:
    return Lesson.from_dict(item) if isinstance(item, Mapping) else item


def _as_progress(item: Any) -> Progress:
    return Progress.from_dict(item) if isinstance(item, Mapping) else item


class StorageService:
    """Persistence facade over the simple and structured stores.

    The backend is chosen once, on the first call to ``ensure_ready()``:
    the structured store when it opens and holds the complete data set,
    otherwise the simple store. Store calls run on a single worker thread,
    so they never block the event loop and execute in the order they were
    issued.
    """

    def __init__(
        self,
        settings: Settings,
        simple_store: Optional[SimpleStore] = None,
        structured_store: Optional[StructuredStore] = None,
    ):
        """Initialize the service. Nothing is opened until ensure_ready()."""
        self.settings = settings
        self.simple_store = simple_store or SimpleStore(settings.paths.legacy_dir)
        self.structured_store = structured_store or StructuredStore.from_settings(settings)
        self.migration = MigrationService(
            self.simple_store, self.structured_store, settings.paths.backup_dir
        )
        self.preferred_backend = settings.storage.preferred_backend
        self.store: Optional[EntityStore] = None
        self.last_error: Optional[str] = None
        self.last_migration: Optional[MigrationResult] = None
        self._ready_lock = asyncio.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vocabkeeper-storage")
        self._closed = False

    @property
    def is_ready(self) -> bool:
        return self.store is not None

    @property
    def storage_type(self) -> Optional[str]:
        """Type of the active backend, or None before ensure_ready()."""
        return self.store.storage_type if self.store is not None else None

    # Execution helpers

    async def _call(self, func: Callable, *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(func, *args, **kwargs))

    async def _timed(self, operation: str, store: EntityStore, func: Callable, *args: Any) -> Any:
        try:
            with operation_duration.labels(operation=operation).time():
                result = await self._call(func, *args)
        except Exception as e:
            storage_errors.labels(operation=operation, error_type=type(e).__name__).inc()
            raise
        storage_operations.labels(operation=operation, backend=store.storage_type).inc()
        return result

    async def _execute(self, operation: str, *args: Any) -> Any:
        store = await self.ensure_ready()
        return await self._timed(operation, store, getattr(store, operation), *args)

    # Initialization

    async def ensure_ready(self) -> EntityStore:
        """Select and prepare the backend. Concurrent first calls share one run."""
        if self._closed:
            raise BackendUnavailable("storage service is closed")
        if self.store is not None:
            return self.store

        async with self._ready_lock:
            if self.store is None:
                store = await self._call(self._initialize)
                self._activate(store)
        return self.store

    def _activate(self, store: EntityStore) -> None:
        self.store = store
        for backend in STORAGE_BACKENDS:
            active_backend.labels(backend=backend).set(1 if backend == store.storage_type else 0)
        logger.info("Storage ready: using %s store", store.storage_type)

    def _initialize(self) -> EntityStore:
        if self.preferred_backend == SIMPLE_BACKEND:
            return self.simple_store

        try:
            self.structured_store.open()
            if not self.migration.needs_migration():
                return self.structured_store

            if not self.settings.storage.auto_migrate:
                logger.warning("Legacy data is waiting for migration; serving the simple store")
                return self.simple_store

            interrupted = self.migration.is_interrupted()
            if interrupted:
                logger.warning("Previous migration did not complete, running it again")
            result = self.migration.migrate(
                create_backup=True,
                clear_legacy=self.settings.storage.clear_legacy_after_migration,
                overwrite_existing=interrupted,
            )
            self.last_migration = result
            if result.success:
                return self.structured_store
            self._fall_back(result.message)
            return self.simple_store

        except Exception as e:
            logger.exception("Structured store initialization failed")
            self._fall_back(str(e))
            return self.simple_store

    def _fall_back(self, reason: str) -> None:
        self.last_error = reason
        backend_fallbacks.inc()
        logger.error("Falling back to the simple store: %s", reason)

    async def force_storage_type(self, kind: str) -> str:
        """Select a backend explicitly and run the initialization again."""
        if kind not in STORAGE_BACKENDS:
            raise ValueError(f"Unknown storage type {kind!r}, expected one of {', '.join(STORAGE_BACKENDS)}")
        if self._closed:
            raise BackendUnavailable("storage service is closed")

        async with self._ready_lock:
            self.preferred_backend = kind
            self.store = None
            self.last_error = None
            store = await self._call(self._initialize)
            self._activate(store)
        return store.storage_type

    def close(self) -> None:
        """Wait for pending calls and release both backends. Later calls raise BackendUnavailable."""
        if self._closed:
            return
        self._closed = True
        # Connections belong to the worker thread
        self._executor.submit(self._close_backends).result()
        self._executor.shutdown(wait=True)
        self.store = None
        logger.info("Storage service closed")

    def _close_backends(self) -> None:
        self.structured_store.close()
        self.simple_store.close()

    # Words

    async def get_all_words(self) -> List[Word]:
        return await self._execute("get_all_words")

    async def get_word(self, word_id: str) -> Optional[Word]:
        return await self._execute("get_word", word_id)

    async def add_word(self, word: Word) -> Word:
        return await self._execute("add_word", _as_word(word))

    async def update_word(self, word: Word) -> Word:
        """Insert or replace a word."""
        return await self._execute("update_word", _as_word(word))

    async def delete_word(self, word_id: str) -> bool:
        return await self._execute("delete_word", word_id)

    async def save_words(self, words: Iterable[Word]) -> None:
        """Replace all words, then take an automatic backup when one is due."""
        await self._execute("save_words", [_as_word(word) for word in words])
        await self._auto_backup_after_save()

    async def get_words_by_lesson(self, lesson_id: str) -> List[Word]:
        return await self._execute("get_words_by_lesson", lesson_id)

    async def get_words_by_category(self, category: Category) -> List[Word]:
        return await self._execute("get_words_by_category", category)

    # Lessons

    async def get_all_lessons(self) -> List[Lesson]:
        return await self._execute("get_all_lessons")

    async def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        return await self._execute("get_lesson", lesson_id)

    async def add_lesson(self, lesson: Lesson) -> Lesson:
        return await self._execute("add_lesson", _as_lesson(lesson))

    async def update_lesson(self, lesson: Lesson) -> Lesson:
        return await self._execute("update_lesson", _as_lesson(lesson))

    async def delete_lesson(self, lesson_id: str) -> bool:
        """Delete a lesson. Its words are kept; see delete_lesson_cascade()."""
        return await self._execute("delete_lesson", lesson_id)

    async def delete_lesson_cascade(self, lesson_id: str) -> int:
        """Delete a lesson and its words. Returns the number of words deleted."""
        store = await self.ensure_ready()
        return await self._timed(
            "delete_lesson_cascade", store, self._delete_lesson_cascade, store, lesson_id
        )

    @staticmethod
    def _delete_lesson_cascade(store: EntityStore, lesson_id: str) -> int:
        words = store.get_words_by_lesson(lesson_id)
        for word in words:
            store.delete_word(word.id)
        store.delete_lesson(lesson_id)
        logger.info("Deleted lesson %s with %d words", lesson_id, len(words))
        return len(words)

    async def save_lessons(self, lessons: Iterable[Lesson]) -> None:
        await self._execute("save_lessons", [_as_lesson(lesson) for lesson in lessons])
        await self._auto_backup_after_save()

    # Progress and settings

    async def get_progress(self) -> Progress:
        """Get the quiz progress, or empty progress when none is stored."""
        progress = await self._execute("get_progress")
        return progress if progress is not None else Progress()

    async def save_progress(self, progress: Progress) -> None:
        await self._execute("save_progress", _as_progress(progress))

    async def get_setting(self, key: str, default: Any = None) -> Any:
        return await self._execute("get_setting", key, default)

    async def save_setting(self, key: str, value: Any) -> None:
        await self._execute("save_setting", key, value)

    async def get_all_settings(self) -> Dict[str, Any]:
        return await self._execute("get_all_settings")

    # Bulk operations

    async def save_all(self, batch: Mapping[str, Any]) -> None:
        """Save whichever collections the batch contains: lessons, words, progress, settings.

        Each collection is saved on its own; a failure leaves the collections
        saved before it in place. Collections given as None are skipped, while
        currentLessonId is written whenever the key is present.
        """
        if batch.get("lessons") is not None:
            await self._execute("save_lessons", [_as_lesson(item) for item in batch["lessons"]])
        if batch.get("words") is not None:
            await self._execute("save_words", [_as_word(item) for item in batch["words"]])
        if batch.get("progress") is not None:
            await self._execute("save_progress", _as_progress(batch["progress"]))
        if CURRENT_LESSON_SETTING in batch:
            await self._execute("save_setting", CURRENT_LESSON_SETTING, batch[CURRENT_LESSON_SETTING])
        if batch.get(PRACTICE_LESSONS_SETTING) is not None:
            await self._execute("save_setting", PRACTICE_LESSONS_SETTING, batch[PRACTICE_LESSONS_SETTING])
        await self._auto_backup_after_save()

    async def export_data(self) -> Dict[str, Any]:
        """Build the export document of the active backend."""
        return await self._execute("export_all_data")

    async def import_data(self, data: Mapping[str, Any]) -> Snapshot:
        """Merge an export document or a legacy backup file into the active backend."""
        snapshot = await self._execute("import_data", data)
        await self._auto_backup_after_save()
        return snapshot

    # Backups

    async def create_backup(self, description: str = "Manual backup") -> Backup:
        return await self._execute("create_backup", description)

    async def list_backups(self, automatic: Optional[bool] = None) -> List[Backup]:
        return await self._execute("list_backups", automatic)

    async def get_backup(self, backup_id: int) -> Optional[Backup]:
        return await self._execute("get_backup", backup_id)

    async def restore_from_backup(self, backup_id: int) -> Backup:
        return await self._execute("restore_from_backup", backup_id)

    async def delete_backup(self, backup_id: int) -> bool:
        return await self._execute("delete_backup", backup_id)

    async def run_automatic_backup(self) -> Optional[Backup]:
        """Create an automatic backup and prune old ones. Never raises for backup errors."""
        store = await self.ensure_ready()
        if not store.supports_backups:
            logger.info("Automatic backup skipped: the %s store keeps no backups", store.storage_type)
            return None
        return await self._call(store.create_automatic_backup)

    async def _auto_backup_after_save(self) -> Optional[Backup]:
        if not self.settings.backup.auto_backup_on_save:
            return None
        store = self.store
        if store is None or not store.supports_backups:
            return None
        return await self._call(self._automatic_backup_if_due, store)

    def _automatic_backup_if_due(self, store: StructuredStore) -> Optional[Backup]:
        try:
            last = store.last_automatic_backup_time()
        except Exception as e:
            backup_failures.inc()
            logger.error("Could not read the last automatic backup time: %s", str(e))
            return None

        interval = timedelta(hours=self.settings.backup.auto_backup_interval_hours)
        if last is not None and utcnow() - last < interval:
            logger.debug("Automatic backup not due, last one at %s", last.isoformat())
            return None
        return store.create_automatic_backup()

    # Migration and diagnostics

    async def start_migration(self, **options: Any) -> MigrationResult:
        """Run the legacy migration and switch to the structured store on success.

        Accepts the keyword options of MigrationService.migrate().
        """
        await self.ensure_ready()
        result = await self._call(self._migrate, options)
        self.last_migration = result
        if result.state in (MigrationState.COMPLETED, MigrationState.LEGACY_CLEARED):
            async with self._ready_lock:
                self.last_error = None
                self._activate(self.structured_store)
        return result

    def _migrate(self, options: Dict[str, Any]) -> MigrationResult:
        try:
            self.structured_store.open()
        except BackendUnavailable as e:
            logger.error("Migration impossible: %s", str(e))
            return MigrationResult(MigrationState.FAILED, str(e), errors=[str(e)])
        return self.migration.migrate(**options)

    async def verify_migration(self) -> VerificationReport:
        await self.ensure_ready()
        return await self._call(self._verify)

    def _verify(self) -> VerificationReport:
        try:
            self.structured_store.open()
        except BackendUnavailable as e:
            logger.error("Verification impossible: %s", str(e))
        return self.migration.verify_migration()

    def get_migration_status(self) -> MigrationStatus:
        return self.migration.get_status()

    async def get_storage_info(self) -> Dict[str, Any]:
        """Describe the active backend: type, record counts and size."""
        store = await self.ensure_ready()

        def collect() -> Dict[str, Any]:
            return {
                "type": store.storage_type,
                "ready": True,
                "words": store.count_words(),
                "lessons": store.count_lessons(),
                "bytes": store.size_bytes(),
                "supports_backups": store.supports_backups,
            }

        info = await self._call(collect)
        info["preferred"] = self.preferred_backend
        info["structured_available"] = self.structured_store.is_open
        info["migration_state"] = self.migration.status.state.value
        info["last_error"] = self.last_error
        return info
