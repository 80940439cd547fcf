"""Indexed, transactional store backed by SQLAlchemy."""
import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from sqlalchemy import delete, insert, inspect, select, text, update, func
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from vocabkeeper.config import AUTO_BACKUP_KEEP, STRUCTURED_BACKEND, Settings
from vocabkeeper.errors import BackendUnavailable, DuplicateId
from vocabkeeper.models.base import Base, create_db_engine, create_session_factory
from vocabkeeper.models.entities import (
    PROGRESS_TYPE,
    Backup,
    Category,
    Lesson,
    Progress,
    Snapshot,
    Word,
    utcnow,
)
from vocabkeeper.models.models import (
    BackupRecord,
    LessonRecord,
    ProgressRecord,
    SettingRecord,
    StoreMeta,
    WordRecord,
)
from vocabkeeper.services.backup_service import BackupService
from vocabkeeper.storage.base import EntityStore

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
SCHEMA_VERSION_KEY = "schema_version"
MIGRATION_STATE_KEY = "migration_state"

# Automatic backups of schema version 1 were only recognizable by this prefix
LEGACY_AUTO_BACKUP_PREFIX = "Auto backup"

LIVE_RECORDS = (WordRecord, LessonRecord, ProgressRecord, SettingRecord)


def _read_meta(connection: Connection, key: str) -> Optional[str]:
    return connection.execute(select(StoreMeta.value).where(StoreMeta.key == key)).scalar()


def _write_meta(connection: Connection, key: str, value: str) -> None:
    table = StoreMeta.__table__
    connection.execute(delete(table).where(table.c.key == key))
    connection.execute(insert(table).values(key=key, value=value))


def _create_collections(connection: Connection) -> None:
    """Version 1: words, lessons, progress, settings and backups."""
    Base.metadata.create_all(connection)


def _add_automatic_flag(connection: Connection) -> None:
    """Version 2: explicit flag for automatic backups."""
    columns = {column["name"] for column in inspect(connection).get_columns("backups")}
    if "automatic" not in columns:
        connection.execute(text("ALTER TABLE backups ADD COLUMN automatic BOOLEAN NOT NULL DEFAULT 0"))
        connection.execute(text("CREATE INDEX IF NOT EXISTS ix_backups_automatic ON backups (automatic)"))
    table = BackupRecord.__table__
    connection.execute(
        update(table)
        .where(table.c.description.like(f"{LEGACY_AUTO_BACKUP_PREFIX}%"))
        .values(automatic=True)
    )


SCHEMA_UPGRADES: Dict[int, Callable[[Connection], None]] = {
    1: _create_collections,
    2: _add_automatic_flag,
}


def upgrade_schema(engine: Engine) -> int:
    """Bring the schema up to SCHEMA_VERSION. Returns the previous version."""
    with engine.begin() as connection:
        StoreMeta.__table__.create(connection, checkfirst=True)
        current = int(_read_meta(connection, SCHEMA_VERSION_KEY) or 0)
        for version in range(current + 1, SCHEMA_VERSION + 1):
            logger.info("Upgrading storage schema to version %d", version)
            SCHEMA_UPGRADES[version](connection)
            _write_meta(connection, SCHEMA_VERSION_KEY, str(version))
    return current


class StructuredStore(EntityStore):
    """SQLAlchemy backend with one transaction per operation."""

    storage_type = STRUCTURED_BACKEND
    supports_backups = True

    def __init__(self, url: str, echo: bool = False, keep_automatic: int = AUTO_BACKUP_KEEP):
        """Initialize the store. Nothing is opened until open() is called."""
        self.url = url
        self.echo = echo
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None
        self.backups = BackupService(self, keep_automatic=keep_automatic)

    @classmethod
    def from_settings(cls, settings: Settings) -> "StructuredStore":
        return cls(
            settings.database.url,
            echo=settings.database.echo,
            keep_automatic=settings.backup.keep_automatic,
        )

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    def open(self) -> None:
        """Connect and initialize the schema, raising BackendUnavailable on failure."""
        if self.engine is not None:
            return
        engine = None
        try:
            engine = create_db_engine(self.url, echo=self.echo)
            previous = upgrade_schema(engine)
        except SQLAlchemyError as e:
            if engine is not None:
                engine.dispose()
            raise BackendUnavailable(f"Cannot open structured store at {self.url}: {e}") from e

        self.engine = engine
        self.SessionLocal = create_session_factory(engine)
        if previous < SCHEMA_VERSION:
            logger.info("Structured store schema at version %d (was %d)", SCHEMA_VERSION, previous)
        logger.info("Structured store opened: %s", engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
            self.SessionLocal = None
            logger.info("Structured store closed")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Run a block inside one transaction."""
        if self.SessionLocal is None:
            raise BackendUnavailable("Structured store is not open")
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # Generic record helpers

    def _add(self, record_cls, entity, collection: str):
        try:
            with self.session() as db:
                db.add(record_cls.from_entity(entity))
                db.flush()
        except IntegrityError as e:
            raise DuplicateId(collection, entity.id) from e
        return entity

    def _upsert_many(self, db: Session, record_cls, entities) -> None:
        # Last occurrence wins when an id repeats
        for entity in {entity.id: entity for entity in entities}.values():
            record = db.get(record_cls, entity.id)
            if record is None:
                db.add(record_cls.from_entity(entity))
            else:
                record.apply(entity)

    def _upsert(self, record_cls, entity):
        with self.session() as db:
            self._upsert_many(db, record_cls, [entity])
        return entity

    def _delete(self, record_cls, record_id: str) -> bool:
        with self.session() as db:
            record = db.get(record_cls, record_id)
            if record is None:
                return False
            db.delete(record)
            return True

    def _replace(self, record_cls, entities, collection: str) -> None:
        """Diff the collection against the given entities."""
        with self.session() as db:
            wanted = {entity.id: entity for entity in entities}
            existing = {record.id: record for record in db.query(record_cls).all()}
            removed = 0
            for record_id, record in existing.items():
                if record_id not in wanted:
                    db.delete(record)
                    removed += 1
            for entity_id, entity in wanted.items():
                record = existing.get(entity_id)
                if record is None:
                    db.add(record_cls.from_entity(entity))
                else:
                    record.apply(entity)
        logger.debug(
            "Saved %d %s (%d added, %d removed)",
            len(wanted),
            collection,
            len(set(wanted) - set(existing)),
            removed,
        )

    # Words

    def get_all_words(self) -> List[Word]:
        with self.session() as db:
            return [record.to_entity() for record in db.query(WordRecord).all()]

    def get_word(self, word_id: str) -> Optional[Word]:
        with self.session() as db:
            record = db.get(WordRecord, word_id)
            return record.to_entity() if record else None

    def add_word(self, word: Word) -> Word:
        return self._add(WordRecord, word, "words")

    def update_word(self, word: Word) -> Word:
        return self._upsert(WordRecord, word)

    def delete_word(self, word_id: str) -> bool:
        return self._delete(WordRecord, word_id)

    def save_words(self, words: List[Word]) -> None:
        self._replace(WordRecord, words, "words")

    def get_words_by_lesson(self, lesson_id: str) -> List[Word]:
        with self.session() as db:
            records = db.query(WordRecord).filter(WordRecord.lesson_id == lesson_id).all()
            return [record.to_entity() for record in records]

    def get_words_by_category(self, category: Category) -> List[Word]:
        category = Category.parse(category)
        with self.session() as db:
            records = db.query(WordRecord).filter(WordRecord.category == category.value).all()
            return [record.to_entity() for record in records]

    def find_words_by_english(self, english: str) -> List[Word]:
        """Get words whose English text matches exactly."""
        with self.session() as db:
            records = db.query(WordRecord).filter(WordRecord.english == english).all()
            return [record.to_entity() for record in records]

    def count_words(self) -> int:
        with self.session() as db:
            return db.query(WordRecord).count()

    # Lessons

    def get_all_lessons(self) -> List[Lesson]:
        with self.session() as db:
            return [record.to_entity() for record in db.query(LessonRecord).all()]

    def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        with self.session() as db:
            record = db.get(LessonRecord, lesson_id)
            return record.to_entity() if record else None

    def add_lesson(self, lesson: Lesson) -> Lesson:
        return self._add(LessonRecord, lesson, "lessons")

    def update_lesson(self, lesson: Lesson) -> Lesson:
        return self._upsert(LessonRecord, lesson)

    def delete_lesson(self, lesson_id: str) -> bool:
        return self._delete(LessonRecord, lesson_id)

    def save_lessons(self, lessons: List[Lesson]) -> None:
        self._replace(LessonRecord, lessons, "lessons")

    def find_lesson_by_name(self, name: str) -> Optional[Lesson]:
        """Get a lesson by name, ignoring case."""
        with self.session() as db:
            record = (
                db.query(LessonRecord)
                .filter(func.lower(LessonRecord.name) == name.lower())
                .first()
            )
            return record.to_entity() if record else None

    def count_lessons(self) -> int:
        with self.session() as db:
            return db.query(LessonRecord).count()

    # Progress and settings

    def get_progress(self) -> Optional[Progress]:
        with self.session() as db:
            record = db.get(ProgressRecord, PROGRESS_TYPE)
            return record.to_entity() if record else None

    def save_progress(self, progress: Progress) -> None:
        with self.session() as db:
            self._write_progress(db, progress)

    def _write_progress(self, db: Session, progress: Progress) -> None:
        record = db.get(ProgressRecord, PROGRESS_TYPE)
        if record is None:
            db.add(ProgressRecord(type=PROGRESS_TYPE, data=progress.to_dict()))
        else:
            record.data = progress.to_dict()

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self.session() as db:
            record = db.get(SettingRecord, key)
            return record.value if record else default

    def save_setting(self, key: str, value: Any) -> None:
        with self.session() as db:
            self._write_settings(db, {key: value})

    def _write_settings(self, db: Session, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            record = db.get(SettingRecord, key)
            if record is None:
                db.add(SettingRecord(key=key, value=value))
            else:
                record.value = value

    def get_all_settings(self) -> Dict[str, Any]:
        with self.session() as db:
            return {record.key: record.value for record in db.query(SettingRecord).all()}

    # Snapshots

    @staticmethod
    def read_snapshot(db: Session) -> Snapshot:
        """Read the live collections within an open session."""
        progress = db.get(ProgressRecord, PROGRESS_TYPE)
        return Snapshot(
            words=[record.to_entity() for record in db.query(WordRecord).all()],
            lessons=[record.to_entity() for record in db.query(LessonRecord).all()],
            progress=progress.to_entity() if progress else None,
            settings={record.key: record.value for record in db.query(SettingRecord).all()},
        )

    def snapshot(self) -> Snapshot:
        with self.session() as db:
            return self.read_snapshot(db)

    def upsert_lessons(self, lessons: List[Lesson]) -> None:
        """Insert or replace many lessons in one transaction."""
        with self.session() as db:
            self._upsert_many(db, LessonRecord, lessons)

    def upsert_words(self, words: List[Word]) -> None:
        """Insert or replace many words in one transaction."""
        with self.session() as db:
            self._upsert_many(db, WordRecord, words)

    def save_settings(self, values: Mapping[str, Any]) -> None:
        """Store many settings in one transaction."""
        with self.session() as db:
            self._write_settings(db, values)

    def merge_snapshot(self, snapshot: Snapshot) -> None:
        """Upsert a snapshot with one transaction per collection, lessons first."""
        self.upsert_lessons(snapshot.lessons)
        self.upsert_words(snapshot.words)
        if snapshot.progress is not None:
            self.save_progress(snapshot.progress)
        settings = {key: value for key, value in snapshot.settings.items() if value is not None}
        if settings:
            self.save_settings(settings)

    def replace_all(self, snapshot: Snapshot) -> None:
        """Clear the live collections and load a snapshot, preserving ids."""
        with self.session() as db:
            for record_cls in LIVE_RECORDS:
                db.query(record_cls).delete()
            db.add_all([LessonRecord.from_entity(lesson) for lesson in snapshot.lessons])
            db.add_all([WordRecord.from_entity(word) for word in snapshot.words])
            if snapshot.progress is not None:
                db.add(ProgressRecord(type=PROGRESS_TYPE, data=snapshot.progress.to_dict()))
            db.add_all([SettingRecord(key=key, value=value) for key, value in snapshot.settings.items()])

    def clear_all_data(self) -> None:
        """Clear every live collection; backups are kept."""
        self.replace_all(Snapshot())

    def import_data(self, data: Mapping[str, Any]) -> Snapshot:
        """Merge an export document after taking a safety backup."""
        snapshot = Snapshot.from_dict(data)
        self.backups.create_backup(f"Before import - {utcnow():%Y-%m-%d %H:%M:%S}")
        self.merge_snapshot(snapshot)
        logger.info(
            "Imported %d words and %d lessons into the structured store",
            len(snapshot.words),
            len(snapshot.lessons),
        )
        return snapshot

    def has_data(self) -> bool:
        """Check whether any word or lesson is stored."""
        return self.count_words() > 0 or self.count_lessons() > 0

    def size_bytes(self) -> int:
        if self.engine is None or self.engine.dialect.name != "sqlite":
            return 0
        database = self.engine.url.database
        if not database or database == ":memory:":
            return 0
        path = Path(database)
        return path.stat().st_size if path.exists() else 0

    # Bookkeeping

    def get_meta(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self.session() as db:
            record = db.get(StoreMeta, key)
            return record.value if record else default

    def set_meta(self, key: str, value: str) -> None:
        with self.session() as db:
            record = db.get(StoreMeta, key)
            if record is None:
                db.add(StoreMeta(key=key, value=value))
            else:
                record.value = value

    @property
    def schema_version(self) -> int:
        return int(self.get_meta(SCHEMA_VERSION_KEY) or 0)

    # Backups

    def create_backup(self, description: str = "Manual backup", automatic: bool = False) -> Backup:
        return self.backups.create_backup(description, automatic=automatic)

    def create_automatic_backup(self) -> Optional[Backup]:
        return self.backups.create_automatic_backup()

    def list_backups(self, automatic: Optional[bool] = None) -> List[Backup]:
        return self.backups.list_backups(automatic=automatic)

    def get_backup(self, backup_id: int) -> Optional[Backup]:
        return self.backups.get_backup(backup_id)

    def delete_backup(self, backup_id: int) -> bool:
        return self.backups.delete_backup(backup_id)

    def restore_from_backup(self, backup_id: int) -> Backup:
        return self.backups.restore_from_backup(backup_id)

    def last_automatic_backup_time(self) -> Optional[datetime]:
        return self.backups.last_automatic_backup_time()
