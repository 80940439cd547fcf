"""Database models for the structured store."""
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Integer,
    String,
)

from vocabkeeper.models.base import Base, TimestampMixin, UTCDateTime
from vocabkeeper.models.entities import (
    FORMAT_VERSION,
    Backup,
    Category,
    Lesson,
    Progress,
    Snapshot,
    Word,
    utcnow,
)


class WordRecord(Base, TimestampMixin):
    """Word model."""

    __tablename__ = "words"

    id = Column(String, primary_key=True)
    english = Column(String, nullable=False, index=True)
    vietnamese = Column(String, nullable=False)
    example = Column(String)
    category = Column(String, nullable=False, default=Category.GENERAL.value, index=True)
    # Not a foreign key: dangling references are reported by migration verification
    lesson_id = Column(String, index=True)
    added_date = Column(UTCDateTime, index=True)
    reviewed = Column(Integer, default=0)
    last_reviewed = Column(UTCDateTime)
    extra = Column(JSON)

    def apply(self, word: Word) -> None:
        """Copy the fields of a domain word onto this record."""
        self.english = word.english
        self.vietnamese = word.vietnamese
        self.example = word.example
        self.category = Category.parse(word.category).value
        self.lesson_id = word.lesson_id
        self.added_date = word.added_date
        self.reviewed = word.reviewed
        self.last_reviewed = word.last_reviewed
        self.extra = dict(word.extra) or None

    def to_entity(self) -> Word:
        return Word(
            id=self.id,
            english=self.english,
            vietnamese=self.vietnamese,
            example=self.example,
            category=Category.parse(self.category),
            lesson_id=self.lesson_id,
            added_date=self.added_date,
            reviewed=self.reviewed or 0,
            last_reviewed=self.last_reviewed,
            extra=dict(self.extra or {}),
        )

    @classmethod
    def from_entity(cls, word: Word) -> "WordRecord":
        record = cls(id=word.id)
        record.apply(word)
        return record


class LessonRecord(Base, TimestampMixin):
    """Lesson model."""

    __tablename__ = "lessons"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, index=True)
    description = Column(String)
    color = Column(String)
    created_date = Column(UTCDateTime, index=True)
    extra = Column(JSON)

    def apply(self, lesson: Lesson) -> None:
        """Copy the fields of a domain lesson onto this record."""
        self.name = lesson.name
        self.description = lesson.description
        self.color = lesson.color
        self.created_date = lesson.created_date
        self.extra = dict(lesson.extra) or None

    def to_entity(self) -> Lesson:
        return Lesson(
            id=self.id,
            name=self.name,
            description=self.description,
            color=self.color,
            created_date=self.created_date,
            extra=dict(self.extra or {}),
        )

    @classmethod
    def from_entity(cls, lesson: Lesson) -> "LessonRecord":
        record = cls(id=lesson.id)
        record.apply(lesson)
        return record


class ProgressRecord(Base):
    """Progress model, one row per progress type."""

    __tablename__ = "progress"

    type = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    last_updated = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    def to_entity(self) -> Progress:
        return Progress.from_dict(self.data or {})


class SettingRecord(Base):
    """Setting model."""

    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(JSON)
    last_updated = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class BackupRecord(Base):
    """Backup model."""

    __tablename__ = "backups"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(UTCDateTime, nullable=False, index=True)
    description = Column(String, nullable=False, default="")
    data = Column(JSON, nullable=False)
    format_version = Column(Integer, nullable=False, default=FORMAT_VERSION)
    automatic = Column(Boolean, nullable=False, default=False, index=True)

    def to_entity(self) -> Backup:
        return Backup(
            id=self.id,
            timestamp=self.timestamp,
            description=self.description,
            data=Snapshot.from_dict(self.data or {}),
            format_version=self.format_version,
            automatic=bool(self.automatic),
        )


class StoreMeta(Base):
    """Internal key/value bookkeeping (schema version, migration state)."""

    __tablename__ = "store_meta"

    key = Column(String, primary_key=True)
    value = Column(String)
