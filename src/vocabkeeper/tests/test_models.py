"""Tests for database models."""
from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from vocabkeeper.models.base import Base, create_db_engine, create_session_factory
from vocabkeeper.models.entities import Category, Word
from vocabkeeper.models.models import BackupRecord, LessonRecord, WordRecord


@pytest.fixture
def db(tmp_path: Path) -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'models.db'}")
    Base.metadata.create_all(engine)
    db = create_session_factory(engine)()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


def test_word_record_round_trip(db: Session, make_word):
    """Test that a word survives a trip through the database."""
    word = make_word(extra={"pronunciation": "/test/"})
    db.add(WordRecord.from_entity(word))
    db.commit()
    db.expunge_all()

    record = db.get(WordRecord, word.id)

    assert record.to_entity() == word
    assert record.created_at is not None
    assert record.updated_at is not None


def test_datetimes_come_back_as_utc(db: Session):
    """Test that offsets are normalized to UTC and tzinfo is restored."""
    local = datetime(2024, 6, 1, 15, 0, tzinfo=timezone(timedelta(hours=7)))
    word = Word(english="river", vietnamese="sông", added_date=local, category=Category.NOUN)
    db.add(WordRecord.from_entity(word))
    db.commit()
    db.expunge_all()

    added = db.get(WordRecord, word.id).added_date

    assert added.tzinfo is UTC
    assert added == datetime(2024, 6, 1, 8, 0, tzinfo=UTC)


def test_unknown_category_is_stored_as_general(db: Session):
    """Test that invalid categories never reach the table."""
    word = Word(english="hello", vietnamese="xin chào", category="greeting")
    db.add(WordRecord.from_entity(word))
    db.commit()

    assert db.get(WordRecord, word.id).category == Category.GENERAL.value


def test_lesson_record_apply(db: Session, make_lesson):
    """Test updating a record from a changed lesson."""
    lesson = make_lesson()
    record = LessonRecord.from_entity(lesson)
    db.add(record)
    db.commit()

    lesson.name = "Renamed"
    lesson.extra = {"icon": "star"}
    record.apply(lesson)
    db.commit()
    db.expunge_all()

    assert db.get(LessonRecord, lesson.id).to_entity() == lesson


def test_backup_record_ids_are_not_reused(db: Session):
    """Test that backup ids keep increasing after deletion."""
    first = BackupRecord(timestamp=datetime.now(UTC), description="first", data={})
    db.add(first)
    db.commit()
    first_id = first.id
    db.delete(first)
    db.commit()

    second = BackupRecord(timestamp=datetime.now(UTC), description="second", data={})
    db.add(second)
    db.commit()

    assert second.id > first_id
    assert second.to_entity().automatic is False
