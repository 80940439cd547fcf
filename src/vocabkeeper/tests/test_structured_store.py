"""Tests for the structured store."""
from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlalchemy import create_engine, text

from vocabkeeper.errors import BackendUnavailable, DuplicateId
from vocabkeeper.models.entities import Category, Snapshot
from vocabkeeper.storage.structured_store import (
    SCHEMA_VERSION,
    SCHEMA_VERSION_KEY,
    StructuredStore,
)


def test_open_creates_schema(structured_store: StructuredStore):
    """Test that a new database is created at the current schema version."""
    assert structured_store.is_open
    assert structured_store.schema_version == SCHEMA_VERSION
    assert structured_store.has_data() is False
    assert structured_store.size_bytes() > 0


def test_open_unreachable_database(tmp_path: Path):
    """Test that an unusable database is reported as unavailable."""
    store = StructuredStore(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'vocabulary.db'}")

    with pytest.raises(BackendUnavailable):
        store.open()
    assert store.is_open is False


def test_session_requires_open_store(tmp_path: Path):
    """Test that operations on a closed store fail clearly."""
    store = StructuredStore(f"sqlite:///{tmp_path / 'vocabulary.db'}")

    with pytest.raises(BackendUnavailable):
        store.get_all_words()


def test_word_crud(structured_store: StructuredStore, make_word):
    """Test adding, updating and deleting words."""
    word = make_word(last_reviewed=datetime(2024, 1, 1, 8, tzinfo=UTC))
    structured_store.add_word(word)
    assert structured_store.get_word(word.id) == word

    word.reviewed = 5
    structured_store.update_word(word)
    assert structured_store.get_word(word.id).reviewed == 5

    assert structured_store.delete_word(word.id) is True
    assert structured_store.delete_word(word.id) is False
    assert structured_store.count_words() == 0


def test_add_duplicate_word(structured_store: StructuredStore, make_word):
    """Test that inserting an existing id raises DuplicateId."""
    word = make_word()
    structured_store.add_word(word)

    with pytest.raises(DuplicateId) as exc_info:
        structured_store.add_word(word)
    assert exc_info.value.record_id == word.id


def test_update_unknown_word_adds_it(structured_store: StructuredStore, make_word):
    """Test that updating an unknown id inserts the word."""
    word = make_word()
    structured_store.update_word(word)

    assert structured_store.get_all_words() == [word]


def test_save_words_diffs_collection(structured_store: StructuredStore, make_word):
    """Test that saving a collection upserts present and deletes missing records."""
    kept, removed = make_word(), make_word()
    structured_store.save_words([kept, removed])

    kept.vietnamese = "đã sửa"
    added = make_word()
    structured_store.save_words([kept, added])

    words = {word.id: word for word in structured_store.get_all_words()}
    assert set(words) == {kept.id, added.id}
    assert words[kept.id].vietnamese == "đã sửa"


def test_indexed_queries(structured_store: StructuredStore, make_word, make_lesson):
    """Test the query-served lookups."""
    lesson = make_lesson(name="Kitchen Tools")
    structured_store.add_lesson(lesson)
    spoon = make_word(english="spoon", lesson_id=lesson.id, category=Category.NOUN)
    stir = make_word(english="stir", lesson_id=lesson.id, category=Category.VERB)
    run = make_word(english="run", lesson_id="lesson-other", category=Category.VERB)
    for word in (spoon, stir, run):
        structured_store.add_word(word)

    assert {word.id for word in structured_store.get_words_by_lesson(lesson.id)} == {spoon.id, stir.id}
    assert {word.id for word in structured_store.get_words_by_category(Category.VERB)} == {stir.id, run.id}
    assert structured_store.find_words_by_english("spoon") == [spoon]
    assert structured_store.find_lesson_by_name("kitchen tools") == lesson
    assert structured_store.find_lesson_by_name("garden") is None


def test_progress_and_settings(structured_store: StructuredStore, sample_progress):
    """Test the progress singleton and settings."""
    assert structured_store.get_progress() is None

    structured_store.save_progress(sample_progress)
    sample_progress.add_session(2, 1)
    structured_store.save_progress(sample_progress)
    structured_store.save_setting("currentLessonId", "lesson-1")
    structured_store.save_setting("currentLessonId", "lesson-2")

    assert structured_store.get_progress() == sample_progress
    assert structured_store.get_setting("currentLessonId") == "lesson-2"
    assert structured_store.get_setting("missing", 42) == 42
    assert structured_store.get_all_settings() == {"currentLessonId": "lesson-2"}


def test_export_import_round_trip(tmp_path: Path, structured_store: StructuredStore, make_word, make_lesson, sample_progress):
    """Test that exporting and importing into an empty store reproduces the data."""
    lessons = [make_lesson() for _ in range(2)]
    words = [make_word(lesson_id=lessons[i % 2].id) for i in range(5)]
    structured_store.save_lessons(lessons)
    structured_store.save_words(words)
    structured_store.save_progress(sample_progress)
    structured_store.save_setting("currentLessonId", lessons[0].id)

    document = structured_store.export_all_data()
    assert document["storageType"] == "structured"

    target = StructuredStore(f"sqlite:///{tmp_path / 'other.db'}")
    target.open()
    try:
        target.import_data(document)

        assert sorted(target.get_all_words(), key=lambda w: w.id) == sorted(words, key=lambda w: w.id)
        assert sorted(target.get_all_lessons(), key=lambda l: l.id) == sorted(lessons, key=lambda l: l.id)
        assert target.get_progress() == sample_progress
        assert target.get_setting("currentLessonId") == lessons[0].id
        # A safety backup is taken before importing
        backups = target.list_backups()
        assert len(backups) == 1
        assert backups[0].description.startswith("Before import - ")
    finally:
        target.close()


def test_replace_all(structured_store: StructuredStore, make_word, make_lesson):
    """Test that replace_all swaps the live data in one go."""
    structured_store.save_words([make_word() for _ in range(3)])
    lesson = make_lesson()
    word = make_word(lesson_id=lesson.id)

    structured_store.replace_all(Snapshot(words=[word], lessons=[lesson], settings={"theme": "dark"}))

    assert structured_store.get_all_words() == [word]
    assert structured_store.get_all_lessons() == [lesson]
    assert structured_store.get_all_settings() == {"theme": "dark"}

    structured_store.clear_all_data()
    assert structured_store.has_data() is False


def test_meta(structured_store: StructuredStore):
    """Test bookkeeping values."""
    assert structured_store.get_meta("migration_state") is None
    structured_store.set_meta("migration_state", "copying")
    structured_store.set_meta("migration_state", "completed")
    assert structured_store.get_meta("migration_state") == "completed"


def test_upgrade_from_schema_version_1(tmp_path: Path):
    """Test that databases without the automatic flag are upgraded."""
    url = f"sqlite:///{tmp_path / 'old.db'}"
    engine = create_engine(url)
    with engine.begin() as connection:
        connection.execute(text(
            "CREATE TABLE backups (id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "timestamp DATETIME NOT NULL, description VARCHAR, data JSON, format_version INTEGER)"
        ))
        connection.execute(text("CREATE TABLE store_meta (key VARCHAR PRIMARY KEY, value VARCHAR)"))
        connection.execute(text(
            "INSERT INTO store_meta (key, value) VALUES (:key, '1')"
        ), {"key": SCHEMA_VERSION_KEY})
        connection.execute(text(
            "INSERT INTO backups (timestamp, description, data, format_version) VALUES "
            "('2024-01-01 00:00:00', 'Auto backup - 2024-01-01', '{}', 1), "
            "('2024-01-02 00:00:00', 'Manual backup', '{}', 1)"
        ))
    engine.dispose()

    store = StructuredStore(url)
    store.open()
    try:
        assert store.schema_version == SCHEMA_VERSION
        automatic = store.list_backups(automatic=True)
        manual = store.list_backups(automatic=False)
        assert [backup.description for backup in automatic] == ["Auto backup - 2024-01-01"]
        assert [backup.description for backup in manual] == ["Manual backup"]
    finally:
        store.close()
