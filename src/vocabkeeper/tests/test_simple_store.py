"""Tests for the simple store."""
import json

import pytest

from vocabkeeper.errors import UnsupportedOperation
from vocabkeeper.models.entities import Category, Progress, Snapshot
from vocabkeeper.storage.simple_store import (
    CURRENT_LESSON_KEY,
    LESSONS_KEY,
    PROGRESS_KEY,
    WORDS_KEY,
    SimpleStore,
)


def test_empty_store(simple_store: SimpleStore):
    """Test reads from a store that was never written."""
    assert simple_store.get_all_words() == []
    assert simple_store.get_all_lessons() == []
    assert simple_store.get_progress() is None
    assert simple_store.get_setting(CURRENT_LESSON_KEY, "none") == "none"
    assert simple_store.has_data() is False
    assert simple_store.size_bytes() == 0


def test_word_crud(simple_store: SimpleStore, make_word):
    """Test adding, updating and deleting words."""
    word = make_word()
    simple_store.add_word(word)
    assert simple_store.get_word(word.id) == word

    word.reviewed = 3
    simple_store.update_word(word)
    assert simple_store.get_word(word.id).reviewed == 3
    assert len(simple_store.get_all_words()) == 1

    assert simple_store.delete_word(word.id) is True
    assert simple_store.delete_word(word.id) is False
    assert simple_store.get_word(word.id) is None


def test_update_unknown_word_adds_it(simple_store: SimpleStore, make_word):
    """Test that updating an unknown id inserts the word."""
    word = make_word()
    simple_store.update_word(word)

    assert simple_store.get_all_words() == [word]


def test_queries_scan_all_words(simple_store: SimpleStore, make_word, make_lesson):
    """Test filtering by lesson and category."""
    lesson = make_lesson()
    verb = make_word(lesson_id=lesson.id, category=Category.VERB)
    noun = make_word(lesson_id=lesson.id, category=Category.NOUN)
    other = make_word(lesson_id="lesson-other", category=Category.VERB)
    simple_store.save_words([verb, noun, other])

    assert {word.id for word in simple_store.get_words_by_lesson(lesson.id)} == {verb.id, noun.id}
    assert {word.id for word in simple_store.get_words_by_category("verb")} == {verb.id, other.id}


def test_lesson_crud(simple_store: SimpleStore, make_lesson):
    """Test lesson operations mirror word operations."""
    first, second = make_lesson(), make_lesson()
    simple_store.add_lesson(first)
    simple_store.add_lesson(second)

    first.name = "Renamed"
    simple_store.update_lesson(first)
    assert simple_store.get_lesson(first.id).name == "Renamed"

    assert simple_store.delete_lesson(second.id) is True
    assert simple_store.get_all_lessons() == [first]

    simple_store.save_lessons([])
    assert simple_store.get_all_lessons() == []


def test_progress_and_settings(simple_store: SimpleStore, sample_progress: Progress):
    """Test progress and setting blobs."""
    simple_store.save_progress(sample_progress)
    simple_store.save_setting(CURRENT_LESSON_KEY, "lesson-1")
    simple_store.save_setting("selectedPracticeLessons", {"lesson-1": True})

    assert simple_store.get_progress() == sample_progress
    assert simple_store.get_all_settings() == {
        CURRENT_LESSON_KEY: "lesson-1",
        "selectedPracticeLessons": {"lesson-1": True},
    }


def test_collection_keys_are_not_settings(simple_store: SimpleStore):
    """Test that collection keys cannot be written as settings."""
    with pytest.raises(ValueError):
        simple_store.save_setting(WORDS_KEY, [])


def test_legacy_blobs(simple_store: SimpleStore):
    """Test reading blobs written by earlier releases."""
    simple_store.directory.mkdir(parents=True)
    (simple_store.directory / f"{WORDS_KEY}.json").write_text(json.dumps([
        {"id": 1700000000000, "english": "cat", "vietnamese": "con mèo", "lessonId": 1690000000000},
    ]))
    (simple_store.directory / f"{CURRENT_LESSON_KEY}.json").write_text("1690000000000")
    (simple_store.directory / f"{LESSONS_KEY}.json").write_text("{not json")

    words = simple_store.get_all_words()
    assert words[0].id == "1700000000000"
    assert words[0].lesson_id == "1690000000000"
    assert words[0].category is Category.GENERAL
    assert simple_store.get_setting(CURRENT_LESSON_KEY) == 1690000000000
    # Corrupt collection blobs read as empty
    assert simple_store.get_all_lessons() == []
    assert simple_store.has_data() is True


def test_writes_are_atomic(simple_store: SimpleStore, make_word):
    """Test that no temporary files are left behind."""
    simple_store.save_words([make_word() for _ in range(3)])

    files = [path.name for path in simple_store.directory.iterdir()]
    assert files == [f"{WORDS_KEY}.json"]


def test_import_merges(simple_store: SimpleStore, make_word, make_lesson):
    """Test that importing upserts and keeps existing records."""
    existing = make_word()
    simple_store.add_word(existing)
    lesson = make_lesson()
    imported = make_word(lesson_id=lesson.id)
    document = Snapshot(
        words=[imported],
        lessons=[lesson],
        settings={CURRENT_LESSON_KEY: lesson.id, "selectedPracticeLessons": None},
    ).to_export("structured")

    simple_store.import_data(document)

    assert {word.id for word in simple_store.get_all_words()} == {existing.id, imported.id}
    assert simple_store.get_setting(CURRENT_LESSON_KEY) == lesson.id
    assert not simple_store.has_key("selectedPracticeLessons")


def test_clear_removes_known_keys(simple_store: SimpleStore, make_word, sample_progress):
    """Test that clearing removes only the legacy keys."""
    simple_store.save_words([make_word()])
    simple_store.save_progress(sample_progress)
    simple_store.save_setting("theme", "dark")

    simple_store.clear()

    assert simple_store.has_data() is False
    assert not simple_store.has_key(PROGRESS_KEY)
    assert simple_store.get_setting("theme") == "dark"


def test_backups_unsupported(simple_store: SimpleStore):
    """Test that backup operations are rejected."""
    with pytest.raises(UnsupportedOperation):
        simple_store.create_backup("Manual backup")
    with pytest.raises(UnsupportedOperation):
        simple_store.list_backups()
