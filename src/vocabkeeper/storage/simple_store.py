"""Flat key/blob store used by earlier releases.

Every collection is one JSON blob stored under a fixed key (one file per key
in the legacy directory). Every write rewrites the whole blob.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote, unquote

from vocabkeeper.config import SIMPLE_BACKEND
from vocabkeeper.models.entities import (
    CURRENT_LESSON_SETTING,
    PRACTICE_LESSONS_SETTING,
    Category,
    Lesson,
    Progress,
    Snapshot,
    Word,
)
from vocabkeeper.storage.base import EntityStore

logger = logging.getLogger(__name__)

WORDS_KEY = "vocabularyWords"
LESSONS_KEY = "vocabularyLessons"
PROGRESS_KEY = "quizProgress"
CURRENT_LESSON_KEY = CURRENT_LESSON_SETTING
PRACTICE_LESSONS_KEY = PRACTICE_LESSONS_SETTING

# Keys whose presence means the legacy store holds user data
LEGACY_KEYS = (WORDS_KEY, LESSONS_KEY, PROGRESS_KEY, CURRENT_LESSON_KEY, PRACTICE_LESSONS_KEY)
COLLECTION_KEYS = (WORDS_KEY, LESSONS_KEY, PROGRESS_KEY)


class SimpleStore(EntityStore):
    """Whole-blob backend kept as the fallback and the migration source."""

    storage_type = SIMPLE_BACKEND
    supports_backups = False

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    # Raw blob access

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def has_key(self, key: str) -> bool:
        return self._path(key).exists()

    def keys(self) -> List[str]:
        """List the keys currently stored."""
        if not self.directory.exists():
            return []
        return [unquote(path.stem) for path in sorted(self.directory.glob("*.json"))]

    def read(self, key: str, default: Any = None) -> Any:
        """Read and decode the blob stored under a key."""
        path = self._path(key)
        if not path.exists():
            return default
        text = path.read_text(encoding="utf-8")
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            if key in COLLECTION_KEYS:
                logger.error("Corrupt blob for key %s, using default", key)
                return default
            # Scalar settings were written as raw text by earlier releases
            return text

    def write(self, key: str, value: Any) -> None:
        """Atomically replace the blob stored under a key."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(value, handle, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    # Words

    def get_all_words(self) -> List[Word]:
        return [Word.from_dict(item) for item in self.read(WORDS_KEY) or []]

    def get_word(self, word_id: str) -> Optional[Word]:
        return next((word for word in self.get_all_words() if word.id == word_id), None)

    def add_word(self, word: Word) -> Word:
        words = self.get_all_words()
        words.append(word)
        self.save_words(words)
        return word

    def update_word(self, word: Word) -> Word:
        words = self.get_all_words()
        for index, existing in enumerate(words):
            if existing.id == word.id:
                words[index] = word
                break
        else:
            words.append(word)
        self.save_words(words)
        return word

    def delete_word(self, word_id: str) -> bool:
        words = self.get_all_words()
        remaining = [word for word in words if word.id != word_id]
        if len(remaining) == len(words):
            return False
        self.save_words(remaining)
        return True

    def save_words(self, words: List[Word]) -> None:
        self.write(WORDS_KEY, [word.to_dict() for word in words])

    def get_words_by_lesson(self, lesson_id: str) -> List[Word]:
        return [word for word in self.get_all_words() if word.lesson_id == lesson_id]

    def get_words_by_category(self, category: Category) -> List[Word]:
        category = Category.parse(category)
        return [word for word in self.get_all_words() if word.category == category]

    # Lessons

    def get_all_lessons(self) -> List[Lesson]:
        return [Lesson.from_dict(item) for item in self.read(LESSONS_KEY) or []]

    def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        return next((lesson for lesson in self.get_all_lessons() if lesson.id == lesson_id), None)

    def add_lesson(self, lesson: Lesson) -> Lesson:
        lessons = self.get_all_lessons()
        lessons.append(lesson)
        self.save_lessons(lessons)
        return lesson

    def update_lesson(self, lesson: Lesson) -> Lesson:
        lessons = self.get_all_lessons()
        for index, existing in enumerate(lessons):
            if existing.id == lesson.id:
                lessons[index] = lesson
                break
        else:
            lessons.append(lesson)
        self.save_lessons(lessons)
        return lesson

    def delete_lesson(self, lesson_id: str) -> bool:
        lessons = self.get_all_lessons()
        remaining = [lesson for lesson in lessons if lesson.id != lesson_id]
        if len(remaining) == len(lessons):
            return False
        self.save_lessons(remaining)
        return True

    def save_lessons(self, lessons: List[Lesson]) -> None:
        self.write(LESSONS_KEY, [lesson.to_dict() for lesson in lessons])

    # Progress and settings

    def get_progress(self) -> Optional[Progress]:
        data = self.read(PROGRESS_KEY)
        return Progress.from_dict(data) if data else None

    def save_progress(self, progress: Progress) -> None:
        self.write(PROGRESS_KEY, progress.to_dict())

    def get_setting(self, key: str, default: Any = None) -> Any:
        self._check_setting_key(key)
        return self.read(key, default)

    def save_setting(self, key: str, value: Any) -> None:
        self._check_setting_key(key)
        self.write(key, value)

    def get_all_settings(self) -> Dict[str, Any]:
        return {key: self.read(key) for key in self.keys() if key not in COLLECTION_KEYS}

    def _check_setting_key(self, key: str) -> None:
        if key in COLLECTION_KEYS:
            raise ValueError(f"{key!r} is reserved for a collection")

    # Snapshots

    def snapshot(self) -> Snapshot:
        return Snapshot(
            words=self.get_all_words(),
            lessons=self.get_all_lessons(),
            progress=self.get_progress(),
            settings=self.get_all_settings(),
        )

    def merge_snapshot(self, snapshot: Snapshot) -> None:
        """Upsert a snapshot, rewriting each blob once."""
        lessons = {lesson.id: lesson for lesson in self.get_all_lessons()}
        lessons.update((lesson.id, lesson) for lesson in snapshot.lessons)
        self.save_lessons(list(lessons.values()))

        words = {word.id: word for word in self.get_all_words()}
        words.update((word.id, word) for word in snapshot.words)
        self.save_words(list(words.values()))

        if snapshot.progress is not None:
            self.save_progress(snapshot.progress)
        for key, value in snapshot.settings.items():
            if value is not None:
                self.save_setting(key, value)

    def import_data(self, data: Mapping[str, Any]) -> Snapshot:
        snapshot = Snapshot.from_dict(data)
        self.merge_snapshot(snapshot)
        logger.info(
            "Imported %d words and %d lessons into the simple store",
            len(snapshot.words),
            len(snapshot.lessons),
        )
        return snapshot

    def size_bytes(self) -> int:
        return sum(self._path(key).stat().st_size for key in self.keys())

    # Legacy helpers

    def has_data(self) -> bool:
        """Check whether any of the known legacy keys is populated."""
        return any(self.has_key(key) for key in LEGACY_KEYS)

    def clear(self) -> None:
        """Remove the known legacy keys."""
        for key in LEGACY_KEYS:
            self.remove(key)
        logger.info("Legacy store cleared: %s", self.directory)
