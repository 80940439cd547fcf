"""Common contract for the storage backends."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

from vocabkeeper.errors import UnsupportedOperation
from vocabkeeper.models.entities import (
    Backup,
    Category,
    Lesson,
    Progress,
    Snapshot,
    Word,
)


class EntityStore(ABC):
    """CRUD over words, lessons, progress and settings.

    Semantics shared by every backend:

    * ``update_*`` upserts: an unknown id is added, not rejected.
    * ``delete_*`` of an unknown id is a no-op.
    * ``save_*`` replaces the whole collection with the given records.
    * ``delete_lesson`` does not delete the lesson's words; callers delete
      them first (see ``StorageService.delete_lesson_cascade``).
    """

    storage_type: str = ""
    supports_backups: bool = False

    def open(self) -> None:
        """Prepare the backend for use."""

    def close(self) -> None:
        """Release backend resources."""

    # Words

    @abstractmethod
    def get_all_words(self) -> List[Word]:
        """Get all words, in no guaranteed order."""

    @abstractmethod
    def get_word(self, word_id: str) -> Optional[Word]:
        """Get a word by its ID."""

    @abstractmethod
    def add_word(self, word: Word) -> Word:
        """Insert a new word."""

    @abstractmethod
    def update_word(self, word: Word) -> Word:
        """Insert or replace a word."""

    @abstractmethod
    def delete_word(self, word_id: str) -> bool:
        """Delete a word. Returns False when it did not exist."""

    @abstractmethod
    def save_words(self, words: List[Word]) -> None:
        """Replace all words."""

    @abstractmethod
    def get_words_by_lesson(self, lesson_id: str) -> List[Word]:
        """Get the words of one lesson."""

    @abstractmethod
    def get_words_by_category(self, category: Category) -> List[Word]:
        """Get the words of one category."""

    # Lessons

    @abstractmethod
    def get_all_lessons(self) -> List[Lesson]:
        """Get all lessons, in no guaranteed order."""

    @abstractmethod
    def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        """Get a lesson by its ID."""

    @abstractmethod
    def add_lesson(self, lesson: Lesson) -> Lesson:
        """Insert a new lesson."""

    @abstractmethod
    def update_lesson(self, lesson: Lesson) -> Lesson:
        """Insert or replace a lesson."""

    @abstractmethod
    def delete_lesson(self, lesson_id: str) -> bool:
        """Delete a lesson. Returns False when it did not exist."""

    @abstractmethod
    def save_lessons(self, lessons: List[Lesson]) -> None:
        """Replace all lessons."""

    # Progress and settings

    @abstractmethod
    def get_progress(self) -> Optional[Progress]:
        """Get the quiz progress."""

    @abstractmethod
    def save_progress(self, progress: Progress) -> None:
        """Overwrite the quiz progress."""

    @abstractmethod
    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get a setting value."""

    @abstractmethod
    def save_setting(self, key: str, value: Any) -> None:
        """Store a setting value."""

    @abstractmethod
    def get_all_settings(self) -> Dict[str, Any]:
        """Get all settings."""

    # Snapshots

    @abstractmethod
    def snapshot(self) -> Snapshot:
        """Read all four live collections."""

    @abstractmethod
    def import_data(self, data: Mapping[str, Any]) -> Snapshot:
        """Merge an export document into the store."""

    @abstractmethod
    def size_bytes(self) -> int:
        """Approximate storage size in bytes."""

    def export_all_data(self) -> Dict[str, Any]:
        """Build an export document of the whole store."""
        return self.snapshot().to_export(self.storage_type)

    def count_words(self) -> int:
        return len(self.get_all_words())

    def count_lessons(self) -> int:
        return len(self.get_all_lessons())

    def merge_snapshot(self, snapshot: Snapshot) -> None:
        """Upsert every record of a snapshot, lessons before words."""
        for lesson in snapshot.lessons:
            self.update_lesson(lesson)
        for word in snapshot.words:
            self.update_word(word)
        if snapshot.progress is not None:
            self.save_progress(snapshot.progress)
        for key, value in snapshot.settings.items():
            if value is not None:
                self.save_setting(key, value)

    # Backups

    def create_backup(self, description: str = "Manual backup", automatic: bool = False) -> Backup:
        raise UnsupportedOperation("create_backup", self.storage_type)

    def create_automatic_backup(self) -> Optional[Backup]:
        raise UnsupportedOperation("create_automatic_backup", self.storage_type)

    def list_backups(self, automatic: Optional[bool] = None) -> List[Backup]:
        raise UnsupportedOperation("list_backups", self.storage_type)

    def get_backup(self, backup_id: int) -> Optional[Backup]:
        raise UnsupportedOperation("get_backup", self.storage_type)

    def delete_backup(self, backup_id: int) -> bool:
        raise UnsupportedOperation("delete_backup", self.storage_type)

    def restore_from_backup(self, backup_id: int) -> Backup:
        raise UnsupportedOperation("restore_from_backup", self.storage_type)
