"""Domain objects shared by both storage backends.

The JSON form of every object uses the camelCase field names of the export
document, so that exports, backups and the legacy store share one schema.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
PROGRESS_TYPE = "quiz"

# Well-known setting keys
CURRENT_LESSON_SETTING = "currentLessonId"
PRACTICE_LESSONS_SETTING = "selectedPracticeLessons"

WORD_KEYS = (
    "id", "english", "vietnamese", "example", "category",
    "lessonId", "addedDate", "reviewed", "lastReviewed",
)
LESSON_KEYS = ("id", "name", "description", "color", "createdDate")
PROGRESS_KEYS = ("totalQuestions", "correctAnswers", "totalWords", "learnedWords")


class Category(str, Enum):
    """Word categories."""
    GENERAL = "general"
    NOUN = "noun"
    VERB = "verb"
    ADJECTIVE = "adjective"
    ADVERB = "adverb"

    @classmethod
    def parse(cls, value: Any) -> "Category":
        """Parse a category, falling back to GENERAL for unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            logger.warning("Unknown word category %r, using %s", value, cls.GENERAL.value)
            return cls.GENERAL


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO string, epoch milliseconds or datetime into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, (int, float)):
        result = datetime.fromtimestamp(value / 1000, UTC)
    else:
        result = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if result.tzinfo is None:
        result = result.replace(tzinfo=UTC)
    return result.astimezone(UTC)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as an ISO-8601 string."""
    return value.isoformat() if value is not None else None


def new_word_id() -> str:
    """Generate a word id. Ids are random and never reused."""
    return uuid.uuid4().hex


def new_lesson_id() -> str:
    """Generate a lesson id; the prefix keeps it apart from word ids."""
    return f"lesson-{uuid.uuid4().hex[:12]}"


def normalize_id(value: Any) -> Optional[str]:
    """Normalize legacy numeric ids to their text form."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _extra(data: Mapping[str, Any], known: Iterable[str]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if key not in known}


@dataclass
class Word:
    """A vocabulary entry."""
    english: str
    vietnamese: str
    lesson_id: Optional[str] = None
    example: Optional[str] = ""
    category: Category = Category.GENERAL
    id: str = field(default_factory=new_word_id)
    added_date: datetime = field(default_factory=utcnow)
    reviewed: int = 0
    last_reviewed: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "english": self.english,
            "vietnamese": self.vietnamese,
            "example": self.example,
            "category": Category.parse(self.category).value,
            "lessonId": self.lesson_id,
            "addedDate": format_timestamp(self.added_date),
            "reviewed": self.reviewed,
            "lastReviewed": format_timestamp(self.last_reviewed),
        })
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Word":
        return cls(
            id=normalize_id(data.get("id")) or new_word_id(),
            english=data.get("english", ""),
            vietnamese=data.get("vietnamese", ""),
            example=data.get("example", ""),
            category=Category.parse(data.get("category") or Category.GENERAL.value),
            lesson_id=normalize_id(data.get("lessonId")),
            added_date=parse_timestamp(data.get("addedDate")) or utcnow(),
            reviewed=int(data.get("reviewed") or 0),
            last_reviewed=parse_timestamp(data.get("lastReviewed")),
            extra=_extra(data, WORD_KEYS),
        )


@dataclass
class Lesson:
    """A named group of words."""
    name: str
    description: Optional[str] = ""
    color: str = "blue"
    id: str = field(default_factory=new_lesson_id)
    created_date: datetime = field(default_factory=utcnow)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "createdDate": format_timestamp(self.created_date),
        })
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Lesson":
        return cls(
            id=normalize_id(data.get("id")) or new_lesson_id(),
            name=data.get("name", ""),
            description=data.get("description", ""),
            color=data.get("color") or "blue",
            created_date=parse_timestamp(data.get("createdDate")) or utcnow(),
            extra=_extra(data, LESSON_KEYS),
        )


@dataclass
class Progress:
    """Quiz progress singleton, updated additively after each session."""
    total_questions: int = 0
    correct_answers: int = 0
    total_words: int = 0
    learned_words: Set[str] = field(default_factory=set)
    extra: Dict[str, Any] = field(default_factory=dict)

    def add_session(self, questions: int, correct: int, learned: Iterable[Any] = ()) -> None:
        """Add the results of one completed practice session."""
        self.total_questions += questions
        self.correct_answers += correct
        self.learned_words.update(normalize_id(word_id) for word_id in learned)

    @property
    def accuracy(self) -> float:
        if not self.total_questions:
            return 0.0
        return self.correct_answers / self.total_questions

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "totalQuestions": self.total_questions,
            "correctAnswers": self.correct_answers,
            "totalWords": self.total_words,
            "learnedWords": sorted(self.learned_words),
        })
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Progress":
        return cls(
            total_questions=int(data.get("totalQuestions") or 0),
            correct_answers=int(data.get("correctAnswers") or 0),
            total_words=int(data.get("totalWords") or 0),
            learned_words={normalize_id(word_id) for word_id in data.get("learnedWords") or []},
            extra=_extra(data, PROGRESS_KEYS),
        )


@dataclass
class Snapshot:
    """Full copy of the four live collections."""
    words: List[Word] = field(default_factory=list)
    lessons: List[Lesson] = field(default_factory=list)
    progress: Optional[Progress] = None
    settings: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "words": [word.to_dict() for word in self.words],
            "lessons": [lesson.to_dict() for lesson in self.lessons],
            "progress": self.progress.to_dict() if self.progress is not None else None,
            "settings": dict(self.settings),
        }

    def to_export(self, storage_type: str, export_date: Optional[datetime] = None) -> Dict[str, Any]:
        """Build the export document."""
        data = self.to_dict()
        data["settings"].setdefault(CURRENT_LESSON_SETTING, None)
        data["settings"].setdefault(PRACTICE_LESSONS_SETTING, {})
        data["exportDate"] = format_timestamp(export_date or utcnow())
        data["storageType"] = storage_type
        data["version"] = FORMAT_VERSION
        return data

    def stats(self) -> Dict[str, Any]:
        return {
            "words": len(self.words),
            "lessons": len(self.lessons),
            "has_progress": self.progress is not None,
            "settings": len(self.settings),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snapshot":
        """Parse an export document, a backup payload or a legacy backup file."""
        if "words" not in data and isinstance(data.get("data"), Mapping):
            data = data["data"]
        progress = data.get("progress")
        return cls(
            words=[Word.from_dict(word) for word in data.get("words") or []],
            lessons=[Lesson.from_dict(lesson) for lesson in data.get("lessons") or []],
            progress=Progress.from_dict(progress) if progress else None,
            settings=dict(data.get("settings") or {}),
        )


@dataclass
class Backup:
    """Immutable, timestamped snapshot stored by the structured backend."""
    id: Optional[int]
    timestamp: datetime
    description: str
    data: Snapshot
    format_version: int = FORMAT_VERSION
    automatic: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": format_timestamp(self.timestamp),
            "description": self.description,
            "data": self.data.to_dict(),
            "formatVersion": self.format_version,
            "automatic": self.automatic,
        }

    def summary(self) -> Dict[str, Any]:
        """Backup metadata without the payload."""
        return {
            "id": self.id,
            "timestamp": format_timestamp(self.timestamp),
            "description": self.description,
            "automatic": self.automatic,
            "words": len(self.data.words),
            "lessons": len(self.data.lessons),
        }
