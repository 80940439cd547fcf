"""Test configuration."""
import os
from pathlib import Path
from typing import Callable, Generator

import pytest
from dotenv import load_dotenv
from faker import Faker

# Set test environment before any imports
os.environ["ENV"] = "test"

# Load test environment variables
test_env_path = Path(__file__).parents[3] / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from vocabkeeper.config import (
    BackupSettings,
    DatabaseSettings,
    LoggingSettings,
    MonitoringSettings,
    PathSettings,
    Settings,
    StorageSettings,
)
from vocabkeeper.models.entities import Category, Lesson, Progress, Word
from vocabkeeper.storage.simple_store import SimpleStore
from vocabkeeper.storage.structured_store import StructuredStore

fake = Faker()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings pointing every path at a temporary directory."""
    return Settings(
        paths=PathSettings(
            base_dir=tmp_path,
            data_dir=tmp_path,
            legacy_dir=tmp_path / "legacy",
            backup_dir=tmp_path / "backups",
        ),
        database=DatabaseSettings(url=f"sqlite:///{tmp_path / 'vocabulary.db'}", echo=False),
        logging=LoggingSettings(level="DEBUG", dir=None),
        storage=StorageSettings(
            preferred_backend="structured",
            auto_migrate=True,
            clear_legacy_after_migration=False,
        ),
        backup=BackupSettings(
            keep_automatic=5,
            auto_backup_interval_hours=24,
            auto_backup_on_save=False,
        ),
        monitoring=MonitoringSettings(port=None),
    )


@pytest.fixture
def simple_store(test_settings: Settings) -> SimpleStore:
    """Create an empty simple store."""
    return SimpleStore(test_settings.paths.legacy_dir)


@pytest.fixture
def structured_store(test_settings: Settings) -> Generator[StructuredStore, None, None]:
    """Create an opened structured store on a fresh SQLite file."""
    store = StructuredStore.from_settings(test_settings)
    store.open()
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def make_lesson() -> Callable[..., Lesson]:
    """Factory for lessons with fake content."""
    def factory(**overrides) -> Lesson:
        values = {
            "name": fake.unique.word().title(),
            "description": fake.sentence(),
            "color": fake.random_element(["blue", "green", "red", "purple"]),
        }
        values.update(overrides)
        return Lesson(**values)

    return factory


@pytest.fixture
def make_word() -> Callable[..., Word]:
    """Factory for words with fake content."""
    def factory(**overrides) -> Word:
        values = {
            "english": fake.word(),
            "vietnamese": fake.word(),
            "example": fake.sentence(),
            "category": fake.random_element(list(Category)),
        }
        values.update(overrides)
        return Word(**values)

    return factory


@pytest.fixture
def sample_progress() -> Progress:
    """Progress after a couple of practice sessions."""
    progress = Progress(total_words=12)
    progress.add_session(10, 7, ["w1", "w2"])
    progress.add_session(5, 5, ["w3"])
    return progress
