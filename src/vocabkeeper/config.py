"""Configuration settings for the vocabulary storage layer."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Define base directory
BASE_DIR = Path(__file__).parent.parent.parent

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Define data directories from environment variables
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
LEGACY_DIR = Path(os.getenv("LEGACY_DIR", str(DATA_DIR / "legacy")))
BACKUP_DIR = Path(os.getenv("BACKUP_DIR", str(DATA_DIR / "backups")))

# Storage backends
STRUCTURED_BACKEND = "structured"
SIMPLE_BACKEND = "simple"
STORAGE_BACKENDS = (STRUCTURED_BACKEND, SIMPLE_BACKEND)

# Backup settings
AUTO_BACKUP_KEEP = 5  # automatic backups kept by the retention policy


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def ensure_directories(paths: Optional["PathSettings"] = None) -> None:
    """Ensure all required directories exist."""
    directories = [
        paths.data_dir if paths else DATA_DIR,
        paths.backup_dir if paths else BACKUP_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


@dataclass
class PathSettings:
    """Path configuration settings."""
    base_dir: Path = BASE_DIR
    data_dir: Path = DATA_DIR
    legacy_dir: Path = LEGACY_DIR
    backup_dir: Path = BACKUP_DIR


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'vocabulary.db'}")
    echo: bool = _env_flag("DATABASE_ECHO", "false")


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class StorageSettings:
    """Backend selection and migration settings."""
    preferred_backend: str = os.getenv("STORAGE_BACKEND", STRUCTURED_BACKEND)
    auto_migrate: bool = _env_flag("AUTO_MIGRATE", "true")
    clear_legacy_after_migration: bool = _env_flag("CLEAR_LEGACY_AFTER_MIGRATION", "false")


@dataclass
class BackupSettings:
    """Backup and retention settings."""
    keep_automatic: int = int(os.getenv("AUTO_BACKUP_KEEP", str(AUTO_BACKUP_KEEP)))
    auto_backup_interval_hours: float = float(os.getenv("AUTO_BACKUP_INTERVAL_HOURS", "24"))
    auto_backup_on_save: bool = _env_flag("AUTO_BACKUP_ON_SAVE", "true")


@dataclass
class MonitoringSettings:
    """Metrics exporter settings."""
    port: Optional[int] = int(os.getenv("METRICS_PORT")) if os.getenv("METRICS_PORT") else None


def get_path_settings() -> PathSettings:
    """Get path settings."""
    return PathSettings()


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_storage_settings() -> StorageSettings:
    """Get storage settings."""
    return StorageSettings()


def get_backup_settings() -> BackupSettings:
    """Get backup settings."""
    return BackupSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    paths: PathSettings = field(default_factory=get_path_settings)
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    storage: StorageSettings = field(default_factory=get_storage_settings)
    backup: BackupSettings = field(default_factory=get_backup_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if self.storage.preferred_backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}"
            )

        if not self.database.url:
            raise ValueError("DATABASE_URL is required")

        if self.backup.keep_automatic < 1:
            raise ValueError("AUTO_BACKUP_KEEP must be positive")

        if self.backup.auto_backup_interval_hours < 0:
            raise ValueError("AUTO_BACKUP_INTERVAL_HOURS cannot be negative")


# Create global settings instance
settings = Settings()
settings.validate()
