"""Exceptions raised by the storage layer."""


class StorageError(Exception):
    """Base class for storage layer errors."""


class BackendUnavailable(StorageError):
    """The structured backend could not be opened or initialized."""


class UnsupportedOperation(StorageError):
    """The active backend does not support the requested operation."""

    def __init__(self, operation: str, backend: str):
        super().__init__(f"{operation} is not supported by the {backend} backend")
        self.operation = operation
        self.backend = backend


class DuplicateId(StorageError):
    """An insert collided with an existing primary key."""

    def __init__(self, collection: str, record_id):
        super().__init__(f"{collection} record {record_id!r} already exists")
        self.collection = collection
        self.record_id = record_id


class RecordNotFound(StorageError):
    """A record required by the operation does not exist."""

    def __init__(self, collection: str, record_id):
        super().__init__(f"{collection} record {record_id!r} not found")
        self.collection = collection
        self.record_id = record_id


class MigrationRefused(StorageError):
    """The structured store already holds data and no override was given."""


class MigrationVerificationMismatch(StorageError):
    """Record counts disagree after copying legacy data."""

    def __init__(self, report):
        super().__init__(f"Migration verification failed: {report.summary()}")
        self.report = report
