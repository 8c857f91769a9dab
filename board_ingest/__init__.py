from __future__ import annotations

from .batch import BatchIngestionProcessor, BatchSummary, OutcomeKind
from .config import BatchSettings, batch_settings, config_sha256, load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import (
    ConfigError,
    DuplicateAssociation,
    FetchError,
    IngestError,
    MissingContentError,
    PersistenceError,
)
from .storage import SQLiteDatastore

__all__ = [
    "AppConfig",
    "BatchIngestionProcessor",
    "BatchSettings",
    "BatchSummary",
    "ConfigError",
    "DuplicateAssociation",
    "FetchError",
    "IngestError",
    "MissingContentError",
    "OutcomeKind",
    "PersistenceError",
    "SQLiteDatastore",
    "batch_settings",
    "config_sha256",
    "load_config",
    "resolve_runtime_secrets",
]
