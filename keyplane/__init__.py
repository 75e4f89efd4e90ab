from .base import ConfigStore, DeviceBackend, ScriptRunner, NullScriptRunner
from .checksum import compute_checksum, verify_checksum
from .errors import (
    KeyplaneError,
    NotFoundError,
    ValidationError,
    StorageError,
    ParseError,
)
from .registry import SessionRegistry
from .reconciler import StateReconciler, create_reconciler
from .impl.memory import create_memory_config_store
from .impl.files import create_file_config_store
from .impl.sql import create_sql_config_store

__all__ = [
    "ConfigStore",
    "DeviceBackend",
    "ScriptRunner",
    "NullScriptRunner",
    "compute_checksum",
    "verify_checksum",
    "KeyplaneError",
    "NotFoundError",
    "ValidationError",
    "StorageError",
    "ParseError",
    "SessionRegistry",
    "StateReconciler",
    "create_reconciler",
    "create_memory_config_store",
    "create_file_config_store",
    "create_sql_config_store",
]
