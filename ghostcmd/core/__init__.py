"""Core data types and helpers."""

from .errors import BackendError, ConfigError, CredentialMissing, EmptyResult, GhostCmdError
from .sanitize import sanitize
from .session_log import DebugLog

__all__ = [
    "BackendError",
    "ConfigError",
    "CredentialMissing",
    "DebugLog",
    "EmptyResult",
    "GhostCmdError",
    "sanitize",
]
