"""
Custom exception classes for the application.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict


class BridgeIndexerException(Exception):
    """Base exception class for the bridge indexer."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ConfigurationError(BridgeIndexerException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(BridgeIndexerException):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class DuplicateEventError(BridgeIndexerException):
    """Raised when an event with the same (transaction hash, log index) is already stored."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DUPLICATE_EVENT", details)


class RPCError(BridgeIndexerException):
    """
    Raised when a chain RPC call fails.

    For log fetches ``details`` carries ``chain``, ``from_block`` and ``to_block``
    of the range that could not be fetched.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "RPC_ERROR", details)

    @property
    def from_block(self) -> Optional[int]:
        return self.details.get("from_block")

    @property
    def to_block(self) -> Optional[int]:
        return self.details.get("to_block")


class IndexerError(BridgeIndexerException):
    """Raised when there's an event indexer error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INDEXER_ERROR", details)


class SyncError(BridgeIndexerException):
    """Raised when a sync pass for a chain fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SYNC_ERROR", details)


class PluginError(BridgeIndexerException):
    """Raised when an external collaborator (transaction submitter) fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "PLUGIN_ERROR", details)
