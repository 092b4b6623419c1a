"""
Exception classes for the RDE importer.

All exceptions inherit from RDEImportError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class RDEImportError(Exception):
    """Base exception for all RDE importer errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class DepositParseError(RDEImportError):
    """Raised when the deposit file is not well-formed XML or cannot be read."""

    pass


class MalformedHeaderError(DepositParseError):
    """Raised when the deposit header is absent or carries non-numeric counts."""

    pass


class RecordValidationError(RDEImportError):
    """Raised when a single raw record cannot be turned into a create command."""

    pass


class MappingError(RDEImportError):
    """Base for registrar mapping failures."""

    pass


class UnmappedRegistrarError(MappingError):
    """Raised when a source registrar ID has no target in the mapping."""

    pass


class AmbiguousMappingError(MappingError):
    """Raised when a source registrar ID would map to two different targets."""

    pass


class ApiError(RDEImportError):
    """Raised when the target registry API rejects or fails a request."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(code, message, details)
        self.status_code = status_code


class TLDNotFoundError(ApiError):
    """Raised when the deposit's TLD does not exist in the target registry."""

    pass


class PersistenceError(RDEImportError):
    """Raised when persistence operations fail (file I/O, HMAC validation)."""

    pass


class TamperingError(PersistenceError):
    """Raised when HMAC validation fails, indicating data tampering."""

    pass


class AnalysisMismatchError(PersistenceError):
    """Raised when an analysis artifact belongs to a different deposit file."""

    pass


class AnalysisRejectedError(RDEImportError):
    """Raised when an analysis with error diagnostics is handed to an import."""

    pass


class ConfigurationError(RDEImportError):
    """Raised when configuration is missing or invalid."""

    pass


class IDGeneratorError(ConfigurationError):
    """Raised when the ID generator cannot be initialized."""

    pass
