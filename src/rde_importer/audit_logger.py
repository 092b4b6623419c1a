"""
Audit logging for analysis and import runs.

Structured log entries are written as JSON lines, as human-readable text,
or both. Secrets such as the API token are masked before an entry is
stored or written, and audit mode signs every entry with HMAC-SHA256 so
that an import log can be verified after the fact.
"""

import hashlib
import hmac
import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, TextIO

from .config import LoggingConfig
from .enums import LogLevel

LEVEL_ORDER = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.WARN: 2,
    LogLevel.ERROR: 3,
}


@dataclass
class LogEntry:
    """A single log entry with all metadata."""

    timestamp: str
    level: LogLevel
    component: str
    message: str
    data: dict = field(default_factory=dict)
    signature: Optional[str] = None

    def signable(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "component": self.component,
            "message": self.message,
            "data": self.data,
        }


class AuditLogger:
    """
    Structured logger shared by every pipeline component.

    Supports:
    - JSON, text, or both output formats
    - A minimum level below which entries are dropped
    - Masking of sensitive values (tokens, secrets, auth info)
    - Audit mode with HMAC-SHA256 signing of entries
    """

    SENSITIVE_KEYS = frozenset({
        'token', 'secret', 'password', 'authorization', 'auth_info',
        'api_key', 'signing_key', 'bearer', 'credential',
    })

    MASK_VALUE = "***MASKED***"

    def __init__(
        self,
        output_format: str = "text",
        output_stream: Optional[TextIO] = None,
        min_level: LogLevel = LogLevel.INFO,
    ):
        """
        Initialize the audit logger.

        Args:
            output_format: 'json', 'text', or 'both'
            output_stream: Where entries are written (defaults to sys.stderr)
            min_level: Entries below this level are discarded
        """
        if output_format not in ("json", "text", "both"):
            raise ValueError(f"Invalid output_format: {output_format}")

        self._output_format = output_format
        self._output_stream = output_stream or sys.stderr
        self._min_level = min_level
        self._signing_key: Optional[bytes] = None
        self._entries: list[LogEntry] = []

    @classmethod
    def from_config(cls, config: LoggingConfig, output_stream: Optional[TextIO] = None) -> "AuditLogger":
        """Build a logger from LoggingConfig, enabling audit mode when configured."""
        try:
            min_level = LogLevel(config.level.lower())
        except ValueError:
            raise ValueError(f"Invalid log level: {config.level}")
        logger = cls(
            output_format=config.output_format,
            output_stream=output_stream,
            min_level=min_level,
        )
        if config.audit_mode:
            logger.enable_audit_mode(config.audit_signing_key or "")
        return logger

    @property
    def audit_mode(self) -> bool:
        return self._signing_key is not None

    @property
    def entries(self) -> list[LogEntry]:
        """All entries logged so far."""
        return self._entries.copy()

    def enable_audit_mode(self, signing_key: str) -> None:
        if not signing_key:
            raise ValueError("Signing key cannot be empty")
        self._signing_key = signing_key.encode("utf-8")

    def log(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Record an entry and write it in the configured format(s).

        Returns:
            The stored LogEntry, or None if it was below the minimum level
        """
        if LEVEL_ORDER[level] < LEVEL_ORDER[self._min_level]:
            return None

        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            component=component,
            message=message,
            data=self.mask_sensitive_data(data or {}),
        )
        if self._signing_key is not None:
            entry.signature = self._sign(entry)

        self._entries.append(entry)
        self._write(entry)
        return entry

    def log_error(
        self,
        component: str,
        message: str,
        error: Optional[Exception] = None,
        additional_data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """Log an error with the exception's type and structured details."""
        data = dict(additional_data or {})
        if error is not None:
            data["error_type"] = type(error).__name__
            data["error_message"] = str(error)
            to_dict = getattr(error, "to_dict", None)
            if callable(to_dict):
                data["error"] = to_dict()
        return self.log(LogLevel.ERROR, component, message, data)

    def mask_sensitive_data(self, data: dict) -> dict:
        """Return a copy of data with sensitive values masked, recursively."""
        masked = {}
        for key, value in data.items():
            if any(s in str(key).lower() for s in self.SENSITIVE_KEYS):
                masked[key] = self.MASK_VALUE
            elif isinstance(value, dict):
                masked[key] = self.mask_sensitive_data(value)
            elif isinstance(value, list):
                masked[key] = [
                    self.mask_sensitive_data(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                masked[key] = value
        return masked

    def _sign(self, entry: LogEntry) -> str:
        content = json.dumps(entry.signable(), sort_keys=True, ensure_ascii=False, default=str)
        return hmac.new(self._signing_key, content.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify_signature(self, entry: LogEntry) -> bool:
        if not entry.signature or self._signing_key is None:
            return False
        return hmac.compare_digest(entry.signature, self._sign(entry))

    def _write(self, entry: LogEntry) -> None:
        if self._output_format in ("json", "both"):
            self._output_stream.write(self.format_json(entry) + "\n")
        if self._output_format in ("text", "both"):
            self._output_stream.write(self.format_text(entry) + "\n")
        self._output_stream.flush()

    def format_json(self, entry: LogEntry) -> str:
        obj = entry.signable()
        if entry.signature:
            obj["signature"] = entry.signature
        return json.dumps(obj, ensure_ascii=False, default=str)

    def format_text(self, entry: LogEntry) -> str:
        # [TIMESTAMP] LEVEL [COMPONENT] MESSAGE {data}
        parts = [
            f"[{entry.timestamp}]",
            entry.level.value.upper(),
            f"[{entry.component}]",
            entry.message,
        ]
        if entry.data:
            parts.append(json.dumps(entry.data, ensure_ascii=False, default=str))
        text = " ".join(parts)
        if entry.signature:
            text += f" [sig:{entry.signature[:16]}...]"
        return text
