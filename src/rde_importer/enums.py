"""
Enumeration types for the RDE importer.

These enums provide type-safe constants for entity kinds, diagnostics,
import stages and command outcomes throughout the system.
"""

from enum import Enum


class EntityKind(Enum):
    """Kind of object carried in an escrow deposit."""

    REGISTRAR = "registrar"
    IDN_TABLE_REF = "idnTableRef"
    CONTACT = "contact"
    HOST = "host"
    DOMAIN = "domain"
    NNDN = "nndn"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class Severity(Enum):
    """Severity of an analysis diagnostic."""

    WARNING = "warning"
    ERROR = "error"


class DiagnosticKind(Enum):
    """What an analysis diagnostic is about."""

    COUNT_MISMATCH = "count_mismatch"
    INVALID_RECORD = "invalid_record"
    UNMAPPED_REGISTRAR = "unmapped_registrar"
    MISSING_CONTACT = "missing_contact"
    UNLINKED_CONTACT = "unlinked_contact"
    UNLINKED_HOST = "unlinked_host"
    STATUS_FIX_APPLIED = "status_fix_applied"
    HOST_DUPLICATED = "host_duplicated"


class ImportStage(Enum):
    """Import stages, in the order they are committed."""

    REGISTRARS = "registrars"
    CONTACTS = "contacts"
    NNDN = "nndn"
    HOSTS = "hosts"
    DOMAINS = "domains"
    LINK_HOSTS_TO_DOMAINS = "link_hosts_to_domains"


class StageState(Enum):
    """How a stage ended."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    ABORTED = "aborted"


class CommandOutcome(Enum):
    """Result of submitting a single command to the target registry."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"
    SKIPPED_DEPENDENCY = "skipped_dependency"


class ExtractionMode(Enum):
    """Whether source ROIDs are carried into create commands."""

    PRESERVE_ROID = "preserve_roid"
    DISCARD_ROID = "discard_roid"


class NNDNState(Enum):
    """Name state of a non-domain-name entry."""

    BLOCKED = "blocked"
    WITHHELD = "withheld"
    MIRRORED = "mirrored"


class ContactType(Enum):
    """Role of a contact linked to a domain."""

    ADMIN = "admin"
    TECH = "tech"
    BILLING = "billing"
