"""
RDE Importer - analysis and import of registry data escrow deposits.

This package reads an RFC 9022 escrow deposit, validates and restructures
its objects into create commands, and replays them into a target registry
in an order that satisfies the target's referential integrity.
"""

__version__ = "0.1.0"
__author__ = "RDE Importer Team"

from rde_importer.exceptions import (
    RDEImportError,
    DepositParseError,
    MalformedHeaderError,
    RecordValidationError,
    MappingError,
    UnmappedRegistrarError,
    AmbiguousMappingError,
    ApiError,
    TLDNotFoundError,
    PersistenceError,
    TamperingError,
    AnalysisMismatchError,
    AnalysisRejectedError,
    ConfigurationError,
    IDGeneratorError,
)
from rde_importer.enums import (
    EntityKind,
    LogLevel,
    Severity,
    DiagnosticKind,
    ImportStage,
    StageState,
    CommandOutcome,
    ExtractionMode,
    NNDNState,
    ContactType,
)
from rde_importer.config import (
    ApiConfig,
    RetryConfig,
    ImportConfig,
    ExtractionConfig,
    PersistenceConfig,
    LoggingConfig,
    SystemConfig,
    load_config_from_env,
)
from rde_importer.models import (
    DepositHeader,
    RawRegistrar,
    RawIDNTableRef,
    RawContact,
    RawHost,
    RawDomain,
    RawNNDN,
    CreateContactCommand,
    CreateHostCommand,
    CreateDomainCommand,
    CreateNNDNCommand,
    HostLink,
    Diagnostic,
    RegistrarInfo,
    AnalysisResult,
    EntityCounters,
    ImportFailure,
    ImportResult,
)
from rde_importer.validator import NameValidator, check_status_combination
from rde_importer.deposit_reader import DepositReader
from rde_importer.header_analyzer import HeaderAnalyzer
from rde_importer.registrar_mapper import (
    RegistrarIDMap,
    RegistrarMapper,
    load_override_table,
)
from rde_importer.extractors import (
    ContactExtractor,
    HostExtractor,
    DomainExtractor,
    NNDNExtractor,
    ExtractionOutcome,
)
from rde_importer.cross_reference import find_missing_contacts, unique_referenced_contact_ids
from rde_importer.host_resolver import HostSponsorshipResolver, HostResolution
from rde_importer.analysis_store import (
    AnalysisStore,
    ImportResultStore,
    read_unique_contact_ids,
    write_unique_contact_ids,
)
from rde_importer.chunking import ChunkSequence, chunk_commands
from rde_importer.retry_manager import RetryManager, RetryResult
from rde_importer.registry_client import RegistryAPIClient, CommitOutcome
from rde_importer.id_generator import SnowflakeIDGenerator
from rde_importer.audit_logger import AuditLogger, LogEntry
from rde_importer.analyzer import DepositAnalyzer
from rde_importer.orchestrator import ImportOrchestrator, StageDescriptor, STAGES
from rde_importer.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
)

__all__ = [
    # Version
    "__version__",
    # Exceptions
    "RDEImportError",
    "DepositParseError",
    "MalformedHeaderError",
    "RecordValidationError",
    "MappingError",
    "UnmappedRegistrarError",
    "AmbiguousMappingError",
    "ApiError",
    "TLDNotFoundError",
    "PersistenceError",
    "TamperingError",
    "AnalysisMismatchError",
    "AnalysisRejectedError",
    "ConfigurationError",
    "IDGeneratorError",
    # Enums
    "EntityKind",
    "LogLevel",
    "Severity",
    "DiagnosticKind",
    "ImportStage",
    "StageState",
    "CommandOutcome",
    "ExtractionMode",
    "NNDNState",
    "ContactType",
    # Config
    "ApiConfig",
    "RetryConfig",
    "ImportConfig",
    "ExtractionConfig",
    "PersistenceConfig",
    "LoggingConfig",
    "SystemConfig",
    "load_config_from_env",
    # Models
    "DepositHeader",
    "RawRegistrar",
    "RawIDNTableRef",
    "RawContact",
    "RawHost",
    "RawDomain",
    "RawNNDN",
    "CreateContactCommand",
    "CreateHostCommand",
    "CreateDomainCommand",
    "CreateNNDNCommand",
    "HostLink",
    "Diagnostic",
    "RegistrarInfo",
    "AnalysisResult",
    "EntityCounters",
    "ImportFailure",
    "ImportResult",
    # Validation
    "NameValidator",
    "check_status_combination",
    # Deposit reading
    "DepositReader",
    "HeaderAnalyzer",
    # Registrar mapping
    "RegistrarIDMap",
    "RegistrarMapper",
    "load_override_table",
    # Extraction
    "ContactExtractor",
    "HostExtractor",
    "DomainExtractor",
    "NNDNExtractor",
    "ExtractionOutcome",
    # Cross-reference and host sponsorship
    "find_missing_contacts",
    "unique_referenced_contact_ids",
    "HostSponsorshipResolver",
    "HostResolution",
    # Persistence
    "AnalysisStore",
    "ImportResultStore",
    "read_unique_contact_ids",
    "write_unique_contact_ids",
    # Import
    "ChunkSequence",
    "chunk_commands",
    "RetryManager",
    "RetryResult",
    "RegistryAPIClient",
    "CommitOutcome",
    "SnowflakeIDGenerator",
    "DepositAnalyzer",
    "ImportOrchestrator",
    "StageDescriptor",
    "STAGES",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # CLI
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
]
