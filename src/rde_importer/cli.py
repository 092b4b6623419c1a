"""
Command-line interface for the RDE importer.

Commands:
- analyze: Analyze a deposit and write the analysis artifacts
- import: Replay an analysis against the target registry
- config: Configuration management

Exit codes: 0 on success (including partial imports), 1 for configuration
problems, 2 for unreadable input or artifacts, 3 for TLD/API failures.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .analysis_store import (
    CONTACT_IDS_SUFFIX,
    AnalysisStore,
    ImportResultStore,
    artifact_path,
    write_unique_contact_ids,
)
from .analyzer import DepositAnalyzer
from .audit_logger import AuditLogger
from .config import (
    ApiConfig,
    ExtractionConfig,
    ImportConfig,
    LoggingConfig,
    PersistenceConfig,
    RetryConfig,
    SystemConfig,
    load_config_from_env,
)
from .enums import ExtractionMode
from .exceptions import (
    AnalysisRejectedError,
    ApiError,
    ConfigurationError,
    DepositParseError,
    MappingError,
    PersistenceError,
)
from .id_generator import SnowflakeIDGenerator
from .models import AnalysisResult, ImportResult
from .orchestrator import ImportOrchestrator
from .registrar_mapper import load_override_table
from .registry_client import RegistryAPIClient
from .retry_manager import RetryManager

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_INPUT = 2
EXIT_API = 3

DEFAULT_CONFIG_PATH = Path.home() / ".rde_importer" / "config.json"
MAX_LISTED_DIAGNOSTICS = 20


def create_default_config(
    base_url: str = "http://localhost:8080",
    hmac_secret: str = "default-secret-change-me",
) -> SystemConfig:
    """
    Create a default system configuration.

    Args:
        base_url: Target registry API base URL
        hmac_secret: Secret for HMAC protection of artifacts

    Returns:
        SystemConfig with default settings
    """
    return SystemConfig(
        api=ApiConfig(base_url=base_url),
        retry=RetryConfig(),
        imports=ImportConfig(),
        extraction=ExtractionConfig(),
        persistence=PersistenceConfig(hmac_secret=hmac_secret),
        logging=LoggingConfig(level="info", output_format="text"),
    )


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        SystemConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        api_data = data.get("api", {})
        api = ApiConfig(
            base_url=api_data.get("base_url", "http://localhost:8080"),
            token=api_data.get("token", ""),
            timeout=float(api_data.get("timeout", 30.0)),
        )

        retry_data = data.get("retry", {})
        retry = RetryConfig(
            max_retries=retry_data.get("max_retries", 3),
            base_delay_seconds=retry_data.get("base_delay_seconds", 1.0),
            max_delay_seconds=retry_data.get("max_delay_seconds", 60.0),
        )
        if "retryable_status_codes" in retry_data:
            retry.retryable_status_codes = [int(c) for c in retry_data["retryable_status_codes"]]

        imports_data = data.get("imports", {})
        imports = ImportConfig(
            workers=imports_data.get("workers", 10),
            chunk_size=imports_data.get("chunk_size", 100),
            allow_errors=imports_data.get("allow_errors", False),
        )

        extraction_data = data.get("extraction", {})
        extraction = ExtractionConfig(
            mode=ExtractionMode(extraction_data.get("mode", ExtractionMode.PRESERVE_ROID.value)),
            auth_info_placeholder=extraction_data.get("auth_info_placeholder", "escr0W1mP*rt"),
        )

        persistence_data = data.get("persistence", {})
        output_dir = persistence_data.get("output_dir")
        persistence = PersistenceConfig(
            output_dir=Path(output_dir) if output_dir else None,
            hmac_secret=persistence_data.get("hmac_secret", "default-secret-change-me"),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", "info"),
            audit_mode=logging_data.get("audit_mode", False),
            audit_signing_key=logging_data.get("audit_signing_key"),
            output_format=logging_data.get("output_format", "text"),
        )

        return SystemConfig(
            api=api,
            retry=retry,
            imports=imports,
            extraction=extraction,
            persistence=persistence,
            logging=logging_config,
            worker_id=data.get("worker_id", 1),
        )

    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        config: SystemConfig to save
        config_path: Path to save the configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "api": {
                "base_url": config.api.base_url,
                "token": config.api.token,
                "timeout": config.api.timeout,
            },
            "retry": {
                "max_retries": config.retry.max_retries,
                "base_delay_seconds": config.retry.base_delay_seconds,
                "max_delay_seconds": config.retry.max_delay_seconds,
                "retryable_status_codes": list(config.retry.retryable_status_codes),
            },
            "imports": {
                "workers": config.imports.workers,
                "chunk_size": config.imports.chunk_size,
                "allow_errors": config.imports.allow_errors,
            },
            "extraction": {
                "mode": config.extraction.mode.value,
                "auth_info_placeholder": config.extraction.auth_info_placeholder,
            },
            "persistence": {
                "output_dir": str(config.persistence.output_dir) if config.persistence.output_dir else None,
                "hmac_secret": config.persistence.hmac_secret,
            },
            "logging": {
                "level": config.logging.level,
                "audit_mode": config.logging.audit_mode,
                "audit_signing_key": config.logging.audit_signing_key,
                "output_format": config.logging.output_format,
            },
            "worker_id": config.worker_id,
        }

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        return True

    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def resolve_config(args: argparse.Namespace) -> SystemConfig:
    """
    Configuration for a run: the --config file if given, else the environment.

    Raises:
        ConfigurationError: If the config file cannot be loaded
    """
    if getattr(args, "config", None):
        config = load_config_from_file(Path(args.config))
        if config is None:
            raise ConfigurationError(
                code="config_not_loaded",
                message=f"Could not load config from {args.config}",
                details={"path": args.config},
            )
        return config
    return load_config_from_env()


def print_analysis_summary(result: AnalysisResult, analysis_path: Path) -> None:
    header = result.header
    print(f"Analysis {result.analysis_id} of {result.deposit_file} (TLD {header.tld})")
    print(f"  Registrars: {len(result.registrars)} ({len(result.registrar_map)} mapped)")
    print(f"  Contacts:   {len(result.contacts)} of {header.contact_count} declared")
    print(f"  Hosts:      {len(result.hosts)} of {header.host_count} declared")
    print(f"  Domains:    {len(result.domains)} of {header.domain_count} declared")
    print(f"  NNDNs:      {len(result.nndns)} of {header.nndn_count} declared")
    print(f"  Missing contacts: {len(result.missing_contact_ids)}")
    print(f"  Warnings: {len(result.warnings)}  Errors: {len(result.errors)}")
    for diagnostic in result.errors[:MAX_LISTED_DIAGNOSTICS]:
        print(f"    ERROR {diagnostic.message}")
    if len(result.errors) > MAX_LISTED_DIAGNOSTICS:
        print(f"    ... and {len(result.errors) - MAX_LISTED_DIAGNOSTICS} more")
    print(f"Analysis written to: {analysis_path}")


def print_import_summary(result: ImportResult, import_path: Optional[Path]) -> None:
    print(f"Import run {result.run_id} of {result.deposit_file}")
    for stage in result.stages:
        print(f"  {stage.stage:<24} {stage.state:<10} {stage.message}")
    print(f"  Link present: {result.links.present}  missing: {result.links.missing}")
    print(f"  Failures: {len(result.failures)}  Warnings: {len(result.warnings)}")
    if import_path is not None:
        print(f"Import result written to: {import_path}")


async def analyze_deposit(
    deposit_file: Path,
    config: SystemConfig,
    logger: AuditLogger,
    map_registrars: bool = False,
    overrides_file: Optional[Path] = None,
) -> tuple[AnalysisResult, Path]:
    """
    Analyze a deposit and persist the analysis and contact ID artifacts.

    Returns:
        Tuple of (AnalysisResult, path of the analysis artifact)
    """
    overrides = load_override_table(overrides_file) if overrides_file else None
    id_generator = SnowflakeIDGenerator(config.worker_id)

    async with RegistryAPIClient(config.api, RetryManager(config.retry), logger) as client:
        analyzer = DepositAnalyzer(
            config=config.extraction,
            resolver=client if map_registrars else None,
            logger=logger,
            id_generator=id_generator,
        )
        result = await analyzer.analyze(
            deposit_file, overrides=overrides, map_registrars=map_registrars
        )

    store = AnalysisStore.for_deposit(deposit_file, config.persistence)
    path = store.save(result)
    write_unique_contact_ids(
        artifact_path(deposit_file, CONTACT_IDS_SUFFIX, config.persistence.output_dir),
        result.unique_contact_ids,
    )
    return result, path


async def import_deposit(
    deposit_file: Path,
    analysis_file: Path,
    config: SystemConfig,
    logger: AuditLogger,
) -> tuple[ImportResult, Path]:
    """
    Load a verified analysis and import it.

    Returns:
        Tuple of (ImportResult, path of the import artifact)
    """
    analysis = AnalysisStore(analysis_file, config.persistence.hmac_secret).load_for_deposit(deposit_file)
    store = ImportResultStore.for_deposit(deposit_file, config.persistence)

    async with RegistryAPIClient(config.api, RetryManager(config.retry), logger) as client:
        orchestrator = ImportOrchestrator(
            client=client,
            config=config.imports,
            store=store,
            logger=logger,
            id_generator=SnowflakeIDGenerator(config.worker_id),
        )
        result = await orchestrator.run(analysis, deposit_file.name)
    return result, store.file_path


def _fatal(message: str, error: Exception, logger: Optional[AuditLogger], component: str) -> None:
    if logger:
        logger.log_error(component, message, error)
    print(f"Error: {message}: {error}", file=sys.stderr)


def cmd_analyze(args: argparse.Namespace) -> int:
    """Handle the 'analyze' command."""
    logger = None
    try:
        config = resolve_config(args)
        if args.discard_roids:
            config.extraction.mode = ExtractionMode.DISCARD_ROID
        logger = AuditLogger.from_config(config.logging)
        result, path = asyncio.run(analyze_deposit(
            deposit_file=Path(args.file),
            config=config,
            logger=logger,
            map_registrars=args.map_registrars,
            overrides_file=Path(args.overrides) if args.overrides else None,
        ))
    except (ConfigurationError, MappingError, ValueError) as e:
        _fatal("Invalid configuration", e, logger, "cli.analyze")
        return EXIT_CONFIG
    except (DepositParseError, PersistenceError) as e:
        _fatal("Analysis failed", e, logger, "cli.analyze")
        return EXIT_INPUT

    print_analysis_summary(result, path)
    return EXIT_OK


def cmd_import(args: argparse.Namespace) -> int:
    """Handle the 'import' command."""
    logger = None
    try:
        config = resolve_config(args)
        if args.workers is not None:
            config.imports.workers = args.workers
        if args.chunk_size is not None:
            config.imports.chunk_size = args.chunk_size
        if args.allow_errors:
            config.imports.allow_errors = True
        logger = AuditLogger.from_config(config.logging)
        result, path = asyncio.run(import_deposit(
            deposit_file=Path(args.file),
            analysis_file=Path(args.analysis),
            config=config,
            logger=logger,
        ))
    except (ConfigurationError, ValueError) as e:
        _fatal("Invalid configuration", e, logger, "cli.import")
        return EXIT_CONFIG
    except (PersistenceError, AnalysisRejectedError) as e:
        _fatal("Import refused", e, logger, "cli.import")
        return EXIT_INPUT
    except ApiError as e:
        _fatal("Import aborted", e, logger, "cli.import")
        return EXIT_API

    print_import_summary(result, path)
    return EXIT_OK


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_PATH

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return EXIT_CONFIG

        print(f"Configuration from: {config_path}")
        print(f"  API: {config.api.base_url} (timeout {config.api.timeout}s)")
        print(f"  Token set: {bool(config.api.token)}")
        print(f"  Workers: {config.imports.workers}  Chunk size: {config.imports.chunk_size}")
        print(f"  Extraction mode: {config.extraction.mode.value}")
        print(f"  Output dir: {config.persistence.output_dir or '(next to deposit)'}")
        print(f"  Log level: {config.logging.level}")
        print(f"  Audit mode: {config.logging.audit_mode}")
        return EXIT_OK

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return EXIT_CONFIG

        if save_config_to_file(create_default_config(), config_path):
            print(f"Configuration created at: {config_path}")
            return EXIT_OK
        return EXIT_CONFIG

    return EXIT_CONFIG


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="rde-importer",
        description="Analyze registry data escrow deposits and import them into a registry",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'analyze' command
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Analyze a deposit file",
    )
    analyze_parser.add_argument(
        "--file", "-f",
        required=True,
        help="Path to the escrow deposit XML file",
    )
    analyze_parser.add_argument(
        "--map-registrars",
        action="store_true",
        help="Resolve registrars against the target registry API",
    )
    analyze_parser.add_argument(
        "--overrides",
        help="CSV or JSON table of source_id to target clid mappings",
    )
    analyze_parser.add_argument(
        "--discard-roids",
        action="store_true",
        help="Drop source ROIDs so the target generates new ones",
    )
    analyze_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file (default: environment)",
    )
    analyze_parser.set_defaults(func=cmd_analyze)

    # 'import' command
    import_parser = subparsers.add_parser(
        "import",
        help="Import an analyzed deposit into the target registry",
    )
    import_parser.add_argument(
        "--file", "-f",
        required=True,
        help="Path to the escrow deposit XML file",
    )
    import_parser.add_argument(
        "--analysis", "-a",
        required=True,
        help="Path to the analysis artifact of the deposit",
    )
    import_parser.add_argument(
        "--workers",
        type=int,
        help="Number of concurrent workers",
    )
    import_parser.add_argument(
        "--chunk-size",
        type=int,
        help="Commands per chunk",
    )
    import_parser.add_argument(
        "--allow-errors",
        action="store_true",
        help="Import even if the analysis contains errors",
    )
    import_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file (default: environment)",
    )
    import_parser.set_defaults(func=cmd_import)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
