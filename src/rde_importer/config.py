"""
Configuration dataclasses for the RDE importer.

This module defines all configuration structures used throughout the system,
including the target registry API, retry logic, import concurrency, extraction
policy, persistence, and logging configuration.

Configuration is resolved once (from a JSON file or from the environment)
and then passed explicitly to every component.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .enums import ExtractionMode
from .exceptions import ConfigurationError


@dataclass
class ApiConfig:
    """Target registry admin API configuration."""

    base_url: str = "http://localhost:8080"
    token: str = ""
    timeout: float = 30.0


@dataclass
class RetryConfig:
    """Retry behavior configuration."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    retryable_status_codes: list[int] = field(
        default_factory=lambda: [408, 429, 500, 502, 503, 504]
    )


@dataclass
class ImportConfig:
    """Import concurrency and gating configuration."""

    workers: int = 10
    chunk_size: int = 100
    allow_errors: bool = False


@dataclass
class ExtractionConfig:
    """Entity extraction policy."""

    mode: ExtractionMode = ExtractionMode.PRESERVE_ROID
    auth_info_placeholder: str = "escr0W1mP*rt"


@dataclass
class PersistenceConfig:
    """Persistence of analysis and import artifacts."""

    output_dir: Optional[Path] = None  # None: next to the deposit file
    hmac_secret: str = "default-secret-change-me"


@dataclass
class LoggingConfig:
    """Logging and audit configuration."""

    level: str = "info"
    audit_mode: bool = False
    audit_signing_key: Optional[str] = None
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    api: ApiConfig = field(default_factory=ApiConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    imports: ImportConfig = field(default_factory=ImportConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    worker_id: int = 1


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(
            code="invalid_env",
            message=f"Environment variable {name} must be an integer, got {raw!r}",
            details={"variable": name},
        )


def load_config_from_env(dotenv_path: Optional[Path] = None) -> SystemConfig:
    """
    Build a SystemConfig from environment variables.

    Reads a .env file first (if present), then:
    RDE_API_HOST, RDE_API_PORT, RDE_API_SCHEME, RDE_API_TOKEN, RDE_API_TIMEOUT,
    RDE_WORKERS, RDE_CHUNK_SIZE, RDE_HMAC_SECRET, RDE_OUTPUT_DIR,
    RDE_LOG_FORMAT, RDE_WORKER_ID.

    Args:
        dotenv_path: Optional explicit path to a .env file

    Returns:
        SystemConfig populated from the environment

    Raises:
        ConfigurationError: If a numeric variable cannot be parsed
    """
    load_dotenv(dotenv_path)

    host = os.getenv("RDE_API_HOST", "localhost")
    port = os.getenv("RDE_API_PORT", "8080")
    scheme = os.getenv("RDE_API_SCHEME", "http")
    timeout_raw = os.getenv("RDE_API_TIMEOUT", "30")
    try:
        timeout = float(timeout_raw)
    except ValueError:
        raise ConfigurationError(
            code="invalid_env",
            message=f"RDE_API_TIMEOUT must be a number, got {timeout_raw!r}",
            details={"variable": "RDE_API_TIMEOUT"},
        )

    output_dir = os.getenv("RDE_OUTPUT_DIR")

    return SystemConfig(
        api=ApiConfig(
            base_url=f"{scheme}://{host}:{port}",
            token=os.getenv("RDE_API_TOKEN", ""),
            timeout=timeout,
        ),
        imports=ImportConfig(
            workers=_env_int("RDE_WORKERS", 10),
            chunk_size=_env_int("RDE_CHUNK_SIZE", 100),
        ),
        persistence=PersistenceConfig(
            output_dir=Path(output_dir) if output_dir else None,
            hmac_secret=os.getenv("RDE_HMAC_SECRET", "default-secret-change-me"),
        ),
        logging=LoggingConfig(
            output_format=os.getenv("RDE_LOG_FORMAT", "text"),
        ),
        worker_id=_env_int("RDE_WORKER_ID", 1),
    )
