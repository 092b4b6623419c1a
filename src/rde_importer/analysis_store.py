"""
Persistence of analysis and import artifacts.

Artifacts are keyed by the deposit file they describe:

- `<deposit-stem>-analysis.json`: the AnalysisResult, written once
- `<deposit-stem>-import.json`: the ImportResult, rewritten after each stage
- `<deposit-stem>-uniqueContactIDs.csv`: one referenced contact ID per line

JSON artifacts use a versioned envelope with an HMAC-SHA256 over the
payload, so a hand-edited analysis cannot silently drive an import.
"""

import hashlib
import hmac
import json
import os
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .config import PersistenceConfig
from .exceptions import AnalysisMismatchError, PersistenceError, TamperingError
from .models import (
    AnalysisResult,
    CreateContactCommand,
    CreateDomainCommand,
    CreateHostCommand,
    CreateNNDNCommand,
    DepositHeader,
    Diagnostic,
    ImportResult,
    RawIDNTableRef,
    RawRegistrar,
    RegistrarInfo,
)

ANALYSIS_SUFFIX = "-analysis.json"
IMPORT_SUFFIX = "-import.json"
CONTACT_IDS_SUFFIX = "-uniqueContactIDs.csv"


def artifact_path(deposit_file: Path, suffix: str, output_dir: Optional[Path] = None) -> Path:
    """Path of an artifact for a deposit: `<dir>/<deposit-stem><suffix>`."""
    deposit_file = Path(deposit_file)
    directory = output_dir if output_dir is not None else deposit_file.parent
    return directory / f"{deposit_file.stem}{suffix}"


def encode_analysis(result: AnalysisResult) -> dict:
    return {
        "analysis_id": result.analysis_id,
        "deposit_file": result.deposit_file,
        "created_at": result.created_at,
        "header": asdict(result.header),
        "registrars": [asdict(r) for r in result.registrars],
        "idn_table_refs": [asdict(r) for r in result.idn_table_refs],
        "registrar_info": {k: asdict(v) for k, v in result.registrar_info.items()},
        "registrar_map": dict(result.registrar_map),
        "contacts": [asdict(c) for c in result.contacts],
        "hosts": [asdict(h) for h in result.hosts],
        "domains": [asdict(d) for d in result.domains],
        "nndns": [asdict(n) for n in result.nndns],
        "diagnostics": [d.to_dict() for d in result.diagnostics],
        "missing_contact_ids": list(result.missing_contact_ids),
        "unique_contact_ids": list(result.unique_contact_ids),
    }


def decode_analysis(data: dict) -> AnalysisResult:
    return AnalysisResult(
        analysis_id=data["analysis_id"],
        deposit_file=data["deposit_file"],
        created_at=data["created_at"],
        header=DepositHeader.from_dict(data["header"]),
        registrars=[RawRegistrar.from_dict(r) for r in data.get("registrars", [])],
        idn_table_refs=[RawIDNTableRef.from_dict(r) for r in data.get("idn_table_refs", [])],
        registrar_info={
            k: RegistrarInfo.from_dict(v) for k, v in data.get("registrar_info", {}).items()
        },
        registrar_map=dict(data.get("registrar_map", {})),
        contacts=[CreateContactCommand.from_dict(c) for c in data.get("contacts", [])],
        hosts=[CreateHostCommand.from_dict(h) for h in data.get("hosts", [])],
        domains=[CreateDomainCommand.from_dict(d) for d in data.get("domains", [])],
        nndns=[CreateNNDNCommand.from_dict(n) for n in data.get("nndns", [])],
        diagnostics=[Diagnostic.from_dict(d) for d in data.get("diagnostics", [])],
        missing_contact_ids=list(data.get("missing_contact_ids", [])),
        unique_contact_ids=list(data.get("unique_contact_ids", [])),
    )


class EnvelopeStore:
    """
    Versioned, HMAC-protected JSON file.

    The HMAC covers version, deposit file and payload, serialized with
    sorted keys and no whitespace.
    """

    VERSION = 1

    def __init__(self, file_path: Path, hmac_secret: str) -> None:
        """
        Initialize the store.

        Args:
            file_path: Path of the JSON artifact
            hmac_secret: Secret key for HMAC computation
        """
        self._file_path = Path(file_path)
        self._hmac_secret = hmac_secret.encode("utf-8")
        self._created_at: Optional[str] = None

    @property
    def file_path(self) -> Path:
        return self._file_path

    def compute_hmac(self, version: int, deposit_file: str, data: dict) -> str:
        serialized = json.dumps(
            {"version": version, "deposit_file": deposit_file, "data": data},
            sort_keys=True,
            separators=(",", ":"),
        )
        return hmac.new(self._hmac_secret, serialized.encode("utf-8"), hashlib.sha256).hexdigest()

    def write_envelope(self, deposit_file: str, data: dict) -> Path:
        """
        Write the envelope atomically.

        Raises:
            PersistenceError: If the file cannot be written
        """
        now = datetime.now(timezone.utc).isoformat()
        if self._created_at is None:
            self._created_at = now
        envelope = {
            "version": self.VERSION,
            "created_at": self._created_at,
            "updated_at": now,
            "deposit_file": deposit_file,
            "data": data,
            "hmac": self.compute_hmac(self.VERSION, deposit_file, data),
        }

        tmp_path = self._file_path.with_name(self._file_path.name + ".tmp")
        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(envelope, f, indent=2, sort_keys=True, ensure_ascii=False)
            os.replace(tmp_path, self._file_path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write {self._file_path}: {e}",
                details={"file_path": str(self._file_path)},
            )
        return self._file_path

    def read_envelope(self) -> dict:
        """
        Read and verify the envelope.

        Raises:
            PersistenceError: If the file is missing, unreadable or unparsable
            TamperingError: If the HMAC does not match
        """
        if not self._file_path.exists():
            raise PersistenceError(
                code="not_found",
                message=f"Artifact not found: {self._file_path}",
                details={"file_path": str(self._file_path)},
            )
        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                envelope = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse {self._file_path}: {e}",
                details={"file_path": str(self._file_path)},
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read {self._file_path}: {e}",
                details={"file_path": str(self._file_path)},
            )

        if not isinstance(envelope, dict) or not isinstance(envelope.get("data"), dict):
            raise PersistenceError(
                code="parse_error",
                message=f"{self._file_path} is not an artifact envelope",
                details={"file_path": str(self._file_path)},
            )

        version = envelope.get("version")
        if version != self.VERSION:
            raise PersistenceError(
                code="unsupported_version",
                message=f"Unsupported artifact version {version!r}",
                details={"file_path": str(self._file_path), "version": version},
            )

        stored_hmac = str(envelope.get("hmac", ""))
        computed = self.compute_hmac(version, envelope.get("deposit_file", ""), envelope["data"])
        if not hmac.compare_digest(stored_hmac, computed):
            raise TamperingError(
                code="hmac_mismatch",
                message="HMAC validation failed - artifact may have been tampered with",
                details={"file_path": str(self._file_path)},
            )
        self._created_at = envelope.get("created_at")
        return envelope


class AnalysisStore(EnvelopeStore):
    """Persists one AnalysisResult per deposit."""

    @classmethod
    def for_deposit(cls, deposit_file: Path, config: PersistenceConfig) -> "AnalysisStore":
        return cls(artifact_path(deposit_file, ANALYSIS_SUFFIX, config.output_dir), config.hmac_secret)

    def save(self, result: AnalysisResult) -> Path:
        return self.write_envelope(result.deposit_file, encode_analysis(result))

    def load(self) -> AnalysisResult:
        envelope = self.read_envelope()
        try:
            return decode_analysis(envelope["data"])
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Analysis artifact {self._file_path} is incomplete: {e}",
                details={"file_path": str(self._file_path)},
            )

    def load_for_deposit(self, deposit_file: Path) -> AnalysisResult:
        """
        Load the analysis and check it was produced for this deposit.

        Raises:
            AnalysisMismatchError: If the analysis names a different deposit file
        """
        result = self.load()
        if Path(result.deposit_file).name != Path(deposit_file).name:
            raise AnalysisMismatchError(
                code="analysis_mismatch",
                message=(
                    f"Analysis {self._file_path} was produced for {result.deposit_file}, "
                    f"not {deposit_file}"
                ),
                details={"analysis_deposit": result.deposit_file, "deposit": str(deposit_file)},
            )
        return result


class ImportResultStore(EnvelopeStore):
    """Persists the ImportResult of the current run; rewritten after every stage."""

    @classmethod
    def for_deposit(cls, deposit_file: Path, config: PersistenceConfig) -> "ImportResultStore":
        return cls(artifact_path(deposit_file, IMPORT_SUFFIX, config.output_dir), config.hmac_secret)

    def save(self, result: ImportResult) -> Path:
        return self.write_envelope(result.deposit_file, asdict(result))

    def load(self) -> ImportResult:
        envelope = self.read_envelope()
        try:
            return ImportResult.from_dict(envelope["data"])
        except (KeyError, TypeError) as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Import artifact {self._file_path} is incomplete: {e}",
                details={"file_path": str(self._file_path)},
            )


def write_unique_contact_ids(path: Path, contact_ids: list[str]) -> Path:
    """
    Write contact IDs, sorted, one per line.

    The file is a side artifact for operators. The pipeline itself checks
    missing contacts against the in-memory set on the analysis result and
    never reads it back.

    Raises:
        PersistenceError: If the file cannot be written
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="\n") as f:
            for contact_id in sorted(set(contact_ids)):
                f.write(f"{contact_id}\n")
    except OSError as e:
        raise PersistenceError(
            code="io_error",
            message=f"Failed to write {path}: {e}",
            details={"file_path": str(path)},
        )
    return path


def read_unique_contact_ids(path: Path) -> list[str]:
    """Read a file written by `write_unique_contact_ids`, for operator tooling."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return [line.strip() for line in f if line.strip()]
    except OSError as e:
        raise PersistenceError(
            code="io_error",
            message=f"Failed to read {path}: {e}",
            details={"file_path": str(path)},
        )
