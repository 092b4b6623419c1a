"""
Registrar mapping: deposit registrar IDs to target client identifiers.

The map is partial. Looking up an unmapped registrar raises
UnmappedRegistrarError; there is no fallback value. Adding a mapping is
idempotent for the same target and raises AmbiguousMappingError for a
different one.

Targets come from a resolver (normally the registry API, looked up by IANA
GurID). An operator override table can only add to what the resolver found;
an override that disagrees with a resolved target is an ambiguous mapping.
"""

import csv
import json
from pathlib import Path
from typing import Optional, Protocol

from .audit_logger import AuditLogger
from .enums import DiagnosticKind, EntityKind, LogLevel, Severity
from .exceptions import (
    AmbiguousMappingError,
    ConfigurationError,
    RDEImportError,
    UnmappedRegistrarError,
)
from .models import Diagnostic, RawRegistrar, RegistrarInfo


class RegistrarIDMap:
    """Partial mapping from source registrar ID to target client ID."""

    def __init__(self, mapping: Optional[dict[str, str]] = None) -> None:
        self._forward: dict[str, str] = {}
        self._reverse: dict[str, set[str]] = {}
        for source, target in (mapping or {}).items():
            self.add(source, target)

    def add(self, source_id: str, target_clid: str) -> None:
        """
        Record a mapping.

        Raises:
            AmbiguousMappingError: If source_id is already mapped elsewhere
        """
        existing = self._forward.get(source_id)
        if existing == target_clid:
            return
        if existing is not None:
            raise AmbiguousMappingError(
                code="ambiguous_mapping",
                message=f"Registrar {source_id!r} is mapped to {existing!r}, refusing {target_clid!r}",
                details={"source_id": source_id, "existing": existing, "requested": target_clid},
            )
        self._forward[source_id] = target_clid
        self._reverse.setdefault(target_clid, set()).add(source_id)

    def resolve(self, source_id: str) -> str:
        """
        Return the target client ID for a source registrar.

        Raises:
            UnmappedRegistrarError: If the registrar has no mapping
        """
        try:
            return self._forward[source_id]
        except KeyError:
            raise UnmappedRegistrarError(
                code="unmapped_registrar",
                message=f"Registrar {source_id!r} has no mapping",
                details={"source_id": source_id},
            )

    def get(self, source_id: str) -> Optional[str]:
        return self._forward.get(source_id)

    def sources_for(self, target_clid: str) -> list[str]:
        """All source IDs that map to a target, sorted."""
        return sorted(self._reverse.get(target_clid, ()))

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._forward

    def __len__(self) -> int:
        return len(self._forward)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, RegistrarIDMap) and self._forward == other._forward

    def to_dict(self) -> dict[str, str]:
        return dict(sorted(self._forward.items()))


class RegistrarResolver(Protocol):
    """Looks up the target client ID of a deposit registrar."""

    async def resolve_registrar(self, registrar: RawRegistrar, tld: str) -> Optional[str]:
        """Return the target clid, or None if the registrar is unknown."""
        ...


def load_override_table(path: Path) -> dict[str, str]:
    """
    Load an operator override table.

    CSV files hold `source_id,target_clid` rows (an optional header row with
    exactly those names is skipped). JSON files hold a single object
    `{source_id: target_clid}`.

    Raises:
        ConfigurationError: If the file cannot be read or parsed
        AmbiguousMappingError: If a source ID appears twice with different targets
    """
    table = RegistrarIDMap()
    try:
        if path.suffix.lower() == ".json":
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ConfigurationError(
                    code="invalid_override_table",
                    message=f"Override table {path} must be a JSON object",
                    details={"path": str(path)},
                )
            for source, target in data.items():
                table.add(str(source), str(target))
        else:
            with open(path, "r", encoding="utf-8", newline="") as f:
                for row in csv.reader(f):
                    if not row or row[0].startswith("#"):
                        continue
                    if [c.strip() for c in row] == ["source_id", "target_clid"]:
                        continue
                    if len(row) != 2:
                        raise ConfigurationError(
                            code="invalid_override_table",
                            message=f"Override row must have two columns: {row!r}",
                            details={"path": str(path)},
                        )
                    table.add(row[0].strip(), row[1].strip())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            code="invalid_override_table",
            message=f"Failed to load override table {path}: {e}",
            details={"path": str(path)},
        )
    return table.to_dict()


class RegistrarMapper:
    """
    Builds the RegistrarIDMap for a deposit.

    Resolution failures become diagnostics; they never abort the mapping
    run. A registrar that cannot be resolved but sponsors no objects is only
    logged.
    """

    COMPONENT = "RegistrarMapper"

    def __init__(
        self,
        resolver: Optional[RegistrarResolver] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._resolver = resolver
        self._logger = logger

    async def build(
        self,
        registrars: list[RawRegistrar],
        tld: str,
        registrar_info: Optional[dict[str, RegistrarInfo]] = None,
        overrides: Optional[dict[str, str]] = None,
    ) -> tuple[RegistrarIDMap, list[Diagnostic]]:
        """
        Map every deposit registrar.

        Each registrar is looked up through the resolver first. An override
        row then only adds: it fills in a registrar the resolver could not
        map, repeats an equal mapping as a no-op, and is refused when it
        names a different target than the resolved one.

        Args:
            registrars: Registrars read from the deposit
            tld: The deposit's TLD
            registrar_info: Per-registrar object counters; target_clid is
                filled in for each mapped registrar
            overrides: Operator table {source_id: target_clid}

        Returns:
            Tuple of (RegistrarIDMap, diagnostics)

        Raises:
            AmbiguousMappingError: If an override disagrees with a resolved
                mapping, or the overrides themselves conflict
        """
        info = registrar_info if registrar_info is not None else {}
        overrides = overrides or {}
        id_map = RegistrarIDMap()
        diagnostics: list[Diagnostic] = []

        for registrar in registrars:
            counters = info.setdefault(
                registrar.id, RegistrarInfo(name=registrar.name, gurid=registrar.gurid)
            )

            target: Optional[str] = None
            reason = "no resolver configured"
            if self._resolver is not None:
                try:
                    target = await self._resolver.resolve_registrar(registrar, tld)
                    reason = "not found in target registry"
                except RDEImportError as e:
                    reason = e.message
                    self._log_error(f"Lookup failed for registrar {registrar.id}", e)

            if target is not None:
                id_map.add(registrar.id, target)
            if registrar.id in overrides:
                id_map.add(registrar.id, overrides[registrar.id])

            if registrar.id in id_map:
                counters.target_clid = id_map.resolve(registrar.id)
                continue

            if counters.object_count == 0:
                self._log(
                    LogLevel.INFO,
                    f"Registrar {registrar.id} (GurID {registrar.gurid}) not mapped, "
                    "but it sponsors no objects; skipping",
                )
                continue

            diagnostics.append(Diagnostic(
                kind=DiagnosticKind.UNMAPPED_REGISTRAR,
                severity=Severity.ERROR,
                message=(
                    f"Registrar {registrar.id} ({registrar.name}, GurID {registrar.gurid}) "
                    f"could not be mapped: {reason}. It sponsors {counters.domain_count} domains, "
                    f"{counters.host_count} hosts and {counters.contact_count} contacts"
                ),
                entity_kind=EntityKind.REGISTRAR,
                subject=registrar.id,
            ))

        # Rows for registrars the deposit does not declare
        for source, target in overrides.items():
            id_map.add(source, target)

        self._log(
            LogLevel.INFO,
            f"Mapped {len(id_map)} of {len(registrars)} registrars",
            {"unmapped": [d.subject for d in diagnostics]},
        )
        return id_map, diagnostics

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    def _log_error(self, message: str, error: Exception) -> None:
        if self._logger:
            self._logger.log_error(self.COMPONENT, message, error)
