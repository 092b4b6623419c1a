"""
Deposit analysis: one deposit file in, one AnalysisResult out.

The analyzer runs the leaf components in dependency order:

1. header (declared counts and TLD)
2. registrars and IDN table references, with per-registrar object counters
3. contacts, hosts, domains and NNDNs through their extractors
4. unlinked-object checks and count consistency
5. registrar mapping (the resolver, then add-only overrides)
6. cross-reference of contacts, then host sponsorship resolution

Per-record problems become diagnostics; only an unreadable deposit or a
malformed header stops the analysis.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .audit_logger import AuditLogger
from .config import ExtractionConfig
from .cross_reference import (
    find_missing_contacts,
    split_linked_contacts,
    unique_referenced_contact_ids,
)
from .deposit_reader import DepositReader, DepositSource
from .enums import DiagnosticKind, EntityKind, LogLevel, Severity
from .extractors import (
    ContactExtractor,
    DomainExtractor,
    EntityExtractor,
    ExtractionOutcome,
    HostExtractor,
    NNDNExtractor,
)
from .header_analyzer import HeaderAnalyzer
from .host_resolver import HostSponsorshipResolver
from .id_generator import SnowflakeIDGenerator
from .models import AnalysisResult, DepositHeader, Diagnostic, RawRegistrar, RegistrarInfo
from .registrar_mapper import RegistrarIDMap, RegistrarMapper, RegistrarResolver
from .validator import NameValidator

# Extraction failures of these kinds block an import; the rest are warnings
FAILURE_SEVERITY = {
    EntityKind.CONTACT: Severity.ERROR,
    EntityKind.HOST: Severity.WARNING,
    EntityKind.DOMAIN: Severity.ERROR,
    EntityKind.NNDN: Severity.WARNING,
}

CONTACTS_PER_DOMAIN_LIMIT = 4
UNLINKED_HOST_RATIO = 10


class DepositAnalyzer:
    """Builds the AnalysisResult for a deposit."""

    COMPONENT = "DepositAnalyzer"

    def __init__(
        self,
        config: Optional[ExtractionConfig] = None,
        resolver: Optional[RegistrarResolver] = None,
        logger: Optional[AuditLogger] = None,
        id_generator: Optional[SnowflakeIDGenerator] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Initialize the analyzer.

        Args:
            config: Extraction mode and auth info placeholder
            resolver: Registrar lookup, normally the registry API client
            logger: Optional audit logger
            id_generator: Source of the analysis ID
            now: Reference time for expiry checks (defaults to the current time)
        """
        self._config = config or ExtractionConfig()
        self._resolver = resolver
        self._logger = logger
        self._id_generator = id_generator or SnowflakeIDGenerator(1)
        self._now = now

    async def analyze(
        self,
        source: DepositSource,
        deposit_name: Optional[str] = None,
        overrides: Optional[dict[str, str]] = None,
        map_registrars: bool = True,
    ) -> AnalysisResult:
        """
        Analyze a deposit.

        Args:
            source: Deposit file path or raw deposit bytes
            deposit_name: Name recorded as the analysis' deposit file
                (defaults to the file name of `source`)
            overrides: Operator registrar table {source_id: target_clid}
            map_registrars: Resolve registrars through the resolver

        Returns:
            The complete AnalysisResult

        Raises:
            DepositParseError: If the deposit cannot be read or parsed
            MalformedHeaderError: If the header is absent or malformed
            AmbiguousMappingError: If an override disagrees with a resolved mapping
        """
        reader = DepositReader(source)
        if deposit_name is None:
            deposit_name = "<memory>" if isinstance(source, bytes) else Path(source).name

        header = HeaderAnalyzer(self._logger).analyze(reader)
        diagnostics: list[Diagnostic] = []

        registrars, registrar_info = self._read_registrars(reader, diagnostics)
        idn_table_refs = list(reader.idn_table_refs())
        self._log_info(f"Read {len(registrars)} registrars and {len(idn_table_refs)} IDN table references")

        names = NameValidator(header.tld)
        common = {
            "names": names,
            "mode": self._config.mode,
            "auth_info_placeholder": self._config.auth_info_placeholder,
            "logger": self._logger,
        }
        found: dict[EntityKind, int] = {
            EntityKind.REGISTRAR: len(registrars),
            EntityKind.IDN_TABLE_REF: len(idn_table_refs),
        }

        raw_contacts = list(reader.contacts())
        raw_hosts = list(reader.hosts())
        raw_domains = list(reader.domains())
        raw_nndns = list(reader.nndns())
        for kind, raws in (
            (EntityKind.CONTACT, raw_contacts),
            (EntityKind.HOST, raw_hosts),
            (EntityKind.DOMAIN, raw_domains),
            (EntityKind.NNDN, raw_nndns),
        ):
            found[kind] = len(raws)
        self._count_sponsored(registrar_info, raw_contacts, raw_hosts, raw_domains)

        contacts = self._extract(ContactExtractor(**common), raw_contacts, diagnostics)
        hosts = self._extract(HostExtractor(**common), raw_hosts, diagnostics)
        domains = self._extract(DomainExtractor(now=self._now, **common), raw_domains, diagnostics)
        nndns = self._extract(NNDNExtractor(**common), raw_nndns, diagnostics)

        extracted = {
            EntityKind.REGISTRAR: len(registrars),
            EntityKind.IDN_TABLE_REF: len(idn_table_refs),
            EntityKind.CONTACT: len(contacts),
            EntityKind.HOST: len(hosts),
            EntityKind.DOMAIN: len(domains),
            EntityKind.NNDN: len(nndns),
        }
        diagnostics.extend(self._count_mismatches(header, found, extracted))

        referenced = unique_referenced_contact_ids(hosts, domains)
        linked_contacts, unlinked_contacts = split_linked_contacts(contacts, referenced)
        for contact in unlinked_contacts:
            diagnostics.append(Diagnostic(
                kind=DiagnosticKind.UNLINKED_CONTACT,
                severity=Severity.WARNING,
                message=f"Unlinked contact {contact.id} will not be imported",
                entity_kind=EntityKind.CONTACT,
                subject=contact.id,
            ))
        if header.contact_count > header.domain_count * CONTACTS_PER_DOMAIN_LIMIT:
            diagnostics.append(Diagnostic(
                kind=DiagnosticKind.UNLINKED_CONTACT,
                severity=Severity.WARNING,
                message=(
                    f"Deposit declares {header.contact_count} contacts for "
                    f"{header.domain_count} domains; it probably contains unlinked contacts"
                ),
                entity_kind=EntityKind.CONTACT,
            ))
        diagnostics.extend(self._unlinked_hosts(header, hosts, domains))

        id_map, mapping_diagnostics = await self._map(
            header, registrars, registrar_info, overrides, map_registrars
        )
        diagnostics.extend(mapping_diagnostics)
        if map_registrars:
            diagnostics.extend(self._undeclared_sponsors(id_map, registrars, linked_contacts, hosts, domains))

        missing = find_missing_contacts(linked_contacts, hosts, domains)
        for contact_id in missing:
            diagnostics.append(Diagnostic(
                kind=DiagnosticKind.MISSING_CONTACT,
                severity=Severity.WARNING,
                message=f"Contact {contact_id} is referenced but not in the deposit",
                entity_kind=EntityKind.CONTACT,
                subject=contact_id,
            ))

        resolution = HostSponsorshipResolver(self._logger).resolve(hosts, domains)
        diagnostics.extend(resolution.diagnostics)

        result = AnalysisResult(
            analysis_id=self._id_generator.next_id_str(),
            deposit_file=deposit_name,
            created_at=datetime.now(timezone.utc).isoformat(),
            header=header,
            registrars=registrars,
            idn_table_refs=idn_table_refs,
            registrar_info=registrar_info,
            registrar_map=id_map.to_dict(),
            contacts=linked_contacts,
            hosts=resolution.hosts,
            domains=resolution.domains,
            nndns=nndns,
            diagnostics=diagnostics,
            missing_contact_ids=missing,
            unique_contact_ids=referenced,
        )
        self._log_info(
            f"Analysis of {deposit_name} complete",
            {
                "contacts": len(result.contacts),
                "hosts": len(result.hosts),
                "domains": len(result.domains),
                "nndns": len(result.nndns),
                "errors": len(result.errors),
                "warnings": len(result.warnings),
            },
        )
        return result

    def _read_registrars(
        self, reader: DepositReader, diagnostics: list[Diagnostic]
    ) -> tuple[list[RawRegistrar], dict[str, RegistrarInfo]]:
        registrars: list[RawRegistrar] = []
        info: dict[str, RegistrarInfo] = {}
        for registrar in reader.registrars():
            if not registrar.id:
                diagnostics.append(Diagnostic(
                    kind=DiagnosticKind.INVALID_RECORD,
                    severity=Severity.WARNING,
                    message=f"Registrar {registrar.name or '<unnamed>'} has no ID and is ignored",
                    entity_kind=EntityKind.REGISTRAR,
                    subject=registrar.name,
                ))
                continue
            if registrar.id in info:
                diagnostics.append(Diagnostic(
                    kind=DiagnosticKind.INVALID_RECORD,
                    severity=Severity.WARNING,
                    message=f"Registrar {registrar.id} appears more than once; keeping the first",
                    entity_kind=EntityKind.REGISTRAR,
                    subject=registrar.id,
                ))
                continue
            registrars.append(registrar)
            info[registrar.id] = RegistrarInfo(name=registrar.name, gurid=registrar.gurid)
        return registrars, info

    @staticmethod
    def _count_sponsored(info: dict[str, RegistrarInfo], contacts, hosts, domains) -> None:
        for contact in contacts:
            info.setdefault(contact.clid, RegistrarInfo()).contact_count += 1
        for host in hosts:
            info.setdefault(host.clid, RegistrarInfo()).host_count += 1
        for domain in domains:
            info.setdefault(domain.clid, RegistrarInfo()).domain_count += 1

    def _extract(self, extractor: EntityExtractor, raws: list, diagnostics: list[Diagnostic]) -> list:
        outcome: ExtractionOutcome = extractor.extract_all(raws)
        severity = FAILURE_SEVERITY[extractor.kind]
        for failure in outcome.failures:
            subject = failure.error.details.get("subject", "")
            diagnostics.append(Diagnostic(
                kind=DiagnosticKind.INVALID_RECORD,
                severity=severity,
                message=f"Error creating {extractor.kind.value} command for {subject}: {failure.error.message}",
                entity_kind=extractor.kind,
                subject=subject,
            ))
        diagnostics.extend(outcome.warnings)
        return outcome.commands

    @staticmethod
    def _count_mismatches(
        header: DepositHeader,
        found: dict[EntityKind, int],
        extracted: dict[EntityKind, int],
    ) -> list[Diagnostic]:
        """Compare declared, found and extracted counts per kind."""
        diagnostics = []
        for kind in found:
            declared = header.count_for(kind)
            if declared == found[kind] == extracted[kind]:
                continue
            diagnostics.append(Diagnostic(
                kind=DiagnosticKind.COUNT_MISMATCH,
                severity=Severity.WARNING,
                message=(
                    f"{kind.value}: header declares {declared}, deposit contains "
                    f"{found[kind]}, {extracted[kind]} extracted"
                ),
                entity_kind=kind,
            ))
        return diagnostics

    @staticmethod
    def _unlinked_hosts(header: DepositHeader, hosts: list, domains: list) -> list[Diagnostic]:
        used = {link.host_name for domain in domains for link in domain.host_links}
        unlinked = [h.name for h in hosts if h.name not in used]
        if len(unlinked) <= header.host_count // UNLINKED_HOST_RATIO:
            return []
        return [Diagnostic(
            kind=DiagnosticKind.UNLINKED_HOST,
            severity=Severity.WARNING,
            message=(
                f"{len(unlinked)} of {len(hosts)} hosts are not used by any domain; "
                "they will still be imported"
            ),
            entity_kind=EntityKind.HOST,
        )]

    async def _map(
        self,
        header: DepositHeader,
        registrars: list[RawRegistrar],
        registrar_info: dict[str, RegistrarInfo],
        overrides: Optional[dict[str, str]],
        map_registrars: bool,
    ) -> tuple[RegistrarIDMap, list[Diagnostic]]:
        if map_registrars:
            mapper = RegistrarMapper(self._resolver, self._logger)
            return await mapper.build(registrars, header.tld, registrar_info, overrides)

        id_map = RegistrarIDMap(overrides)
        for source_id, counters in registrar_info.items():
            if source_id in id_map:
                counters.target_clid = id_map.resolve(source_id)
        self._log_info("Registrar mapping skipped", {"overrides": len(id_map)})
        return id_map, [Diagnostic(
            kind=DiagnosticKind.UNMAPPED_REGISTRAR,
            severity=Severity.WARNING,
            message=(
                f"Registrar mapping was skipped; {len(id_map)} of {len(registrars)} "
                "registrars are mapped by overrides"
            ),
            entity_kind=EntityKind.REGISTRAR,
        )]

    @staticmethod
    def _undeclared_sponsors(
        id_map: RegistrarIDMap,
        registrars: list[RawRegistrar],
        *command_groups: list,
    ) -> list[Diagnostic]:
        """Registrar IDs used by commands that the registrar section never declared."""
        declared = {r.id for r in registrars}
        used: dict[str, int] = {}
        for commands in command_groups:
            for command in commands:
                for name in command.registrar_fields():
                    value = getattr(command, name)
                    if value:
                        used[value] = used.get(value, 0) + 1
        return [
            Diagnostic(
                kind=DiagnosticKind.UNMAPPED_REGISTRAR,
                severity=Severity.ERROR,
                message=f"Registrar {clid} is used by {count} objects but not declared in the deposit",
                entity_kind=EntityKind.REGISTRAR,
                subject=clid,
            )
            for clid, count in sorted(used.items())
            if clid not in declared and clid not in id_map
        ]

    def _log_info(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(LogLevel.INFO, self.COMPONENT, message, data)
