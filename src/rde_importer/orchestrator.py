"""
Import Orchestrator: replays an analysis against the target registry.

Stages run in the order of STAGES. A stage whose header count is zero is
skipped and recorded, never failed. Inside a stage, commands are split into
chunks that a bounded pool of worker coroutines pulls from one shared
iterator; the next stage starts only after every chunk is done.

Per command, ALREADY_EXISTS counts as success (with a warning), which makes
re-running an interrupted import safe. Everything else is recorded in the
ImportResult together with the command, and the stage carries on. The
ImportResult is persisted after every stage and on every exit path.
"""

import asyncio
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from .analysis_store import ImportResultStore
from .audit_logger import AuditLogger
from .chunking import ChunkSequence
from .config import ImportConfig
from .enums import CommandOutcome, EntityKind, ImportStage, LogLevel, StageState
from .exceptions import AnalysisRejectedError, ApiError, UnmappedRegistrarError
from .id_generator import SnowflakeIDGenerator
from .models import (
    AnalysisResult,
    DepositHeader,
    ImportFailure,
    ImportResult,
    StageRecord,
)
from .registrar_mapper import RegistrarIDMap
from .registry_client import RegistryAPIClient, command_payload


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _availability_key(command: Any) -> Any:
    if command.kind == EntityKind.HOST:
        return command.key
    return command.subject


@dataclass(frozen=True)
class StageDescriptor:
    """One import stage: when it runs and how it commits."""

    stage: ImportStage
    count_predicate: Callable[[DepositHeader], bool]
    commit: Callable[["ImportOrchestrator", AnalysisResult, ImportResult], Awaitable[str]]


class ImportOrchestrator:
    """
    Commits an AnalysisResult to the target registry, stage by stage.

    Availability of contacts, hosts and domains is tracked per run in the
    source ID space: a command whose dependency neither was created nor
    already existed is skipped and recorded as a failure.
    """

    COMPONENT = "ImportOrchestrator"

    def __init__(
        self,
        client: RegistryAPIClient,
        config: Optional[ImportConfig] = None,
        store: Optional[ImportResultStore] = None,
        logger: Optional[AuditLogger] = None,
        id_generator: Optional[SnowflakeIDGenerator] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            client: Target registry API client
            config: Worker count, chunk size and error gating
            store: Where the ImportResult is persisted; None keeps it in memory
            logger: Optional audit logger
            id_generator: Source of the run ID
        """
        self._client = client
        self._config = config or ImportConfig()
        self._store = store
        self._logger = logger
        self._id_generator = id_generator or SnowflakeIDGenerator(1)
        self._registrar_map = RegistrarIDMap()
        self._available: dict[EntityKind, set] = {}

    async def run(self, analysis: AnalysisResult, deposit_file: str) -> ImportResult:
        """
        Run every stage for one analysis.

        Args:
            analysis: The loaded AnalysisResult
            deposit_file: Deposit file name recorded in the ImportResult

        Returns:
            The final ImportResult; partial failures are inside it

        Raises:
            AnalysisRejectedError: If the analysis has errors and allow_errors is off
            TLDNotFoundError: If the deposit's TLD is missing in the target
            PersistenceError: If the ImportResult cannot be written
        """
        if analysis.has_errors and not self._config.allow_errors:
            raise AnalysisRejectedError(
                code="analysis_has_errors",
                message=(
                    f"Analysis of {analysis.deposit_file} has {len(analysis.errors)} errors; "
                    "fix them or allow errors explicitly"
                ),
                details={"errors": [d.message for d in analysis.errors[:20]]},
            )

        self._registrar_map = RegistrarIDMap(analysis.registrar_map)
        self._available = {kind: set() for kind in (
            EntityKind.CONTACT, EntityKind.HOST, EntityKind.DOMAIN, EntityKind.NNDN,
        )}
        result = ImportResult(
            run_id=self._id_generator.next_id_str(),
            deposit_file=deposit_file,
            started_at=_now(),
        )
        current: Optional[StageRecord] = None

        self._log_info(
            f"Starting import run {result.run_id} for {deposit_file}",
            {"tld": analysis.header.tld, "workers": self._config.workers,
             "chunk_size": self._config.chunk_size},
        )
        try:
            await self._client.get_tld(analysis.header.tld)

            for descriptor in STAGES:
                current = StageRecord(
                    stage=descriptor.stage.value,
                    state=StageState.ABORTED.value,
                    started_at=_now(),
                )
                result.stages.append(current)

                if not descriptor.count_predicate(analysis.header):
                    current.state = StageState.SKIPPED.value
                    current.message = "no objects declared in the deposit header"
                    current.finished_at = _now()
                    self._log_info(f"Skipping stage {descriptor.stage.value}: nothing declared")
                    self._persist(result)
                    continue

                self._log_info(f"Starting stage {descriptor.stage.value}")
                current.message = await descriptor.commit(self, analysis, result)
                current.state = StageState.COMPLETED.value
                current.finished_at = _now()
                self._log_info(f"Finished stage {descriptor.stage.value}: {current.message}")
                self._persist(result)
            current = None
        finally:
            if current is not None and not current.finished_at:
                current.finished_at = _now()
            result.finished_at = _now()
            self._persist(result)

        self._log_info(
            f"Import run {result.run_id} finished with {result.failed_total} failures",
            {"warnings": len(result.warnings)},
        )
        return result

    # ------------------------------------------------------------------
    # Stage commits
    # ------------------------------------------------------------------

    async def _commit_registrars(self, analysis: AnalysisResult, result: ImportResult) -> str:
        """Verify every mapped target registrar exists; registrars are never created."""
        counters = result.registrars
        for clid in sorted(set(self._registrar_map.to_dict().values())):
            try:
                found = await self._client.get_registrar(clid)
            except ApiError as e:
                found = None
                reason = e.message
            else:
                reason = "registrar not found in target registry"
            if found is not None:
                counters.existing += 1
                continue
            counters.failed += 1
            result.failures.append(ImportFailure(
                stage=ImportStage.REGISTRARS.value,
                subject=clid,
                outcome=CommandOutcome.FAILED.value,
                message=reason,
                command={"sources": self._registrar_map.sources_for(clid)},
            ))
        return f"{counters.existing} registrars present, {counters.failed} missing"

    async def _commit_contacts(self, analysis: AnalysisResult, result: ImportResult) -> str:
        return await self._commit_entities(ImportStage.CONTACTS, EntityKind.CONTACT, analysis, result)

    async def _commit_nndns(self, analysis: AnalysisResult, result: ImportResult) -> str:
        return await self._commit_entities(ImportStage.NNDN, EntityKind.NNDN, analysis, result)

    async def _commit_hosts(self, analysis: AnalysisResult, result: ImportResult) -> str:
        return await self._commit_entities(ImportStage.HOSTS, EntityKind.HOST, analysis, result)

    async def _commit_domains(self, analysis: AnalysisResult, result: ImportResult) -> str:
        return await self._commit_entities(ImportStage.DOMAINS, EntityKind.DOMAIN, analysis, result)

    async def _commit_entities(
        self,
        stage: ImportStage,
        kind: EntityKind,
        analysis: AnalysisResult,
        result: ImportResult,
    ) -> str:
        commands = analysis.commands_for(kind)
        counters = result.counters_for(kind)
        available = self._available[kind]

        async def commit_one(command: Any) -> None:
            missing = [
                contact_id
                for contact_id in command.referenced_contact_ids()
                if contact_id not in self._available[EntityKind.CONTACT]
            ]
            if missing:
                counters.skipped += 1
                self._record_failure(
                    result, stage, command, CommandOutcome.SKIPPED_DEPENDENCY,
                    f"contacts not available: {', '.join(missing)}",
                )
                return

            try:
                mapped = self._map_registrars(command)
            except UnmappedRegistrarError as e:
                counters.failed += 1
                self._record_failure(result, stage, command, CommandOutcome.FAILED, e.message)
                return

            outcome = await self._client.create(kind, command_payload(mapped))
            if outcome.outcome == CommandOutcome.CREATED:
                counters.created += 1
            elif outcome.outcome == CommandOutcome.ALREADY_EXISTS:
                counters.existing += 1
                result.warnings.append(f"{kind.value} {command.subject} already exists")
            else:
                counters.failed += 1
                self._record_failure(result, stage, command, outcome.outcome, outcome.message)
                return
            available.add(_availability_key(command))

        await self._run_chunked(commands, commit_one)
        return (
            f"{counters.created} created, {counters.existing} already present, "
            f"{counters.failed} failed, {counters.skipped} skipped"
        )

    async def _link_hosts_to_domains(self, analysis: AnalysisResult, result: ImportResult) -> str:
        links = result.links
        stage = ImportStage.LINK_HOSTS_TO_DOMAINS
        pairs = [
            (domain, link)
            for domain in analysis.domains
            for link in domain.host_links
        ]

        async def link_one(pair: tuple) -> None:
            domain, link = pair
            subject = f"{domain.name} -> {link.host_name}"
            if domain.name not in self._available[EntityKind.DOMAIN]:
                reason = f"domain {domain.name} not available"
            elif (link.host_name, link.host_clid) not in self._available[EntityKind.HOST]:
                reason = f"host {link.host_name} ({link.host_clid or 'unknown sponsor'}) not available"
            else:
                reason = ""
            if reason:
                links.missing += 1
                result.failures.append(ImportFailure(
                    stage=stage.value,
                    subject=subject,
                    outcome=CommandOutcome.SKIPPED_DEPENDENCY.value,
                    message=reason,
                    command=asdict(link),
                ))
                return

            sponsor = self._registrar_map.get(link.host_clid) or ""
            outcome = await self._client.link_host(domain.name, link.host_name, sponsor)
            if outcome.succeeded:
                links.present += 1
                return
            links.missing += 1
            result.failures.append(ImportFailure(
                stage=stage.value,
                subject=subject,
                outcome=outcome.outcome.value,
                message=outcome.message,
                command=asdict(link),
            ))

        await self._run_chunked(pairs, link_one)
        return f"{links.present} links present, {links.missing} missing"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run_chunked(self, items: list, handler: Callable[[Any], Awaitable[None]]) -> None:
        """Process items chunk by chunk with at most `workers` chunks in flight."""
        chunks = ChunkSequence(items, self._config.chunk_size)
        if len(chunks) == 0:
            return
        shared = iter(chunks)

        async def worker() -> None:
            for chunk in shared:
                for item in chunk:
                    await handler(item)

        worker_count = max(1, min(self._config.workers, len(chunks)))
        await asyncio.gather(*(worker() for _ in range(worker_count)))

    def _map_registrars(self, command: Any) -> Any:
        """
        Return a copy of the command with registrar IDs in the target namespace.

        Raises:
            UnmappedRegistrarError: If any registrar field has no mapping
        """
        changes = {}
        for name in command.registrar_fields():
            value = getattr(command, name)
            if value:
                changes[name] = self._registrar_map.resolve(value)
        return replace(command, **changes) if changes else command

    def _record_failure(
        self,
        result: ImportResult,
        stage: ImportStage,
        command: Any,
        outcome: CommandOutcome,
        message: str,
    ) -> None:
        result.failures.append(ImportFailure(
            stage=stage.value,
            subject=command.subject,
            outcome=outcome.value,
            message=message,
            command=asdict(command),
        ))
        self._log(LogLevel.WARN, f"{stage.value}: {command.subject}: {message}")

    def _persist(self, result: ImportResult) -> None:
        if self._store is not None:
            self._store.save(result)

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    def _log_info(self, message: str, data: Optional[dict] = None) -> None:
        self._log(LogLevel.INFO, message, data)


STAGES: tuple[StageDescriptor, ...] = (
    StageDescriptor(
        ImportStage.REGISTRARS,
        lambda header: header.registrar_count > 0,
        ImportOrchestrator._commit_registrars,
    ),
    StageDescriptor(
        ImportStage.CONTACTS,
        lambda header: header.contact_count > 0,
        ImportOrchestrator._commit_contacts,
    ),
    StageDescriptor(
        ImportStage.NNDN,
        lambda header: header.nndn_count > 0,
        ImportOrchestrator._commit_nndns,
    ),
    StageDescriptor(
        ImportStage.HOSTS,
        lambda header: header.host_count > 0,
        ImportOrchestrator._commit_hosts,
    ),
    StageDescriptor(
        ImportStage.DOMAINS,
        lambda header: header.domain_count > 0,
        ImportOrchestrator._commit_domains,
    ),
    StageDescriptor(
        ImportStage.LINK_HOSTS_TO_DOMAINS,
        lambda header: header.domain_count > 0 and header.host_count > 0,
        ImportOrchestrator._link_hosts_to_domains,
    ),
)
