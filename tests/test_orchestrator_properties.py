"""
Property-based tests for the Import Orchestrator.

Uses Hypothesis together with an in-memory registry behind
httpx.MockTransport to verify stage ordering, idempotent re-runs,
dependency skipping and persistence of the import result.
"""

import asyncio
import json
import tempfile
from pathlib import Path
from typing import Optional

import httpx
from hypothesis import given, settings
from hypothesis import strategies as st

from rde_importer.analysis_store import ImportResultStore
from rde_importer.config import ApiConfig, ImportConfig, RetryConfig
from rde_importer.enums import CommandOutcome, DiagnosticKind, ImportStage, Severity, StageState
from rde_importer.exceptions import AnalysisRejectedError, TLDNotFoundError
from rde_importer.models import (
    AnalysisResult,
    CreateContactCommand,
    CreateDomainCommand,
    CreateHostCommand,
    CreateNNDNCommand,
    DepositHeader,
    Diagnostic,
    HostLink,
    ImportResult,
)
from rde_importer.orchestrator import STAGES, ImportOrchestrator
from rde_importer.registry_client import RegistryAPIClient
from rde_importer.retry_manager import RetryManager


class FakeRegistry:
    """In-memory target registry answering like the admin API."""

    def __init__(
        self,
        tld_exists: bool = True,
        existing: tuple = (),
        rejected: tuple = (),
        registrars: tuple = ("tgt-a", "tgt-b"),
    ) -> None:
        self.tld_exists = tld_exists
        self.existing = set(existing)
        self.rejected = set(rejected)
        self.registrars = set(registrars)
        self.requests: list[tuple[str, str, Optional[dict]]] = []
        self.links: list[tuple[str, Optional[str]]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))

        if request.method == "GET" and path.startswith("/tlds/"):
            return httpx.Response(200, json={"name": "example"}) if self.tld_exists else httpx.Response(404)
        if request.method == "GET" and path.startswith("/registrars/"):
            clid = path.rsplit("/", 1)[1]
            return httpx.Response(200, json={"ClID": clid}) if clid in self.registrars else httpx.Response(404)
        if request.method == "POST" and "/hostname/" in path:
            self.links.append((path, request.url.params.get("clid")))
            return httpx.Response(204)
        if request.method == "POST" and path in ("/contacts", "/hosts", "/domains", "/nndns"):
            subject = body.get("id") or body.get("name")
            # hosts are unique per (name, sponsor)
            key = f"{subject}@{body['clid']}" if path == "/hosts" else subject
            if subject in self.rejected:
                return httpx.Response(400, json={"error": f"{subject} is invalid"})
            if key in self.existing:
                return httpx.Response(400, json={"error": f"Object {subject} already exists"})
            self.existing.add(key)
            return httpx.Response(201, json={})
        return httpx.Response(404)

    def posts(self, path: str) -> list[dict]:
        return [body for method, p, body in self.requests if method == "POST" and p == path]

    def post_indexes(self, path: str) -> list[int]:
        return [i for i, (m, p, _) in enumerate(self.requests) if m == "POST" and p == path]

    def link_indexes(self) -> list[int]:
        return [i for i, (m, p, _) in enumerate(self.requests) if m == "POST" and "/hostname/" in p]


def contact(contact_id: str, clid: str = "RAR-A") -> CreateContactCommand:
    return CreateContactCommand(id=contact_id, email="a@example.net", auth_info="x", clid=clid, cr_rr=clid)


def host(name: str, clid: str = "RAR-A") -> CreateHostCommand:
    return CreateHostCommand(name=name, clid=clid, status=["ok"])


def domain(name: str, registrant: str, hosts: tuple = (), clid: str = "RAR-A") -> CreateDomainCommand:
    return CreateDomainCommand(
        name=name,
        clid=clid,
        auth_info="x",
        expiry_date="2030-01-01T00:00:00Z",
        registrant_id=registrant,
        status=["ok", "inactive"],
        host_links=[HostLink(h, clid) for h in hosts],
    )


def make_analysis(
    contacts: list,
    hosts: list = (),
    domains: list = (),
    nndns: list = (),
    registrar_map: Optional[dict] = None,
    diagnostics: list = (),
) -> AnalysisResult:
    registrar_map = {"RAR-A": "tgt-a", "RAR-B": "tgt-b"} if registrar_map is None else registrar_map
    return AnalysisResult(
        analysis_id="1",
        deposit_file="example.xml",
        created_at="2024-01-01T00:00:00+00:00",
        header=DepositHeader(
            tld="example",
            registrar_count=len(registrar_map),
            contact_count=len(contacts),
            host_count=len(hosts),
            domain_count=len(domains),
            nndn_count=len(nndns),
        ),
        registrar_map=registrar_map,
        contacts=list(contacts),
        hosts=list(hosts),
        domains=list(domains),
        nndns=list(nndns),
        diagnostics=list(diagnostics),
    )


def run_import(
    registry: FakeRegistry,
    analysis: AnalysisResult,
    config: Optional[ImportConfig] = None,
    store: Optional[ImportResultStore] = None,
) -> ImportResult:
    async def run_test() -> ImportResult:
        client = RegistryAPIClient(
            ApiConfig(base_url="http://registry.test"),
            RetryManager(RetryConfig(max_retries=0, base_delay_seconds=0.0001)),
            transport=httpx.MockTransport(registry.handler),
        )
        async with client:
            orchestrator = ImportOrchestrator(client, config or ImportConfig(workers=3, chunk_size=2), store)
            return await orchestrator.run(analysis, analysis.deposit_file)

    return asyncio.run(run_test())


def full_analysis() -> AnalysisResult:
    return make_analysis(
        contacts=[contact("CON-1"), contact("CON-2"), contact("CON-3", "RAR-B")],
        hosts=[host("ns1.example.net"), host("ns1.example.net", "RAR-B"), host("ns2.example.net")],
        domains=[
            domain("a.example", "CON-1", ("ns1.example.net", "ns2.example.net")),
            domain("b.example", "CON-2", ("ns1.example.net",)),
            domain("c.example", "CON-3", ("ns1.example.net",), clid="RAR-B"),
        ],
        nndns=[CreateNNDNCommand(name="reserved.example", name_state="blocked")],
    )


class TestStageOrdering:
    """Stages commit in dependency order."""

    def test_full_import(self) -> None:
        registry = FakeRegistry()
        result = run_import(registry, full_analysis())

        assert [s.stage for s in result.stages] == [d.stage.value for d in STAGES]
        assert all(s.state == StageState.COMPLETED.value for s in result.stages)
        assert result.registrars.existing == 2
        assert result.contacts.created == 3
        assert result.hosts.created == 3
        assert result.domains.created == 3
        assert result.nndns.created == 1
        assert result.links.present == 4
        assert result.links.missing == 0
        assert result.failures == []
        assert result.finished_at

        assert registry.requests[0] == ("GET", "/tlds/example", None)
        contacts = registry.post_indexes("/contacts")
        nndns = registry.post_indexes("/nndns")
        hosts = registry.post_indexes("/hosts")
        domains = registry.post_indexes("/domains")
        links = registry.link_indexes()
        assert max(contacts) < min(nndns)
        assert max(nndns) < min(hosts)
        assert max(hosts) < min(domains)
        assert max(domains) < min(links)
        assert max(links) == len(registry.requests) - 1

    def test_commands_are_sent_in_target_namespace(self) -> None:
        registry = FakeRegistry()
        run_import(registry, full_analysis())

        contacts = {c["id"]: c for c in registry.posts("/contacts")}
        assert contacts["CON-1"]["clid"] == "tgt-a"
        assert contacts["CON-3"]["clid"] == "tgt-b"
        assert contacts["CON-3"]["cr_rr"] == "tgt-b"
        assert all("host_links" not in d for d in registry.posts("/domains"))
        assert sorted((h["name"], h["clid"]) for h in registry.posts("/hosts")) == [
            ("ns1.example.net", "tgt-a"),
            ("ns1.example.net", "tgt-b"),
            ("ns2.example.net", "tgt-a"),
        ]

    def test_links_name_the_host_sponsor(self) -> None:
        registry = FakeRegistry()
        run_import(registry, full_analysis())

        assert ("/domains/c.example/hostname/ns1.example.net", "tgt-b") in registry.links
        assert ("/domains/a.example/hostname/ns2.example.net", "tgt-a") in registry.links
        assert len(registry.links) == 4

    def test_empty_stages_are_skipped(self) -> None:
        registry = FakeRegistry()
        analysis = make_analysis(contacts=[contact("CON-1")], domains=[domain("a.example", "CON-1")])
        result = run_import(registry, analysis)

        states = {s.stage: s.state for s in result.stages}
        assert states[ImportStage.NNDN.value] == StageState.SKIPPED.value
        assert states[ImportStage.HOSTS.value] == StageState.SKIPPED.value
        assert states[ImportStage.LINK_HOSTS_TO_DOMAINS.value] == StageState.SKIPPED.value
        assert states[ImportStage.DOMAINS.value] == StageState.COMPLETED.value
        assert registry.posts("/nndns") == []
        assert registry.posts("/hosts") == []
        assert result.domains.created == 1


class TestIdempotentRerun:
    """Objects that already exist count as success."""

    def test_all_contacts_already_exist(self) -> None:
        analysis = full_analysis()
        registry = FakeRegistry(existing=("CON-1", "CON-2", "CON-3"))
        result = run_import(registry, analysis)

        assert result.contacts.existing == 3
        assert result.contacts.created == 0
        assert result.contacts.failed == 0
        assert len([w for w in result.warnings if "already exists" in w]) == 3
        assert result.domains.created == 3
        assert result.links.present == 4

    def test_second_run_creates_nothing(self) -> None:
        registry = FakeRegistry()
        run_import(registry, full_analysis())
        second = run_import(registry, full_analysis())

        for counters in (second.contacts, second.hosts, second.domains, second.nndns):
            assert counters.created == 0
            assert counters.failed == 0
        assert second.domains.existing == 3
        assert second.links.present == 4


class TestDependencySkipping:
    """Commands whose dependencies are unavailable are skipped, not sent."""

    def test_missing_contact_skips_domain(self) -> None:
        registry = FakeRegistry()
        analysis = make_analysis(
            contacts=[contact("CON-1")],
            hosts=[host("ns1.example.net")],
            domains=[
                domain("a.example", "CON-1", ("ns1.example.net",)),
                domain("b.example", "CON-9", ("ns1.example.net",)),
            ],
        )
        result = run_import(registry, analysis)

        assert [d["name"] for d in registry.posts("/domains")] == ["a.example"]
        assert result.domains.created == 1
        assert result.domains.skipped == 1
        [failure] = [f for f in result.failures if f.stage == ImportStage.DOMAINS.value]
        assert failure.subject == "b.example"
        assert failure.outcome == CommandOutcome.SKIPPED_DEPENDENCY.value
        assert "CON-9" in failure.message
        assert failure.command["name"] == "b.example"
        assert result.links.present == 1
        assert result.links.missing == 1

    def test_rejected_contact_skips_its_domains(self) -> None:
        registry = FakeRegistry(rejected=("CON-2",))
        result = run_import(registry, full_analysis())

        assert result.contacts.failed == 1
        assert result.domains.skipped == 1
        assert "b.example" not in [d["name"] for d in registry.posts("/domains")]
        outcomes = {(f.stage, f.subject): f.outcome for f in result.failures}
        assert outcomes[(ImportStage.CONTACTS.value, "CON-2")] == CommandOutcome.FAILED.value
        assert outcomes[(ImportStage.DOMAINS.value, "b.example")] == CommandOutcome.SKIPPED_DEPENDENCY.value

    def test_unmapped_registrar_fails_command(self) -> None:
        registry = FakeRegistry()
        analysis = make_analysis(
            contacts=[contact("CON-1"), contact("CON-2", "RAR-Z")],
            registrar_map={"RAR-A": "tgt-a"},
        )
        result = run_import(registry, analysis)

        assert result.contacts.created == 1
        assert result.contacts.failed == 1
        assert [c["id"] for c in registry.posts("/contacts")] == ["CON-1"]

    def test_missing_target_registrar_is_reported(self) -> None:
        registry = FakeRegistry(registrars=("tgt-a",))
        result = run_import(registry, make_analysis(contacts=[contact("CON-1")]))

        assert result.registrars.existing == 1
        assert result.registrars.failed == 1
        [failure] = result.failures
        assert failure.subject == "tgt-b"
        assert failure.command == {"sources": ["RAR-B"]}


class TestConcurrency:
    """Every command is committed exactly once, whatever the pool shape."""

    @given(
        n=st.integers(min_value=1, max_value=15),
        workers=st.integers(min_value=1, max_value=6),
        chunk_size=st.integers(min_value=-1, max_value=6),
    )
    @settings(max_examples=30, deadline=None)
    def test_each_contact_sent_once(self, n: int, workers: int, chunk_size: int) -> None:
        """
        *For any* number of contacts, worker count and chunk size, each
        contact SHALL be submitted exactly once and counted as created.
        """
        registry = FakeRegistry()
        contacts = [contact(f"CON-{i}") for i in range(n)]
        result = run_import(registry, make_analysis(contacts=contacts), ImportConfig(workers=workers, chunk_size=chunk_size))

        sent = [c["id"] for c in registry.posts("/contacts")]
        assert sorted(sent) == sorted(c.id for c in contacts)
        assert result.contacts.created == n


class TestRunGating:
    """Runs that must not start, or must stop early."""

    def test_analysis_with_errors_is_rejected(self) -> None:
        registry = FakeRegistry()
        analysis = make_analysis(
            contacts=[contact("CON-1")],
            diagnostics=[Diagnostic(DiagnosticKind.INVALID_RECORD, Severity.ERROR, "bad domain")],
        )
        try:
            run_import(registry, analysis)
            assert False, "Should have raised AnalysisRejectedError"
        except AnalysisRejectedError as e:
            assert e.code == "analysis_has_errors"
        assert registry.requests == []

        result = run_import(registry, analysis, ImportConfig(allow_errors=True))
        assert result.contacts.created == 1

    def test_warnings_do_not_block(self) -> None:
        analysis = make_analysis(
            contacts=[contact("CON-1")],
            diagnostics=[Diagnostic(DiagnosticKind.COUNT_MISMATCH, Severity.WARNING, "count")],
        )
        assert run_import(FakeRegistry(), analysis).contacts.created == 1

    def test_missing_tld_aborts_and_persists(self) -> None:
        registry = FakeRegistry(tld_exists=False)
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ImportResultStore(Path(tmpdir) / "example-import.json", "secret")
            try:
                run_import(registry, full_analysis(), store=store)
                assert False, "Should have raised TLDNotFoundError"
            except TLDNotFoundError:
                pass

            persisted = store.load()
            assert persisted.stages == []
            assert persisted.finished_at
        assert [r[0] for r in registry.requests] == ["GET"]

    def test_result_is_persisted(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ImportResultStore(Path(tmpdir) / "example-import.json", "secret")
            result = run_import(FakeRegistry(), full_analysis(), store=store)
            assert store.load() == result
