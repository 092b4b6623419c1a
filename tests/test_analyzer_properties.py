"""
Property-based tests for deposit analysis.

Uses Hypothesis to build small deposits and checks the diagnostics and
commands the analyzer derives from them.
"""

import asyncio
from typing import Optional

from hypothesis import given, settings
from hypothesis import strategies as st

from rde_importer.analyzer import DepositAnalyzer
from rde_importer.enums import DiagnosticKind, EntityKind, Severity
from rde_importer.exceptions import AmbiguousMappingError
from rde_importer.models import AnalysisResult, RawRegistrar

from deposit_builder import (
    build_deposit,
    contact_xml,
    domain_xml,
    host_xml,
    nndn_xml,
    registrar_xml,
)


class StaticResolver:
    """Resolves registrars from a fixed table."""

    def __init__(self, targets: dict[str, str]) -> None:
        self.targets = targets

    async def resolve_registrar(self, registrar: RawRegistrar, tld: str) -> Optional[str]:
        return self.targets.get(registrar.id)


def analyze(deposit: bytes, resolver=None, **kwargs) -> AnalysisResult:
    analyzer = DepositAnalyzer(resolver=resolver or StaticResolver({"RAR-A": "tgt-a", "RAR-B": "tgt-b"}))
    return asyncio.run(analyzer.analyze(deposit, **kwargs))


def kinds(result: AnalysisResult, severity: Optional[Severity] = None) -> list[DiagnosticKind]:
    return [d.kind for d in result.diagnostics if severity is None or d.severity == severity]


def clean_deposit() -> bytes:
    return build_deposit(
        registrars=[registrar_xml("RAR-A"), registrar_xml("RAR-B", gurid="5678")],
        contacts=[contact_xml("CON-1"), contact_xml("CON-2", clid="RAR-B")],
        hosts=[host_xml("ns1.example.net", addrs=("192.0.2.1",)), host_xml("ns2.example.net")],
        domains=[
            domain_xml("a.example", registrant="CON-1", contacts=[("admin", "CON-1")],
                       hosts=["ns1.example.net", "ns2.example.net"]),
            domain_xml("b.example", clid="RAR-B", registrant="CON-2", hosts=["ns1.example.net"]),
        ],
        nndns=[nndn_xml("reserved.example")],
    )


class TestCleanDeposit:
    """A consistent deposit analyzes without errors."""

    def test_commands_and_mapping(self) -> None:
        result = analyze(clean_deposit(), deposit_name="example_2024-01-01_full_S1_R0.xml")

        assert result.deposit_file == "example_2024-01-01_full_S1_R0.xml"
        assert result.header.tld == "example"
        assert not result.has_errors
        assert result.registrar_map == {"RAR-A": "tgt-a", "RAR-B": "tgt-b"}
        assert [c.id for c in result.contacts] == ["CON-1", "CON-2"]
        assert [d.name for d in result.domains] == ["a.example", "b.example"]
        assert [n.name for n in result.nndns] == ["reserved.example"]
        assert result.unique_contact_ids == ["CON-1", "CON-2"]
        assert result.missing_contact_ids == []
        assert result.registrar_info["RAR-A"].domain_count == 1
        assert result.registrar_info["RAR-A"].host_count == 2
        assert result.registrar_info["RAR-B"].target_clid == "tgt-b"

    def test_shared_host_is_duplicated_for_second_sponsor(self) -> None:
        result = analyze(clean_deposit())

        assert sorted(h.key for h in result.hosts) == [
            ("ns1.example.net", "RAR-A"),
            ("ns1.example.net", "RAR-B"),
            ("ns2.example.net", "RAR-A"),
        ]
        b = next(d for d in result.domains if d.name == "b.example")
        assert [(link.host_name, link.host_clid) for link in b.host_links] == [("ns1.example.net", "RAR-B")]
        assert kinds(result) == [DiagnosticKind.HOST_DUPLICATED]

    def test_deposit_disclose_flag_is_not_carried_over(self) -> None:
        deposit = build_deposit(
            registrars=[registrar_xml("RAR-A")],
            contacts=[contact_xml("CON-1", disclose="1"), contact_xml("CON-2", disclose="0")],
            domains=[domain_xml("a.example", registrant="CON-1", contacts=[("tech", "CON-2")])],
        )
        result = analyze(deposit)
        assert [c.disclose for c in result.contacts] == [False, False]

    def test_commands_for_each_kind(self) -> None:
        result = analyze(clean_deposit())
        assert result.commands_for(EntityKind.CONTACT) is result.contacts
        assert result.commands_for(EntityKind.HOST) is result.hosts
        assert result.commands_for(EntityKind.DOMAIN) is result.domains
        assert result.commands_for(EntityKind.NNDN) is result.nndns

    def test_bytes_source_is_named_memory(self) -> None:
        assert analyze(clean_deposit()).deposit_file == "<memory>"


class TestDiagnostics:
    """Inconsistencies become diagnostics with the right severity."""

    @given(declared=st.integers(min_value=0, max_value=10), actual=st.integers(min_value=0, max_value=5))
    @settings(max_examples=30, deadline=None)
    def test_count_mismatch(self, declared: int, actual: int) -> None:
        """
        *For any* declared and actual NNDN counts, a COUNT_MISMATCH warning
        SHALL be reported exactly when they differ.
        """
        deposit = build_deposit(
            nndns=[nndn_xml(f"n{i}.example") for i in range(actual)],
            counts={"nndns": declared},
        )
        result = analyze(deposit)
        mismatches = [d for d in result.diagnostics if d.kind == DiagnosticKind.COUNT_MISMATCH]
        if declared == actual:
            assert mismatches == []
        else:
            assert [d.entity_kind for d in mismatches] == [EntityKind.NNDN]
            assert mismatches[0].severity == Severity.WARNING

    def test_invalid_domain_is_an_error(self) -> None:
        deposit = build_deposit(
            registrars=[registrar_xml("RAR-A")],
            domains=[domain_xml("a.example"), domain_xml("b.example", ex_date="")],
        )
        result = analyze(deposit)

        assert [d.name for d in result.domains] == ["a.example"]
        errors = [d for d in result.errors if d.kind == DiagnosticKind.INVALID_RECORD]
        assert [d.subject for d in errors] == ["b.example"]
        assert DiagnosticKind.COUNT_MISMATCH in kinds(result, Severity.WARNING)

    def test_invalid_host_is_a_warning(self) -> None:
        deposit = build_deposit(
            registrars=[registrar_xml("RAR-A")],
            hosts=[host_xml("ns1.example.net", addrs=("not-an-ip",))],
        )
        result = analyze(deposit)
        assert result.hosts == []
        assert not result.has_errors
        assert DiagnosticKind.INVALID_RECORD in kinds(result, Severity.WARNING)

    def test_missing_contact_is_reported(self) -> None:
        deposit = build_deposit(
            registrars=[registrar_xml("RAR-A")],
            contacts=[contact_xml("CON-1")],
            domains=[domain_xml("a.example", registrant="CON-1", contacts=[("tech", "CON-9")])],
        )
        result = analyze(deposit)

        assert result.missing_contact_ids == ["CON-9"]
        missing = [d for d in result.diagnostics if d.kind == DiagnosticKind.MISSING_CONTACT]
        assert [d.subject for d in missing] == ["CON-9"]

    def test_unlinked_contact_is_not_imported(self) -> None:
        deposit = build_deposit(
            registrars=[registrar_xml("RAR-A")],
            contacts=[contact_xml("CON-1"), contact_xml("CON-ORPHAN")],
            domains=[domain_xml("a.example", registrant="CON-1")],
        )
        result = analyze(deposit)

        assert [c.id for c in result.contacts] == ["CON-1"]
        unlinked = [d for d in result.diagnostics if d.kind == DiagnosticKind.UNLINKED_CONTACT]
        assert [d.subject for d in unlinked] == ["CON-ORPHAN"]

    def test_contacts_per_domain_ratio(self) -> None:
        deposit = build_deposit(
            registrars=[registrar_xml("RAR-A")],
            contacts=[contact_xml(f"CON-{i}") for i in range(5)],
            domains=[domain_xml("a.example", registrant="CON-0", contacts=[
                ("admin", "CON-1"), ("tech", "CON-2"), ("billing", "CON-3"),
            ])],
        )
        result = analyze(deposit)
        ratio = [d for d in result.diagnostics if d.kind == DiagnosticKind.UNLINKED_CONTACT and not d.subject]
        assert len(ratio) == 1

    def test_unlinked_hosts(self) -> None:
        deposit = build_deposit(
            registrars=[registrar_xml("RAR-A")],
            hosts=[host_xml("ns1.example.net"), host_xml("ns2.example.net")],
            domains=[domain_xml("a.example", hosts=["ns1.example.net"])],
        )
        assert DiagnosticKind.UNLINKED_HOST in kinds(analyze(deposit))

    def test_unmapped_registrar_with_objects_is_an_error(self) -> None:
        deposit = build_deposit(
            registrars=[registrar_xml("RAR-A"), registrar_xml("RAR-Q")],
            domains=[domain_xml("a.example"), domain_xml("q.example", clid="RAR-Q")],
        )
        result = analyze(deposit)
        assert result.has_errors
        assert [d.subject for d in result.errors] == ["RAR-Q"]

    def test_undeclared_sponsor_is_an_error(self) -> None:
        deposit = build_deposit(
            registrars=[registrar_xml("RAR-A")],
            domains=[domain_xml("a.example"), domain_xml("z.example", clid="RAR-ZZZ")],
        )
        result = analyze(deposit)
        undeclared = [d for d in result.errors if d.kind == DiagnosticKind.UNMAPPED_REGISTRAR]
        assert [d.subject for d in undeclared] == ["RAR-ZZZ"]

    def test_duplicate_registrar_is_ignored(self) -> None:
        deposit = build_deposit(registrars=[registrar_xml("RAR-A"), registrar_xml("RAR-A", name="Again")])
        result = analyze(deposit, map_registrars=False)
        assert [r.id for r in result.registrars] == ["RAR-A"]
        assert DiagnosticKind.INVALID_RECORD in kinds(result, Severity.WARNING)


class TestMappingModes:
    """Registrar mapping can be skipped or driven by overrides."""

    def test_skipped_mapping_uses_overrides_only(self) -> None:
        result = analyze(clean_deposit(), overrides={"RAR-A": "ovr-a"}, map_registrars=False)

        assert result.registrar_map == {"RAR-A": "ovr-a"}
        assert not result.has_errors
        skipped = [d for d in result.diagnostics if d.kind == DiagnosticKind.UNMAPPED_REGISTRAR]
        assert len(skipped) == 1
        assert skipped[0].severity == Severity.WARNING

    def test_override_contradicting_resolution_is_refused(self) -> None:
        try:
            analyze(clean_deposit(), overrides={"RAR-B": "ovr-b"})
            assert False, "Should have raised AmbiguousMappingError"
        except AmbiguousMappingError as e:
            assert e.details["source_id"] == "RAR-B"

    def test_override_maps_unresolved_registrar(self) -> None:
        result = analyze(
            clean_deposit(),
            resolver=StaticResolver({"RAR-A": "tgt-a"}),
            overrides={"RAR-B": "ovr-b"},
        )
        assert result.registrar_map == {"RAR-A": "tgt-a", "RAR-B": "ovr-b"}
        assert result.registrar_info["RAR-B"].target_clid == "ovr-b"
        assert not result.has_errors

    def test_analysis_ids_are_unique(self) -> None:
        analyzer = DepositAnalyzer(resolver=StaticResolver({}))
        deposit = build_deposit()
        first = asyncio.run(analyzer.analyze(deposit))
        second = asyncio.run(analyzer.analyze(deposit))
        assert first.analysis_id != second.analysis_id
