"""
Data models for the RDE importer.

This module defines the raw records read from an escrow deposit, the
validated create commands derived from them, and the analysis and import
results that are persisted between runs.

Raw records are loosely typed: every value is kept as the string found in
the deposit so that validation can report exactly what was wrong.
"""

from dataclasses import dataclass, field
from typing import ClassVar, Optional

from .enums import DiagnosticKind, EntityKind, Severity


# ---------------------------------------------------------------------------
# Deposit header
# ---------------------------------------------------------------------------


@dataclass
class DepositHeader:
    """Declared object counts and identity of an escrow deposit."""

    tld: str
    registrar_count: int = 0
    idn_count: int = 0
    contact_count: int = 0
    host_count: int = 0
    domain_count: int = 0
    nndn_count: int = 0
    deposit_id: str = ""
    deposit_type: str = ""  # FULL, DIFF, INCR
    resend: int = 0
    watermark: str = ""

    def count_for(self, kind: EntityKind) -> int:
        """Return the declared count for an entity kind."""
        return {
            EntityKind.REGISTRAR: self.registrar_count,
            EntityKind.IDN_TABLE_REF: self.idn_count,
            EntityKind.CONTACT: self.contact_count,
            EntityKind.HOST: self.host_count,
            EntityKind.DOMAIN: self.domain_count,
            EntityKind.NNDN: self.nndn_count,
        }[kind]

    @classmethod
    def from_dict(cls, data: dict) -> "DepositHeader":
        return cls(**data)


# ---------------------------------------------------------------------------
# Raw records (as found in the deposit)
# ---------------------------------------------------------------------------


@dataclass
class RawAddress:
    street: list[str] = field(default_factory=list)
    city: str = ""
    sp: str = ""
    pc: str = ""
    cc: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "RawAddress":
        return cls(
            street=list(data.get("street", [])),
            city=data.get("city", ""),
            sp=data.get("sp", ""),
            pc=data.get("pc", ""),
            cc=data.get("cc", ""),
        )


@dataclass
class RawPostalInfo:
    type: str = ""
    name: str = ""
    org: str = ""
    addr: RawAddress = field(default_factory=RawAddress)

    @classmethod
    def from_dict(cls, data: dict) -> "RawPostalInfo":
        return cls(
            type=data.get("type", ""),
            name=data.get("name", ""),
            org=data.get("org", ""),
            addr=RawAddress.from_dict(data.get("addr", {})),
        )


@dataclass
class RawRegistrar:
    """A <rdeRegistrar:registrar> element."""

    id: str
    name: str = ""
    gurid: str = ""
    status: list[str] = field(default_factory=list)
    email: str = ""
    voice: str = ""
    fax: str = ""
    url: str = ""
    cr_date: str = ""
    up_date: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "RawRegistrar":
        return cls(**{**data, "status": list(data.get("status", []))})


@dataclass
class RawIDNTableRef:
    """A <rdeIDN:idnTableRef> element."""

    id: str
    url: str = ""
    url_policy: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "RawIDNTableRef":
        return cls(**data)


@dataclass
class RawContact:
    """A <rdeContact:contact> element."""

    id: str
    roid: str = ""
    status: list[str] = field(default_factory=list)
    postal_info: list[RawPostalInfo] = field(default_factory=list)
    voice: str = ""
    fax: str = ""
    email: str = ""
    clid: str = ""
    cr_rr: str = ""
    cr_date: str = ""
    up_rr: str = ""
    up_date: str = ""


@dataclass
class RawHost:
    """A <rdeHost:host> element."""

    name: str
    roid: str = ""
    status: list[str] = field(default_factory=list)
    addrs: list[str] = field(default_factory=list)
    clid: str = ""
    cr_rr: str = ""
    cr_date: str = ""
    up_rr: str = ""
    up_date: str = ""


@dataclass
class RawDomainContact:
    type: str
    id: str


@dataclass
class RawDSData:
    key_tag: str = ""
    alg: str = ""
    digest_type: str = ""
    digest: str = ""


@dataclass
class RawDomain:
    """A <rdeDomain:domain> element."""

    name: str
    roid: str = ""
    uname: str = ""
    idn_table_id: str = ""
    original_name: str = ""
    status: list[str] = field(default_factory=list)
    rgp_status: list[str] = field(default_factory=list)
    registrant: str = ""
    contacts: list[RawDomainContact] = field(default_factory=list)
    host_objs: list[str] = field(default_factory=list)
    clid: str = ""
    cr_rr: str = ""
    cr_date: str = ""
    ex_date: str = ""
    up_rr: str = ""
    up_date: str = ""
    ds_data: list[RawDSData] = field(default_factory=list)


@dataclass
class RawNNDN:
    """A <rdeNNDN:NNDN> element."""

    aname: str
    uname: str = ""
    idn_table_id: str = ""
    original_name: str = ""
    name_state: str = ""
    cr_date: str = ""


# ---------------------------------------------------------------------------
# Create commands (validated, ready to commit)
# ---------------------------------------------------------------------------


@dataclass
class PostalInfo:
    type: str
    name: str
    org: str = ""
    street: list[str] = field(default_factory=list)
    city: str = ""
    sp: str = ""
    pc: str = ""
    cc: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "PostalInfo":
        return cls(**{**data, "street": list(data.get("street", []))})


@dataclass
class CreateContactCommand:
    """Create command for a contact object."""

    kind: ClassVar[EntityKind] = EntityKind.CONTACT

    id: str
    email: str
    auth_info: str
    clid: str
    roid: Optional[str] = None
    status: list[str] = field(default_factory=list)
    postal_info: list[PostalInfo] = field(default_factory=list)
    voice: str = ""
    fax: str = ""
    cr_rr: str = ""
    up_rr: str = ""
    created_at: str = ""
    updated_at: str = ""
    disclose: bool = False

    @property
    def subject(self) -> str:
        return self.id

    def referenced_contact_ids(self) -> list[str]:
        return []

    def registrar_fields(self) -> list[str]:
        return ["clid", "cr_rr", "up_rr"]

    @classmethod
    def from_dict(cls, data: dict) -> "CreateContactCommand":
        return cls(
            **{
                **data,
                "status": list(data.get("status", [])),
                "postal_info": [PostalInfo.from_dict(p) for p in data.get("postal_info", [])],
            }
        )


@dataclass
class CreateHostCommand:
    """
    Create command for a host object.

    A host is identified by (name, clid). Copies created for additional
    sponsors carry `duplicate_of` with the clid of the host they were
    copied from.
    """

    kind: ClassVar[EntityKind] = EntityKind.HOST

    name: str
    clid: str
    roid: Optional[str] = None
    status: list[str] = field(default_factory=list)
    addresses: list[str] = field(default_factory=list)
    cr_rr: str = ""
    up_rr: str = ""
    created_at: str = ""
    updated_at: str = ""
    duplicate_of: Optional[str] = None

    @property
    def subject(self) -> str:
        return self.name

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.clid)

    def referenced_contact_ids(self) -> list[str]:
        return []

    def registrar_fields(self) -> list[str]:
        return ["clid", "cr_rr", "up_rr"]

    @classmethod
    def from_dict(cls, data: dict) -> "CreateHostCommand":
        return cls(
            **{
                **data,
                "status": list(data.get("status", [])),
                "addresses": list(data.get("addresses", [])),
            }
        )


@dataclass
class DSRecord:
    key_tag: int
    alg: int
    digest_type: int
    digest: str


@dataclass
class HostLink:
    """
    A domain's delegation to a host.

    `host_clid` is the sponsor of the host entity the link points at. It is
    empty until the host sponsorship resolver has run.
    """

    host_name: str
    host_clid: str = ""


@dataclass
class CreateDomainCommand:
    """
    Create command for a domain object.

    Domains are created without hosts; `host_links` are committed in the
    link stage after both domains and hosts exist.
    """

    kind: ClassVar[EntityKind] = EntityKind.DOMAIN

    name: str
    clid: str
    auth_info: str
    expiry_date: str
    roid: Optional[str] = None
    uname: str = ""
    original_name: str = ""
    idn_table_id: str = ""
    registrant_id: str = ""
    admin_id: str = ""
    tech_id: str = ""
    billing_id: str = ""
    status: list[str] = field(default_factory=list)
    rgp_status: list[str] = field(default_factory=list)
    cr_rr: str = ""
    up_rr: str = ""
    created_at: str = ""
    updated_at: str = ""
    ds_data: list[DSRecord] = field(default_factory=list)
    host_links: list[HostLink] = field(default_factory=list)

    @property
    def subject(self) -> str:
        return self.name

    def referenced_contact_ids(self) -> list[str]:
        """Contact IDs this domain needs, in registrant/admin/tech/billing order."""
        ids: list[str] = []
        for contact_id in (self.registrant_id, self.admin_id, self.tech_id, self.billing_id):
            if contact_id and contact_id not in ids:
                ids.append(contact_id)
        return ids

    def registrar_fields(self) -> list[str]:
        return ["clid", "cr_rr", "up_rr"]

    @classmethod
    def from_dict(cls, data: dict) -> "CreateDomainCommand":
        return cls(
            **{
                **data,
                "status": list(data.get("status", [])),
                "rgp_status": list(data.get("rgp_status", [])),
                "ds_data": [DSRecord(**d) for d in data.get("ds_data", [])],
                "host_links": [HostLink(**h) for h in data.get("host_links", [])],
            }
        )


@dataclass
class CreateNNDNCommand:
    """Create command for a non-domain-name entry."""

    kind: ClassVar[EntityKind] = EntityKind.NNDN

    name: str
    name_state: str
    uname: str = ""
    idn_table_id: str = ""
    original_name: str = ""
    created_at: str = ""

    @property
    def subject(self) -> str:
        return self.name

    def referenced_contact_ids(self) -> list[str]:
        return []

    def registrar_fields(self) -> list[str]:
        return []

    @classmethod
    def from_dict(cls, data: dict) -> "CreateNNDNCommand":
        return cls(**data)


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


@dataclass
class Diagnostic:
    """A non-fatal finding recorded during analysis."""

    kind: DiagnosticKind
    severity: Severity
    message: str
    entity_kind: Optional[EntityKind] = None
    subject: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "entity_kind": self.entity_kind.value if self.entity_kind else None,
            "subject": self.subject,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Diagnostic":
        entity_kind = data.get("entity_kind")
        return cls(
            kind=DiagnosticKind(data["kind"]),
            severity=Severity(data["severity"]),
            message=data["message"],
            entity_kind=EntityKind(entity_kind) if entity_kind else None,
            subject=data.get("subject", ""),
        )


@dataclass
class RegistrarInfo:
    """Per-registrar bookkeeping collected while walking the deposit."""

    name: str = ""
    gurid: str = ""
    target_clid: Optional[str] = None
    domain_count: int = 0
    host_count: int = 0
    contact_count: int = 0

    @property
    def object_count(self) -> int:
        return self.domain_count + self.host_count + self.contact_count

    @classmethod
    def from_dict(cls, data: dict) -> "RegistrarInfo":
        return cls(**data)


@dataclass
class AnalysisResult:
    """Everything learned about one deposit file, ready to drive an import."""

    analysis_id: str
    deposit_file: str
    created_at: str
    header: DepositHeader
    registrars: list[RawRegistrar] = field(default_factory=list)
    idn_table_refs: list[RawIDNTableRef] = field(default_factory=list)
    registrar_info: dict[str, RegistrarInfo] = field(default_factory=dict)
    registrar_map: dict[str, str] = field(default_factory=dict)
    contacts: list[CreateContactCommand] = field(default_factory=list)
    hosts: list[CreateHostCommand] = field(default_factory=list)
    domains: list[CreateDomainCommand] = field(default_factory=list)
    nndns: list[CreateNNDNCommand] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    missing_contact_ids: list[str] = field(default_factory=list)
    unique_contact_ids: list[str] = field(default_factory=list)

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.WARNING]

    @property
    def has_errors(self) -> bool:
        return any(d.severity == Severity.ERROR for d in self.diagnostics)

    def commands_for(self, kind: EntityKind) -> list:
        """Return the extracted commands of one kind."""
        return {
            EntityKind.CONTACT: self.contacts,
            EntityKind.HOST: self.hosts,
            EntityKind.DOMAIN: self.domains,
            EntityKind.NNDN: self.nndns,
        }[kind]


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


@dataclass
class EntityCounters:
    created: int = 0
    existing: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def succeeded(self) -> int:
        return self.created + self.existing


@dataclass
class LinkCounters:
    present: int = 0
    missing: int = 0


@dataclass
class ImportFailure:
    """A command that could not be committed, with the command that caused it."""

    stage: str
    subject: str
    outcome: str
    message: str
    command: dict = field(default_factory=dict)


@dataclass
class StageRecord:
    stage: str
    state: str
    started_at: str
    finished_at: str = ""
    message: str = ""


@dataclass
class ImportResult:
    """Progress and outcome of one import run, persisted after each stage."""

    run_id: str
    deposit_file: str
    started_at: str
    finished_at: str = ""
    contacts: EntityCounters = field(default_factory=EntityCounters)
    hosts: EntityCounters = field(default_factory=EntityCounters)
    domains: EntityCounters = field(default_factory=EntityCounters)
    nndns: EntityCounters = field(default_factory=EntityCounters)
    registrars: EntityCounters = field(default_factory=EntityCounters)
    links: LinkCounters = field(default_factory=LinkCounters)
    failures: list[ImportFailure] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stages: list[StageRecord] = field(default_factory=list)

    def counters_for(self, kind: EntityKind) -> EntityCounters:
        return {
            EntityKind.REGISTRAR: self.registrars,
            EntityKind.CONTACT: self.contacts,
            EntityKind.HOST: self.hosts,
            EntityKind.DOMAIN: self.domains,
            EntityKind.NNDN: self.nndns,
        }[kind]

    @property
    def failed_total(self) -> int:
        return (
            self.contacts.failed
            + self.hosts.failed
            + self.domains.failed
            + self.nndns.failed
            + self.links.missing
        )

    @classmethod
    def from_dict(cls, data: dict) -> "ImportResult":
        return cls(
            run_id=data["run_id"],
            deposit_file=data["deposit_file"],
            started_at=data["started_at"],
            finished_at=data.get("finished_at", ""),
            contacts=EntityCounters(**data.get("contacts", {})),
            hosts=EntityCounters(**data.get("hosts", {})),
            domains=EntityCounters(**data.get("domains", {})),
            nndns=EntityCounters(**data.get("nndns", {})),
            registrars=EntityCounters(**data.get("registrars", {})),
            links=LinkCounters(**data.get("links", {})),
            failures=[ImportFailure(**f) for f in data.get("failures", [])],
            warnings=list(data.get("warnings", [])),
            stages=[StageRecord(**s) for s in data.get("stages", [])],
        )
