"""
Entity extractors: raw escrow records to validated create commands.

There is one extractor per object kind, all sharing the same contract:

- `extract(raw)` returns a create command or raises RecordValidationError
- `extract_all(raws)` never aborts on a bad record; it returns the commands
  that passed together with (record, error) pairs for those that did not

Validation is eager, so a command that leaves an extractor is ready to be
committed once its registrar identifiers have been mapped.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, Iterable, Optional, TypeVar

from .audit_logger import AuditLogger
from .enums import (
    ContactType,
    DiagnosticKind,
    EntityKind,
    ExtractionMode,
    LogLevel,
    NNDNState,
    Severity,
)
from .exceptions import RecordValidationError
from .models import (
    CreateContactCommand,
    CreateDomainCommand,
    CreateHostCommand,
    CreateNNDNCommand,
    Diagnostic,
    DSRecord,
    HostLink,
    PostalInfo,
    RawContact,
    RawDomain,
    RawHost,
    RawNNDN,
)
from .validator import (
    CONTACT_STATUSES,
    DOMAIN_STATUSES,
    HOST_STATUSES,
    RGP_STATUSES,
    NameValidator,
    check_status_combination,
    is_ascii,
    parse_rfc3339,
    validate_clid,
    validate_e164,
    validate_email,
    validate_host_addresses,
    validate_roid,
)

R = TypeVar("R")
C = TypeVar("C")


@dataclass
class ExtractionFailure(Generic[R]):
    """A raw record that could not be turned into a command."""

    record: R
    error: RecordValidationError


@dataclass
class ExtractionOutcome(Generic[R, C]):
    """Result of extracting a batch of raw records."""

    commands: list[C] = field(default_factory=list)
    failures: list[ExtractionFailure[R]] = field(default_factory=list)
    warnings: list[Diagnostic] = field(default_factory=list)


def _record_subject(record: Any) -> str:
    for attr in ("id", "name", "aname"):
        value = getattr(record, attr, None)
        if value:
            return value
    return "<unnamed>"


class EntityExtractor(ABC, Generic[R, C]):
    """Base class for all extractors."""

    kind: EntityKind

    def __init__(
        self,
        names: NameValidator,
        mode: ExtractionMode = ExtractionMode.PRESERVE_ROID,
        auth_info_placeholder: str = "escr0W1mP*rt",
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the extractor.

        Args:
            names: Validator for host and domain names (bound to the deposit TLD)
            mode: Whether source ROIDs are carried into commands
            auth_info_placeholder: Auth info for objects whose deposit has none
            logger: Optional audit logger
        """
        self._names = names
        self._mode = mode
        self._auth_info = auth_info_placeholder
        self._logger = logger
        self.last_warnings: list[Diagnostic] = []

    @abstractmethod
    def _build(self, raw: R) -> C:
        """Validate one raw record and build its command."""

    def extract(self, raw: R) -> C:
        """
        Turn one raw record into a create command.

        Raises:
            RecordValidationError: If the record violates a validation rule
        """
        self.last_warnings = []
        try:
            return self._build(raw)
        except RecordValidationError as e:
            e.details.setdefault("entity_kind", self.kind.value)
            e.details.setdefault("subject", _record_subject(raw))
            raise

    def extract_all(self, raws: Iterable[R]) -> ExtractionOutcome[R, C]:
        """Extract every record, collecting failures instead of raising."""
        outcome: ExtractionOutcome[R, C] = ExtractionOutcome()
        for raw in raws:
            try:
                command = self.extract(raw)
            except RecordValidationError as e:
                outcome.failures.append(ExtractionFailure(record=raw, error=e))
                continue
            outcome.commands.append(command)
            outcome.warnings.extend(self.last_warnings)

        if self._logger:
            self._logger.log(
                LogLevel.INFO,
                type(self).__name__,
                f"Extracted {len(outcome.commands)} {self.kind.value} commands",
                {"failed": len(outcome.failures), "warnings": len(outcome.warnings)},
            )
        return outcome

    def _warn(self, kind: DiagnosticKind, subject: str, message: str) -> None:
        self.last_warnings.append(Diagnostic(
            kind=kind,
            severity=Severity.WARNING,
            message=message,
            entity_kind=self.kind,
            subject=subject,
        ))

    def _roid(self, value: str) -> Optional[str]:
        if self._mode == ExtractionMode.DISCARD_ROID:
            return None
        if not value:
            raise RecordValidationError(
                code="missing_roid",
                message="ROID is required when source ROIDs are preserved",
            )
        return validate_roid(value)

    @staticmethod
    def _date(value: str, field_name: str) -> str:
        if value:
            parse_rfc3339(value, field_name)
        return value

    @staticmethod
    def _optional_clid(value: str, field_name: str) -> str:
        return validate_clid(value, field_name) if value else ""


class ContactExtractor(EntityExtractor[RawContact, CreateContactCommand]):
    """Builds CreateContactCommand from <rdeContact:contact> records."""

    kind = EntityKind.CONTACT

    def _build(self, raw: RawContact) -> CreateContactCommand:
        contact_id = validate_clid(raw.id, "id")
        status = check_status_combination(raw.status, CONTACT_STATUSES, "contact")

        if not raw.postal_info:
            raise RecordValidationError(
                code="missing_postal_info",
                message=f"Contact {contact_id} has no postal info",
            )
        if len(raw.postal_info) > 2:
            raise RecordValidationError(
                code="too_many_postal_info",
                message=f"Contact {contact_id} has {len(raw.postal_info)} postal info elements",
            )

        postal_info = []
        for raw_pi in raw.postal_info:
            pi = self._postal_info(contact_id, raw_pi)
            if any(existing.type == pi.type for existing in postal_info):
                raise RecordValidationError(
                    code="duplicate_postal_info",
                    message=f"Contact {contact_id} has two '{pi.type}' postal info elements",
                )
            postal_info.append(pi)

        return CreateContactCommand(
            id=contact_id,
            roid=self._roid(raw.roid),
            email=validate_email(raw.email),
            auth_info=self._auth_info,
            clid=validate_clid(raw.clid),
            status=status,
            postal_info=postal_info,
            voice=validate_e164(raw.voice, "voice") if raw.voice else "",
            fax=validate_e164(raw.fax, "fax") if raw.fax else "",
            cr_rr=self._optional_clid(raw.cr_rr, "crRr"),
            up_rr=self._optional_clid(raw.up_rr, "upRr"),
            created_at=self._date(raw.cr_date, "crDate"),
            updated_at=self._date(raw.up_date, "upDate"),
            disclose=False,  # deposit disclose flags are not carried over
        )

    def _postal_info(self, contact_id: str, raw_pi) -> PostalInfo:
        pi_type = raw_pi.type
        if pi_type not in ("int", "loc"):
            raise RecordValidationError(
                code="invalid_postal_info_type",
                message=f"Postal info type must be 'int' or 'loc', got {pi_type!r}",
            )
        if not raw_pi.name:
            raise RecordValidationError(
                code="missing_postal_name",
                message=f"Contact {contact_id} postal info has no name",
            )
        addr = raw_pi.addr
        if not addr.city or not addr.cc:
            raise RecordValidationError(
                code="incomplete_address",
                message=f"Contact {contact_id} address needs a city and a country code",
            )
        if len(addr.cc) != 2 or not addr.cc.isalpha():
            raise RecordValidationError(
                code="invalid_country_code",
                message=f"Invalid country code {addr.cc!r}",
            )
        if len(addr.street) > 3:
            raise RecordValidationError(
                code="too_many_street_lines",
                message=f"Contact {contact_id} address has {len(addr.street)} street lines",
            )

        texts = [raw_pi.name, raw_pi.org, addr.city, addr.sp, addr.pc, *addr.street]
        if pi_type == "int" and not all(is_ascii(t) for t in texts):
            pi_type = "loc"
            self._warn(
                DiagnosticKind.INVALID_RECORD,
                contact_id,
                f"Contact {contact_id}: non-ASCII 'int' postal info imported as 'loc'",
            )

        return PostalInfo(
            type=pi_type,
            name=raw_pi.name,
            org=raw_pi.org,
            street=list(addr.street),
            city=addr.city,
            sp=addr.sp,
            pc=addr.pc,
            cc=addr.cc.upper(),
        )


class HostExtractor(EntityExtractor[RawHost, CreateHostCommand]):
    """Builds CreateHostCommand from <rdeHost:host> records."""

    kind = EntityKind.HOST

    def _build(self, raw: RawHost) -> CreateHostCommand:
        name = self._names.validate_host_name(raw.name)
        status = check_status_combination(raw.status, HOST_STATUSES, "host")
        # 'linked' is derived by the target once domains point at the host
        status = [s for s in status if s != "linked"] or ["ok"]

        return CreateHostCommand(
            name=name,
            roid=self._roid(raw.roid),
            clid=validate_clid(raw.clid),
            status=status,
            addresses=validate_host_addresses(raw.addrs),
            cr_rr=self._optional_clid(raw.cr_rr, "crRr"),
            up_rr=self._optional_clid(raw.up_rr, "upRr"),
            created_at=self._date(raw.cr_date, "crDate"),
            updated_at=self._date(raw.up_date, "upDate"),
        )


class DomainExtractor(EntityExtractor[RawDomain, CreateDomainCommand]):
    """
    Builds CreateDomainCommand from <rdeDomain:domain> records.

    Domains are created without hosts, so they always carry 'inactive'
    until the link stage runs. A domain whose expiry lies in the future and
    that combines pendingDelete with a delete prohibition has pendingDelete
    dropped, with a warning.
    """

    kind = EntityKind.DOMAIN

    def __init__(self, *args, now: Optional[datetime] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._now = now

    def _build(self, raw: RawDomain) -> CreateDomainCommand:
        name = self._names.validate_domain_name(raw.name)
        clid = validate_clid(raw.clid)

        if not raw.ex_date:
            raise RecordValidationError(
                code="missing_expiry",
                message=f"Domain {name} has no expiry date",
            )
        expiry = parse_rfc3339(raw.ex_date, "exDate")

        contacts = {}
        for contact in raw.contacts:
            try:
                contact_type = ContactType(contact.type)
            except ValueError:
                raise RecordValidationError(
                    code="invalid_contact_type",
                    message=f"Domain {name} has contact of unknown type {contact.type!r}",
                )
            contacts[contact_type] = validate_clid(contact.id, f"contact[{contact_type.value}]")

        rgp_status = []
        for rgp in raw.rgp_status:
            if rgp not in RGP_STATUSES:
                raise RecordValidationError(
                    code="invalid_rgp_status",
                    message=f"Domain {name} has unknown RGP status {rgp!r}",
                )
            rgp_status.append(rgp)

        host_links: list[HostLink] = []
        for host_obj in raw.host_objs:
            host_name = self._names.validate_host_name(host_obj)
            if all(link.host_name != host_name for link in host_links):
                host_links.append(HostLink(host_name=host_name))

        return CreateDomainCommand(
            name=name,
            roid=self._roid(raw.roid),
            clid=clid,
            auth_info=self._auth_info,
            expiry_date=raw.ex_date,
            uname=raw.uname,
            original_name=self._names.normalize_to_canonical(raw.original_name) if raw.original_name else "",
            idn_table_id=raw.idn_table_id,
            registrant_id=self._optional_clid(raw.registrant, "registrant"),
            admin_id=contacts.get(ContactType.ADMIN, ""),
            tech_id=contacts.get(ContactType.TECH, ""),
            billing_id=contacts.get(ContactType.BILLING, ""),
            status=self._status(name, raw.status, expiry),
            rgp_status=rgp_status,
            cr_rr=self._optional_clid(raw.cr_rr, "crRr"),
            up_rr=self._optional_clid(raw.up_rr, "upRr"),
            created_at=self._date(raw.cr_date, "crDate"),
            updated_at=self._date(raw.up_date, "upDate"),
            ds_data=[self._ds_record(name, ds) for ds in raw.ds_data],
            host_links=host_links,
        )

    def _status(self, name: str, raw_status: list[str], expiry: datetime) -> list[str]:
        statuses = list(raw_status)
        if "inactive" not in statuses:
            statuses.append("inactive")
        try:
            return check_status_combination(statuses, DOMAIN_STATUSES, "domain")
        except RecordValidationError as e:
            if e.code != "invalid_status_combination":
                raise
            now = self._now or datetime.now(timezone.utc)
            delete_prohibited = (
                "clientDeleteProhibited" in statuses or "serverDeleteProhibited" in statuses
            )
            if not (expiry > now and "pendingDelete" in statuses and delete_prohibited):
                raise
            fixed = check_status_combination(
                [s for s in statuses if s != "pendingDelete"], DOMAIN_STATUSES, "domain"
            )
            self._warn(
                DiagnosticKind.STATUS_FIX_APPLIED,
                name,
                f"Dropped pendingDelete from {name}: expiry is in the future and deletion is prohibited",
            )
            return fixed

    @staticmethod
    def _ds_record(name: str, raw) -> DSRecord:
        try:
            record = DSRecord(
                key_tag=int(raw.key_tag),
                alg=int(raw.alg),
                digest_type=int(raw.digest_type),
                digest=raw.digest.upper(),
            )
        except ValueError:
            raise RecordValidationError(
                code="invalid_ds_data",
                message=f"Domain {name} has non-numeric DS data",
            )
        if not (0 <= record.key_tag <= 65535) or not (0 <= record.alg <= 255):
            raise RecordValidationError(
                code="invalid_ds_data",
                message=f"Domain {name} has out-of-range DS key tag or algorithm",
            )
        if not record.digest or any(c not in "0123456789ABCDEF" for c in record.digest):
            raise RecordValidationError(
                code="invalid_ds_data",
                message=f"Domain {name} has a non-hexadecimal DS digest",
            )
        return record


class NNDNExtractor(EntityExtractor[RawNNDN, CreateNNDNCommand]):
    """Builds CreateNNDNCommand from <rdeNNDN:NNDN> records."""

    kind = EntityKind.NNDN

    def _build(self, raw: RawNNDN) -> CreateNNDNCommand:
        name = self._names.validate_domain_name(raw.aname)
        try:
            state = NNDNState(raw.name_state)
        except ValueError:
            raise RecordValidationError(
                code="invalid_name_state",
                message=f"NNDN {name} has unknown name state {raw.name_state!r}",
            )
        return CreateNNDNCommand(
            name=name,
            name_state=state.value,
            uname=raw.uname,
            idn_table_id=raw.idn_table_id,
            original_name=self._names.normalize_to_canonical(raw.original_name) if raw.original_name else "",
            created_at=self._date(raw.cr_date, "crDate"),
        )
