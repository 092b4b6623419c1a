"""
Field validation for escrow records.

Provides name normalization (IDNA via the idna library), identifier format
checks (client IDs, ROIDs), contact-data formats (E.164, email), RFC 3339
timestamps, IP addresses, and status-combination legality for contacts,
hosts and domains.

Every check raises RecordValidationError with a stable error code; callers
decide whether that fails a single record or the whole run.
"""

import ipaddress
import re
from datetime import datetime
from typing import Iterable, Optional

import idna

from .exceptions import RecordValidationError


# Forbidden characters in host and domain names (control chars, spaces, special symbols)
FORBIDDEN_CHARS_PATTERN = re.compile(
    r'[\x00-\x1f\x7f'
    r'\s'
    r'!@#$%^&*()+=\[\]{}|\\:;"\'<>,?/`~]'
)

LDH_LABEL_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")

# Repository object identifier: <local part>-<repository suffix>
ROID_PATTERN = re.compile(r"^\w{1,80}-\w{1,8}$", re.ASCII)

E164_PATTERN = re.compile(r"^\+[0-9]{1,3}\.[0-9]{1,14}$")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

RFC3339_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)

CLID_MIN_LENGTH = 3
CLID_MAX_LENGTH = 16

MAX_HOST_ADDRESSES = 10

PROHIBITABLE_OPERATIONS = ("Delete", "Renew", "Transfer", "Update")

CONTACT_STATUSES = frozenset({
    "ok", "linked",
    "pendingCreate", "pendingDelete", "pendingTransfer", "pendingUpdate",
    "clientDeleteProhibited", "clientTransferProhibited", "clientUpdateProhibited",
    "serverDeleteProhibited", "serverTransferProhibited", "serverUpdateProhibited",
})

HOST_STATUSES = frozenset({
    "ok", "linked",
    "pendingCreate", "pendingDelete", "pendingTransfer", "pendingUpdate",
    "clientDeleteProhibited", "clientUpdateProhibited",
    "serverDeleteProhibited", "serverUpdateProhibited",
})

DOMAIN_STATUSES = frozenset({
    "ok", "inactive", "clientHold", "serverHold",
    "pendingCreate", "pendingDelete", "pendingRenew", "pendingTransfer", "pendingUpdate",
    "clientDeleteProhibited", "clientRenewProhibited",
    "clientTransferProhibited", "clientUpdateProhibited",
    "serverDeleteProhibited", "serverRenewProhibited",
    "serverTransferProhibited", "serverUpdateProhibited",
})

RGP_STATUSES = frozenset({
    "addPeriod", "autoRenewPeriod", "renewPeriod", "transferPeriod",
    "redemptionPeriod", "pendingRestore", "pendingDelete",
})


def _fail(code: str, message: str, **details) -> RecordValidationError:
    return RecordValidationError(code=code, message=message, details=details)


def is_ascii(value: str) -> bool:
    return all(ord(c) < 128 for c in value)


class NameValidator:
    """
    Validates and normalizes host and domain names.

    Handles:
    - Conversion to lowercase canonical form
    - IDNA encoding for international characters
    - Rejection of forbidden characters and non-LDH labels
    - Optional check that a name lives under the deposit's TLD
    """

    def __init__(self, tld: Optional[str] = None) -> None:
        """
        Initialize validator.

        Args:
            tld: If given, domain names must be direct children of this TLD
        """
        self._tld = self.normalize_to_canonical(tld) if tld else None

    def normalize_to_canonical(self, name: str) -> str:
        """
        Convert a name to canonical form (lowercase, IDNA-encoded, no trailing dot).

        Raises:
            RecordValidationError: If the name is empty, holds forbidden
                characters, or cannot be IDNA-encoded
        """
        if not name or not name.strip():
            raise _fail("empty_name", "Name is empty", name=name)

        candidate = name.strip().rstrip(".").lower()

        if FORBIDDEN_CHARS_PATTERN.search(candidate):
            raise _fail(
                "forbidden_chars",
                f"Name contains forbidden characters: {name!r}",
                name=name,
                forbidden_chars=FORBIDDEN_CHARS_PATTERN.findall(candidate),
            )

        if not is_ascii(candidate):
            try:
                candidate = idna.encode(candidate, uts46=True).decode("ascii")
            except idna.IDNAError as e:
                raise _fail("idna_error", f"IDNA encoding failed: {e}", name=name)

        if len(candidate) > 253:
            raise _fail("name_too_long", f"Name exceeds 253 characters: {name!r}", name=name)

        for label in candidate.split("."):
            if not LDH_LABEL_PATTERN.match(label):
                raise _fail(
                    "invalid_label",
                    f"Invalid label {label!r} in {name!r}",
                    name=name,
                    label=label,
                )
        return candidate

    def validate_host_name(self, name: str) -> str:
        canonical = self.normalize_to_canonical(name)
        if "." not in canonical:
            raise _fail("invalid_host_name", f"Host name must have at least two labels: {name!r}", name=name)
        return canonical

    def validate_domain_name(self, name: str) -> str:
        """Validate a registrable domain name, returning its canonical A-label form."""
        canonical = self.normalize_to_canonical(name)
        if "." not in canonical:
            raise _fail("invalid_domain_name", f"Domain name must have at least two labels: {name!r}", name=name)
        if self._tld is not None:
            sld, _, tld = canonical.partition(".")
            if tld != self._tld:
                raise _fail(
                    "invalid_tld",
                    f"Domain {name!r} is not a child of TLD {self._tld!r}",
                    name=name,
                    tld=self._tld,
                )
        return canonical


def validate_clid(value: str, field_name: str = "clID") -> str:
    """Client identifiers are 3-16 ASCII characters without whitespace."""
    if not value:
        raise _fail("missing_clid", f"{field_name} is required", field=field_name)
    if not (CLID_MIN_LENGTH <= len(value) <= CLID_MAX_LENGTH):
        raise _fail(
            "invalid_clid",
            f"{field_name} {value!r} must be {CLID_MIN_LENGTH}-{CLID_MAX_LENGTH} characters",
            field=field_name,
            value=value,
        )
    if not is_ascii(value) or any(c.isspace() for c in value):
        raise _fail(
            "invalid_clid",
            f"{field_name} {value!r} must be ASCII without whitespace",
            field=field_name,
            value=value,
        )
    return value


def validate_roid(value: str) -> str:
    if not ROID_PATTERN.match(value or ""):
        raise _fail("invalid_roid", f"Invalid ROID: {value!r}", value=value)
    return value


def validate_e164(value: str, field_name: str = "voice") -> str:
    if not E164_PATTERN.match(value):
        raise _fail(
            "invalid_e164",
            f"{field_name} {value!r} is not in +CC.NUMBER format",
            field=field_name,
            value=value,
        )
    return value


def validate_email(value: str) -> str:
    if not EMAIL_PATTERN.match(value or ""):
        raise _fail("invalid_email", f"Invalid email address: {value!r}", value=value)
    return value


def parse_rfc3339(value: str, field_name: str = "date") -> datetime:
    """
    Parse an RFC 3339 timestamp into an aware datetime.

    Raises:
        RecordValidationError: If the value is not a full RFC 3339 timestamp
    """
    if not RFC3339_PATTERN.match(value or ""):
        raise _fail(
            "invalid_timestamp",
            f"{field_name} {value!r} is not an RFC 3339 timestamp",
            field=field_name,
            value=value,
        )
    normalized = value.replace("t", "T").replace(" ", "T")
    if normalized[-1] in "zZ":
        normalized = normalized[:-1] + "+00:00"
    # fromisoformat on 3.10 only accepts 3 or 6 fractional digits
    if "." in normalized:
        head, _, rest = normalized.partition(".")
        digits = re.match(r"\d*", rest).group(0)
        offset = rest[len(digits):]
        normalized = f"{head}.{(digits + '000000')[:6]}{offset}"
    try:
        return datetime.fromisoformat(normalized)
    except ValueError as e:
        raise _fail(
            "invalid_timestamp",
            f"{field_name} {value!r} is not a valid date: {e}",
            field=field_name,
            value=value,
        )


def validate_ip(value: str) -> str:
    """Return the canonical textual form of an IPv4 or IPv6 address."""
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        raise _fail("invalid_ip", f"Invalid IP address: {value!r}", value=value)


def validate_host_addresses(addresses: Iterable[str]) -> list[str]:
    canonical: list[str] = []
    for addr in addresses:
        ip = validate_ip(addr)
        if ip in canonical:
            raise _fail("duplicate_address", f"Duplicate host address: {ip}", value=ip)
        canonical.append(ip)
    if len(canonical) > MAX_HOST_ADDRESSES:
        raise _fail(
            "too_many_addresses",
            f"A host may carry at most {MAX_HOST_ADDRESSES} addresses, got {len(canonical)}",
            count=len(canonical),
        )
    return canonical


def check_status_combination(
    statuses: Iterable[str],
    allowed: frozenset,
    object_type: str,
) -> list[str]:
    """
    Check that a set of EPP statuses is known and legal in combination.

    Rules:
    - every status must be in `allowed`
    - the set must not be empty
    - 'ok' cannot be combined with a pending status or a prohibition
    - at most one pending status
    - pendingX cannot be combined with clientXProhibited or serverXProhibited

    Returns:
        The statuses, de-duplicated, in their original order
    """
    unique: list[str] = []
    for status in statuses:
        if status not in allowed:
            raise _fail(
                "invalid_status",
                f"Unknown {object_type} status {status!r}",
                status=status,
            )
        if status not in unique:
            unique.append(status)

    if not unique:
        raise _fail("empty_status", f"A {object_type} must carry at least one status")

    pendings = [s for s in unique if s.startswith("pending")]
    prohibitions = [s for s in unique if s.endswith("Prohibited")]

    if "ok" in unique and (pendings or prohibitions):
        raise _fail(
            "invalid_status_combination",
            f"'ok' cannot be combined with {pendings + prohibitions}",
            statuses=unique,
        )
    if len(pendings) > 1:
        raise _fail(
            "invalid_status_combination",
            f"At most one pending status is allowed, got {pendings}",
            statuses=unique,
        )
    for operation in PROHIBITABLE_OPERATIONS:
        pending = f"pending{operation}"
        if pending in unique and (
            f"client{operation}Prohibited" in unique or f"server{operation}Prohibited" in unique
        ):
            raise _fail(
                "invalid_status_combination",
                f"{pending} cannot be combined with a {operation.lower()} prohibition",
                statuses=unique,
            )
    return unique
