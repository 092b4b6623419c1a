"""
Header analysis for RDE escrow deposits.

Reads the <rdeHeader:header> element (TLD and declared object counts)
together with the identity of the enclosing <rde:deposit> (id, type,
resend, watermark). A missing count is read as zero; a missing header,
a missing TLD or a non-numeric count is fatal.
"""

from typing import Optional

from .audit_logger import AuditLogger
from .deposit_reader import (
    CONTACT_URI,
    DOMAIN_URI,
    HEADER_URI,
    HOST_URI,
    IDN_URI,
    NNDN_URI,
    RDE_URI,
    REGISTRAR_URI,
    DepositReader,
    DepositSource,
    child_text,
    children,
    release,
)
from .enums import LogLevel
from .exceptions import MalformedHeaderError
from .models import DepositHeader

COUNT_FIELDS = {
    REGISTRAR_URI: "registrar_count",
    IDN_URI: "idn_count",
    CONTACT_URI: "contact_count",
    HOST_URI: "host_count",
    DOMAIN_URI: "domain_count",
    NNDN_URI: "nndn_count",
}


class HeaderAnalyzer:
    """Extracts the DepositHeader from a deposit without reading its objects."""

    COMPONENT = "HeaderAnalyzer"

    def __init__(self, logger: Optional[AuditLogger] = None) -> None:
        self._logger = logger

    def analyze(self, source: DepositSource) -> DepositHeader:
        """
        Parse the deposit header.

        Args:
            source: Path to the deposit file, or the raw deposit bytes

        Returns:
            DepositHeader with TLD, declared counts and deposit identity

        Raises:
            MalformedHeaderError: If the header is absent or malformed
            DepositParseError: If the deposit is not well-formed XML
        """
        reader = source if isinstance(source, DepositReader) else DepositReader(source)

        deposit_attrs: dict = {}
        watermark = ""
        header: Optional[DepositHeader] = None

        for event, elem in reader.iterparse(events=("start", "end")):
            if event == "start":
                if elem.tag == f"{{{RDE_URI}}}deposit":
                    deposit_attrs = dict(elem.attrib)
                continue
            if elem.tag == f"{{{RDE_URI}}}watermark":
                watermark = (elem.text or "").strip()
            elif elem.tag == f"{{{HEADER_URI}}}header":
                header = self._parse_header(elem)
                break
            elif elem.getparent() is not None and elem.getparent().tag == f"{{{RDE_URI}}}contents":
                release(elem)

        if header is None:
            raise MalformedHeaderError(
                code="missing_header",
                message="Deposit has no <rdeHeader:header> element",
                details={"file": reader.name},
            )

        header.deposit_id = deposit_attrs.get("id", "")
        header.deposit_type = deposit_attrs.get("type", "")
        header.watermark = watermark
        resend = deposit_attrs.get("resend", "0")
        try:
            header.resend = int(resend)
        except ValueError:
            raise MalformedHeaderError(
                code="invalid_resend",
                message=f"Deposit resend attribute is not numeric: {resend!r}",
                details={"file": reader.name},
            )

        if self._logger:
            self._logger.log(
                LogLevel.INFO,
                self.COMPONENT,
                f"Analyzed header of deposit {header.deposit_id or reader.name}",
                {
                    "tld": header.tld,
                    "registrars": header.registrar_count,
                    "idn_tables": header.idn_count,
                    "contacts": header.contact_count,
                    "hosts": header.host_count,
                    "domains": header.domain_count,
                    "nndns": header.nndn_count,
                },
            )
        return header

    def _parse_header(self, elem) -> DepositHeader:
        tld = child_text(elem, "tld")
        if not tld:
            raise MalformedHeaderError(
                code="missing_tld",
                message="Deposit header has no <tld> element",
            )

        header = DepositHeader(tld=tld.lower())
        for count in children(elem, "count"):
            uri = count.get("uri", "")
            raw = (count.text or "").strip()
            try:
                value = int(raw)
            except ValueError:
                raise MalformedHeaderError(
                    code="invalid_count",
                    message=f"Header count for {uri} is not numeric: {raw!r}",
                    details={"uri": uri, "value": raw},
                )
            if value < 0:
                raise MalformedHeaderError(
                    code="invalid_count",
                    message=f"Header count for {uri} is negative: {value}",
                    details={"uri": uri, "value": raw},
                )
            field_name = COUNT_FIELDS.get(uri)
            if field_name is not None:
                setattr(header, field_name, value)
        return header
