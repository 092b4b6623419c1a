"""
Streaming reader for RDE escrow deposits.

Deposits can be many gigabytes, so objects are read one at a time with
lxml's iterparse and discarded as soon as they have been turned into raw
records. Each object kind is only accepted in its own RDE namespace; a
<domain> element in any other namespace is ignored.

The parser is hardened: no entity resolution and no network access.
"""

import io
from pathlib import Path
from typing import Iterator, Optional, Union

from lxml import etree

from .enums import EntityKind
from .exceptions import DepositParseError
from .models import (
    RawAddress,
    RawContact,
    RawDomain,
    RawDomainContact,
    RawDSData,
    RawHost,
    RawIDNTableRef,
    RawNNDN,
    RawPostalInfo,
    RawRegistrar,
)

RDE_URI = "urn:ietf:params:xml:ns:rde-1.0"
HEADER_URI = "urn:ietf:params:xml:ns:rdeHeader-1.0"
REGISTRAR_URI = "urn:ietf:params:xml:ns:rdeRegistrar-1.0"
IDN_URI = "urn:ietf:params:xml:ns:rdeIDN-1.0"
CONTACT_URI = "urn:ietf:params:xml:ns:rdeContact-1.0"
HOST_URI = "urn:ietf:params:xml:ns:rdeHost-1.0"
DOMAIN_URI = "urn:ietf:params:xml:ns:rdeDomain-1.0"
NNDN_URI = "urn:ietf:params:xml:ns:rdeNNDN-1.0"

# (namespace, element local name) per object kind
OBJECT_ELEMENTS = {
    EntityKind.REGISTRAR: (REGISTRAR_URI, "registrar"),
    EntityKind.IDN_TABLE_REF: (IDN_URI, "idnTableRef"),
    EntityKind.CONTACT: (CONTACT_URI, "contact"),
    EntityKind.HOST: (HOST_URI, "host"),
    EntityKind.DOMAIN: (DOMAIN_URI, "domain"),
    EntityKind.NNDN: (NNDN_URI, "NNDN"),
}

DepositSource = Union[str, Path, bytes]


def local_name(elem) -> str:
    return etree.QName(elem).localname


def children(elem, name: str) -> list:
    """Child elements with the given local name, in any namespace."""
    return [c for c in elem if isinstance(c.tag, str) and local_name(c) == name]


def child(elem, name: str):
    for c in elem:
        if isinstance(c.tag, str) and local_name(c) == name:
            return c
    return None


def child_text(elem, name: str) -> str:
    found = child(elem, name)
    if found is None or found.text is None:
        return ""
    return found.text.strip()


def _statuses(elem, name: str = "status") -> list[str]:
    # EPP-style objects put the status in @s; registrars use element text
    result = []
    for status in children(elem, name):
        value = status.get("s") or (status.text or "").strip()
        if value:
            result.append(value)
    return result


def release(elem) -> None:
    """Free an element and its already-processed preceding siblings."""
    elem.clear()
    parent = elem.getparent()
    if parent is not None:
        while elem.getprevious() is not None:
            del parent[0]


class DepositReader:
    """
    Iterates the objects of one deposit, one kind at a time.

    Every iteration is a fresh pass over the source, so the reader can be
    walked once per object kind without holding the document in memory.
    """

    def __init__(self, source: DepositSource) -> None:
        """
        Initialize the reader.

        Args:
            source: Path to the deposit file, or the raw deposit bytes
        """
        self._source = source

    @property
    def name(self) -> str:
        if isinstance(self._source, bytes):
            return "<memory>"
        return str(self._source)

    def _open(self):
        if isinstance(self._source, bytes):
            return io.BytesIO(self._source)
        return str(self._source)

    def iterparse(self, events=("end",), tag: Optional[str] = None):
        """
        Run a hardened iterparse over the deposit.

        Raises:
            DepositParseError: If the file cannot be read or is not well-formed
        """
        kwargs = {
            "events": events,
            "resolve_entities": False,
            "no_network": True,
            "huge_tree": True,
            "remove_comments": True,
        }
        if tag is not None:
            kwargs["tag"] = tag
        try:
            yield from etree.iterparse(self._open(), **kwargs)
        except etree.XMLSyntaxError as e:
            raise DepositParseError(
                code="xml_syntax_error",
                message=f"Deposit is not well-formed XML: {e}",
                details={"file": self.name, "line": getattr(e, "lineno", None)},
            )
        except OSError as e:
            raise DepositParseError(
                code="io_error",
                message=f"Failed to read deposit: {e}",
                details={"file": self.name},
            )

    def iter_elements(self, kind: EntityKind) -> Iterator:
        namespace, name = OBJECT_ELEMENTS[kind]
        for _, elem in self.iterparse(tag=f"{{{namespace}}}{name}"):
            yield elem
            release(elem)

    def registrars(self) -> Iterator[RawRegistrar]:
        for elem in self.iter_elements(EntityKind.REGISTRAR):
            yield RawRegistrar(
                id=child_text(elem, "id"),
                name=child_text(elem, "name"),
                gurid=child_text(elem, "gurid"),
                status=_statuses(elem),
                email=child_text(elem, "email"),
                voice=child_text(elem, "voice"),
                fax=child_text(elem, "fax"),
                url=child_text(elem, "url"),
                cr_date=child_text(elem, "crDate"),
                up_date=child_text(elem, "upDate"),
            )

    def idn_table_refs(self) -> Iterator[RawIDNTableRef]:
        for elem in self.iter_elements(EntityKind.IDN_TABLE_REF):
            yield RawIDNTableRef(
                id=elem.get("id", ""),
                url=child_text(elem, "url"),
                url_policy=child_text(elem, "urlPolicy"),
            )

    def contacts(self) -> Iterator[RawContact]:
        for elem in self.iter_elements(EntityKind.CONTACT):
            postal_infos = []
            for pi in children(elem, "postalInfo"):
                addr = child(pi, "addr")
                postal_infos.append(RawPostalInfo(
                    type=pi.get("type", ""),
                    name=child_text(pi, "name"),
                    org=child_text(pi, "org"),
                    addr=RawAddress(
                        street=[(s.text or "").strip() for s in children(addr, "street")],
                        city=child_text(addr, "city"),
                        sp=child_text(addr, "sp"),
                        pc=child_text(addr, "pc"),
                        cc=child_text(addr, "cc"),
                    ) if addr is not None else RawAddress(),
                ))
            yield RawContact(
                id=child_text(elem, "id"),
                roid=child_text(elem, "roid"),
                status=_statuses(elem),
                postal_info=postal_infos,
                voice=child_text(elem, "voice"),
                fax=child_text(elem, "fax"),
                email=child_text(elem, "email"),
                clid=child_text(elem, "clID"),
                cr_rr=child_text(elem, "crRr"),
                cr_date=child_text(elem, "crDate"),
                up_rr=child_text(elem, "upRr"),
                up_date=child_text(elem, "upDate"),
            )

    def hosts(self) -> Iterator[RawHost]:
        for elem in self.iter_elements(EntityKind.HOST):
            yield RawHost(
                name=child_text(elem, "name"),
                roid=child_text(elem, "roid"),
                status=_statuses(elem),
                addrs=[(a.text or "").strip() for a in children(elem, "addr")],
                clid=child_text(elem, "clID"),
                cr_rr=child_text(elem, "crRr"),
                cr_date=child_text(elem, "crDate"),
                up_rr=child_text(elem, "upRr"),
                up_date=child_text(elem, "upDate"),
            )

    def domains(self) -> Iterator[RawDomain]:
        for elem in self.iter_elements(EntityKind.DOMAIN):
            host_objs = []
            for ns in children(elem, "ns"):
                host_objs.extend((h.text or "").strip() for h in children(ns, "hostObj"))
            ds_data = []
            sec_dns = child(elem, "secDNS")
            if sec_dns is not None:
                for ds in children(sec_dns, "dsData"):
                    ds_data.append(RawDSData(
                        key_tag=child_text(ds, "keyTag"),
                        alg=child_text(ds, "alg"),
                        digest_type=child_text(ds, "digestType"),
                        digest=child_text(ds, "digest"),
                    ))
            yield RawDomain(
                name=child_text(elem, "name"),
                roid=child_text(elem, "roid"),
                uname=child_text(elem, "uName"),
                idn_table_id=child_text(elem, "idnTableId"),
                original_name=child_text(elem, "originalName"),
                status=_statuses(elem),
                rgp_status=_statuses(elem, "rgpStatus"),
                registrant=child_text(elem, "registrant"),
                contacts=[
                    RawDomainContact(type=c.get("type", ""), id=(c.text or "").strip())
                    for c in children(elem, "contact")
                ],
                host_objs=host_objs,
                clid=child_text(elem, "clID"),
                cr_rr=child_text(elem, "crRr"),
                cr_date=child_text(elem, "crDate"),
                ex_date=child_text(elem, "exDate"),
                up_rr=child_text(elem, "upRr"),
                up_date=child_text(elem, "upDate"),
                ds_data=ds_data,
            )

    def nndns(self) -> Iterator[RawNNDN]:
        for elem in self.iter_elements(EntityKind.NNDN):
            yield RawNNDN(
                aname=child_text(elem, "aName"),
                uname=child_text(elem, "uName"),
                idn_table_id=child_text(elem, "idnTableId"),
                original_name=child_text(elem, "originalName"),
                name_state=child_text(elem, "nameState"),
                cr_date=child_text(elem, "crDate"),
            )
