"""
Builders for small RFC 9022 escrow deposits used across the test suite.

Every builder returns an XML fragment; `build_deposit` wraps fragments in a
complete <rde:deposit> whose header counts default to the number of
fragments of each kind.
"""

import re
from typing import Optional, Sequence
from xml.sax.saxutils import escape

NAMESPACES = {
    "rde": "urn:ietf:params:xml:ns:rde-1.0",
    "rdeHeader": "urn:ietf:params:xml:ns:rdeHeader-1.0",
    "rdeRegistrar": "urn:ietf:params:xml:ns:rdeRegistrar-1.0",
    "rdeIDN": "urn:ietf:params:xml:ns:rdeIDN-1.0",
    "rdeContact": "urn:ietf:params:xml:ns:rdeContact-1.0",
    "rdeHost": "urn:ietf:params:xml:ns:rdeHost-1.0",
    "rdeDomain": "urn:ietf:params:xml:ns:rdeDomain-1.0",
    "rdeNNDN": "urn:ietf:params:xml:ns:rdeNNDN-1.0",
    "contact": "urn:ietf:params:xml:ns:contact-1.0",
    "host": "urn:ietf:params:xml:ns:host-1.0",
    "domain": "urn:ietf:params:xml:ns:domain-1.0",
}

COUNT_URIS = {
    "registrars": NAMESPACES["rdeRegistrar"],
    "idn_tables": NAMESPACES["rdeIDN"],
    "contacts": NAMESPACES["rdeContact"],
    "hosts": NAMESPACES["rdeHost"],
    "domains": NAMESPACES["rdeDomain"],
    "nndns": NAMESPACES["rdeNNDN"],
}

CREATED = "2020-01-01T00:00:00Z"


def roid_for(identifier: str, repo: str = "TST") -> str:
    return re.sub(r"\W", "_", identifier, flags=re.ASCII) + f"-{repo}"


def _statuses(prefix: str, statuses: Sequence[str]) -> str:
    return "".join(f'<{prefix}:status s="{s}"/>' for s in statuses)


def registrar_xml(
    registrar_id: str,
    name: Optional[str] = None,
    gurid: str = "1234",
    status: str = "ok",
) -> str:
    return (
        "<rdeRegistrar:registrar>"
        f"<rdeRegistrar:id>{escape(registrar_id)}</rdeRegistrar:id>"
        f"<rdeRegistrar:name>{escape(name or registrar_id + ' Inc.')}</rdeRegistrar:name>"
        f"<rdeRegistrar:gurid>{escape(gurid)}</rdeRegistrar:gurid>"
        f"<rdeRegistrar:status>{status}</rdeRegistrar:status>"
        f"<rdeRegistrar:crDate>{CREATED}</rdeRegistrar:crDate>"
        "</rdeRegistrar:registrar>"
    )


def contact_xml(
    contact_id: str,
    clid: str = "RAR-A",
    roid: Optional[str] = None,
    status: Sequence[str] = ("ok",),
    email: str = "holder@example.net",
    name: str = "John Doe",
    city: str = "Dulles",
    cc: str = "US",
    voice: str = "+1.7035555555",
    disclose: Optional[str] = None,
) -> str:
    disclose_xml = ""
    if disclose is not None:
        disclose_xml = (
            f'<rdeContact:disclose flag="{disclose}">'
            "<contact:voice/><contact:email/></rdeContact:disclose>"
        )
    return (
        "<rdeContact:contact>"
        f"<rdeContact:id>{escape(contact_id)}</rdeContact:id>"
        f"<rdeContact:roid>{escape(roid if roid is not None else roid_for(contact_id))}</rdeContact:roid>"
        f"{_statuses('rdeContact', status)}"
        '<rdeContact:postalInfo type="int">'
        f"<contact:name>{escape(name)}</contact:name>"
        "<contact:addr>"
        "<contact:street>123 Example Dr.</contact:street>"
        f"<contact:city>{escape(city)}</contact:city>"
        f"<contact:cc>{escape(cc)}</contact:cc>"
        "</contact:addr>"
        "</rdeContact:postalInfo>"
        f"<rdeContact:voice>{voice}</rdeContact:voice>"
        f"<rdeContact:email>{escape(email)}</rdeContact:email>"
        f"<rdeContact:clID>{escape(clid)}</rdeContact:clID>"
        f"<rdeContact:crRr>{escape(clid)}</rdeContact:crRr>"
        f"<rdeContact:crDate>{CREATED}</rdeContact:crDate>"
        f"{disclose_xml}"
        "</rdeContact:contact>"
    )


def host_xml(
    name: str,
    clid: str = "RAR-A",
    roid: Optional[str] = None,
    status: Sequence[str] = ("ok",),
    addrs: Sequence[str] = (),
) -> str:
    addresses = "".join(
        f'<rdeHost:addr ip="{"v6" if ":" in a else "v4"}">{a}</rdeHost:addr>' for a in addrs
    )
    return (
        "<rdeHost:host>"
        f"<rdeHost:name>{escape(name)}</rdeHost:name>"
        f"<rdeHost:roid>{escape(roid if roid is not None else roid_for(name))}</rdeHost:roid>"
        f"{_statuses('rdeHost', status)}"
        f"{addresses}"
        f"<rdeHost:clID>{escape(clid)}</rdeHost:clID>"
        f"<rdeHost:crRr>{escape(clid)}</rdeHost:crRr>"
        f"<rdeHost:crDate>{CREATED}</rdeHost:crDate>"
        "</rdeHost:host>"
    )


def domain_xml(
    name: str,
    clid: str = "RAR-A",
    registrant: Optional[str] = None,
    contacts: Sequence[tuple[str, str]] = (),
    hosts: Sequence[str] = (),
    roid: Optional[str] = None,
    status: Sequence[str] = ("ok",),
    ex_date: str = "2030-01-01T00:00:00Z",
) -> str:
    ns = ""
    if hosts:
        ns = "<rdeDomain:ns>" + "".join(
            f"<domain:hostObj>{escape(h)}</domain:hostObj>" for h in hosts
        ) + "</rdeDomain:ns>"
    contact_elems = "".join(
        f'<rdeDomain:contact type="{t}">{escape(c)}</rdeDomain:contact>' for t, c in contacts
    )
    registrant_elem = f"<rdeDomain:registrant>{escape(registrant)}</rdeDomain:registrant>" if registrant else ""
    expiry = f"<rdeDomain:exDate>{ex_date}</rdeDomain:exDate>" if ex_date else ""
    return (
        "<rdeDomain:domain>"
        f"<rdeDomain:name>{escape(name)}</rdeDomain:name>"
        f"<rdeDomain:roid>{escape(roid if roid is not None else roid_for(name))}</rdeDomain:roid>"
        f"{_statuses('rdeDomain', status)}"
        f"{registrant_elem}"
        f"{contact_elems}"
        f"{ns}"
        f"<rdeDomain:clID>{escape(clid)}</rdeDomain:clID>"
        f"<rdeDomain:crRr>{escape(clid)}</rdeDomain:crRr>"
        f"<rdeDomain:crDate>{CREATED}</rdeDomain:crDate>"
        f"{expiry}"
        "</rdeDomain:domain>"
    )


def nndn_xml(aname: str, state: str = "blocked") -> str:
    return (
        "<rdeNNDN:NNDN>"
        f"<rdeNNDN:aName>{escape(aname)}</rdeNNDN:aName>"
        f"<rdeNNDN:nameState>{state}</rdeNNDN:nameState>"
        f"<rdeNNDN:crDate>{CREATED}</rdeNNDN:crDate>"
        "</rdeNNDN:NNDN>"
    )


def idn_table_xml(table_id: str, url: str = "https://example.net/idn/table.txt") -> str:
    return (
        f'<rdeIDN:idnTableRef id="{escape(table_id)}">'
        f"<rdeIDN:url>{escape(url)}</rdeIDN:url>"
        "<rdeIDN:urlPolicy>https://example.net/idn/policy.txt</rdeIDN:urlPolicy>"
        "</rdeIDN:idnTableRef>"
    )


def header_xml(tld: str, counts: dict[str, object]) -> str:
    count_elems = "".join(
        f'<rdeHeader:count uri="{COUNT_URIS[kind]}">{value}</rdeHeader:count>'
        for kind, value in counts.items()
    )
    tld_elem = f"<rdeHeader:tld>{escape(tld)}</rdeHeader:tld>" if tld else ""
    return f"<rdeHeader:header>{tld_elem}{count_elems}</rdeHeader:header>"


def build_deposit(
    tld: str = "example",
    registrars: Sequence[str] = (),
    idn_tables: Sequence[str] = (),
    contacts: Sequence[str] = (),
    hosts: Sequence[str] = (),
    domains: Sequence[str] = (),
    nndns: Sequence[str] = (),
    counts: Optional[dict[str, object]] = None,
    include_header: bool = True,
    deposit_id: str = "20240101001",
    resend: str = "0",
) -> bytes:
    """Assemble a complete deposit; `counts` overrides the derived header counts."""
    declared: dict[str, object] = {
        "registrars": len(registrars),
        "idn_tables": len(idn_tables),
        "contacts": len(contacts),
        "hosts": len(hosts),
        "domains": len(domains),
        "nndns": len(nndns),
    }
    declared.update(counts or {})
    xmlns = " ".join(f'xmlns:{prefix}="{uri}"' for prefix, uri in NAMESPACES.items())
    header = header_xml(tld, declared) if include_header else ""
    body = "".join([*registrars, *idn_tables, *contacts, *hosts, *domains, *nndns])
    document = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<rde:deposit type="FULL" id="{deposit_id}" resend="{resend}" {xmlns}>'
        "<rde:watermark>2024-01-01T00:00:00Z</rde:watermark>"
        "<rde:contents>"
        f"{header}"
        f"{body}"
        "</rde:contents>"
        "</rde:deposit>"
    )
    return document.encode("utf-8")
