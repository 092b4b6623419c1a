"""
Host sponsorship resolution.

In the target registry a host object has exactly one sponsoring
registrar, and a domain may only delegate to hosts its own sponsor can
see. Deposits routinely contain one host object used by domains of several
registrars. For every (host name, domain sponsor) pair that has no host
object yet, a copy of the host is created for that sponsor, and each
domain's links are pointed at the copy matching its own sponsor.

Copies are marked with `duplicate_of`, so resolution can be re-run on its
own output without producing copies of copies.
"""

import hashlib
import re
from dataclasses import dataclass, field, replace
from typing import Optional

from .audit_logger import AuditLogger
from .enums import DiagnosticKind, EntityKind, LogLevel, Severity
from .models import CreateDomainCommand, CreateHostCommand, Diagnostic, HostLink

ROID_LOCAL_MAX = 80
NON_WORD = re.compile(r"\W", re.ASCII)


def sponsor_tag(sponsor: str) -> str:
    """Word-character tag for a sponsor: sanitized clid plus a short stable hash."""
    digest = hashlib.sha256(sponsor.encode("utf-8")).hexdigest()[:6]
    cleaned = NON_WORD.sub("", sponsor)
    return f"{cleaned}_{digest}" if cleaned else digest


def qualified_roid(base_roid: Optional[str], sponsor: str) -> Optional[str]:
    """
    ROID for a sponsor copy of a host.

    `<local>-<repo>` becomes `<local>_<tag>-<repo>`, trimming the base local
    part so the result stays within ROID limits.
    """
    if not base_roid:
        return None
    local, _, repo = base_roid.rpartition("-")
    if not local:
        local, repo = base_roid, ""
    tag = sponsor_tag(sponsor)
    room = ROID_LOCAL_MAX - len(tag) - 1
    qualified = f"{local[:room]}_{tag}"
    return f"{qualified}-{repo}" if repo else qualified


@dataclass
class HostResolution:
    """Output of host sponsorship resolution."""

    hosts: list[CreateHostCommand]
    domains: list[CreateDomainCommand]
    duplicates: list[CreateHostCommand] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)


class HostSponsorshipResolver:
    """Creates per-sponsor host copies and rewrites domain host links."""

    COMPONENT = "HostSponsorshipResolver"

    def __init__(self, logger: Optional[AuditLogger] = None) -> None:
        self._logger = logger

    def resolve(
        self,
        hosts: list[CreateHostCommand],
        domains: list[CreateDomainCommand],
    ) -> HostResolution:
        """
        Resolve host sponsorship for a deposit.

        Args:
            hosts: Extracted host commands (may already contain copies)
            domains: Extracted domain commands

        Returns:
            HostResolution with the original hosts followed by any new
            copies, and domains whose links name the sponsor of the host
            entity they point at
        """
        base_hosts = [h for h in hosts if h.duplicate_of is None]
        known_keys = {h.key for h in hosts}
        first_by_name: dict[str, CreateHostCommand] = {}
        for host in base_hosts:
            first_by_name.setdefault(host.name, host)

        # host name -> sponsors of domains that use it, in first-seen order
        sponsors_by_host: dict[str, list[str]] = {}
        for domain in domains:
            for link in domain.host_links:
                sponsors = sponsors_by_host.setdefault(link.host_name, [])
                if domain.clid not in sponsors:
                    sponsors.append(domain.clid)

        duplicates: list[CreateHostCommand] = []
        diagnostics: list[Diagnostic] = []
        for host in base_hosts:
            if first_by_name[host.name] is not host:
                continue
            for sponsor in sponsors_by_host.get(host.name, []):
                if (host.name, sponsor) in known_keys:
                    continue
                copy = self._copy_for_sponsor(host, sponsor)
                duplicates.append(copy)
                known_keys.add(copy.key)
                diagnostics.append(Diagnostic(
                    kind=DiagnosticKind.HOST_DUPLICATED,
                    severity=Severity.WARNING,
                    message=f"Host {host.name} sponsored by {host.clid} duplicated for {sponsor}",
                    entity_kind=EntityKind.HOST,
                    subject=host.name,
                ))

        resolved_domains = [
            replace(
                domain,
                host_links=[
                    HostLink(
                        host_name=link.host_name,
                        host_clid=domain.clid if link.host_name in first_by_name else "",
                    )
                    for link in domain.host_links
                ],
            )
            for domain in domains
        ]

        if self._logger:
            self._logger.log(
                LogLevel.INFO,
                self.COMPONENT,
                f"Resolved host sponsorship: {len(duplicates)} host copies created",
                {"hosts": len(base_hosts), "domains": len(domains)},
            )

        return HostResolution(
            hosts=list(hosts) + duplicates,
            domains=resolved_domains,
            duplicates=duplicates,
            diagnostics=diagnostics,
        )

    @staticmethod
    def _copy_for_sponsor(host: CreateHostCommand, sponsor: str) -> CreateHostCommand:
        return replace(
            host,
            clid=sponsor,
            roid=qualified_roid(host.roid, sponsor),
            status=list(host.status),
            addresses=list(host.addresses),
            cr_rr=sponsor if host.cr_rr and host.cr_rr != host.clid else host.cr_rr,
            up_rr=sponsor if host.up_rr and host.up_rr != host.clid else host.up_rr,
            duplicate_of=host.clid,
        )
