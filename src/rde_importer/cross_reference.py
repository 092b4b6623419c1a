"""
Cross-reference checks between extracted contacts and their users.

Domains (and, for object types that carry them, hosts) reference contacts
by ID. A referenced ID without an extracted contact cannot be satisfied at
import time; the dependent command will be skipped then. Here it is only
reported.
"""

from typing import Iterable


def unique_referenced_contact_ids(*command_groups: Iterable) -> list[str]:
    """Sorted, de-duplicated contact IDs referenced by any of the given commands."""
    referenced: set[str] = set()
    for commands in command_groups:
        for command in commands:
            referenced.update(command.referenced_contact_ids())
    return sorted(referenced)


def find_missing_contacts(contacts: Iterable, hosts: Iterable, domains: Iterable) -> list[str]:
    """
    Return contact IDs referenced by a host or domain but not extracted.

    Args:
        contacts: Extracted CreateContactCommand objects
        hosts: Extracted CreateHostCommand objects
        domains: Extracted CreateDomainCommand objects

    Returns:
        Missing contact IDs, sorted
    """
    extracted = {contact.id for contact in contacts}
    return [
        contact_id
        for contact_id in unique_referenced_contact_ids(hosts, domains)
        if contact_id not in extracted
    ]


def split_linked_contacts(contacts: list, referenced_ids: Iterable[str]) -> tuple[list, list]:
    """
    Partition contacts into (referenced, unreferenced), keeping order.

    Contacts that nothing in the deposit uses are not imported.
    """
    wanted = set(referenced_ids)
    linked = [c for c in contacts if c.id in wanted]
    unlinked = [c for c in contacts if c.id not in wanted]
    return linked, unlinked
