"""
Duplicate Detection.

Responsibilities:
- Partition an organization's contacts into duplicate groups.
- Apply match precedence: phone, then email, then similar name.

Non-Responsibilities:
- No merging.
- No writes.

Invariant:
A contact appears in at most one group per run, and every emitted group
has at least two members.

The name pass is single-linkage and order dependent: a contact is compared
only with each cluster's first member, so with A~B, B~C and A!~C the result
depends on which of them was created first.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy.orm import Session

from contactcore.logger import StructuredLogger, get_logger
from contactcore.normalize import (
    names_similar,
    normalize_email,
    normalize_name,
    normalize_phone,
)
from storage.repositories.contacts import ContactRepository

MATCH_EXACT = "exact"
MATCH_SIMILAR = "similar"


@dataclass(frozen=True)
class DuplicateGroup:
    """Transient duplicate cluster; members are in creation order."""

    id: str
    match_type: str
    match_field: str
    member_ids: Tuple[str, ...]

    @property
    def default_primary_id(self) -> str:
        return self.member_ids[0]


def _exact_pass(
    contacts: Sequence,
    processed: Set[str],
    field: str,
    key_fn: Callable[[object], str],
) -> List[DuplicateGroup]:
    buckets: "OrderedDict[str, List[str]]" = OrderedDict()
    for contact in contacts:
        if contact.id in processed:
            continue
        key = key_fn(contact)
        if not key:
            continue
        buckets.setdefault(key, []).append(contact.id)

    groups = []
    for key, member_ids in buckets.items():
        if len(member_ids) > 1:
            groups.append(DuplicateGroup(
                id=f"{field}-{member_ids[0]}",
                match_type=MATCH_EXACT,
                match_field=field,
                member_ids=tuple(member_ids),
            ))
            processed.update(member_ids)
    return groups


def _name_pass(contacts: Sequence, processed: Set[str]) -> List[DuplicateGroup]:
    # representative key -> member ids, in cluster creation order
    clusters: List[Tuple[str, List[str]]] = []
    for contact in contacts:
        if contact.id in processed:
            continue
        name = normalize_name(contact.full_name)
        if not name:
            continue
        for key, member_ids in clusters:
            if names_similar(name, key):
                member_ids.append(contact.id)
                break
        else:
            clusters.append((name, [contact.id]))

    groups = []
    for _, member_ids in clusters:
        if len(member_ids) > 1:
            groups.append(DuplicateGroup(
                id=f"name-{member_ids[0]}",
                match_type=MATCH_SIMILAR,
                match_field="name",
                member_ids=tuple(member_ids),
            ))
            processed.update(member_ids)
    return groups


def find_duplicate_groups(contacts: Iterable) -> List[DuplicateGroup]:
    """
    Group duplicate contacts.

    Args:
        contacts: Objects with id, full_name, phone, email and created_at

    Returns:
        Phone groups, then email groups, then similar-name groups
    """
    ordered = sorted(contacts, key=lambda c: (c.created_at, c.id))
    processed: Set[str] = set()

    groups = _exact_pass(ordered, processed, "phone", lambda c: normalize_phone(c.phone))
    groups += _exact_pass(ordered, processed, "email", lambda c: normalize_email(c.email))
    groups += _name_pass(ordered, processed)
    return groups


class MatchEngine:
    """Runs duplicate detection over one organization's stored contacts."""

    def __init__(self, session: Session, logger: Optional[StructuredLogger] = None):
        self.repo = ContactRepository(session)
        self.logger = logger or get_logger()

    def scan(self, organization_id: str) -> List[DuplicateGroup]:
        contacts = self.repo.list_for_organization(organization_id)
        groups = find_duplicate_groups(contacts)
        self.logger.info(
            f"Duplicate scan found {len(groups)} groups",
            organization_id=organization_id,
            contacts=len(contacts),
            phone_groups=sum(1 for g in groups if g.match_field == "phone"),
            email_groups=sum(1 for g in groups if g.match_field == "email"),
            name_groups=sum(1 for g in groups if g.match_field == "name"),
        )
        return groups
