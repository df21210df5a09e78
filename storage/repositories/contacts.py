"""
Contacts Repository.

Responsibilities:
- Reads of contacts and their time-windowed activity.
- Score payload writes.
- Foreign key rewrites and bulk deletes across dependent collections.

Non-Responsibilities:
- No business logic.
- No duplicate detection.
- No scoring.
- No commits: the caller owns the transaction.

Invariant:
Repositories must not encode domain decisions.
"""

import functools
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from contactcore.database import (
    CampaignActivity,
    Contact,
    ContactInteraction,
    ContactMergeLog,
    DEPENDENT_MODELS,
    EventParticipant,
)
from contactcore.errors import NotFoundError, StoreError


def store_call(func):
    """Translate SQLAlchemy failures into StoreError."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as e:
            raise StoreError(f"{func.__name__} failed: {e}") from e
    return wrapper


class ContactRepository:
    """Data access for contacts inside one organization-scoped session."""

    def __init__(self, session: Session):
        self.session = session

    @store_call
    def get(self, organization_id: str, contact_id: str) -> Contact:
        contact = (
            self.session.query(Contact)
            .populate_existing()
            .filter_by(organization_id=organization_id, id=contact_id)
            .first()
        )
        if contact is None:
            raise NotFoundError(
                f"Contact '{contact_id}' not found in organization '{organization_id}'"
            )
        return contact

    @store_call
    def get_many(self, organization_id: str, contact_ids: Iterable[str]) -> Dict[str, Contact]:
        ids = list(contact_ids)
        if not ids:
            return {}
        rows = (
            self.session.query(Contact)
            .populate_existing()
            .filter(Contact.organization_id == organization_id, Contact.id.in_(ids))
            .all()
        )
        return {c.id: c for c in rows}

    @store_call
    def list_for_organization(self, organization_id: str) -> List[Contact]:
        """All contacts of an organization, oldest first."""
        return (
            self.session.query(Contact)
            .filter_by(organization_id=organization_id)
            .order_by(Contact.created_at.asc(), Contact.id.asc())
            .all()
        )

    @store_call
    def count(self, organization_id: str) -> int:
        return self.session.query(Contact).filter_by(organization_id=organization_id).count()

    @store_call
    def page_ids(self, organization_id: str, after_id: Optional[str], limit: int) -> List[str]:
        """
        Keyset page of contact ids ordered by id.

        Args:
            organization_id: Owning organization
            after_id: Last id of the previous page, None for the first page
            limit: Page size

        Returns:
            Up to ``limit`` contact ids greater than ``after_id``
        """
        query = self.session.query(Contact.id).filter(Contact.organization_id == organization_id)
        if after_id is not None:
            query = query.filter(Contact.id > after_id)
        return [row[0] for row in query.order_by(Contact.id.asc()).limit(limit).all()]

    @store_call
    def add(self, organization_id: str, **fields: Any) -> Contact:
        """Stage a new contact; flushed so its id and defaults are populated."""
        contact = Contact(organization_id=organization_id, **fields)
        self.session.add(contact)
        self.session.flush()
        return contact

    # Activity reads

    @store_call
    def interactions_since(self, contact_id: str, since: datetime) -> List[ContactInteraction]:
        return (
            self.session.query(ContactInteraction)
            .filter(ContactInteraction.contact_id == contact_id, ContactInteraction.created_at >= since)
            .order_by(ContactInteraction.created_at.asc(), ContactInteraction.id.asc())
            .all()
        )

    @store_call
    def activities_since(self, contact_id: str, since: datetime) -> List[CampaignActivity]:
        return (
            self.session.query(CampaignActivity)
            .filter(CampaignActivity.contact_id == contact_id, CampaignActivity.created_at >= since)
            .order_by(CampaignActivity.created_at.asc(), CampaignActivity.id.asc())
            .all()
        )

    @store_call
    def attendance_since(self, contact_id: str, since: datetime) -> List[datetime]:
        rows = (
            self.session.query(EventParticipant.attended_at)
            .filter(
                EventParticipant.contact_id == contact_id,
                EventParticipant.attended_at.isnot(None),
                EventParticipant.attended_at >= since,
            )
            .order_by(EventParticipant.attended_at.asc())
            .all()
        )
        return [row[0] for row in rows]

    # Writes

    @store_call
    def save_score(self, organization_id: str, contact_id: str, payload: Dict[str, Any]) -> None:
        """Read-modify-write of one contact's score payload."""
        contact = self.get(organization_id, contact_id)
        contact.engagement_score = dict(payload)

    @store_call
    def update_versioned(
        self,
        contact_id: str,
        expected_version: int,
        fields: Mapping[str, Any],
    ) -> int:
        """
        Update a contact only if its version still matches.

        Returns:
            Number of rows updated (0 means a concurrent writer won)
        """
        values = dict(fields)
        values["version"] = Contact.version + 1
        values["updated_at"] = datetime.now()
        return (
            self.session.query(Contact)
            .filter(Contact.id == contact_id, Contact.version == expected_version)
            .update(values, synchronize_session=False)
        )

    @store_call
    def repoint_references(self, mapping: Mapping[str, str]) -> Dict[str, int]:
        """
        Move every dependent record from old contact ids to new ones.

        Args:
            mapping: {old_contact_id: new_contact_id}

        Returns:
            Rows moved per table
        """
        moved: Dict[str, int] = {}
        for model in DEPENDENT_MODELS:
            total = 0
            for old_id, new_id in mapping.items():
                total += (
                    self.session.query(model)
                    .filter(model.contact_id == old_id)
                    .update({model.contact_id: new_id}, synchronize_session=False)
                )
            moved[model.__tablename__] = total
        return moved

    @store_call
    def count_references(self, contact_ids: Iterable[str]) -> int:
        ids = list(contact_ids)
        if not ids:
            return 0
        return sum(
            self.session.query(model).filter(model.contact_id.in_(ids)).count()
            for model in DEPENDENT_MODELS
        )

    @store_call
    def delete_versioned(self, organization_id: str, versions: Mapping[str, int]) -> int:
        """
        Delete contacts whose versions still match.

        Args:
            organization_id: Owning organization
            versions: {contact_id: expected_version}

        Returns:
            Number of rows deleted
        """
        deleted = 0
        for contact_id, version in versions.items():
            deleted += (
                self.session.query(Contact)
                .filter(
                    Contact.organization_id == organization_id,
                    Contact.id == contact_id,
                    Contact.version == version,
                )
                .delete(synchronize_session=False)
            )
        return deleted

    @store_call
    def add_merge_log(self, **fields) -> ContactMergeLog:
        entry = ContactMergeLog(**fields)
        self.session.add(entry)
        return entry

    @store_call
    def score_payloads(self, organization_id: str) -> List[Optional[Dict[str, Any]]]:
        rows = (
            self.session.query(Contact.engagement_score)
            .filter(Contact.organization_id == organization_id)
            .all()
        )
        return [row[0] for row in rows]
