"""
Organization Settings Repository.

Responsibilities:
- Read and write the per-organization settings blob.
- Optimistic version check on writes.

Non-Responsibilities:
- No interpretation of settings keys.
- No commits: the caller owns the transaction.

Invariant:
A write based on a stale version never overwrites a newer blob.
"""

from typing import Any, Dict, Tuple

from sqlalchemy.orm import Session

from contactcore.database import Organization
from contactcore.errors import ConflictError, NotFoundError

from .contacts import store_call


class SettingsRepository:
    """Versioned access to ``organizations.settings``."""

    def __init__(self, session: Session):
        self.session = session

    @store_call
    def get_organization(self, organization_id: str) -> Organization:
        org = self.session.query(Organization).populate_existing().filter_by(id=organization_id).first()
        if org is None:
            raise NotFoundError(f"Organization '{organization_id}' not found")
        return org

    def load(self, organization_id: str) -> Tuple[Dict[str, Any], int]:
        """
        Returns:
            (settings blob copy, settings version)
        """
        org = self.get_organization(organization_id)
        return dict(org.settings or {}), org.settings_version

    @store_call
    def save(self, organization_id: str, settings: Dict[str, Any], expected_version: int) -> int:
        """
        Replace the settings blob if nobody wrote since ``expected_version``.

        Returns:
            The new settings version

        Raises:
            NotFoundError: Unknown organization
            ConflictError: Settings changed since they were read
        """
        updated = (
            self.session.query(Organization)
            .filter(
                Organization.id == organization_id,
                Organization.settings_version == expected_version,
            )
            .update(
                {"settings": dict(settings), "settings_version": expected_version + 1},
                synchronize_session=False,
            )
        )
        if updated == 0:
            self.get_organization(organization_id)
            raise ConflictError(
                f"Settings for organization '{organization_id}' changed since version {expected_version}"
            )
        return expected_version + 1
