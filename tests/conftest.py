"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict

from contactcore.database import (
    CampaignActivity,
    Contact,
    ContactInteraction,
    Organization,
    get_session_factory,
    init_database,
)
from contactcore.logger import get_logger, reset_logger
from storage.repositories.contacts import ContactRepository

NOW = datetime(2026, 10, 17, 12, 0, 0)


@pytest.fixture(autouse=True)
def quiet_logger(tmp_path):
    """Route the global logger to a temp dir with no console output."""
    reset_logger()
    logger = get_logger(name="contactcore-test", log_dir=tmp_path / "global-logs", enable_console=False)
    yield logger
    reset_logger()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def db_path(tmp_path) -> Path:
    path = tmp_path / "contacts.db"
    init_database(path)
    return path


@pytest.fixture
def session_factory(db_path):
    return get_session_factory(db_path)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def org(session) -> Organization:
    organization = Organization(id="org-1", name="Riverside Tenants Union")
    session.add(organization)
    session.commit()
    return organization


@pytest.fixture
def make_contact(session, org):
    """Factory inserting contacts; ``age_days`` orders creation times."""
    counter = [0]

    def _make(full_name: str = "Jane Doe", age_days: float = None, **fields: Any) -> Contact:
        counter[0] += 1
        if age_days is None:
            age_days = 1000 - counter[0]
        data: Dict[str, Any] = {
            "full_name": full_name,
            "phone": "",
            "tags": [],
            "custom_fields": {},
            "created_at": NOW - timedelta(days=age_days),
        }
        data.update(fields)
        contact = ContactRepository(session).add(org.id, **data)
        session.commit()
        return contact

    return _make


@pytest.fixture
def add_interaction(session, org):
    def _add(contact_id: str, type: str, days_ago: float = 1, **fields: Any) -> ContactInteraction:
        row = ContactInteraction(
            organization_id=org.id,
            contact_id=contact_id,
            type=type,
            created_at=NOW - timedelta(days=days_ago),
            **fields,
        )
        session.add(row)
        session.commit()
        return row

    return _add


@pytest.fixture
def add_activity(session, org):
    def _add(contact_id: str, activity_type: str, days_ago: float = 1) -> CampaignActivity:
        row = CampaignActivity(
            organization_id=org.id,
            contact_id=contact_id,
            activity_type=activity_type,
            created_at=NOW - timedelta(days=days_ago),
        )
        session.add(row)
        session.commit()
        return row

    return _add
