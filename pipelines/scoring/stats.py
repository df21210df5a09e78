"""
Engagement Score Statistics.

Responsibilities:
- Summarize persisted scores for an organization: coverage, average,
  distribution per level.

Non-Responsibilities:
- No score computation.
"""

from dataclasses import dataclass, field
from typing import Dict

from sqlalchemy.orm import Session

from storage.repositories.contacts import ContactRepository
from storage.repositories.settings import SettingsRepository

from .levels import LEVELS, classify_score


@dataclass
class ScoringStats:
    total_contacts: int = 0
    scored_contacts: int = 0
    avg_score: int = 0
    distribution: Dict[str, int] = field(default_factory=lambda: {level: 0 for level in LEVELS})


def score_stats(session: Session, organization_id: str) -> ScoringStats:
    """
    Raises:
        NotFoundError: Unknown organization
    """
    SettingsRepository(session).get_organization(organization_id)
    payloads = ContactRepository(session).score_payloads(organization_id)

    stats = ScoringStats(total_contacts=len(payloads))
    total_score = 0
    for payload in payloads:
        if not payload:
            continue
        stats.scored_contacts += 1
        score = payload.get("total_score") or 0
        total_score += score
        level = payload.get("level") or classify_score(score)
        stats.distribution[level] = stats.distribution.get(level, 0) + 1

    if stats.scored_contacts:
        stats.avg_score = round(total_score / stats.scored_contacts)
    return stats
