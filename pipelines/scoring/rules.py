"""
Scoring Rule Configuration.

Responsibilities:
- Define the scoring rule model and the default seed rules.
- Immutable edits (toggle, set points, reset).
- Load and persist a rule set in the organization settings blob.

Non-Responsibilities:
- No rule evaluation.
- No contact access.

Invariant:
A loaded ScoringRuleSet never changes; edits return a new set, so a
recompute run always sees one stable snapshot.
"""

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from contactcore.errors import NotFoundError, ValidationError
from contactcore.schema import validate_rules_strict
from storage.repositories.settings import SettingsRepository

SETTINGS_KEY = "scoring_rules"

DEFAULT_SCORING_RULES: List[Dict[str, Any]] = [
    # Activity
    {
        "id": "call-answered",
        "name": "Answered Phone Call",
        "description": "Contact answered a phone call",
        "category": "activity",
        "points": 10,
        "conditions": {"interaction_type": "call", "status": "completed"},
        "enabled": True,
    },
    {
        "id": "email-opened",
        "name": "Opened Email",
        "description": "Contact opened an email",
        "category": "activity",
        "points": 3,
        "conditions": {"interaction_type": "email", "status": "opened"},
        "enabled": True,
    },
    {
        "id": "email-clicked",
        "name": "Clicked Email Link",
        "description": "Contact clicked a link in email",
        "category": "activity",
        "points": 5,
        "conditions": {"interaction_type": "email", "status": "clicked"},
        "enabled": True,
    },
    {
        "id": "text-responded",
        "name": "Responded to Text",
        "description": "Contact responded to SMS",
        "category": "activity",
        "points": 8,
        "conditions": {"interaction_type": "text", "direction": "inbound"},
        "enabled": True,
    },
    {
        "id": "petition-signed",
        "name": "Signed Petition",
        "description": "Contact signed a petition",
        "category": "activity",
        "points": 15,
        "conditions": {"activity_type": "petition_sign"},
        "enabled": True,
    },
    {
        "id": "donation-made",
        "name": "Made Donation",
        "description": "Contact made a financial contribution",
        "category": "activity",
        "points": 25,
        "conditions": {"activity_type": "donation"},
        "enabled": True,
    },
    # Recency
    {
        "id": "contacted-7days",
        "name": "Contacted in Last 7 Days",
        "description": "Any contact within the last week",
        "category": "recency",
        "points": 20,
        "conditions": {"days_since_contact": 7},
        "enabled": True,
    },
    {
        "id": "contacted-30days",
        "name": "Contacted in Last 30 Days",
        "description": "Any contact within the last month",
        "category": "recency",
        "points": 10,
        "conditions": {"days_since_contact": 30},
        "enabled": True,
    },
    # Frequency
    {
        "id": "frequent-engagement",
        "name": "Frequent Engagement",
        "description": "5+ interactions in last 90 days",
        "category": "frequency",
        "points": 15,
        "conditions": {"min_interactions_90days": 5},
        "enabled": True,
    },
    # Tags
    {
        "id": "tag-volunteer",
        "name": "Volunteer Tag",
        "description": "Contact has volunteer tag",
        "category": "tags",
        "points": 20,
        "conditions": {"has_tag": "volunteer"},
        "enabled": True,
    },
    {
        "id": "tag-donor",
        "name": "Donor Tag",
        "description": "Contact has donor tag",
        "category": "tags",
        "points": 25,
        "conditions": {"has_tag": "donor"},
        "enabled": True,
    },
    {
        "id": "tag-organizer",
        "name": "Organizer Tag",
        "description": "Contact has organizer tag",
        "category": "tags",
        "points": 30,
        "conditions": {"has_tag": "organizer"},
        "enabled": True,
    },
    # Events
    {
        "id": "event-attended-recent",
        "name": "Recent Event Attendance",
        "description": "Attended event in last 60 days",
        "category": "events",
        "points": 20,
        "conditions": {"event_attended_days": 60},
        "enabled": True,
    },
    {
        "id": "event-multiple",
        "name": "Multiple Events",
        "description": "Attended 3+ events total",
        "category": "events",
        "points": 25,
        "conditions": {"min_events_attended": 3},
        "enabled": True,
    },
]


@dataclass(frozen=True)
class ScoringRule:
    """One weighted rule. ``conditions`` shape depends on ``category``."""

    id: str
    name: str
    category: str
    points: int
    conditions: Dict[str, Any]
    description: str = ""
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoringRule":
        return cls(
            id=data["id"],
            name=data["name"],
            category=data["category"],
            points=data["points"],
            conditions=copy.deepcopy(data.get("conditions") or {}),
            description=data.get("description", ""),
            enabled=data.get("enabled", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "points": self.points,
            "conditions": copy.deepcopy(self.conditions),
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class ScoringRuleSet:
    """
    Ordered rules plus the settings version they were loaded at.

    Version 0 means the organization never saved rules and the defaults
    are in effect.
    """

    rules: Tuple[ScoringRule, ...] = field(default_factory=tuple)
    version: int = 0

    @classmethod
    def from_dicts(cls, rules: List[Dict[str, Any]], version: int = 0) -> "ScoringRuleSet":
        validate_rules_strict(rules)
        return cls(rules=tuple(ScoringRule.from_dict(r) for r in rules), version=version)

    @classmethod
    def defaults(cls, version: int = 0) -> "ScoringRuleSet":
        return cls.from_dicts(DEFAULT_SCORING_RULES, version=version)

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [rule.to_dict() for rule in self.rules]

    def enabled_rules(self) -> Tuple[ScoringRule, ...]:
        return tuple(rule for rule in self.rules if rule.enabled)

    def get(self, rule_id: str) -> ScoringRule:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        raise NotFoundError(f"Scoring rule '{rule_id}' not found")

    def _replace_rule(self, rule_id: str, **changes) -> "ScoringRuleSet":
        self.get(rule_id)
        rules = tuple(
            replace(rule, **changes) if rule.id == rule_id else rule
            for rule in self.rules
        )
        return replace(self, rules=rules)

    def with_enabled(self, rule_id: str, enabled: bool) -> "ScoringRuleSet":
        return self._replace_rule(rule_id, enabled=bool(enabled))

    def with_points(self, rule_id: str, points: int) -> "ScoringRuleSet":
        if isinstance(points, bool) or not isinstance(points, int):
            raise ValidationError(f"Points for rule '{rule_id}' must be an integer")
        if points < 0:
            raise ValidationError(f"Points for rule '{rule_id}' must not be negative, got {points}")
        return self._replace_rule(rule_id, points=points)

    def reset_to_defaults(self) -> "ScoringRuleSet":
        """Default rules, keeping this set's version for the next save."""
        return ScoringRuleSet.defaults(version=self.version)


def load_rule_set(session: Session, organization_id: str) -> ScoringRuleSet:
    """
    Load the organization's rule set, falling back to the defaults.

    Raises:
        NotFoundError: Unknown organization
        ValidationError: The stored rules are malformed
    """
    settings, version = SettingsRepository(session).load(organization_id)
    stored = settings.get(SETTINGS_KEY)
    if stored is None:
        return ScoringRuleSet.defaults(version=version)
    return ScoringRuleSet.from_dicts(stored, version=version)


def save_rule_set(
    session: Session,
    organization_id: str,
    rule_set: ScoringRuleSet,
    expected_version: Optional[int] = None,
) -> ScoringRuleSet:
    """
    Persist the whole rule set atomically, keeping other settings keys.

    Args:
        session: Open session; committed on success, rolled back on failure
        organization_id: Owning organization
        rule_set: Rules to store
        expected_version: Settings version the edit was based on
            (defaults to ``rule_set.version``)

    Returns:
        The saved rule set carrying its new version

    Raises:
        ValidationError: Malformed rules
        ConflictError: Settings were written by someone else meanwhile
    """
    payload = rule_set.to_dicts()
    validate_rules_strict(payload)
    if expected_version is None:
        expected_version = rule_set.version

    repo = SettingsRepository(session)
    try:
        settings, _ = repo.load(organization_id)
        settings[SETTINGS_KEY] = payload
        new_version = repo.save(organization_id, settings, expected_version)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return replace(rule_set, version=new_version)
