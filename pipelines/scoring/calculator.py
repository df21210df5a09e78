"""
Engagement Score Calculation.

Responsibilities:
- Evaluate enabled scoring rules against one contact and its recent activity.
- Produce per-category scores, the total and the engagement level.

Non-Responsibilities:
- No database access.
- No rule persistence.
- No batching.

Invariant:
Given identical inputs (including ``now``), this module must always
return the same score.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

from .levels import classify_score
from .rules import ScoringRule, ScoringRuleSet

SCORE_WINDOW_DAYS = 90

CATEGORY_KEYS = ("activity", "recency", "frequency", "tags", "events")


@dataclass(frozen=True)
class InteractionRecord:
    type: str
    status: Optional[str] = None
    direction: Optional[str] = None
    occurred_at: Optional[datetime] = None


@dataclass(frozen=True)
class ActivityRecord:
    activity_type: str
    occurred_at: Optional[datetime] = None


@dataclass(frozen=True)
class ContactProfile:
    """The contact fields scoring reads, detached from any session."""

    id: str
    tags: FrozenSet[str] = frozenset()
    last_contact_date: Optional[datetime] = None
    total_events_attended: int = 0

    @classmethod
    def from_contact(cls, contact) -> "ContactProfile":
        return cls(
            id=contact.id,
            tags=frozenset(contact.tags or ()),
            last_contact_date=contact.last_contact_date,
            total_events_attended=contact.total_events_attended or 0,
        )


@dataclass(frozen=True)
class ActivitySnapshot:
    """Interactions, campaign activities and event attendance for one contact."""

    interactions: Tuple[InteractionRecord, ...] = ()
    activities: Tuple[ActivityRecord, ...] = ()
    attendance: Tuple[datetime, ...] = ()


@dataclass(frozen=True)
class ContactScore:
    contact_id: str
    total_score: int
    category_scores: Dict[str, int]
    level: str
    last_calculated: datetime

    def to_payload(self) -> Dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "total_score": self.total_score,
            "category_scores": dict(self.category_scores),
            "level": self.level,
            "last_calculated": self.last_calculated.isoformat(),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ContactScore":
        return cls(
            contact_id=payload["contact_id"],
            total_score=payload["total_score"],
            category_scores=dict(payload["category_scores"]),
            level=payload["level"],
            last_calculated=datetime.fromisoformat(payload["last_calculated"]),
        )


def attendance_window_days(rule_set: ScoringRuleSet) -> int:
    """How far back event attendance must be read for this rule set."""
    days = [
        rule.conditions["event_attended_days"]
        for rule in rule_set.enabled_rules()
        if rule.category == "events" and "event_attended_days" in rule.conditions
    ]
    return max([SCORE_WINDOW_DAYS] + days)


def _in_window(ts: Optional[datetime], since: datetime) -> bool:
    return ts is None or ts >= since


def _count_activity_matches(rule: ScoringRule, snapshot: ActivitySnapshot) -> int:
    cond = rule.conditions
    interaction_type = cond.get("interaction_type")

    if interaction_type and cond.get("status"):
        return sum(
            1 for i in snapshot.interactions
            if i.type == interaction_type and i.status == cond["status"]
        )
    if interaction_type and cond.get("direction"):
        return sum(
            1 for i in snapshot.interactions
            if i.type == interaction_type and i.direction == cond["direction"]
        )
    if cond.get("activity_type"):
        return sum(1 for a in snapshot.activities if a.activity_type == cond["activity_type"])
    return 0


def _binary_rule_met(
    rule: ScoringRule,
    contact: ContactProfile,
    snapshot: ActivitySnapshot,
    now: datetime,
) -> bool:
    cond = rule.conditions

    if rule.category == "recency":
        if contact.last_contact_date is None:
            return False
        days_since = (now - contact.last_contact_date).days
        return days_since <= cond["days_since_contact"]

    if rule.category == "frequency":
        count = len(snapshot.interactions) + len(snapshot.activities)
        return count >= cond["min_interactions_90days"]

    if rule.category == "tags":
        return cond["has_tag"] in contact.tags

    if rule.category == "events":
        if "min_events_attended" in cond:
            return contact.total_events_attended >= cond["min_events_attended"]
        cutoff = now - timedelta(days=cond["event_attended_days"])
        return any(cutoff <= attended <= now for attended in snapshot.attendance)

    return False


def calculate_score(
    contact: ContactProfile,
    rule_set: ScoringRuleSet,
    snapshot: ActivitySnapshot,
    now: datetime,
) -> ContactScore:
    """
    Score one contact.

    Activity rules count every matching record (points x matches); all
    other categories award a rule's points at most once. Disabled rules
    are skipped entirely.

    Args:
        contact: Contact fields used by the rules
        rule_set: Rule snapshot
        snapshot: Recent activity for this contact
        now: Reference time for windows and recency

    Returns:
        ContactScore whose total equals the sum of its category scores
    """
    since = now - timedelta(days=SCORE_WINDOW_DAYS)
    windowed = ActivitySnapshot(
        interactions=tuple(i for i in snapshot.interactions if _in_window(i.occurred_at, since)),
        activities=tuple(a for a in snapshot.activities if _in_window(a.occurred_at, since)),
        attendance=snapshot.attendance,
    )

    category_scores = {key: 0 for key in CATEGORY_KEYS}
    for rule in rule_set.enabled_rules():
        if rule.category == "activity":
            category_scores["activity"] += _count_activity_matches(rule, windowed) * rule.points
        elif _binary_rule_met(rule, contact, windowed, now):
            category_scores[rule.category] += rule.points

    total = sum(category_scores.values())
    return ContactScore(
        contact_id=contact.id,
        total_score=total,
        category_scores=category_scores,
        level=classify_score(total),
        last_calculated=now,
    )


def build_snapshot(
    interactions: Iterable[Any],
    activities: Iterable[Any],
    attendance: Iterable[datetime] = (),
) -> ActivitySnapshot:
    """Detach ORM interaction/activity rows into an immutable snapshot."""
    return ActivitySnapshot(
        interactions=tuple(
            InteractionRecord(
                type=i.type,
                status=i.status,
                direction=i.direction,
                occurred_at=i.created_at,
            )
            for i in interactions
        ),
        activities=tuple(
            ActivityRecord(activity_type=a.activity_type, occurred_at=a.created_at)
            for a in activities
        ),
        attendance=tuple(attendance),
    )
