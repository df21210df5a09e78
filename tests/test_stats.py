"""Tests for score statistics."""

import pytest

from contactcore.errors import NotFoundError
from pipelines.scoring.stats import score_stats


def payload(total, level):
    return {"total_score": total, "level": level}


def test_distribution_and_average(session, make_contact):
    make_contact(engagement_score=payload(0, "inactive"))
    make_contact(engagement_score=payload(30, "medium"))
    make_contact(engagement_score=payload(45, "medium"))
    make_contact(engagement_score=payload(120, "champion"))
    make_contact()

    stats = score_stats(session, "org-1")

    assert stats.total_contacts == 5
    assert stats.scored_contacts == 4
    assert stats.avg_score == 49
    assert stats.distribution == {
        "inactive": 1,
        "low": 0,
        "medium": 2,
        "high": 0,
        "champion": 1,
    }


def test_level_derived_when_missing(session, make_contact):
    make_contact(engagement_score={"total_score": 60})
    assert score_stats(session, "org-1").distribution["high"] == 1


def test_no_contacts(session, org):
    stats = score_stats(session, org.id)
    assert stats.total_contacts == 0
    assert stats.avg_score == 0
    assert sum(stats.distribution.values()) == 0


def test_unknown_organization(session, db_path):
    with pytest.raises(NotFoundError):
        score_stats(session, "missing")
