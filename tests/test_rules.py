"""Tests for scoring rule configuration and validation."""

import pytest

from contactcore.database import Organization
from contactcore.errors import ConflictError, NotFoundError, ValidationError
from contactcore.schema import CATEGORIES, validate_rule, validate_rules, validate_rules_strict
from pipelines.scoring.rules import (
    DEFAULT_SCORING_RULES,
    SETTINGS_KEY,
    ScoringRuleSet,
    load_rule_set,
    save_rule_set,
)


def rule(**overrides):
    data = {
        "id": "tag-captain",
        "name": "Captain Tag",
        "category": "tags",
        "points": 12,
        "conditions": {"has_tag": "captain"},
        "enabled": True,
    }
    data.update(overrides)
    return data


class TestValidateRule:
    """Rule payload validation."""

    def test_valid_rule(self):
        assert validate_rule(rule()) == []

    def test_defaults_are_valid(self):
        assert validate_rules(DEFAULT_SCORING_RULES) == []

    def test_missing_required_fields(self):
        errors = validate_rule({"points": 1, "conditions": {}})
        assert "Missing required field: id" in errors
        assert "Missing required field: name" in errors
        assert "Missing required field: category" in errors

    def test_unknown_category(self):
        errors = validate_rule(rule(category="vibes"))
        assert any("category" in e for e in errors)

    def test_negative_points(self):
        assert "Field 'points' must not be negative" in validate_rule(rule(points=-1))

    def test_points_must_be_int(self):
        assert validate_rule(rule(points=2.5))
        assert validate_rule(rule(points=True))

    def test_enabled_must_be_bool(self):
        assert validate_rule(rule(enabled="yes"))

    @pytest.mark.parametrize("category,conditions", [
        ("activity", {"interaction_type": "call"}),
        ("activity", {}),
        ("recency", {"days_since_contact": -1}),
        ("frequency", {"min_interactions_90days": 0}),
        ("tags", {"has_tag": ""}),
        ("events", {}),
        ("events", {"min_events_attended": 0}),
    ])
    def test_malformed_conditions(self, category, conditions):
        assert validate_rule(rule(category=category, conditions=conditions))

    def test_duplicate_ids(self):
        errors = validate_rules([rule(), rule()])
        assert "Duplicate rule id: tag-captain" in errors

    @pytest.mark.parametrize("bad_id", [["tag", "captain"], {"id": 1}, 7])
    def test_non_string_id_reported(self, bad_id):
        errors = validate_rules([rule(id=bad_id), rule(id=bad_id)])
        assert "Field 'id' must be a non-empty string" in " ".join(errors)

    def test_non_string_id_rejected_strictly(self):
        with pytest.raises(ValidationError):
            validate_rules_strict([rule(id=["tag-captain"])])


class TestScoringRuleSet:
    """Immutable rule set edits."""

    def test_defaults(self):
        rule_set = ScoringRuleSet.defaults()
        assert len(rule_set.rules) == 14
        assert {r.category for r in rule_set.rules} == set(CATEGORIES)
        assert rule_set.version == 0
        assert rule_set.get("tag-donor").points == 25

    def test_with_points_returns_new_set(self):
        original = ScoringRuleSet.defaults()
        edited = original.with_points("call-answered", 40)
        assert edited.get("call-answered").points == 40
        assert original.get("call-answered").points == 10

    def test_negative_points_rejected(self):
        with pytest.raises(ValidationError):
            ScoringRuleSet.defaults().with_points("call-answered", -5)

    def test_zero_points_allowed(self):
        rule_set = ScoringRuleSet.defaults().with_points("call-answered", 0)
        assert rule_set.get("call-answered").points == 0

    def test_unknown_rule(self):
        with pytest.raises(NotFoundError):
            ScoringRuleSet.defaults().with_points("no-such-rule", 5)
        with pytest.raises(NotFoundError):
            ScoringRuleSet.defaults().with_enabled("no-such-rule", False)

    def test_toggle(self):
        rule_set = ScoringRuleSet.defaults().with_enabled("tag-donor", False)
        assert not rule_set.get("tag-donor").enabled
        assert "tag-donor" not in [r.id for r in rule_set.enabled_rules()]
        assert len(rule_set.enabled_rules()) == 13

    def test_reset_keeps_version(self):
        edited = ScoringRuleSet.defaults(version=4).with_points("tag-donor", 1)
        reset = edited.reset_to_defaults()
        assert reset.get("tag-donor").points == 25
        assert reset.version == 4

    def test_from_dicts_validates(self):
        with pytest.raises(ValidationError):
            ScoringRuleSet.from_dicts([rule(points=-3)])


class TestRulePersistence:
    """Loading and saving through organization settings."""

    def test_unsaved_organization_gets_defaults(self, session, org):
        rule_set = load_rule_set(session, org.id)
        assert rule_set.version == 0
        assert rule_set.to_dicts() == ScoringRuleSet.defaults().to_dicts()

    def test_save_and_load(self, session, org):
        rule_set = load_rule_set(session, org.id).with_points("call-answered", 12)
        saved = save_rule_set(session, org.id, rule_set)

        assert saved.version == 1
        loaded = load_rule_set(session, org.id)
        assert loaded.version == 1
        assert loaded.get("call-answered").points == 12

    def test_other_settings_keys_kept(self, session):
        session.add(Organization(id="org-9", name="Org", settings={"timezone": "UTC"}))
        session.commit()

        save_rule_set(session, "org-9", ScoringRuleSet.defaults())

        session.expire_all()
        stored = session.get(Organization, "org-9").settings
        assert stored["timezone"] == "UTC"
        assert len(stored[SETTINGS_KEY]) == 14

    def test_stale_save_conflicts(self, session, org):
        first = load_rule_set(session, org.id)
        second = load_rule_set(session, org.id)

        save_rule_set(session, org.id, first.with_enabled("tag-donor", False))
        with pytest.raises(ConflictError):
            save_rule_set(session, org.id, second.with_points("tag-donor", 99))

        loaded = load_rule_set(session, org.id)
        assert loaded.get("tag-donor").points == 25
        assert not loaded.get("tag-donor").enabled

    def test_unknown_organization(self, session):
        with pytest.raises(NotFoundError):
            load_rule_set(session, "missing")
        with pytest.raises(NotFoundError):
            save_rule_set(session, "missing", ScoringRuleSet.defaults())

    def test_invalid_rules_never_stored(self, session, org):
        bad = ScoringRuleSet.defaults()
        bad = bad.__class__(
            rules=bad.rules[:1] + (bad.rules[0],),
            version=bad.version,
        )
        with pytest.raises(ValidationError):
            save_rule_set(session, org.id, bad)
        assert load_rule_set(session, org.id).version == 0
