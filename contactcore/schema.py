from typing import Any, Dict, List

from .errors import ValidationError

CATEGORIES = ("activity", "recency", "frequency", "tags", "events")

REQUIRED_STR_FIELDS = ["id", "name", "category"]
OPTIONAL_STR_FIELDS = ["description"]


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _check_threshold(conditions: Dict[str, Any], key: str, minimum: int, errors: List[str]) -> None:
    value = conditions.get(key)
    if not _is_int(value) or value < minimum:
        errors.append(f"Condition '{key}' must be an integer >= {minimum}")


def _validate_conditions(category: str, conditions: Dict[str, Any]) -> List[str]:
    errors: List[str] = []

    if category == "activity":
        has_type = _is_non_empty_str(conditions.get("interaction_type"))
        if has_type and (
            _is_non_empty_str(conditions.get("status"))
            or _is_non_empty_str(conditions.get("direction"))
        ):
            return errors
        if _is_non_empty_str(conditions.get("activity_type")):
            return errors
        errors.append(
            "Activity conditions need interaction_type with status or direction, or activity_type"
        )
    elif category == "recency":
        _check_threshold(conditions, "days_since_contact", 0, errors)
    elif category == "frequency":
        _check_threshold(conditions, "min_interactions_90days", 1, errors)
    elif category == "tags":
        if not _is_non_empty_str(conditions.get("has_tag")):
            errors.append("Condition 'has_tag' must be a non-empty string")
    elif category == "events":
        if "min_events_attended" in conditions:
            _check_threshold(conditions, "min_events_attended", 1, errors)
        elif "event_attended_days" in conditions:
            _check_threshold(conditions, "event_attended_days", 0, errors)
        else:
            errors.append("Events conditions need min_events_attended or event_attended_days")

    return errors


def validate_rule(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages for one scoring rule payload.
    Empty list means valid.
    """
    errors: List[str] = []

    for f in REQUIRED_STR_FIELDS:
        if f not in data:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")

    for f in OPTIONAL_STR_FIELDS:
        if f in data and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")

    category = data.get("category")
    if _is_non_empty_str(category) and category not in CATEGORIES:
        errors.append(f"Field 'category' must be one of {', '.join(CATEGORIES)}")

    points = data.get("points")
    if not _is_int(points):
        errors.append("Field 'points' must be an integer")
    elif points < 0:
        errors.append("Field 'points' must not be negative")

    if "enabled" in data and not isinstance(data["enabled"], bool):
        errors.append("Field 'enabled' must be a boolean if provided")

    conditions = data.get("conditions")
    if not isinstance(conditions, dict):
        errors.append("Field 'conditions' must be an object")
    elif category in CATEGORIES:
        errors.extend(_validate_conditions(category, conditions))

    return errors


def validate_rules(rules: List[Dict[str, Any]]) -> List[str]:
    """Validate a whole rule list, including rule id uniqueness."""
    if not isinstance(rules, list):
        return ["Scoring rules must be a list"]

    errors: List[str] = []
    seen_ids = set()
    for index, rule in enumerate(rules):
        if not isinstance(rule, dict):
            errors.append(f"Rule #{index} must be an object")
            continue
        for err in validate_rule(rule):
            errors.append(f"Rule '{rule.get('id', index)}': {err}")
        rule_id = rule.get("id")
        if not _is_non_empty_str(rule_id):
            continue
        if rule_id in seen_ids:
            errors.append(f"Duplicate rule id: {rule_id}")
        seen_ids.add(rule_id)
    return errors


def validate_rules_strict(rules: List[Dict[str, Any]]) -> None:
    """Raise ValidationError listing every problem with the rule payloads."""
    errors = validate_rules(rules)
    if errors:
        raise ValidationError("Invalid scoring rules: " + "; ".join(errors))
