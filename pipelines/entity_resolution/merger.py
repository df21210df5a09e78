"""
Duplicate Merge.

Responsibilities:
- Fold a duplicate group into one surviving (primary) contact.
- Repoint every dependent record at the primary.
- Delete the absorbed contacts and leave an audit trail.

Non-Responsibilities:
- No duplicate detection.
- No retries: a failed merge leaves the group unresolved.

Invariant:
A contact is deleted only after no dependent record references it.
All writes of one merge commit together or not at all.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from contactcore.errors import (
    ConflictError,
    ContactCoreError,
    MergeFailed,
    NotFoundError,
    ValidationError,
)
from contactcore.logger import StructuredLogger, get_logger
from contactcore.normalize import merge_tags
from storage.repositories.contacts import ContactRepository

from .matcher import DuplicateGroup

STEP_COMPUTE = "compute"
STEP_UPDATE_PRIMARY = "update_primary"
STEP_REWRITE_REFERENCES = "rewrite_references"
STEP_DELETE_MEMBERS = "delete_members"
STEP_COMMIT = "commit"

OVERRIDABLE_FIELDS = ("phone", "email", "address")


@dataclass(frozen=True)
class MergePlan:
    primary_id: str
    absorbed_ids: Tuple[str, ...]
    fields: Dict[str, Any]
    # field -> id of the member the value came from
    field_resolutions: Dict[str, str]


@dataclass
class MergeResult:
    group_id: str
    primary_id: str
    absorbed_ids: Tuple[str, ...]
    references_moved: Dict[str, int] = field(default_factory=dict)


@dataclass
class MergeBatchReport:
    merged: List[MergeResult] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)  # group id -> reason

    @property
    def ok(self) -> bool:
        return not self.failed


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def plan_merge(
    members: Sequence,
    primary_id: str,
    overrides: Optional[Mapping[str, str]] = None,
) -> MergePlan:
    """
    Compute the primary's merged fields.

    Args:
        members: Group members in group order
        primary_id: Surviving member
        overrides: Operator picks for phone/email/address; each value must
            be one of the members' own values

    Returns:
        MergePlan with the fields to write onto the primary

    Raises:
        ValidationError: Unknown primary or an override not taken from a member
    """
    by_id = {m.id: m for m in members}
    if primary_id not in by_id:
        raise ValidationError(f"Primary contact '{primary_id}' is not a member of the group")

    primary = by_id[primary_id]
    others = [m for m in members if m.id != primary_id]

    custom_fields = dict(primary.custom_fields or {})
    for other in others:
        for key, value in (other.custom_fields or {}).items():
            if custom_fields.get(key) is None:
                custom_fields[key] = value

    dates = [m.last_contact_date for m in members if m.last_contact_date is not None]

    fields: Dict[str, Any] = {
        "tags": merge_tags(primary.tags, *[o.tags for o in others]),
        "custom_fields": custom_fields,
        "last_contact_date": max(dates) if dates else None,
        "total_events_attended": sum(m.total_events_attended or 0 for m in members),
    }
    resolutions = {"phone": primary.id}

    for name in ("email", "address"):
        value = getattr(primary, name)
        source = primary.id
        if _is_empty(value):
            donor = next((o for o in others if not _is_empty(getattr(o, name))), None)
            if donor is not None:
                value = getattr(donor, name)
                source = donor.id
        fields[name] = value
        resolutions[name] = source

    for name, value in (overrides or {}).items():
        if name not in OVERRIDABLE_FIELDS:
            raise ValidationError(
                f"Field '{name}' cannot be overridden; choose from {', '.join(OVERRIDABLE_FIELDS)}"
            )
        donor = next((m for m in members if getattr(m, name) == value), None)
        if donor is None:
            raise ValidationError(f"Override for '{name}' must be a value held by a group member")
        fields[name] = value
        resolutions[name] = donor.id

    return MergePlan(
        primary_id=primary_id,
        absorbed_ids=tuple(o.id for o in others),
        fields=fields,
        field_resolutions=resolutions,
    )


def _snapshot(contact) -> Dict[str, Any]:
    def iso(ts: Optional[datetime]) -> Optional[str]:
        return ts.isoformat() if ts else None

    return {
        "full_name": contact.full_name,
        "phone": contact.phone,
        "email": contact.email,
        "address": contact.address,
        "tags": list(contact.tags or []),
        "custom_fields": dict(contact.custom_fields or {}),
        "last_contact_date": iso(contact.last_contact_date),
        "total_events_attended": contact.total_events_attended,
        "created_at": iso(contact.created_at),
    }


class MergeEngine:
    """
    Executes merges, one transaction per group.

    Concurrent merges touching the same contacts are caught by the
    version check on every update and delete; the loser raises
    ConflictError and may be re-planned by the caller.
    """

    def __init__(self, session_factory, logger: Optional[StructuredLogger] = None):
        self.session_factory = session_factory
        self.logger = logger or get_logger()

    def merge(
        self,
        organization_id: str,
        group: DuplicateGroup,
        primary_id: Optional[str] = None,
        overrides: Optional[Mapping[str, str]] = None,
    ) -> MergeResult:
        """
        Merge one duplicate group.

        Args:
            organization_id: Owning organization
            group: Group from MatchEngine
            primary_id: Surviving contact, defaults to the earliest created member
            overrides: Operator field picks (phone/email/address)

        Returns:
            MergeResult

        Raises:
            ValidationError: Bad primary id, bad overrides or a degenerate group
            NotFoundError: A member no longer exists
            ConflictError: A concurrent writer changed a member
            MergeFailed: A step failed; nothing was written
        """
        member_ids = list(dict.fromkeys(group.member_ids))
        if len(member_ids) < 2:
            raise ValidationError(f"Group '{group.id}' needs at least two distinct members")
        if primary_id is None:
            primary_id = group.default_primary_id
        if primary_id not in member_ids:
            raise ValidationError(f"Primary contact '{primary_id}' is not a member of group '{group.id}'")

        self.logger.record_merge_attempt()
        session = self.session_factory()
        repo = ContactRepository(session)
        step = STEP_COMPUTE
        try:
            found = repo.get_many(organization_id, member_ids)
            missing = [cid for cid in member_ids if cid not in found]
            if missing:
                raise NotFoundError(
                    f"Group '{group.id}' members not found: {', '.join(missing)}"
                )
            members = [found[cid] for cid in member_ids]
            versions = {m.id: m.version for m in members}
            snapshots = {m.id: _snapshot(m) for m in members if m.id != primary_id}
            plan = plan_merge(members, primary_id, overrides)

            step = STEP_UPDATE_PRIMARY
            if repo.update_versioned(primary_id, versions[primary_id], plan.fields) != 1:
                raise ConflictError(f"Primary contact '{primary_id}' changed during merge")

            step = STEP_REWRITE_REFERENCES
            moved = repo.repoint_references({cid: primary_id for cid in plan.absorbed_ids})

            step = STEP_DELETE_MEMBERS
            remaining = repo.count_references(plan.absorbed_ids)
            if remaining:
                raise MergeFailed(
                    group.id, step,
                    RuntimeError(f"{remaining} dependent records still reference absorbed contacts"),
                )
            for absorbed_id in plan.absorbed_ids:
                repo.add_merge_log(
                    organization_id=organization_id,
                    group_id=group.id,
                    primary_contact_id=primary_id,
                    absorbed_contact_id=absorbed_id,
                    field_resolutions=plan.field_resolutions,
                    absorbed_snapshot=snapshots[absorbed_id],
                )
            deleted = repo.delete_versioned(
                organization_id, {cid: versions[cid] for cid in plan.absorbed_ids}
            )
            if deleted != len(plan.absorbed_ids):
                raise ConflictError(
                    f"{len(plan.absorbed_ids) - deleted} absorbed contacts changed during merge"
                )

            step = STEP_COMMIT
            session.commit()
        except (ValidationError, NotFoundError, ConflictError, MergeFailed) as e:
            session.rollback()
            self._record_failure(group, step, e)
            raise
        except Exception as e:
            session.rollback()
            self._record_failure(group, step, e)
            raise MergeFailed(group.id, step, e) from e
        finally:
            session.close()

        self.logger.record_merge_success(len(plan.absorbed_ids))
        self.logger.info(
            "Merged duplicate group",
            group_id=group.id,
            match_field=group.match_field,
            primary_id=primary_id,
            absorbed=list(plan.absorbed_ids),
            references_moved=moved,
        )
        return MergeResult(
            group_id=group.id,
            primary_id=primary_id,
            absorbed_ids=plan.absorbed_ids,
            references_moved=moved,
        )

    def merge_groups(self, organization_id: str, groups: Sequence[DuplicateGroup]) -> MergeBatchReport:
        """
        Merge several groups, each into its earliest created member.

        A failed group is reported by id and skipped; the rest still run.
        """
        report = MergeBatchReport()
        for group in groups:
            try:
                report.merged.append(self.merge(organization_id, group))
            except ContactCoreError as e:
                report.failed[group.id] = str(e)
        if report.failed:
            self.logger.warning(
                f"{len(report.failed)} of {len(groups)} duplicate groups failed to merge",
                failed_groups=sorted(report.failed),
            )
        return report

    def _record_failure(self, group: DuplicateGroup, step: str, error: Exception) -> None:
        self.logger.record_merge_failure(type(error).__name__)
        self.logger.error(
            f"Merge failed at step '{step}'",
            group_id=group.id,
            error=str(error),
            error_type=type(error).__name__,
        )
