"""
Error taxonomy for contact resolution and engagement scoring.

Every error raised by the core derives from ContactCoreError so callers
can catch the whole family at the edge (CLI, job runner, RPC handler).
"""

from typing import Optional


class ContactCoreError(Exception):
    """Base class for all contactcore errors."""
    pass


class ValidationError(ContactCoreError):
    """Invalid input: unknown primary id, negative points, malformed rule."""
    pass


class NotFoundError(ContactCoreError):
    """A contact, organization or rule does not exist."""
    pass


class ConflictError(ContactCoreError):
    """A concurrent writer changed the rows this operation depends on."""
    pass


class StoreError(ContactCoreError):
    """The underlying persistence layer failed."""
    pass


class MergeFailed(ContactCoreError):
    """
    A merge aborted part way through.

    The group stays unresolved and is never retried automatically.
    """

    def __init__(self, group_id: str, step: str, cause: Optional[BaseException] = None):
        self.group_id = group_id
        self.step = step
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Merge of group '{group_id}' failed at step '{step}'{detail}")


class PartialFailure(ContactCoreError):
    """A batch recompute finished degraded: some contacts failed."""

    def __init__(self, summary):
        self.summary = summary
        super().__init__(
            f"{summary.failed} of {summary.total} contacts failed to recompute "
            f"for organization '{summary.organization_id}'"
        )
