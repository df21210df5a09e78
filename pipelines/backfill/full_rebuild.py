"""
Full Score Rebuild.

Responsibilities:
- Recompute engagement scores for every contact of an organization.
- Page through contacts in fixed-size batches; score a batch concurrently,
  run batches one after another.
- Collect per-contact failures into a summary instead of aborting.

Non-Responsibilities:
- No rule evaluation (see pipelines.scoring.calculator).
- No rule editing.

Invariant:
A full rebuild must be idempotent and reproducible: the same contacts,
activity, rule set and ``now`` always persist the same scores.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from contactcore.config import MAX_BATCH_SIZE
from contactcore.errors import PartialFailure, StoreError, ValidationError
from contactcore.logger import StructuredLogger, get_logger
from contactcore.retry import exponential_backoff, is_transient_error
from pipelines.scoring.calculator import (
    SCORE_WINDOW_DAYS,
    ActivitySnapshot,
    ContactProfile,
    ContactScore,
    attendance_window_days,
    build_snapshot,
    calculate_score,
)
from pipelines.scoring.rules import ScoringRuleSet, load_rule_set
from storage.repositories.contacts import ContactRepository
from storage.repositories.settings import SettingsRepository

Calculator = Callable[[ContactProfile, ScoringRuleSet, ActivitySnapshot, datetime], ContactScore]


@dataclass
class RecomputeSummary:
    """Outcome of one rebuild run."""

    organization_id: str
    rule_set_version: int
    total: int = 0
    succeeded: int = 0
    failures: Dict[str, str] = field(default_factory=dict)  # contact id -> reason
    batches: List[int] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)

    def raise_for_failures(self) -> None:
        """Raise PartialFailure if any contact failed."""
        if self.failures:
            raise PartialFailure(self)


class _BatchGate:
    """Closes a batch to late writes once its wait deadline has passed."""

    def __init__(self):
        self.lock = threading.Lock()
        self.closed = False
        self.committed = set()

    def close(self) -> set:
        with self.lock:
            self.closed = True
            return set(self.committed)


class BatchRecomputeCoordinator:
    """Drives a full rebuild of engagement scores for one organization."""

    def __init__(
        self,
        session_factory,
        batch_size: int = 50,
        task_timeout: float = 30.0,
        calculator: Calculator = calculate_score,
        persist_retries: int = 2,
        logger: Optional[StructuredLogger] = None,
    ):
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValidationError(
                f"batch_size must be between 1 and {MAX_BATCH_SIZE}, got {batch_size}"
            )
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.task_timeout = task_timeout
        self.calculator = calculator
        self.persist_retries = persist_retries
        self.logger = logger or get_logger()

    def run(
        self,
        organization_id: str,
        rule_set: Optional[ScoringRuleSet] = None,
        now: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RecomputeSummary:
        """
        Recompute and persist scores for every contact.

        Args:
            organization_id: Organization to rebuild
            rule_set: Rule snapshot; loaded once from settings when omitted
            now: Reference time shared by every contact in the run
            cancel_event: Once set, no further batch starts

        Returns:
            RecomputeSummary; per-contact failures are reported, not raised

        Raises:
            NotFoundError: Unknown organization
            StoreError: A page of contact ids could not be read
        """
        now = now or datetime.now()
        rule_set = self._resolve_rule_set(organization_id, rule_set)
        summary = RecomputeSummary(organization_id=organization_id, rule_set_version=rule_set.version)

        self.logger.info(
            "Score rebuild started",
            organization_id=organization_id,
            rule_set_version=rule_set.version,
            enabled_rules=len(rule_set.enabled_rules()),
            batch_size=self.batch_size,
        )

        after_id = None
        while True:
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                self.logger.warning(
                    "Score rebuild cancelled",
                    organization_id=organization_id,
                    batches_done=len(summary.batches),
                )
                break

            page = self._next_page(organization_id, after_id)
            if not page:
                break

            self._run_batch(organization_id, page, rule_set, now, summary)
            summary.batches.append(len(page))
            after_id = page[-1]
            if len(page) < self.batch_size:
                break

        log = self.logger.warning if summary.failures else self.logger.info
        log(
            f"Score rebuild finished: {summary.succeeded}/{summary.total} contacts scored",
            organization_id=organization_id,
            failed=summary.failed,
            batches=summary.batches,
            cancelled=summary.cancelled,
        )
        return summary

    def recompute_contact(
        self,
        organization_id: str,
        contact_id: str,
        rule_set: Optional[ScoringRuleSet] = None,
        now: Optional[datetime] = None,
    ) -> ContactScore:
        """
        On-demand recompute of one contact.

        Raises:
            NotFoundError: Unknown organization or contact
        """
        rule_set = self._resolve_rule_set(organization_id, rule_set)
        return self._score_contact(organization_id, contact_id, rule_set, now or datetime.now())

    def _resolve_rule_set(self, organization_id: str, rule_set: Optional[ScoringRuleSet]) -> ScoringRuleSet:
        session = self.session_factory()
        try:
            if rule_set is None:
                return load_rule_set(session, organization_id)
            SettingsRepository(session).get_organization(organization_id)
            return rule_set
        finally:
            session.close()

    def _next_page(self, organization_id: str, after_id: Optional[str]) -> List[str]:
        session = self.session_factory()
        try:
            return ContactRepository(session).page_ids(organization_id, after_id, self.batch_size)
        finally:
            session.close()

    def _run_batch(
        self,
        organization_id: str,
        contact_ids: List[str],
        rule_set: ScoringRuleSet,
        now: datetime,
        summary: RecomputeSummary,
    ) -> None:
        gate = _BatchGate()
        executor = ThreadPoolExecutor(max_workers=len(contact_ids), thread_name_prefix="score")
        try:
            futures = {
                cid: executor.submit(self._score_contact, organization_id, cid, rule_set, now, gate)
                for cid in contact_ids
            }
            wait(futures.values(), timeout=self.task_timeout)
        finally:
            # A stuck task keeps its thread but no longer holds up the run;
            # its score is rolled back instead of committed.
            committed = gate.close()
            executor.shutdown(wait=False, cancel_futures=True)

        for cid in contact_ids:
            summary.total += 1
            future = futures[cid]
            if not future.done() and cid not in committed:
                reason = f"TimeoutError: scoring exceeded {self.task_timeout}s"
                self.logger.record_score_failure("TimeoutError")
            elif not future.done():
                # committed just before the deadline, still closing its session
                summary.succeeded += 1
                self.logger.record_score_success()
                continue
            else:
                error = future.exception()
                if error is None:
                    summary.succeeded += 1
                    self.logger.record_score_success()
                    continue
                reason = f"{type(error).__name__}: {error}"
                self.logger.record_score_failure(type(error).__name__)
            summary.failures[cid] = reason
            self.logger.error("Contact score failed", contact_id=cid, reason=reason)

        self.logger.debug(
            "Score batch done",
            organization_id=organization_id,
            size=len(contact_ids),
            failed_so_far=summary.failed,
        )

    def _score_contact(
        self,
        organization_id: str,
        contact_id: str,
        rule_set: ScoringRuleSet,
        now: datetime,
        gate: Optional[_BatchGate] = None,
    ) -> ContactScore:
        session = self.session_factory()
        try:
            repo = ContactRepository(session)
            contact = repo.get(organization_id, contact_id)
            since = now - timedelta(days=SCORE_WINDOW_DAYS)
            attended_since = now - timedelta(days=attendance_window_days(rule_set))
            snapshot = build_snapshot(
                repo.interactions_since(contact_id, since),
                repo.activities_since(contact_id, since),
                repo.attendance_since(contact_id, attended_since),
            )
            score = self.calculator(ContactProfile.from_contact(contact), rule_set, snapshot, now)
            self._persist(session, organization_id, score, gate)
            return score
        finally:
            session.close()

    def _persist(
        self,
        session,
        organization_id: str,
        score: ContactScore,
        gate: Optional[_BatchGate] = None,
    ) -> None:
        def on_retry(attempt, error, delay):
            self.logger.warning(
                "Retrying score write",
                contact_id=score.contact_id,
                attempt=attempt,
                delay=delay,
                error=str(error),
            )

        @exponential_backoff(
            max_retries=self.persist_retries,
            base_delay=0.05,
            max_delay=1.0,
            exceptions=(StoreError,),
            retry_if=is_transient_error,
            on_retry=on_retry,
        )
        def write():
            try:
                ContactRepository(session).save_score(
                    organization_id, score.contact_id, score.to_payload()
                )
                if gate is None:
                    session.commit()
                    return
                with gate.lock:
                    if gate.closed:
                        session.rollback()
                        raise TimeoutError(f"scoring exceeded {self.task_timeout}s")
                    session.commit()
                    gate.committed.add(score.contact_id)
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreError(f"Persisting score for '{score.contact_id}' failed: {e}") from e
            except StoreError:
                session.rollback()
                raise

        write()
