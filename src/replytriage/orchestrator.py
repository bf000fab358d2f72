"""Batch orchestrator: select, then classify and label each candidate."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

from replytriage.classifier import Verdict
from replytriage.exceptions import SelectionError, TriageError
from replytriage.labeler import LabelApplicator
from replytriage.mailbox import Message, Thread
from replytriage.selector import CandidateSelector
from replytriage.structured_logger import StructuredLogger

logger = logging.getLogger(__name__)


class Classifier(Protocol):
    def classify(self, message: Message) -> Verdict: ...


class OutcomeStatus(str, Enum):
    """Result of handling one candidate."""

    LABELED = "labeled"
    FAILED = "failed"
    DRY_RUN = "dry_run"


@dataclass
class ThreadOutcome:
    """Per-thread result of a run."""

    thread_id: str
    subject: str
    status: OutcomeStatus
    requires_response: bool | None = None
    labels: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != OutcomeStatus.FAILED


@dataclass
class BatchReport:
    """Outcomes of one run, in candidate order."""

    started_at: datetime
    finished_at: datetime | None = None
    outcomes: list[ThreadOutcome] = field(default_factory=list)

    @property
    def selected(self) -> int:
        return len(self.outcomes)

    @property
    def labeled(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OutcomeStatus.LABELED)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OutcomeStatus.FAILED)


class BatchOrchestrator:
    """Drives one triage run.

    Each candidate is classified and labelled inside its own error boundary,
    so a failure on one thread is logged and recorded and the run moves on.
    Only a failed selection aborts the run.
    """

    def __init__(
        self,
        selector: CandidateSelector,
        classifier: Classifier,
        applicator: LabelApplicator,
        audit: StructuredLogger | None = None,
        dry_run: bool = False,
    ):
        self.selector = selector
        self.classifier = classifier
        self.applicator = applicator
        self.audit = audit or StructuredLogger()
        self.dry_run = dry_run

    def run(self) -> BatchReport:
        """Run one batch.

        Raises:
            SelectionError: If candidates cannot be fetched
        """
        report = BatchReport(started_at=datetime.now(timezone.utc))
        self.audit.log_run_started(self.selector.build_query(), self.selector.batch_size, self.dry_run)

        try:
            candidates = self.selector.select()
        except SelectionError as e:
            logger.error(f"Candidate selection failed: {e}")
            self.audit.log_error("selection_failed", str(e))
            raise

        if not candidates:
            logger.info("No threads to triage")
        else:
            logger.info(f"Triaging {len(candidates)} thread(s)")

        for thread in candidates:
            report.outcomes.append(self._process_thread(thread))

        report.finished_at = datetime.now(timezone.utc)
        self.audit.log_run_completed(report.selected, report.labeled, report.failed)
        logger.info(f"Run complete: {report.labeled} labelled, {report.failed} failed, {report.selected} selected")
        return report

    def _process_thread(self, thread: Thread) -> ThreadOutcome:
        try:
            verdict = self.classifier.classify(thread.first_message)
            if self.dry_run:
                labels = self.applicator.labels_for(verdict)
                logger.warning(f"Thread {thread.id}: [DRY-RUN] would apply {', '.join(labels)}")
                status = OutcomeStatus.DRY_RUN
            else:
                labels = self.applicator.apply(thread, verdict)
                logger.info(f"Thread {thread.id}: requiresResponse={verdict.requires_response}, labelled {', '.join(labels)}")
                status = OutcomeStatus.LABELED
        except TriageError as e:
            logger.error(f"Thread {thread.id}: {type(e).__name__}: {e}")
            return self._failure(thread, e)
        except Exception as e:
            logger.error(f"Thread {thread.id}: unexpected error: {e}", exc_info=True)
            return self._failure(thread, e)

        self.audit.log_thread_processed(
            thread_id=thread.id,
            subject=thread.subject,
            requires_response=verdict.requires_response,
            labels=labels,
            dry_run=self.dry_run,
        )
        return ThreadOutcome(
            thread_id=thread.id,
            subject=thread.subject,
            status=status,
            requires_response=verdict.requires_response,
            labels=labels,
        )

    def _failure(self, thread: Thread, error: Exception) -> ThreadOutcome:
        self.audit.log_thread_failed(thread.id, type(error).__name__, str(error))
        return ThreadOutcome(
            thread_id=thread.id,
            subject=thread.subject,
            status=OutcomeStatus.FAILED,
            error=str(error),
        )
