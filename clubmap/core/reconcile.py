"""
Reconciliation sweep: replays intake buffer records that never reached the
authoritative store.

The receipt is the dedup key. A record is retired only after a submission
carrying its receipt is confirmed in the store, so the sweep can crash at any
point and be re-run, and two sweeps can run at once, without losing or
doubling a submission.
"""

from dataclasses import dataclass, asdict, field
from typing import Dict, List, Optional

from . import config, dao
from .errors import IntakeBufferError, StoreUnavailableError
from .intake_buffer import IntakeBuffer, intake_buffer
from util.logging import logger


@dataclass
class ReconciliationSummary:
    """Summary of one sweep."""
    scanned: int = 0
    replayed: int = 0
    already_present: int = 0
    already_consumed: int = 0
    failed: int = 0
    aborted: bool = False
    submission_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


class Reconciler:
    """Replays pending intake records older than the grace period."""

    def __init__(self, buffer: Optional[IntakeBuffer] = None):
        self.buffer = buffer or intake_buffer

    def sweep(self, grace_sec: Optional[float] = None) -> ReconciliationSummary:
        """
        Run one sweep.

        Args:
            grace_sec: Skip records younger than this, leaving them to the
                request that wrote them. Defaults to RECONCILE_GRACE_SEC.

        Returns:
            ReconciliationSummary with per-outcome counts.
        """
        if grace_sec is None:
            grace_sec = config.RECONCILE_GRACE_SEC

        summary = ReconciliationSummary()
        for receipt in self.buffer.list_pending(older_than_sec=grace_sec):
            summary.scanned += 1
            try:
                self._replay(receipt, summary)
            except StoreUnavailableError as e:
                # Store is down: the rest would fail the same way
                logger.warning(f"Reconciliation aborted at {receipt}: {e.message}")
                summary.failed += 1
                summary.aborted = True
                break
            except IntakeBufferError as e:
                logger.error(f"Skipping intake record {receipt}: {e.message}")
                summary.failed += 1

        status = "aborted" if summary.aborted else "success"
        logger.log_reconcile({k: v for k, v in summary.to_dict().items() if k != "submission_ids"}, status)
        return summary

    def _replay(self, receipt: str, summary: ReconciliationSummary) -> None:
        try:
            record = self.buffer.load(receipt)
        except FileNotFoundError:
            # Consumed by a concurrent sweep or the live request
            summary.already_consumed += 1
            return

        existing = dao.find_submission_by_receipt(receipt)
        if existing is not None:
            summary.already_present += 1
            submission_id = existing.id
        else:
            submission, created = dao.create_submission(record.to_submission())
            if created:
                summary.replayed += 1
            else:
                summary.already_present += 1
            submission_id = submission.id

        if not self.buffer.mark_consumed(receipt):
            logger.debug(f"Intake record {receipt} was retired concurrently")
        summary.submission_ids.append(submission_id)


# Global reconciler instance
reconciler = Reconciler()


def sweep(grace_sec: Optional[float] = None) -> ReconciliationSummary:
    """Run one sweep with the global reconciler."""
    return reconciler.sweep(grace_sec)
