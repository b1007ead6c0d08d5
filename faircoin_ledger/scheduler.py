"""Periodic driver: score recomputation, issuance, proposal resolution and fairness metrics"""
import logging
import threading
from typing import Callable, Optional

from faircoin_ledger.models.db import utcnow
from faircoin_ledger.models.report import CycleReport
from faircoin_ledger.services.fairness import FairnessService
from faircoin_ledger.services.governance import GovernanceService
from faircoin_ledger.services.metrics import MetricsService
from faircoin_ledger.services.monetary import MonetaryService

logger = logging.getLogger(__name__)

class Scheduler:
    """
    Runs the periodic jobs in order, so issuance always sees fresh scores.

    Each job goes through the same service methods request handlers use.
    A failing job is logged and recorded in the report; the cycle moves on.
    """

    def __init__(self, fairness: FairnessService, monetary: MonetaryService,
                 governance: GovernanceService, metrics: MetricsService, interval_seconds: int = 3600,
                 clock: Callable = utcnow):
        self.fairness = fairness
        self.monetary = monetary
        self.governance = governance
        self.metrics = metrics
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_cycle(self) -> CycleReport:
        report = CycleReport(started_at=self.clock())

        try:
            summary = self.fairness.update_all_scores()
            report.scores = {
                'pfi_updated': summary.pfi_updated,
                'tfi_updated': summary.tfi_updated,
                'failures': len(summary.failures),
            }
        except Exception as e:
            logger.error(f"Score update failed: {e}")
            report.errors['scores'] = str(e)

        try:
            record = self.monetary.process_monthly_issuance()
            if record is not None:
                report.issuance = {'month': record.month, 'total_issuance': str(record.total_issuance)}
        except Exception as e:
            logger.error(f"Monthly issuance failed: {e}")
            report.errors['issuance'] = str(e)

        try:
            report.proposals_resolved = self.governance.resolve_expired()
        except Exception as e:
            logger.error(f"Proposal resolution failed: {e}")
            report.errors['governance'] = str(e)

        try:
            self.metrics.update_daily_metrics()
            report.alerts_created = len(self.metrics.check_for_alerts())
        except Exception as e:
            logger.error(f"Fairness metrics update failed: {e}")
            report.errors['metrics'] = str(e)

        report.finished_at = self.clock()
        logger.info(f"Scheduler cycle finished: {report.model_dump(exclude={'started_at', 'finished_at'})}")
        return report

    def run_forever(self) -> None:
        """Run cycles every interval until stop() is called"""
        logger.info(f"Scheduler started, interval {self.interval_seconds}s")
        while not self._stop.is_set():
            self.run_cycle()
            self._stop.wait(self.interval_seconds)
        logger.info("Scheduler stopped")

    def start(self) -> threading.Thread:
        """Run the scheduler in a daemon thread"""
        if self._thread and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="faircoin-scheduler", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
