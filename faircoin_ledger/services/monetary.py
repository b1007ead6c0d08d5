"""Monetary policy: monthly issuance proportional to reputation"""
import logging
import re
import threading
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from faircoin_ledger.config import Settings
from faircoin_ledger.db import Database
from faircoin_ledger.errors import DuplicateIssuanceForMonth, FairCoinError, InvalidValue, IssuanceIncomplete
from faircoin_ledger.models.db import (
    Account,
    IssuancePayout,
    IssuanceStatus,
    MonthlyIssuanceRecord,
    PayoutStatus,
    TransactionType,
    utcnow,
)
from faircoin_ledger.services.fairness import FairnessService
from faircoin_ledger.services.ledger import Ledger, QUANTUM

logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
FACTOR_QUANTUM = Decimal('0.000001')
ACTIVITY_WINDOW = timedelta(days=30)

def month_key(moment: datetime) -> str:
    return moment.strftime('%Y-%m')

def month_bounds(month: str) -> Tuple[datetime, datetime]:
    """First instant of the month and of the following month"""
    year, number = (int(part) for part in month.split('-'))
    start = datetime(year, number, 1)
    end = datetime(year + number // 12, number % 12 + 1, 1)
    return start, end

class MonetaryService:
    """Computes monthly issuance and credits it to accounts by PFI share"""

    def __init__(self, database: Database, settings: Settings, ledger: Ledger,
                 fairness: FairnessService, clock: Callable = utcnow):
        self.database = database
        self.settings = settings
        self.ledger = ledger
        self.fairness = fairness
        self.clock = clock
        self._run_lock = threading.Lock()

    def _completed_record(self, session: Session, month: str) -> Optional[MonthlyIssuanceRecord]:
        return (
            session.query(MonthlyIssuanceRecord)
            .filter_by(month=month, status=IssuanceStatus.COMPLETED.value)
            .one_or_none()
        )

    def process_monthly_issuance(self) -> Optional[MonthlyIssuanceRecord]:
        """
        Issue the current month's currency once.

        Returns None when the month was already completed. Resumes an
        interrupted run without re-crediting accounts already paid.

        Raises:
            IssuanceIncomplete: If any payout failed; the month stays open
        """
        month = month_key(self.clock())
        with self.database.session() as s:
            if self._completed_record(s, month):
                logger.info(f"Issuance for {month} already completed, skipping")
                return None
        return self._run(month)

    def issue_for_month(self, month: str) -> MonthlyIssuanceRecord:
        """
        Issue for an explicit month.

        Raises:
            InvalidValue: If month is not formatted YYYY-MM
            DuplicateIssuanceForMonth: If the month was already completed
            IssuanceIncomplete: If any payout failed
        """
        if not MONTH_PATTERN.match(month or ''):
            raise InvalidValue(f"Month must be formatted YYYY-MM: {month!r}")
        with self.database.session() as s:
            if self._completed_record(s, month):
                raise DuplicateIssuanceForMonth(month)
        return self._run(month)

    def _run(self, month: str) -> MonthlyIssuanceRecord:
        with self._run_lock:
            self._ensure_plan(month)
            self._pay_pending(month)
            return self._complete(month)

    def activity_window(self, month: str) -> Tuple[datetime, datetime]:
        """
        Transfers counted for a month's activity factor: the 30 days
        ending at the run, or at the month's end for a past month.
        """
        _, end = month_bounds(month)
        return min(self.clock(), end) - ACTIVITY_WINDOW, end

    def calculate_activity_factor(self, transfers: int) -> float:
        expected = max(self.settings.EXPECTED_MONTHLY_TRANSACTIONS, 1)
        return min(transfers / expected, self.settings.MAX_ACTIVITY_FACTOR)

    def calculate_fairness_factor(self, average_pfi: float) -> float:
        return average_pfi / 100

    def calculate_shares(self, total: Decimal, scores: List[Tuple[str, int]]) -> Dict[str, Decimal]:
        """Split total across accounts proportionally to PFI, rounding down"""
        total_pfi = sum(pfi for _, pfi in scores)
        if total_pfi <= 0 or total <= 0:
            return {}
        shares = {}
        for account_id, pfi in scores:
            share = (total * pfi / total_pfi).quantize(QUANTUM, rounding=ROUND_DOWN)
            if share > 0:
                shares[account_id] = share
        return shares

    def _ensure_plan(self, month: str) -> None:
        """Persist the month's factors and pending payouts, once"""
        since, until = self.activity_window(month)
        try:
            with self.database.session() as s:
                if s.query(MonthlyIssuanceRecord.id).filter_by(month=month).first():
                    logger.info(f"Resuming issuance for {month}")
                    return

                transfers = self.ledger.count_transactions(
                    TransactionType.TRANSFER.value, since=since, until=until, session=s
                )
                average_pfi = self.fairness.average_pfi(s)
                activity_factor = Decimal(str(self.calculate_activity_factor(transfers))).quantize(FACTOR_QUANTUM)
                fairness_factor = Decimal(str(self.calculate_fairness_factor(average_pfi))).quantize(FACTOR_QUANTUM)
                base = Decimal(self.settings.BASE_MONTHLY_ISSUANCE)

                total = (base * activity_factor * fairness_factor).quantize(QUANTUM, rounding=ROUND_DOWN)
                supply = self.ledger.circulating_supply(s)
                if supply > 0:
                    cap = (supply * Decimal(self.settings.MAX_MONTHLY_GROWTH_RATE)).quantize(QUANTUM, rounding=ROUND_DOWN)
                    total = min(total, cap)

                scores = (
                    s.query(Account.id, Account.pfi)
                    .filter(Account.is_admin.is_(False), Account.pfi > 0)
                    .all()
                )
                shares = self.calculate_shares(total, scores)

                s.add(MonthlyIssuanceRecord(
                    month=month,
                    base_issuance=base,
                    activity_factor=activity_factor,
                    fairness_factor=fairness_factor,
                    total_issuance=total,
                    circulating_supply_at_run=supply,
                    average_pfi=Decimal(str(round(average_pfi, 4))),
                    total_transactions=transfers,
                    status=IssuanceStatus.IN_PROGRESS.value,
                ))
                for account_id, share in shares.items():
                    s.add(IssuancePayout(month=month, account_id=account_id, amount=share))

            logger.info(
                f"Planned issuance for {month}: total {total}, activity {activity_factor}, "
                f"fairness {fairness_factor}, {len(shares)} payouts"
            )
        except IntegrityError as e:
            # Another process planned the month first
            logger.warning(f"Issuance plan for {month} already exists: {e.orig}")
        except SQLAlchemyError as e:
            logger.error(f"Database error planning issuance for {month}: {e}")
            raise

    def _pay_pending(self, month: str) -> None:
        """Credit pending payouts largest first, stopping at the first failure"""
        with self.database.session() as s:
            pending = (
                s.query(IssuancePayout.id, IssuancePayout.account_id)
                .filter_by(month=month, status=PayoutStatus.PENDING.value)
                .order_by(IssuancePayout.amount.desc(), IssuancePayout.account_id)
                .all()
            )

        paid = 0
        for position, (payout_id, account_id) in enumerate(pending):
            try:
                with self.ledger.atomic(account_id) as s:
                    payout = s.get(IssuancePayout, payout_id)
                    if payout.status != PayoutStatus.PENDING.value:
                        continue
                    transaction = self.ledger.credit(
                        account_id,
                        payout.amount,
                        TransactionType.MONTHLY_ISSUANCE.value,
                        f"Monthly issuance {month}",
                        session=s,
                    )
                    payout.status = PayoutStatus.PAID.value
                    payout.transaction_id = transaction.id
                    payout.paid_at = self.clock()
                paid += 1
            except (FairCoinError, SQLAlchemyError) as e:
                logger.error(f"Issuance payout to {account_id} for {month} failed: {e}")
                raise IssuanceIncomplete(month, paid, len(pending) - position) from e

    def _complete(self, month: str) -> MonthlyIssuanceRecord:
        with self.database.session() as s:
            record = s.query(MonthlyIssuanceRecord).filter_by(month=month).one()
            remaining = (
                s.query(IssuancePayout.id)
                .filter_by(month=month, status=PayoutStatus.PENDING.value)
                .count()
            )
            if remaining:
                paid = s.query(IssuancePayout.id).filter_by(month=month, status=PayoutStatus.PAID.value).count()
                raise IssuanceIncomplete(month, paid, remaining)
            if record.status != IssuanceStatus.COMPLETED.value:
                record.status = IssuanceStatus.COMPLETED.value
                record.completed_at = self.clock()
                logger.info(f"Issuance for {month} completed: {record.total_issuance} issued")
            return record

    def payouts_for_month(self, month: str) -> List[IssuancePayout]:
        with self.database.session() as s:
            return s.query(IssuancePayout).filter_by(month=month).order_by(IssuancePayout.account_id).all()

    def issuance_history(self, months: int = 12) -> List[MonthlyIssuanceRecord]:
        with self.database.session() as s:
            return (
                s.query(MonthlyIssuanceRecord)
                .order_by(MonthlyIssuanceRecord.month.desc())
                .limit(months)
                .all()
            )

    def current_month_stats(self) -> Dict[str, Any]:
        """Issuance factors and transfer activity for the current month"""
        month = month_key(self.clock())
        start, _ = month_bounds(month)
        stats: Dict[str, Any] = {'month': month}

        with self.database.session() as s:
            record = s.query(MonthlyIssuanceRecord).filter_by(month=month).one_or_none()
            if record:
                stats['issuance_status'] = record.status
                stats['monthly_issuance'] = record.total_issuance
                stats['activity_factor'] = record.activity_factor
                stats['fairness_factor'] = record.fairness_factor
                stats['circulating_supply_at_run'] = record.circulating_supply_at_run

        stats['monthly_transactions'] = self.ledger.count_transactions(since=start)
        stats['monthly_volume'] = self.ledger.transfer_volume(since=start)
        return stats
