"""Daily fairness snapshots and threshold alerts"""
import logging
import threading
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from faircoin_ledger.config import Settings
from faircoin_ledger.db import Database
from faircoin_ledger.errors import InvalidValue, UnknownAccount, UnknownAlert
from faircoin_ledger.models.db import (
    Account,
    AlertSeverity,
    AlertType,
    FairnessAlert,
    FairnessMetrics,
    Rating,
    Transaction,
    utcnow,
)
from faircoin_ledger.services.stats import PFI_BUCKETS, pfi_bucket

logger = logging.getLogger(__name__)

ALERT_SEVERITIES = {severity.value for severity in AlertSeverity}
DEFAULT_HISTORY_DAYS = 30

def decline_percent(previous, latest) -> float:
    """Relative drop from previous to latest in percent; 0 unless it fell"""
    previous, latest = float(previous), float(latest)
    if previous <= 0 or latest >= previous:
        return 0.0
    return (previous - latest) * 100 / previous

def _percentage(count: int, total: int) -> float:
    return round(count / total * 100, 2) if total else 0.0

class MetricsService:
    """
    Keeps one fairness snapshot per day and raises alerts when the
    latest snapshot falls too far below the one before it.
    """

    def __init__(self, database: Database, settings: Settings, clock: Callable = utcnow):
        self.database = database
        self.settings = settings
        self.clock = clock
        self._snapshot_lock = threading.Lock()

    def _collect(self, session: Session) -> Dict[str, Any]:
        counts = {name: 0 for name in PFI_BUCKETS}
        for (pfi,) in session.query(Account.pfi).filter(Account.is_admin.is_(False)):
            counts[pfi_bucket(pfi)] += 1

        average_tfi = (
            session.query(func.avg(Account.tfi))
            .filter(Account.is_merchant.is_(True), Account.tfi > 0)
            .scalar()
        )
        return {
            'pfi_excellent': counts['excellent'],
            'pfi_good': counts['good'],
            'pfi_average': counts['average'],
            'pfi_poor': counts['poor'],
            'average_tfi': Decimal(str(round(float(average_tfi or 0), 4))),
            'total_ratings': session.query(func.count(Rating.id)).scalar(),
            'total_users': session.query(func.count(Account.id)).scalar(),
            'total_merchants': (
                session.query(func.count(Account.id)).filter(Account.is_merchant.is_(True)).scalar()
            ),
            'total_transactions': session.query(func.count(Transaction.id)).scalar(),
        }

    def update_daily_metrics(self) -> FairnessMetrics:
        """Create today's snapshot, or refresh it when it already exists"""
        now = self.clock()
        today = now.date()
        with self._snapshot_lock:
            try:
                with self.database.session() as s:
                    snapshot = s.query(FairnessMetrics).filter_by(date=today).one_or_none()
                    if snapshot is None:
                        snapshot = FairnessMetrics(date=today, created_at=now)
                        s.add(snapshot)
                    for field, value in self._collect(s).items():
                        setattr(snapshot, field, value)
                    snapshot.updated_at = now
            except SQLAlchemyError as e:
                logger.error(f"Database error updating fairness metrics for {today}: {e}")
                raise

        logger.info(
            f"Fairness metrics for {today}: {snapshot.pfi_excellent} excellent PFI, "
            f"average TFI {snapshot.average_tfi}"
        )
        return snapshot

    def latest_metrics(self, limit: int = 2) -> List[FairnessMetrics]:
        with self.database.session() as s:
            return s.query(FairnessMetrics).order_by(FairnessMetrics.date.desc()).limit(limit).all()

    def metrics_history(self, days: int = DEFAULT_HISTORY_DAYS) -> Dict[str, List[Dict[str, Any]]]:
        """
        Snapshots and alerts of the last days, shaped for charts.

        PFI history holds bucket percentages, TFI history the average
        rating on the 5 point scale and the rating count.
        """
        if days <= 0:
            days = DEFAULT_HISTORY_DAYS
        start = self.clock() - timedelta(days=days)

        with self.database.session() as s:
            snapshots = (
                s.query(FairnessMetrics)
                .filter(FairnessMetrics.date >= start.date())
                .order_by(FairnessMetrics.date)
                .all()
            )
            alerts = (
                s.query(FairnessAlert)
                .filter(FairnessAlert.created_at >= start)
                .order_by(FairnessAlert.created_at.desc(), FairnessAlert.id)
                .all()
            )

        pfi_history = []
        tfi_history = []
        for snapshot in snapshots:
            day = snapshot.date.isoformat()
            total = snapshot.pfi_total
            entry = {'date': day}
            for name in PFI_BUCKETS:
                entry[name] = _percentage(getattr(snapshot, f'pfi_{name}'), total)
            pfi_history.append(entry)
            tfi_history.append({
                'date': day,
                'average_rating': round(float(snapshot.average_tfi) / 20, 2),
                'total_ratings': snapshot.total_ratings,
            })

        return {
            'pfi_history': pfi_history,
            'tfi_history': tfi_history,
            'alerts_history': [
                {
                    'date': alert.created_at.date().isoformat(),
                    'title': alert.title,
                    'message': alert.description,
                    'severity': alert.severity,
                }
                for alert in alerts
            ],
        }

    def create_alert(self, type: str, severity: str, title: str, description: str = "",
                     account_id: Optional[str] = None, metrics_date: Optional[date] = None) -> FairnessAlert:
        """
        Store an unread alert.

        Raises:
            InvalidValue: If type or title is empty or the severity unknown
            UnknownAccount: If account_id does not exist
        """
        if not type or not title:
            raise InvalidValue("Alert type and title are required")
        if severity not in ALERT_SEVERITIES:
            raise InvalidValue(f"Unknown alert severity: {severity}")

        with self.database.session() as s:
            if account_id and s.get(Account, account_id) is None:
                raise UnknownAccount(account_id)
            alert = FairnessAlert(
                type=type,
                severity=severity,
                title=title,
                description=description or "",
                account_id=account_id,
                metrics_date=metrics_date,
                created_at=self.clock(),
            )
            s.add(alert)

        logger.warning(f"Fairness alert ({severity}): {title}")
        return alert

    def unread_alerts(self) -> List[FairnessAlert]:
        with self.database.session() as s:
            return (
                s.query(FairnessAlert)
                .filter(FairnessAlert.is_read.is_(False))
                .order_by(FairnessAlert.created_at.desc(), FairnessAlert.id)
                .all()
            )

    def mark_alert_read(self, alert_id: str) -> FairnessAlert:
        with self.database.session() as s:
            alert = s.get(FairnessAlert, alert_id)
            if alert is None:
                raise UnknownAlert(alert_id)
            alert.is_read = True
        return alert

    def check_for_alerts(self) -> List[FairnessAlert]:
        """
        Compare the two newest snapshots and raise an alert per declining
        indicator. Each indicator alerts at most once per snapshot day.
        """
        with self.database.session() as s:
            snapshots = s.query(FairnessMetrics).order_by(FairnessMetrics.date.desc()).limit(2).all()
            if len(snapshots) < 2:
                return []
            latest, previous = snapshots
            raised = {
                alert_type
                for (alert_type,) in s.query(FairnessAlert.type).filter_by(metrics_date=latest.date)
            }

        created = []
        pfi_decline = decline_percent(previous.pfi_excellent, latest.pfi_excellent)
        if (pfi_decline > self.settings.ALERT_PFI_DECLINE_PERCENT
                and AlertType.PFI_DECLINE.value not in raised):
            created.append(self.create_alert(
                AlertType.PFI_DECLINE.value,
                AlertSeverity.HIGH.value,
                "Significant PFI decline detected",
                f"Excellent PFI scores declined by {pfi_decline:.1f}% since {previous.date}",
                metrics_date=latest.date,
            ))

        tfi_decline = decline_percent(previous.average_tfi, latest.average_tfi)
        if (tfi_decline > self.settings.ALERT_TFI_DECLINE_PERCENT
                and AlertType.TFI_DECLINE.value not in raised):
            created.append(self.create_alert(
                AlertType.TFI_DECLINE.value,
                AlertSeverity.MEDIUM.value,
                "TFI average declining",
                f"Average TFI score declined by {tfi_decline:.1f}% since {previous.date}",
                metrics_date=latest.date,
            ))
        return created
