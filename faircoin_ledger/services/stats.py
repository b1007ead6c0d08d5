"""Community statistics for the presentation layer"""
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Tuple

from sqlalchemy import func

from faircoin_ledger.db import Database
from faircoin_ledger.models.db import Account, Rating, Transaction, utcnow
from faircoin_ledger.services.ledger import Ledger

logger = logging.getLogger(__name__)

def pfi_bucket(pfi: int) -> str:
    if pfi >= 90:
        return "excellent"
    elif pfi >= 70:
        return "good"
    elif pfi >= 50:
        return "average"
    return "poor"

def tfi_bucket(tfi: int) -> str:
    if tfi >= 80:
        return "excellent"
    elif tfi >= 60:
        return "good"
    elif tfi >= 40:
        return "fair"
    elif tfi >= 30:
        return "base"
    return "unscored"

PFI_BUCKETS = ("excellent", "good", "average", "poor")
TFI_BUCKETS = ("excellent", "good", "fair", "base", "unscored")

def _distribution(scores: List[int], bucket: Callable[[int], str],
                  names: Tuple[str, ...]) -> Dict[str, Any]:
    counts = {name: 0 for name in names}
    for score in scores:
        counts[bucket(score)] += 1
    total = len(scores)
    return {
        "distribution": {
            name: {
                "count": count,
                "percentage": round(count / total * 100, 2) if total else 0.0,
            }
            for name, count in counts.items()
        },
        "total": total,
    }

class StatsService:
    """Read-only aggregates over accounts, ratings and transactions"""

    def __init__(self, database: Database, ledger: Ledger, clock: Callable = utcnow):
        self.database = database
        self.ledger = ledger
        self.clock = clock

    def community_stats(self) -> Dict[str, Any]:
        with self.database.session() as s:
            total_users = s.query(func.count(Account.id)).scalar()
            total_merchants = s.query(func.count(Account.id)).filter(Account.is_merchant.is_(True)).scalar()
            total_transactions = s.query(func.count(Transaction.id)).scalar()
            average_pfi = s.query(func.avg(Account.pfi)).filter(Account.is_admin.is_(False)).scalar()

        return {
            "total_users": total_users,
            "total_merchants": total_merchants,
            "total_transactions": total_transactions,
            "circulating_supply": self.ledger.circulating_supply(),
            "average_pfi": round(float(average_pfi or 0), 2),
            "transaction_volume_30d": self.ledger.transfer_volume(since=self.clock() - timedelta(days=30)),
            "total_burned": self.ledger.total_burned(),
        }

    def pfi_distribution(self) -> Dict[str, Any]:
        """PFI buckets over scored (non-admin) accounts"""
        with self.database.session() as s:
            scores = [pfi for (pfi,) in s.query(Account.pfi).filter(Account.is_admin.is_(False)).all()]
        return _distribution(scores, pfi_bucket, PFI_BUCKETS)

    def tfi_distribution(self) -> Dict[str, Any]:
        """TFI buckets over merchants"""
        with self.database.session() as s:
            scores = [tfi for (tfi,) in s.query(Account.tfi).filter(Account.is_merchant.is_(True)).all()]
        return _distribution(scores, tfi_bucket, TFI_BUCKETS)

    def top_merchants(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Merchants ranked by TFI, with rating counts"""
        with self.database.session() as s:
            rows = (
                s.query(Account, func.count(Rating.id))
                .outerjoin(Rating, Rating.merchant_id == Account.id)
                .filter(Account.is_merchant.is_(True), Account.tfi > 0)
                .group_by(Account.id)
                .order_by(Account.tfi.desc(), Account.username)
                .limit(limit)
                .all()
            )

        return [
            {
                "rank": rank,
                "id": merchant.id,
                "username": merchant.username,
                "tfi": merchant.tfi,
                # TFI is 0-100; the dashboard shows ratings out of 5
                "average_rating": round(merchant.tfi / 20, 2),
                "total_ratings": rating_count,
            }
            for rank, (merchant, rating_count) in enumerate(rows, start=1)
        ]
