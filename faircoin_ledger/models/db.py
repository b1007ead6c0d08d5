"""SQLAlchemy database models for the ledger, reputation and governance state"""
import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

Base = declarative_base()

BIGINT_MAX = 2 ** 63 - 1

class ScaledDecimal(TypeDecorator):
    """
    Fixed-point Decimal stored as a signed 64-bit count of its smallest unit.

    SQLite has no decimal storage and binds Numeric through float, so
    values are scaled to integers on the way in and back on the way out.
    SUM over such a column stays an exact integer on every backend.
    """
    impl = BigInteger
    cache_ok = True

    def __init__(self, places: int):
        super().__init__()
        self.places = places
        self.quantum = Decimal(1).scaleb(-places)
        self.max_value = Decimal(BIGINT_MAX).scaleb(-places)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = value if isinstance(value, Decimal) else Decimal(str(value))
        if value.quantize(self.quantum) != value:
            raise ValueError(f"{value} has more than {self.places} decimal places")
        if abs(value) > self.max_value:
            raise ValueError(f"{value} exceeds the storable maximum {self.max_value}")
        return int(value.scaleb(self.places))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(int(value)).scaleb(-self.places)

# Monetary amounts: 8 decimal places, returned as Decimal
Money = ScaledDecimal(8)

def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def new_id() -> str:
    return str(uuid.uuid4())

class TransactionType(str, enum.Enum):
    TRANSFER = "transfer"
    FAIRNESS_REWARD = "fairness_reward"
    MERCHANT_INCENTIVE = "merchant_incentive"
    MONTHLY_ISSUANCE = "monthly_issuance"
    FEE = "fee"
    BURN = "burn"

class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

class AttestationType(str, enum.Enum):
    COMMUNITY_SERVICE = "community_service"
    DISPUTE_RESOLUTION = "dispute_resolution"
    PEER_RATING = "peer_rating"

class ProposalType(str, enum.Enum):
    MONETARY_POLICY = "monetary_policy"
    GOVERNANCE = "governance"
    TECHNICAL = "technical"
    COMMUNITY = "community"

class ProposalStatus(str, enum.Enum):
    ACTIVE = "active"
    PASSED = "passed"
    REJECTED = "rejected"
    EXPIRED = "expired"

class IssuanceStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"

class AlertType(str, enum.Enum):
    PFI_DECLINE = "pfi_decline"
    TFI_DECLINE = "tfi_decline"

class AlertSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class Account(Base):
    """
    Community member. Holds the last computed reputation scores;
    the scores themselves are derived from attestations and ratings.
    """
    __tablename__ = 'accounts'

    id = Column(String(36), primary_key=True, default=new_id)
    username = Column(String(64), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=True)
    pfi = Column(Integer, nullable=False, default=0)
    tfi = Column(Integer, nullable=False, default=0)
    is_merchant = Column(Boolean, nullable=False, default=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    community_service_hours = Column(Integer, nullable=False, default=0)
    # Number of attestations/ratings seen by the last recomputation
    scores_version = Column(Integer, nullable=False, default=0)
    scores_updated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("pfi >= 0 AND pfi <= 100", name="ck_account_pfi_range"),
        CheckConstraint("tfi >= 0 AND tfi <= 100", name="ck_account_tfi_range"),
        CheckConstraint("community_service_hours >= 0", name="ck_account_hours_nonneg"),
    )

class Wallet(Base):
    """One wallet per account"""
    __tablename__ = 'wallets'

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), ForeignKey('accounts.id'), unique=True, nullable=False)
    balance = Column(Money, nullable=False, default=0)
    locked = Column(Money, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallet_balance_nonneg"),
        CheckConstraint("locked >= 0", name="ck_wallet_locked_nonneg"),
    )

    @property
    def spendable(self):
        return self.balance - self.locked

class Transaction(Base):
    """Immutable, append-only record of every balance mutation"""
    __tablename__ = 'transactions'

    id = Column(String(36), primary_key=True, default=new_id)
    type = Column(String(32), nullable=False)
    amount = Column(Money, nullable=False)
    fee = Column(Money, nullable=False, default=0)
    from_account_id = Column(String(36), ForeignKey('accounts.id'), nullable=False)
    to_account_id = Column(String(36), ForeignKey('accounts.id'), nullable=True)
    status = Column(String(16), nullable=False, default=TransactionStatus.PENDING.value)
    description = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_amount_pos"),
        CheckConstraint("fee >= 0", name="ck_transaction_fee_nonneg"),
        Index("idx_transaction_from", "from_account_id"),
        Index("idx_transaction_to", "to_account_id"),
        Index("idx_transaction_type_created", "type", "created_at"),
    )

class Attestation(Base):
    """Peer endorsement feeding the subject's PFI"""
    __tablename__ = 'attestations'

    id = Column(String(36), primary_key=True, default=new_id)
    subject_id = Column(String(36), ForeignKey('accounts.id'), nullable=False, index=True)
    attester_id = Column(String(36), ForeignKey('accounts.id'), nullable=False)
    type = Column(String(32), nullable=False)
    value = Column(Integer, nullable=False)
    description = Column(Text, nullable=False, default="")
    verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("value >= 1 AND value <= 10", name="ck_attestation_value_range"),
        CheckConstraint("subject_id <> attester_id", name="ck_attestation_not_self"),
        UniqueConstraint("subject_id", "attester_id", "type", name="uq_attestation_subject_attester_type"),
    )

class Rating(Base):
    """Customer review of a merchant feeding the merchant's TFI"""
    __tablename__ = 'ratings'

    id = Column(String(36), primary_key=True, default=new_id)
    customer_id = Column(String(36), ForeignKey('accounts.id'), nullable=False)
    merchant_id = Column(String(36), ForeignKey('accounts.id'), nullable=False, index=True)
    transaction_id = Column(String(36), ForeignKey('transactions.id'), nullable=True)
    delivery = Column(Integer, nullable=False)
    quality = Column(Integer, nullable=False)
    transparency = Column(Integer, nullable=False)
    environmental = Column(Integer, nullable=False)
    comments = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "delivery BETWEEN 1 AND 10 AND quality BETWEEN 1 AND 10 "
            "AND transparency BETWEEN 1 AND 10 AND environmental BETWEEN 1 AND 10",
            name="ck_rating_dimensions_range"
        ),
        CheckConstraint("customer_id <> merchant_id", name="ck_rating_not_self"),
    )

class Proposal(Base):
    """Governance proposal with running vote tallies"""
    __tablename__ = 'proposals'

    id = Column(String(36), primary_key=True, default=new_id)
    proposer_id = Column(String(36), ForeignKey('accounts.id'), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    type = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default=ProposalStatus.ACTIVE.value, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    votes_for = Column(Integer, nullable=False, default=0)
    votes_against = Column(Integer, nullable=False, default=0)
    total_voting_power = Column(ScaledDecimal(10), nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    resolved_at = Column(DateTime, nullable=True)

class Vote(Base):
    """A single vote; voting power is frozen when cast"""
    __tablename__ = 'votes'

    id = Column(String(36), primary_key=True, default=new_id)
    voter_id = Column(String(36), ForeignKey('accounts.id'), nullable=False)
    proposal_id = Column(String(36), ForeignKey('proposals.id'), nullable=False, index=True)
    in_favor = Column(Boolean, nullable=False)
    voting_power = Column(ScaledDecimal(10), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("voter_id", "proposal_id", name="uq_vote_voter_proposal"),
    )

class MonthlyIssuanceRecord(Base):
    """
    Issuance plan and outcome for one calendar month.
    Only a completed record counts as the month's canonical issuance.
    """
    __tablename__ = 'monthly_issuance'

    id = Column(String(36), primary_key=True, default=new_id)
    month = Column(String(7), unique=True, nullable=False)
    base_issuance = Column(Money, nullable=False)
    activity_factor = Column(ScaledDecimal(6), nullable=False)
    fairness_factor = Column(ScaledDecimal(6), nullable=False)
    total_issuance = Column(Money, nullable=False)
    circulating_supply_at_run = Column(Money, nullable=False)
    average_pfi = Column(ScaledDecimal(4), nullable=False)
    total_transactions = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, default=IssuanceStatus.IN_PROGRESS.value)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)

class IssuancePayout(Base):
    """Planned credit of one account within a month's issuance"""
    __tablename__ = 'issuance_payouts'

    id = Column(String(36), primary_key=True, default=new_id)
    month = Column(String(7), nullable=False, index=True)
    account_id = Column(String(36), ForeignKey('accounts.id'), nullable=False)
    amount = Column(Money, nullable=False)
    status = Column(String(16), nullable=False, default=PayoutStatus.PENDING.value)
    transaction_id = Column(String(36), ForeignKey('transactions.id'), nullable=True)
    paid_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("month", "account_id", name="uq_payout_month_account"),
    )

class FairnessMetrics(Base):
    """Daily snapshot of the score distribution and community totals"""
    __tablename__ = 'fairness_metrics'

    id = Column(String(36), primary_key=True, default=new_id)
    date = Column(Date, unique=True, nullable=False)
    pfi_excellent = Column(Integer, nullable=False, default=0)
    pfi_good = Column(Integer, nullable=False, default=0)
    pfi_average = Column(Integer, nullable=False, default=0)
    pfi_poor = Column(Integer, nullable=False, default=0)
    # Mean over merchants with a TFI above zero
    average_tfi = Column(ScaledDecimal(4), nullable=False, default=0)
    total_ratings = Column(Integer, nullable=False, default=0)
    total_users = Column(Integer, nullable=False, default=0)
    total_merchants = Column(Integer, nullable=False, default=0)
    total_transactions = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def pfi_total(self) -> int:
        return self.pfi_excellent + self.pfi_good + self.pfi_average + self.pfi_poor

class FairnessAlert(Base):
    """Notice raised when a fairness indicator crosses its threshold"""
    __tablename__ = 'fairness_alerts'

    id = Column(String(36), primary_key=True, default=new_id)
    type = Column(String(32), nullable=False)
    severity = Column(String(16), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    account_id = Column(String(36), ForeignKey('accounts.id'), nullable=True)
    # Snapshot day that triggered the alert, if any
    metrics_date = Column(Date, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False, index=True)
    is_resolved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_alert_type_metrics_date", "type", "metrics_date"),
    )
