"""Fairness engine: attestations, ratings and PFI/TFI recomputation"""
import logging
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from faircoin_ledger.config import Settings
from faircoin_ledger.db import Database
from faircoin_ledger.errors import (
    DuplicateAttestation,
    DuplicateRating,
    FairCoinError,
    InsufficientReputation,
    InvalidValue,
    SelfReference,
    UnknownAccount,
)
from faircoin_ledger.locks import KeyedLocks
from faircoin_ledger.models.db import Account, Attestation, AttestationType, Rating, Transaction, utcnow
from faircoin_ledger.models.scores import (
    AttestationSignal,
    PFIBreakdown,
    RatingSignal,
    ScoreUpdateSummary,
    TFIBreakdown,
)
from faircoin_ledger.scoring import FairnessScorer

logger = logging.getLogger(__name__)

ATTESTATION_TYPES = {t.value for t in AttestationType}

def _check_score_value(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 10:
        raise InvalidValue(f"{name} must be an integer between 1 and 10, got {value!r}")

class FairnessService:
    """Turns attestations and ratings into bounded reputation scores"""

    def __init__(self, database: Database, settings: Settings,
                 scorer: Optional[FairnessScorer] = None,
                 clock: Callable = utcnow):
        self.database = database
        self.settings = settings
        self.scorer = scorer or FairnessScorer(settings.PFI_WEIGHTS, settings.MERCHANT_BASE_TFI)
        self.clock = clock
        self.score_locks = KeyedLocks()
        self.rating_locks = KeyedLocks()

    def _get_account(self, session: Session, account_id: str) -> Account:
        account = session.get(Account, account_id)
        if account is None:
            raise UnknownAccount(account_id)
        return account

    def _attestation_signals(self, session: Session, account_id: str):
        rows = (
            session.query(Attestation.type, Attestation.value)
            .filter_by(subject_id=account_id, verified=True)
            .all()
        )
        return [AttestationSignal(type=t, value=v) for t, v in rows]

    def _rating_signals(self, session: Session, merchant_id: str):
        rows = (
            session.query(Rating.delivery, Rating.quality, Rating.transparency, Rating.environmental)
            .filter_by(merchant_id=merchant_id)
            .all()
        )
        return [RatingSignal(*row) for row in rows]

    def _inputs_version(self, session: Session, account_id: str) -> int:
        attestations = (
            session.query(func.count(Attestation.id))
            .filter_by(subject_id=account_id, verified=True)
            .scalar()
        )
        ratings = session.query(func.count(Rating.id)).filter_by(merchant_id=account_id).scalar()
        return (attestations or 0) + (ratings or 0)

    def create_attestation(self, subject_id: str, attester_id: str, type: str, value: int,
                           description: str = "") -> Attestation:
        """
        Record a peer attestation and refresh the subject's PFI.

        Raises:
            InvalidValue: If the type is unknown or value is outside 1-10
            SelfReference: If attester and subject are the same account
            UnknownAccount: If either account does not exist
            InsufficientReputation: If the attester's PFI is too low
            DuplicateAttestation: If this attester already attested this type
        """
        if type not in ATTESTATION_TYPES:
            raise InvalidValue(f"Unknown attestation type: {type}")
        _check_score_value("Attestation value", value)
        if subject_id == attester_id:
            raise SelfReference("Accounts cannot attest themselves")

        try:
            with self.database.session() as s:
                self._get_account(s, subject_id)
                attester = self._get_account(s, attester_id)

                if not attester.is_admin and attester.pfi < self.settings.MIN_PFI_FOR_ATTESTATION:
                    raise InsufficientReputation(
                        f"Attester PFI {attester.pfi} below minimum {self.settings.MIN_PFI_FOR_ATTESTATION}"
                    )

                existing = (
                    s.query(Attestation.id)
                    .filter_by(subject_id=subject_id, attester_id=attester_id, type=type)
                    .first()
                )
                if existing:
                    raise DuplicateAttestation(f"{attester_id} already attested {type} for {subject_id}")

                attestation = Attestation(
                    subject_id=subject_id,
                    attester_id=attester_id,
                    type=type,
                    value=value,
                    description=description or "",
                    verified=attester.is_admin or attester.pfi >= self.settings.AUTO_VERIFY_PFI,
                )
                s.add(attestation)
                s.flush()
        except IntegrityError:
            raise DuplicateAttestation(f"{attester_id} already attested {type} for {subject_id}")
        except SQLAlchemyError as e:
            logger.error(f"Database error storing attestation for {subject_id}: {e}")
            raise

        logger.info(f"Stored {type} attestation for {subject_id} (verified={attestation.verified})")
        if attestation.verified:
            self._refresh_pfi(subject_id)
        return attestation

    def verify_attestation(self, attestation_id: str, verifier_id: str) -> Attestation:
        """Mark an attestation verified. Only admins may verify."""
        with self.database.session() as s:
            verifier = self._get_account(s, verifier_id)
            if not verifier.is_admin:
                raise InsufficientReputation("Only admins can verify attestations")
            attestation = s.get(Attestation, attestation_id)
            if attestation is None:
                raise InvalidValue(f"Unknown attestation: {attestation_id}")
            attestation.verified = True

        self._refresh_pfi(attestation.subject_id)
        return attestation

    def create_rating(self, customer_id: str, merchant_id: str, delivery: int, quality: int,
                      transparency: int, environmental: int, transaction_id: Optional[str] = None,
                      comments: str = "") -> Rating:
        """
        Record a customer rating and refresh the merchant's TFI.

        Raises:
            InvalidValue: If a dimension is outside 1-10, the target is not a
                merchant or the linked transaction does not exist
            SelfReference: If customer and merchant are the same account
            UnknownAccount: If either account does not exist
            DuplicateRating: If the customer rated the merchant recently
        """
        for name, dimension in (("delivery", delivery), ("quality", quality),
                                ("transparency", transparency), ("environmental", environmental)):
            _check_score_value(f"{name.capitalize()} rating", dimension)
        if customer_id == merchant_id:
            raise SelfReference("Merchants cannot rate themselves")

        now = self.clock()
        with self.rating_locks.hold(f"{customer_id}:{merchant_id}"):
            try:
                with self.database.session() as s:
                    self._get_account(s, customer_id)
                    merchant = self._get_account(s, merchant_id)
                    if not merchant.is_merchant:
                        raise InvalidValue(f"Account {merchant_id} is not a merchant")
                    if transaction_id and s.get(Transaction, transaction_id) is None:
                        raise InvalidValue(f"Unknown transaction: {transaction_id}")

                    cutoff = now - timedelta(days=self.settings.RATING_COOLDOWN_DAYS)
                    recent = (
                        s.query(Rating.id)
                        .filter(Rating.customer_id == customer_id,
                                Rating.merchant_id == merchant_id,
                                Rating.created_at > cutoff)
                        .first()
                    )
                    if recent:
                        raise DuplicateRating(f"{customer_id} already rated {merchant_id} recently")

                    rating = Rating(
                        customer_id=customer_id,
                        merchant_id=merchant_id,
                        transaction_id=transaction_id,
                        delivery=delivery,
                        quality=quality,
                        transparency=transparency,
                        environmental=environmental,
                        comments=comments or "",
                        created_at=now,
                    )
                    s.add(rating)
            except SQLAlchemyError as e:
                logger.error(f"Database error storing rating for {merchant_id}: {e}")
                raise

        logger.info(f"Stored rating for merchant {merchant_id}")
        self._refresh_tfi(merchant_id)
        return rating

    def _refresh_pfi(self, account_id: str) -> None:
        try:
            self.compute_pfi(account_id)
        except (FairCoinError, SQLAlchemyError) as e:
            logger.warning(f"Failed to update PFI for {account_id}: {e}")

    def _refresh_tfi(self, merchant_id: str) -> None:
        try:
            self.compute_tfi(merchant_id)
        except (FairCoinError, SQLAlchemyError) as e:
            logger.warning(f"Failed to update TFI for {merchant_id}: {e}")

    def compute_pfi(self, account_id: str) -> int:
        """
        Recompute and store an account's PFI.

        Admin accounts are not scored; their stored value is returned as is.

        Raises:
            UnknownAccount: If the account does not exist
        """
        with self.score_locks.hold(account_id):
            with self.database.session() as s:
                account = self._get_account(s, account_id)
                if account.is_admin:
                    return account.pfi

                breakdown = self.scorer.calculate_pfi(
                    account.community_service_hours,
                    self._attestation_signals(s, account_id),
                )
                account.pfi = breakdown.pfi
                account.scores_version = self._inputs_version(s, account_id)
                account.scores_updated_at = self.clock()
                return breakdown.pfi

    def compute_tfi(self, merchant_id: str) -> int:
        """
        Recompute and store a merchant's TFI.

        Non-merchants hold 0. Admin accounts are not scored.

        Raises:
            UnknownAccount: If the account does not exist
        """
        with self.score_locks.hold(merchant_id):
            with self.database.session() as s:
                account = self._get_account(s, merchant_id)
                if account.is_admin:
                    return account.tfi
                if not account.is_merchant:
                    account.tfi = 0
                    return 0

                breakdown = self.scorer.calculate_tfi(self._rating_signals(s, merchant_id))
                account.tfi = breakdown.tfi
                account.scores_version = self._inputs_version(s, merchant_id)
                account.scores_updated_at = self.clock()
                return breakdown.tfi

    def update_all_scores(self) -> ScoreUpdateSummary:
        """Recompute PFI for every non-admin account and TFI for every merchant"""
        summary = ScoreUpdateSummary()
        with self.database.session() as s:
            accounts = s.query(Account.id, Account.is_admin, Account.is_merchant).all()

        for account_id, is_admin, is_merchant in accounts:
            if is_admin:
                summary.skipped_admins += 1
                continue
            try:
                self.compute_pfi(account_id)
                summary.pfi_updated += 1
                if is_merchant:
                    self.compute_tfi(account_id)
                    summary.tfi_updated += 1
            except Exception as e:
                # One account must not block the rest of the sweep
                logger.error(f"Error updating scores for {account_id}: {e}")
                summary.failures[account_id] = str(e)

        logger.info(
            f"Score sweep complete: {summary.pfi_updated} PFI, {summary.tfi_updated} TFI, "
            f"{len(summary.failures)} failures"
        )
        return summary

    def average_pfi(self, session: Optional[Session] = None) -> float:
        """Mean PFI over non-admin accounts"""
        if session is None:
            with self.database.session() as s:
                return self.average_pfi(s)
        average = session.query(func.avg(Account.pfi)).filter(Account.is_admin.is_(False)).scalar()
        return float(average or 0.0)

    def pfi_breakdown(self, account_id: str) -> PFIBreakdown:
        """Component contributions behind the account's PFI"""
        with self.database.session() as s:
            account = self._get_account(s, account_id)
            breakdown = self.scorer.calculate_pfi(
                account.community_service_hours,
                self._attestation_signals(s, account_id),
            )
            if account.is_admin:
                breakdown.pfi = account.pfi
            return breakdown

    def tfi_breakdown(self, merchant_id: str) -> TFIBreakdown:
        """Dimension averages behind the merchant's TFI"""
        with self.database.session() as s:
            account = self._get_account(s, merchant_id)
            if not account.is_merchant:
                raise InvalidValue(f"Account {merchant_id} is not a merchant")
            return self.scorer.calculate_tfi(self._rating_signals(s, merchant_id))
