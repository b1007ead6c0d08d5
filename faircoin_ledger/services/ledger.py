"""Ledger service: wallets and the append-only transaction log"""
import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Callable, Generator, List, Optional

from sqlalchemy import func, or_, type_coerce
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from faircoin_ledger.config import Settings
from faircoin_ledger.db import Database
from faircoin_ledger.errors import InsufficientFunds, InvalidValue, SelfReference, UnknownAccount
from faircoin_ledger.locks import KeyedLocks
from faircoin_ledger.models.db import Money, Transaction, TransactionStatus, TransactionType, Wallet, utcnow
from faircoin_ledger.models.ledger import WalletBalance

logger = logging.getLogger(__name__)

QUANTUM = Decimal('0.00000001')
CREDIT_TYPES = {
    TransactionType.FAIRNESS_REWARD.value,
    TransactionType.MERCHANT_INCENTIVE.value,
    TransactionType.MONTHLY_ISSUANCE.value,
}
DEBIT_TYPES = {TransactionType.FEE.value, TransactionType.BURN.value}
MAX_AMOUNT = Money.max_value

def to_amount(value) -> Decimal:
    """
    Convert a user supplied amount to a positive Decimal with 8 places.

    Raises:
        InvalidValue: If the value is not a number, not positive, above
            MAX_AMOUNT or carries more than 8 decimal places
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidValue(f"Amount is not a number: {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidValue(f"Amount must be positive: {value!r}")
    if amount > MAX_AMOUNT:
        raise InvalidValue(f"Amount exceeds the maximum of {MAX_AMOUNT}: {value!r}")
    quantized = amount.quantize(QUANTUM, rounding=ROUND_DOWN)
    if quantized != amount:
        raise InvalidValue(f"Amount has more than 8 decimal places: {value!r}")
    return quantized

class Ledger:
    """The only component that mutates balances or appends transactions"""

    def __init__(self, database: Database, settings: Settings, locks: Optional[KeyedLocks] = None,
                 clock: Callable = utcnow):
        self.database = database
        self.settings = settings
        self.locks = locks or KeyedLocks()
        self.clock = clock

    @contextmanager
    def _unit(self, session: Optional[Session]) -> Generator[Session, None, None]:
        """Use the caller's session, or open a transactional one"""
        if session is not None:
            yield session
        else:
            with self.database.session() as own_session:
                yield own_session

    @contextmanager
    def atomic(self, *account_ids: str) -> Generator[Session, None, None]:
        """
        Hold the account locks and one transactional session until commit.

        Callers that pass their own session to credit/debit/transfer must
        open it here so no other mutation of those accounts interleaves
        before the commit.
        """
        with self.locks.hold(*account_ids):
            with self.database.session() as s:
                yield s

    def _wallet_for_update(self, session: Session, account_id: str) -> Wallet:
        wallet = (
            session.query(Wallet)
            .filter_by(account_id=account_id)
            .with_for_update()
            .one_or_none()
        )
        if wallet is None:
            raise UnknownAccount(account_id)
        return wallet

    def calculate_fee(self, amount: Decimal) -> Decimal:
        return (amount * Decimal(self.settings.FEE_RATE)).quantize(QUANTUM, rounding=ROUND_DOWN)

    def transfer(self, from_id: str, to_id: str, amount, description: str = "",
                 session: Optional[Session] = None) -> Transaction:
        """
        Move funds between two accounts, burning the transfer fee.

        The sender is debited the full amount, the recipient receives the
        amount minus the fee. Balances and the log entry commit together.

        Raises:
            InvalidValue: If amount is not positive
            SelfReference: If sender and recipient are the same account
            UnknownAccount: If either account does not exist
            InsufficientFunds: If the sender's spendable balance is too low
        """
        amount = to_amount(amount)
        if from_id == to_id:
            raise SelfReference("Cannot transfer to the same account")
        fee = self.calculate_fee(amount)

        with self.locks.hold(from_id, to_id):
            try:
                with self._unit(session) as s:
                    from_wallet = self._wallet_for_update(s, from_id)
                    to_wallet = self._wallet_for_update(s, to_id)

                    if from_wallet.spendable < amount:
                        raise InsufficientFunds(from_id, amount, from_wallet.spendable)

                    from_wallet.balance = from_wallet.balance - amount
                    to_wallet.balance = to_wallet.balance + (amount - fee)

                    transaction = Transaction(
                        type=TransactionType.TRANSFER.value,
                        amount=amount,
                        fee=fee,
                        from_account_id=from_id,
                        to_account_id=to_id,
                        status=TransactionStatus.COMPLETED.value,
                        description=description or "",
                        created_at=self.clock(),
                    )
                    s.add(transaction)
                    s.flush()
            except SQLAlchemyError as e:
                logger.error(f"Database error during transfer {from_id} -> {to_id}: {e}")
                raise

        logger.info(f"Transferred {amount} from {from_id} to {to_id} (fee {fee})")
        return transaction

    def credit(self, account_id: str, amount, type: str, description: str = "",
               session: Optional[Session] = None) -> Transaction:
        """
        Increase a balance for rewards and issuance.

        Raises:
            InvalidValue: If amount is not positive or type is not a credit type
            UnknownAccount: If the account does not exist
        """
        amount = to_amount(amount)
        if type not in CREDIT_TYPES:
            raise InvalidValue(f"Not a credit transaction type: {type}")

        with self.locks.hold(account_id):
            try:
                with self._unit(session) as s:
                    wallet = self._wallet_for_update(s, account_id)
                    wallet.balance = wallet.balance + amount
                    transaction = Transaction(
                        type=type,
                        amount=amount,
                        from_account_id=account_id,
                        status=TransactionStatus.COMPLETED.value,
                        description=description or "",
                        created_at=self.clock(),
                    )
                    s.add(transaction)
                    s.flush()
            except SQLAlchemyError as e:
                logger.error(f"Database error crediting {account_id}: {e}")
                raise

        logger.info(f"Credited {amount} to {account_id} ({type})")
        return transaction

    def debit(self, account_id: str, amount, type: str, description: str = "",
              session: Optional[Session] = None) -> Transaction:
        """
        Decrease a balance for fees and burns.

        Raises:
            InvalidValue: If amount is not positive or type is not a debit type
            UnknownAccount: If the account does not exist
            InsufficientFunds: If the spendable balance is too low
        """
        amount = to_amount(amount)
        if type not in DEBIT_TYPES:
            raise InvalidValue(f"Not a debit transaction type: {type}")

        with self.locks.hold(account_id):
            try:
                with self._unit(session) as s:
                    wallet = self._wallet_for_update(s, account_id)
                    if wallet.spendable < amount:
                        raise InsufficientFunds(account_id, amount, wallet.spendable)
                    wallet.balance = wallet.balance - amount
                    transaction = Transaction(
                        type=type,
                        amount=amount,
                        from_account_id=account_id,
                        status=TransactionStatus.COMPLETED.value,
                        description=description or "",
                        created_at=self.clock(),
                    )
                    s.add(transaction)
                    s.flush()
            except SQLAlchemyError as e:
                logger.error(f"Database error debiting {account_id}: {e}")
                raise

        logger.info(f"Debited {amount} from {account_id} ({type})")
        return transaction

    def lock_funds(self, account_id: str, amount) -> WalletBalance:
        """Reserve part of the spendable balance"""
        amount = to_amount(amount)
        with self.locks.hold(account_id):
            with self.database.session() as s:
                wallet = self._wallet_for_update(s, account_id)
                if wallet.spendable < amount:
                    raise InsufficientFunds(account_id, amount, wallet.spendable)
                wallet.locked = wallet.locked + amount
                s.flush()
                return WalletBalance(account_id, wallet.balance, wallet.locked)

    def release_funds(self, account_id: str, amount) -> WalletBalance:
        """Return previously locked funds to the spendable balance"""
        amount = to_amount(amount)
        with self.locks.hold(account_id):
            with self.database.session() as s:
                wallet = self._wallet_for_update(s, account_id)
                if wallet.locked < amount:
                    raise InvalidValue(f"Cannot release {amount}, only {wallet.locked} locked")
                wallet.locked = wallet.locked - amount
                s.flush()
                return WalletBalance(account_id, wallet.balance, wallet.locked)

    def _sum(self, session: Session, column, *criteria) -> Decimal:
        """SUM of a Money column, computed over the stored integer units"""
        total = session.query(type_coerce(func.sum(column), Money)).filter(*criteria).scalar()
        return total.quantize(QUANTUM) if total is not None else Decimal(0).quantize(QUANTUM)

    def circulating_supply(self, session: Optional[Session] = None) -> Decimal:
        """Sum of all wallet balances, read in a single statement"""
        with self._unit(session) as s:
            return self._sum(s, Wallet.balance)

    def total_burned(self) -> Decimal:
        """Transfer fees plus explicit fee and burn debits"""
        with self.database.session() as s:
            fees = self._sum(s, Transaction.fee)
            burns = self._sum(s, Transaction.amount, Transaction.type.in_(DEBIT_TYPES))
        return fees + burns

    def get_balance(self, account_id: str) -> WalletBalance:
        with self.database.session() as s:
            wallet = s.query(Wallet).filter_by(account_id=account_id).one_or_none()
            if wallet is None:
                raise UnknownAccount(account_id)
            return WalletBalance(account_id, wallet.balance, wallet.locked)

    def get_transactions(self, account_id: str, limit: int = 20, offset: int = 0) -> List[Transaction]:
        """Transactions sent or received by the account, newest first"""
        limit = max(1, min(limit, self.settings.MAX_PAGE_SIZE))
        offset = max(0, offset)
        with self.database.session() as s:
            if s.query(Wallet.id).filter_by(account_id=account_id).first() is None:
                raise UnknownAccount(account_id)
            return (
                s.query(Transaction)
                .filter(or_(Transaction.from_account_id == account_id,
                            Transaction.to_account_id == account_id))
                .order_by(Transaction.created_at.desc(), Transaction.id)
                .limit(limit)
                .offset(offset)
                .all()
            )

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self.database.session() as s:
            return s.get(Transaction, transaction_id)

    def count_transactions(self, type: Optional[str] = None, since: Optional[datetime] = None,
                           until: Optional[datetime] = None, session: Optional[Session] = None) -> int:
        with self._unit(session) as s:
            query = s.query(func.count(Transaction.id))
            if type:
                query = query.filter(Transaction.type == type)
            if since:
                query = query.filter(Transaction.created_at >= since)
            if until:
                query = query.filter(Transaction.created_at < until)
            return query.scalar() or 0

    def transfer_volume(self, since: datetime) -> Decimal:
        with self.database.session() as s:
            return self._sum(
                s,
                Transaction.amount,
                Transaction.type == TransactionType.TRANSFER.value,
                Transaction.created_at >= since,
            )
