"""Account registration and profile management"""
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from faircoin_ledger.config import Settings
from faircoin_ledger.db import Database
from faircoin_ledger.errors import InvalidValue, UnknownAccount
from faircoin_ledger.models.db import Account, TransactionType, Wallet, new_id
from faircoin_ledger.scoring import BASELINE_SCORE
from faircoin_ledger.services.ledger import Ledger

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ('email', 'community_service_hours')

class AccountService:
    """Creates accounts with their wallets and maintains identity fields"""

    def __init__(self, database: Database, settings: Settings, ledger: Ledger):
        self.database = database
        self.settings = settings
        self.ledger = ledger

    def _initial_pfi(self, is_admin: bool) -> int:
        if is_admin:
            return 0
        return int(self.settings.PFI_WEIGHTS.baseline * BASELINE_SCORE)

    def create_account(self, username: str, email: Optional[str] = None, is_merchant: bool = False,
                       is_admin: bool = False, community_service_hours: int = 0) -> Account:
        """
        Create an account and its wallet in one transaction, funded with
        STARTING_BALANCE when that is configured.

        Raises:
            InvalidValue: If the username is empty or taken, the email is
                taken, or the service hours are negative
        """
        if not username:
            raise InvalidValue("Username is required")
        if community_service_hours < 0:
            raise InvalidValue("Community service hours cannot be negative")

        account = Account(
            id=new_id(),
            username=username,
            email=email,
            is_merchant=is_merchant,
            is_admin=is_admin,
            community_service_hours=community_service_hours,
            pfi=self._initial_pfi(is_admin),
            tfi=self.settings.MERCHANT_BASE_TFI if is_merchant else 0,
        )
        try:
            with self.ledger.atomic(account.id) as s:
                s.add(account)
                s.flush()
                s.add(Wallet(account_id=account.id))
                s.flush()
                if self.settings.STARTING_BALANCE > 0:
                    self.ledger.credit(
                        account.id,
                        self.settings.STARTING_BALANCE,
                        TransactionType.FAIRNESS_REWARD.value,
                        "Starting balance",
                        session=s,
                    )
        except IntegrityError as e:
            logger.warning(f"Rejected duplicate account {username}: {e.orig}")
            raise InvalidValue(f"Username or email already registered: {username}")
        except SQLAlchemyError as e:
            logger.error(f"Database error creating account {username}: {e}")
            raise

        logger.info(f"Created account {username} ({account.id})")
        return account

    def get_account(self, account_id: str) -> Account:
        with self.database.session() as s:
            account = s.get(Account, account_id)
            if account is None:
                raise UnknownAccount(account_id)
            return account

    def get_by_username(self, username: str) -> Account:
        with self.database.session() as s:
            account = s.query(Account).filter_by(username=username).one_or_none()
            if account is None:
                raise UnknownAccount(username)
            return account

    def update_profile(self, account_id: str, **updates) -> Account:
        """
        Update identity fields. Scores are not editable here.

        Raises:
            InvalidValue: For unknown fields or negative service hours
            UnknownAccount: If the account does not exist
        """
        unknown = set(updates) - set(PROFILE_FIELDS)
        if unknown:
            raise InvalidValue(f"Fields not editable: {', '.join(sorted(unknown))}")
        hours = updates.get('community_service_hours')
        if hours is not None and hours < 0:
            raise InvalidValue("Community service hours cannot be negative")

        try:
            with self.database.session() as s:
                account = s.get(Account, account_id)
                if account is None:
                    raise UnknownAccount(account_id)
                for field, value in updates.items():
                    setattr(account, field, value)
                s.flush()
        except IntegrityError as e:
            logger.warning(f"Rejected profile update for {account_id}: {e.orig}")
            raise InvalidValue("Email already registered")
        return account

    def register_merchant(self, account_id: str) -> Account:
        """Flag an account as merchant with the base TFI"""
        with self.database.session() as s:
            account = s.get(Account, account_id)
            if account is None:
                raise UnknownAccount(account_id)
            if not account.is_merchant:
                account.is_merchant = True
                account.tfi = self.settings.MERCHANT_BASE_TFI
                logger.info(f"Registered {account.username} as merchant")
        return account

    def top_by_pfi(self, limit: int = 10) -> List[Account]:
        with self.database.session() as s:
            return (
                s.query(Account)
                .filter(Account.is_admin.is_(False))
                .order_by(Account.pfi.desc(), Account.username)
                .limit(limit)
                .all()
            )
