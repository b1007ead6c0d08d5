"""Domain models for wallet queries"""
from dataclasses import dataclass
from decimal import Decimal

@dataclass(frozen=True)
class WalletBalance:
    """Balance snapshot of a single wallet"""
    account_id: str
    balance: Decimal
    locked: Decimal

    @property
    def spendable(self) -> Decimal:
        return self.balance - self.locked
