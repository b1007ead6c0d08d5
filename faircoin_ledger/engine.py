"""Wiring of the ledger, scoring, monetary, governance and metrics services"""
from typing import Callable, Optional

from faircoin_ledger.config import Settings, settings as default_settings
from faircoin_ledger.db import Database, db as default_db
from faircoin_ledger.models.db import utcnow
from faircoin_ledger.scheduler import Scheduler
from faircoin_ledger.services.accounts import AccountService
from faircoin_ledger.services.fairness import FairnessService
from faircoin_ledger.services.governance import GovernanceService
from faircoin_ledger.services.ledger import Ledger
from faircoin_ledger.services.metrics import MetricsService
from faircoin_ledger.services.monetary import MonetaryService
from faircoin_ledger.services.stats import StatsService

class FairCoinEngine:
    """Single entry point the request layer and the scheduler share"""

    def __init__(self, database: Optional[Database] = None, settings: Optional[Settings] = None,
                 clock: Callable = utcnow):
        self.settings = settings or default_settings
        self.database = database or default_db
        self.ledger = Ledger(self.database, self.settings, clock=clock)
        self.accounts = AccountService(self.database, self.settings, self.ledger)
        self.fairness = FairnessService(self.database, self.settings, clock=clock)
        self.monetary = MonetaryService(self.database, self.settings, self.ledger, self.fairness, clock=clock)
        self.governance = GovernanceService(self.database, self.settings, self.ledger, clock=clock)
        self.stats = StatsService(self.database, self.ledger, clock=clock)
        self.metrics = MetricsService(self.database, self.settings, clock=clock)
        self.scheduler = Scheduler(
            self.fairness,
            self.monetary,
            self.governance,
            self.metrics,
            interval_seconds=self.settings.SCHEDULER_INTERVAL_SECONDS,
            clock=clock,
        )

    # Inbound operations of the request layer

    def create_account(self, username: str, **kwargs):
        return self.accounts.create_account(username, **kwargs)

    def transfer(self, from_id: str, to_id: str, amount, description: str = ""):
        return self.ledger.transfer(from_id, to_id, amount, description)

    def create_attestation(self, subject_id: str, attester_id: str, type: str, value: int,
                           description: str = ""):
        return self.fairness.create_attestation(subject_id, attester_id, type, value, description)

    def create_rating(self, customer_id: str, merchant_id: str, delivery: int, quality: int,
                      transparency: int, environmental: int, transaction_id: Optional[str] = None,
                      comments: str = ""):
        return self.fairness.create_rating(
            customer_id, merchant_id, delivery, quality, transparency, environmental,
            transaction_id=transaction_id, comments=comments,
        )

    def create_proposal(self, proposer_id: str, title: str, description: str, type: str):
        return self.governance.create_proposal(proposer_id, title, description, type)

    def vote(self, voter_id: str, proposal_id: str, in_favor: bool):
        return self.governance.vote(voter_id, proposal_id, in_favor)
