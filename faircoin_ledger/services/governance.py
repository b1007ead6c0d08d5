"""Governance: proposal lifecycle and stake/reputation weighted voting"""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Callable, List

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from faircoin_ledger.config import Settings
from faircoin_ledger.db import Database
from faircoin_ledger.errors import (
    AlreadyVoted,
    InsufficientReputation,
    InvalidValue,
    ProposalNotActive,
    UnknownAccount,
    UnknownProposal,
)
from faircoin_ledger.locks import KeyedLocks
from faircoin_ledger.models.db import (
    Account,
    Proposal,
    ProposalStatus,
    ProposalType,
    Vote,
    Wallet,
    utcnow,
)
from faircoin_ledger.services.ledger import Ledger

logger = logging.getLogger(__name__)

PROPOSAL_TYPES = {t.value for t in ProposalType}
STAKE_WEIGHT = Decimal('0.6')
REPUTATION_WEIGHT = Decimal('0.4')
POWER_QUANTUM = Decimal('0.0000000001')

def calculate_voting_power(balance: Decimal, circulating_supply: Decimal, pfi: int) -> Decimal:
    """Voting power = 60% stake fraction + 40% PFI fraction"""
    stake = balance / circulating_supply if circulating_supply > 0 else Decimal(0)
    power = STAKE_WEIGHT * stake + REPUTATION_WEIGHT * Decimal(pfi) / 100
    return power.quantize(POWER_QUANTUM)

class GovernanceService:
    """Creates proposals, records votes and resolves finished proposals"""

    def __init__(self, database: Database, settings: Settings, ledger: Ledger,
                 clock: Callable = utcnow):
        self.database = database
        self.settings = settings
        self.ledger = ledger
        self.clock = clock
        self.proposal_locks = KeyedLocks()

    def create_proposal(self, proposer_id: str, title: str, description: str, type: str) -> Proposal:
        """
        Open a proposal for the configured voting period.

        Raises:
            InvalidValue: If the title is empty or the type unknown
            UnknownAccount: If the proposer does not exist
            InsufficientReputation: If the proposer's PFI is below the minimum
        """
        if not title:
            raise InvalidValue("Proposal title is required")
        if type not in PROPOSAL_TYPES:
            raise InvalidValue(f"Unknown proposal type: {type}")

        now = self.clock()
        with self.database.session() as s:
            proposer = s.get(Account, proposer_id)
            if proposer is None:
                raise UnknownAccount(proposer_id)
            if not proposer.is_admin and proposer.pfi < self.settings.MIN_PFI_FOR_PROPOSALS:
                raise InsufficientReputation(
                    f"Insufficient PFI to create proposals "
                    f"(minimum: {self.settings.MIN_PFI_FOR_PROPOSALS}, current: {proposer.pfi})"
                )
            proposal = Proposal(
                proposer_id=proposer_id,
                title=title,
                description=description or "",
                type=type,
                status=ProposalStatus.ACTIVE.value,
                start_time=now,
                end_time=now + timedelta(days=self.settings.VOTING_PERIOD_DAYS),
                created_at=now,
            )
            s.add(proposal)

        logger.info(f"Proposal {proposal.id} opened by {proposer_id}: {title}")
        return proposal

    def vote(self, voter_id: str, proposal_id: str, in_favor: bool) -> Vote:
        """
        Cast a vote with power frozen at this moment.

        The duplicate check, vote insert and tally update run as one
        transaction under the proposal's lock.

        Raises:
            UnknownProposal: If the proposal does not exist
            ProposalNotActive: If the proposal is closed or outside its window
            UnknownAccount: If the voter does not exist
            AlreadyVoted: If the voter already voted on this proposal
        """
        now = self.clock()
        with self.proposal_locks.hold(proposal_id):
            try:
                with self.database.session() as s:
                    proposal = s.query(Proposal).filter_by(id=proposal_id).with_for_update().one_or_none()
                    if proposal is None:
                        raise UnknownProposal(proposal_id)
                    if proposal.status != ProposalStatus.ACTIVE.value:
                        raise ProposalNotActive(f"Proposal {proposal_id} is {proposal.status}")
                    if not proposal.start_time <= now <= proposal.end_time:
                        raise ProposalNotActive(f"Voting window for proposal {proposal_id} is closed")

                    voter = s.get(Account, voter_id)
                    if voter is None:
                        raise UnknownAccount(voter_id)
                    if s.query(Vote.id).filter_by(voter_id=voter_id, proposal_id=proposal_id).first():
                        raise AlreadyVoted(voter_id, proposal_id)

                    wallet = s.query(Wallet).filter_by(account_id=voter_id).one()
                    power = calculate_voting_power(
                        wallet.balance, self.ledger.circulating_supply(s), voter.pfi
                    )

                    vote = Vote(
                        voter_id=voter_id,
                        proposal_id=proposal_id,
                        in_favor=bool(in_favor),
                        voting_power=power,
                        created_at=now,
                    )
                    s.add(vote)
                    if vote.in_favor:
                        proposal.votes_for += 1
                    else:
                        proposal.votes_against += 1
                    proposal.total_voting_power = proposal.total_voting_power + power
                    s.flush()
            except IntegrityError:
                raise AlreadyVoted(voter_id, proposal_id)
            except SQLAlchemyError as e:
                logger.error(f"Database error recording vote on {proposal_id}: {e}")
                raise

        logger.info(f"Recorded vote by {voter_id} on {proposal_id} (power {power})")
        return vote

    def resolve(self, proposal_id: str) -> Proposal:
        """
        Close a proposal whose voting window has ended.

        Raises:
            UnknownProposal: If the proposal does not exist
            ProposalNotActive: If it is already closed or still open for votes
        """
        now = self.clock()
        with self.proposal_locks.hold(proposal_id):
            with self.database.session() as s:
                proposal = s.query(Proposal).filter_by(id=proposal_id).with_for_update().one_or_none()
                if proposal is None:
                    raise UnknownProposal(proposal_id)
                if proposal.status != ProposalStatus.ACTIVE.value:
                    raise ProposalNotActive(f"Proposal {proposal_id} is already {proposal.status}")
                if now <= proposal.end_time:
                    raise ProposalNotActive(f"Proposal {proposal_id} is still open for voting")

                if proposal.votes_for + proposal.votes_against == 0:
                    proposal.status = ProposalStatus.EXPIRED.value
                elif proposal.total_voting_power < Decimal(str(self.settings.MIN_PARTICIPATION)):
                    proposal.status = ProposalStatus.REJECTED.value
                elif proposal.votes_for > proposal.votes_against:
                    proposal.status = ProposalStatus.PASSED.value
                else:
                    proposal.status = ProposalStatus.REJECTED.value
                proposal.resolved_at = now

        logger.info(f"Proposal {proposal_id} resolved as {proposal.status}")
        return proposal

    def resolve_expired(self) -> int:
        """Resolve every active proposal whose window has ended"""
        now = self.clock()
        with self.database.session() as s:
            due = [
                proposal_id for (proposal_id,) in
                s.query(Proposal.id)
                .filter(Proposal.status == ProposalStatus.ACTIVE.value, Proposal.end_time < now)
                .all()
            ]

        resolved = 0
        for proposal_id in due:
            try:
                self.resolve(proposal_id)
                resolved += 1
            except ProposalNotActive as e:
                # Resolved concurrently
                logger.info(f"Skipping proposal {proposal_id}: {e}")
        return resolved

    def get_proposal(self, proposal_id: str) -> Proposal:
        with self.database.session() as s:
            proposal = s.get(Proposal, proposal_id)
            if proposal is None:
                raise UnknownProposal(proposal_id)
            return proposal

    def get_votes(self, proposal_id: str) -> List[Vote]:
        with self.database.session() as s:
            return s.query(Vote).filter_by(proposal_id=proposal_id).order_by(Vote.created_at).all()

    def active_proposals(self) -> List[Proposal]:
        with self.database.session() as s:
            return (
                s.query(Proposal)
                .filter_by(status=ProposalStatus.ACTIVE.value)
                .order_by(Proposal.created_at.desc())
                .all()
            )

    def council_members(self, limit: int = None) -> List[Account]:
        """Highest PFI non-admin accounts above the council threshold"""
        limit = limit or self.settings.COUNCIL_SIZE
        with self.database.session() as s:
            return (
                s.query(Account)
                .filter(Account.is_admin.is_(False), Account.pfi >= self.settings.COUNCIL_MIN_PFI)
                .order_by(Account.pfi.desc(), Account.username)
                .limit(limit)
                .all()
            )
