"""Error types reported by the ledger, fairness, monetary and governance services"""


class FairCoinError(Exception):
    """Base exception for all FairCoin core errors"""
    pass


class InsufficientFunds(FairCoinError):
    """Spendable balance does not cover the requested amount"""

    def __init__(self, account_id: str, requested, spendable):
        self.account_id = account_id
        self.requested = requested
        self.spendable = spendable
        super().__init__(
            f"Insufficient funds in account {account_id}: requested {requested}, spendable {spendable}"
        )


class UnknownAccount(FairCoinError):
    """Referenced account does not exist"""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Unknown account: {account_id}")


class UnknownProposal(FairCoinError):
    """Referenced proposal does not exist"""

    def __init__(self, proposal_id: str):
        self.proposal_id = proposal_id
        super().__init__(f"Unknown proposal: {proposal_id}")


class UnknownAlert(FairCoinError):
    """Referenced fairness alert does not exist"""

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Unknown alert: {alert_id}")


class InvalidValue(FairCoinError):
    """Amount, score or type outside its allowed range"""
    pass


class SelfReference(InvalidValue):
    """An account tried to act on itself (attest, rate, transfer)"""
    pass


class DuplicateAttestation(FairCoinError):
    """The attester already submitted this attestation type for the subject"""
    pass


class DuplicateRating(FairCoinError):
    """The customer rated this merchant within the cooldown window"""
    pass


class InsufficientReputation(FairCoinError):
    """Account PFI is below the threshold required for the operation"""
    pass


class AlreadyVoted(FairCoinError):
    """The voter already cast a vote on this proposal"""

    def __init__(self, voter_id: str, proposal_id: str):
        self.voter_id = voter_id
        self.proposal_id = proposal_id
        super().__init__(f"Account {voter_id} already voted on proposal {proposal_id}")


class ProposalNotActive(FairCoinError):
    """Proposal does not accept votes or cannot be resolved yet"""
    pass


class DuplicateIssuanceForMonth(FairCoinError):
    """Issuance for the month was already completed"""

    def __init__(self, month: str):
        self.month = month
        super().__init__(f"Monthly issuance already completed for {month}")


class IssuanceIncomplete(FairCoinError):
    """A payout failed; the month stays open and will be resumed"""

    def __init__(self, month: str, paid: int, remaining: int):
        self.month = month
        self.paid = paid
        self.remaining = remaining
        super().__init__(
            f"Issuance for {month} incomplete: {paid} payouts made, {remaining} remaining"
        )
