"""
Fairness Engine Tests
=====================

Attestations, ratings and stored PFI/TFI recomputation.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from faircoin_ledger.errors import (
    DuplicateAttestation,
    DuplicateRating,
    InsufficientReputation,
    InvalidValue,
    SelfReference,
    UnknownAccount,
)
from faircoin_ledger.models.db import AttestationType


# ============================================================================
# Attestations
# ============================================================================

class TestCreateAttestation:
    """Test peer attestations and their effect on PFI."""

    def test_admin_attestation_is_verified_and_scored(self, engine, make_account, attest):
        subject = make_account()

        attestation = attest(subject.id, 8)

        assert attestation.verified is True
        # 0.5 * 80 + 0.2 * 100
        assert engine.accounts.get_account(subject.id).pfi == 60

    def test_low_pfi_attester_rejected(self, engine, make_account):
        subject = make_account()
        attester = make_account()

        with pytest.raises(InsufficientReputation):
            engine.create_attestation(subject.id, attester.id, AttestationType.PEER_RATING.value, 7)

    def test_unverified_attestation_does_not_count_until_verified(self, engine, make_account, admin):
        subject = make_account()
        attester = make_account(community_service_hours=50)
        assert engine.fairness.compute_pfi(attester.id) == 35

        attestation = engine.create_attestation(subject.id, attester.id, AttestationType.PEER_RATING.value, 10)

        assert attestation.verified is False
        assert engine.fairness.compute_pfi(subject.id) == 20

        engine.fairness.verify_attestation(attestation.id, admin.id)

        assert engine.accounts.get_account(subject.id).pfi == 70

    def test_only_admins_verify(self, engine, make_account):
        subject = make_account()
        attester = make_account(community_service_hours=50)
        engine.fairness.compute_pfi(attester.id)
        attestation = engine.create_attestation(subject.id, attester.id, AttestationType.PEER_RATING.value, 6)

        with pytest.raises(InsufficientReputation):
            engine.fairness.verify_attestation(attestation.id, subject.id)

    def test_high_pfi_attester_is_auto_verified(self, engine, make_account, attest):
        subject = make_account()
        attester = make_account(community_service_hours=100)
        attest(attester.id, 10)
        assert engine.accounts.get_account(attester.id).pfi == 100

        attestation = engine.create_attestation(subject.id, attester.id, AttestationType.DISPUTE_RESOLUTION.value, 4)

        assert attestation.verified is True
        assert engine.accounts.get_account(subject.id).pfi == 40

    def test_self_attestation_rejected(self, engine, admin):
        with pytest.raises(SelfReference):
            engine.create_attestation(admin.id, admin.id, AttestationType.PEER_RATING.value, 5)

    @pytest.mark.parametrize("value", [0, 11, 5.5, True])
    def test_value_out_of_range(self, engine, make_account, admin, value):
        subject = make_account()

        with pytest.raises(InvalidValue):
            engine.create_attestation(subject.id, admin.id, AttestationType.PEER_RATING.value, value)

    def test_unknown_type(self, engine, make_account, admin):
        subject = make_account()

        with pytest.raises(InvalidValue):
            engine.create_attestation(subject.id, admin.id, "bribery", 5)

    def test_unknown_subject(self, engine, admin):
        with pytest.raises(UnknownAccount):
            engine.create_attestation("missing", admin.id, AttestationType.PEER_RATING.value, 5)

    def test_duplicate_attestation(self, engine, make_account, attest):
        subject = make_account()
        attest(subject.id, 8)

        with pytest.raises(DuplicateAttestation):
            attest(subject.id, 3)

        assert engine.accounts.get_account(subject.id).pfi == 60

    def test_same_attester_different_type_allowed(self, engine, make_account, attest):
        subject = make_account()
        attest(subject.id, 8)
        attest(subject.id, 8, type=AttestationType.PEER_RATING.value)

        breakdown = engine.fairness.pfi_breakdown(subject.id)

        assert breakdown.total_attestations == 2


# ============================================================================
# Ratings
# ============================================================================

class TestCreateRating:
    """Test customer ratings and their effect on TFI."""

    def test_ratings_update_tfi(self, engine, make_account):
        merchant = make_account(is_merchant=True)
        first = make_account()
        second = make_account()

        engine.create_rating(first.id, merchant.id, 8, 9, 7, 9)
        engine.create_rating(second.id, merchant.id, 6, 7, 8, 8)

        assert engine.accounts.get_account(merchant.id).tfi == 78

    def test_rating_linked_to_transaction(self, engine, make_account):
        merchant = make_account(is_merchant=True)
        customer = make_account(balance=10)
        tx = engine.transfer(customer.id, merchant.id, 5)

        rating = engine.create_rating(customer.id, merchant.id, 9, 9, 9, 9, transaction_id=tx.id, comments="Great")

        assert rating.transaction_id == tx.id
        assert engine.accounts.get_account(merchant.id).tfi == 90

    def test_unknown_transaction(self, engine, make_account):
        merchant = make_account(is_merchant=True)
        customer = make_account()

        with pytest.raises(InvalidValue):
            engine.create_rating(customer.id, merchant.id, 5, 5, 5, 5, transaction_id="missing")

    def test_cooldown_per_customer(self, engine, make_account, clock):
        merchant = make_account(is_merchant=True)
        customer = make_account()
        engine.create_rating(customer.id, merchant.id, 5, 5, 5, 5)

        clock.advance(days=3)
        with pytest.raises(DuplicateRating):
            engine.create_rating(customer.id, merchant.id, 9, 9, 9, 9)

        clock.advance(days=5)
        engine.create_rating(customer.id, merchant.id, 9, 9, 9, 9)

        assert engine.accounts.get_account(merchant.id).tfi == 70

    def test_concurrent_ratings_by_same_customer(self, engine, make_account):
        merchant = make_account(is_merchant=True)
        customer = make_account()

        def attempt(score):
            try:
                engine.create_rating(customer.id, merchant.id, score, score, score, score)
                return True
            except DuplicateRating:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(1, 9)))

        assert results.count(True) == 1
        assert engine.fairness.tfi_breakdown(merchant.id).total_ratings == 1

    def test_non_merchant_cannot_be_rated(self, engine, make_account):
        customer = make_account()
        other = make_account()

        with pytest.raises(InvalidValue):
            engine.create_rating(customer.id, other.id, 5, 5, 5, 5)

    def test_merchant_cannot_rate_itself(self, engine, make_account):
        merchant = make_account(is_merchant=True)

        with pytest.raises(SelfReference):
            engine.create_rating(merchant.id, merchant.id, 10, 10, 10, 10)

    @pytest.mark.parametrize("scores", [(0, 5, 5, 5), (5, 11, 5, 5), (5, 5, -1, 5), (5, 5, 5, "7")])
    def test_dimension_out_of_range(self, engine, make_account, scores):
        merchant = make_account(is_merchant=True)
        customer = make_account()

        with pytest.raises(InvalidValue):
            engine.create_rating(customer.id, merchant.id, *scores)

        assert engine.accounts.get_account(merchant.id).tfi == 30


# ============================================================================
# Recomputation
# ============================================================================

class TestRecomputation:
    """Test stored score recomputation."""

    def test_compute_is_idempotent(self, engine, make_account, attest):
        subject = make_account(community_service_hours=40)
        attest(subject.id, 6)

        first = engine.fairness.compute_pfi(subject.id)
        version = engine.accounts.get_account(subject.id).scores_version
        second = engine.fairness.compute_pfi(subject.id)

        assert first == second == 62
        assert engine.accounts.get_account(subject.id).scores_version == version == 1

    def test_tfi_idempotent(self, engine, make_account):
        merchant = make_account(is_merchant=True)
        engine.create_rating(make_account().id, merchant.id, 7, 7, 8, 8)

        assert engine.fairness.compute_tfi(merchant.id) == engine.fairness.compute_tfi(merchant.id) == 75

    def test_admins_are_not_scored(self, engine, admin):
        assert engine.fairness.compute_pfi(admin.id) == 0
        assert engine.accounts.get_account(admin.id).scores_updated_at is None

    def test_non_merchant_tfi_is_zero(self, engine, make_account):
        account = make_account()

        assert engine.fairness.compute_tfi(account.id) == 0

    def test_unknown_account(self, engine):
        with pytest.raises(UnknownAccount):
            engine.fairness.compute_pfi("missing")
        with pytest.raises(UnknownAccount):
            engine.fairness.compute_tfi("missing")

    def test_update_all_scores(self, engine, admin, make_account):
        make_account(community_service_hours=100)
        make_account()
        make_account(is_merchant=True)

        summary = engine.fairness.update_all_scores()

        assert summary.pfi_updated == 3
        assert summary.tfi_updated == 1
        assert summary.skipped_admins == 1
        assert summary.failures == {}
        assert sorted(a.pfi for a in engine.accounts.top_by_pfi()) == [20, 20, 50]

    def test_update_all_scores_isolates_failures(self, engine, make_account, monkeypatch):
        broken = make_account(community_service_hours=10)
        healthy = make_account(community_service_hours=100)
        compute_pfi = engine.fairness.compute_pfi

        def failing_compute(account_id):
            if account_id == broken.id:
                raise RuntimeError("corrupt attestation row")
            return compute_pfi(account_id)

        monkeypatch.setattr(engine.fairness, "compute_pfi", failing_compute)

        summary = engine.fairness.update_all_scores()

        assert summary.pfi_updated == 1
        assert summary.failures == {broken.id: "corrupt attestation row"}
        assert engine.accounts.get_account(healthy.id).pfi == 50

    def test_average_pfi_excludes_admins(self, engine, admin, make_account):
        make_account()
        make_account(community_service_hours=100)
        engine.fairness.update_all_scores()

        assert engine.fairness.average_pfi() == 35


# ============================================================================
# Breakdowns
# ============================================================================

class TestBreakdowns:
    """Test component breakdowns for the presentation layer."""

    def test_pfi_breakdown(self, engine, make_account, attest):
        subject = make_account(community_service_hours=20)
        attest(subject.id, 10, type=AttestationType.DISPUTE_RESOLUTION.value)

        breakdown = engine.fairness.pfi_breakdown(subject.id)

        assert breakdown.attestation_contribution == 50
        assert breakdown.service_contribution == 6
        assert breakdown.baseline_contribution == 20
        assert breakdown.attestation_counts == {"dispute_resolution": 1}
        assert breakdown.pfi == 76

    def test_admin_breakdown_reports_stored_pfi(self, engine, admin):
        assert engine.fairness.pfi_breakdown(admin.id).pfi == 0

    def test_tfi_breakdown(self, engine, make_account):
        merchant = make_account(is_merchant=True)
        engine.create_rating(make_account().id, merchant.id, 8, 9, 7, 9)

        breakdown = engine.fairness.tfi_breakdown(merchant.id)

        assert breakdown.total_ratings == 1
        assert breakdown.avg_quality == 9
        assert breakdown.tfi == 83

    def test_tfi_breakdown_requires_merchant(self, engine, make_account):
        with pytest.raises(InvalidValue):
            engine.fairness.tfi_breakdown(make_account().id)
