"""
Community Statistics Tests
==========================
"""

from decimal import Decimal

import pytest

from faircoin_ledger.services.stats import pfi_bucket, tfi_bucket


class TestBuckets:
    """Test score bucket boundaries."""

    @pytest.mark.parametrize("pfi,bucket", [
        (100, "excellent"), (90, "excellent"), (89, "good"), (70, "good"),
        (69, "average"), (50, "average"), (49, "poor"), (0, "poor"),
    ])
    def test_pfi_buckets(self, pfi, bucket):
        assert pfi_bucket(pfi) == bucket

    @pytest.mark.parametrize("tfi,bucket", [
        (80, "excellent"), (78, "good"), (60, "good"), (59, "fair"),
        (40, "fair"), (30, "base"), (0, "unscored"),
    ])
    def test_tfi_buckets(self, tfi, bucket):
        assert tfi_bucket(tfi) == bucket


class TestCommunityStats:
    """Test aggregate statistics."""

    def test_totals(self, engine, admin, make_account, clock):
        a = make_account(balance=100, community_service_hours=100)
        b = make_account(is_merchant=True)
        engine.transfer(a.id, b.id, 50)
        engine.fairness.update_all_scores()

        stats = engine.stats.community_stats()

        assert stats["total_users"] == 3
        assert stats["total_merchants"] == 1
        assert stats["total_transactions"] == 2
        assert stats["circulating_supply"] == Decimal("99.95")
        assert stats["average_pfi"] == 35
        assert stats["transaction_volume_30d"] == Decimal("50")
        assert stats["total_burned"] == Decimal("0.05")

    def test_volume_window(self, engine, make_account, clock):
        a = make_account(balance=100)
        b = make_account()
        engine.transfer(a.id, b.id, 10)
        clock.advance(days=31)
        engine.transfer(a.id, b.id, 5)

        assert engine.stats.community_stats()["transaction_volume_30d"] == Decimal("5")

    def test_empty_community(self, engine):
        stats = engine.stats.community_stats()

        assert stats["total_users"] == 0
        assert stats["circulating_supply"] == Decimal("0")
        assert stats["average_pfi"] == 0


class TestDistributions:
    """Test score distributions."""

    def test_pfi_distribution(self, engine, admin, make_account, attest):
        make_account()
        make_account(community_service_hours=100)
        top = make_account(community_service_hours=100)
        attest(top.id, 10)
        engine.fairness.update_all_scores()

        result = engine.stats.pfi_distribution()

        assert result["total"] == 3
        assert result["distribution"]["excellent"] == {"count": 1, "percentage": 33.33}
        assert result["distribution"]["good"]["count"] == 0
        assert result["distribution"]["average"]["count"] == 1
        assert result["distribution"]["poor"]["count"] == 1

    def test_tfi_distribution(self, engine, make_account):
        rated = make_account(is_merchant=True)
        make_account(is_merchant=True)
        engine.create_rating(make_account().id, rated.id, 8, 9, 7, 9)

        result = engine.stats.tfi_distribution()

        assert result["total"] == 2
        assert result["distribution"]["excellent"]["count"] == 1
        assert result["distribution"]["base"] == {"count": 1, "percentage": 50.0}

    def test_empty_distribution(self, engine):
        result = engine.stats.tfi_distribution()

        assert result["total"] == 0
        assert all(bucket["percentage"] == 0.0 for bucket in result["distribution"].values())


class TestTopMerchants:
    """Test merchant leaderboard."""

    def test_ranked_by_tfi(self, engine, make_account):
        good = make_account("good", is_merchant=True)
        new = make_account("new", is_merchant=True)
        for _ in range(2):
            engine.create_rating(make_account().id, good.id, 9, 9, 9, 9)

        top = engine.stats.top_merchants()

        assert [(m["rank"], m["username"], m["tfi"], m["total_ratings"]) for m in top] == [
            (1, "good", 90, 2),
            (2, "new", 30, 0),
        ]
        assert top[0]["average_rating"] == 4.5
        assert top[1]["id"] == new.id

    def test_limit(self, engine, make_account):
        for name in ("a", "b", "c"):
            make_account(name, is_merchant=True)

        assert len(engine.stats.top_merchants(limit=2)) == 2
