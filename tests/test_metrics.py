"""
Fairness Metrics Tests
======================

Daily snapshots, history and threshold alerts.
"""

from datetime import date
from decimal import Decimal

import pytest

from faircoin_ledger.errors import InvalidValue, UnknownAccount, UnknownAlert
from faircoin_ledger.models.db import AlertSeverity, AlertType, FairnessMetrics
from faircoin_ledger.services.metrics import MetricsService, decline_percent


@pytest.fixture
def store_snapshot(engine):
    """Store a snapshot row directly, bypassing the collection queries."""

    def _snapshot(day, excellent=0, average_tfi=0, **fields):
        with engine.database.session() as s:
            row = FairnessMetrics(
                date=day,
                pfi_excellent=excellent,
                average_tfi=Decimal(str(average_tfi)),
                **fields,
            )
            s.add(row)
        return row

    return _snapshot


# ============================================================================
# Daily snapshots
# ============================================================================

class TestDailyMetrics:
    """Test collection of the daily snapshot."""

    def test_snapshot_counts(self, engine, admin, make_account, attest):
        top = make_account(community_service_hours=100)
        attest(top.id, 10)
        make_account(community_service_hours=100)
        shop = make_account(is_merchant=True)
        make_account(is_merchant=True)
        engine.create_rating(make_account().id, shop.id, 9, 9, 9, 9)
        engine.fairness.update_all_scores()

        metrics = engine.metrics.update_daily_metrics()

        assert metrics.date == date(2024, 3, 15)
        assert (metrics.pfi_excellent, metrics.pfi_good, metrics.pfi_average, metrics.pfi_poor) == (1, 0, 1, 3)
        # Rated merchant at 90, unrated one at the base 30
        assert metrics.average_tfi == Decimal("60")
        assert metrics.total_ratings == 1
        assert metrics.total_users == 6
        assert metrics.total_merchants == 2
        assert metrics.total_transactions == 0

    def test_same_day_refreshes_snapshot(self, engine, make_account, clock):
        make_account()
        engine.metrics.update_daily_metrics()
        make_account()
        clock.advance(hours=1)

        metrics = engine.metrics.update_daily_metrics()

        assert metrics.pfi_poor == 2
        assert metrics.updated_at == clock()
        assert len(engine.metrics.latest_metrics(limit=5)) == 1

    def test_new_day_new_snapshot(self, engine, make_account, clock):
        make_account()
        engine.metrics.update_daily_metrics()
        clock.advance(days=1)

        engine.metrics.update_daily_metrics()

        assert [m.date for m in engine.metrics.latest_metrics()] == [date(2024, 3, 16), date(2024, 3, 15)]

    def test_empty_community(self, engine):
        metrics = engine.metrics.update_daily_metrics()

        assert metrics.pfi_total == 0
        assert metrics.average_tfi == Decimal("0")


# ============================================================================
# History
# ============================================================================

class TestMetricsHistory:
    """Test chart history of snapshots and alerts."""

    def test_percentages_and_ratings(self, engine, make_account):
        make_account(community_service_hours=100)
        shop = make_account(is_merchant=True)
        engine.create_rating(make_account().id, shop.id, 9, 9, 9, 9)
        engine.fairness.update_all_scores()
        engine.metrics.update_daily_metrics()

        history = engine.metrics.metrics_history()

        assert history["pfi_history"] == [
            {"date": "2024-03-15", "excellent": 0.0, "good": 0.0, "average": 33.33, "poor": 66.67}
        ]
        assert history["tfi_history"] == [{"date": "2024-03-15", "average_rating": 4.5, "total_ratings": 1}]
        assert history["alerts_history"] == []

    def test_window_excludes_old_snapshots(self, engine, store_snapshot):
        store_snapshot(date(2024, 1, 1))
        store_snapshot(date(2024, 3, 1))
        store_snapshot(date(2024, 3, 14))

        history = engine.metrics.metrics_history(days=30)

        assert [entry["date"] for entry in history["pfi_history"]] == ["2024-03-01", "2024-03-14"]

    def test_non_positive_days_uses_default(self, engine, store_snapshot):
        store_snapshot(date(2024, 2, 20))
        store_snapshot(date(2024, 1, 1))

        assert len(engine.metrics.metrics_history(days=0)["tfi_history"]) == 1

    def test_alerts_newest_first(self, engine, clock):
        engine.metrics.create_alert("manual_review", AlertSeverity.LOW.value, "First", "older")
        clock.advance(days=1)
        engine.metrics.create_alert("manual_review", AlertSeverity.HIGH.value, "Second", "newer")

        alerts = engine.metrics.metrics_history()["alerts_history"]

        assert alerts == [
            {"date": "2024-03-16", "title": "Second", "message": "newer", "severity": "high"},
            {"date": "2024-03-15", "title": "First", "message": "older", "severity": "low"},
        ]


# ============================================================================
# Alerts
# ============================================================================

class TestAlerts:
    """Test alert storage and read state."""

    def test_create_and_mark_read(self, engine, make_account):
        merchant = make_account(is_merchant=True)
        alert = engine.metrics.create_alert(
            "manual_review", AlertSeverity.MEDIUM.value, "Check ratings", account_id=merchant.id
        )

        assert [a.id for a in engine.metrics.unread_alerts()] == [alert.id]

        read = engine.metrics.mark_alert_read(alert.id)

        assert read.is_read is True
        assert read.is_resolved is False
        assert engine.metrics.unread_alerts() == []

    def test_unknown_alert(self, engine):
        with pytest.raises(UnknownAlert):
            engine.metrics.mark_alert_read("missing")

    def test_invalid_alerts_rejected(self, engine):
        with pytest.raises(InvalidValue):
            engine.metrics.create_alert("manual_review", "urgent", "Title")
        with pytest.raises(InvalidValue):
            engine.metrics.create_alert("manual_review", AlertSeverity.LOW.value, "")
        with pytest.raises(UnknownAccount):
            engine.metrics.create_alert("manual_review", AlertSeverity.LOW.value, "Title", account_id="missing")


class TestCheckForAlerts:
    """Test day over day threshold checks."""

    @pytest.mark.parametrize("previous,latest,expected", [
        (10, 7, 30.0), (10, 10, 0.0), (10, 12, 0.0), (0, 0, 0.0),
    ])
    def test_decline_percent(self, previous, latest, expected):
        assert decline_percent(previous, latest) == pytest.approx(expected)

    def test_needs_two_snapshots(self, engine, store_snapshot):
        store_snapshot(date(2024, 3, 15), excellent=10)

        assert engine.metrics.check_for_alerts() == []

    def test_pfi_decline_alert(self, engine, store_snapshot):
        store_snapshot(date(2024, 3, 14), excellent=10, average_tfi=80)
        store_snapshot(date(2024, 3, 15), excellent=7, average_tfi=80)

        alerts = engine.metrics.check_for_alerts()

        assert [(a.type, a.severity) for a in alerts] == [(AlertType.PFI_DECLINE.value, AlertSeverity.HIGH.value)]
        assert "30.0%" in alerts[0].description
        assert alerts[0].metrics_date == date(2024, 3, 15)

    def test_tfi_decline_alert(self, engine, store_snapshot):
        store_snapshot(date(2024, 3, 14), excellent=10, average_tfi=80)
        store_snapshot(date(2024, 3, 15), excellent=10, average_tfi=70)

        alerts = engine.metrics.check_for_alerts()

        assert [(a.type, a.severity) for a in alerts] == [(AlertType.TFI_DECLINE.value, AlertSeverity.MEDIUM.value)]

    def test_declines_at_threshold_do_not_alert(self, engine, store_snapshot):
        store_snapshot(date(2024, 3, 14), excellent=10, average_tfi=80)
        store_snapshot(date(2024, 3, 15), excellent=8, average_tfi=72)

        assert engine.metrics.check_for_alerts() == []

    def test_each_decline_alerts_once_per_day(self, engine, store_snapshot):
        store_snapshot(date(2024, 3, 14), excellent=10, average_tfi=80)
        store_snapshot(date(2024, 3, 15), excellent=5, average_tfi=40)

        assert len(engine.metrics.check_for_alerts()) == 2
        assert engine.metrics.check_for_alerts() == []
        assert len(engine.metrics.unread_alerts()) == 2

    def test_thresholds_from_settings(self, engine, settings, store_snapshot, clock):
        strict = MetricsService(
            engine.database,
            settings.model_copy(update={"ALERT_PFI_DECLINE_PERCENT": 5.0}),
            clock=clock,
        )
        store_snapshot(date(2024, 3, 14), excellent=10)
        store_snapshot(date(2024, 3, 15), excellent=9)

        assert [a.type for a in strict.check_for_alerts()] == [AlertType.PFI_DECLINE.value]
