from __future__ import annotations

from datetime import date
from decimal import Decimal

from accord.calculations import duration_in_weeks, payment_details, total_cost
from accord.models import Agreement


def _agreement(**kwargs) -> Agreement:
    values = {
        "payment_type": "Hourly", "hourly_rate": Decimal("50"), "weekly_hours": 10,
        "start_date": date(2025, 1, 1), "end_date": date(2025, 1, 29),
    }
    values.update(kwargs)
    return Agreement(**values)


class TestDuration:
    def test_exact_weeks(self):
        assert duration_in_weeks(_agreement()) == 4

    def test_partial_week_rounds_up(self):
        assert duration_in_weeks(_agreement(end_date=date(2025, 1, 30))) == 5

    def test_same_day(self):
        assert duration_in_weeks(_agreement(end_date=date(2025, 1, 1))) == 0

    def test_missing_dates(self):
        assert duration_in_weeks(_agreement(start_date=None)) == 0


class TestTotalCost:
    def test_hourly(self):
        assert total_cost(_agreement()) == Decimal("2000")

    def test_equity_is_free(self):
        assert total_cost(_agreement(payment_type="Equity", hourly_rate=None)) == Decimal("0")

    def test_zero_rate(self):
        assert total_cost(_agreement(hourly_rate=Decimal("0"))) == Decimal("0")

    def test_unknown_hours(self):
        assert total_cost(_agreement(weekly_hours=None)) is None

    def test_hybrid_counts_cash_part(self):
        agreement = _agreement(payment_type="Hybrid", hourly_rate=Decimal("20"), equity_percentage=Decimal("5"))
        assert total_cost(agreement) == Decimal("800")


class TestPaymentDetails:
    def test_hourly(self):
        assert payment_details(_agreement()) == "50$/hour for 10h/week"

    def test_equity(self):
        assert payment_details(_agreement(payment_type="Equity", equity_percentage=Decimal("7.5"))) == "7.5% equity"

    def test_hybrid_without_hours(self):
        agreement = _agreement(payment_type="Hybrid", weekly_hours=None, equity_percentage=Decimal("3"))
        assert payment_details(agreement) == "50$/hour + 3% equity"
