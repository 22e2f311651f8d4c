from datetime import date
from decimal import Decimal

import pytest

from detergent_mfg.finance import (
    expense_breakdown,
    format_percentage,
    month_windows,
    monthly_trends,
    normalize_period,
    parse_amount,
    partner_summary,
    period_start,
    sale_status,
    settle_payment,
    to_decimal_or_default,
    within_limit,
)


@pytest.mark.parametrize(
    "value, expected",
    [("12.5", Decimal("12.5")), ("", Decimal("0")), (None, Decimal("0")), ("abc", Decimal("0")), ("nan", Decimal("0"))],
)
def test_to_decimal_or_default(value, expected):
    assert to_decimal_or_default(value) == expected


def test_parse_amount_rejects_unusable_numbers():
    assert parse_amount("12.50") == Decimal("12.50")
    assert parse_amount(" -3 ") == Decimal("-3")
    assert parse_amount("abc") is None
    assert parse_amount("") is None
    assert parse_amount("Infinity") is None
    assert parse_amount("1e999999") is None
    assert parse_amount("1e13") is None
    assert parse_amount("9999999999999") == Decimal("9999999999999")
    assert parse_amount("1e-999999") == 0


def test_within_limit():
    assert within_limit(Decimal("9999999999999.99"))
    assert not within_limit(Decimal("1e13"))
    assert not within_limit(Decimal("1e12") * Decimal("1e12"))
    assert not within_limit(Decimal("Infinity"))
    assert not within_limit(Decimal("-Infinity"))


def test_normalize_period_falls_back_to_all():
    assert normalize_period("Quarter") == "quarter"
    assert normalize_period("decade") == "all"
    assert normalize_period(None) == "all"


def test_period_start():
    today = date(2024, 8, 17)
    assert period_start("month", today) == date(2024, 8, 1)
    assert period_start("quarter", today) == date(2024, 7, 1)
    assert period_start("year", today) == date(2024, 1, 1)
    assert period_start("all", today) is None


def test_month_windows_cross_year_boundary():
    windows = month_windows(date(2024, 2, 10))
    assert [label for label, _, _ in windows] == [
        "Sep 2023", "Oct 2023", "Nov 2023", "Dec 2023", "Jan 2024", "Feb 2024",
    ]
    assert windows[-1][1:] == ("2024-02-01", "2024-02-29")
    assert windows[3][1:] == ("2023-12-01", "2023-12-31")


def test_sale_status():
    assert sale_status(100, 100) == "paid"
    assert sale_status(100, 40) == "partial"
    assert sale_status(100, 0) == "pending"
    assert sale_status(0, 0) == "paid"


def test_settle_payment_clamps_and_defaults_to_full_balance():
    assert settle_payment(500, Decimal("200")) == Decimal("200")
    assert settle_payment(500, Decimal("900")) == Decimal("500")
    assert settle_payment(500, Decimal("0")) == Decimal("500")
    assert settle_payment(0, Decimal("50")) == Decimal("0")


def test_format_percentage():
    assert format_percentage(1, 3) == "33.3%"
    assert format_percentage(5, 0) == "0%"


def test_expense_breakdown_percentages():
    breakdown = expense_breakdown(Decimal("600"), Decimal("300"), Decimal("100"))
    assert [item["category"] for item in breakdown] == ["Raw Materials", "Fleet Operations", "Maintenance"]
    assert [item["percentage"] for item in breakdown] == [60.0, 30.0, 10.0]


def test_expense_breakdown_without_expenses():
    assert all(item["percentage"] == 0 for item in expense_breakdown(0, 0, 0))


def test_monthly_trends_buckets_by_month():
    windows = month_windows(date(2024, 3, 5), count=2)
    sales = [{"sale_date": "2024-02-14", "total": 1000}, {"sale_date": "2024-03-01", "total": 400}]
    costs = [{"spent_on": "2024-03-02", "cost": 500}]

    trends = monthly_trends(windows, [(sales, "sale_date", "total")], [(costs, "spent_on", "cost")])

    assert trends[0] == {
        "month": "Feb 2024", "revenue": 1000.0, "expenses": 0.0, "profit": 1000.0, "margin": "100.0%",
    }
    assert trends[1]["profit"] == -100.0
    assert trends[1]["margin"] == "-25.0%"


def test_partner_summary():
    withdrawals = [
        {"partner_name": "owner", "amount": 300, "withdrawal_date": "2024-03-10"},
        {"partner_name": "brother", "amount": 50, "withdrawal_date": "2024-03-05"},
        {"partner_name": "owner", "amount": 100, "withdrawal_date": "2024-02-01"},
    ]
    summary = partner_summary("owner", withdrawals, "2024-03")
    assert summary["total"] == 400.0
    assert summary["count"] == 2
    assert summary["last_withdrawal"] == "2024-03-10"
    assert summary["this_month"] == 300.0
    assert summary["average"] == 200.0


def test_partner_summary_without_withdrawals():
    summary = partner_summary("brother", [], "2024-03")
    assert summary["last_withdrawal"] == "Never"
    assert summary["average"] == 0.0
