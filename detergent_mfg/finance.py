from datetime import date, timedelta
from decimal import Decimal, InvalidOperation

PERIODS = ("all", "year", "quarter", "month")
PARTNERS = ("owner", "brother")
ZERO = Decimal("0")
# Upper bound for form amounts and computed totals.
MAX_AMOUNT = Decimal("1e13")


def parse_amount(value):
    """Parse a form amount, or return ``None`` when it is not a usable number."""
    try:
        parsed = Decimal((value or "").strip())
    except InvalidOperation:
        return None
    if not parsed.is_finite() or abs(parsed) >= MAX_AMOUNT:
        return None
    # Values below 0.0001 collapse to zero.
    return parsed.quantize(Decimal("0.0001")) if parsed.adjusted() < -4 else parsed


def to_decimal_or_default(value, default="0"):
    raw_value = (value or "").strip()
    if raw_value == "":
        return Decimal(default)
    parsed = parse_amount(raw_value)
    if parsed is None:
        return Decimal(default)
    return parsed


def within_limit(amount):
    return amount.is_finite() and abs(amount) < MAX_AMOUNT


def as_decimal(value):
    return Decimal(str(value or 0))


def normalize_period(value):
    period = (value or "all").strip().lower()
    if period not in PERIODS:
        return "all"
    return period


def period_start(period, today=None):
    today = today or date.today()
    if period == "month":
        return date(today.year, today.month, 1)
    if period == "quarter":
        quarter_start_month = ((today.month - 1) // 3) * 3 + 1
        return date(today.year, quarter_start_month, 1)
    if period == "year":
        return date(today.year, 1, 1)
    return None


def month_end(month_start):
    if month_start.month == 12:
        return date(month_start.year, 12, 31)
    return date(month_start.year, month_start.month + 1, 1) - timedelta(days=1)


def month_windows(today=None, count=6):
    """Calendar months ending with the current one, oldest first.

    Each window is ``(label, start, end)`` with a ``"Oct 2026"`` style label
    and inclusive ISO date bounds.
    """
    today = today or date.today()
    cursor = date(today.year, today.month, 1)
    windows = []
    for _ in range(count):
        windows.append((cursor.strftime("%b %Y"), cursor.isoformat(), month_end(cursor).isoformat()))
        if cursor.month == 1:
            cursor = date(cursor.year - 1, 12, 1)
        else:
            cursor = date(cursor.year, cursor.month - 1, 1)
    windows.reverse()
    return windows


def sale_status(total_amount, amount_paid):
    remaining = as_decimal(total_amount) - as_decimal(amount_paid)
    if remaining == 0:
        return "paid"
    if as_decimal(amount_paid) > 0:
        return "partial"
    return "pending"


def percentage(part, whole):
    whole = as_decimal(whole)
    if whole <= 0:
        return ZERO
    return as_decimal(part) / whole * Decimal("100")


def format_percentage(part, whole):
    if as_decimal(whole) <= 0:
        return "0%"
    return f"{float(percentage(part, whole)):.1f}%"


def settle_payment(outstanding, amount):
    # Non-positive amounts settle the whole balance; overpayments are clamped.
    outstanding = as_decimal(outstanding)
    if outstanding <= 0:
        return ZERO
    if amount <= 0 or amount > outstanding:
        return outstanding
    return amount


def expense_breakdown(raw_material_costs, truck_costs, maintenance_costs):
    total = as_decimal(raw_material_costs) + as_decimal(truck_costs) + as_decimal(maintenance_costs)
    breakdown = []
    for category, amount in (
        ("Raw Materials", raw_material_costs),
        ("Fleet Operations", truck_costs),
        ("Maintenance", maintenance_costs),
    ):
        breakdown.append(
            {
                "category": category,
                "amount": float(as_decimal(amount)),
                "percentage": float(percentage(amount, total)),
            }
        )
    return breakdown


def sum_between(rows, date_key, value_key, start_iso, end_iso):
    total = ZERO
    for row in rows:
        row_date = row[date_key] or ""
        if start_iso <= row_date <= end_iso:
            total += as_decimal(row[value_key])
    return total


def monthly_trends(windows, revenue_sources, expense_sources):
    """Revenue, expenses, profit and margin per window.

    ``revenue_sources`` and ``expense_sources`` are lists of
    ``(rows, date_key, value_key)`` triples.
    """
    trends = []
    for label, start_iso, end_iso in windows:
        revenue = sum(
            (sum_between(rows, date_key, value_key, start_iso, end_iso) for rows, date_key, value_key in revenue_sources),
            ZERO,
        )
        expenses = sum(
            (sum_between(rows, date_key, value_key, start_iso, end_iso) for rows, date_key, value_key in expense_sources),
            ZERO,
        )
        profit = revenue - expenses
        trends.append(
            {
                "month": label,
                "revenue": float(revenue),
                "expenses": float(expenses),
                "profit": float(profit),
                "margin": format_percentage(profit, revenue),
            }
        )
    return trends


def partner_summary(partner_name, withdrawals, month_key):
    """Totals for one partner from withdrawals ordered newest first."""
    own = [row for row in withdrawals if row["partner_name"] == partner_name]
    total = sum((as_decimal(row["amount"]) for row in own), ZERO)
    this_month = sum(
        (as_decimal(row["amount"]) for row in own if (row["withdrawal_date"] or "")[:7] == month_key),
        ZERO,
    )
    count = len(own)
    return {
        "partner_name": partner_name,
        "total": float(total),
        "count": count,
        "last_withdrawal": own[0]["withdrawal_date"] if own else "Never",
        "this_month": float(this_month),
        "average": float(total / count) if count else 0.0,
    }
