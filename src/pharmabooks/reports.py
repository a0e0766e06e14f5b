"""
Pharma Books - Dashboard & Report Aggregations

Pure functions over lists of LedgerTransaction objects. The engine fetches the
rows for a date window; everything here is arithmetic and formatting.
"""

import calendar
import datetime
import math
from decimal import Decimal

from .models import EXPENSE, INCOME, UNCATEGORIZED

ZERO = Decimal('0.00')
TREND_MONTHS = 6
RECENT_LIMIT = 8

# Report windows reach one month back and one year forward
MIN_YEAR = 2
MAX_YEAR = 9998


def shift_month(year, month, delta):
    """Move (year, month) by delta months; month is 1-based."""
    idx = (year * 12 + (month - 1)) + delta
    return idx // 12, (idx % 12) + 1


def month_bounds(year, month):
    """Return (first_day, first_day_of_next_month) for a calendar month."""
    start = datetime.date(year, month, 1)
    next_year, next_month = shift_month(year, month, 1)
    return start, datetime.date(next_year, next_month, 1)


def month_name(month):
    return calendar.month_name[month]


def totals(transactions):
    """Income, expense and net over a list of transactions."""
    income = sum((t.amount for t in transactions if t.type == INCOME), ZERO)
    expense = sum((t.amount for t in transactions if t.type == EXPENSE), ZERO)
    return {'income': income, 'expense': expense, 'net': income - expense}


def count_by_type(transactions):
    return {
        'income': sum(1 for t in transactions if t.type == INCOME),
        'expense': sum(1 for t in transactions if t.type == EXPENSE),
    }


def recent(transactions, limit=RECENT_LIMIT):
    """Newest first: date desc, then creation order desc."""
    ordered = sorted(
        transactions,
        key=lambda t: (t.date, t.created_at or '', t.id or 0),
        reverse=True,
    )
    return ordered[:limit]


def category_breakdown(transactions):
    """
    Sum amounts per (category name, type), largest first.

    Transactions without a category are grouped under "Uncategorized".
    """
    groups = {}
    for tx in transactions:
        name = tx.category_name or UNCATEGORIZED
        key = (name, tx.type)
        if key not in groups:
            groups[key] = {'name': name, 'type': tx.type, 'total': ZERO}
        groups[key]['total'] += tx.amount
    return sorted(groups.values(), key=lambda g: g['total'], reverse=True)


def monthly_breakdown(transactions):
    """Twelve {month, income, expense} buckets (month is 1-12)."""
    months = [{'month': m, 'income': ZERO, 'expense': ZERO} for m in range(1, 13)]
    for tx in transactions:
        bucket = months[tx.date.month - 1]
        if tx.type == INCOME:
            bucket['income'] += tx.amount
        else:
            bucket['expense'] += tx.amount
    return months


def yearly_totals(months):
    income = sum((m['income'] for m in months), ZERO)
    expense = sum((m['expense'] for m in months), ZERO)
    return {'income': income, 'expense': expense, 'net': income - expense}


def chart_max(months):
    """Largest single income/expense bar; never below 1 so bars can scale."""
    return max([max(m['income'], m['expense']) for m in months] + [Decimal(1)])


def category_trend(transactions, category_id, today, months=TREND_MONTHS):
    """
    Per-month totals for one category over the last `months` months ending
    with the month of `today` (oldest first).
    """
    result = []
    for back in range(months - 1, -1, -1):
        year, month = shift_month(today.year, today.month, -back)
        total = sum(
            (
                t.amount for t in transactions
                if t.category_id == category_id
                and t.date.year == year and t.date.month == month
            ),
            ZERO,
        )
        result.append({
            'year': year,
            'month': month,
            'label': calendar.month_abbr[month],
            'total': total,
        })
    return result


def trend_summary(trend):
    if not trend:
        return {'average': ZERO, 'max': Decimal(1)}
    values = [point['total'] for point in trend]
    return {
        'average': sum(values, ZERO) / len(values),
        'max': max(values + [Decimal(1)]),
    }


def percent_change(current, previous):
    """Percent change from previous to current; 100/0 when previous is zero."""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return float((current - previous) / previous * 100)


def month_comparison(transactions, year, month):
    """
    Compare one month with the calendar month before it.

    `transactions` must cover both months; the previous month of January is
    December of the previous year.
    """
    prev_year, prev_month = shift_month(year, month, -1)

    current = [t for t in transactions if (t.date.year, t.date.month) == (year, month)]
    previous = [t for t in transactions if (t.date.year, t.date.month) == (prev_year, prev_month)]
    cur_totals = totals(current)
    prev_totals = totals(previous)

    per_category = {}
    for bucket, rows in (('current', current), ('previous', previous)):
        for tx in rows:
            name = tx.category_name or UNCATEGORIZED
            entry = per_category.setdefault(
                name, {'name': name, 'type': tx.type, 'current': ZERO, 'previous': ZERO}
            )
            entry[bucket] += tx.amount

    categories = sorted(per_category.values(), key=lambda c: c['current'], reverse=True)
    for entry in categories:
        entry['change'] = percent_change(entry['current'], entry['previous'])

    return {
        'year': year,
        'month': month,
        'previous_year': prev_year,
        'previous_month': prev_month,
        'previous_month_name': month_name(prev_month),
        'current': cur_totals,
        'previous': prev_totals,
        'income_change': percent_change(cur_totals['income'], prev_totals['income']),
        'expense_change': percent_change(cur_totals['expense'], prev_totals['expense']),
        'net_change': percent_change(cur_totals['net'], prev_totals['net']),
        'categories': categories,
    }


def format_currency(amount, symbol='$', decimals=2):
    """Format like '$1,234.56' (negative amounts as '-$1,234.56')."""
    value = Decimal(str(amount))
    sign = '-' if value < 0 else ''
    return f"{sign}{symbol}{abs(value):,.{decimals}f}"


def format_percent(value):
    """Signed one-decimal percent; an em dash for non-finite values."""
    if value is None or not math.isfinite(value):
        return "—"
    sign = '+' if value > 0 else ''
    return f"{sign}{value:.1f}%"


def format_totals(amounts, symbol='$'):
    """Currency strings for an {income, expense, net} totals dict."""
    return {key: format_currency(value, symbol) for key, value in amounts.items()}


def format_comparison(comparison, symbol='$'):
    """Display strings for a month_comparison() result."""
    return {
        'current': format_totals(comparison['current'], symbol),
        'previous': format_totals(comparison['previous'], symbol),
        'income_change': format_percent(comparison['income_change']),
        'expense_change': format_percent(comparison['expense_change']),
        'net_change': format_percent(comparison['net_change']),
        'categories': [
            {
                'name': entry['name'],
                'current': format_currency(entry['current'], symbol),
                'previous': format_currency(entry['previous'], symbol),
                'change': format_percent(entry['change']),
            }
            for entry in comparison['categories']
        ],
    }
