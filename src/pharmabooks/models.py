"""
Pharma Books - Domain Models

Plain dataclasses for the rows the engine hands around. Rows come out of
SQLite as sqlite3.Row objects; the from_row() constructors convert the TEXT
storage (money, dates) into Decimal and datetime.date.
"""

import datetime
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Optional

INCOME = 'income'
EXPENSE = 'expense'
TRANSACTION_TYPES = (INCOME, EXPENSE)

MONTHLY = 'monthly'
WEEKLY = 'weekly'
FREQUENCIES = (MONTHLY, WEEKLY)

UNCATEGORIZED = 'Uncategorized'


def parse_date(value):
    """Parse 'YYYY-MM-DD' (optionally followed by a time part) into a date."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    text = str(value).replace('T', ' ').split(' ')[0]
    return datetime.datetime.strptime(text, '%Y-%m-%d').date()


def to_decimal(value):
    if value is None or value == '':
        return Decimal('0.00')
    return Decimal(str(value))


def _keys(row):
    return row.keys() if hasattr(row, 'keys') else ()


@dataclass
class Category:
    id: int
    name: str
    type: str  # 'income' | 'expense'

    @classmethod
    def from_row(cls, row):
        return cls(id=row['category_id'], name=row['name'], type=row['type'])

    def to_dict(self):
        return asdict(self)


@dataclass
class RecurringDefinition:
    id: Optional[int]
    type: str                    # 'income' | 'expense'
    amount: Decimal
    frequency: str               # 'monthly' | 'weekly'
    category_id: Optional[int] = None
    description: Optional[str] = None
    day_of_month: Optional[int] = 1   # monthly only, 1-31
    is_active: bool = True
    last_generated: Optional[datetime.date] = None
    category_name: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        keys = _keys(row)
        return cls(
            id=row['recurring_id'],
            type=row['type'],
            amount=to_decimal(row['amount']),
            frequency=row['frequency'],
            category_id=row['category_id'],
            description=row['description'],
            day_of_month=row['day_of_month'],
            is_active=bool(row['is_active']),
            last_generated=parse_date(row['last_generated']),
            category_name=row['category_name'] if 'category_name' in keys else None,
        )

    def to_dict(self):
        return asdict(self)


@dataclass
class LedgerTransaction:
    date: datetime.date
    amount: Decimal
    type: str
    category_id: Optional[int] = None
    description: Optional[str] = None
    id: Optional[int] = None
    recurring_id: Optional[int] = None
    category_name: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        keys = _keys(row)
        return cls(
            id=row['transaction_id'],
            date=parse_date(row['transaction_date']),
            amount=to_decimal(row['amount']),
            type=row['type'],
            category_id=row['category_id'],
            description=row['description'],
            recurring_id=row['recurring_id'],
            category_name=row['category_name'] if 'category_name' in keys else None,
            created_at=row['created_at'] if 'created_at' in keys else None,
        )

    def to_dict(self):
        return asdict(self)
