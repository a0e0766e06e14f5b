"""
Pharma Books - Bookkeeping Engine

This module contains the BooksEngine class: a stateless engine for a small
pharmacy's income/expense bookkeeping.

The engine provides:
- Secure multi-user authentication with bcrypt password hashing
- Income and expense categories per user
- A ledger of dated income/expense transactions
- Recurring transaction definitions, and the store operations the recurring
  generator needs (list active definitions, insert a ledger transaction,
  advance last_generated, all inside one unit of work)
- Dashboard and yearly report data

Key Design Principles:
- **Stateless Architecture**: All state is stored in the SQLite database
- **User Segregation**: Every query filters on user_id
- **Exact Money**: Amounts are stored as TEXT and handled as Decimal

License: MIT
"""

import datetime
import logging
import sqlite3
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from pathlib import Path

import bcrypt

from . import reports
from .models import (
    EXPENSE,
    FREQUENCIES,
    INCOME,
    MONTHLY,
    TRANSACTION_TYPES,
    Category,
    LedgerTransaction,
    RecurringDefinition,
    parse_date,
)
from .setup_sqlite import connect, get_db_path

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    ("Prescription Sales", INCOME),
    ("OTC Sales", INCOME),
    ("Insurance Reimbursements", INCOME),
    ("Other Income", INCOME),
    ("Drug Purchases", EXPENSE),
    ("Rent", EXPENSE),
    ("Salaries", EXPENSE),
    ("Utilities", EXPENSE),
    ("Taxes", EXPENSE),
    ("Other Expenses", EXPENSE),
]

TRANSACTION_SELECT = """
    SELECT t.transaction_id, t.transaction_date, t.amount, t.type, t.category_id,
           t.description, t.recurring_id, t.created_at, c.name AS category_name
    FROM transactions t
    LEFT JOIN categories c ON t.category_id = c.category_id
"""

RECURRING_SELECT = """
    SELECT r.*, c.name AS category_name
    FROM recurring_transactions r
    LEFT JOIN categories c ON r.category_id = c.category_id
"""


class BooksEngine:
    """
    Stateless bookkeeping engine for Pharma Books.

    Every public method takes a user_id and only ever touches that user's
    rows. User-facing operations return (success, message[, payload]) tuples;
    the recurring store operations raise sqlite3.Error so the generator can
    isolate failures per definition.

    Example:
        engine = BooksEngine()
        user_data, msg = engine.login_user("eczane", "password123")
        if user_data:
            categories = engine.get_categories(user_data['user_id'])
    """

    def __init__(self, db_path=None):
        self.db_path = Path(db_path or get_db_path())

    # =============================================================================
    # SQLITE HELPER METHODS
    # =============================================================================

    @staticmethod
    def _to_money_str(value):
        """Convert Decimal or number to string for SQLite storage"""
        if value is None:
            return None
        return str(Decimal(str(value)).quantize(Decimal('0.01')))

    @staticmethod
    def _to_date_str(value):
        """Convert date/datetime/ISO string to 'YYYY-MM-DD'"""
        if value is None:
            return None
        return parse_date(value).isoformat()

    @staticmethod
    def _row_to_dict(row):
        """Convert sqlite3.Row to dictionary for JSON serialization"""
        if row is None:
            return None
        return dict(row)

    @staticmethod
    def _parse_amount(amount):
        """Parse a positive amount into Decimal; raise ValueError otherwise."""
        try:
            value = Decimal(str(amount))
            if value.is_finite():
                # Raises InvalidOperation past the 28-digit context precision
                value = value.quantize(Decimal('0.01'))
        except (InvalidOperation, TypeError, ValueError):
            raise ValueError("Amount must be a number.")
        if not value.is_finite() or value <= 0:
            raise ValueError("Amount must be greater than zero.")
        return value

    @staticmethod
    def _parse_type(type_):
        if type_ not in TRANSACTION_TYPES:
            raise ValueError("Type must be 'income' or 'expense'.")
        return type_

    @staticmethod
    def _parse_day_of_month(day_of_month):
        if day_of_month is None or day_of_month == '':
            return 1
        try:
            day = int(day_of_month)
        except (TypeError, ValueError):
            raise ValueError("Day of month must be a number between 1 and 31.")
        if not 1 <= day <= 31:
            raise ValueError("Day of month must be between 1 and 31.")
        return day

    @staticmethod
    def _parse_date_value(value):
        try:
            parsed = parse_date(value)
        except (TypeError, ValueError):
            raise ValueError("Date must be in YYYY-MM-DD format.")
        if parsed is None:
            raise ValueError("Date is required.")
        return parsed

    @staticmethod
    def _clean_text(value):
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    # =============================================================================
    # DATABASE CONNECTION
    # =============================================================================

    def _get_db_connection(self):
        """
        Establish a new database connection.

        Returns:
            tuple: (connection, cursor)

        Note:
            Callers are responsible for closing the connection and cursor.
        """
        conn = connect(self.db_path)
        return conn, conn.cursor()

    @contextmanager
    def atomic(self):
        """
        One unit of work: yields a cursor, commits on success, rolls back and
        re-raises on any error.
        """
        conn, cursor = self._get_db_connection()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def _validate_category(self, cursor, user_id, category_id, type_):
        """Return an error message if category_id is not the user's category of type_."""
        if category_id is None:
            return None
        cursor.execute(
            "SELECT type FROM categories WHERE category_id = ? AND user_id = ?",
            (category_id, user_id),
        )
        row = cursor.fetchone()
        if not row:
            return "Category not found."
        if row['type'] != type_:
            return f"Category is not an {type_} category."
        return None

    # =============================================================================
    # USER AUTHENTICATION METHODS
    # =============================================================================

    def login_user(self, username, password):
        """
        Authenticate a user with username and password.

        Returns:
            tuple: (user_data dict, message str); (None, error_message) on failure
        """
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "SELECT user_id, username, password_hash, is_demo FROM users WHERE username = ?",
                (username,),
            )
            user_data = self._row_to_dict(cursor.fetchone())
            if not user_data:
                return None, "Invalid username or password."

            if bcrypt.checkpw(password.encode('utf-8'), user_data['password_hash'].encode('utf-8')):
                user_data.pop('password_hash')
                return user_data, "Login successful."
            return None, "Invalid username or password."

        except sqlite3.Error as e:
            return None, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    def register_user(self, username, password, is_demo=False):
        """
        Register a new user with a bcrypt-hashed password and the default
        pharmacy categories.

        Returns:
            tuple: (success bool, message str, user_id int or None)
        """
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("SELECT user_id FROM users WHERE username = ?", (username,))
            if cursor.fetchone():
                return False, "Username already exists.", None

            password_hash = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt())
            cursor.execute(
                "INSERT INTO users (username, password_hash, is_demo) VALUES (?, ?, ?)",
                (username, password_hash.decode('utf-8'), 1 if is_demo else 0),
            )
            new_user_id = cursor.lastrowid
            self.initialize_default_categories(new_user_id, cursor=cursor)
            conn.commit()

            logger.info("[AUTH] Registered user %s (%s)", new_user_id, username)
            return True, "User registered successfully.", new_user_id
        except sqlite3.Error as e:
            conn.rollback()
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def change_password(self, user_id, current_password, new_password, min_length=8):
        """
        Change a user's password after verifying their current password.

        Returns:
            tuple: (success bool, message str)
        """
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("SELECT password_hash FROM users WHERE user_id = ?", (user_id,))
            user_data = self._row_to_dict(cursor.fetchone())
            if not user_data:
                return False, "User not found."

            if not bcrypt.checkpw(current_password.encode('utf-8'), user_data['password_hash'].encode('utf-8')):
                return False, "Current password is incorrect."

            if len(new_password) < min_length:
                return False, f"New password must be at least {min_length} characters long."

            new_hash = bcrypt.hashpw(new_password.encode('utf-8'), bcrypt.gensalt())
            cursor.execute(
                "UPDATE users SET password_hash = ? WHERE user_id = ?",
                (new_hash.decode('utf-8'), user_id),
            )
            conn.commit()
            return True, "Password changed successfully."

        except sqlite3.Error as e:
            conn.rollback()
            return False, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    def get_user(self, user_id):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "SELECT user_id, username, is_demo FROM users WHERE user_id = ?", (user_id,)
            )
            return self._row_to_dict(cursor.fetchone())
        finally:
            cursor.close()
            conn.close()

    def get_user_by_username(self, username):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "SELECT user_id, username, is_demo FROM users WHERE username = ?", (username,)
            )
            return self._row_to_dict(cursor.fetchone())
        finally:
            cursor.close()
            conn.close()

    def delete_user(self, user_id):
        """Delete a user and, through ON DELETE CASCADE, all of their data."""
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("DELETE FROM users WHERE user_id = ?", (user_id,))
            if cursor.rowcount == 0:
                return False, "User not found."
            conn.commit()
            return True, "User deleted."
        except sqlite3.Error as e:
            conn.rollback()
            return False, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    # =============================================================================
    # CATEGORIES
    # =============================================================================

    def initialize_default_categories(self, user_id, cursor=None):
        """Create the default pharmacy categories (joins the caller's transaction if given)."""
        if cursor is not None:
            cursor.executemany(
                "INSERT OR IGNORE INTO categories (user_id, name, type) VALUES (?, ?, ?)",
                [(user_id, name, type_) for name, type_ in DEFAULT_CATEGORIES],
            )
            return
        with self.atomic() as own_cursor:
            self.initialize_default_categories(user_id, cursor=own_cursor)

    def get_categories(self, user_id, type_=None):
        """Categories ordered by type, then name."""
        conn, cursor = self._get_db_connection()
        try:
            query = "SELECT category_id, name, type FROM categories WHERE user_id = ?"
            params = [user_id]
            if type_:
                query += " AND type = ?"
                params.append(type_)
            cursor.execute(query + " ORDER BY type, name", params)
            return [Category.from_row(row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def add_category(self, user_id, name, type_):
        """
        Returns:
            tuple: (success bool, message str, Category or None)
        """
        name = self._clean_text(name)
        if not name:
            return False, "Category name is required.", None
        if type_ not in TRANSACTION_TYPES:
            return False, "Type must be 'income' or 'expense'.", None

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "INSERT INTO categories (user_id, name, type) VALUES (?, ?, ?)",
                (user_id, name, type_),
            )
            conn.commit()
            return True, f"Category '{name}' added.", Category(id=cursor.lastrowid, name=name, type=type_)
        except sqlite3.IntegrityError:
            conn.rollback()
            return False, f"Category '{name}' already exists.", None
        except sqlite3.Error as e:
            conn.rollback()
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def delete_category(self, user_id, category_id):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "DELETE FROM categories WHERE category_id = ? AND user_id = ?",
                (category_id, user_id),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                return False, "Category not found."
            conn.commit()
            return True, "Category deleted."
        except sqlite3.IntegrityError:
            conn.rollback()
            return False, "Category is in use by existing transactions."
        except sqlite3.Error as e:
            conn.rollback()
            return False, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    # =============================================================================
    # LEDGER TRANSACTIONS
    # =============================================================================

    def get_transactions(self, user_id, start_date, end_date):
        """
        Transactions with start_date <= date < end_date, newest first.

        Returns:
            list[LedgerTransaction]
        """
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                TRANSACTION_SELECT + """
                WHERE t.user_id = ? AND t.transaction_date >= ? AND t.transaction_date < ?
                ORDER BY t.transaction_date DESC, t.created_at DESC, t.transaction_id DESC
                """,
                (user_id, self._to_date_str(start_date), self._to_date_str(end_date)),
            )
            return [LedgerTransaction.from_row(row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def get_month_transactions(self, user_id, year, month):
        start, end = reports.month_bounds(year, month)
        return self.get_transactions(user_id, start, end)

    def insert_ledger_transaction(self, user_id, transaction_date, amount, type_, category_id=None,
                                  description=None, recurring_id=None, period_key=None, cursor=None):
        """
        Insert one ledger row. Raises sqlite3.Error on failure.

        Pass `cursor` to join an open unit of work (see atomic()); without it
        the insert commits on its own connection.

        Returns:
            int: The new transaction_id
        """
        if cursor is None:
            with self.atomic() as own_cursor:
                return self.insert_ledger_transaction(
                    user_id, transaction_date, amount, type_, category_id,
                    description, recurring_id, period_key, cursor=own_cursor,
                )

        cursor.execute(
            """INSERT INTO transactions
               (user_id, transaction_date, amount, type, category_id, description, recurring_id, period_key)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                user_id,
                self._to_date_str(transaction_date),
                self._to_money_str(amount),
                type_,
                category_id,
                description,
                recurring_id,
                period_key,
            ),
        )
        return cursor.lastrowid

    def add_transaction(self, user_id, transaction_date, amount, type_, category_id=None, description=None):
        """
        Record a manual income or expense.

        Returns:
            tuple: (success bool, message str, transaction_id int or None)
        """
        try:
            on_date = self._parse_date_value(transaction_date)
            value = self._parse_amount(amount)
            type_ = self._parse_type(type_)
        except ValueError as e:
            return False, str(e), None

        try:
            with self.atomic() as cursor:
                error = self._validate_category(cursor, user_id, category_id, type_)
                if error:
                    return False, error, None
                transaction_id = self.insert_ledger_transaction(
                    user_id, on_date, value, type_,
                    category_id=category_id,
                    description=self._clean_text(description),
                    cursor=cursor,
                )
            return True, "Transaction recorded.", transaction_id
        except sqlite3.Error as e:
            return False, f"An error occurred: {e}", None

    def delete_transaction(self, user_id, transaction_id):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "DELETE FROM transactions WHERE transaction_id = ? AND user_id = ?",
                (transaction_id, user_id),
            )
            if cursor.rowcount == 0:
                return False, "Transaction not found."
            conn.commit()
            return True, "Transaction deleted."
        except sqlite3.Error as e:
            conn.rollback()
            return False, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    # =============================================================================
    # RECURRING DEFINITIONS - STORE OPERATIONS (used by the generator)
    # =============================================================================

    def list_active_recurring_definitions(self, user_id):
        """Active definitions only. Raises sqlite3.Error on failure."""
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                RECURRING_SELECT + " WHERE r.user_id = ? AND r.is_active = 1 ORDER BY r.recurring_id",
                (user_id,),
            )
            return [RecurringDefinition.from_row(row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def update_recurring_definition(self, user_id, recurring_id, last_generated, cursor=None):
        """Advance last_generated. Raises sqlite3.Error, or LookupError for a missing row."""
        if cursor is None:
            with self.atomic() as own_cursor:
                return self.update_recurring_definition(
                    user_id, recurring_id, last_generated, cursor=own_cursor,
                )

        cursor.execute(
            "UPDATE recurring_transactions SET last_generated = ? WHERE recurring_id = ? AND user_id = ?",
            (self._to_date_str(last_generated), recurring_id, user_id),
        )
        if cursor.rowcount == 0:
            raise LookupError(f"Recurring definition {recurring_id} not found for user {user_id}")

    # =============================================================================
    # RECURRING DEFINITIONS - MANAGEMENT
    # =============================================================================

    def get_recurring_definitions(self, user_id):
        """All definitions (active and inactive), newest first."""
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                RECURRING_SELECT + " WHERE r.user_id = ? ORDER BY r.created_at DESC, r.recurring_id DESC",
                (user_id,),
            )
            return [RecurringDefinition.from_row(row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def get_recurring_definition(self, user_id, recurring_id):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                RECURRING_SELECT + " WHERE r.user_id = ? AND r.recurring_id = ?",
                (user_id, recurring_id),
            )
            row = cursor.fetchone()
            return RecurringDefinition.from_row(row) if row else None
        finally:
            cursor.close()
            conn.close()

    def _clean_recurring(self, type_, amount, frequency, day_of_month):
        type_ = self._parse_type(type_)
        value = self._parse_amount(amount)
        if frequency not in FREQUENCIES:
            raise ValueError("Frequency must be 'monthly' or 'weekly'.")
        day = self._parse_day_of_month(day_of_month) if frequency == MONTHLY else None
        return type_, value, day

    def add_recurring_definition(self, user_id, type_, amount, frequency, category_id=None,
                                 description=None, day_of_month=1):
        """
        Create a recurring income/expense definition.

        Args:
            user_id (int): Owner
            type_ (str): 'income' or 'expense'
            amount: Positive amount
            frequency (str): 'monthly' or 'weekly'
            category_id (int, optional): Category of the same type, None for uncategorized
            description (str, optional): Free text
            day_of_month (int): 1-31, monthly only (default 1)

        Returns:
            tuple: (success bool, message str, recurring_id int or None)
        """
        try:
            type_, value, day = self._clean_recurring(type_, amount, frequency, day_of_month)
        except ValueError as e:
            return False, str(e), None

        try:
            with self.atomic() as cursor:
                error = self._validate_category(cursor, user_id, category_id, type_)
                if error:
                    return False, error, None
                cursor.execute(
                    """INSERT INTO recurring_transactions
                       (user_id, type, amount, category_id, description, frequency, day_of_month)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (user_id, type_, self._to_money_str(value), category_id,
                     self._clean_text(description), frequency, day),
                )
                recurring_id = cursor.lastrowid
            return True, "Recurring transaction added.", recurring_id
        except sqlite3.Error as e:
            return False, f"An error occurred: {e}", None

    def edit_recurring_definition(self, user_id, recurring_id, type_, amount, frequency, category_id=None,
                                  description=None, day_of_month=1):
        """Update the user-editable fields; is_active and last_generated are left alone."""
        try:
            type_, value, day = self._clean_recurring(type_, amount, frequency, day_of_month)
        except ValueError as e:
            return False, str(e)

        try:
            with self.atomic() as cursor:
                error = self._validate_category(cursor, user_id, category_id, type_)
                if error:
                    return False, error
                cursor.execute(
                    """UPDATE recurring_transactions
                       SET type = ?, amount = ?, category_id = ?, description = ?, frequency = ?, day_of_month = ?
                       WHERE recurring_id = ? AND user_id = ?""",
                    (type_, self._to_money_str(value), category_id, self._clean_text(description),
                     frequency, day, recurring_id, user_id),
                )
                if cursor.rowcount == 0:
                    return False, "Recurring transaction not found."
            return True, "Recurring transaction updated."
        except sqlite3.Error as e:
            return False, f"An error occurred: {e}"

    def set_recurring_active(self, user_id, recurring_id, is_active):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "UPDATE recurring_transactions SET is_active = ? WHERE recurring_id = ? AND user_id = ?",
                (1 if is_active else 0, recurring_id, user_id),
            )
            if cursor.rowcount == 0:
                return False, "Recurring transaction not found."
            conn.commit()
            return True, "Recurring transaction activated." if is_active else "Recurring transaction paused."
        except sqlite3.Error as e:
            conn.rollback()
            return False, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    def delete_recurring_definition(self, user_id, recurring_id):
        """Delete a definition; transactions it already generated stay in the ledger."""
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "DELETE FROM recurring_transactions WHERE recurring_id = ? AND user_id = ?",
                (recurring_id, user_id),
            )
            if cursor.rowcount == 0:
                return False, "Recurring transaction not found."
            conn.commit()
            return True, "Recurring transaction deleted."
        except sqlite3.Error as e:
            conn.rollback()
            return False, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    # =============================================================================
    # DASHBOARD & REPORTS
    # =============================================================================

    def get_dashboard(self, user_id, year, month, currency_symbol='$'):
        """Month summary: totals, counts, recent transactions, category breakdown."""
        transactions = self.get_month_transactions(user_id, year, month)
        totals = reports.totals(transactions)
        return {
            'year': year,
            'month': month,
            'totals': totals,
            'counts': reports.count_by_type(transactions),
            'recent': [t.to_dict() for t in reports.recent(transactions)],
            'category_breakdown': reports.category_breakdown(transactions),
            'formatted': {'totals': reports.format_totals(totals, currency_symbol)},
        }

    def get_yearly_report(self, user_id, year, today=None, category_id=None, compare_month=None,
                          currency_symbol='$'):
        """
        Yearly report data.

        Args:
            user_id (int): Owner
            year (int): Report year
            today (date, optional): Anchor for the 6-month category trend
            category_id (int, optional): Category for the trend section
            compare_month (int, optional): 1-12, month compared with the one before
                (defaults to today's month)
            currency_symbol (str): Symbol for the display strings under 'formatted'

        Returns:
            dict: monthly, totals, chart_max, comparison, formatted and (with
            category_id) trend
        """
        today = today or datetime.date.today()
        compare_month = compare_month or today.month

        year_rows = self.get_transactions(user_id, datetime.date(year, 1, 1), datetime.date(year + 1, 1, 1))
        months = reports.monthly_breakdown(year_rows)

        prev_year, prev_month = reports.shift_month(year, compare_month, -1)
        _, compare_end = reports.month_bounds(year, compare_month)
        comparison_rows = self.get_transactions(
            user_id, datetime.date(prev_year, prev_month, 1), compare_end,
        )

        yearly_totals = reports.yearly_totals(months)
        comparison = reports.month_comparison(comparison_rows, year, compare_month)
        report = {
            'year': year,
            'monthly': months,
            'totals': yearly_totals,
            'chart_max': reports.chart_max(months),
            'comparison': comparison,
            'formatted': {
                'totals': reports.format_totals(yearly_totals, currency_symbol),
                'comparison': reports.format_comparison(comparison, currency_symbol),
            },
        }

        if category_id is not None:
            first_year, first_month = reports.shift_month(today.year, today.month, -(reports.TREND_MONTHS - 1))
            _, trend_end = reports.month_bounds(today.year, today.month)
            trend_rows = self.get_transactions(user_id, datetime.date(first_year, first_month, 1), trend_end)
            trend = reports.category_trend(trend_rows, category_id, today)
            summary = reports.trend_summary(trend)
            report['category_trend'] = {
                'category_id': category_id,
                'points': trend,
                **summary,
            }
            report['formatted']['category_trend'] = {
                'average': reports.format_currency(summary['average'], currency_symbol),
                'max': reports.format_currency(summary['max'], currency_symbol),
            }

        return report
