"""
Pharma Books - SQLite Database Setup & Initialization

This module creates and initializes the Pharma Books SQLite database schema.

Database Schema Overview:
------------------------
- users: User authentication
- categories: Per-user income/expense categories
- recurring_transactions: Recurring income/expense definitions
- transactions: The ledger (manual entries and generated recurring entries)
- schema_version: Track applied database migrations

Key Design Features:
- Foreign key constraints for referential integrity
- Cascade deletes for user data (complete user removal)
- A category still referenced by ledger transactions cannot be deleted
- TEXT storage for monetary values (preserves exact precision)
- UNIQUE(recurring_id, period_key) on the ledger: a recurring definition can
  fill each period at most once

License: MIT
"""

import logging
import sqlite3
from pathlib import Path

from .config import load_settings

logger = logging.getLogger(__name__)

EXPECTED_TABLES = [
    'users',
    'categories',
    'recurring_transactions',
    'transactions',
    'schema_version',
]

SCHEMA = [
    ('users', """
        CREATE TABLE IF NOT EXISTS users (
            user_id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            is_demo INTEGER NOT NULL DEFAULT 0,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """),
    ('categories', """
        CREATE TABLE IF NOT EXISTS categories (
            category_id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            type TEXT CHECK(type IN ('income', 'expense')) NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
            UNIQUE(user_id, name, type)
        )
    """),
    ('recurring_transactions', """
        CREATE TABLE IF NOT EXISTS recurring_transactions (
            recurring_id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            type TEXT CHECK(type IN ('income', 'expense')) NOT NULL,
            amount TEXT NOT NULL,
            category_id INTEGER DEFAULT NULL,
            description TEXT DEFAULT NULL,
            frequency TEXT CHECK(frequency IN ('monthly', 'weekly')) NOT NULL,
            day_of_month INTEGER DEFAULT 1 CHECK(day_of_month IS NULL OR day_of_month BETWEEN 1 AND 31),
            is_active INTEGER NOT NULL DEFAULT 1,
            last_generated TEXT DEFAULT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
            FOREIGN KEY (category_id) REFERENCES categories(category_id) ON DELETE SET NULL
        )
    """),
    ('transactions', """
        CREATE TABLE IF NOT EXISTS transactions (
            transaction_id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            transaction_date TEXT NOT NULL,
            amount TEXT NOT NULL,
            type TEXT CHECK(type IN ('income', 'expense')) NOT NULL,
            category_id INTEGER DEFAULT NULL,
            description TEXT DEFAULT NULL,
            recurring_id INTEGER DEFAULT NULL,
            period_key TEXT DEFAULT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
            FOREIGN KEY (category_id) REFERENCES categories(category_id),
            FOREIGN KEY (recurring_id) REFERENCES recurring_transactions(recurring_id) ON DELETE SET NULL,
            UNIQUE(recurring_id, period_key)
        )
    """),
    ('schema_version', """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            description TEXT NOT NULL,
            applied_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """),
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_categories_user_id ON categories(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_recurring_user_id ON recurring_transactions(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_transactions_user_date ON transactions(user_id, transaction_date DESC);",
    "CREATE INDEX IF NOT EXISTS idx_transactions_category ON transactions(category_id);",
]


def get_db_path():
    """Return the configured path to the SQLite database file"""
    return Path(load_settings()['DATABASE_PATH'])


def connect(db_path=None):
    """Open a connection with foreign keys on and Row access."""
    db_path = Path(db_path or get_db_path())
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.row_factory = sqlite3.Row
    return conn


def create_database(db_path=None):
    """
    Create the Pharma Books schema. Safe to call on an existing database:
    every statement is CREATE ... IF NOT EXISTS.

    Returns:
        bool: True on success, False if SQLite reported an error.
    """
    db_path = Path(db_path or get_db_path())
    conn = connect(db_path)
    cursor = conn.cursor()

    logger.info("[SETUP] Creating Pharma Books database at %s", db_path)
    try:
        for table, ddl in SCHEMA:
            cursor.execute(ddl)
            logger.debug("[SETUP] Table '%s' OK", table)
        for ddl in INDEXES:
            cursor.execute(ddl)

        conn.commit()
        return True

    except sqlite3.Error as err:
        logger.error("[SETUP] Error creating database: %s", err)
        conn.rollback()
        return False

    finally:
        cursor.close()
        conn.close()


def reset_database(db_path=None):
    """
    DANGER: Delete the existing database and create a fresh one.
    All data will be permanently lost!
    """
    db_path = Path(db_path or get_db_path())

    if db_path.exists():
        logger.warning("[SETUP] Deleting existing database at %s", db_path)
        db_path.unlink()

    return create_database(db_path)


def verify_schema(db_path=None):
    """Return True if every expected table exists and foreign keys are enforced."""
    db_path = Path(db_path or get_db_path())

    if not db_path.exists():
        logger.error("[SETUP] Database does not exist: %s", db_path)
        return False

    conn = connect(db_path)
    try:
        for table in EXPECTED_TABLES:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
            ).fetchone()
            if not row:
                logger.error("[SETUP] Table '%s' MISSING", table)
                return False

        fk_status = conn.execute("PRAGMA foreign_keys;").fetchone()[0]
        if not fk_status:
            logger.warning("[SETUP] Foreign key enforcement is DISABLED")
        return bool(fk_status)
    finally:
        conn.close()


if __name__ == "__main__":
    print("=" * 80)
    print("Pharma Books - SQLite Database Setup")
    print("=" * 80)
    print()

    path = get_db_path()

    if path.exists():
        print(f"Database already exists at: {path}")
        print()
        choice = input("Choose an option:\n  1. Verify existing schema\n  2. Reset database ([WARNING]  DELETES ALL DATA)\n  3. Cancel\n\nChoice: ")

        if choice == '1':
            print("[OK] Schema verified" if verify_schema() else "[ERROR] Schema verification failed")
        elif choice == '2':
            confirm = input("\n[WARNING]  WARNING: This will DELETE ALL DATA. Type 'DELETE' to confirm: ")
            if confirm == 'DELETE':
                reset_database()
                print("[OK] Database reset")
            else:
                print("Reset cancelled.")
        else:
            print("Cancelled.")
    else:
        print("No existing database found. Creating new database...")
        create_database()
        print("[OK] Schema verified" if verify_schema() else "[ERROR] Schema verification failed")
