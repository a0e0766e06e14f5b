"""
Pharma Books - Management CLI

Usage:
    pharmabooks init-db [--reset]
    pharmabooks migrate
    pharmabooks list-migrations
    pharmabooks run-recurring --username NAME [--date YYYY-MM-DD]
    pharmabooks seed-demo --username NAME [--seed N]

Every command accepts --db PATH to work on a database other than the
configured one.
"""

import argparse
import sys

from .config import configure_logging, load_settings
from .demo_data import generate_demo_data
from .engine import BooksEngine
from .migration_runner import migration_status, run_all_pending
from .models import parse_date
from .recurring import RecurringCheck
from .setup_sqlite import create_database, reset_database, verify_schema


def _engine_for(args):
    engine = BooksEngine(args.db)
    user = engine.get_user_by_username(args.username)
    if not user:
        print(f"[ERROR] User '{args.username}' not found.")
        return engine, None
    return engine, user


def cmd_init_db(args):
    if args.reset:
        confirm = input("[WARNING] This will DELETE ALL DATA. Type 'DELETE' to confirm: ")
        if confirm != 'DELETE':
            print("Reset cancelled.")
            return 1
        ok = reset_database(args.db)
    else:
        ok = create_database(args.db)

    if ok and verify_schema(args.db):
        applied = run_all_pending(args.db)
        print(f"[OK] Database ready at {args.db} ({applied} migration(s) applied)")
        return 0
    print("[ERROR] Database setup failed. Check the log above.")
    return 1


def cmd_migrate(args):
    applied = run_all_pending(args.db)
    if applied > 0:
        print(f"[OK] Applied {applied} migration(s)")
    else:
        print("[OK] No pending migrations")
    return 0


def cmd_list_migrations(args):
    status = migration_status(args.db)
    if not status:
        print("No migration files found.")
    for version, description, applied in status:
        print(f"  {version:03d}  {'[applied]' if applied else '[pending]'}  {description}")
    return 0


def cmd_run_recurring(args):
    engine, user = _engine_for(args)
    if not user:
        return 1

    check = RecurringCheck(engine, user['user_id'], clock=(lambda: args.date) if args.date else None)
    generated = check.run_once()
    print(f"[OK] Generated {generated} recurring transaction(s) for {user['username']}")
    return 0


def cmd_seed_demo(args):
    engine, user = _engine_for(args)
    if not user:
        return 1

    info = generate_demo_data(engine, user['user_id'], seed=args.seed)
    print(f"[OK] {info['transactions_generated']} transactions and "
          f"{info['recurring_created']} recurring definitions added ({info['date_range']})")
    return 0


def build_parser(default_db=None):
    parser = argparse.ArgumentParser(prog='pharmabooks', description="Pharma Books management commands")
    parser.add_argument('--db', default=default_db, help="SQLite database path (default: configured path)")
    sub = parser.add_subparsers(dest='command', required=True)

    init_db = sub.add_parser('init-db', help="Create the database schema")
    init_db.add_argument('--reset', action='store_true', help="Delete the database first (asks to confirm)")
    init_db.set_defaults(func=cmd_init_db)

    sub.add_parser('migrate', help="Apply pending migrations").set_defaults(func=cmd_migrate)
    sub.add_parser('list-migrations', help="Show migration status").set_defaults(func=cmd_list_migrations)

    run_recurring = sub.add_parser('run-recurring', help="Generate due recurring transactions for a user")
    run_recurring.add_argument('--username', required=True)
    run_recurring.add_argument('--date', type=parse_date, help="Reference date YYYY-MM-DD (default: today)")
    run_recurring.set_defaults(func=cmd_run_recurring)

    seed_demo = sub.add_parser('seed-demo', help="Fill a user's books with demo data")
    seed_demo.add_argument('--username', required=True)
    seed_demo.add_argument('--seed', type=int, help="Random seed for reproducible data")
    seed_demo.set_defaults(func=cmd_seed_demo)

    return parser


def main(argv=None):
    settings = load_settings()
    configure_logging(settings['LOG_LEVEL'])
    args = build_parser(default_db=settings['DATABASE_PATH']).parse_args(argv)
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
