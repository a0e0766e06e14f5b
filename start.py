#!/usr/bin/env python3
"""
Pharma Books - Simple Launcher

This script handles:
1. Python version check (requires 3.9+)
2. Dependency verification
3. Database setup (creates if missing)
4. Migration runner (applies pending migrations)
5. Flask server startup

Usage:
    python start.py
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))


# =============================================================================
# STARTUP CHECKS
# =============================================================================


def check_python_version():
    """Verify Python 3.9+ is installed"""
    print("[1/5] Checking Python version...", end=" ")

    if sys.version_info < (3, 9):
        print("[ERROR]")
        print()
        print("=" * 60)
        print("ERROR: Python 3.9 or higher is required")
        print("=" * 60)
        print(f"You are using Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")
        print()
        sys.exit(1)

    print(f"[OK] Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")


def check_dependencies():
    """Verify required packages are installed"""
    print("[2/5] Checking dependencies...", end=" ")

    missing = []
    required = {
        'flask': 'Flask',
        'flask_cors': 'Flask-CORS',
        'flask_login': 'Flask-Login',
        'bcrypt': 'bcrypt',
        'dotenv': 'python-dotenv',
        'faker': 'Faker',
    }

    for module, package in required.items():
        try:
            __import__(module)
        except ImportError:
            missing.append(package)

    if missing:
        print("[ERROR]")
        print()
        print("=" * 60)
        print("ERROR: Missing required packages")
        print("=" * 60)
        print()
        print("Missing packages:")
        for pkg in missing:
            print(f"  - {pkg}")
        print()
        print("To install all dependencies, run:")
        print("  pip install -e .")
        print()
        sys.exit(1)

    print("[OK]")


def setup_database(settings):
    """Create the database on first run, then apply pending migrations"""
    from pharmabooks.migration_runner import run_all_pending
    from pharmabooks.setup_sqlite import create_database

    db_path = Path(settings['DATABASE_PATH'])

    if db_path.exists():
        print("[3/5] Database found...", end=" ")
        print("[OK]")
    else:
        print("[3/5] Database not found...")
        print("      Creating new database...", end=" ")
        if create_database(db_path):
            print("[OK]")
        else:
            print("[ERROR]")
            print()
            print("Failed to create database. Check error messages above.")
            sys.exit(1)

    print("[4/5] Checking for migrations...", end=" ")
    applied = run_all_pending(db_path)
    if applied > 0:
        print(f"[OK] Applied {applied} migration(s)")
    else:
        print("[OK] No pending migrations")


def start_flask_server(settings):
    """Launch the Flask API server"""
    from pharmabooks.api import create_app

    host, port = settings['HOST'], settings['PORT']

    print("[5/5] Starting Pharma Books server...")
    print()
    print("=" * 60)
    print("Pharma Books is running!")
    print("=" * 60)
    print()
    print(f"  API: http://{host}:{port}/api")
    print("  Press Ctrl+C to stop the server")
    print()

    app = create_app()
    app.run(debug=False, host=host, port=port, use_reloader=False)


def main():
    """Main entry point"""
    print()
    print("=" * 60)
    print("Pharma Books - Pharmacy Bookkeeping")
    print("=" * 60)
    print()

    try:
        check_python_version()
        check_dependencies()

        from pharmabooks.config import load_settings
        settings = load_settings()

        setup_database(settings)
        start_flask_server(settings)
    except KeyboardInterrupt:
        print()
        print()
        print("=" * 60)
        print("Server stopped. Thank you for using Pharma Books!")
        print("=" * 60)
        print()


if __name__ == "__main__":
    main()
