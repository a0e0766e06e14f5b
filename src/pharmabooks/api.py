"""
Pharma Books - Flask REST API

This module provides a RESTful API for the Pharma Books pharmacy bookkeeping
application. It uses Flask with Flask-Login for session-based authentication
and serves endpoints for:

Authentication:
- User registration, login (runs the session's recurring check), demo login
- Session management with cookies

Bookkeeping:
- Income/expense categories
- Ledger transactions by month
- Recurring transaction definitions

Analytics:
- Monthly dashboard
- Yearly report with category trend and month comparison

Security:
- Flask-Login for session management
- User data segregation (all endpoints pass current_user's id to the engine)
- CORS enabled for cross-origin requests (web interface)
- bcrypt password hashing (handled by engine)

License: MIT
"""

import datetime
import logging
import uuid
from decimal import Decimal

from flask import Flask, jsonify, request, session
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from flask_login import current_user, login_required

from . import reports
from .config import configure_logging, load_settings
from .demo_data import generate_demo_data
from .engine import BooksEngine
from .migration_runner import run_all_pending
from .models import parse_date
from .session_controller import DEMO_SESSION_KEY, SessionController
from .setup_sqlite import create_database

logger = logging.getLogger(__name__)


class CustomJSONProvider(DefaultJSONProvider):
    """
    JSON provider for Decimal and date objects.

    Converts:
    - Decimal to float
    - datetime/date to ISO 8601
    """

    @staticmethod
    def default(obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, (datetime.datetime, datetime.date)):
            return obj.isoformat()
        return DefaultJSONProvider.default(obj)


def status_for(message):
    """Map an engine failure message to an HTTP status code."""
    lowered = message.lower()
    if lowered.startswith("an error occurred"):
        return 500
    if "not found" in lowered:
        return 404
    if "already exists" in lowered or "in use" in lowered:
        return 409
    return 400


def fail(message, status_code=None):
    return jsonify({"success": False, "message": message}), status_code or status_for(message)


def period_error(year, month=None):
    """Validation message for a report year/month, or None when usable."""
    if not reports.MIN_YEAR <= year <= reports.MAX_YEAR:
        return f"Year must be between {reports.MIN_YEAR} and {reports.MAX_YEAR}."
    if month is not None and not 1 <= month <= 12:
        return "Month must be between 1 and 12."
    return None


def client_clock(client_date):
    """
    Clock for the recurring check: the client's local date when it sent a
    valid one, otherwise the server date.
    """
    try:
        parsed = parse_date(client_date)
    except (TypeError, ValueError):
        logger.warning("[LOGIN] Ignoring invalid client_date %r", client_date)
        parsed = None
    if parsed is None:
        return datetime.date.today
    return lambda: parsed


def _cors_origins(value):
    if not value or value.strip() == '*':
        return '*'
    return [origin.strip() for origin in value.split(',') if origin.strip()]


def _optional_int(value):
    if value is None or value == '':
        return None
    return int(value)


def create_app(overrides=None):
    """
    Build the Flask application.

    Args:
        overrides (dict, optional): Settings that win over the environment,
            e.g. {'DATABASE_PATH': '/tmp/test.db'}.

    Returns:
        Flask: The configured application
    """
    settings = load_settings(overrides)
    configure_logging(settings['LOG_LEVEL'])

    app = Flask(__name__)
    app.json = CustomJSONProvider(app)
    app.config['SECRET_KEY'] = settings['SECRET_KEY']
    app.config['PHARMABOOKS'] = settings

    # Enable CORS for web interface (allows requests from different origins)
    CORS(app, supports_credentials=True, origins=_cors_origins(settings['CORS_ORIGINS']))

    db_path = settings['DATABASE_PATH']
    if not create_database(db_path):
        raise RuntimeError(f"Could not create database at {db_path}")
    applied = run_all_pending(db_path)
    if applied:
        logger.info("[SETUP] Applied %d migration(s)", applied)

    engine = BooksEngine(db_path)
    session_ctrl = SessionController(app, engine, settings)
    app.extensions['pharmabooks_engine'] = engine

    min_password_length = settings['MIN_PASSWORD_LENGTH']

    def user_id():
        return current_user.user_id

    def check_payload():
        check = session_ctrl.recurring_check(user_id())
        return {
            "state": check.state,
            "checked": check.checked,
            "generated_count": check.generated_count,
        }

    # --- AUTHENTICATION API ROUTES ---

    @app.route('/api/register', methods=['POST'])
    def register_user_api():
        data = request.get_json(silent=True) or {}
        username = (data.get('username') or '').strip()
        password = data.get('password') or ''
        if not username or len(password) < min_password_length:
            return fail(f"Username and a password of at least {min_password_length} characters are required.", 400)

        success, message, new_user_id = engine.register_user(username, password)
        if not success:
            return fail(message, 409 if "exists" in message else 500)

        session_ctrl.login({'user_id': new_user_id, 'username': username})
        return jsonify({"success": True, "message": message, "user_id": new_user_id}), 201

    @app.route('/api/login', methods=['POST'])
    def login_user_api():
        data = request.get_json(silent=True) or {}
        username = data.get('username')
        password = data.get('password')
        if not all([username, password]):
            return fail("Username and password are required.", 400)

        user_data, message = engine.login_user(username, password)
        if not user_data:
            return fail(message, 500 if message.startswith("An error occurred") else 401)

        user = session_ctrl.login(user_data)
        # Runs once per session; client_date keeps the check on the user's local day
        check = session_ctrl.run_recurring_check(user.user_id, clock=client_clock(data.get('client_date')))
        logger.info("[LOGIN] User %s signed in, %d recurring transaction(s) generated", user.id, check.generated_count)
        return jsonify({"success": True, "message": message, "generated_count": check.generated_count})

    @app.route('/api/demo_login', methods=['POST'])
    def demo_login():
        """
        Create a demo user for the current session with pre-populated data.
        Demo data is deleted on logout or on the next demo login.
        """
        old_demo_user_id = session.get(DEMO_SESSION_KEY)
        if old_demo_user_id:
            success, message = engine.delete_user(old_demo_user_id)
            logger.info("[DEMO] Cleaned up old demo user %s: %s", old_demo_user_id, message)
            session.pop(DEMO_SESSION_KEY, None)

        data = request.get_json(silent=True) or {}
        clock = client_clock(data.get('client_date'))

        demo_username = f"demo_{uuid.uuid4().hex[:8]}"
        success, message, new_user_id = engine.register_user(demo_username, uuid.uuid4().hex, is_demo=True)
        if not success:
            return fail("Failed to create demo user.", 500)

        demo_info = generate_demo_data(engine, new_user_id, today=clock())

        user = session_ctrl.login({'user_id': new_user_id, 'username': demo_username, 'is_demo': True})
        session[DEMO_SESSION_KEY] = new_user_id
        check = session_ctrl.run_recurring_check(user.user_id, clock=clock)

        return jsonify({
            "success": True,
            "message": "Welcome to the Pharma Books demo!",
            "demo_info": demo_info,
            "generated_count": check.generated_count,
        })

    @app.route('/api/logout', methods=['POST'])
    @login_required
    def logout():
        if current_user.is_demo:
            success, message = engine.delete_user(user_id())
            if not success:
                logger.error("[DEMO] Could not delete demo user %s: %s", current_user.id, message)
        session_ctrl.logout()
        return jsonify({"success": True, "message": "You have been logged out."})

    @app.route('/api/change_password', methods=['POST'])
    @login_required
    def change_password():
        data = request.get_json(silent=True) or {}
        current_password = data.get('current_password')
        new_password = data.get('new_password')
        if not all([current_password, new_password]):
            return fail("Current password and new password are required.", 400)

        success, message = engine.change_password(
            user_id(), current_password, new_password, min_length=min_password_length,
        )
        if success:
            return jsonify({"success": True, "message": message})
        return fail(message)

    @app.route('/api/check_session', methods=['GET'])
    @login_required
    def check_session():
        return jsonify({
            "logged_in": True,
            "user_id": user_id(),
            "username": current_user.username,
            "is_demo": current_user.is_demo,
            "recurring_check": check_payload(),
        })

    # --- RECURRING CHECK ---

    @app.route('/api/recurring/check', methods=['GET', 'POST'])
    @login_required
    def recurring_check_api():
        if request.method == 'POST':
            data = request.get_json(silent=True) or {}
            session_ctrl.run_recurring_check(user_id(), clock=client_clock(data.get('client_date')))
        return jsonify(check_payload())

    # --- CATEGORIES ---

    @app.route('/api/categories', methods=['GET'])
    @login_required
    def get_categories_api():
        type_ = request.args.get('type')
        return jsonify([c.to_dict() for c in engine.get_categories(user_id(), type_=type_)])

    @app.route('/api/categories', methods=['POST'])
    @login_required
    def add_category_api():
        data = request.get_json(silent=True) or {}
        success, message, category = engine.add_category(user_id(), data.get('name'), data.get('type'))
        if success:
            return jsonify({"success": True, "message": message, "category": category.to_dict()}), 201
        return fail(message)

    @app.route('/api/categories/<int:category_id>', methods=['DELETE'])
    @login_required
    def delete_category_api(category_id):
        success, message = engine.delete_category(user_id(), category_id)
        if success:
            return jsonify({"success": True, "message": message})
        return fail(message)

    # --- TRANSACTIONS ---

    @app.route('/api/transactions', methods=['GET'])
    @login_required
    def get_transactions_api():
        today = datetime.date.today()
        year = request.args.get('year', default=today.year, type=int)
        month = request.args.get('month', default=today.month, type=int)
        error = period_error(year, month)
        if error:
            return fail(error, 400)

        transactions = engine.get_month_transactions(user_id(), year, month)
        summary = reports.totals(transactions)
        return jsonify({
            "year": year,
            "month": month,
            "transactions": [t.to_dict() for t in transactions],
            "totals": summary,
        })

    @app.route('/api/transactions', methods=['POST'])
    @login_required
    def add_transaction_api():
        data = request.get_json(silent=True) or {}
        if not all([data.get('date'), data.get('amount'), data.get('type')]):
            return fail("Missing required fields: date, amount and type.", 400)
        try:
            category_id = _optional_int(data.get('category_id'))
        except (TypeError, ValueError):
            return fail("Invalid category.", 400)

        success, message, transaction_id = engine.add_transaction(
            user_id(),
            data.get('date'),
            data.get('amount'),
            data.get('type'),
            category_id=category_id,
            description=data.get('description'),
        )
        if success:
            return jsonify({"success": True, "message": message, "transaction_id": transaction_id}), 201
        return fail(message)

    @app.route('/api/transactions/<int:transaction_id>', methods=['DELETE'])
    @login_required
    def delete_transaction_api(transaction_id):
        success, message = engine.delete_transaction(user_id(), transaction_id)
        if success:
            return jsonify({"success": True, "message": message})
        return fail(message)

    # --- RECURRING DEFINITIONS ---

    def recurring_fields(data):
        return dict(
            type_=data.get('type'),
            amount=data.get('amount'),
            frequency=data.get('frequency'),
            category_id=_optional_int(data.get('category_id')),
            description=data.get('description'),
            day_of_month=data.get('day_of_month', 1),
        )

    @app.route('/api/recurring', methods=['GET'])
    @login_required
    def get_recurring_api():
        return jsonify([r.to_dict() for r in engine.get_recurring_definitions(user_id())])

    @app.route('/api/recurring', methods=['POST'])
    @login_required
    def add_recurring_api():
        data = request.get_json(silent=True) or {}
        try:
            fields = recurring_fields(data)
        except (TypeError, ValueError):
            return fail("Invalid category.", 400)

        success, message, recurring_id = engine.add_recurring_definition(user_id(), **fields)
        if success:
            return jsonify({"success": True, "message": message, "recurring_id": recurring_id}), 201
        return fail(message)

    @app.route('/api/recurring/<int:recurring_id>', methods=['PUT', 'DELETE'])
    @login_required
    def manage_recurring_api(recurring_id):
        if request.method == 'PUT':
            data = request.get_json(silent=True) or {}
            try:
                fields = recurring_fields(data)
            except (TypeError, ValueError):
                return fail("Invalid category.", 400)
            success, message = engine.edit_recurring_definition(user_id(), recurring_id, **fields)
        else:
            success, message = engine.delete_recurring_definition(user_id(), recurring_id)

        if success:
            return jsonify({"success": True, "message": message})
        return fail(message)

    @app.route('/api/recurring/<int:recurring_id>/toggle', methods=['POST'])
    @login_required
    def toggle_recurring_api(recurring_id):
        definition = engine.get_recurring_definition(user_id(), recurring_id)
        if not definition:
            return fail("Recurring transaction not found.", 404)

        data = request.get_json(silent=True) or {}
        is_active = bool(data['is_active']) if 'is_active' in data else not definition.is_active
        success, message = engine.set_recurring_active(user_id(), recurring_id, is_active)
        if success:
            return jsonify({"success": True, "message": message, "is_active": is_active})
        return fail(message)

    # --- DASHBOARD & REPORTS ---

    @app.route('/api/dashboard', methods=['GET'])
    @login_required
    def get_dashboard_api():
        today = datetime.date.today()
        year = request.args.get('year', default=today.year, type=int)
        month = request.args.get('month', default=today.month, type=int)
        error = period_error(year, month)
        if error:
            return fail(error, 400)
        return jsonify(engine.get_dashboard(
            user_id(), year, month, currency_symbol=settings['CURRENCY_SYMBOL'],
        ))

    @app.route('/api/reports/yearly', methods=['GET'])
    @login_required
    def get_yearly_report_api():
        today = datetime.date.today()
        year = request.args.get('year', default=today.year, type=int)
        category_id = request.args.get('category_id', type=int)
        compare_month = request.args.get('compare_month', type=int)
        error = period_error(year, compare_month)
        if error:
            return fail(error, 400)
        return jsonify(engine.get_yearly_report(
            user_id(), year, today=today, category_id=category_id, compare_month=compare_month,
            currency_symbol=settings['CURRENCY_SYMBOL'],
        ))

    return app
