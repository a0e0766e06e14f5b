"""
Session Controller for Pharma Books
Centralized session management using Flask-Login

This module provides:
- User loader for Flask-Login (backed by BooksEngine)
- Session cookie configuration from settings
- JSON 401 responses for unauthenticated API calls
- The per-session recurring check state

Usage:
    from pharmabooks.session_controller import SessionController

    session_ctrl = SessionController(app, engine, settings)

    @app.route('/api/protected')
    @login_required
    def protected_route():
        return jsonify({"user": current_user.username})
"""

import logging

from flask import jsonify, session
from flask_login import LoginManager, UserMixin, login_user, logout_user

from .recurring import RecurringCheck

logger = logging.getLogger(__name__)

RECURRING_SESSION_KEY = 'recurring_check'
DEMO_SESSION_KEY = 'demo_user_id'


class User(UserMixin):
    """User model for Flask-Login."""

    def __init__(self, id, username, is_demo=False):
        self.id = id
        self.username = username
        self.is_demo = bool(is_demo)

    @property
    def user_id(self):
        return int(self.id)


class SessionController:
    """
    Manages user sessions and authentication for the Flask application.

    A sign-in starts a fresh recurring check for the session; the check's
    state is kept in the signed session cookie so it runs at most once per
    session.
    """

    def __init__(self, app, engine, settings):
        """
        Args:
            app: Flask application instance
            engine (BooksEngine): Engine used to load users
            settings (dict): Loaded settings (see config.load_settings)
        """
        self.app = app
        self.engine = engine
        self.login_manager = LoginManager()

        self._configure_session(settings)
        self._init_login_manager()

    def _configure_session(self, settings):
        """Configure session cookie security settings."""
        for key in ('SESSION_COOKIE_SAMESITE', 'SESSION_COOKIE_SECURE', 'SESSION_COOKIE_HTTPONLY'):
            self.app.config[key] = settings[key]

    def _init_login_manager(self):
        self.login_manager.init_app(self.app)

        @self.login_manager.user_loader
        def load_user(user_id):
            """Load user from database by ID."""
            user_data = self.engine.get_user(int(user_id))
            if user_data:
                return self.create_user_object(user_data)
            return None

        @self.login_manager.unauthorized_handler
        def unauthorized():
            return jsonify(success=False, message="Authorization required. Please log in."), 401

    @staticmethod
    def create_user_object(user_data):
        return User(
            id=str(user_data['user_id']),
            username=user_data['username'],
            is_demo=user_data.get('is_demo', False),
        )

    def login(self, user_data):
        """Log in a user and reset the session's recurring check."""
        user = self.create_user_object(user_data)
        login_user(user)
        session.pop(RECURRING_SESSION_KEY, None)
        return user

    def logout(self):
        """Log out the current user and clear the session."""
        logout_user()
        session.clear()

    # --- recurring check state ---

    def recurring_check(self, user_id, clock=None):
        """Restore this session's RecurringCheck (not started if none yet)."""
        return RecurringCheck.restore(
            self.engine, user_id, session.get(RECURRING_SESSION_KEY), clock=clock,
        )

    def run_recurring_check(self, user_id, clock=None):
        """
        Run the session's recurring check if it has not run yet.

        Returns:
            RecurringCheck: The check, in the 'checked' state
        """
        check = self.recurring_check(user_id, clock=clock)
        check.run_once()
        session[RECURRING_SESSION_KEY] = check.snapshot()
        return check


__all__ = ['SessionController', 'User']
