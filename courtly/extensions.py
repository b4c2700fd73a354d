"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask import jsonify
from sqlalchemy import event
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # No global limit; limits are set per route
    storage_uri="memory://",
)


def configure_sqlite_transactions(engine):
    """Make every SQLite transaction take the write lock at BEGIN.

    pysqlite defers BEGIN until the first INSERT or UPDATE, so the reads of a
    read-check-write would run outside the transaction and SELECT ... FOR
    UPDATE is a no-op on SQLite. With the driver's own transaction handling
    switched off, each transaction starts with BEGIN IMMEDIATE and concurrent
    writers queue behind it (SQLAlchemy's pysqlite recipe).
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


@login_manager.user_loader
def load_user(user_id):
    """Load user by ID from session. Imports lazily to avoid circular deps."""
    from courtly.models.user import User

    return db.session.get(User, user_id)


@login_manager.request_loader
def load_user_from_request(request):
    """Resolve `Authorization: Bearer <token>` to an active user."""
    from courtly.services.auth_service import user_from_authorization_header

    return user_from_authorization_header(request.headers.get("Authorization"))


@login_manager.unauthorized_handler
def unauthorized():
    """API callers get a JSON 401 instead of a login redirect."""
    return jsonify({"error": "Authentication required."}), 401
