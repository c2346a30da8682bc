"""Flask extensions shared across Planner."""

from pathlib import Path

from flask import jsonify
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# Sync code keeps using rows after commit, so attributes must not expire
db = SQLAlchemy(session_options={"expire_on_commit": False})
migrate = Migrate()
jwt = JWTManager()
# RATELIMIT_ENABLED / RATELIMIT_DEFAULT / RATELIMIT_STORAGE_URI come from app config
limiter = Limiter(key_func=get_remote_address)


@jwt.unauthorized_loader
def _missing_token(reason: str):
    return jsonify({"ok": False, "error": "unauthorized"}), 401


@jwt.invalid_token_loader
def _invalid_token(reason: str):
    return jsonify({"ok": False, "error": "invalid_token"}), 401


@jwt.expired_token_loader
def _expired_token(jwt_header, jwt_payload):
    return jsonify({"ok": False, "error": "token_expired"}), 401


def init_extensions(app) -> None:
    """Bind the database, migrations, JWT and rate limiter to ``app``."""
    db.init_app(app)
    migrate.init_app(app, db, directory=str(MIGRATIONS_DIR))
    jwt.init_app(app)
    limiter.init_app(app)
