"""Auth blueprint — /auth/*

Registration and login for API clients. Login returns a bearer token;
every other API route reads it through Flask-Login's request_loader.

Route Map:
  POST /auth/register — create account, returns token
  POST /auth/login    — email + password, returns token
  GET  /auth/me       — current user
"""

import logging
import re

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required
from werkzeug.security import check_password_hash, generate_password_hash

from courtly.errors import AuthError, ValidationError
from courtly.extensions import db, limiter
from courtly.models.user import User
from courtly.services.auth_service import issue_api_token

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

# Simple email regex, a sanity check only
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ──────────────────────────────────────────────
# POST /auth/register
# ──────────────────────────────────────────────

@auth_bp.route("/register", methods=["POST"])
@limiter.limit("10 per minute")
def register():
    """Create a user and return a bearer token."""
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").lower().strip()
    password = data.get("password") or ""
    full_name = (data.get("full_name") or "").strip()

    # --- Validation ---
    errors = []

    if not email:
        errors.append("Email is required.")
    elif not EMAIL_RE.match(email):
        errors.append("Email address is not valid.")
    if not password:
        errors.append("Password is required.")
    elif len(password) < 8:
        errors.append("Password must be at least 8 characters.")
    if not full_name:
        errors.append("Full name is required.")

    if email and User.query.filter_by(email=email).first():
        errors.append("An account with this email already exists.")

    if errors:
        raise ValidationError(" ".join(errors))

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        full_name=full_name,
    )
    db.session.add(user)
    db.session.commit()

    logger.info(f"Registered user {user.id}")
    return jsonify({"token": issue_api_token(user), "user": user.to_dict()}), 201


# ──────────────────────────────────────────────
# POST /auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("15 per minute")
def login():
    """Standard email + password login."""
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").lower().strip()
    password = data.get("password") or ""

    if not email or not password:
        raise ValidationError("Email and password are required.")

    user = User.query.filter_by(email=email).first()

    if user is None or not check_password_hash(user.password_hash, password):
        logger.info(f"Failed login for {email}")
        raise AuthError("Invalid email or password.")

    if not user.is_active:
        raise AuthError("Your account has been deactivated.")

    return jsonify({"token": issue_api_token(user), "user": user.to_dict()})


# ──────────────────────────────────────────────
# GET /auth/me
# ──────────────────────────────────────────────

@auth_bp.route("/me")
@login_required
def me():
    return jsonify(current_user.to_dict())
