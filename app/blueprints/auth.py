"""Auth blueprint — /auth/*

JSON registration, login, logout. One account is one tenant.

Signing in opens the tenant's AppState (loads the project and leads,
starts polling); signing out tears it down.

Route Map:
  POST /auth/register — create account + sign in
  POST /auth/login    — sign in
  POST /auth/logout   — sign out
  GET  /auth/me       — current account
  GET  /auth/csrf     — CSRF token for the X-CSRFToken header
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash, generate_password_hash

from app.extensions import db, limiter
from app.models.user import User
from app.services.app_state import get_registry

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

logger = logging.getLogger(__name__)


def _payload():
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _account(user, state=None):
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "has_onboarded": bool(state and state.has_onboarded),
    }


@auth_bp.route("/register", methods=["POST"])
@limiter.limit("10 per minute")
def register():
    """Create an account and sign in."""
    data = _payload()
    email = (data.get("email") or "").lower().strip()
    password = data.get("password") or ""
    full_name = (data.get("full_name") or "").strip()

    # --- Validation ---
    errors = []
    if not email:
        errors.append("Email is required.")
    if not password:
        errors.append("Password is required.")
    elif len(password) < 8:
        errors.append("Password must be at least 8 characters.")
    if email and User.query.filter_by(email=email).first():
        errors.append("An account with this email already exists.")

    if errors:
        return jsonify(ok=False, error=" ".join(errors)), 422

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        full_name=full_name or None,
    )
    db.session.add(user)
    db.session.commit()

    login_user(user)
    state = get_registry().open(user.id, email=user.email)
    logger.info(f"Registered {email} (tenant {user.id})")

    return jsonify(ok=True, user=_account(user, state)), 201


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    data = _payload()
    email = (data.get("email") or "").lower().strip()
    password = data.get("password") or ""

    user = User.query.filter_by(email=email).first()
    if user is None or not check_password_hash(user.password_hash, password):
        return jsonify(ok=False, error="Invalid email or password."), 401
    if not user.is_active:
        return jsonify(ok=False, error="This account has been deactivated."), 403

    login_user(user, remember=bool(data.get("remember")))
    state = get_registry().open(user.id, email=user.email)
    state.add_toast(f"Welcome back, {user.email}", "success")

    return jsonify(ok=True, user=_account(user, state)), 200


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    get_registry().close(current_user.id)
    logout_user()
    return jsonify(ok=True), 200


@auth_bp.route("/me")
@login_required
def me():
    state = get_registry().get(current_user.id)
    return jsonify(ok=True, user=_account(current_user, state)), 200


@auth_bp.route("/csrf")
def csrf_token():
    """Token the SPA echoes back on every mutating /auth and /api call."""
    return jsonify(ok=True, csrf_token=generate_csrf()), 200
