# routes/auth.py
from __future__ import annotations

import time
import jwt
from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import OperationalError

from db import db
from models.user import User, ROLES

from auth_guard import require_role, issue_token, user_from_token

__all__ = ["auth_bp"]
auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _user_json(u: User) -> dict:
    return {"id": u.id, "username": u.username, "role": u.role}


def _optional_caller() -> User | None:
    """The bearer-token user if one was sent; registration works without."""
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    try:
        return user_from_token(auth.split(" ", 1)[1])
    except jwt.InvalidTokenError:
        return None


# -------------------------------------------------------------------
# Middleware
# -------------------------------------------------------------------
@auth_bp.after_request
def add_no_store(resp):
    resp.headers["Cache-Control"] = "no-store"
    return resp


# -------------------------------------------------------------------
# Health
# -------------------------------------------------------------------
@auth_bp.route("/ping", methods=["GET"])
def ping():
    return jsonify(ok=True, ts=time.time()), 200


# -------------------------------------------------------------------
# Register
# -------------------------------------------------------------------
@auth_bp.route("/register", methods=["POST"])
def register():
    """
    Body: { username, password, role? }
    Self-registration yields a viewer. An admin caller may pick any role.
    The very first account on an empty database becomes admin.
    """
    data = request.get_json(silent=True) or {}
    username = str(data.get("username") or "").strip()
    password = str(data.get("password") or "")
    if not username or not password:
        return jsonify(error="Missing username or password"), 400
    if len(password) < 6:
        return jsonify(error="Password must be at least 6 characters"), 400

    requested = str(data.get("role") or "").strip().lower() or None
    if requested and requested not in ROLES:
        return jsonify(error=f"role must be one of: {', '.join(ROLES)}"), 400

    caller = _optional_caller()
    first_user = User.query.count() == 0
    if first_user:
        role = "admin"
    elif caller and caller.is_admin and requested:
        role = requested
    elif requested == "admin":
        return jsonify(error="Only admins can create admin users"), 403
    else:
        role = "viewer"

    if User.query.filter_by(username=username).first():
        return jsonify(error="Username already exists"), 409

    user = User(username=username, role=role)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    current_app.logger.info("[auth] registered uid=%s user=%s role=%s", user.id, user.username, role)

    return jsonify(
        message="Registration successful",
        token=issue_token(user),
        user=_user_json(user),
    ), 201


# -------------------------------------------------------------------
# Login / logout
# -------------------------------------------------------------------
@auth_bp.route("/login", methods=["POST"])
def login():
    """Sign in a user and return a JWT."""
    data = request.get_json(silent=True) or {}
    if "username" not in data or "password" not in data:
        return jsonify(error="Missing username or password"), 400

    def _get_user():
        return User.query.filter_by(username=str(data["username"]).strip()).first()

    # One-time retry if DB connection dropped
    try:
        user = _get_user()
    except OperationalError as e:
        current_app.logger.warning("[auth] DB connection dropped; retrying once: %s", e)
        db.session.remove()
        db.engine.dispose()
        user = _get_user()

    if not (user and user.check_password(str(data["password"]))):
        current_app.logger.info("[auth] login failed user=%s ip=%s", data.get("username"), request.remote_addr)
        return jsonify(error="Invalid username or password"), 401

    return jsonify(
        message="Login successful",
        token=issue_token(user),
        user=_user_json(user),
    ), 200


@auth_bp.route("/logout", methods=["POST"])
@require_role()
def logout():
    # Tokens are stateless; the client drops its copy.
    current_app.logger.info("[auth] logout uid=%s", g.user.id)
    return jsonify(message="Logout successful"), 200


# -------------------------------------------------------------------
# Me / verify
# -------------------------------------------------------------------
@auth_bp.route("/me", methods=["GET"])
@require_role()
def me():
    u = g.user
    return jsonify({**_user_json(u), "created_at": u.created_at.isoformat() if u.created_at else None}), 200


@auth_bp.route("/verify-token", methods=["GET"])
def verify_token():
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return jsonify(error="No token provided"), 401

    token = auth_header.split(" ", 1)[1]
    try:
        user = user_from_token(token)
        if not user:
            return jsonify(error="User not found"), 401
        return jsonify(valid=True, user=_user_json(user)), 200
    except jwt.ExpiredSignatureError:
        return jsonify(error="Token has expired"), 401
    except jwt.InvalidTokenError:
        return jsonify(error="Invalid token"), 401
