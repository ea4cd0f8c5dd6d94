from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash

from app.core.models import User

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.post("/login")
def login_post():
    body = request.get_json(silent=True) if request.is_json else request.form
    body = body or {}
    email = str(body.get("email", "")).strip().lower()
    password = str(body.get("password", ""))
    user = User.query.filter_by(email=email).first()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        logger.info("Failed login for %s", email or "(empty)")
        return jsonify({"success": False, "error": "invalid_credentials", "message": "Invalid email or password"}), 401
    login_user(user)
    return jsonify({"success": True, "user": user.to_dict()})


@auth_bp.get("/me")
@login_required
def me():
    return jsonify({"success": True, "user": current_user.to_dict()})


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})
