from __future__ import annotations

from flask import Blueprint, g

from storefront.blueprints import json_body
from storefront.database import get_db
from storefront.responses import success_response
from storefront.security import login_required
from storefront.serializers import serialize_user
from storefront.services.auth_service import AuthService

auth_bp = Blueprint("auth", __name__, url_prefix="/api/users")


def _get_auth_service() -> AuthService:
    return AuthService(get_db())


@auth_bp.route("/register", methods=["POST"])
def register():
    user, token = _get_auth_service().register(json_body())
    return success_response({"user": serialize_user(user), "token": token}, "Registration successful", 201)


@auth_bp.route("/login", methods=["POST"])
def login():
    payload = json_body()
    user, token = _get_auth_service().login(payload.get("email"), payload.get("password"))
    return success_response({"user": serialize_user(user), "token": token}, "Login successful")


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return success_response(serialize_user(g.current_user), "User retrieved")


@auth_bp.route("/profile", methods=["PUT"])
@login_required
def update_profile():
    user = _get_auth_service().update_profile(g.current_user, json_body())
    return success_response(serialize_user(user), "Profile updated")


@auth_bp.route("/password", methods=["PUT"])
@login_required
def change_password():
    payload = json_body()
    _get_auth_service().change_password(
        g.current_user, payload.get("current_password"), payload.get("new_password")
    )
    return success_response(None, "Password updated")


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    _get_auth_service().logout(g.token_claims)
    return success_response(None, "Logged out")


@auth_bp.route("/refresh", methods=["POST"])
@login_required
def refresh():
    token = _get_auth_service().refresh(g.current_user, g.token_claims)
    return success_response({"token": token}, "Token refreshed")
