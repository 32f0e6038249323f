"""
CSI Portal
Auth blueprint — login, logout, token refresh, CSRF token.

Endpoints:
    POST /api/v1/auth/login        — username + password → token pair
    POST /api/v1/auth/logout       — invalidate the current session
    POST /api/v1/auth/refresh      — refresh token → new token pair
    GET  /api/v1/auth/validate     — is the bearer token still valid?
    GET  /api/v1/auth/me           — current user profile
    GET  /api/v1/auth/csrf-token   — issue a single-use CSRF token
"""

import logging

from flask import Blueprint, g

from csi_portal.blueprints import json_body
from csi_portal.middleware.csrf import CSRF_HEADER, issue_csrf_token
from csi_portal.middleware.permission_required import require_auth
from csi_portal.services import auth_service
from csi_portal.utils.errors import api_ok
from csi_portal.utils.helpers import client_ip, user_agent

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


@auth_bp.route("/login", methods=["POST"])
def login():
    data = json_body()
    result = auth_service.login(
        data.get("username"), data.get("password"),
        ip_address=client_ip(), user_agent=user_agent(),
    )
    return api_ok(result)


@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    auth_service.logout(g.token, g.current_user)
    return api_ok({"message": "Logged out successfully"})


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    data = json_body()
    return api_ok(auth_service.refresh(data.get("refresh_token")))


@auth_bp.route("/validate", methods=["GET"])
@require_auth
def validate():
    return api_ok({"valid": True, "user": auth_service.user_info(g.current_user)})


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    return api_ok(g.current_user.to_dict())


@auth_bp.route("/csrf-token", methods=["GET"])
@require_auth
def csrf_token():
    token = issue_csrf_token(g.current_user.id)
    response, status = api_ok({"csrf_token": token})
    response.headers[CSRF_HEADER] = token
    return response, status
