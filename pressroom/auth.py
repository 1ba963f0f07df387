from __future__ import annotations

from flask import Blueprint, current_app
from flask_login import current_user, login_required

from .identity import IdentityService
from .payloads import json_body, optional_str, require_str, success


bp = Blueprint("auth", __name__, url_prefix="/api/v1")


def get_identity_service() -> IdentityService:
    return current_app.extensions["identity"]


@bp.route("/signup", methods=["POST"])
def signup():
    body = json_body()
    username = require_str(body, "username", max_length=50)
    password = require_str(body, "password")
    nickname = optional_str(body, "nickname", max_length=50)
    email = optional_str(body, "email", max_length=100)
    get_identity_service().sign_up(username, password, nickname=nickname, email=email)
    return success()


@bp.route("/login", methods=["POST"])
def login():
    body = json_body()
    username = require_str(body, "username")
    password = require_str(body, "password")
    token = get_identity_service().login(username, password)
    return success({"token": token})


@bp.route("/me")
@login_required
def me():
    user = get_identity_service().profile(current_user.user_id)
    return success(
        {
            "user_id": user.id,
            "username": user.username,
            "nickname": user.nickname,
            "email": user.email,
            "role": user.role,
        }
    )
