from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app
from flask_login import current_user

from .blog import get_post_service, list_posts_page
from .content import POST_STATUSES
from .payloads import json_body, optional_id_list, optional_str, require_id, require_int, require_str, success


bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")


@bp.before_request
def require_login():
    if not current_user.is_authenticated:
        return current_app.login_manager.unauthorized()
    return None


def _post_fields() -> Dict[str, Any]:
    body = json_body()
    return {
        "title": require_str(body, "title", min_length=2, max_length=255),
        "content": require_str(body, "content", min_length=10),
        "summary": optional_str(body, "summary") or "",
        "status": require_int(body, "status", choices=POST_STATUSES),
        "category_id": require_id(body, "category_id"),
        "tag_ids": optional_id_list(body, "tag_ids"),
    }


@bp.route("/posts", methods=["POST"])
def create_post():
    # user_id comes from the token, never from the body
    post = get_post_service().create(user_id=current_user.user_id, **_post_fields())
    return success(post)


@bp.route("/posts")
def list_posts():
    return list_posts_page()


@bp.route("/posts/<int:post_id>")
def get_post(post_id: int):
    return success(get_post_service().get(post_id))


@bp.route("/posts/<int:post_id>", methods=["PUT"])
def update_post(post_id: int):
    post = get_post_service().update(post_id, **_post_fields())
    return success(post)


@bp.route("/posts/<int:post_id>", methods=["DELETE"])
def delete_post(post_id: int):
    get_post_service().delete(post_id)
    current_app.logger.info("%s deleted post %s", current_user.username, post_id)
    return success()
