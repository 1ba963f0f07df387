from __future__ import annotations

from flask import Blueprint, current_app

from .content import PostService
from .payloads import query_int, success


bp = Blueprint("blog", __name__, url_prefix="/api/v1")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def get_post_service() -> PostService:
    return current_app.extensions["posts"]


def list_posts_page():
    page = query_int("page", 1)
    page_size = query_int("pageSize", DEFAULT_PAGE_SIZE, maximum=MAX_PAGE_SIZE)
    posts, total = get_post_service().list(page, page_size)
    return success({"posts": posts, "total_count": total})


@bp.route("/posts")
def index():
    return list_posts_page()


@bp.route("/posts/<int:post_id>")
def detail(post_id: int):
    return success(get_post_service().get(post_id))
