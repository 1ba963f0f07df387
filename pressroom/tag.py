from __future__ import annotations

from flask import Blueprint, current_app
from flask_login import current_user, login_required

from .content import NamedCatalog
from .payloads import json_body, require_str, success


bp = Blueprint("tag", __name__, url_prefix="/api/v1/admin")

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100


def get_catalog(kind: str) -> NamedCatalog:
    return current_app.extensions[kind]


def _create(kind: str):
    name = require_str(json_body(), "name", min_length=MIN_NAME_LENGTH, max_length=MAX_NAME_LENGTH)
    item = get_catalog(kind).create(name)
    current_app.logger.info("%s created %s %s", current_user.username, kind, item["id"])
    return success(item)


def _update(kind: str, item_id: int):
    name = require_str(json_body(), "name", min_length=MIN_NAME_LENGTH, max_length=MAX_NAME_LENGTH)
    return success(get_catalog(kind).update(item_id, name))


def _delete(kind: str, item_id: int):
    get_catalog(kind).delete(item_id)
    return success()


@bp.route("/categories", methods=["POST"])
@login_required
def create_category():
    return _create("categories")


@bp.route("/categories")
@login_required
def list_categories():
    return success(get_catalog("categories").list())


@bp.route("/categories/<int:category_id>", methods=["PUT"])
@login_required
def update_category(category_id: int):
    return _update("categories", category_id)


@bp.route("/categories/<int:category_id>", methods=["DELETE"])
@login_required
def delete_category(category_id: int):
    return _delete("categories", category_id)


@bp.route("/tags", methods=["POST"])
@login_required
def create_tag():
    return _create("tags")


@bp.route("/tags")
@login_required
def list_tags():
    return success(get_catalog("tags").list())


@bp.route("/tags/<int:tag_id>", methods=["PUT"])
@login_required
def update_tag(tag_id: int):
    return _update("tags", tag_id)


@bp.route("/tags/<int:tag_id>", methods=["DELETE"])
@login_required
def delete_tag(tag_id: int):
    return _delete("tags", tag_id)
