"""Categories, tags and posts.

Every post write runs in a single ``BEGIN IMMEDIATE`` transaction, so the
category and tag checks stay true until the row and its tag links commit.
Name uniqueness for categories and tags is checked up front and enforced again
by the ``UNIQUE`` column constraint for writers racing each other.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .datastore import SINGULAR, DataStore, name_taken_message
from .errors import Conflict, NotFound, ValidationError


POST_STATUSES = (0, 1)

logger = logging.getLogger(__name__)


def _dedupe(ids: Optional[Iterable[int]]) -> List[int]:
    return list(dict.fromkeys(ids or []))


class NamedCatalog:
    """Create, rename, list and delete rows of ``categories`` or ``tags``."""

    def __init__(self, datastore: DataStore, table: str):
        self._datastore = datastore
        self._table = table
        self._label = SINGULAR[table]

    @staticmethod
    def _clean(name: Optional[str]) -> str:
        return (name or "").strip()

    def create(self, name: str) -> Dict[str, Any]:
        cleaned = self._clean(name)
        if not cleaned:
            raise ValidationError(f"{self._label} name must not be empty")
        with self._datastore.transaction():
            if self._datastore.find_named(self._table, cleaned) is not None:
                logger.info("Refused duplicate %s name %r", self._label, cleaned)
                raise Conflict(name_taken_message(self._table))
            item = self._datastore.insert_named(self._table, cleaned)
        logger.info("Created %s %r (id=%s)", self._label, cleaned, item["id"])
        return item

    def list(self) -> List[Dict[str, Any]]:
        return self._datastore.list_named(self._table)

    def get(self, item_id: int) -> Dict[str, Any]:
        item = self._datastore.get_named(self._table, item_id)
        if item is None:
            raise NotFound(f"{self._label} not found")
        return item

    def update(self, item_id: int, name: str) -> Dict[str, Any]:
        cleaned = self._clean(name)
        if not cleaned:
            raise ValidationError(f"{self._label} name must not be empty")
        with self._datastore.transaction():
            if self._datastore.get_named(self._table, item_id) is None:
                raise NotFound(f"{self._label} not found")
            if self._datastore.find_named(self._table, cleaned, exclude_id=item_id) is not None:
                logger.info("Refused renaming %s %s to taken name %r", self._label, item_id, cleaned)
                raise Conflict(name_taken_message(self._table))
            self._datastore.rename_named(self._table, item_id, cleaned)
        return self.get(item_id)

    def delete(self, item_id: int) -> None:
        with self._datastore.transaction():
            self._check_deletable(item_id)
            if self._datastore.delete_named(self._table, item_id) == 0:
                raise NotFound(f"{self._label} not found")
        logger.info("Deleted %s id=%s", self._label, item_id)

    def _check_deletable(self, item_id: int) -> None:
        pass


class CategoryCatalog(NamedCatalog):
    def __init__(self, datastore: DataStore):
        super().__init__(datastore, "categories")

    def _check_deletable(self, item_id: int) -> None:
        if self._datastore.count_posts_in_category(item_id) > 0:
            logger.info("Refused deleting category %s while posts reference it", item_id)
            raise Conflict("category in use")


class TagCatalog(NamedCatalog):
    """Deleting a tag unlinks it from every post through the association cascade."""

    def __init__(self, datastore: DataStore):
        super().__init__(datastore, "tags")


class PostService:
    def __init__(self, datastore: DataStore):
        self._datastore = datastore

    def create(
        self,
        *,
        title: str,
        content: str,
        summary: str = "",
        status: int = 1,
        user_id: int,
        category_id: int,
        tag_ids: Optional[Iterable[int]] = None,
    ) -> Dict[str, Any]:
        self._check_status(status)
        tags = _dedupe(tag_ids)
        with self._datastore.transaction():
            self._check_category(category_id)
            self._check_tags(tags)
            post_id = self._datastore.insert_post(
                title=title,
                content=content,
                summary=summary or "",
                status=status,
                user_id=user_id,
                category_id=category_id,
            )
            self._datastore.replace_post_tags(post_id, tags)
        logger.info("User %s created post %s", user_id, post_id)
        return self.get(post_id)

    def update(
        self,
        post_id: int,
        *,
        title: str,
        content: str,
        summary: str = "",
        status: int = 1,
        category_id: int,
        tag_ids: Optional[Iterable[int]] = None,
    ) -> Dict[str, Any]:
        self._check_status(status)
        tags = _dedupe(tag_ids)
        with self._datastore.transaction():
            if self._datastore.get_post_row(post_id) is None:
                raise NotFound("post not found")
            self._check_category(category_id)
            self._check_tags(tags)
            self._datastore.save_post(
                post_id,
                title=title,
                content=content,
                summary=summary or "",
                status=status,
                category_id=category_id,
            )
            self._datastore.replace_post_tags(post_id, tags)
        logger.info("Updated post %s", post_id)
        return self.get(post_id)

    def delete(self, post_id: int) -> None:
        with self._datastore.transaction():
            if self._datastore.get_post_row(post_id) is None:
                raise NotFound("post not found")
            self._datastore.clear_post_tags(post_id)
            self._datastore.delete_post_row(post_id)
        logger.info("Deleted post %s", post_id)

    def get(self, post_id: int) -> Dict[str, Any]:
        post = self._datastore.get_post(post_id)
        if post is None:
            raise NotFound("post not found")
        return post

    def list(self, page: int = 1, page_size: int = 10) -> Tuple[List[Dict[str, Any]], int]:
        if page < 1 or page_size < 1:
            raise ValidationError("page and page size must be positive")
        total = self._datastore.count_posts()
        posts = self._datastore.list_posts(limit=page_size, offset=(page - 1) * page_size)
        return posts, total

    # Internal checks --------------------------------------------------

    @staticmethod
    def _check_status(status: int) -> None:
        if isinstance(status, bool) or status not in POST_STATUSES:
            raise ValidationError("invalid status")

    def _check_category(self, category_id: int) -> None:
        if self._datastore.get_named("categories", category_id) is None:
            raise ValidationError("invalid category")

    def _check_tags(self, tag_ids: List[int]) -> None:
        if tag_ids and self._datastore.count_tags(tag_ids) != len(tag_ids):
            raise ValidationError("invalid tag")
