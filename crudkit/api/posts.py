from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from crudkit.models.common import utcnow
from crudkit.models.post import Post
from crudkit.services.resources import LifecycleHook, ResourceDefinition, ResourceRegistry

_LOG = logging.getLogger("crudkit.resources")

POSTS_QUERY = {
    "pagination": {"enabled": True, "default_per": 10, "max_per": 50},
    "sorting": {"enabled": True, "allowed_fields": ["id", "title", "created_at", "updated_at"]},
    "searching": {"enabled": True, "searchable_fields": ["title", "content"]},
    "filtering": {"enabled": True, "filterable_fields": ["status"]},
}


def _before_create(db: Session, post: Post) -> bool:
    if post.status == "published" and post.published_at is None:
        post.published_at = utcnow()
    return True


def _after_create(db: Session, post: Post) -> None:
    _LOG.info("post created id=%s", post.id)


def register_posts(registry: ResourceRegistry) -> ResourceDefinition:
    return registry.register(
        "posts",
        Post,
        query=POSTS_QUERY,
        permitted_fields=["title", "content", "status", "published_at"],
        hooks={
            LifecycleHook.BEFORE_CREATE: _before_create,
            LifecycleHook.AFTER_CREATE: _after_create,
        },
    )
