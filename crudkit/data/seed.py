from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from crudkit.db.session import Base, SessionLocal, engine
from crudkit.models.post import Post


UTC = timezone.utc

POSTS = [
    {
        "title": "First Post",
        "content": "This is the first post content",
        "status": "published",
        "published_offset": timedelta(days=1),
    },
    {
        "title": "Second Post",
        "content": "This is the second post content",
        "status": "draft",
        "published_offset": None,
    },
    {
        "title": "Third Post",
        "content": "This is the third post about Ruby on Rails",
        "status": "published",
        "published_offset": timedelta(0),
    },
]


def seed_posts(db: Session) -> int:
    now = datetime.now(UTC)
    for item in POSTS:
        offset = item["published_offset"]
        db.add(
            Post(
                title=item["title"],
                content=item["content"],
                status=item["status"],
                published_at=(now - offset) if offset is not None else None,
            )
        )
    db.commit()
    return db.query(Post).count()


def main() -> None:
    Base.metadata.create_all(bind=engine, tables=[Post.__table__])
    with SessionLocal() as db:
        total = seed_posts(db)
    print(f"Created {total} posts")


if __name__ == "__main__":
    main()
