"""
Append-only snapshots of a content item's title and body.
"""
from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import NotFound
from ..models.content import Content, ContentVersion


class ContentVersionStore:
    """Records one ContentVersion per accepted body mutation.

    ``append`` only stages the row on the caller's session; the caller commits
    it together with the content row so the snapshot and the derived fields
    land atomically.
    """

    def next_version_number(self, db: Session, content_id: int) -> int:
        current_max = (
            db.query(func.max(ContentVersion.version_number))
            .filter(ContentVersion.content_id == content_id)
            .scalar()
        )
        return (current_max or 0) + 1

    def append(self, db: Session, content: Content, created_by: int) -> ContentVersion:
        if content.id is None:
            db.flush()
            version_number = 1
        else:
            version_number = self.next_version_number(db, content.id)

        version = ContentVersion(
            content_id=content.id,
            version_number=version_number,
            title=content.title,
            body=content.body,
            created_by=created_by,
        )
        db.add(version)
        content.version_count = version_number
        return version

    def list(self, db: Session, content_id: int) -> List[ContentVersion]:
        return (
            db.query(ContentVersion)
            .filter(ContentVersion.content_id == content_id)
            .order_by(ContentVersion.version_number.desc())
            .all()
        )

    def get(self, db: Session, content_id: int, version_number: int) -> ContentVersion:
        version = (
            db.query(ContentVersion)
            .filter(
                ContentVersion.content_id == content_id,
                ContentVersion.version_number == version_number,
            )
            .first()
        )
        if not version:
            raise NotFound("Content version", f"{content_id}/{version_number}")
        return version
