"""
Magazine assembly: compose approved content into an issue and publish it.

Publishing renders the issue first, outside any transaction, then stores the
artifact and commits ``pdf_url`` together with the ``published`` status. A
renderer failure leaves the magazine untouched; a failed commit removes the
stored artifact again.
"""
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..database import store_errors, transaction
from ..errors import Conflict, Forbidden, InvalidState, NotFound, RenderFailure
from ..logging_config import timed, workflow_logger
from ..models.content import Content
from ..models.enums import ContentStatus, MagazineStatus
from ..models.magazine import Magazine, MagazineContent
from ..models.organization import OrganizationMember
from ..schemas.magazine import MagazineContentAdd, MagazineCreate, MagazineUpdate
from .actor import Actor, can_edit_magazines, is_admin
from .broadcaster import EventBroadcaster
from .locks import ContentLockRegistry
from .renderer import HtmlMagazineRenderer, LocalArtifactStore, MagazineRenderer


class MagazineAssembler:
    def __init__(
        self,
        db: Session,
        broadcaster: EventBroadcaster,
        *,
        renderer: Optional[MagazineRenderer] = None,
        artifacts: Optional[LocalArtifactStore] = None,
        locks: Optional[ContentLockRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.broadcaster = broadcaster
        self.settings = settings or get_settings()
        self.renderer = renderer or HtmlMagazineRenderer()
        self.artifacts = artifacts or LocalArtifactStore(
            self.settings.artifact_dir, self.settings.artifact_url_prefix
        )
        self.locks = locks or ContentLockRegistry()

    def _require_editor(self, actor: Actor):
        if not can_edit_magazines(actor):
            raise Forbidden("Only teachers and administrators can manage magazines")

    @store_errors()
    def _load(self, magazine_id: int, for_update: bool = False) -> Magazine:
        query = self.db.query(Magazine).filter(Magazine.id == magazine_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        magazine = query.first()
        if not magazine:
            raise NotFound("Magazine", magazine_id)
        return magazine

    @store_errors()
    def _check_issue_free(
        self,
        organization_id: Optional[int],
        issue_number: int,
        volume_number: int,
        exclude_id: Optional[int] = None,
    ):
        # NULL never equals NULL in a unique index, so match it explicitly
        query = self.db.query(Magazine.id).filter(
            Magazine.issue_number == issue_number,
            Magazine.volume_number == volume_number,
        )
        if organization_id is None:
            query = query.filter(Magazine.organization_id.is_(None))
        else:
            query = query.filter(Magazine.organization_id == organization_id)
        if exclude_id is not None:
            query = query.filter(Magazine.id != exclude_id)
        if query.first() is not None:
            raise Conflict(
                f"Issue {issue_number}, volume {volume_number} already exists for this organization",
                {
                    "organization_id": organization_id,
                    "issue_number": issue_number,
                    "volume_number": volume_number,
                },
            )

    # ============================================================
    # MAGAZINES
    # ============================================================

    def create(self, actor: Actor, data: MagazineCreate) -> Magazine:
        self._require_editor(actor)
        organization_id = data.organization_id
        if organization_id is None:
            organization_id = actor.organization_id
        elif organization_id != actor.organization_id and not is_admin(actor):
            raise Forbidden("You can only create magazines for your own organization")

        with self.locks.hold(("issue", organization_id, data.issue_number, data.volume_number)):
            with transaction(self.db, self.broadcaster.commit_lock):
                self._check_issue_free(organization_id, data.issue_number, data.volume_number)
                magazine = Magazine(
                    title=data.title.strip(),
                    description=data.description,
                    cover_image_url=data.cover_image_url,
                    issue_number=data.issue_number,
                    volume_number=data.volume_number,
                    publication_date=data.publication_date,
                    organization_id=organization_id,
                    status=MagazineStatus.DRAFT.value,
                    created_by=actor.id,
                )
                self.db.add(magazine)

        self.db.refresh(magazine)
        workflow_logger.info(
            "Magazine created",
            magazine_id=magazine.id,
            organization_id=organization_id,
            issue_number=magazine.issue_number,
            volume_number=magazine.volume_number,
        )
        return magazine

    def update(self, magazine_id: int, actor: Actor, changes: MagazineUpdate) -> Magazine:
        self._require_editor(actor)
        fields = changes.model_dump(exclude_unset=True)
        if "title" in fields and fields["title"] is None:
            fields.pop("title")
        renumbering = "issue_number" in fields or "volume_number" in fields

        with self.locks.hold(("magazine", magazine_id)):
            current = self._load(magazine_id)
            issue = fields.get("issue_number") or current.issue_number
            volume = fields.get("volume_number") or current.volume_number
            # The target issue key is shared with create()
            issue_key = ("issue", current.organization_id, issue, volume)
            with self.locks.hold(issue_key) if renumbering else nullcontext():
                with transaction(self.db, self.broadcaster.commit_lock):
                    magazine = self._load(magazine_id, for_update=True)
                    if magazine.status == MagazineStatus.PUBLISHED.value and not is_admin(actor):
                        raise InvalidState("Published magazines cannot be edited", magazine.status)
                    if renumbering:
                        self._check_issue_free(magazine.organization_id, issue, volume, exclude_id=magazine.id)
                        fields["issue_number"], fields["volume_number"] = issue, volume
                    for name, value in fields.items():
                        setattr(magazine, name, value)

        self.db.refresh(magazine)
        workflow_logger.info("Magazine updated", magazine_id=magazine_id, fields=sorted(fields))
        return magazine

    def delete(self, magazine_id: int, actor: Actor):
        if not is_admin(actor):
            raise Forbidden("Only administrators can delete magazines")
        with self.locks.hold(("magazine", magazine_id)):
            with transaction(self.db, self.broadcaster.commit_lock):
                magazine = self._load(magazine_id, for_update=True)
                self.db.delete(magazine)
        workflow_logger.info("Magazine deleted", magazine_id=magazine_id, actor_id=actor.id)

    def get(self, magazine_id: int) -> Magazine:
        return self._load(magazine_id)

    @store_errors()
    def list(
        self,
        actor: Actor,
        status: Optional[MagazineStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Magazine], int]:
        query = self.db.query(Magazine)
        if not is_admin(actor):
            if actor.organization_id is None:
                query = query.filter(Magazine.organization_id.is_(None))
            else:
                query = query.filter(Magazine.organization_id == actor.organization_id)
        if status:
            query = query.filter(Magazine.status == status.value)
        total = query.count()
        items = (
            query.order_by(Magazine.volume_number.desc(), Magazine.issue_number.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return items, total

    # ============================================================
    # CONTENT ENTRIES
    # ============================================================

    @store_errors()
    def ordered_content(self, magazine_id: int) -> List[MagazineContent]:
        self._load(magazine_id)
        return (
            self.db.query(MagazineContent)
            .filter(MagazineContent.magazine_id == magazine_id)
            .order_by(MagazineContent.order_index, MagazineContent.id)
            .all()
        )

    def add_content(self, magazine_id: int, actor: Actor, entry: MagazineContentAdd) -> MagazineContent:
        self._require_editor(actor)

        with self.locks.hold(("magazine", magazine_id)):
            with transaction(self.db, self.broadcaster.commit_lock):
                magazine = self._load(magazine_id, for_update=True)
                if magazine.status == MagazineStatus.PUBLISHED.value:
                    raise InvalidState("Content cannot be added to a published magazine", magazine.status)
                content = self.db.query(Content).filter(Content.id == entry.content_id).first()
                if not content:
                    raise NotFound("Content", entry.content_id)
                if content.status != ContentStatus.APPROVED.value:
                    raise InvalidState("Only approved content can be added to a magazine", content.status)

                existing = (
                    self.db.query(MagazineContent.id)
                    .filter(
                        MagazineContent.magazine_id == magazine_id,
                        MagazineContent.content_id == entry.content_id,
                    )
                    .first()
                )
                if existing:
                    raise Conflict(
                        f"Content {entry.content_id} is already in magazine {magazine_id}",
                        {"magazine_id": magazine_id, "content_id": entry.content_id},
                    )

                row = MagazineContent(
                    magazine_id=magazine_id,
                    content_id=entry.content_id,
                    order_index=entry.order_index,
                    page_number=entry.page_number,
                )
                self.db.add(row)

        self.db.refresh(row)
        workflow_logger.info(
            "Content added to magazine",
            magazine_id=magazine_id,
            content_id=entry.content_id,
            order_index=entry.order_index,
        )
        return row

    def remove_content(self, magazine_id: int, content_id: int, actor: Actor):
        self._require_editor(actor)

        with self.locks.hold(("magazine", magazine_id)):
            with transaction(self.db, self.broadcaster.commit_lock):
                magazine = self._load(magazine_id, for_update=True)
                if magazine.status == MagazineStatus.PUBLISHED.value and not is_admin(actor):
                    raise InvalidState("Content cannot be removed from a published magazine", magazine.status)
                row = (
                    self.db.query(MagazineContent)
                    .filter(
                        MagazineContent.magazine_id == magazine_id,
                        MagazineContent.content_id == content_id,
                    )
                    .first()
                )
                if not row:
                    raise NotFound("Magazine content", f"{magazine_id}/{content_id}")
                self.db.delete(row)

        workflow_logger.info("Content removed from magazine", magazine_id=magazine_id, content_id=content_id)

    # ============================================================
    # PUBLISHING
    # ============================================================

    @store_errors()
    def _member_ids(self, organization_id: Optional[int]) -> List[int]:
        if organization_id is None:
            return []
        rows = (
            self.db.query(OrganizationMember.user_id)
            .filter(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.is_active.is_(True),
            )
            .order_by(OrganizationMember.user_id)
            .all()
        )
        return [row[0] for row in rows]

    @timed(workflow_logger)
    def publish(self, magazine_id: int, actor: Actor) -> Magazine:
        self._require_editor(actor)

        with self.locks.hold(("magazine", magazine_id)):
            magazine = self._load(magazine_id)
            if magazine.status == MagazineStatus.PUBLISHED.value:
                raise InvalidState("Magazine is already published", magazine.status)
            entries = self.ordered_content(magazine_id)
            if not entries:
                raise InvalidState("Magazine has no content to publish", magazine.status)

            try:
                document = self.renderer.render_magazine(magazine, entries)
            except Exception as e:
                workflow_logger.error("Magazine rendering failed", error=e, magazine_id=magazine_id)
                raise RenderFailure(f"Rendering magazine {magazine_id} failed: {e}") from e

            stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
            filename = f"magazine-{magazine.issue_number}-{magazine.volume_number}-{stamp}.{self.renderer.extension}"
            try:
                artifact_url = self.artifacts.save(filename, document)
            except OSError as e:
                workflow_logger.error("Storing magazine artifact failed", error=e, magazine_id=magazine_id)
                raise RenderFailure(f"Storing the rendered magazine {magazine_id} failed: {e}") from e

            try:
                with transaction(self.db, self.broadcaster.commit_lock):
                    magazine = self._load(magazine_id, for_update=True)
                    if magazine.status == MagazineStatus.PUBLISHED.value:
                        raise InvalidState("Magazine is already published", magazine.status)
                    magazine.pdf_url = artifact_url
                    magazine.status = MagazineStatus.PUBLISHED.value
                    magazine.published_at = datetime.now(timezone.utc)
                    self.db.flush()
                    self.broadcaster.magazine_published(
                        self.db, magazine, self._member_ids(magazine.organization_id)
                    )
            except Exception:
                self.artifacts.discard(filename)
                raise

        self.db.refresh(magazine)
        workflow_logger.info(
            "Magazine published",
            magazine_id=magazine_id,
            pdf_url=artifact_url,
            articles=len(entries),
        )
        return magazine
