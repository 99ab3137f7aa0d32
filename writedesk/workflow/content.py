"""
Content lifecycle: draft -> submitted -> under_review -> approved/rejected -> published.

Every mutating operation on one content item runs inside the same critical
section: the in-process lock for its id, then a transaction that re-reads the
row with ``SELECT ... FOR UPDATE``. Review state, the read of all reviews for
aggregation and the content status change therefore commit as one unit.
"""
import json
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import String, cast, func, or_
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..database import store_errors, transaction
from ..errors import Conflict, Forbidden, InvalidState, NotFound, ValidationError
from ..logging_config import timed, workflow_logger
from ..models.content import Content, ContentVersion
from ..models.enums import ContentStatus, Language, ReviewStatus, Role
from ..models.review import Review
from ..schemas.content import ContentCreate, ContentUpdate
from ..schemas.review import ReviewScores
from .actor import Actor, can_assign_reviews, can_publish_content, is_admin, is_teacher
from .aggregator import AggregateResult, ReviewAggregator
from .broadcaster import EventBroadcaster
from .locks import ContentLockRegistry
from .text import count_words, detect_language, make_excerpt, reading_time
from .versions import ContentVersionStore

_REVIEWABLE = (ContentStatus.SUBMITTED.value, ContentStatus.UNDER_REVIEW.value)


@dataclass
class CompletionResult:
    review: Review
    content: Content
    aggregate: AggregateResult


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ContentWorkflow:
    """State machine and authorization for Content and its Reviews."""

    def __init__(
        self,
        db: Session,
        broadcaster: EventBroadcaster,
        *,
        versions: Optional[ContentVersionStore] = None,
        aggregator: Optional[ReviewAggregator] = None,
        locks: Optional[ContentLockRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.broadcaster = broadcaster
        self.settings = settings or get_settings()
        self.versions = versions or ContentVersionStore()
        self.aggregator = aggregator or ReviewAggregator(self.settings.review_approval_threshold)
        self.locks = locks or ContentLockRegistry()

    # ============================================================
    # HELPERS
    # ============================================================

    @store_errors()
    def _load_content(self, content_id: int, for_update: bool = False) -> Content:
        query = self.db.query(Content).filter(Content.id == content_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        content = query.first()
        if not content:
            raise NotFound("Content", content_id)
        return content

    @store_errors()
    def _load_review(self, review_id: int, for_update: bool = False) -> Review:
        query = self.db.query(Review).filter(Review.id == review_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        review = query.first()
        if not review:
            raise NotFound("Review", review_id)
        return review

    def _check_title(self, title: Optional[str]):
        if title is None or not title.strip():
            raise ValidationError("Title is required", {"field": "title"})

    def _check_body(self, body: Optional[str]):
        if body is None:
            raise ValidationError("Body is required", {"field": "body"})
        minimum = self.settings.min_body_length
        if len(body.strip()) < minimum:
            raise ValidationError(
                f"Body must be at least {minimum} characters",
                {"field": "body", "min_length": minimum},
            )

    def _apply_body(self, content: Content, body: str):
        content.body = body
        content.word_count = count_words(body)
        content.reading_time = reading_time(body, self.settings.words_per_minute)
        content.excerpt = make_excerpt(body, self.settings.excerpt_length)

    @store_errors()
    def _is_assigned_reviewer(self, content_id: int, user_id: int) -> bool:
        return (
            self.db.query(Review.id)
            .filter(Review.content_id == content_id, Review.reviewer_id == user_id)
            .first()
            is not None
        )

    # ============================================================
    # CONTENT
    # ============================================================

    def create(self, actor: Actor, data: ContentCreate) -> Content:
        self._check_title(data.title)
        self._check_body(data.body)

        organization_id = data.organization_id
        if organization_id is None:
            organization_id = actor.organization_id
        elif organization_id != actor.organization_id and not is_admin(actor):
            raise Forbidden("You can only create content in your own organization")

        language = data.language.value if data.language else detect_language(f"{data.title} {data.body}")

        with transaction(self.db, self.broadcaster.commit_lock):
            content = Content(
                title=data.title.strip(),
                status=ContentStatus.DRAFT.value,
                author_id=actor.id,
                organization_id=organization_id,
                language=language,
                category=data.category,
                tags=list(data.tags),
                featured_image_url=data.featured_image_url,
            )
            self._apply_body(content, data.body)
            self.db.add(content)
            self.versions.append(self.db, content, actor.id)

        self.db.refresh(content)
        workflow_logger.info(
            "Content created",
            content_id=content.id,
            author_id=actor.id,
            status=content.status,
            word_count=content.word_count,
        )
        return content

    def update(self, content_id: int, actor: Actor, changes: ContentUpdate) -> Content:
        fields = changes.model_dump(exclude_unset=True)
        if "title" in fields:
            self._check_title(fields["title"])
        if "body" in fields:
            self._check_body(fields["body"])

        with self.locks.hold(content_id):
            with transaction(self.db, self.broadcaster.commit_lock):
                content = self._load_content(content_id, for_update=True)
                if content.author_id != actor.id and not is_admin(actor):
                    raise Forbidden("Only the author or an administrator can edit this content")
                if content.status != ContentStatus.DRAFT.value and not is_admin(actor):
                    raise InvalidState("Only draft content can be edited", content.status)

                if "title" in fields:
                    content.title = fields["title"].strip()
                if "language" in fields:
                    language = fields["language"]
                    content.language = (
                        language.value if language else detect_language(f"{content.title} {fields.get('body', content.body)}")
                    )
                for name in ("category", "featured_image_url"):
                    if name in fields:
                        setattr(content, name, fields[name])
                if "tags" in fields:
                    content.tags = list(fields["tags"] or [])
                if "body" in fields:
                    self._apply_body(content, fields["body"])
                    self.versions.append(self.db, content, actor.id)

                content.updated_at = _now()
                self.broadcaster.content_updated(self.db, content, actor.id)

        self.db.refresh(content)
        workflow_logger.info(
            "Content updated",
            content_id=content_id,
            actor_id=actor.id,
            fields=sorted(fields),
            version_count=content.version_count,
        )
        return content

    def submit(self, content_id: int, actor: Actor) -> Content:
        with self.locks.hold(content_id):
            with transaction(self.db, self.broadcaster.commit_lock):
                content = self._load_content(content_id, for_update=True)
                if content.author_id != actor.id:
                    raise Forbidden("Only the author can submit this content")
                if content.status != ContentStatus.DRAFT.value:
                    raise InvalidState("Only draft content can be submitted", content.status)
                content.status = ContentStatus.SUBMITTED.value
                self.broadcaster.content_submitted(self.db, content)

        self.db.refresh(content)
        workflow_logger.info("Content submitted", content_id=content_id, author_id=actor.id)
        return content

    def publish(self, content_id: int, actor: Actor) -> Content:
        if not can_publish_content(actor):
            raise Forbidden("Only teachers and administrators can publish content")

        with self.locks.hold(content_id):
            with transaction(self.db, self.broadcaster.commit_lock):
                content = self._load_content(content_id, for_update=True)
                if content.status != ContentStatus.APPROVED.value:
                    raise InvalidState("Only approved content can be published", content.status)
                content.status = ContentStatus.PUBLISHED.value
                content.published_at = _now()
                self.broadcaster.content_published(self.db, content)

        self.db.refresh(content)
        workflow_logger.info("Content published", content_id=content_id, actor_id=actor.id)
        return content

    def delete(self, content_id: int, actor: Actor):
        with self.locks.hold(content_id):
            with transaction(self.db, self.broadcaster.commit_lock):
                content = self._load_content(content_id, for_update=True)
                if content.author_id != actor.id and not is_admin(actor):
                    raise Forbidden("Only the author or an administrator can delete this content")
                self.db.delete(content)
                self.broadcaster.content_deleted(self.db, content_id, actor.id)

        workflow_logger.info("Content deleted", content_id=content_id, actor_id=actor.id)

    # ============================================================
    # REVIEWS
    # ============================================================

    def assign_review(self, content_id: int, reviewer_id: int, actor: Actor) -> Review:
        if not can_assign_reviews(actor):
            raise Forbidden("You are not allowed to assign reviewers")

        with self.locks.hold(content_id):
            with transaction(self.db, self.broadcaster.commit_lock):
                content = self._load_content(content_id, for_update=True)
                if content.status not in _REVIEWABLE:
                    raise InvalidState("Reviewers can only be assigned to submitted content", content.status)
                if reviewer_id == content.author_id:
                    raise ValidationError("Authors cannot review their own content", {"field": "reviewer_id"})
                if self._is_assigned_reviewer(content_id, reviewer_id):
                    raise Conflict(
                        f"Reviewer {reviewer_id} is already assigned to content {content_id}",
                        {"content_id": content_id, "reviewer_id": reviewer_id},
                    )

                review = Review(
                    content_id=content_id,
                    reviewer_id=reviewer_id,
                    status=ReviewStatus.PENDING.value,
                    assigned_at=_now(),
                )
                self.db.add(review)
                self.db.flush()

                if content.status == ContentStatus.SUBMITTED.value:
                    content.status = ContentStatus.UNDER_REVIEW.value
                self.broadcaster.review_assigned(self.db, content, review)

        self.db.refresh(review)
        workflow_logger.info(
            "Review assigned",
            content_id=content_id,
            review_id=review.id,
            reviewer_id=reviewer_id,
            assigned_by=actor.id,
            content_status=content.status,
        )
        return review

    def start_review(self, review_id: int, actor: Actor) -> Review:
        content_id = self._load_review(review_id).content_id

        with self.locks.hold(content_id):
            with transaction(self.db, self.broadcaster.commit_lock):
                content = self._load_content(content_id, for_update=True)
                review = self._load_review(review_id, for_update=True)
                if review.reviewer_id != actor.id and not is_admin(actor):
                    raise Forbidden("Only the assigned reviewer can start this review")
                if review.status != ReviewStatus.PENDING.value:
                    raise InvalidState("Only pending reviews can be started", review.status)
                review.status = ReviewStatus.IN_PROGRESS.value
                self.broadcaster.review_started(self.db, content, review)

        self.db.refresh(review)
        workflow_logger.info("Review started", review_id=review_id, content_id=content_id, reviewer_id=review.reviewer_id)
        return review

    def save_review(self, review_id: int, actor: Actor, scores: ReviewScores) -> Review:
        """Store partial scores without completing the review.

        A pending review moves to in_progress. Completed reviews can only be
        touched by an administrator, and saving never changes the verdict.
        """
        content_id = self._load_review(review_id).content_id

        with self.locks.hold(content_id):
            with transaction(self.db, self.broadcaster.commit_lock):
                content = self._load_content(content_id, for_update=True)
                review = self._load_review(review_id, for_update=True)
                if review.reviewer_id != actor.id and not is_admin(actor):
                    raise Forbidden("Only the assigned reviewer can edit this review")
                if review.status == ReviewStatus.COMPLETED.value and not is_admin(actor):
                    raise InvalidState("Completed reviews cannot be edited", review.status)

                fields = scores.model_dump(exclude_unset=True)
                for name, value in fields.items():
                    setattr(review, name, value)
                if review.status == ReviewStatus.PENDING.value:
                    review.status = ReviewStatus.IN_PROGRESS.value
                self.broadcaster.review_updated(self.db, content, review)

        self.db.refresh(review)
        workflow_logger.info(
            "Review saved",
            review_id=review_id,
            content_id=content_id,
            reviewer_id=review.reviewer_id,
            fields=sorted(fields),
        )
        return review

    def delete_review(self, review_id: int, actor: Actor):
        """Withdraw a review assignment.

        The remaining reviews are re-evaluated: if they now form a complete
        round the verdict is applied, and if none are left the content goes
        back to ``submitted`` to wait for a new reviewer.
        """
        content_id = self._load_review(review_id).content_id

        with self.locks.hold(content_id):
            with transaction(self.db, self.broadcaster.commit_lock):
                content = self._load_content(content_id, for_update=True)
                review = self._load_review(review_id, for_update=True)
                if review.reviewer_id != actor.id and not is_admin(actor):
                    raise Forbidden("Only the assigned reviewer or an administrator can delete this review")
                reviewer_id = review.reviewer_id
                self.db.delete(review)
                self.db.flush()
                self.broadcaster.review_deleted(self.db, content, review_id, reviewer_id, actor.id)

                if content.status == ContentStatus.UNDER_REVIEW.value:
                    remaining = self.db.query(Review).filter(Review.content_id == content_id).all()
                    result = self.aggregator.evaluate(remaining)
                    if not remaining:
                        content.status = ContentStatus.SUBMITTED.value
                    elif result.complete:
                        content.status = result.verdict
                        self.broadcaster.content_decided(self.db, content, result)

        workflow_logger.info(
            "Review deleted",
            review_id=review_id,
            content_id=content_id,
            reviewer_id=reviewer_id,
            actor_id=actor.id,
            content_status=content.status,
        )

    @timed(workflow_logger)
    def complete_review(self, review_id: int, actor: Actor, scores: ReviewScores) -> CompletionResult:
        content_id = self._load_review(review_id).content_id

        with self.locks.hold(content_id):
            with transaction(self.db, self.broadcaster.commit_lock):
                content = self._load_content(content_id, for_update=True)
                review = self._load_review(review_id, for_update=True)
                if review.reviewer_id != actor.id and not is_admin(actor):
                    raise Forbidden("Only the assigned reviewer can complete this review")
                if review.status == ReviewStatus.COMPLETED.value and not is_admin(actor):
                    raise InvalidState("Review is already completed", review.status)

                for name, value in scores.model_dump(exclude_unset=True).items():
                    setattr(review, name, value)
                if review.status != ReviewStatus.COMPLETED.value:
                    review.status = ReviewStatus.COMPLETED.value
                    review.completed_at = _now()
                self.db.flush()
                self.broadcaster.review_completed(self.db, content, review)

                reviews = self.db.query(Review).filter(Review.content_id == content_id).all()
                result = self.aggregator.evaluate(reviews)
                if result.complete and content.status == ContentStatus.UNDER_REVIEW.value:
                    content.status = result.verdict
                    self.broadcaster.content_decided(self.db, content, result)

        self.db.refresh(review)
        self.db.refresh(content)
        workflow_logger.info(
            "Review completed",
            review_id=review_id,
            content_id=content_id,
            reviewer_id=review.reviewer_id,
            rating=review.rating,
            pending=result.pending,
        )
        if result.complete:
            workflow_logger.info(
                "Review round complete",
                content_id=content_id,
                average_rating=result.average_rating,
                status=content.status,
            )
        return CompletionResult(review=review, content=content, aggregate=result)

    # ============================================================
    # READ SIDE
    # ============================================================

    def _can_view(self, content: Content, actor: Actor) -> bool:
        if content.status == ContentStatus.PUBLISHED.value:
            return True
        if content.author_id == actor.id or is_admin(actor):
            return True
        if is_teacher(actor) and content.organization_id is not None:
            return content.organization_id == actor.organization_id
        return self._is_assigned_reviewer(content.id, actor.id)

    @store_errors()
    def get(self, content_id: int, actor: Actor) -> Content:
        content = self._load_content(content_id)
        if not self._can_view(content, actor):
            raise Forbidden("You do not have access to this content")
        return content

    @store_errors()
    def list(
        self,
        actor: Actor,
        status: Optional[ContentStatus] = None,
        q: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
        language: Optional[Language] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Tuple[List[Content], int]:
        """Content visible to ``actor``, newest first.

        ``tags`` matches content carrying any of the given tags. ``date_from``
        and ``date_to`` bound the creation date and both days are included.
        """
        query = self.db.query(Content)

        if actor.role == Role.TEACHER.value and actor.organization_id is not None:
            query = query.filter(
                or_(Content.organization_id == actor.organization_id, Content.author_id == actor.id)
            )
        elif actor.role == Role.REVIEWER.value:
            assigned = self.db.query(Review.content_id).filter(Review.reviewer_id == actor.id)
            query = query.filter(or_(Content.author_id == actor.id, Content.id.in_(assigned)))
        elif not is_admin(actor):
            query = query.filter(Content.author_id == actor.id)

        if status:
            query = query.filter(Content.status == status.value)
        if q:
            pattern = f"%{q}%"
            query = query.filter(or_(Content.title.ilike(pattern), Content.body.ilike(pattern)))
        if language:
            query = query.filter(Content.language == language.value)
        if category:
            query = query.filter(Content.category == category)
        if tags:
            # Tags are stored as a JSON array, so look for each one as a quoted element
            serialized = cast(Content.tags, String)
            query = query.filter(
                or_(*[serialized.contains(json.dumps(tag), autoescape=True) for tag in tags])
            )
        if date_from:
            query = query.filter(Content.created_at >= datetime.combine(date_from, time.min))
        if date_to:
            query = query.filter(Content.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

        total = query.count()
        items = query.order_by(Content.updated_at.desc(), Content.id.desc()).offset(skip).limit(limit).all()
        return items, total

    def _check_history_access(self, content: Content, actor: Actor):
        if content.author_id != actor.id and not is_admin(actor):
            raise Forbidden("Only the author or an administrator can view the version history")

    @store_errors()
    def list_versions(self, content_id: int, actor: Actor) -> List[ContentVersion]:
        content = self._load_content(content_id)
        self._check_history_access(content, actor)
        return self.versions.list(self.db, content_id)

    @store_errors()
    def get_version(self, content_id: int, version_number: int, actor: Actor) -> ContentVersion:
        content = self._load_content(content_id)
        self._check_history_access(content, actor)
        return self.versions.get(self.db, content_id, version_number)

    @store_errors()
    def reviews_for(self, content_id: int, actor: Actor) -> List[Review]:
        content = self.get(content_id, actor)
        return (
            self.db.query(Review)
            .filter(Review.content_id == content.id)
            .order_by(Review.assigned_at, Review.id)
            .all()
        )

    @store_errors()
    def get_review(self, review_id: int, actor: Actor) -> Review:
        review = self._load_review(review_id)
        if review.reviewer_id != actor.id and not self._can_view(review.content, actor):
            raise Forbidden("You do not have access to this review")
        return review

    @store_errors()
    def my_reviews(self, actor: Actor, status: Optional[ReviewStatus] = None) -> List[Review]:
        query = self.db.query(Review)
        if not is_admin(actor):
            query = query.filter(Review.reviewer_id == actor.id)
        if status:
            query = query.filter(Review.status == status.value)
        return query.order_by(Review.assigned_at.desc(), Review.id.desc()).all()

    @store_errors()
    def reviewer_stats(self, reviewer_id: int, actor: Actor) -> dict:
        if reviewer_id != actor.id and actor.role not in (Role.ADMIN.value, Role.TEACHER.value):
            raise Forbidden("You can only view your own review statistics")

        counts = dict(
            self.db.query(Review.status, func.count(Review.id))
            .filter(Review.reviewer_id == reviewer_id)
            .group_by(Review.status)
            .all()
        )
        averages = (
            self.db.query(
                func.avg(Review.rating),
                func.avg(Review.grammar_score),
                func.avg(Review.creativity_score),
                func.avg(Review.relevance_score),
            )
            .filter(
                Review.reviewer_id == reviewer_id,
                Review.status == ReviewStatus.COMPLETED.value,
            )
            .one()
        )

        def _round(value):
            return round(float(value), 2) if value is not None else None

        return {
            "reviewer_id": reviewer_id,
            "total_reviews": sum(counts.values()),
            "completed_reviews": counts.get(ReviewStatus.COMPLETED.value, 0),
            "pending_reviews": counts.get(ReviewStatus.PENDING.value, 0),
            "in_progress_reviews": counts.get(ReviewStatus.IN_PROGRESS.value, 0),
            "average_rating": _round(averages[0]),
            "average_grammar_score": _round(averages[1]),
            "average_creativity_score": _round(averages[2]),
            "average_relevance_score": _round(averages[3]),
        }
