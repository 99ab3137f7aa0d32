"""
Status and type vocabularies shared by models, schemas and the workflow core.
"""
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    REVIEWER = "reviewer"
    STUDENT = "student"


class ContentStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    PUBLISHED = "published"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class MagazineStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class NotificationType(str, Enum):
    REVIEW_ASSIGNED = "review_assigned"
    REVIEW_COMPLETED = "review_completed"
    CONTENT_APPROVED = "content_approved"
    CONTENT_REJECTED = "content_rejected"
    MAGAZINE_PUBLISHED = "magazine_published"


class Language(str, Enum):
    HINDI = "hindi"
    ENGLISH = "english"
    MIXED = "mixed"
