from .content import Content, ContentVersion
from .review import Review
from .magazine import Magazine, MagazineContent
from .notification import Notification
from .organization import OrganizationMember
from .enums import ContentStatus, ReviewStatus, MagazineStatus, NotificationType, Role, Language

__all__ = [
    "Content",
    "ContentVersion",
    "Review",
    "Magazine",
    "MagazineContent",
    "Notification",
    "OrganizationMember",
    "ContentStatus",
    "ReviewStatus",
    "MagazineStatus",
    "NotificationType",
    "Role",
    "Language",
]
