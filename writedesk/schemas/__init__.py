from .content import ContentCreate, ContentUpdate, ContentResponse, ContentVersionResponse
from .review import ReviewAssign, ReviewScores, ReviewResponse, ReviewerStats, ReviewCompletion
from .magazine import (
    MagazineCreate,
    MagazineUpdate,
    MagazineContentAdd,
    MagazineResponse,
    MagazineContentResponse,
)
from .notification import NotificationResponse, UnreadCount
from .events import Subscription, SubscriptionState, EditRelay, CursorRelay, CommentRelay, RelayResult

__all__ = [
    "ContentCreate", "ContentUpdate", "ContentResponse", "ContentVersionResponse",
    "ReviewAssign", "ReviewScores", "ReviewResponse", "ReviewerStats", "ReviewCompletion",
    "MagazineCreate", "MagazineUpdate", "MagazineContentAdd", "MagazineResponse", "MagazineContentResponse",
    "NotificationResponse", "UnreadCount",
    "Subscription", "SubscriptionState", "EditRelay", "CursorRelay", "CommentRelay", "RelayResult",
]
