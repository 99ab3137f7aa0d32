"""
Review round aggregation: decides when a round is over and its verdict.
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from ..models.enums import ContentStatus, ReviewStatus

DEFAULT_APPROVAL_THRESHOLD = 3.0


@dataclass(frozen=True)
class AggregateResult:
    complete: bool
    total: int
    completed: int
    average_rating: Optional[float] = None
    verdict: Optional[str] = None

    @property
    def pending(self) -> int:
        return self.total - self.completed


class ReviewAggregator:
    """Pure decision function over the reviews of one content item.

    A round is complete only when there is at least one review and every
    review is completed. The verdict is ``approved`` when the mean of the
    non-null ratings reaches ``approval_threshold`` (ties approve), otherwise
    ``rejected``. Reviews without a rating do not pull the mean down; a round
    with no ratings at all averages to 0.
    """

    def __init__(self, approval_threshold: float = DEFAULT_APPROVAL_THRESHOLD):
        self.approval_threshold = approval_threshold

    def evaluate(self, reviews: Iterable) -> AggregateResult:
        reviews = list(reviews)
        completed = [r for r in reviews if r.status == ReviewStatus.COMPLETED.value]

        if not reviews or len(completed) < len(reviews):
            return AggregateResult(complete=False, total=len(reviews), completed=len(completed))

        ratings = [r.rating for r in reviews if r.rating is not None]
        average = sum(ratings) / len(ratings) if ratings else 0.0
        verdict = (
            ContentStatus.APPROVED.value
            if average >= self.approval_threshold
            else ContentStatus.REJECTED.value
        )
        return AggregateResult(
            complete=True,
            total=len(reviews),
            completed=len(completed),
            average_rating=average,
            verdict=verdict,
        )
