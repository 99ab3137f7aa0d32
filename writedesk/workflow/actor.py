"""
The authenticated caller of a workflow operation and its role checks.
"""
from dataclasses import dataclass
from typing import Optional

from ..models.enums import Role

REVIEW_ASSIGNERS = (Role.ADMIN.value, Role.TEACHER.value, Role.REVIEWER.value)
EDITORS = (Role.ADMIN.value, Role.TEACHER.value)


@dataclass(frozen=True)
class Actor:
    """Identity supplied by the auth provider. Trusted as-is."""
    id: int
    role: str
    organization_id: Optional[int] = None


def is_admin(actor: Actor) -> bool:
    return actor.role == Role.ADMIN.value


def is_teacher(actor: Actor) -> bool:
    return actor.role == Role.TEACHER.value


def can_assign_reviews(actor: Actor) -> bool:
    return actor.role in REVIEW_ASSIGNERS


def can_edit_magazines(actor: Actor) -> bool:
    return actor.role in EDITORS


def can_publish_content(actor: Actor) -> bool:
    return actor.role in EDITORS
