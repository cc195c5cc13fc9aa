"""Authorization decisions over already-loaded rows.

Nothing here touches the database: callers load the conversation and the
requester's memberships, then ask. Decisions are re-derived on every
request, never cached.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Optional


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown role: {value!r}") from None

    @property
    def rank(self) -> int:
        return ROLE_RANK[self]

    def at_least(self, minimum: "Role") -> bool:
        return self.rank >= Role.parse(minimum).rank


# Higher rank grants everything a lower rank can do
ROLE_RANK = {
    Role.VIEWER: 0,
    Role.MEMBER: 1,
    Role.ADMIN: 2,
    Role.OWNER: 3,
}


class ForkDecision(str, Enum):
    APPROVED = "approved"
    ALREADY_OWNED = "already_owned"
    NOT_SHARED = "not_shared"
    NOT_A_MEMBER = "not_a_member"


def is_owner(requester_id: str, conversation: Any) -> bool:
    return conversation.user_id == requester_id


def membership_for(organization_id: str, memberships: Iterable[Any]) -> Optional[Any]:
    for membership in memberships:
        if membership is not None and membership.organization_id == organization_id:
            return membership
    return None


def authorize_fork(requester_id: str, conversation: Any, memberships: Iterable[Any]) -> ForkDecision:
    """Decide whether `requester_id` may fork `conversation`.

    Rules are checked in order and the first match wins: owners cannot fork
    their own conversation, only shared conversations can be forked, and
    the requester must belong to the conversation's organization.
    """
    if is_owner(requester_id, conversation):
        return ForkDecision.ALREADY_OWNED
    if not conversation.is_shared:
        return ForkDecision.NOT_SHARED
    if membership_for(conversation.organization_id, memberships) is None:
        return ForkDecision.NOT_A_MEMBER
    return ForkDecision.APPROVED


# Owners always read; others only when shared and they belong to the organization
def can_read(requester_id: str, conversation: Any, memberships: Iterable[Any]) -> bool:
    if is_owner(requester_id, conversation):
        return True
    if not conversation.is_shared:
        return False
    return membership_for(conversation.organization_id, memberships) is not None
