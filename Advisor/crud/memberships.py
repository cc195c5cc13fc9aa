from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from Advisor.models.organization_model import OrganizationMember


# Get a user's membership in one organization
def get_membership(db: Session, organization_id: str, user_id: str) -> Optional[OrganizationMember]:
    stmt = select(OrganizationMember).where(
        OrganizationMember.organization_id == organization_id,
        OrganizationMember.user_id == user_id,
    )
    return db.execute(stmt).scalar_one_or_none()
