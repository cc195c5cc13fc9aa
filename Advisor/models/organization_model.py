import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, func

from Advisor.database import Base


# Organizations are managed elsewhere; this service only reads them
class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# A user's role-bearing association with one organization
class OrganizationMember(Base):
    __tablename__ = "organization_members"

    __table_args__ = (
        Index("ux_organization_members_organization_id_user_id", "organization_id", "user_id", unique=True),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(64), index=True, nullable=False)
    role = Column(String(16), nullable=False)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())
