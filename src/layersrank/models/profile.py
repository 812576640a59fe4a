"""Profile model carrying leaderboard scope membership."""

from sqlalchemy import Column, DateTime, Index, String, Uuid

from ..core.database import Base
from ..utils.datetime import utcnow


class Profile(Base):
    """Represents a platform user and the college/company they belong to."""

    __tablename__ = "profiles"
    __table_args__ = (
        Index("profiles_college_idx", "college_id"),
        Index("profiles_company_idx", "company_id"),
    )

    user_id = Column(Uuid(as_uuid=True), primary_key=True)
    display_name = Column(String, nullable=False)
    college_id = Column(String)
    company_id = Column(String)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
