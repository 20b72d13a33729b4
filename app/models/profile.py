import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Boolean, DateTime, Enum as SQLEnum, Uuid
from sqlalchemy.orm import relationship

from app.core.database import Base


class AppRole(str, enum.Enum):
    """Application-level role of a profile"""

    USER = "user"
    ADMIN = "admin"  # May change the referral rule


class Profile(Base):
    """Profile model - the account that owns referral codes and acts on rules"""

    __tablename__ = "profiles"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=True)
    role = Column(SQLEnum(AppRole), default=AppRole.USER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # Relationships
    referral_codes = relationship("ProfileReferralCode", back_populates="profile")

    def __repr__(self):
        return f"<Profile {self.email} ({self.role.value if self.role else None})>"
