"""
Referral program models

- ReferralRule: singleton configuration for newly issued codes
- ReferralRuleChange: append-only audit trail of rule mutations
- ProfileReferralCode: per-profile referral code with a snapshot of the rule
- ReferralCodeUsage: one row per redemption (running usage count)
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    String,
    Integer,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    CheckConstraint,
    UniqueConstraint,
    Enum as SQLEnum,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.core.database import Base

# The referral rule table holds exactly one row with this primary key
RULE_SINGLETON_ID = 1


class DiscountType(str, enum.Enum):
    """How total_discount is applied"""

    FIXED = "fixed"  # Fixed amount, max_discount == total_discount
    PERCENTAGE = "percentage"  # Percent of the order, capped by max_discount


class ReferralType(str, enum.Enum):
    """Referral code type"""

    BASIC = "basic"  # Default code every profile can request


class ReferralRule(Base):
    """
    Current referral rule (singleton).

    Attributes:
        id: Always RULE_SINGLETON_ID
        total_discount: Discount amount (fixed) or percent (percentage)
        discount_type: fixed or percentage
        expired_days: Days a new code stays valid (None = never expires)
        max_discount: Discount cap, equals total_discount for fixed rules
        max_usage: Redemptions allowed per code (None = unlimited)
        reward_per_referral: Amount credited to the code owner per redemption
    """

    __tablename__ = "referral_rules"
    __table_args__ = (
        CheckConstraint(f"id = {RULE_SINGLETON_ID}", name="check_referral_rule_singleton"),
        CheckConstraint("total_discount >= 0", name="check_rule_total_discount_non_negative"),
        CheckConstraint("max_discount >= 0", name="check_rule_max_discount_non_negative"),
        CheckConstraint("reward_per_referral >= 0", name="check_rule_reward_non_negative"),
        CheckConstraint("expired_days IS NULL OR expired_days > 0", name="check_rule_expired_days_positive"),
        CheckConstraint("max_usage IS NULL OR max_usage > 0", name="check_rule_max_usage_positive"),
    )

    id = Column(Integer, primary_key=True, default=RULE_SINGLETON_ID, autoincrement=False)
    total_discount = Column(BigInteger, nullable=False)
    discount_type = Column(SQLEnum(DiscountType), nullable=False)
    expired_days = Column(Integer, nullable=True)
    max_discount = Column(BigInteger, nullable=False)
    max_usage = Column(Integer, nullable=True)
    reward_per_referral = Column(BigInteger, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<ReferralRule {self.total_discount} {self.discount_type.value}>"


class ReferralRuleChange(Base):
    """Snapshot of the referral rule after each real mutation"""

    __tablename__ = "referral_rule_changes"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    profile_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Admin who changed the rule",
    )
    total_discount = Column(BigInteger, nullable=False)
    discount_type = Column(SQLEnum(DiscountType), nullable=False)
    expired_days = Column(Integer, nullable=True)
    max_discount = Column(BigInteger, nullable=False)
    max_usage = Column(Integer, nullable=True)
    reward_per_referral = Column(BigInteger, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    def __repr__(self):
        return f"<ReferralRuleChange {self.id} by profile {self.profile_id}>"


class ProfileReferralCode(Base):
    """
    Referral code owned by a profile.

    The discount/reward fields are copied from the rule at creation time and
    are never updated afterwards.
    """

    __tablename__ = "profile_referral_codes"
    __table_args__ = (
        UniqueConstraint("profile_id", "type", name="uq_profile_referral_codes_profile_type"),
        CheckConstraint("total_discount >= 0", name="check_code_total_discount_non_negative"),
        CheckConstraint("max_discount >= 0", name="check_code_max_discount_non_negative"),
        CheckConstraint("reward_per_referral >= 0", name="check_code_reward_non_negative"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    profile_id = Column(
        Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code = Column(String(16), unique=True, nullable=False, index=True, comment="Unique uppercase alphanumeric code")
    type = Column(SQLEnum(ReferralType), default=ReferralType.BASIC, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Rule snapshot
    total_discount = Column(BigInteger, nullable=False)
    discount_type = Column(SQLEnum(DiscountType), nullable=False)
    expired_days = Column(Integer, nullable=True)
    max_discount = Column(BigInteger, nullable=False)
    max_usage = Column(Integer, nullable=True)
    reward_per_referral = Column(BigInteger, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # Relationships
    profile = relationship("Profile", back_populates="referral_codes")
    usages = relationship("ReferralCodeUsage", back_populates="referral_code", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<ProfileReferralCode {self.code} ({self.type.value}) of profile {self.profile_id}>"


class ReferralCodeUsage(Base):
    """
    Redemption of a referral code.

    A profile and a business may each redeem a given code at most once.
    """

    __tablename__ = "referral_code_usages"
    __table_args__ = (
        UniqueConstraint("referral_code_id", "consumer_profile_id", name="uq_referral_usage_code_profile"),
        UniqueConstraint("referral_code_id", "business_id", name="uq_referral_usage_code_business"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    referral_code_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("profile_referral_codes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    consumer_profile_id = Column(
        Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    business_id = Column(BigInteger, nullable=False, comment="Business the redemption applies to")

    # Terms applied at redemption time
    discount_type = Column(SQLEnum(DiscountType), nullable=False)
    total_discount = Column(BigInteger, nullable=False)
    max_discount = Column(BigInteger, nullable=False)
    reward_per_referral = Column(BigInteger, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    referral_code = relationship("ProfileReferralCode", back_populates="usages")

    def __repr__(self):
        return f"<ReferralCodeUsage code={self.referral_code_id} by profile {self.consumer_profile_id}>"
