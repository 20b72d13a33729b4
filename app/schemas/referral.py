from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.referral import DiscountType, ReferralType


class ReferralRuleUpsert(BaseModel):
    """Request to replace the referral rule (admin only)"""

    # CONSUMER
    total_discount: int = Field(..., description="Discount amount (fixed) or percent (percentage)")
    discount_type: str = Field(..., description="Discount type: fixed or percentage")
    expired_days: Optional[int] = Field(None, description="Days a new code stays valid (null = never)")
    max_discount: int = Field(..., description="Discount cap (forced to total_discount for fixed)")
    max_usage: Optional[int] = Field(None, description="Redemptions allowed per code (null = unlimited)")
    # PRODUCER
    reward_per_referral: int = Field(..., description="Reward credited to the code owner per redemption")


class ReferralRuleResponse(BaseModel):
    """Response for referral rule data"""

    id: int = Field(..., description="Rule ID (singleton)")
    total_discount: int
    discount_type: DiscountType
    expired_days: Optional[int] = None
    max_discount: int
    max_usage: Optional[int] = None
    reward_per_referral: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReferralRuleChangeResponse(BaseModel):
    """Audit entry for a referral rule mutation"""

    id: UUID
    profile_id: Optional[UUID] = Field(None, description="Admin who changed the rule")
    total_discount: int
    discount_type: DiscountType
    expired_days: Optional[int] = None
    max_discount: int
    max_usage: Optional[int] = None
    reward_per_referral: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReferralCodeResponse(BaseModel):
    """Referral code as shown to its owner"""

    id: UUID
    code: str
    # CONSUMER
    total_discount: int
    discount_type: DiscountType
    expired_days: Optional[int] = None
    max_discount: int
    max_usage: Optional[int] = None
    # PRODUCER
    reward_per_referral: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReferralCodeDetailResponse(ReferralCodeResponse):
    """Full referral code details including owner and state"""

    type: ReferralType
    is_active: bool
    owner_profile_id: UUID = Field(..., validation_alias="profile_id")


class ReferralValidationResponse(BaseModel):
    """
    Result of validating a referral code for a redemption.

    Invalid codes are a normal outcome: valid=False with a message code.
    Terms are only filled in when valid=True.
    """

    valid: bool
    message: str = Field(..., description="Result code, e.g. REFERRAL_CODE_VALID")
    referral_code_id: Optional[UUID] = None
    discount_type: Optional[DiscountType] = None
    total_discount: Optional[int] = None
    max_discount: Optional[int] = None
    owner_profile_id: Optional[UUID] = Field(None, description="Code owner, receives the reward")
    reward_per_referral: Optional[int] = None


class ReferralUsageResponse(BaseModel):
    """Recorded redemption of a referral code"""

    id: UUID
    referral_code_id: UUID
    consumer_profile_id: UUID
    business_id: int
    discount_type: DiscountType
    total_discount: int
    max_discount: int
    reward_per_referral: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
