from app.schemas.referral import (
    ReferralRuleUpsert,
    ReferralRuleResponse,
    ReferralRuleChangeResponse,
    ReferralCodeResponse,
    ReferralCodeDetailResponse,
    ReferralValidationResponse,
    ReferralUsageResponse,
)

__all__ = [
    "ReferralRuleUpsert",
    "ReferralRuleResponse",
    "ReferralRuleChangeResponse",
    "ReferralCodeResponse",
    "ReferralCodeDetailResponse",
    "ReferralValidationResponse",
    "ReferralUsageResponse",
]
