from app.models.profile import Profile, AppRole
from app.models.referral import (
    ReferralRule,
    ReferralRuleChange,
    ProfileReferralCode,
    ReferralCodeUsage,
    DiscountType,
    ReferralType,
    RULE_SINGLETON_ID,
)

__all__ = [
    "Profile",
    "AppRole",
    "ReferralRule",
    "ReferralRuleChange",
    "ProfileReferralCode",
    "ReferralCodeUsage",
    "DiscountType",
    "ReferralType",
    "RULE_SINGLETON_ID",
]
