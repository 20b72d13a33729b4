"""
Audit Service for referral rule changes

Every real mutation of the referral rule leaves one ReferralRuleChange row
with the acting admin and the full rule snapshot as stored.
"""
from uuid import UUID
from typing import List

from loguru import logger
from sqlalchemy import desc
from sqlalchemy.orm import Session

from app.models.referral import ReferralRule, ReferralRuleChange


class AuditService:
    """
    Service for creating rule audit entries

    All audit entries are committed by the caller to ensure atomicity
    with the rule write being audited.
    """

    @staticmethod
    def log_rule_change(rule: ReferralRule, actor_id: UUID, db: Session) -> ReferralRuleChange:
        """
        Create an audit entry for a rule mutation

        Args:
            rule: Rule row as persisted (read back after the upsert)
            actor_id: UUID of the admin performing the change
            db: Database session

        Returns:
            Created ReferralRuleChange instance (not yet committed)

        Example:
            ```python
            rule = ReferralRuleService._upsert_rule_row(values, db)
            AuditService.log_rule_change(rule, actor_id, db)
            db.commit()  # Commit with the rule write
            ```
        """
        change = ReferralRuleChange(
            profile_id=actor_id,
            total_discount=rule.total_discount,
            discount_type=rule.discount_type,
            expired_days=rule.expired_days,
            max_discount=rule.max_discount,
            max_usage=rule.max_usage,
            reward_per_referral=rule.reward_per_referral,
        )

        db.add(change)

        logger.info(
            f"Audit: referral_rule_update by profile {actor_id} "
            f"(total_discount={rule.total_discount}, discount_type={rule.discount_type.value}, "
            f"max_discount={rule.max_discount}, reward_per_referral={rule.reward_per_referral})"
        )

        return change

    @staticmethod
    def get_rule_changes(db: Session, limit: int = 50, offset: int = 0) -> List[ReferralRuleChange]:
        """Get rule audit entries, newest first"""
        return (
            db.query(ReferralRuleChange)
            .order_by(desc(ReferralRuleChange.created_at))
            .limit(limit)
            .offset(offset)
            .all()
        )
