"""
Referral rule service.

Owns the singleton referral rule: lazy default initialization, validated
admin updates and change detection so no-op updates write nothing.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.database import dialect_insert
from app.exceptions import ForbiddenError, InternalError, ValidationFailedError
from app.models.profile import AppRole
from app.models.referral import ReferralRule, DiscountType, RULE_SINGLETON_ID
from app.schemas.referral import ReferralRuleUpsert
from app.services.audit_service import AuditService
from app.services.profile_service import ProfileService

# Fields compared for change detection and copied into audit snapshots
RULE_FIELDS = (
    "total_discount",
    "discount_type",
    "expired_days",
    "max_discount",
    "max_usage",
    "reward_per_referral",
)


def normalize_rule_input(data: ReferralRuleUpsert) -> ReferralRuleUpsert:
    """
    Validate and normalize a rule update.

    Checks run in a fixed order and the first failure is raised. For fixed
    discounts max_discount is forced to total_discount.

    Returns:
        Copy of the input with discount_type as DiscountType

    Raises:
        ValidationFailedError: On the first invalid field
    """
    try:
        discount_type = DiscountType(data.discount_type)
    except ValueError:
        raise ValidationFailedError("DISCOUNT_TYPE_NOT_ALLOWED", field="discount_type")

    max_discount = data.total_discount if discount_type == DiscountType.FIXED else data.max_discount

    if data.total_discount < 0:
        raise ValidationFailedError("TOTAL_DISCOUNT_MUST_BE_POSITIVE", field="total_discount")
    if max_discount < 0:
        raise ValidationFailedError("MAX_DISCOUNT_MUST_BE_POSITIVE", field="max_discount")
    if data.reward_per_referral < 0:
        raise ValidationFailedError("REWARD_PER_REFERRAL_MUST_BE_POSITIVE", field="reward_per_referral")
    if data.expired_days is not None and data.expired_days <= 0:
        raise ValidationFailedError("EXPIRED_DAYS_MUST_BE_POSITIVE_OR_NULL", field="expired_days")
    if data.max_usage is not None and data.max_usage <= 0:
        raise ValidationFailedError("MAX_USAGE_MUST_BE_POSITIVE_OR_NULL", field="max_usage")
    if discount_type == DiscountType.PERCENTAGE and data.total_discount > 100:
        raise ValidationFailedError("TOTAL_DISCOUNT_MUST_BE_LESS_OR_EQUAL_100_PERCENT", field="total_discount")

    return data.model_copy(update={"discount_type": discount_type, "max_discount": max_discount})


def diff_rule(current: Any, new: Any) -> List[str]:
    """
    Compare two rule snapshots field by field.

    Works on anything exposing the rule fields as attributes (ORM rows,
    schemas). Optional fields are equal when both are None or both hold the
    same value.

    Returns:
        Names of the fields that differ (empty list = no change)
    """
    return [field for field in RULE_FIELDS if getattr(current, field) != getattr(new, field)]


def rule_values(snapshot: Any) -> Dict[str, Any]:
    """Extract rule field values from a snapshot as a dict"""
    return {field: getattr(snapshot, field) for field in RULE_FIELDS}


class ReferralRuleService:
    """Service for reading and updating the referral rule"""

    @staticmethod
    def get_rule(db: Session) -> ReferralRule:
        """
        Get the current referral rule, creating the default one if missing.

        Creation uses INSERT ... ON CONFLICT DO NOTHING, so concurrent first
        reads in different processes all end up with the same row. Default
        initialization is not audited.

        Args:
            db: Database session

        Returns:
            ReferralRule: The singleton rule

        Raises:
            InternalError: If the database is unreachable or the query fails
        """
        try:
            rule = ReferralRuleService._get_rule_row(db)
            if rule:
                return rule

            defaults = settings.get_default_rule_values()
            defaults["discount_type"] = DiscountType(defaults["discount_type"])

            stmt = (
                dialect_insert(db, ReferralRule.__table__)
                .values(id=RULE_SINGLETON_ID, **defaults)
                .on_conflict_do_nothing(index_elements=["id"])
            )
            created = db.execute(stmt).rowcount == 1
            db.commit()

            rule = ReferralRuleService._get_rule_row(db)
        except (SQLAlchemyError, NotImplementedError) as e:
            db.rollback()
            logger.error(f"Failed to load referral rule: {e}")
            raise InternalError() from e

        if rule is None:
            logger.error("Referral rule missing right after default initialization")
            raise InternalError()

        if created:
            logger.info("Referral rule initialized with defaults")
        return rule

    @staticmethod
    def upsert_rule(actor_id: UUID, data: ReferralRuleUpsert, db: Session) -> ReferralRule:
        """
        Replace the referral rule.

        Process:
            1. Resolve the actor and require the admin role
            2. Validate and normalize the input
            3. Compare with the current rule, return it untouched if equal
            4. Upsert the rule and append an audit entry in one transaction

        Args:
            actor_id: Profile performing the update
            data: New rule values
            db: Database session

        Returns:
            ReferralRule: Rule as stored after the call

        Raises:
            NotFoundError: If the actor profile does not exist
            ForbiddenError: If the actor is not an admin
            ValidationFailedError: If a value is invalid
            InternalError: If the database write fails (nothing is persisted)
        """
        actor = ProfileService.get_profile(actor_id, db)
        if actor.role != AppRole.ADMIN:
            logger.warning(f"Profile {actor_id} with role {actor.role.value} tried to change referral rule")
            raise ForbiddenError()

        normalized = normalize_rule_input(data)

        current = ReferralRuleService.get_rule(db)
        changed_fields = diff_rule(current, normalized)
        if not changed_fields:
            logger.info(f"Referral rule unchanged, skipping update by profile {actor_id}")
            return current

        try:
            rule = ReferralRuleService._upsert_rule_row(rule_values(normalized), db)
            # Audit snapshot comes from the stored row, not from the input
            AuditService.log_rule_change(rule, actor.id, db)
            db.commit()
        except (SQLAlchemyError, NotImplementedError) as e:
            db.rollback()
            logger.error(f"Failed to update referral rule: {e}")
            raise InternalError() from e

        db.refresh(rule)
        logger.info(f"Referral rule updated by profile {actor_id}, changed fields: {', '.join(changed_fields)}")
        return rule

    @staticmethod
    def _get_rule_row(db: Session) -> Optional[ReferralRule]:
        """Read the singleton row, bypassing stale identity map state"""
        return (
            db.query(ReferralRule)
            .populate_existing()
            .filter(ReferralRule.id == RULE_SINGLETON_ID)
            .first()
        )

    @staticmethod
    def _upsert_rule_row(values: Dict[str, Any], db: Session) -> ReferralRule:
        """
        INSERT ... ON CONFLICT DO UPDATE the singleton row and read it back.

        Does not commit.
        """
        stmt = dialect_insert(db, ReferralRule.__table__).values(id=RULE_SINGLETON_ID, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={**values, "updated_at": datetime.now(timezone.utc)},
        )
        db.execute(stmt)
        return ReferralRuleService._get_rule_row(db)
