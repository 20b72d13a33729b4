"""
Referral code service.

Issues per-profile referral codes, looks them up and validates/records
their redemption. Uniqueness is enforced by database constraints only:
the issuance loop interprets unique violations instead of locking.
"""
import enum
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.database import is_unique_violation
from app.exceptions import (
    BadRequestError,
    InternalError,
    NotFoundError,
    ReferralCodeGenerationError,
)
from app.models.referral import (
    ProfileReferralCode,
    ReferralCodeUsage,
    ReferralType,
    DiscountType,
)
from app.schemas.referral import ReferralValidationResponse
from app.services.referral_rule_service import ReferralRuleService, rule_values


class IssuanceOutcome(str, enum.Enum):
    """Result of a single code creation attempt"""

    CREATED = "created"  # Row inserted with the generated code
    LOST_RACE = "lost_race"  # Concurrent request created the profile's code first
    COLLISION = "collision"  # Generated code already taken, try another one


# Validation result codes
REFERRAL_CODE_VALID = "REFERRAL_CODE_VALID"
REFERRAL_CODE_NOT_FOUND = "REFERRAL_CODE_NOT_FOUND"
REFERRAL_CODE_INACTIVE = "REFERRAL_CODE_INACTIVE"
CANNOT_USE_OWN_REFERRAL_CODE = "CANNOT_USE_OWN_REFERRAL_CODE"
REFERRAL_CODE_EXPIRED = "REFERRAL_CODE_EXPIRED"
REFERRAL_CODE_MAX_USAGE_REACHED = "REFERRAL_CODE_MAX_USAGE_REACHED"
PROFILE_ALREADY_USED_REFERRAL_CODE = "PROFILE_ALREADY_USED_REFERRAL_CODE"
BUSINESS_ALREADY_USED_REFERRAL_CODE = "BUSINESS_ALREADY_USED_REFERRAL_CODE"


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalize_code(code: str) -> str:
    return code.strip().upper()


class ReferralService:
    """Service for referral code issuance and redemption"""

    @staticmethod
    def generate_referral_code(length: Optional[int] = None) -> str:
        """
        Generate a random referral code.

        Each character is drawn uniformly from REFERRAL_CODE_ALPHABET
        (A-Z0-9 by default) with the secrets module.

        Args:
            length: Code length (defaults to REFERRAL_CODE_LENGTH)

        Returns:
            str: Uppercase alphanumeric code
        """
        if length is None:
            length = settings.REFERRAL_CODE_LENGTH
        alphabet = settings.REFERRAL_CODE_ALPHABET
        return "".join(secrets.choice(alphabet) for _ in range(length))

    @staticmethod
    def get_or_create_basic_code(profile_id: UUID, db: Session) -> ProfileReferralCode:
        """
        Get the profile's basic referral code, creating it on first request.

        A new code copies the current rule values. Creation is retried with a
        fresh code on code collisions, up to REFERRAL_CODE_MAX_ATTEMPTS times.
        When two requests race for the same profile, the (profile_id, type)
        unique constraint lets only one insert win and the loser returns the
        winner's row.

        Args:
            profile_id: Owner profile UUID
            db: Database session

        Returns:
            ProfileReferralCode: Existing or newly created basic code

        Raises:
            ReferralCodeGenerationError: If every attempt collided
            InternalError: If the database fails
        """
        existing = ReferralService._find_basic_code(profile_id, db)
        if existing:
            return existing

        rule = ReferralRuleService.get_rule(db)
        template = {
            "profile_id": profile_id,
            "type": ReferralType.BASIC,
            "is_active": True,
            **rule_values(rule),
        }

        max_attempts = settings.REFERRAL_CODE_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            code = ReferralService.generate_referral_code()
            outcome, referral_code = ReferralService._attempt_create_code(template, code, db)

            if outcome == IssuanceOutcome.CREATED:
                logger.info(f"Referral code {referral_code.code} created for profile {profile_id}")
                return referral_code

            if outcome == IssuanceOutcome.LOST_RACE:
                logger.info(
                    f"Concurrent request already created referral code {referral_code.code} "
                    f"for profile {profile_id}"
                )
                return referral_code

            logger.warning(f"Referral code collision on attempt {attempt}/{max_attempts} for profile {profile_id}")

        logger.error(
            f"Unable to generate unique referral code for profile {profile_id} "
            f"after {max_attempts} attempts"
        )
        raise ReferralCodeGenerationError()

    @staticmethod
    def get_code_by_code(code: str, db: Session) -> ProfileReferralCode:
        """
        Get referral code details by code value.

        Raises:
            NotFoundError: If no such code exists
            InternalError: If the database fails
        """
        referral_code = ReferralService._find_by_code(code, db)
        if not referral_code:
            raise NotFoundError("REFERRAL_CODE_NOT_FOUND")
        return referral_code

    @staticmethod
    def validate_referral(
        code: str,
        profile_id: UUID,
        business_id: int,
        db: Session,
    ) -> ReferralValidationResponse:
        """
        Check whether a referral code can be redeemed.

        Invalid codes are an expected outcome and are returned with
        valid=False and a result code, never raised. Discount and reward
        terms come from the code's own snapshot, not the live rule.

        Args:
            code: Referral code entered by the redeemer
            profile_id: Redeeming profile UUID
            business_id: Business the redemption applies to
            db: Database session

        Returns:
            ReferralValidationResponse

        Raises:
            InternalError: If the database fails
        """
        referral_code = ReferralService._find_by_code(code, db)
        return ReferralService._evaluate(referral_code, profile_id, business_id, db)

    @staticmethod
    def count_usage(referral_code_id: UUID, db: Session) -> int:
        """Count recorded redemptions of a referral code"""
        try:
            return (
                db.query(func.count(ReferralCodeUsage.id))
                .filter(ReferralCodeUsage.referral_code_id == referral_code_id)
                .scalar()
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to count usage of referral code {referral_code_id}: {e}")
            raise InternalError() from e

    @staticmethod
    def record_usage(
        code: str,
        profile_id: UUID,
        business_id: int,
        db: Session,
    ) -> ReferralCodeUsage:
        """
        Record a redemption of a referral code.

        The code row is write-locked before it is validated again, inside the
        same transaction as the insert. The lock is a no-op UPDATE, which
        takes a row lock on PostgreSQL and the database write lock on SQLite,
        so concurrent redemptions of one code are serialized and the usage
        cap holds.

        Args:
            code: Referral code being redeemed
            profile_id: Redeeming profile UUID
            business_id: Business the redemption applies to
            db: Database session

        Returns:
            ReferralCodeUsage: Recorded redemption with the applied terms

        Raises:
            BadRequestError: If the code cannot be redeemed (code = result code)
            InternalError: If the database fails
        """
        referral_code = ReferralService._find_by_code(code, db)
        if referral_code is not None:
            ReferralService._lock_code(referral_code, db)

        result = ReferralService._evaluate(referral_code, profile_id, business_id, db)
        if not result.valid:
            db.rollback()
            raise BadRequestError(result.message)

        usage = ReferralCodeUsage(
            referral_code_id=referral_code.id,
            consumer_profile_id=profile_id,
            business_id=business_id,
            discount_type=referral_code.discount_type,
            total_discount=referral_code.total_discount,
            max_discount=referral_code.max_discount,
            reward_per_referral=referral_code.reward_per_referral,
        )
        db.add(usage)

        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            if not is_unique_violation(e):
                logger.error(f"Failed to record referral usage: {e}")
                raise InternalError() from e
            # Concurrent redemption by the same profile or business
            if ReferralService._profile_used(referral_code.id, profile_id, db):
                raise BadRequestError(PROFILE_ALREADY_USED_REFERRAL_CODE)
            raise BadRequestError(BUSINESS_ALREADY_USED_REFERRAL_CODE)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to record referral usage: {e}")
            raise InternalError() from e

        db.refresh(usage)
        logger.info(
            f"Referral code {referral_code.code} redeemed by profile {profile_id} "
            f"for business {business_id} (owner reward {usage.reward_per_referral})"
        )
        return usage

    @staticmethod
    def calculate_discount(terms: ReferralValidationResponse, amount: int) -> int:
        """
        Calculate the discount granted on an order amount.

        Fixed discounts are capped by the amount. Percentage discounts are
        floored and capped by max_discount and the amount.

        Raises:
            BadRequestError: If the terms are not from a valid code
        """
        if not terms.valid:
            raise BadRequestError(terms.message)
        if amount <= 0:
            return 0

        if terms.discount_type == DiscountType.FIXED:
            return min(terms.total_discount, amount)

        discount = amount * terms.total_discount // 100
        return min(discount, terms.max_discount, amount)

    @staticmethod
    def _attempt_create_code(
        template: Dict[str, Any], code: str, db: Session
    ) -> Tuple[IssuanceOutcome, Optional[ProfileReferralCode]]:
        """
        Try to insert one referral code row.

        Returns:
            (CREATED, new row), (LOST_RACE, existing row) or (COLLISION, None)

        Raises:
            InternalError: On any failure other than a unique violation
        """
        referral_code = ProfileReferralCode(code=code, **template)
        db.add(referral_code)

        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            if not is_unique_violation(e):
                logger.error(f"Failed to create referral code: {e}")
                raise InternalError() from e

            existing = ReferralService._find_basic_code(template["profile_id"], db)
            if existing:
                return IssuanceOutcome.LOST_RACE, existing
            return IssuanceOutcome.COLLISION, None
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to create referral code: {e}")
            raise InternalError() from e

        db.refresh(referral_code)
        return IssuanceOutcome.CREATED, referral_code

    @staticmethod
    def _evaluate(
        referral_code: Optional[ProfileReferralCode],
        profile_id: UUID,
        business_id: int,
        db: Session,
    ) -> ReferralValidationResponse:
        if referral_code is None:
            return ReferralValidationResponse(valid=False, message=REFERRAL_CODE_NOT_FOUND)

        if not referral_code.is_active:
            return ReferralValidationResponse(valid=False, message=REFERRAL_CODE_INACTIVE)

        if referral_code.profile_id == profile_id:
            return ReferralValidationResponse(valid=False, message=CANNOT_USE_OWN_REFERRAL_CODE)

        if referral_code.expired_days is not None:
            expires_at = _as_utc(referral_code.created_at) + timedelta(days=referral_code.expired_days)
            if datetime.now(timezone.utc) > expires_at:
                return ReferralValidationResponse(valid=False, message=REFERRAL_CODE_EXPIRED)

        if referral_code.max_usage is not None:
            usage_count = ReferralService.count_usage(referral_code.id, db)
            if usage_count >= referral_code.max_usage:
                return ReferralValidationResponse(valid=False, message=REFERRAL_CODE_MAX_USAGE_REACHED)

        if ReferralService._profile_used(referral_code.id, profile_id, db):
            return ReferralValidationResponse(valid=False, message=PROFILE_ALREADY_USED_REFERRAL_CODE)

        if ReferralService._business_used(referral_code.id, business_id, db):
            return ReferralValidationResponse(valid=False, message=BUSINESS_ALREADY_USED_REFERRAL_CODE)

        return ReferralValidationResponse(
            valid=True,
            message=REFERRAL_CODE_VALID,
            referral_code_id=referral_code.id,
            discount_type=referral_code.discount_type,
            total_discount=referral_code.total_discount,
            max_discount=referral_code.max_discount,
            owner_profile_id=referral_code.profile_id,
            reward_per_referral=referral_code.reward_per_referral,
        )

    @staticmethod
    def _find_basic_code(profile_id: UUID, db: Session) -> Optional[ProfileReferralCode]:
        try:
            return (
                db.query(ProfileReferralCode)
                .filter(
                    ProfileReferralCode.profile_id == profile_id,
                    ProfileReferralCode.type == ReferralType.BASIC,
                )
                .first()
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to load referral code of profile {profile_id}: {e}")
            raise InternalError() from e

    @staticmethod
    def _find_by_code(code: str, db: Session) -> Optional[ProfileReferralCode]:
        try:
            return (
                db.query(ProfileReferralCode)
                .filter(ProfileReferralCode.code == _normalize_code(code))
                .first()
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to load referral code: {e}")
            raise InternalError() from e

    @staticmethod
    def _lock_code(referral_code: ProfileReferralCode, db: Session) -> None:
        """Write-lock the code row and reload it. Held until commit or rollback."""
        try:
            db.execute(
                update(ProfileReferralCode)
                .where(ProfileReferralCode.id == referral_code.id)
                .values(code=ProfileReferralCode.code, updated_at=ProfileReferralCode.updated_at)
                .execution_options(synchronize_session=False)
            )
            db.refresh(referral_code)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to lock referral code {referral_code.code}: {e}")
            raise InternalError() from e

    @staticmethod
    def _profile_used(referral_code_id: UUID, profile_id: UUID, db: Session) -> bool:
        return ReferralService._usage_exists(
            db,
            ReferralCodeUsage.referral_code_id == referral_code_id,
            ReferralCodeUsage.consumer_profile_id == profile_id,
        )

    @staticmethod
    def _business_used(referral_code_id: UUID, business_id: int, db: Session) -> bool:
        return ReferralService._usage_exists(
            db,
            ReferralCodeUsage.referral_code_id == referral_code_id,
            ReferralCodeUsage.business_id == business_id,
        )

    @staticmethod
    def _usage_exists(db: Session, *criteria) -> bool:
        try:
            return db.query(db.query(ReferralCodeUsage).filter(*criteria).exists()).scalar()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to check referral usage: {e}")
            raise InternalError() from e
