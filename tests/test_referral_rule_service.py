"""
Tests for the referral rule service.

Tests:
- Lazy default initialization
- Authorization of rule updates
- Validation and normalization of rule input
- No-op suppression and audit trail
- Rollback on storage failures
"""
import uuid
import pytest
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.exceptions import ForbiddenError, InternalError, NotFoundError, ValidationFailedError
from app.models import ReferralRule, ReferralRuleChange, DiscountType, RULE_SINGLETON_ID
from app.schemas.referral import ReferralRuleUpsert, ReferralRuleResponse, ReferralRuleChangeResponse
from app.services.audit_service import AuditService
from app.services.referral_rule_service import (
    ReferralRuleService,
    diff_rule,
    normalize_rule_input,
)


def make_rule_input(**overrides) -> ReferralRuleUpsert:
    values = {
        "total_discount": 15,
        "discount_type": "percentage",
        "expired_days": 30,
        "max_discount": 10000,
        "max_usage": 5,
        "reward_per_referral": 3000,
    }
    values.update(overrides)
    return ReferralRuleUpsert(**values)


def default_rule_input() -> ReferralRuleUpsert:
    return ReferralRuleUpsert(
        total_discount=100,
        discount_type="percentage",
        expired_days=None,
        max_discount=20000,
        max_usage=None,
        reward_per_referral=20000,
    )


class TestGetRule:
    """Tests for reading the singleton rule"""

    def test_creates_default_rule_when_missing(self, test_db: Session):
        """Initial state has no rule row - defaults are created and returned"""
        assert test_db.query(ReferralRule).count() == 0

        rule = ReferralRuleService.get_rule(test_db)

        assert rule.id == RULE_SINGLETON_ID
        assert rule.total_discount == 100
        assert rule.discount_type == DiscountType.PERCENTAGE
        assert rule.max_discount == 20000
        assert rule.reward_per_referral == 20000
        assert rule.expired_days is None
        assert rule.max_usage is None
        assert test_db.query(ReferralRule).count() == 1

    def test_default_initialization_is_not_audited(self, test_db: Session):
        """Creating the default rule writes no audit entry"""
        ReferralRuleService.get_rule(test_db)

        assert test_db.query(ReferralRuleChange).count() == 0

    def test_repeated_reads_keep_single_row(self, test_db: Session, session_factory):
        """Lazy init from several sessions converges on one row"""
        other_db = session_factory()
        try:
            first = ReferralRuleService.get_rule(test_db)
            second = ReferralRuleService.get_rule(other_db)
        finally:
            other_db.close()

        assert first.id == second.id == RULE_SINGLETON_ID
        assert test_db.query(ReferralRule).count() == 1

    def test_returns_existing_rule(self, test_db: Session, admin_profile):
        """Stored rule is returned as is"""
        ReferralRuleService.upsert_rule(admin_profile.id, make_rule_input(total_discount=42), test_db)

        rule = ReferralRuleService.get_rule(test_db)

        assert rule.total_discount == 42

    def test_storage_failure_raises_internal_error(self):
        """Unreachable database is reported as InternalError"""
        db = MagicMock(spec=Session)
        db.query.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))

        with pytest.raises(InternalError) as exc_info:
            ReferralRuleService.get_rule(db)

        assert "connection refused" not in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, OperationalError)
        db.rollback.assert_called_once()

    def test_unsupported_dialect_raises_internal_error(self):
        """Missing ON CONFLICT support is reported as InternalError"""
        db = MagicMock(spec=Session)
        db.query.return_value.populate_existing.return_value.filter.return_value.first.return_value = None
        db.get_bind.return_value.dialect.name = "mssql"

        with pytest.raises(InternalError) as exc_info:
            ReferralRuleService.get_rule(db)

        assert isinstance(exc_info.value.__cause__, NotImplementedError)
        db.rollback.assert_called_once()

    def test_initialization_logged_only_when_inserted(self, test_db: Session, monkeypatch, log_messages):
        """A read that loses the initialization race does not log a creation"""
        ReferralRuleService.get_rule(test_db)
        log_messages.clear()

        # Row is missed by the first read, as if another process created it meanwhile
        original_get_rule_row = ReferralRuleService._get_rule_row
        reads = []

        def stale_get_rule_row(db):
            reads.append(1)
            if len(reads) == 1:
                return None
            return original_get_rule_row(db)

        monkeypatch.setattr(ReferralRuleService, "_get_rule_row", staticmethod(stale_get_rule_row))

        rule = ReferralRuleService.get_rule(test_db)

        assert rule.id == RULE_SINGLETON_ID
        assert len(reads) == 2
        assert test_db.query(ReferralRule).count() == 1
        assert not any("initialized with defaults" in record["message"] for record in log_messages)

    def test_initialization_is_logged(self, test_db: Session, log_messages):
        """Creating the default rule is logged once"""
        ReferralRuleService.get_rule(test_db)
        ReferralRuleService.get_rule(test_db)

        assert sum("initialized with defaults" in record["message"] for record in log_messages) == 1

    def test_rule_serializes_to_response(self, test_db: Session):
        """Rule row renders through the response schema"""
        rule = ReferralRuleService.get_rule(test_db)

        response = ReferralRuleResponse.model_validate(rule)

        assert response.model_dump(mode="json")["discount_type"] == "percentage"
        assert response.expired_days is None


class TestUpsertRuleAuthorization:
    """Tests for actor checks on rule updates"""

    def test_non_admin_is_forbidden(self, test_db: Session, test_profile):
        """Regular profile cannot change the rule and nothing is written"""
        with pytest.raises(ForbiddenError):
            ReferralRuleService.upsert_rule(test_profile.id, make_rule_input(), test_db)

        assert test_db.query(ReferralRule).count() == 0
        assert test_db.query(ReferralRuleChange).count() == 0

    def test_unknown_actor_is_not_found(self, test_db: Session):
        """Actor ID that resolves to no profile fails with NotFoundError"""
        with pytest.raises(NotFoundError) as exc_info:
            ReferralRuleService.upsert_rule(uuid.uuid4(), make_rule_input(), test_db)

        assert exc_info.value.code == "PROFILE_NOT_FOUND"
        assert test_db.query(ReferralRule).count() == 0

    def test_authorization_checked_before_validation(self, test_db: Session, test_profile):
        """Invalid input from a non-admin still fails with ForbiddenError"""
        with pytest.raises(ForbiddenError):
            ReferralRuleService.upsert_rule(
                test_profile.id, make_rule_input(discount_type="bogus"), test_db
            )


class TestUpsertRuleValidation:
    """Tests for rule input validation"""

    @pytest.mark.parametrize(
        "overrides, code, field",
        [
            ({"discount_type": "bogus"}, "DISCOUNT_TYPE_NOT_ALLOWED", "discount_type"),
            ({"total_discount": -1}, "TOTAL_DISCOUNT_MUST_BE_POSITIVE", "total_discount"),
            ({"max_discount": -1}, "MAX_DISCOUNT_MUST_BE_POSITIVE", "max_discount"),
            ({"reward_per_referral": -1}, "REWARD_PER_REFERRAL_MUST_BE_POSITIVE", "reward_per_referral"),
            ({"expired_days": 0}, "EXPIRED_DAYS_MUST_BE_POSITIVE_OR_NULL", "expired_days"),
            ({"max_usage": -3}, "MAX_USAGE_MUST_BE_POSITIVE_OR_NULL", "max_usage"),
            ({"total_discount": 101}, "TOTAL_DISCOUNT_MUST_BE_LESS_OR_EQUAL_100_PERCENT", "total_discount"),
        ],
    )
    def test_invalid_input_rejected(self, test_db: Session, admin_profile, overrides, code, field):
        """Each invalid field has its own error and nothing is written"""
        with pytest.raises(ValidationFailedError) as exc_info:
            ReferralRuleService.upsert_rule(admin_profile.id, make_rule_input(**overrides), test_db)

        assert exc_info.value.code == code
        assert exc_info.value.field == field
        assert test_db.query(ReferralRule).count() == 0
        assert test_db.query(ReferralRuleChange).count() == 0

    def test_fixed_discount_forces_max_discount(self, test_db: Session, admin_profile):
        """Fixed rule stores max_discount == total_discount whatever was submitted"""
        rule = ReferralRuleService.upsert_rule(
            admin_profile.id,
            make_rule_input(discount_type="fixed", total_discount=5000, max_discount=1),
            test_db,
        )

        assert rule.discount_type == DiscountType.FIXED
        assert rule.max_discount == rule.total_discount == 5000

    def test_fixed_discount_above_100_allowed(self, test_db: Session, admin_profile):
        """The 100 cap only applies to percentage rules"""
        rule = ReferralRuleService.upsert_rule(
            admin_profile.id, make_rule_input(discount_type="fixed", total_discount=15000), test_db
        )

        assert rule.total_discount == 15000

    def test_negative_max_discount_ignored_for_fixed(self):
        """Fixed normalization happens before the max_discount check"""
        normalized = normalize_rule_input(
            make_rule_input(discount_type="fixed", total_discount=10, max_discount=-5)
        )

        assert normalized.max_discount == 10

    def test_validation_order(self):
        """First failing check wins"""
        with pytest.raises(ValidationFailedError) as exc_info:
            normalize_rule_input(make_rule_input(total_discount=-1, reward_per_referral=-1))

        assert exc_info.value.code == "TOTAL_DISCOUNT_MUST_BE_POSITIVE"

    def test_boundary_values_accepted(self):
        """Zero amounts, 100 percent and 1-day/1-use limits are valid"""
        normalized = normalize_rule_input(
            make_rule_input(
                total_discount=100, max_discount=0, reward_per_referral=0, expired_days=1, max_usage=1
            )
        )

        assert normalized.discount_type == DiscountType.PERCENTAGE
        assert normalized.total_discount == 100


class TestUpsertRuleChanges:
    """Tests for change detection and audit trail"""

    def test_change_writes_one_audit_entry(self, test_db: Session, admin_profile):
        """Changed rule is stored with one matching audit snapshot"""
        rule = ReferralRuleService.upsert_rule(admin_profile.id, make_rule_input(), test_db)

        changes = test_db.query(ReferralRuleChange).all()
        assert len(changes) == 1
        change = changes[0]
        assert change.profile_id == admin_profile.id
        assert change.total_discount == rule.total_discount == 15
        assert change.discount_type == rule.discount_type == DiscountType.PERCENTAGE
        assert change.expired_days == rule.expired_days == 30
        assert change.max_discount == rule.max_discount == 10000
        assert change.max_usage == rule.max_usage == 5
        assert change.reward_per_referral == rule.reward_per_referral == 3000

    def test_audit_uses_normalized_values(self, test_db: Session, admin_profile):
        """Audit snapshot records the stored max_discount, not the submitted one"""
        ReferralRuleService.upsert_rule(
            admin_profile.id,
            make_rule_input(discount_type="fixed", total_discount=700, max_discount=99999),
            test_db,
        )

        change = test_db.query(ReferralRuleChange).one()
        assert change.max_discount == 700

    def test_identical_update_is_noop(self, test_db: Session, admin_profile):
        """Submitting the current rule writes no audit entry"""
        first = ReferralRuleService.upsert_rule(admin_profile.id, make_rule_input(), test_db)
        updated_at = first.updated_at

        second = ReferralRuleService.upsert_rule(admin_profile.id, make_rule_input(), test_db)

        assert second.id == first.id
        assert second.updated_at == updated_at
        assert test_db.query(ReferralRuleChange).count() == 1

    def test_update_matching_defaults_is_noop(self, test_db: Session, admin_profile):
        """First update equal to the lazily created defaults writes nothing"""
        rule = ReferralRuleService.upsert_rule(admin_profile.id, default_rule_input(), test_db)

        assert rule.total_discount == 100
        assert test_db.query(ReferralRule).count() == 1
        assert test_db.query(ReferralRuleChange).count() == 0

    def test_optional_field_change_detected(self, test_db: Session, admin_profile):
        """Setting a previously empty optional field counts as a change"""
        ReferralRuleService.upsert_rule(admin_profile.id, default_rule_input(), test_db)

        rule = ReferralRuleService.upsert_rule(
            admin_profile.id, default_rule_input().model_copy(update={"max_usage": 3}), test_db
        )

        assert rule.max_usage == 3
        assert test_db.query(ReferralRuleChange).count() == 1

    def test_each_change_appends_entry(self, test_db: Session, admin_profile):
        """Every real change appends a new audit entry"""
        ReferralRuleService.upsert_rule(admin_profile.id, make_rule_input(total_discount=10), test_db)
        ReferralRuleService.upsert_rule(admin_profile.id, make_rule_input(total_discount=20), test_db)
        ReferralRuleService.upsert_rule(admin_profile.id, make_rule_input(total_discount=20), test_db)

        changes = AuditService.get_rule_changes(test_db)
        assert sorted(change.total_discount for change in changes) == [10, 20]
        assert test_db.query(ReferralRule).count() == 1

        response = ReferralRuleChangeResponse.model_validate(changes[0])
        assert response.profile_id == admin_profile.id

    def test_audit_failure_rolls_back_rule(self, test_db: Session, admin_profile, monkeypatch):
        """Rule write and audit entry commit or roll back together"""
        ReferralRuleService.upsert_rule(admin_profile.id, make_rule_input(total_discount=10), test_db)

        def failing_log(rule, actor_id, db):
            raise SQLAlchemyError("audit insert failed")

        monkeypatch.setattr(AuditService, "log_rule_change", failing_log)

        with pytest.raises(InternalError):
            ReferralRuleService.upsert_rule(admin_profile.id, make_rule_input(total_discount=90), test_db)

        monkeypatch.undo()
        rule = ReferralRuleService.get_rule(test_db)
        assert rule.total_discount == 10
        assert test_db.query(ReferralRuleChange).count() == 1

    def test_change_is_logged(self, test_db: Session, admin_profile, log_messages):
        """Rule change is logged with the changed fields"""
        ReferralRuleService.upsert_rule(admin_profile.id, default_rule_input(), test_db)
        ReferralRuleService.upsert_rule(
            admin_profile.id, default_rule_input().model_copy(update={"reward_per_referral": 1}), test_db
        )

        messages = [record["message"] for record in log_messages]
        assert any("Referral rule unchanged" in message for message in messages)
        assert any("changed fields: reward_per_referral" in message for message in messages)


class TestDiffRule:
    """Tests for the pure rule comparison"""

    def test_equal_snapshots(self):
        """Same values produce no differences"""
        current = normalize_rule_input(make_rule_input())
        new = normalize_rule_input(make_rule_input())

        assert diff_rule(current, new) == []

    def test_both_optional_fields_empty_are_equal(self):
        """None vs None is not a change"""
        current = normalize_rule_input(make_rule_input(expired_days=None, max_usage=None))
        new = normalize_rule_input(make_rule_input(expired_days=None, max_usage=None))

        assert diff_rule(current, new) == []

    def test_optional_field_set_vs_empty(self):
        """None vs value is a change"""
        current = normalize_rule_input(make_rule_input(expired_days=None))
        new = normalize_rule_input(make_rule_input(expired_days=7))

        assert diff_rule(current, new) == ["expired_days"]

    def test_reports_all_changed_fields(self):
        """Every differing field is reported"""
        current = normalize_rule_input(make_rule_input())
        new = normalize_rule_input(make_rule_input(discount_type="fixed", total_discount=500))

        assert diff_rule(current, new) == ["total_discount", "discount_type", "max_discount"]

    def test_compares_stored_row_with_input(self, test_db: Session):
        """Works across ORM rows and input schemas"""
        rule = ReferralRuleService.get_rule(test_db)

        assert diff_rule(rule, normalize_rule_input(default_rule_input())) == []
