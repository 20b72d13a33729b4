"""add referral engine tables

Revision ID: 3c7e1a9d2b40
Revises:
Create Date: 2026-10-19 10:12:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c7e1a9d2b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


discount_type = sa.Enum('FIXED', 'PERCENTAGE', name='discounttype')
referral_type = sa.Enum('BASIC', name='referraltype')
app_role = sa.Enum('USER', 'ADMIN', name='approle')


def upgrade() -> None:
    """Create profiles, referral rule, rule changes, referral codes and usages."""

    op.create_table(
        'profiles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('role', app_role, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_profiles_email', 'profiles', ['email'], unique=True)

    # Singleton rule: exactly one row with id = 1
    op.create_table(
        'referral_rules',
        sa.Column('id', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('total_discount', sa.BigInteger(), nullable=False),
        sa.Column('discount_type', discount_type, nullable=False),
        sa.Column('expired_days', sa.Integer(), nullable=True),
        sa.Column('max_discount', sa.BigInteger(), nullable=False),
        sa.Column('max_usage', sa.Integer(), nullable=True),
        sa.Column('reward_per_referral', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('id = 1', name='check_referral_rule_singleton'),
        sa.CheckConstraint('total_discount >= 0', name='check_rule_total_discount_non_negative'),
        sa.CheckConstraint('max_discount >= 0', name='check_rule_max_discount_non_negative'),
        sa.CheckConstraint('reward_per_referral >= 0', name='check_rule_reward_non_negative'),
        sa.CheckConstraint('expired_days IS NULL OR expired_days > 0', name='check_rule_expired_days_positive'),
        sa.CheckConstraint('max_usage IS NULL OR max_usage > 0', name='check_rule_max_usage_positive'),
    )

    op.create_table(
        'referral_rule_changes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('profile_id', sa.Uuid(), nullable=True, comment='Admin who changed the rule'),
        sa.Column('total_discount', sa.BigInteger(), nullable=False),
        sa.Column('discount_type', discount_type, nullable=False),
        sa.Column('expired_days', sa.Integer(), nullable=True),
        sa.Column('max_discount', sa.BigInteger(), nullable=False),
        sa.Column('max_usage', sa.Integer(), nullable=True),
        sa.Column('reward_per_referral', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['profile_id'], ['profiles.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_referral_rule_changes_profile_id', 'referral_rule_changes', ['profile_id'])
    op.create_index('ix_referral_rule_changes_created_at', 'referral_rule_changes', ['created_at'])

    op.create_table(
        'profile_referral_codes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('profile_id', sa.Uuid(), nullable=False),
        sa.Column('code', sa.String(length=16), nullable=False, comment='Unique uppercase alphanumeric code'),
        sa.Column('type', referral_type, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('total_discount', sa.BigInteger(), nullable=False),
        sa.Column('discount_type', discount_type, nullable=False),
        sa.Column('expired_days', sa.Integer(), nullable=True),
        sa.Column('max_discount', sa.BigInteger(), nullable=False),
        sa.Column('max_usage', sa.Integer(), nullable=True),
        sa.Column('reward_per_referral', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['profile_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        # One code per (profile, type): concurrent issuance converges on this constraint
        sa.UniqueConstraint('profile_id', 'type', name='uq_profile_referral_codes_profile_type'),
        sa.CheckConstraint('total_discount >= 0', name='check_code_total_discount_non_negative'),
        sa.CheckConstraint('max_discount >= 0', name='check_code_max_discount_non_negative'),
        sa.CheckConstraint('reward_per_referral >= 0', name='check_code_reward_non_negative'),
    )
    op.create_index('ix_profile_referral_codes_code', 'profile_referral_codes', ['code'], unique=True)
    op.create_index('ix_profile_referral_codes_profile_id', 'profile_referral_codes', ['profile_id'])

    op.create_table(
        'referral_code_usages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('referral_code_id', sa.Uuid(), nullable=False),
        sa.Column('consumer_profile_id', sa.Uuid(), nullable=False),
        sa.Column('business_id', sa.BigInteger(), nullable=False, comment='Business the redemption applies to'),
        sa.Column('discount_type', discount_type, nullable=False),
        sa.Column('total_discount', sa.BigInteger(), nullable=False),
        sa.Column('max_discount', sa.BigInteger(), nullable=False),
        sa.Column('reward_per_referral', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['referral_code_id'], ['profile_referral_codes.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['consumer_profile_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('referral_code_id', 'consumer_profile_id', name='uq_referral_usage_code_profile'),
        sa.UniqueConstraint('referral_code_id', 'business_id', name='uq_referral_usage_code_business'),
    )
    op.create_index('ix_referral_code_usages_referral_code_id', 'referral_code_usages', ['referral_code_id'])
    op.create_index('ix_referral_code_usages_consumer_profile_id', 'referral_code_usages', ['consumer_profile_id'])


def downgrade() -> None:
    """Drop referral engine tables."""

    op.drop_index('ix_referral_code_usages_consumer_profile_id', 'referral_code_usages')
    op.drop_index('ix_referral_code_usages_referral_code_id', 'referral_code_usages')
    op.drop_table('referral_code_usages')

    op.drop_index('ix_profile_referral_codes_profile_id', 'profile_referral_codes')
    op.drop_index('ix_profile_referral_codes_code', 'profile_referral_codes')
    op.drop_table('profile_referral_codes')

    op.drop_index('ix_referral_rule_changes_created_at', 'referral_rule_changes')
    op.drop_index('ix_referral_rule_changes_profile_id', 'referral_rule_changes')
    op.drop_table('referral_rule_changes')

    op.drop_table('referral_rules')

    op.drop_index('ix_profiles_email', 'profiles')
    op.drop_table('profiles')

    # Enum types are not dropped with their tables on PostgreSQL
    discount_type.drop(op.get_bind(), checkfirst=True)
    referral_type.drop(op.get_bind(), checkfirst=True)
    app_role.drop(op.get_bind(), checkfirst=True)
