"""
Database initialization script.
Creates all tables and seeds the default referral rule.
"""
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.core.database import engine, Base, SessionLocal
from app.core.logging import setup_logging
from app.models import Profile, ReferralRule  # noqa: F401 - register models
from app.services.referral_rule_service import ReferralRuleService
from loguru import logger


def init_db():
    """Initialize database - create all tables and the default rule"""
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully!")

    db = SessionLocal()
    try:
        rule = ReferralRuleService.get_rule(db)
        logger.info(
            f"Referral rule: {rule.total_discount} {rule.discount_type.value}, "
            f"max discount {rule.max_discount}, reward {rule.reward_per_referral}"
        )
    finally:
        db.close()


if __name__ == "__main__":
    setup_logging()
    init_db()
