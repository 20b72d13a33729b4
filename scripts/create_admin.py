"""
Create admin script.
Creates a profile with the admin role (allowed to change the referral rule).
"""
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.core.logging import setup_logging
from app.models import Profile, AppRole
from loguru import logger


def create_admin(email: str, full_name: str = None, db: Session = None):
    """Create an admin profile, or promote an existing one"""
    owns_session = db is None
    db = db or SessionLocal()
    try:
        profile = db.query(Profile).filter(Profile.email == email).first()
        if profile:
            if profile.role == AppRole.ADMIN:
                logger.error(f"Profile with email {email} is already an admin!")
                return None
            profile.role = AppRole.ADMIN
            logger.info(f"Promoting existing profile {email} to admin")
        else:
            profile = Profile(email=email, full_name=full_name, role=AppRole.ADMIN, is_active=True)
            db.add(profile)

        db.commit()
        db.refresh(profile)

        logger.info("Admin profile ready!")
        logger.info(f"  Email: {email}")
        logger.info(f"  ID: {profile.id}")

        return profile

    except SQLAlchemyError as e:
        logger.error(f"Error creating admin profile: {e}")
        db.rollback()
        return None
    finally:
        if owns_session:
            db.close()


if __name__ == "__main__":
    setup_logging()

    print("=== Create Admin ===")
    email = input("Email: ")
    full_name = input("Full name (optional): ") or None

    admin = create_admin(email, full_name)
    sys.exit(0 if admin else 1)
