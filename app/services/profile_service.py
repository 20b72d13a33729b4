from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from loguru import logger

from app.exceptions import NotFoundError, InternalError
from app.models.profile import Profile


class ProfileService:
    """Service for resolving actor profiles"""

    @staticmethod
    def get_profile(profile_id: UUID, db: Session) -> Profile:
        """
        Get profile by ID.

        Args:
            profile_id: Profile UUID
            db: Database session

        Returns:
            Profile object

        Raises:
            NotFoundError: If profile does not exist
            InternalError: If the database query fails
        """
        try:
            profile = db.query(Profile).filter(Profile.id == profile_id).first()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to load profile {profile_id}: {e}")
            raise InternalError() from e

        if not profile:
            raise NotFoundError("PROFILE_NOT_FOUND")

        return profile
