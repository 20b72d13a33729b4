import string
from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    PROJECT_NAME: str = "Referral Engine"
    VERSION: str = "0.3.0"
    DEBUG: bool = False

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "referral"
    POSTGRES_PASSWORD: str = "referral"
    POSTGRES_DB: str = "referral"
    SQLALCHEMY_DATABASE_URI: Optional[str] = None

    @field_validator("SQLALCHEMY_DATABASE_URI", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v
        values = info.data
        return (
            f"postgresql+psycopg2://{values.get('POSTGRES_USER')}:"
            f"{values.get('POSTGRES_PASSWORD')}@{values.get('POSTGRES_SERVER')}/"
            f"{values.get('POSTGRES_DB')}"
        )

    # Logging
    LOG_DIR: str = "logs"

    # Referral code generation
    REFERRAL_CODE_LENGTH: int = 8
    REFERRAL_CODE_ALPHABET: str = string.ascii_uppercase + string.digits
    REFERRAL_CODE_MAX_ATTEMPTS: int = 10

    # Default referral rule (used when the singleton row does not exist yet)
    REFERRAL_DEFAULT_TOTAL_DISCOUNT: int = 100
    REFERRAL_DEFAULT_DISCOUNT_TYPE: str = "percentage"
    REFERRAL_DEFAULT_MAX_DISCOUNT: int = 20000
    REFERRAL_DEFAULT_REWARD_PER_REFERRAL: int = 20000
    REFERRAL_DEFAULT_EXPIRED_DAYS: Optional[int] = None
    REFERRAL_DEFAULT_MAX_USAGE: Optional[int] = None

    def get_default_rule_values(self) -> dict:
        """Get default referral rule values keyed by model field"""
        return {
            "total_discount": self.REFERRAL_DEFAULT_TOTAL_DISCOUNT,
            "discount_type": self.REFERRAL_DEFAULT_DISCOUNT_TYPE,
            "max_discount": self.REFERRAL_DEFAULT_MAX_DISCOUNT,
            "reward_per_referral": self.REFERRAL_DEFAULT_REWARD_PER_REFERRAL,
            "expired_days": self.REFERRAL_DEFAULT_EXPIRED_DAYS,
            "max_usage": self.REFERRAL_DEFAULT_MAX_USAGE,
        }

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
