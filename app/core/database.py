from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import Session, sessionmaker

from app.config import settings

# Unique constraint violation SQLSTATE (PostgreSQL)
PG_UNIQUE_VIOLATION = "23505"

engine_options = {"pool_pre_ping": True, "echo": settings.DEBUG}  # Log SQL queries in debug mode
if not settings.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
    engine_options.update(pool_size=5, max_overflow=10)

# Create SQLAlchemy engine
engine = create_engine(settings.SQLALCHEMY_DATABASE_URI, **engine_options)

# Create SessionLocal class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create Base class for models
Base = declarative_base()


def get_db():
    """
    Yield a database session and close it afterwards.
    Used by scripts and by callers embedding the engine.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def dialect_insert(db: Session, table):
    """
    Build an INSERT supporting ON CONFLICT for the session's dialect.

    Both PostgreSQL and SQLite expose on_conflict_do_nothing() and
    on_conflict_do_update() on their dialect-specific insert constructs.

    Raises:
        NotImplementedError: If the bound dialect has no ON CONFLICT support
    """
    dialect_name = db.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert(table)
    if dialect_name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upsert is not supported for dialect '{dialect_name}'")


def is_unique_violation(exc: IntegrityError) -> bool:
    """
    Check whether an IntegrityError was caused by a unique constraint.

    Other integrity failures (foreign keys, NOT NULL, CHECK) return False.
    """
    orig = getattr(exc, "orig", None)
    if orig is None:
        return False

    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate is not None:
        return sqlstate == PG_UNIQUE_VIOLATION

    if getattr(orig, "sqlite_errorname", None) == "SQLITE_CONSTRAINT_UNIQUE":
        return True
    return "UNIQUE constraint failed" in str(orig)
