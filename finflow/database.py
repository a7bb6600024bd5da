from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
import sqlalchemy
import logging
from finflow.config import settings

logger = logging.getLogger(__name__)


def get_engine_config():
    """Get engine configuration based on database profile"""
    database_url = settings.database_url

    if settings.is_sqlite:
        return {
            "url": database_url,
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
            "echo": settings.debug
        }
    elif settings.is_postgresql:
        return {
            "url": database_url,
            "pool_size": 10,
            "max_overflow": 20,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
            "echo": settings.debug
        }
    else:
        logger.warning(f"Unknown database profile: {settings.database_profile}. Using default configuration.")
        return {
            "url": database_url,
            "echo": settings.debug
        }


engine = create_engine(**get_engine_config())

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """Database dependency: one session per request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """Create all tables"""
    logger.info(f"Creating tables for {settings.database_profile} database")

    # Import models to ensure they're registered with Base
    from finflow import models  # noqa: F401

    logger.info(f"Creating tables: {list(Base.metadata.tables.keys())}")
    Base.metadata.create_all(bind=engine)


def check_database_connection() -> bool:
    """Check if database connection is working"""
    try:
        with engine.connect() as connection:
            connection.execute(sqlalchemy.text("SELECT 1")).fetchone()
        return True
    except sqlalchemy.exc.SQLAlchemyError as e:
        logger.error(f"Database connection failed: {e}")
        return False
