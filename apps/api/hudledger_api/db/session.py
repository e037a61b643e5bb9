"""Database session management."""

from sqlalchemy.orm import sessionmaker

from hudledger_api.db.engine import build_engine
from hudledger_api.settings import get_settings

settings = get_settings()

engine = build_engine(settings.database_url_computed)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
