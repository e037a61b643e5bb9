"""Engine construction shared by the API and the worker."""

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool


def build_engine(url: str):
    """Create an engine with pool settings suited to the backend."""
    if url.startswith("sqlite"):
        # In-memory SQLite must share one connection across sessions
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )
