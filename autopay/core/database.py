from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from autopay.core.config import settings

engine = create_engine(
    settings.APP_DATABASE_DSN,
    connect_args=({"check_same_thread": False} if "sqlite" in settings.APP_DATABASE_DSN else {}),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base: Any = declarative_base()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def open_session() -> Session:
    """Open a session from the current module-level factory.

    Resolved at call time so that a swapped ``SessionLocal`` (tests) is honoured.
    """
    return SessionLocal()


def init_db() -> None:
    """Initialize database tables."""
    # Import models so they register on Base.metadata
    import autopay.models.redemption_order  # noqa: F401
    import autopay.models.subscription  # noqa: F401

    Base.metadata.create_all(bind=engine)
