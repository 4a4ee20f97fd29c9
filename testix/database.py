"""Attempt statistics database setup."""
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from testix.config import DATABASE_URL


def make_engine(url: str = DATABASE_URL) -> Engine:
    """SQLAlchemy engine for ``url``; SQLite connections are shared across threads."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = make_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def get_db():
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """Create the attempt tables if they are missing."""
    import testix.models.db  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
