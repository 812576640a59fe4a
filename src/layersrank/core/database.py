"""Database session and metadata configuration."""

from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import get_settings

settings = get_settings()


class StoreUnavailable(Exception):
    """Raised when the durable store cannot be reached."""

    def __init__(self, detail: str, status_code: int = 503) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


def build_engine(url: str) -> Engine:
    """Create an engine for the given URL."""

    connect_args = {}
    if url.startswith("sqlite"):
        # Sessions are handed across FastAPI worker threads.
        connect_args["check_same_thread"] = False
    return create_engine(url, future=True, connect_args=connect_args)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_db() -> Generator:
    """Yield a database session for request lifetime."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def store_guard(operation: str) -> Iterator[None]:
    """Translate connectivity failures from the store into ``StoreUnavailable``."""

    try:
        yield
    except (OperationalError, InterfaceError) as exc:
        raise StoreUnavailable(f"Store unavailable during {operation}.") from exc
