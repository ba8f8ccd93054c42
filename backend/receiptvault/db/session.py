import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from receiptvault.core.config import settings
from receiptvault.core.errors import InfrastructureError

logger = logging.getLogger(__name__)

_url = make_url(settings.DATABASE_URL)
_engine_kwargs: dict = {"pool_pre_ping": True, "echo": settings.DB_ECHO}
if _url.drivername.startswith("sqlite"):
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    _engine_kwargs.update(pool_size=10, max_overflow=20)

engine = create_engine(settings.DATABASE_URL, **_engine_kwargs)

SessionLocal = sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
)


def get_db() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def store_errors(db: Session, operation: str):
    """Roll back and surface SQLAlchemy failures as InfrastructureError for caller retry."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("%s failed: %s", operation, exc, exc_info=True)
        raise InfrastructureError(f"{operation} failed: store unavailable") from exc
