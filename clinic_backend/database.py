import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from clinic_backend.core import config
from clinic_backend.errors import PersistenceError


logger = logging.getLogger(__name__)

_connect_args = {'check_same_thread': False} if config.DATABASE_URL.startswith('sqlite') else {}

engine = create_engine(
    config.DATABASE_URL,
    pool_pre_ping=True,
    connect_args=_connect_args,
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_schema(bind=None) -> None:
    # Every model must be registered on Base.metadata before create_all runs.
    from clinic_backend.models import appointment, availability, clinic, telemedicine, user  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Run a block as one transaction on ``db``.

    Commits when the block finishes and rolls back on any exception. Database
    errors are re-raised as ``PersistenceError`` so callers never see a
    partially applied state.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Transaction rolled back after a database error.')
        raise PersistenceError('Database operation failed.') from exc
    except Exception:
        db.rollback()
        raise
