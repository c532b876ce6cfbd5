import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from . import config, errors

logger = logging.getLogger(__name__)

Base = declarative_base()


def make_engine(url: str, **kwargs) -> Engine:
    # For SQLite, enable check_same_thread=False for the FastAPI threadpool
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(url, future=True, **kwargs)

    # Ensure SQLite enforces foreign keys
    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


# Created once per process and shared; engines receive sessions from it via get_db
engine = make_engine(config.get_settings().database_url)
SessionLocal = make_sessionmaker(engine)


@contextmanager
def transaction(db: Session, name: str = "transaction") -> Iterator[Session]:
    """Run the block as one unit of work on ``db``.

    Commits only when the block finishes; any failure rolls everything back.
    Store errors are reported as ``Internal``, engine errors pass through
    unchanged.
    """
    try:
        yield db
        db.commit()
    except errors.StorefrontError as e:
        db.rollback()
        logger.warning("%s rolled back (%s)", name, e.kind)
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("%s failed in the store, rolled back", name, exc_info=True)
        raise errors.Internal(f"{name} failed") from e
    except Exception:
        db.rollback()
        logger.error("%s raised, rolled back", name, exc_info=True)
        raise
    logger.debug("%s committed", name)
