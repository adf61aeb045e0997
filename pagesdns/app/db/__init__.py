from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base
from vyper import v
from loguru import logger

from pagesdns.app.errors import PersistenceError

import datetime
import os

Base = declarative_base()

_session_factory = None


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, the form every DateTime column is stored in."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def _build_engine(dbtype):
    if dbtype == "sqlite":
        db_location = v.get("datastore.db_location")
        if not db_location:
            raise Exception("DB Type is sqlite but db_location is not defined")
        if os.path.dirname(db_location):
            os.makedirs(os.path.dirname(db_location), exist_ok=True)
        return create_engine(
            "sqlite:///" + db_location, connect_args={"check_same_thread": False}
        )
    elif dbtype == "mysql":
        if (
            not v.is_set("datastore.user")
            or not v.is_set("datastore.name")
            or not v.is_set("datastore.pass")
            or not v.is_set("datastore.host")
        ):
            raise Exception(
                "DB Type is mysql but db_(host,name,and pass) are not populated"
            )
        return create_engine(
            "mysql+pymysql://"
            + v.get_string("datastore.user")
            + ":"
            + v.get_string("datastore.pass")
            + "@"
            + v.get_string("datastore.host")
            + ":"
            + v.get_string("datastore.port")
            + "/"
            + v.get_string("datastore.name"),
            pool_pre_ping=True,
        )
    else:
        raise Exception("Unknown/unimplemented database type: {}".format(dbtype))


def connect(dbtype=None):
    """Return a new session bound to the process-wide engine.

    The engine is built and the schema created on first use.
    """
    global _session_factory
    if _session_factory is None:
        engine = _build_engine(dbtype or v.get_string("datastore.type") or "sqlite")
        # models register themselves on Base when imported
        import pagesdns.app.db.models  # noqa: F401

        Base.metadata.create_all(engine)
        _session_factory = sessionmaker(engine)
        logger.info(f"[db] Connected to {engine.url.get_backend_name()} datastore")
    return _session_factory()


@contextmanager
def transaction(session, operation: str):
    """Scope one logical write: commit on success, roll back and raise
    PersistenceError on any database failure. The session is closed on exit."""
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(f"[db] {operation} failed, rolled back: {exc}")
        raise PersistenceError(f"{operation} failed") from exc
    finally:
        session.close()
