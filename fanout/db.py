from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from fanout.config import DATABASE_URL
from fanout.models import Base

engine = create_engine(DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def make_session_factory(url: str, **engine_kwargs) -> sessionmaker:
    """Build a session factory for another database (tests, one-off scripts)."""
    other = create_engine(url, **engine_kwargs)
    Base.metadata.create_all(other)
    return sessionmaker(bind=other, autoflush=False, autocommit=False)


def init_db() -> None:
    Base.metadata.create_all(engine)


@contextmanager
def get_session(factory: sessionmaker = None) -> Session:
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
