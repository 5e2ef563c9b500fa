from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


class Base(DeclarativeBase):
    pass


def make_engine(database_url: str, **kwargs) -> Engine:
    """Engine for ``database_url``; SQLite connections get WAL and foreign keys."""
    sqlite = database_url.startswith("sqlite")
    if sqlite:
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    eng = create_engine(database_url, **kwargs)
    if sqlite:
        event.listen(eng, "connect", _sqlite_pragmas)
    return eng


def _sqlite_pragmas(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def session_factory(bind: Engine) -> sessionmaker:
    # services hand ORM rows to the HTTP layer after commit
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = make_engine(get_settings().database_url)
SessionLocal = session_factory(engine)


def init_db(bind: Engine = engine) -> None:
    # Alembic owns the schema in deployments; this covers fresh SQLite files.
    import models  # noqa: F401

    Base.metadata.create_all(bind)


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
