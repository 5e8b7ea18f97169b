from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


class Base(DeclarativeBase):
    pass


def _enable_sqlite_pragmas(dbapi_conn, _record):
    # pysqlite opens transactions lazily and breaks SAVEPOINT; the engine
    # emits BEGIN itself instead.
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _begin_sqlite_transaction(conn):
    conn.exec_driver_sql("BEGIN")


class Database:
    """Owns the engine and session factory for one database URL.

    Nothing connects until ``open()`` is called; ``close()`` disposes the
    connection pool. The FastAPI app opens it on startup and closes it on
    shutdown, tests build their own instance against an in-memory URL.
    """

    def __init__(self, url: str, **engine_kwargs: object) -> None:
        self.url = url
        self._engine_kwargs = engine_kwargs
        self._engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker[Session]] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database is not open")
        return self._engine

    def open(self) -> "Database":
        if self._engine is not None:
            return self
        kwargs = dict(self._engine_kwargs)
        if self.url.startswith("sqlite"):
            connect_args = dict(kwargs.pop("connect_args", {}) or {})
            connect_args.setdefault("check_same_thread", False)
            kwargs["connect_args"] = connect_args
        eng = create_engine(self.url, **kwargs)
        if self.url.startswith("sqlite"):
            event.listen(eng, "connect", _enable_sqlite_pragmas)
            event.listen(eng, "begin", _begin_sqlite_transaction)
        self._engine = eng
        self._sessionmaker = sessionmaker(
            bind=eng, autoflush=False, expire_on_commit=False
        )
        return self

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        if self._sessionmaker is None:
            raise RuntimeError("Database is not open")
        return self._sessionmaker()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session = self.session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


@lru_cache(maxsize=1)
def get_database() -> Database:
    return Database(get_settings().database_url)
