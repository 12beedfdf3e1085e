from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from iqps.domain.errors import StoreBusyError

DEFAULT_DB_URL = "sqlite:///data/iqps.db"
DEFAULT_POOL_SIZE = 5
DEFAULT_POOL_TIMEOUT = 3.0


def get_db_url() -> str:
    return os.getenv("IQPS_DB_URL", DEFAULT_DB_URL)


class SessionProvider:
    """
    Owns the engine and hands out sessions.

    Non-SQLite databases get a fixed-size pool without overflow; when every
    connection is busy for longer than `pool_timeout` the caller gets a
    StoreBusyError instead of waiting forever.
    """

    def __init__(
        self,
        db_url: str,
        *,
        pool_size: int = DEFAULT_POOL_SIZE,
        pool_timeout: float = DEFAULT_POOL_TIMEOUT,
    ):
        url = make_url(db_url)
        kwargs = {"pool_pre_ping": True}
        if url.get_backend_name() == "sqlite":
            kwargs["connect_args"] = {"check_same_thread": False}
            database = url.database or ""
            if database and database != ":memory:":
                os.makedirs(os.path.dirname(os.path.abspath(database)), exist_ok=True)
        else:
            kwargs.update(pool_size=pool_size, max_overflow=0, pool_timeout=pool_timeout)

        self.engine: Engine = create_engine(db_url, **kwargs)
        self._factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._factory()
        try:
            yield session
        except PoolTimeoutError as exc:
            raise StoreBusyError() from exc
        finally:
            session.close()

    def open_session(self) -> Session:
        """A session whose lifetime the caller manages (see CatalogTransaction)."""
        return self._factory()

    def dispose(self) -> None:
        self.engine.dispose()
