import logging
import threading
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

import config

logger = logging.getLogger(__name__)

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores FOREIGN KEY clauses unless asked, PostgreSQL always enforces them
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Process-wide storage client.

    The engine is created lazily on first use and reused for the lifetime of the
    process. `configure()` swaps the URL before first use (tests, scripts).
    """

    def __init__(self, url: Optional[str] = None):
        self._url = url
        self._engine = None
        self._session_factory = None
        self._lock = threading.Lock()

    @property
    def url(self) -> str:
        return self._url or config.DATABASE_URL

    def configure(self, url: str) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
            self._url = url
            self._engine = None
            self._session_factory = None

    def _initialize(self) -> None:
        with self._lock:
            if self._engine is not None:
                return
            connect_args = {}
            if self.url.startswith("sqlite"):
                # sessions are handed to FastAPI's threadpool
                connect_args["check_same_thread"] = False
            self._engine = create_engine(self.url, pool_pre_ping=True, connect_args=connect_args)
            if self.url.startswith("sqlite"):
                event.listen(self._engine, "connect", _enable_sqlite_foreign_keys)
            self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)
            logger.info("Database engine created for %s", self._engine.url.render_as_string(hide_password=True))

    @property
    def engine(self):
        if self._engine is None:
            self._initialize()
        return self._engine

    def session(self):
        if self._session_factory is None:
            self._initialize()
        return self._session_factory()

    def create_all(self) -> None:
        # models must be imported so the tables are registered on Base
        import models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        import models  # noqa: F401
        Base.metadata.drop_all(bind=self.engine)


db = Database()


# FastAPI dependency
def get_db():
    session = db.session()
    try:
        yield session
    finally:
        session.close()
