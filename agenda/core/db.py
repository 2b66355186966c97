"""
SQLAlchemy engine, session, and base. DB path from config or default.
"""
import logging
from pathlib import Path
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()

DEFAULT_DB_DIR = Path.home() / ".personal_agenda"


class Database:
    """Owns one engine and session factory. Constructed explicitly and passed to the stores that need it."""

    def __init__(self, db_url: str):
        self.url = db_url
        engine_kwargs: Dict[str, Any] = {"echo": False, "future": True}
        if db_url.startswith("sqlite"):
            # Stores are called from worker threads (asyncio.to_thread)
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if db_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise every thread sees its own empty in-memory DB
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(db_url, **engine_kwargs)
        self._session_factory = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    def create_all(self) -> None:
        """Import all model modules so tables are registered with Base, then create them."""
        from agenda.core import models as _core_models  # noqa: F401
        from agenda.plugins.prayer import models as _prayer_models  # noqa: F401

        Base.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Context manager for a single DB session. Commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def resolve_db_url(config_data: Optional[dict] = None) -> str:
    """SQLAlchemy URL from config database.url / database.path, else ~/.personal_agenda/agenda.db."""
    db_config = (config_data or {}).get("database") or {}
    if db_config.get("url"):
        return db_config["url"]
    path = db_config.get("path")
    if path:
        path = Path(path).expanduser().resolve()
    else:
        path = DEFAULT_DB_DIR / "agenda.db"
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def init_db(config_data: Optional[dict] = None, db_url: Optional[str] = None) -> Database:
    """
    Create a Database and its tables.
    config_data: app config dict; used for database.path if db_url not given.
    db_url: optional SQLAlchemy URL override.
    """
    if db_url is None:
        db_url = resolve_db_url(config_data)
    database = Database(db_url)
    database.create_all()
    logger.info(f"Database initialized: {db_url.split('?')[0]}")
    return database
