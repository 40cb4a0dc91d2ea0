from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from constants import DATABASE_URL
from models import Base


def _make_engine(url: str):
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection so every session sees the same in-memory database
        kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = _make_engine(DATABASE_URL)
SessionLocal = scoped_session(sessionmaker(bind=engine))


def configure_engine(url: str | None):
    """Rebind the session factory to another database URL."""
    global engine
    if not url or str(engine.url) == url:
        return engine
    SessionLocal.remove()
    engine.dispose()
    engine = _make_engine(url)
    SessionLocal.configure(bind=engine)
    return engine


def ensure_column(table: str, column: str, ddl: str):
    """Add a column to the SQLite table if it is missing."""
    if engine.dialect.name != "sqlite":
        return
    with engine.begin() as connection:
        result = connection.exec_driver_sql(f'PRAGMA table_info("{table}")')
        columns = {row[1] for row in result.fetchall()}
        if column not in columns:
            connection.exec_driver_sql(f'ALTER TABLE "{table}" ADD COLUMN {column} {ddl}')


def init_db():
    """Create tables and backfill columns added after the first release."""
    Base.metadata.create_all(bind=engine)
    ensure_column("inventory_items", "category_counter", "INTEGER NOT NULL DEFAULT 0")
    ensure_column("inventory_items", "image_url", "TEXT")
