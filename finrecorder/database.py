"""SQLModel database engine and session management."""

import logging

from sqlalchemy import inspect
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

from finrecorder.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str):
    """Create an engine; SQLite needs check_same_thread=False, PostgreSQL does not."""
    kwargs = {"echo": False}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory databases vanish per connection unless the pool shares one
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


engine = build_engine(settings.database_url)


def _run_migrations(db_engine=None):
    """Add unique indexes that older deployments created without."""
    from sqlalchemy import text

    db_engine = db_engine or engine
    inspector = inspect(db_engine)
    tables = set(inspector.get_table_names())

    wanted = {
        "holding": ("ux_holding_user_instrument", "user_id, instrument_id"),
        "daily_snapshot": ("ux_daily_snapshot_user_date", "user_id, date"),
    }
    for table, (index_name, columns) in wanted.items():
        if table not in tables:
            continue
        existing = {idx["name"] for idx in inspector.get_indexes(table)}
        existing |= {uc["name"] for uc in inspector.get_unique_constraints(table)}
        if index_name in existing:
            continue
        logger.info(f"Migrating: creating unique index {index_name}")
        with db_engine.connect() as conn:
            conn.execute(text(f"CREATE UNIQUE INDEX {index_name} ON {table} ({columns})"))
            conn.commit()


def create_db_and_tables(db_engine=None):
    """Create all tables. Called on startup."""
    import finrecorder.models  # noqa: F401  (registers tables on the metadata)

    db_engine = db_engine or engine
    SQLModel.metadata.create_all(db_engine)
    _run_migrations(db_engine)


def get_session() -> Session:
    """Dependency that yields a database session."""
    with Session(engine) as session:
        yield session
