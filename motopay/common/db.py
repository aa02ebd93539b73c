"""Database bootstrap helpers for the payment ledger."""

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker


def build_session_factory(dsn: str, **engine_kwargs) -> sessionmaker:
    """Create one engine for `dsn` and return a session factory bound to it.

    `expire_on_commit=False` keeps ORM objects readable after commit so the
    orchestrator can keep working with records returned by the ledger.
    """

    engine = create_engine(dsn, pool_pre_ping=True, **engine_kwargs)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass
