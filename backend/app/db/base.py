"""
Database engine, session factory and declarative base.

Also provides the conditional-insert primitive used wherever two concurrent
requests may try to create the same uniquely-keyed row.
"""
import logging
from typing import Any, Dict, Iterable

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.core.config import settings

logger = logging.getLogger(__name__)

engine = create_engine(
    settings.database_url,
    echo=settings.db_echo_sql,
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency yielding a request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def insert_or_ignore(
    db: Session,
    model,
    values: Dict[str, Any],
    index_elements: Iterable[str],
    index_where=None,
) -> bool:
    """
    Insert a row unless it collides with an existing unique key.

    Uses INSERT ... ON CONFLICT DO NOTHING on PostgreSQL and SQLite. Other
    dialects fall back to a savepoint that swallows the IntegrityError.

    Args:
        db: Database session
        model: Mapped class to insert into
        values: Column values for the new row
        index_elements: Columns of the unique index that defines a conflict
        index_where: Predicate of a partial unique index, if any

    Returns:
        True if this call inserted the row, False if it already existed
    """
    dialect = db.get_bind().dialect.name

    if dialect in ("postgresql", "sqlite"):
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert

        stmt = insert(model).values(**values).on_conflict_do_nothing(
            index_elements=list(index_elements),
            index_where=index_where,
        )
        result = db.execute(stmt)
        return result.rowcount == 1

    try:
        with db.begin_nested():
            db.add(model(**values))
        return True
    except IntegrityError:
        logger.debug(f"Conflicting insert into {model.__tablename__} ignored")
        return False
