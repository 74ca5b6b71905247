# chatdesk/db/migrations.py
"""
Ordered schema migrations.

Each migration has a version and must be safe to re-run: the column additions
check the live table first, so a file written by an older build that already
has some of the columns is upgraded without errors. Applied versions are
recorded in `schema_version`.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, List

from sqlalchemy import func, inspect, select, text
from sqlalchemy.engine import Connection, Engine

from chatdesk.db.models import Base, SchemaVersion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    apply: Callable[[Connection], None]


def _has_column(conn: Connection, table: str, column: str) -> bool:
    return any(c["name"] == column for c in inspect(conn).get_columns(table))


def _add_column(conn: Connection, table: str, column: str, ddl: str) -> bool:
    if _has_column(conn, table, column):
        return False
    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
    return True


def _create_base_tables(conn: Connection) -> None:
    Base.metadata.create_all(conn)


def _add_last_timestamp(conn: Connection) -> None:
    if _add_column(conn, "conversations", "last_timestamp", "INTEGER DEFAULT 0"):
        # existing threads get "now" so they sort ahead of new empty ones
        conn.execute(
            text("UPDATE conversations SET last_timestamp = :ts"),
            {"ts": int(time.time() * 1000)},
        )


def _add_muted(conn: Connection) -> None:
    _add_column(conn, "conversations", "muted", "INTEGER DEFAULT 0")


def _add_message_format(conn: Connection) -> None:
    _add_column(conn, "messages", "format", "TEXT DEFAULT 'text'")


MIGRATIONS: List[Migration] = [
    Migration(1, "create users, conversations, messages", _create_base_tables),
    Migration(2, "conversations.last_timestamp", _add_last_timestamp),
    Migration(3, "conversations.muted", _add_muted),
    Migration(4, "messages.format", _add_message_format),
]

LATEST_VERSION = MIGRATIONS[-1].version


def current_version(engine: Engine) -> int:
    with engine.connect() as conn:
        if not inspect(conn).has_table(SchemaVersion.__tablename__):
            return 0
        return conn.execute(select(func.max(SchemaVersion.version))).scalar() or 0


def migrate(engine: Engine) -> int:
    """Apply pending migrations in order and return the resulting version."""
    SchemaVersion.__table__.create(engine, checkfirst=True)
    version = current_version(engine)

    for m in MIGRATIONS:
        if m.version <= version:
            continue
        try:
            with engine.begin() as conn:
                m.apply(conn)
                conn.execute(
                    SchemaVersion.__table__.insert().values(version=m.version, description=m.description)
                )
        except Exception:
            logger.exception("Migration %d (%s) failed", m.version, m.description)
            raise
        logger.info("Applied migration %d: %s", m.version, m.description)
        version = m.version

    return version
