from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from stockroom.core import tenancy  # noqa: F401  installs the tenant hooks
from stockroom.core.config import settings

DATABASE_URL = settings.database_url


def _build_engine(url: str):
    url = url.replace("+asyncpg", "")  # sync engine; Alembic shares it
    if url.startswith("sqlite"):
        eng = create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        # pysqlite: take the write lock at BEGIN so concurrent units of work
        # serialize instead of failing on lock upgrade.
        @event.listens_for(eng, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):  # noqa: ARG001
            dbapi_connection.isolation_level = None
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

        @event.listens_for(eng, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return eng
    return create_engine(url, echo=False, isolation_level="SERIALIZABLE", pool_pre_ping=True)


engine = _build_engine(DATABASE_URL)


def init_db() -> None:
    """Create all tables (dev / tests; production uses Alembic)."""
    import stockroom.models  # noqa: F401  registers every table

    SQLModel.metadata.create_all(engine)
