from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import get_settings
from .errors import Conflict

Base = declarative_base()

# execution option marking a connection whose transaction will write ledger rows
WRITE_OPTION = "ledger_write"


def make_engine(url: str, **kwargs):
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        # For SQLite, enable check_same_thread=False for multithreading in FastAPI
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(url, future=True, **kwargs)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            # Take over BEGIN from pysqlite so we can issue our own below
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            # readers never block the writer and vice versa
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        @event.listens_for(engine, "begin")
        def begin(conn):
            # SQLite has no row locks: writers take the write lock up front so
            # two balance checks can never interleave. Reads stay deferred.
            if conn.get_execution_options().get(WRITE_OPTION):
                conn.exec_driver_sql("BEGIN IMMEDIATE")
            else:
                conn.exec_driver_sql("BEGIN")

    return engine


engine = make_engine(get_settings().database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine, future=True)


@contextmanager
def atomic(db: Session):
    """Run one ledger operation as a single commit; roll back on any failure.

    A read transaction already open on ``db`` is ended first so the
    operation starts its own write transaction.
    """
    if db.in_transaction():
        db.commit()
    try:
        db.connection(execution_options={WRITE_OPTION: True})
        yield db
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise Conflict("concurrent write rejected by the store") from e
    except OperationalError as e:
        db.rollback()
        raise Conflict("store is busy, retry the request") from e
    except BaseException:
        db.rollback()
        raise
