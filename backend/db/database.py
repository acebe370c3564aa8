import time

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from config import settings
from services.telemetry_context import add_request_db_query


_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    echo=False,
)


def set_sqlite_pragma(dbapi_connection, connection_record):
    _ = connection_record
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Enable WAL mode for better concurrent read performance
if _is_sqlite:
    event.listen(engine, "connect", set_sqlite_pragma)


@event.listens_for(engine, "before_cursor_execute")
def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    _ = cursor
    _ = statement
    _ = parameters
    _ = context
    _ = executemany
    conn.info.setdefault("_query_start_time", []).append(time.perf_counter())


@event.listens_for(engine, "after_cursor_execute")
def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    _ = cursor
    _ = statement
    _ = parameters
    _ = context
    _ = executemany
    start_stack = conn.info.get("_query_start_time")
    if not start_stack:
        return
    started = start_stack.pop()
    duration_ms = max((time.perf_counter() - started) * 1000.0, 0.0)
    add_request_db_query(duration_ms)


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
