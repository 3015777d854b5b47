"""Engine and session factory construction."""

from __future__ import annotations

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base

LOGGER = logging.getLogger(__name__)


def build_engine(db_url: str) -> Engine:
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(url)

    options: dict[str, object] = {"connect_args": {"check_same_thread": False}}
    if not url.database or url.database == ":memory:":
        # Every worker thread must see the same in-memory database.
        options["poolclass"] = StaticPool
    engine = create_engine(url, **options)

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT handling.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_session_factory(engine: Engine, *, create_schema: bool = True) -> sessionmaker:
    if create_schema:
        Base.metadata.create_all(engine)  # ensure required tables exist before queries
    LOGGER.debug("Session factory bound to %s", engine.url.render_as_string(hide_password=True))
    return sessionmaker(bind=engine)
