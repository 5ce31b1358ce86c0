import importlib
import logging
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()

log = logging.getLogger(__name__)

# every module that declares tables; imported before create_all so metadata is complete
MODEL_MODULES = [
    "kaimono.models.user",
    "kaimono.models.product",
    "kaimono.models.cart_item",
    "kaimono.models.campaign",
    "kaimono.models.order",
    "kaimono.models.stock_history",
    "kaimono.models.shipping_address",
    "kaimono.models.review",
    "kaimono.models.favorite",
    "kaimono.models.banner",
    "kaimono.models.webhook_log",
    "kaimono.models.audit_log",
]


class Database:
    """
    Owns the engine and session factory for one application instance.

    Built explicitly from a database URL and handed to the app (``app.state.database``);
    request handlers get sessions through :func:`get_db`.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        engine_kwargs = {"future": True, "echo": echo}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url.rstrip("/") == "sqlite:":
                # one shared connection, otherwise each checkout sees an empty database
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = True
        self.engine = create_engine(url, **engine_kwargs)
        if url.startswith("sqlite"):
            _enable_sqlite_savepoints(self.engine)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

    def init_db(self, reset: bool = False):
        """
        Create all tables. With ``reset=True`` the existing tables are dropped first.
        """
        for mod in MODEL_MODULES:
            importlib.import_module(mod)

        if reset:
            log.info("Resetting database schema")
            Base.metadata.drop_all(bind=self.engine)
        Base.metadata.create_all(bind=self.engine)
        log.info("Database initialized (%d tables)", len(Base.metadata.tables))

    def session(self) -> Session:
        return self.SessionLocal()

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def dispose(self):
        self.engine.dispose()


def _enable_sqlite_savepoints(engine):
    # pysqlite starts transactions lazily on its own, which breaks SAVEPOINT
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()
