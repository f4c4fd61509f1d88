from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from stockledger.config import settings


def enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy own BEGIN on pysqlite so nested savepoints roll back correctly.

    WAL keeps an open reader (the request session) from blocking the
    side-effect sessions that write after commit.
    """

    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


def make_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    eng = create_engine(url, connect_args=connect_args)
    if url.startswith("sqlite"):
        enable_sqlite_savepoints(eng)
    return eng


engine = make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def import_models() -> None:
    # Import all models so Base.metadata knows about them
    import stockledger.models.activity  # noqa: F401
    import stockledger.models.notification  # noqa: F401
    import stockledger.models.product  # noqa: F401
    import stockledger.models.project  # noqa: F401
    import stockledger.models.stock_adjustment  # noqa: F401
    import stockledger.models.transaction  # noqa: F401
    import stockledger.models.user  # noqa: F401


def init_db(bind=None) -> None:
    import_models()
    Base.metadata.create_all(bind=bind or engine)
