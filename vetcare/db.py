from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from .config import settings

IS_SQLITE = settings.DATABASE_URL.startswith("sqlite")

engine = create_engine(
    settings.DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False} if IS_SQLITE else {},
)

if IS_SQLITE:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


def init_db(bind=None) -> bool:
    """Create missing tables on SQLite, or anywhere DB_AUTO_CREATE_ALL is set."""
    bind = bind or engine
    if not (IS_SQLITE or bool(settings.DB_AUTO_CREATE_ALL)):
        return False
    from . import models  # noqa: F401  registers tables on Base.metadata

    Base.metadata.create_all(bind=bind)
    return True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
