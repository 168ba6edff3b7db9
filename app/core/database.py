"""SQLite record store: engine construction and per-request session management.

The API never holds a module-level connection. The application lifespan builds one
engine via create_store_engine, keeps it on app.state, and disposes it on shutdown.
"""

from collections.abc import Generator
from pathlib import Path

from fastapi import Request
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker


def store_url(database_path: str, read_only: bool = True) -> str:
    """Build the SQLAlchemy URL for the SQLite file; read-only uses SQLite URI mode=ro."""
    resolved = Path(database_path).expanduser().resolve().as_posix()
    if read_only:
        return f"sqlite:///file:{resolved}?mode=ro&uri=true"
    return f"sqlite:///{resolved}"


def create_store_engine(
    database_path: str,
    read_only: bool = True,
    echo: bool = False,
) -> Engine:
    """
    Create an engine for the vulnerability store.

    The API opens the file read-only; only the ingest job and tests open it writable.
    check_same_thread is disabled because FastAPI runs sync routes in a thread pool.
    """
    return create_engine(
        store_url(database_path, read_only=read_only),
        connect_args={"check_same_thread": False},
        echo=echo,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to the given engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request) -> Generator[Session, None, None]:
    """Dependency that yields a DB session from the app's store and closes it when done."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def check_db_connected(db: Session) -> bool:
    """Run a trivial query to verify the database is reachable."""
    try:
        db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False


def count_records(db: Session) -> int | None:
    """Row count of the vulnerabilities table, or None when it is missing or unreadable."""
    try:
        return int(db.execute(text("SELECT COUNT(*) FROM vulnerabilities")).scalar() or 0)
    except SQLAlchemyError:
        db.rollback()
        return None
