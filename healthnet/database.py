# healthnet/database.py
from sqlmodel import SQLModel, create_engine, Session

from healthnet.core.config import get_settings

settings = get_settings()

# ---------------------------------------------------------
# Postgres connection (production)
#
# - sslmode=require   : enforce SSL when running in the cloud
# - pool_pre_ping=True: validate connections before using them
#
# SQLite is accepted for local runs and tests; it gets no SSL flag and
# no pool sizing (SQLite pools do not take max_overflow).
# ---------------------------------------------------------

db_url = settings.DATABASE_URL
engine_kwargs: dict = {"echo": False, "pool_pre_ping": True}

if db_url.startswith("sqlite"):
    engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    # Append sslmode=require if it is not already present
    if "sslmode=" not in db_url:
        if "?" in db_url:
            db_url = db_url + "&sslmode=require"
        else:
            db_url = db_url + "?sslmode=require"
    engine_kwargs["pool_size"] = 5
    engine_kwargs["max_overflow"] = 5

engine = create_engine(db_url, **engine_kwargs)


def create_db_and_tables() -> None:
    """
    Create all tables defined in SQLModel metadata if they do not exist.

    This is called once on application startup.
    """
    SQLModel.metadata.create_all(engine)


def get_session():
    """
    FastAPI dependency that yields a SQLModel Session.

    Usage:

        from fastapi import Depends

        @router.get("/example")
        def example_endpoint(session: Session = Depends(get_session)):
            ...
    """
    with Session(engine) as session:
        yield session
