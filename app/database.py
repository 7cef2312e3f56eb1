from contextlib import contextmanager

from sqlmodel import SQLModel, create_engine, Session

from app.core.config import get_settings

settings = get_settings()

# ---------------------------------------------------------
# Postgres connection (via pooler)
#
# - sslmode=require   : enforce SSL when running in the cloud
# - pool_size=1       : keep only 1 connection to the pooler
# - max_overflow=0    : do not open extra connections beyond the pool
# - pool_pre_ping=True: validate connections before using them
#
# Row locks (SELECT ... FOR UPDATE) taken by the ledgers are held on
# this connection until the surrounding transaction commits.
# ---------------------------------------------------------

db_url = settings.DATABASE_URL

if db_url.startswith("postgres"):
    # Append sslmode=require if it is not already present
    if "sslmode=" not in db_url:
        if "?" in db_url:
            db_url = db_url + "&sslmode=require"
        else:
            db_url = db_url + "?sslmode=require"

    engine = create_engine(
        db_url,
        echo=False,        # set to True if you want to debug SQL queries
        pool_pre_ping=True,
        pool_size=1,
        max_overflow=0,
    )
else:
    # Local / test databases (e.g. sqlite) keep SQLAlchemy's default pool
    engine = create_engine(db_url, echo=False)


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


@contextmanager
def transaction(session: Session):
    """
    Run a unit of work on `session`: commit when the block finishes,
    roll back (and re-raise) on any exception.

    Everything the ledgers write inside the block, including row locks,
    belongs to one database transaction.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
