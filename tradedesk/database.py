from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from tradedesk.config import settings

Base = declarative_base()


def make_engine(url: str | None = None) -> Engine:
    db_url = str(url or settings.session_database_url)
    engine_kwargs: dict = {"future": True}

    if db_url.startswith("sqlite"):
        # The session store may be touched from a UI thread and an event-loop thread.
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in db_url or db_url.rstrip("/").endswith("sqlite:"):
            # Keep a single connection so the in-memory database survives between sessions.
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_pre_ping"] = True

    return create_engine(db_url, **engine_kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


def init_db(engine: Engine) -> None:
    # Import models so their tables are registered on Base.metadata.
    from tradedesk.models import session_entry  # noqa: F401

    Base.metadata.create_all(bind=engine)
