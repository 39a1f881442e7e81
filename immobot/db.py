# immobot/db.py
"""Database engine and session utilities.

SQLite is the default backend (a file under the data directory); any SQLAlchemy
URL works, PostgreSQL included.
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from fastapi import Request

Base = declarative_base()


def make_engine(database_url):
    if database_url.startswith("sqlite"):
        path = database_url.split("sqlite:///", 1)[-1] if "sqlite:///" in database_url else ""
        if path and path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        kwargs = {"connect_args": {"check_same_thread": False}}
        if not path or path == ":memory:":
            # one shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    # tuned pool settings for a server database
    return create_engine(
        database_url,
        pool_size=int(os.getenv("DB_POOL_SIZE", 5)),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", 10)),
        pool_pre_ping=True
    )


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(engine):
    from . import models  # noqa: F401 ensure models are imported so tables are known
    Base.metadata.create_all(bind=engine)


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
