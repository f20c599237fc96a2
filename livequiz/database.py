from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

import os

from livequiz.core import config


def make_engine(url: str = None):
    url = url or config.DATABASE_URL
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory databases live on a single connection
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    # Hosted Postgres (Supabase/Vercel) requires SSL
    if os.getenv("DATABASE_SSLMODE"):
        return create_engine(url, connect_args={"sslmode": os.getenv("DATABASE_SSLMODE")})
    return create_engine(url)


def make_session_factory(bind):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = make_engine()
SessionLocal = make_session_factory(engine)

Base = declarative_base()


def init_db(bind=None):
    # Registers the mapped classes on Base.metadata
    from livequiz import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
