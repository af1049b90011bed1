from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def _postgres_url(database_url: str) -> str:
    """
    Point postgres:// and postgresql:// URLs at the psycopg 3 driver.

    sslmode defaults to ``require`` unless the URL sets it. Anything that is
    not Postgres is returned unchanged.
    """
    raw = database_url.strip()
    if not raw:
        raise ValueError("DATABASE_URL is set but empty")

    parsed = urlparse(raw)
    if parsed.scheme.lower() not in {"postgres", "postgresql"}:
        return raw
    query = dict(parse_qsl(parsed.query, keep_blank_values=True))
    if not any(key.lower() == "sslmode" for key in query):
        query["sslmode"] = "require"
    return urlunparse(parsed._replace(scheme="postgresql+psycopg", query=urlencode(query, doseq=True)))


def _make_engine(database_url: str | None, db_path: str) -> Engine:
    if database_url:
        return create_engine(_postgres_url(database_url), pool_pre_ping=True)
    # The webhook server thread and the event loop share the file.
    return create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})


def init_db(database_url: str | None, db_path: str) -> None:
    """Bind the session factory and create missing tables. Safe to call again."""
    global _engine, _SessionLocal
    dispose_db()
    _engine = _make_engine(database_url, db_path)
    # Stores hand detached rows back to the bot layer.
    _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)

    from mealbot.db.models import Base  # noqa: WPS433

    Base.metadata.create_all(bind=_engine)


def dispose_db() -> None:
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


@contextmanager
def get_session() -> Iterator[Session]:
    if _SessionLocal is None:
        raise RuntimeError("Database is not initialised; call init_db() first.")
    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
