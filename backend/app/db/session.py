from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from app.core.config import Settings, get_settings


def _connect_args(settings: Settings) -> dict:
    """Bound every store call so a hung database surfaces as a retryable failure."""
    backend = make_url(settings.database_url).get_backend_name()
    if backend == "sqlite":
        return {"check_same_thread": False, "timeout": settings.database_connect_timeout_seconds}
    if backend == "postgresql":
        return {
            "connect_timeout": settings.database_connect_timeout_seconds,
            "options": f"-c statement_timeout={settings.database_statement_timeout_ms}",
        }
    return {}


settings = get_settings()

engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    connect_args=_connect_args(settings),
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
