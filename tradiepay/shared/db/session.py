from dataclasses import dataclass
from threading import Lock
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from tradiepay.shared.core.config import get_settings
from tradiepay.shared.core.exceptions import ConfigurationError

logger = structlog.get_logger()

# Ensure ORM mappings are registered for scripts that import the DB layer
# without importing `tradiepay/main.py`.
import tradiepay.models  # noqa: F401, E402


@dataclass(slots=True)
class _DBRuntime:
    engine: AsyncEngine
    session_maker: async_sessionmaker[AsyncSession]
    effective_url: str


_db_runtime: _DBRuntime | None = None
_db_runtime_lock = Lock()


def _normalize_db_url(raw_url: str) -> str:
    url = (raw_url or "").strip()
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


def _build_pool_config(settings_obj: Any, effective_url: str) -> dict[str, Any]:
    pool_config: dict[str, Any] = {
        "pool_pre_ping": True,
        "echo": bool(settings_obj.DB_ECHO),
    }
    if "sqlite" in effective_url:
        pool_config["poolclass"] = StaticPool
        return pool_config

    pool_config.update(
        {
            "pool_size": settings_obj.DB_POOL_SIZE,
            "max_overflow": settings_obj.DB_MAX_OVERFLOW,
            "pool_timeout": settings_obj.DB_POOL_TIMEOUT,
            "pool_recycle": settings_obj.DB_POOL_RECYCLE,
        }
    )
    return pool_config


def _build_connect_args(effective_url: str) -> dict[str, Any]:
    if "postgresql" in effective_url:
        # Required behind Supavisor/pgbouncer transaction pooling
        return {"statement_cache_size": 0}
    return {}


def _build_db_runtime() -> _DBRuntime:
    settings_obj = get_settings()
    effective_url = _normalize_db_url(settings_obj.DATABASE_URL or "")
    if not effective_url:
        logger.error("database_url_missing")
        raise ConfigurationError(details={"missing": ["DATABASE_URL"]})

    engine = create_async_engine(
        effective_url,
        **_build_pool_config(settings_obj, effective_url),
        connect_args=_build_connect_args(effective_url),
    )
    session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    logger.info("db_runtime_initialized", backend=engine.dialect.name)
    return _DBRuntime(
        engine=engine,
        session_maker=session_maker,
        effective_url=effective_url,
    )


def _get_db_runtime() -> _DBRuntime:
    global _db_runtime
    runtime = _db_runtime
    if runtime is not None:
        return runtime
    with _db_runtime_lock:
        runtime = _db_runtime
        if runtime is None:
            runtime = _build_db_runtime()
            _db_runtime = runtime
    return runtime


async def dispose_db_runtime() -> None:
    """Dispose the engine and force re-initialization on next access."""
    global _db_runtime
    runtime = _db_runtime
    _db_runtime = None
    if runtime is not None:
        await runtime.engine.dispose()
        logger.info("db_engine_disposed")


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Return the active session factory."""
    return _get_db_runtime().session_maker
