import asyncio
import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from safetysecretary.api.v1.metrics import TENANT_HANDLES
from safetysecretary.db.session import TenantBase
from safetysecretary.domain.errors import TenantUnavailableError
from safetysecretary.domain.models import utcnow

logger = logging.getLogger(__name__)


ASYNC_DRIVERS = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def redact(connection_string: str) -> str:
    """Connection string with the password masked, safe for logs."""
    try:
        return make_url(connection_string).render_as_string(hide_password=True)
    except ArgumentError:
        return "<unparseable connection string>"


def async_url(connection_string: str) -> URL:
    """Parses a tenant reference, swapping bare schemes for their async driver."""
    url = make_url(connection_string)
    driver = ASYNC_DRIVERS.get(url.drivername)
    return url.set(drivername=driver) if driver else url


class TenantHandle:
    """
    Data-access handle for one tenant database.

    Nothing is parsed or connected until first use, so building a handle
    never fails; an unusable reference raises TenantUnavailableError from
    `session()` or `create_schema()`.
    """

    def __init__(self, connection_string: str):
        self.connection_string = connection_string
        self.last_used_at: datetime = utcnow()
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            try:
                self._engine = create_async_engine(async_url(self.connection_string), pool_pre_ping=True)
            except (ArgumentError, ImportError) as e:
                # NoSuchModuleError is an ArgumentError; a missing DBAPI is an ImportError
                logger.warning("Unusable tenant reference %s: %s", redact(self.connection_string), e)
                raise TenantUnavailableError(reason=type(e).__name__) from e
        return self._engine

    @property
    def sessionmaker(self) -> async_sessionmaker[AsyncSession]:
        if self._sessionmaker is None:
            self._sessionmaker = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._sessionmaker

    def touch(self) -> None:
        self.last_used_at = utcnow()

    def session(self) -> AsyncSession:
        return self.sessionmaker()

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(TenantBase.metadata.create_all)

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    def __repr__(self) -> str:
        return f"<TenantHandle {redact(self.connection_string)}>"


class TenantConnectionRegistry:
    """
    Process-wide cache of tenant handles keyed by exact connection string.

    `get_handle` may be called from FastAPI's threadpool as well as from the
    event loop, hence the thread lock around the map.
    """

    def __init__(self, handle_factory: Optional[Callable[[str], TenantHandle]] = None):
        self._handle_factory = handle_factory or TenantHandle
        self._handles: dict[str, TenantHandle] = {}
        self._lock = threading.Lock()

    def get_handle(self, connection_string: str) -> TenantHandle:
        with self._lock:
            handle = self._handles.get(connection_string)
            if handle is not None:
                handle.touch()
                return handle

            handle = self._handle_factory(connection_string)
            self._handles[connection_string] = handle
            TENANT_HANDLES.set(len(self._handles))

        logger.info("Opened tenant handle for %s", redact(connection_string))
        return handle

    async def disconnect_all(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
            TENANT_HANDLES.set(0)

        results = await asyncio.gather(*(h.dispose() for h in handles), return_exceptions=True)
        for handle, result in zip(handles, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to dispose {handle!r}: {result}")
        logger.info(f"Disconnected {len(handles)} tenant handle(s).")

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, connection_string: object) -> bool:
        return connection_string in self._handles
