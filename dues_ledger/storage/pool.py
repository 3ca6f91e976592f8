"""
Per-tenant storage handles.

A TenantHandle wraps one async SQLAlchemy engine bound to one tenant
partition. The HandlePool keeps at most one live handle per storage
identifier, opens handles on demand, and evicts broken or idle ones.
The pool is an explicit object created in the application lifespan and
injected into the resolver; there is no module-level connection cache.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import Session, with_loader_criteria

from dues_ledger.core.exceptions import StorageUnavailable
from dues_ledger.models.base import TenantScopedMixin

logger = logging.getLogger(__name__)


class TenantSession(Session):
    """Sync session class behind every tenant AsyncSession.

    Carries the owning tenant id in `info["tenant_id"]`. Every ORM SELECT
    issued through it gets a tenant_id criteria on all tenant-scoped
    entities, on top of the explicit predicates the repositories add.
    """

    pass


@event.listens_for(TenantSession, "do_orm_execute")
def _add_tenant_criteria(execute_state):
    tenant_id = execute_state.session.info.get("tenant_id")
    if (
        tenant_id is None
        or not execute_state.is_select
        or execute_state.is_column_load
        or execute_state.is_relationship_load
    ):
        return
    execute_state.statement = execute_state.statement.options(
        with_loader_criteria(
            TenantScopedMixin,
            lambda cls: cls.tenant_id == tenant_id,
            include_aliases=True,
        )
    )


class TenantHandle:
    """
    Live connection handle for one tenant partition.

    Bounds concurrent operations with a semaphore and counts in-flight
    sessions so that close() never disposes the engine under a running
    operation.
    """

    def __init__(self, storage_id: str, engine: AsyncEngine, max_concurrent_ops: int = 10):
        self.storage_id = storage_id
        self.engine = engine
        self.sessionmaker = async_sessionmaker(
            engine,
            expire_on_commit=False,
            autoflush=False,
            sync_session_class=TenantSession,
        )
        self.max_concurrent_ops = max_concurrent_ops
        self._ops = asyncio.Semaphore(max_concurrent_ops)
        self._in_flight = 0
        self._drained = asyncio.Event()
        self._drained.set()
        self._closed = False
        self._broken = False
        self.last_used = time.monotonic()

    @classmethod
    async def open(
        cls,
        storage_id: str,
        url: str,
        *,
        connect_timeout: float,
        max_concurrent_ops: int = 10,
        pool_size: int = 2,
        max_overflow: int = 8,
        echo: bool = False,
    ) -> "TenantHandle":
        """
        Create the engine and verify the partition answers within the timeout.

        Raises:
            StorageUnavailable: If the partition cannot be reached
        """
        engine_kwargs = {"pool_pre_ping": True, "echo": echo}
        if make_url(url).get_backend_name() != "sqlite":
            engine_kwargs.update(pool_size=pool_size, max_overflow=max_overflow)

        try:
            engine = create_async_engine(url, **engine_kwargs)
        except (SQLAlchemyError, ValueError) as e:
            raise StorageUnavailable(storage_id, str(e)) from e

        try:
            await asyncio.wait_for(cls._ping(engine), timeout=connect_timeout)
        except asyncio.TimeoutError as e:
            await engine.dispose()
            raise StorageUnavailable(storage_id, f"connect timed out after {connect_timeout}s") from e
        except (SQLAlchemyError, OSError) as e:
            await engine.dispose()
            raise StorageUnavailable(storage_id, str(e)) from e

        logger.info(f"Connected to tenant database: {storage_id}")
        return cls(storage_id, engine, max_concurrent_ops=max_concurrent_ops)

    @staticmethod
    async def _ping(engine: AsyncEngine) -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    @property
    def healthy(self) -> bool:
        return not self._closed and not self._broken

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def touch(self) -> None:
        self.last_used = time.monotonic()

    def idle_for(self) -> float:
        return time.monotonic() - self.last_used

    def mark_broken(self) -> None:
        if not self._broken:
            logger.warning(f"Marking tenant handle {self.storage_id} as broken")
        self._broken = True

    @asynccontextmanager
    async def _operation(self) -> AsyncIterator[None]:
        if self._closed:
            raise StorageUnavailable(self.storage_id, "handle is closed")
        async with self._ops:
            self._in_flight += 1
            self._drained.clear()
            self.touch()
            try:
                yield
            except DBAPIError as e:
                if e.connection_invalidated:
                    self.mark_broken()
                raise
            finally:
                self._in_flight -= 1
                self.touch()
                if self._in_flight == 0:
                    self._drained.set()

    @asynccontextmanager
    async def session(self, tenant_id: int | None = None) -> AsyncIterator[AsyncSession]:
        """ORM session on this partition, tagged with the owning tenant."""
        async with self._operation():
            async with self.sessionmaker() as session:
                session.info["tenant_id"] = tenant_id
                yield session

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[AsyncConnection]:
        """Core connection inside a transaction (DDL, inspection)."""
        async with self._operation():
            async with self.engine.begin() as conn:
                yield conn

    async def close(self) -> None:
        """Stop accepting work, wait for in-flight operations, dispose the engine."""
        if self._closed:
            return
        self._closed = True
        await self._drained.wait()
        await self.engine.dispose()
        logger.info(f"Closed connection to tenant database: {self.storage_id}")

    def __repr__(self) -> str:
        return f"<TenantHandle(storage_id='{self.storage_id}', in_flight={self._in_flight})>"


class HandlePool:
    """
    One live TenantHandle per storage identifier.

    Concurrent requests for the same cold partition share a single open
    task, so the cache always converges to one handle per identifier.
    """

    def __init__(
        self,
        url_for: Callable[[str], str],
        *,
        connect_timeout: float = 10.0,
        max_concurrent_ops: int = 10,
        pool_size: int = 2,
        max_overflow: int = 8,
        idle_timeout: float = 300.0,
        echo: bool = False,
    ):
        self._url_for = url_for
        self.connect_timeout = connect_timeout
        self.max_concurrent_ops = max_concurrent_ops
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.idle_timeout = idle_timeout
        self.echo = echo

        self._handles: dict[str, TenantHandle] = {}
        self._opening: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task | None = None
        self._closing: set[asyncio.Task] = set()
        self._closed = False

    async def init(self, sweep_interval: float | None = None) -> None:
        """Start the periodic eviction sweep."""
        self._closed = False
        if sweep_interval and self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_forever(sweep_interval))

    async def get_handle(self, storage_id: str) -> TenantHandle:
        """
        Return the cached handle if healthy, otherwise open a new one.

        Raises:
            StorageUnavailable: If the partition cannot be opened
        """
        if not storage_id:
            raise ValueError("storage_id is required")

        stale = None
        async with self._lock:
            if self._closed:
                raise StorageUnavailable(storage_id, "pool is shut down")

            handle = self._handles.get(storage_id)
            if handle is not None and handle.healthy:
                handle.touch()
                return handle
            if handle is not None:
                stale = self._handles.pop(storage_id)

            task = self._opening.get(storage_id)
            if task is None:
                task = asyncio.create_task(self._open(storage_id))
                self._opening[storage_id] = task

        if stale is not None:
            logger.info(f"Discarding stale tenant handle: {storage_id}")
            closing = asyncio.create_task(stale.close())
            self._closing.add(closing)
            closing.add_done_callback(self._closing.discard)

        # A cancelled waiter must not cancel the open other requests share
        return await asyncio.shield(task)

    async def _open(self, storage_id: str) -> TenantHandle:
        try:
            handle = await TenantHandle.open(
                storage_id,
                self._url_for(storage_id),
                connect_timeout=self.connect_timeout,
                max_concurrent_ops=self.max_concurrent_ops,
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                echo=self.echo,
            )
        except BaseException:
            async with self._lock:
                self._opening.pop(storage_id, None)
            raise

        async with self._lock:
            self._opening.pop(storage_id, None)
            if self._closed:
                closed_meanwhile = True
            else:
                closed_meanwhile = False
                self._handles[storage_id] = handle

        if closed_meanwhile:
            await handle.close()
            raise StorageUnavailable(storage_id, "pool is shut down")
        return handle

    async def close_handle(self, storage_id: str) -> None:
        async with self._lock:
            handle = self._handles.pop(storage_id, None)
        if handle is not None:
            await handle.close()

    async def close_all(self) -> None:
        """Graceful drain: stop the sweeper and close every handle."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        async with self._lock:
            self._closed = True
            handles = list(self._handles.values())
            self._handles.clear()

        results = await asyncio.gather(*(h.close() for h in handles), return_exceptions=True)
        for handle, result in zip(handles, results):
            if isinstance(result, Exception):
                logger.error(f"Error closing connection to {handle.storage_id}: {result}")

        # Stale handles discarded by get_handle may still be draining
        pending = list(self._closing)
        results = await asyncio.gather(*pending, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Error closing stale tenant handle: {result}")
        self._closing.difference_update(pending)

    @property
    def pending_closes(self) -> int:
        return len(self._closing)

    def list_active(self) -> list[str]:
        """Storage identifiers with a live, healthy handle."""
        return sorted(sid for sid, handle in self._handles.items() if handle.healthy)

    async def sweep(self) -> list[str]:
        """
        Evict broken handles and handles idle longer than idle_timeout.

        Handles with in-flight operations are never evicted.

        Returns:
            Storage identifiers that were evicted
        """
        evicted = []
        async with self._lock:
            for sid, handle in list(self._handles.items()):
                if handle.in_flight:
                    continue
                if not handle.healthy or handle.idle_for() >= self.idle_timeout:
                    evicted.append(self._handles.pop(sid))

        for handle in evicted:
            await handle.close()
        return [h.storage_id for h in evicted]

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                evicted = await self.sweep()
            except SQLAlchemyError as e:
                logger.error(f"Tenant handle sweep failed: {e}")
                continue
            if evicted:
                logger.info(f"Evicted idle tenant handles: {', '.join(evicted)}")

    def __len__(self) -> int:
        return len(self._handles)
