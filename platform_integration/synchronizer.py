"""
Platform Integration - Account Synchronizer.

============================================================
PURPOSE
============================================================
Keeps the local account/trade mirror in step with the venue.

sync(connection_id):
1. Single-flight per connection id
2. Obtain a fresh session via the connection manager
3. Fetch account (and trades) from the venue
4. In ONE transaction: upsert the snapshot, upsert trades,
   stamp last_sync_at

If anything before step 4 fails, the mirror is untouched and
the failure is recorded on the connection row instead.

sweep():
Bounded concurrent sync over many connections. One result
per connection; a failing venue never aborts the batch.

SyncScheduler:
Background task running sweep() on an interval.

============================================================
"""

import asyncio
import logging
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from .config import IntegrationConfig
from .connection_manager import ConnectionManager
from .database import transaction_scope
from .errors import (
    ConnectionNotFoundError,
    ConnectorError,
    IntegrationError,
    PersistenceError,
    SyncError,
    describe_error,
)
from .locks import KeyedLocks
from .repository import IntegrationRepository
from .types import SweepResult, SyncResult, utcnow


logger = logging.getLogger(__name__)


# ============================================================
# ACCOUNT SYNCHRONIZER
# ============================================================

class AccountSynchronizer:
    """
    Mirrors remote account state into the local store.

    Usage:
        synchronizer = AccountSynchronizer(session_factory, manager, config)
        result = await synchronizer.sync(connection_id)
        sweep = await synchronizer.sweep()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        connections: ConnectionManager,
        config: Optional[IntegrationConfig] = None,
    ):
        self._session_factory = session_factory
        self._connections = connections
        self._config = config or IntegrationConfig()
        self._locks = KeyedLocks()

    def is_syncing(self, connection_id: int) -> bool:
        return self._locks.locked(connection_id)

    # --------------------------------------------------------
    # SINGLE CONNECTION
    # --------------------------------------------------------

    async def sync(self, connection_id: int) -> SyncResult:
        """
        Synchronize one connection.

        Connector failures come back as a failed SyncResult
        wrapping a SyncError.

        Raises:
            PersistenceError: The store is unavailable
        """
        async with self._locks.hold(connection_id):
            return await self._sync(connection_id)

    async def _sync(self, connection_id: int) -> SyncResult:
        include_trades = self._config.sync.include_trades

        try:
            active = await self._connections.session_for(connection_id)
            if not active.is_connected:
                return self._failed(connection_id, IntegrationError("Connection is disconnected"))

            account = await active.connector.fetch_account(active.session)
            trades = await active.connector.fetch_trades(active.session) if include_trades else []
        except PersistenceError:
            raise
        except ConnectionNotFoundError as e:
            return self._failed(connection_id, e)
        except (IntegrationError, ValueError) as e:
            if isinstance(e, ConnectorError):
                logger.warning(
                    f"Sync failed for connection {connection_id}: "
                    f"venue={e.venue} phase={e.phase.value} category={e.category.value} cause={e.cause}"
                )
            else:
                logger.warning(f"Sync failed for connection {connection_id}: {e}")
            await self._record_failure(connection_id, describe_error(e))
            return self._failed(connection_id, e)

        now = utcnow()
        try:
            async with transaction_scope(self._session_factory) as session:
                repo = IntegrationRepository(session)
                connection = await repo.require_connection(connection_id)
                account_changed = await repo.upsert_account(connection_id, account, now)
                trades_synced = await repo.upsert_trades(connection_id, trades, now) if trades else 0
                await repo.record_sync_success(connection, now)
        except ValueError as e:
            # Amount the store cannot hold; nothing was written
            logger.warning(f"Sync rejected for connection {connection_id}: {e}")
            await self._record_failure(connection_id, describe_error(e))
            return self._failed(connection_id, e)

        logger.info(
            f"Synchronized connection {connection_id} ({active.platform.slug}): "
            f"account_changed={account_changed} trades={trades_synced}"
        )
        return SyncResult(
            connection_id=connection_id,
            success=True,
            account_changed=account_changed,
            trades_synced=trades_synced,
            synced_at=now,
        )

    def _failed(self, connection_id: int, cause: Exception) -> SyncResult:
        return SyncResult(
            connection_id=connection_id,
            success=False,
            error=SyncError(connection_id, cause),
        )

    async def _record_failure(self, connection_id: int, message: str) -> None:
        try:
            async with transaction_scope(self._session_factory) as session:
                await IntegrationRepository(session).record_sync_failure(connection_id, message, utcnow())
        except (PersistenceError, ConnectionNotFoundError) as e:
            logger.error(f"Could not record sync failure for connection {connection_id}: {e}")

    # --------------------------------------------------------
    # SWEEP
    # --------------------------------------------------------

    async def sweep(self, connection_ids: Optional[Iterable[int]] = None) -> SweepResult:
        """
        Synchronize many connections concurrently.

        Args:
            connection_ids: Connections to sync (default: every
                connected one)

        Returns:
            SweepResult with one SyncResult per connection
        """
        result = SweepResult()

        if connection_ids is None:
            async with transaction_scope(self._session_factory) as session:
                ids: List[int] = await IntegrationRepository(session).list_connected_ids()
        else:
            ids = list(dict.fromkeys(connection_ids))

        semaphore = asyncio.Semaphore(max(1, self._config.sync.max_concurrency))

        async def sync_one(connection_id: int) -> SyncResult:
            async with semaphore:
                return await self.sync(connection_id)

        outcomes = await asyncio.gather(*[sync_one(cid) for cid in ids], return_exceptions=True)

        for connection_id, outcome in zip(ids, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(f"Sync crashed for connection {connection_id}: {outcome}")
                outcome = self._failed(connection_id, outcome)
            result.results[connection_id] = outcome

        result.finished_at = utcnow()
        logger.info(
            f"Sync sweep finished: {len(result.succeeded)} succeeded, "
            f"{len(result.failed)} failed"
        )
        return result


# ============================================================
# SCHEDULER
# ============================================================

class SyncScheduler:
    """
    Runs sweep() periodically as a background task.

    Started and stopped with the application lifespan.
    """

    def __init__(self, synchronizer: AccountSynchronizer, interval_seconds: float = 300.0):
        self._synchronizer = synchronizer
        self._interval = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._last_result: Optional[SweepResult] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> Optional[SweepResult]:
        return self._last_result

    async def start(self) -> None:
        """Start the scheduler."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Sync scheduler started (interval {self._interval}s)")

    async def stop(self) -> None:
        """Stop the scheduler."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Sync scheduler stopped")

    async def _run(self) -> None:
        while self._running:
            try:
                self._last_result = await self._synchronizer.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Scheduled sync sweep failed: {e}")

            await asyncio.sleep(self._interval)
