"""
Platform Integration - Facade.

============================================================
PURPOSE
============================================================
The only surface the rest of the application calls.

Every operation returns OperationResult(success, message,
data) and never raises:
- Connector / sync failures -> success=False with venue and
  phase context in the message
- PersistenceError -> retried with exponential backoff, then
  success=False

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar, Union

from sqlalchemy.ext.asyncio import async_sessionmaker

from .config import IntegrationConfig
from .connection_manager import ConnectionManager
from .database import transaction_scope
from .errors import IntegrationError, PersistenceError, describe_error
from .registry import PlatformRegistry
from .repository import IntegrationRepository, to_descriptor
from .synchronizer import AccountSynchronizer
from .types import (
    AccountInfo,
    AccountType,
    OperationResult,
    PlatformCredentials,
    PlatformDescriptor,
)


logger = logging.getLogger(__name__)


T = TypeVar("T")


# ============================================================
# READ MODELS
# ============================================================

@dataclass
class ConnectionView:
    """A connection joined with its platform and account snapshot."""

    connection_id: int
    user_id: int
    platform: PlatformDescriptor
    remote_account_id: Optional[str]
    is_connected: bool
    last_sync_at: Optional[datetime]
    last_sync_error: Optional[str]
    stale_since: Optional[datetime]
    created_at: datetime
    account: Optional[AccountInfo] = None
    account_last_updated: Optional[datetime] = None


# ============================================================
# FACADE
# ============================================================

class IntegrationFacade:
    """
    Aggregates registry, connection manager and synchronizer.

    Usage:
        facade = IntegrationFacade(session_factory, registry, manager, synchronizer)
        result = await facade.connect(user_id, platform_id, credentials)
        if not result.success:
            show(result.message)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        registry: PlatformRegistry,
        connections: ConnectionManager,
        synchronizer: AccountSynchronizer,
        config: Optional[IntegrationConfig] = None,
    ):
        self._session_factory = session_factory
        self._registry = registry
        self._connections = connections
        self._synchronizer = synchronizer
        self._config = config or IntegrationConfig()

    # --------------------------------------------------------
    # RETRY
    # --------------------------------------------------------

    async def _with_retry(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """
        Run func, retrying PersistenceError with exponential backoff.

        Raises:
            PersistenceError: Still failing after max_retries
        """
        retry_config = self._config.retry
        delay = retry_config.initial_delay_seconds

        for attempt in range(retry_config.max_retries + 1):
            try:
                return await func()
            except PersistenceError as e:
                if attempt >= retry_config.max_retries:
                    logger.error(f"{operation} failed after {attempt + 1} attempts: {e}")
                    raise
                logger.warning(
                    f"{operation} hit a persistence error "
                    f"(attempt {attempt + 1}/{retry_config.max_retries + 1}): {e}. "
                    f"Retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                delay = min(delay * retry_config.backoff_multiplier, retry_config.max_delay_seconds)

    async def _run(
        self,
        operation: str,
        func: Callable[[], Awaitable[OperationResult]],
        retry: bool = True,
    ) -> OperationResult:
        try:
            if not retry:
                return await func()
            return await self._with_retry(operation, func)
        except PersistenceError as e:
            return OperationResult(False, f"Storage unavailable: {e.original_error}")
        except (IntegrationError, ValueError) as e:
            logger.warning(f"{operation} failed: {describe_error(e)}")
            return OperationResult(False, describe_error(e))
        except Exception as e:
            logger.exception(f"Unexpected error in {operation}: {e}")
            return OperationResult(False, f"Unexpected error in {operation}")

    # --------------------------------------------------------
    # PLATFORMS
    # --------------------------------------------------------

    async def list_platforms(self) -> OperationResult:
        async def op() -> OperationResult:
            platforms = await self._registry.list_platforms(active_only=True)
            return OperationResult(True, f"{len(platforms)} platforms available", platforms)

        return await self._run("list_platforms", op)

    # --------------------------------------------------------
    # CONNECTIONS
    # --------------------------------------------------------

    async def connect(
        self,
        user_id: int,
        platform_id: int,
        credentials: Union[PlatformCredentials, Dict[str, Any]],
    ) -> OperationResult:
        """
        Connect a user to a platform, then run the first sync.

        The venue is authenticated once; only storing the
        connection is retried on a persistence error.

        A failing first sync does not undo the connection; it
        is reported in the message and recorded on the row.
        """
        if isinstance(credentials, dict):
            credentials = PlatformCredentials.from_dict(credentials)

        async def op() -> OperationResult:
            platform, connector_session = await self._connections.authorize(user_id, platform_id, credentials)
            record = await self._with_retry(
                "connect",
                lambda: self._connections.save_connection(user_id, platform, credentials, connector_session),
            )
            message = f"Connected to {record.platform_slug}"
            try:
                sync_result = await self._with_retry(
                    "initial_sync", lambda: self._synchronizer.sync(record.connection_id)
                )
            except PersistenceError as e:
                return OperationResult(True, f"{message}; initial sync failed: {e.original_error}", record)
            if not sync_result.success:
                message = f"{message}; initial sync failed: {describe_error(sync_result.error)}"
            return OperationResult(True, message, record)

        return await self._run("connect", op, retry=False)

    async def test_connection(
        self,
        platform_id: int,
        credentials: Union[PlatformCredentials, Dict[str, Any]],
    ) -> OperationResult:
        if isinstance(credentials, dict):
            credentials = PlatformCredentials.from_dict(credentials)

        async def op() -> OperationResult:
            session = await self._connections.test_connection(platform_id, credentials)
            return OperationResult(True, "Connection test successful", {"accountId": session.remote_account_id})

        return await self._run("test_connection", op)

    async def list_connections(self, user_id: int) -> OperationResult:
        async def op() -> OperationResult:
            async with transaction_scope(self._session_factory) as session:
                rows = await IntegrationRepository(session).list_user_connections(user_id)
                views = [self._to_view(row) for row in rows]
            return OperationResult(True, f"{len(views)} connections", views)

        return await self._run("list_connections", op)

    @staticmethod
    def _to_view(row) -> ConnectionView:
        account = None
        last_updated = None
        if row.account is not None:
            snapshot = row.account
            account = AccountInfo(
                account_number=snapshot.account_number,
                account_name=snapshot.account_name,
                account_type=AccountType(snapshot.account_type),
                currency=snapshot.currency,
                balance=snapshot.balance,
                equity=snapshot.equity,
                margin=snapshot.margin,
                free_margin=snapshot.free_margin,
            )
            last_updated = snapshot.last_updated

        return ConnectionView(
            connection_id=row.id,
            user_id=row.user_id,
            platform=to_descriptor(row.platform),
            remote_account_id=row.remote_account_id,
            is_connected=row.is_connected,
            last_sync_at=row.last_sync_at,
            last_sync_error=row.last_sync_error,
            stale_since=row.stale_since,
            created_at=row.created_at,
            account=account,
            account_last_updated=last_updated,
        )

    async def disconnect(self, user_id: int, connection_id: int) -> OperationResult:
        async def op() -> OperationResult:
            if await self._connections.disconnect(user_id, connection_id):
                return OperationResult(True, "Platform disconnected successfully")
            return OperationResult(False, f"Connection {connection_id} not found")

        return await self._run("disconnect", op)

    # --------------------------------------------------------
    # SYNC
    # --------------------------------------------------------

    async def trigger_sync(self, connection_id: int) -> OperationResult:
        async def op() -> OperationResult:
            result = await self._synchronizer.sync(connection_id)
            if result.success:
                return OperationResult(True, "Account synchronized", result)
            return OperationResult(False, describe_error(result.error), result)

        return await self._run("trigger_sync", op)

    async def sync_all(self) -> OperationResult:
        async def op() -> OperationResult:
            sweep = await self._synchronizer.sweep()
            message = f"{len(sweep.succeeded)} synchronized, {len(sweep.failed)} failed"
            return OperationResult(not sweep.failed, message, sweep)

        return await self._run("sync_all", op)
