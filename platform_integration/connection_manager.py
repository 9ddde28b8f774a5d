"""
Platform Integration - Connection Manager.

============================================================
PURPOSE
============================================================
Creates, reuses and tears down a user's authorized session
with a venue.

FLOW (connect):
1. Look up the platform
2. Authenticate through the connector for its type
3. Store the secret in the credential vault
4. Persist the connection with is_connected=True

If any step fails nothing is left behind: no connection row
and no vault entry. Reconnecting an existing (user, platform)
pair updates that row in place.

authorize() and save_connection() split the flow so a caller
can retry the storage half without authenticating again.

TOKEN REFRESH:
session_for() refreshes stale OAuth2 tokens under a
per-connection lock and re-reads the persisted tokens after
acquiring it, so concurrent callers trigger one refresh.

============================================================
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from .config import IntegrationConfig
from .connectors import ConnectorFactory, VenueConnector
from .database import transaction_scope
from .errors import PlatformNotFoundError
from .locks import KeyedLocks
from .repository import IntegrationRepository, session_from_connection, to_descriptor
from .types import (
    ConnectorSession,
    PlatformCredentials,
    PlatformDescriptor,
    utcnow,
)
from .vault import CredentialVault


logger = logging.getLogger(__name__)


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass
class ConnectionRecord:
    """A connection as returned by connect()."""

    connection_id: int
    user_id: int
    platform_id: int
    platform_slug: str
    remote_account_id: Optional[str]
    is_connected: bool
    reconnected: bool = False
    """True when an existing row was reused."""


@dataclass
class ActiveSession:
    """Everything needed to talk to a venue for one connection."""

    connection_id: int
    user_id: int
    is_connected: bool
    platform: PlatformDescriptor
    connector: VenueConnector
    session: ConnectorSession


# ============================================================
# CONNECTION MANAGER
# ============================================================

class ConnectionManager:
    """
    Manages user connections to venues.

    The only component that talks to the credential vault.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        vault: CredentialVault,
        connectors: ConnectorFactory,
        config: Optional[IntegrationConfig] = None,
    ):
        self._session_factory = session_factory
        self._vault = vault
        self._connectors = connectors
        self._config = config or IntegrationConfig()
        self._refresh_locks = KeyedLocks()

    @property
    def connectors(self) -> ConnectorFactory:
        return self._connectors

    async def _load_platform(self, platform_id: int) -> PlatformDescriptor:
        async with transaction_scope(self._session_factory) as session:
            model = await IntegrationRepository(session).get_platform(platform_id)
            if model is None:
                raise PlatformNotFoundError(platform_id)
            return to_descriptor(model)

    # --------------------------------------------------------
    # CONNECT / TEST / DISCONNECT
    # --------------------------------------------------------

    async def connect(
        self,
        user_id: int,
        platform_id: int,
        credentials: PlatformCredentials,
    ) -> ConnectionRecord:
        """
        Authenticate and persist a connection.

        Raises:
            PlatformNotFoundError: Unknown platform id
            ConnectorError: Authentication failed
            CredentialVaultError: Secret could not be stored
            PersistenceError: Store unavailable
        """
        platform, connector_session = await self.authorize(user_id, platform_id, credentials)
        return await self.save_connection(user_id, platform, credentials, connector_session)

    async def authorize(
        self,
        user_id: int,
        platform_id: int,
        credentials: PlatformCredentials,
    ) -> Tuple[PlatformDescriptor, ConnectorSession]:
        """
        Authenticate against the venue. Nothing is stored.

        Raises:
            PlatformNotFoundError: Unknown platform id
            ConnectorError: Authentication failed
        """
        platform = await self._load_platform(platform_id)
        connector = self._connectors.create(platform)

        logger.info(f"Connecting user {user_id} to {platform.slug}")
        connector_session = await connector.authenticate(credentials)
        return platform, connector_session

    async def save_connection(
        self,
        user_id: int,
        platform: PlatformDescriptor,
        credentials: PlatformCredentials,
        connector_session: ConnectorSession,
    ) -> ConnectionRecord:
        """
        Store the secret and upsert the connection row for an
        already authenticated session.

        Safe to call again after a failure: the secret stored by
        a failed attempt is revoked before the error propagates.

        Raises:
            CredentialVaultError: Secret could not be stored
            PersistenceError: Store unavailable
        """
        platform_id = platform.id
        handle = await self._vault.store(user_id, platform_id, credentials)
        old_handle: Optional[str] = None
        try:
            async with transaction_scope(self._session_factory) as session:
                repo = IntegrationRepository(session)
                existing = await repo.find_connection(user_id, platform_id)
                if existing is not None:
                    old_handle = existing.credential_handle
                    existing.credential_handle = handle
                    existing.is_connected = True
                    repo.apply_session(existing, connector_session)
                    await session.flush()
                    connection = existing
                else:
                    connection = await repo.add_connection(user_id, platform_id, handle, connector_session)

                record = ConnectionRecord(
                    connection_id=connection.id,
                    user_id=user_id,
                    platform_id=platform_id,
                    platform_slug=platform.slug,
                    remote_account_id=connection.remote_account_id,
                    is_connected=True,
                    reconnected=existing is not None,
                )
        except Exception:
            await self._vault.revoke(handle)
            raise

        if old_handle and old_handle != handle:
            await self._vault.revoke(old_handle)

        logger.info(
            f"User {user_id} connected to {platform.slug} "
            f"(connection {record.connection_id}, reconnected={record.reconnected})"
        )
        return record

    async def test_connection(self, platform_id: int, credentials: PlatformCredentials) -> ConnectorSession:
        """
        Authenticate without persisting anything.

        Raises:
            PlatformNotFoundError: Unknown platform id
            ConnectorError: Authentication failed
        """
        platform = await self._load_platform(platform_id)
        connector = self._connectors.create(platform)
        connector_session = await connector.authenticate(credentials)
        logger.info(f"Test connection to {platform.slug} succeeded")
        return connector_session

    async def disconnect(self, user_id: int, connection_id: int) -> bool:
        """
        Mark a connection disconnected. History is kept.

        Returns:
            False if the connection does not exist or belongs to
            another user
        """
        async with transaction_scope(self._session_factory) as session:
            repo = IntegrationRepository(session)
            connection = await repo.get_connection(connection_id)
            if connection is None or connection.user_id != user_id:
                logger.warning(f"Disconnect refused: connection {connection_id} not owned by user {user_id}")
                return False
            connection.is_connected = False
            await session.flush()

        logger.info(f"User {user_id} disconnected connection {connection_id}")
        return True

    # --------------------------------------------------------
    # SESSIONS
    # --------------------------------------------------------

    async def session_for(self, connection_id: int) -> ActiveSession:
        """
        Rebuild the venue session for a connection, refreshing
        the token first when it is about to expire.

        Raises:
            ConnectionNotFoundError: Unknown connection id
            ConnectorError: Token refresh failed
        """
        async with transaction_scope(self._session_factory) as session:
            connection = await IntegrationRepository(session).require_connection(connection_id)
            platform = to_descriptor(connection.platform)
            connector_session = session_from_connection(connection)
            user_id = connection.user_id
            is_connected = connection.is_connected

        connector = self._connectors.create(platform)
        skew = self._config.sync.token_refresh_skew_seconds

        # Disconnected rows are never refreshed against the venue
        if is_connected and connector.needs_refresh(connector_session, utcnow(), skew):
            connector_session = await self._refresh(connection_id, connector, skew)

        return ActiveSession(
            connection_id=connection_id,
            user_id=user_id,
            is_connected=is_connected,
            platform=platform,
            connector=connector,
            session=connector_session,
        )

    async def _refresh(self, connection_id: int, connector: VenueConnector, skew: float) -> ConnectorSession:
        async with self._refresh_locks.hold(connection_id):
            async with transaction_scope(self._session_factory) as session:
                connection = await IntegrationRepository(session).require_connection(connection_id)
                current = session_from_connection(connection)
                handle = connection.credential_handle

            # Another caller may have refreshed while we waited
            if not connector.needs_refresh(current, utcnow(), skew):
                return current

            credentials = None
            if not current.refresh_token and handle:
                credentials = await self._vault.resolve(handle)

            refreshed = await connector.refresh(current, credentials)

            async with transaction_scope(self._session_factory) as session:
                repo = IntegrationRepository(session)
                connection = await repo.require_connection(connection_id)
                repo.apply_session(connection, refreshed)

            logger.info(f"Refreshed {connector.venue} token for connection {connection_id}")
            return refreshed
