"""
Platform Integration - Application Wiring.

============================================================
PURPOSE
============================================================
Builds the integration runtime and the FastAPI application.

STARTUP ORDER:
1. Logging
2. Database engine + schema
3. Platform registry seeding (fatal on failure)
4. Credential vault, connectors, manager, synchronizer
5. Facade
6. Sync scheduler (optional)

Shutdown reverses the order.

============================================================
"""

import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import aiohttp
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from .api import router
from .config import IntegrationConfig
from .connection_manager import ConnectionManager
from .connectors import ConnectorFactory
from .database import create_database_engine, create_session_factory, init_schema
from .facade import IntegrationFacade
from .registry import PlatformRegistry
from .synchronizer import AccountSynchronizer, SyncScheduler
from .vault import CredentialVault, EncryptedCredentialVault, InMemoryCredentialVault


logger = logging.getLogger(__name__)


# ============================================================
# LOGGING
# ============================================================

def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Set up logging.

    Args:
        level: Log level
        log_format: Output format (json or text)

    Returns:
        Package logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("platform_integration")


# ============================================================
# RUNTIME
# ============================================================

class IntegrationRuntime:
    """
    Owns every long-lived component of the integration layer.

    Usage:
        runtime = IntegrationRuntime(config)
        await runtime.start()
        result = await runtime.facade.list_platforms()
        await runtime.close()
    """

    def __init__(self, config: Optional[IntegrationConfig] = None):
        self.config = config or IntegrationConfig.from_env()
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self.http_session: Optional[aiohttp.ClientSession] = None
        self.vault: Optional[CredentialVault] = None
        self.registry: Optional[PlatformRegistry] = None
        self.connections: Optional[ConnectionManager] = None
        self.synchronizer: Optional[AccountSynchronizer] = None
        self.facade: Optional[IntegrationFacade] = None
        self.scheduler: Optional[SyncScheduler] = None

    def _create_vault(self) -> CredentialVault:
        if self.config.vault_key:
            return EncryptedCredentialVault(self.session_factory, self.config.vault_key)
        logger.warning("CREDENTIAL_VAULT_KEY not set, credentials are kept in memory only")
        return InMemoryCredentialVault()

    async def start(self, with_scheduler: Optional[bool] = None) -> None:
        """
        Build and start all components.

        Raises:
            RegistrySeedError: Platform seeding failed
        """
        self.engine = create_database_engine(self.config.database_url)
        self.session_factory = create_session_factory(self.engine)
        await init_schema(self.engine)

        self.registry = PlatformRegistry(self.session_factory)
        await self.registry.ensure_seeded()

        self.http_session = aiohttp.ClientSession()
        self.vault = self._create_vault()
        connectors = ConnectorFactory(self.config, self.http_session)
        self.connections = ConnectionManager(self.session_factory, self.vault, connectors, self.config)
        self.synchronizer = AccountSynchronizer(self.session_factory, self.connections, self.config)
        self.facade = IntegrationFacade(
            self.session_factory,
            self.registry,
            self.connections,
            self.synchronizer,
            self.config,
        )

        if with_scheduler is None:
            with_scheduler = self.config.scheduler_enabled
        if with_scheduler:
            self.scheduler = SyncScheduler(self.synchronizer, self.config.sync.interval_seconds)
            await self.scheduler.start()

        logger.info("Platform integration layer started")

    async def close(self) -> None:
        """Stop the scheduler and release HTTP/DB resources."""
        if self.scheduler is not None:
            await self.scheduler.stop()
            self.scheduler = None
        if self.http_session is not None:
            await self.http_session.close()
            self.http_session = None
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
        logger.info("Platform integration layer stopped")


# ============================================================
# FASTAPI APPLICATION
# ============================================================

def create_app(config: Optional[IntegrationConfig] = None) -> FastAPI:
    """
    Create the FastAPI application.

    The integration runtime is started in the lifespan and
    exposed as app.state.runtime / app.state.facade.
    """
    config = config or IntegrationConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        runtime = IntegrationRuntime(config)
        try:
            await runtime.start()
            app.state.runtime = runtime
            app.state.facade = runtime.facade
            yield
        finally:
            app.state.facade = None
            await runtime.close()

    app = FastAPI(
        title="Trading Platform Integration API",
        description="Connect trading venues and mirror account state",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(router, prefix="/api/trading-platforms")

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {"status": "ok"}

    return app
