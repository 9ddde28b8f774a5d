"""
Multi-Broker Trading Platform Integration Layer.

============================================================
PURPOSE
============================================================
Registers external trading venues, authenticates against
each with its own protocol, and keeps a local mirror of
account and trade state in step with every venue.

COMPONENTS (leaves first):
- PlatformRegistry: Supported venues, seeded at startup
- CredentialVault: Opaque handles for user secrets
- Venue connectors: One per authentication scheme
- ConnectionManager: Connect / disconnect / token refresh
- AccountSynchronizer: Single-flight sync, bounded sweeps
- IntegrationFacade: The only surface callers use

============================================================
"""

from .config import IntegrationConfig, RetryConfig, SyncConfig, TimeoutConfig
from .connection_manager import ConnectionManager, ConnectionRecord
from .connectors import ConnectorFactory, VenueConnector
from .errors import (
    ConnectionNotFoundError,
    ConnectorError,
    ConnectorPhase,
    CredentialVaultError,
    ErrorCategory,
    IntegrationError,
    PersistenceError,
    PlatformNotFoundError,
    RegistrySeedError,
    SyncError,
)
from .facade import ConnectionView, IntegrationFacade
from .registry import KNOWN_PLATFORMS, PlatformRegistry
from .synchronizer import AccountSynchronizer, SyncScheduler
from .types import (
    AccountInfo,
    AccountType,
    ConnectorSession,
    OperationResult,
    PlatformCredentials,
    PlatformDescriptor,
    PlatformType,
    SweepResult,
    SyncResult,
    TradeInfo,
)
from .vault import CredentialVault, EncryptedCredentialVault, InMemoryCredentialVault


__all__ = [
    # Config
    "IntegrationConfig",
    "RetryConfig",
    "SyncConfig",
    "TimeoutConfig",
    # Components
    "PlatformRegistry",
    "KNOWN_PLATFORMS",
    "CredentialVault",
    "InMemoryCredentialVault",
    "EncryptedCredentialVault",
    "ConnectorFactory",
    "VenueConnector",
    "ConnectionManager",
    "ConnectionRecord",
    "AccountSynchronizer",
    "SyncScheduler",
    "IntegrationFacade",
    "ConnectionView",
    # Types
    "AccountInfo",
    "AccountType",
    "ConnectorSession",
    "OperationResult",
    "PlatformCredentials",
    "PlatformDescriptor",
    "PlatformType",
    "SweepResult",
    "SyncResult",
    "TradeInfo",
    # Errors
    "IntegrationError",
    "ConnectorError",
    "ConnectorPhase",
    "ErrorCategory",
    "SyncError",
    "PersistenceError",
    "RegistrySeedError",
    "PlatformNotFoundError",
    "ConnectionNotFoundError",
    "CredentialVaultError",
]
