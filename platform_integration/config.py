"""
Platform Integration - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the integration layer.

Values come from environment variables (optionally loaded
from a .env file). Every dataclass has safe defaults so the
layer runs against a local SQLite file out of the box.

============================================================
ENVIRONMENT
============================================================
PLATFORM_DATABASE_URL       SQLAlchemy async URL
PLATFORM_REQUEST_TIMEOUT    Per-request timeout (seconds)
PLATFORM_SYNC_INTERVAL      Scheduled sweep interval (seconds)
PLATFORM_SYNC_CONCURRENCY   Max concurrent syncs in a sweep
PLATFORM_SYNC_TRADES        Also mirror trades (true/false)
CREDENTIAL_VAULT_KEY        Fernet key for the encrypted vault
{SLUG}_CLIENT_ID            OAuth2 client id per venue
{SLUG}_CLIENT_SECRET        OAuth2 client secret per venue
LOG_LEVEL / LOG_FORMAT      Logging setup

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv


load_dotenv()


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./platform_integration.db"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ============================================================
# TIMEOUTS
# ============================================================

@dataclass
class TimeoutConfig:
    """Timeouts for remote venue calls."""

    request_timeout_seconds: float = 20.0
    """Total timeout per HTTP request."""

    connect_timeout_seconds: float = 5.0
    """TCP connect timeout."""


# ============================================================
# RETRY CONFIGURATION
# ============================================================

@dataclass
class RetryConfig:
    """
    Retry policy for persistence failures at the facade.

    Bounded retries with exponential backoff.
    """

    max_retries: int = 3
    """Maximum number of retry attempts."""

    initial_delay_seconds: float = 0.5
    """Delay before the first retry."""

    max_delay_seconds: float = 8.0
    """Upper bound for a single delay."""

    backoff_multiplier: float = 2.0
    """Exponential backoff multiplier."""


# ============================================================
# SYNC CONFIGURATION
# ============================================================

@dataclass
class SyncConfig:
    """Account synchronizer and scheduler settings."""

    max_concurrency: int = 8
    """Worker pool size for a sweep."""

    interval_seconds: float = 300.0
    """Scheduled sweep interval."""

    include_trades: bool = True
    """Mirror trades in addition to the account snapshot."""

    token_refresh_skew_seconds: float = 60.0
    """Refresh OAuth2 tokens this long before they expire."""


# ============================================================
# OAUTH CLIENTS
# ============================================================

@dataclass
class OAuthClientConfig:
    """Client registration for an OAuth2 venue."""

    client_id: Optional[str] = None
    client_secret: Optional[str] = None

    @classmethod
    def from_env(cls, slug: str) -> "OAuthClientConfig":
        prefix = slug.upper()
        return cls(
            client_id=os.getenv(f"{prefix}_CLIENT_ID"),
            client_secret=os.getenv(f"{prefix}_CLIENT_SECRET"),
        )


# ============================================================
# ROOT CONFIGURATION
# ============================================================

@dataclass
class IntegrationConfig:
    """Root configuration object handed to every component."""

    database_url: str = DEFAULT_DATABASE_URL
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    oauth_clients: Dict[str, OAuthClientConfig] = field(default_factory=dict)
    vault_key: Optional[str] = None
    scheduler_enabled: bool = True
    log_level: str = "INFO"
    log_format: str = "text"

    def oauth_client(self, slug: str) -> OAuthClientConfig:
        """Client config for a venue, falling back to the environment."""
        if slug not in self.oauth_clients:
            self.oauth_clients[slug] = OAuthClientConfig.from_env(slug)
        return self.oauth_clients[slug]

    @classmethod
    def from_env(cls) -> "IntegrationConfig":
        """Create config from environment variables."""
        return cls(
            database_url=os.getenv("PLATFORM_DATABASE_URL", DEFAULT_DATABASE_URL),
            timeouts=TimeoutConfig(
                request_timeout_seconds=float(os.getenv("PLATFORM_REQUEST_TIMEOUT", "20")),
            ),
            sync=SyncConfig(
                max_concurrency=int(os.getenv("PLATFORM_SYNC_CONCURRENCY", "8")),
                interval_seconds=float(os.getenv("PLATFORM_SYNC_INTERVAL", "300")),
                include_trades=_env_bool("PLATFORM_SYNC_TRADES", True),
            ),
            vault_key=os.getenv("CREDENTIAL_VAULT_KEY"),
            scheduler_enabled=_env_bool("PLATFORM_SYNC_SCHEDULER", True),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )
