"""
Platform Integration - Types.

============================================================
PURPOSE
============================================================
Venue-agnostic value types shared by connectors, the
connection manager, the synchronizer and the facade.

Connectors translate whatever a venue returns into these
shapes. Nothing above the connector layer ever sees a
venue-specific field name.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    """Naive UTC timestamp, the format used by every persisted column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================
# ENUMS
# ============================================================

class PlatformType(Enum):
    """Authentication scheme a venue speaks."""

    SESSION_LOGIN = "session_login"
    API_KEY = "api_key"
    OAUTH2 = "oauth2"
    SESSION_ID = "session_id"


class AccountType(Enum):
    """Remote account classification."""

    DEMO = "demo"
    LIVE = "live"
    PROP = "prop"


class TradeSide(Enum):
    BUY = "buy"
    SELL = "sell"


class TradeStatus(Enum):
    PENDING = "pending"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class TradeOrderType(Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"


# ============================================================
# PLATFORM DESCRIPTOR
# ============================================================

@dataclass(frozen=True)
class PlatformDescriptor:
    """
    Static description of a supported venue.

    Seeded into the platform table at startup and handed to
    connectors so they know where to talk to.
    """

    slug: str
    """Stable venue key (e.g. dxtrade)."""

    name: str
    """Display name."""

    platform_type: PlatformType
    """Authentication scheme."""

    api_base_url: str
    """REST API base URL."""

    web_trade_url: str
    """Browser trading terminal URL."""

    supports_api: bool = True
    supports_web_trading: bool = True

    configuration: Dict[str, Any] = field(default_factory=dict)
    """Freeform venue configuration (token endpoint, demo flag, ...)."""

    id: Optional[int] = None
    """Primary key once persisted."""


# ============================================================
# CREDENTIALS AND SESSIONS
# ============================================================

def _flag(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass
class PlatformCredentials:
    """
    Raw secret material supplied by a user.

    Only ever held transiently by the connection manager and
    the credential vault. Never persisted on a connection row.
    """

    username: Optional[str] = None
    password: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    server: Optional[str] = None
    demo: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlatformCredentials":
        """Build from a camelCase or snake_case mapping."""
        return cls(
            username=data.get("username"),
            password=data.get("password"),
            api_key=data.get("api_key", data.get("apiKey")),
            api_secret=data.get("api_secret", data.get("apiSecret")),
            server=data.get("server"),
            demo=_flag(data.get("demo"), default=True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "password": self.password,
            "api_key": self.api_key,
            "api_secret": self.api_secret,
            "server": self.server,
            "demo": self.demo,
        }

    def __repr__(self) -> str:
        return f"PlatformCredentials(username={self.username!r}, server={self.server!r}, demo={self.demo})"


@dataclass
class ConnectorSession:
    """Result of a successful authenticate/refresh."""

    access_token: str
    """Bearer token or session id, depending on the venue."""

    remote_account_id: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    connection_data: Dict[str, Any] = field(default_factory=dict)
    """Venue metadata worth keeping (server, account list, ...)."""

    def is_expired(self, now: Optional[datetime] = None, skew_seconds: float = 0.0) -> bool:
        if self.token_expiry is None:
            return False
        now = now or utcnow()
        return (self.token_expiry - now).total_seconds() <= skew_seconds

    def __repr__(self) -> str:
        return (
            f"ConnectorSession(remote_account_id={self.remote_account_id!r}, "
            f"token_expiry={self.token_expiry!r})"
        )


# ============================================================
# NORMALIZED REMOTE STATE
# ============================================================

@dataclass(frozen=True)
class AccountInfo:
    """Normalized account snapshot."""

    account_number: str
    account_name: str
    account_type: AccountType
    currency: str
    balance: Decimal
    equity: Decimal
    margin: Decimal
    free_margin: Decimal


@dataclass(frozen=True)
class TradeInfo:
    """Normalized remote trade/order."""

    platform_trade_id: str
    symbol: str
    side: TradeSide
    quantity: Decimal
    status: TradeStatus
    order_type: TradeOrderType
    price: Optional[Decimal] = None
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    commission: Decimal = Decimal("0")
    swap: Decimal = Decimal("0")
    profit: Decimal = Decimal("0")
    open_time: Optional[datetime] = None
    close_time: Optional[datetime] = None


# ============================================================
# OPERATION RESULTS
# ============================================================

@dataclass
class SyncResult:
    """Outcome of synchronizing one connection."""

    connection_id: int
    success: bool
    account_changed: bool = False
    trades_synced: int = 0
    error: Optional[Exception] = None
    synced_at: Optional[datetime] = None

    @property
    def message(self) -> str:
        if self.success:
            return f"Connection {self.connection_id} synchronized ({self.trades_synced} trades)"
        return str(self.error)


@dataclass
class SweepResult:
    """
    Per-connection outcome of a batch sync.

    A failure for one connection is one failed entry here,
    never an exception for the whole sweep.
    """

    results: Dict[int, SyncResult] = field(default_factory=dict)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> List[int]:
        return [cid for cid, r in self.results.items() if r.success]

    @property
    def failed(self) -> List[int]:
        return [cid for cid, r in self.results.items() if not r.success]


@dataclass
class OperationResult:
    """Facade response shape: `{success, message}` plus optional payload."""

    success: bool
    message: str
    data: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message}
