"""
Shared fixtures for platform integration tests.

- database: temporary SQLite file with the schema created
- venues / harness: fully wired components backed by stub
  connectors whose behavior each test can change
- fake_venue: aiohttp TestServer speaking all four venue
  protocols for wire-level connector tests
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from platform_integration.config import IntegrationConfig, RetryConfig, SyncConfig, TimeoutConfig
from platform_integration.connection_manager import ConnectionManager
from platform_integration.connectors import ConnectorFactory, VenueConnector
from platform_integration.database import create_database_engine, create_session_factory, init_schema
from platform_integration.errors import ConnectorError, ConnectorPhase, ErrorCategory
from platform_integration.facade import IntegrationFacade
from platform_integration.registry import PlatformRegistry
from platform_integration.synchronizer import AccountSynchronizer
from platform_integration.types import (
    AccountInfo,
    AccountType,
    ConnectorSession,
    PlatformCredentials,
    PlatformDescriptor,
    PlatformType,
    TradeInfo,
    TradeOrderType,
    TradeSide,
    TradeStatus,
    utcnow,
)
from platform_integration.vault import InMemoryCredentialVault


# ============================================================
# DATABASE
# ============================================================

@pytest_asyncio.fixture
async def database(tmp_path):
    engine = create_database_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    await init_schema(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def config():
    return IntegrationConfig(
        database_url="sqlite+aiosqlite://",
        timeouts=TimeoutConfig(request_timeout_seconds=2.0, connect_timeout_seconds=1.0),
        retry=RetryConfig(max_retries=2, initial_delay_seconds=0.0, max_delay_seconds=0.0),
        sync=SyncConfig(max_concurrency=4, include_trades=True, token_refresh_skew_seconds=60.0),
        scheduler_enabled=False,
    )


# ============================================================
# STUB CONNECTORS
# ============================================================

def make_account(balance: str = "10000.00", equity: str = "10000.00", **overrides) -> AccountInfo:
    values = dict(
        account_number="ACC-1",
        account_name="Practice",
        account_type=AccountType.DEMO,
        currency="USD",
        balance=Decimal(balance),
        equity=Decimal(equity),
        margin=Decimal("0"),
        free_margin=Decimal(equity),
    )
    values.update(overrides)
    return AccountInfo(**values)


def make_trade(trade_id: str = "T-1", profit: str = "0", **overrides) -> TradeInfo:
    values = dict(
        platform_trade_id=trade_id,
        symbol="EURUSD",
        side=TradeSide.BUY,
        quantity=Decimal("1.5"),
        status=TradeStatus.FILLED,
        order_type=TradeOrderType.MARKET,
        price=Decimal("1.0850"),
        profit=Decimal(profit),
        open_time=datetime(2024, 1, 2, 3, 4, 5),
    )
    values.update(overrides)
    return TradeInfo(**values)


@dataclass
class StubVenue:
    """Remote state and failure switches for one venue type."""

    account: AccountInfo = field(default_factory=make_account)
    trades: List[TradeInfo] = field(default_factory=list)
    auth_error: Optional[ConnectorError] = None
    fetch_error: Optional[ConnectorError] = None
    token_ttl_seconds: Optional[float] = None
    refresh_delay_seconds: float = 0.0
    auth_calls: int = 0
    fetch_calls: int = 0
    refresh_calls: int = 0
    last_credentials: Optional[PlatformCredentials] = None


class StubConnector(VenueConnector):
    """In-process connector driven by a StubVenue."""

    def __init__(self, platform: PlatformDescriptor, venue: StubVenue):
        super().__init__(platform)
        self.state = venue

    def _expiry(self) -> Optional[datetime]:
        if self.state.token_ttl_seconds is None:
            return None
        return utcnow() + timedelta(seconds=self.state.token_ttl_seconds)

    async def authenticate(self, credentials: PlatformCredentials) -> ConnectorSession:
        self.state.auth_calls += 1
        self.state.last_credentials = credentials
        if self.state.auth_error is not None:
            raise self.state.auth_error
        return ConnectorSession(
            access_token=f"{self.venue}-token-{self.state.auth_calls}",
            remote_account_id=self.state.account.account_number,
            refresh_token=f"{self.venue}-refresh" if self.state.token_ttl_seconds is not None else None,
            token_expiry=self._expiry(),
            connection_data={"server": credentials.server} if credentials.server else {},
        )

    async def fetch_account(self, session: ConnectorSession) -> AccountInfo:
        self.state.fetch_calls += 1
        if self.state.fetch_error is not None:
            raise self.state.fetch_error
        return self.state.account

    async def fetch_trades(self, session: ConnectorSession) -> List[TradeInfo]:
        if self.state.fetch_error is not None:
            raise self.state.fetch_error
        return list(self.state.trades)

    def needs_refresh(self, session: ConnectorSession, now: datetime, skew_seconds: float = 0.0) -> bool:
        return session.is_expired(now, skew_seconds)

    async def refresh(self, session, credentials=None) -> ConnectorSession:
        await asyncio.sleep(self.state.refresh_delay_seconds)
        self.state.refresh_calls += 1
        return ConnectorSession(
            access_token=f"{self.venue}-refreshed-{self.state.refresh_calls}",
            remote_account_id=session.remote_account_id,
            refresh_token=session.refresh_token,
            token_expiry=utcnow() + timedelta(hours=1),
        )


def auth_failure(venue: str = "stub") -> ConnectorError:
    return ConnectorError(venue, ConnectorPhase.AUTH, ErrorCategory.AUTHENTICATION, "Invalid credentials", 401)


def fetch_failure(venue: str = "stub") -> ConnectorError:
    return ConnectorError(venue, ConnectorPhase.FETCH_ACCOUNT, ErrorCategory.TIMEOUT, "Request timed out after 20s")


@pytest.fixture
def venues() -> Dict[PlatformType, StubVenue]:
    return {platform_type: StubVenue() for platform_type in PlatformType}


# ============================================================
# WIRED COMPONENTS
# ============================================================

@dataclass
class Harness:
    session_factory: Any
    config: IntegrationConfig
    venues: Dict[PlatformType, StubVenue]
    vault: InMemoryCredentialVault
    registry: PlatformRegistry
    connections: ConnectionManager
    synchronizer: AccountSynchronizer
    facade: IntegrationFacade
    platforms: Dict[str, PlatformDescriptor]

    def venue(self, slug: str) -> StubVenue:
        return self.venues[self.platforms[slug].platform_type]


@pytest_asyncio.fixture
async def harness(database, config, venues) -> Harness:
    registry = PlatformRegistry(database)
    await registry.ensure_seeded()

    factory = ConnectorFactory(config)
    for platform_type, venue in venues.items():
        factory.register(platform_type, creator=lambda p, v=venue: StubConnector(p, v))

    vault = InMemoryCredentialVault()
    connections = ConnectionManager(database, vault, factory, config)
    synchronizer = AccountSynchronizer(database, connections, config)
    facade = IntegrationFacade(database, registry, connections, synchronizer, config)
    platforms = {p.slug: p for p in await registry.list_platforms()}

    return Harness(
        session_factory=database,
        config=config,
        venues=venues,
        vault=vault,
        registry=registry,
        connections=connections,
        synchronizer=synchronizer,
        facade=facade,
        platforms=platforms,
    )


# ============================================================
# FAKE VENUE SERVER
# ============================================================

def _unauthorized() -> web.Response:
    return web.json_response({"success": False, "message": "Invalid credentials"}, status=401)


def build_fake_venue_app(state: Dict[str, Any]) -> web.Application:
    """aiohttp app answering like DX Trade, Match Trader, cTrader and Rithmic."""

    async def maybe_delay():
        if state.get("delay"):
            await asyncio.sleep(state["delay"])

    # DX Trade ------------------------------------------------
    async def dx_login(request):
        body = await request.json()
        state["dx_login_body"] = body
        if body.get("password") != "secret":
            return _unauthorized()
        return web.json_response({"success": True, "accountId": "DX-1", "token": "dx-token"})

    async def dx_account(request):
        await maybe_delay()
        if request.headers.get("Authorization") != "Bearer dx-token":
            return _unauthorized()
        if "dx_account_raw" in state:
            return web.Response(text=state["dx_account_raw"], content_type="text/html")
        return web.json_response(state["dx_account"])

    async def dx_trades(request):
        if request.headers.get("Authorization") != "Bearer dx-token":
            return _unauthorized()
        return web.json_response({"trades": state["dx_trades"]})

    # Match Trader --------------------------------------------
    async def mt_login(request):
        body = await request.json()
        if body.get("apiKey") != "key" or body.get("apiSecret") != "secret":
            return web.json_response({"success": False, "message": "Bad API key"})
        return web.json_response({"success": True, "accountId": "MT-7", "accessToken": "mt-token"})

    async def mt_account(request):
        if request.headers.get("Authorization") != "Bearer mt-token":
            return _unauthorized()
        return web.json_response(state["mt_account"])

    async def mt_trades(request):
        if state.get("mt_rate_limited"):
            return web.json_response({"message": "Too many requests"}, status=429)
        return web.json_response({"trades": state["mt_trades"]})

    # cTrader -------------------------------------------------
    async def ct_token(request):
        body = await request.json()
        state.setdefault("ct_token_bodies", []).append(body)
        grant = body.get("grant_type")
        if grant == "refresh_token":
            if body.get("refresh_token") != "ct-refresh":
                return web.json_response({"error": "invalid_grant"}, status=400)
            return web.json_response({"access_token": "ct-token-2", "expires_in": 3600})
        if grant == "password" and body.get("password") != "secret":
            return web.json_response({"error": "invalid_grant"}, status=401)
        return web.json_response({
            "access_token": "ct-token",
            "refresh_token": "ct-refresh",
            "expires_in": state.get("ct_expires_in", 3600),
            "accountId": "CT-9",
        })

    async def ct_accounts(request):
        if not request.headers.get("Authorization", "").startswith("Bearer ct-token"):
            return _unauthorized()
        return web.json_response(state["ct_accounts"])

    async def ct_deals(request):
        state["ct_deals_query"] = dict(request.query)
        return web.json_response(state["ct_deals"])

    # Rithmic -------------------------------------------------
    async def rt_login(request):
        body = await request.json()
        state["rt_login_body"] = body
        if body.get("password") != "pw":
            return web.json_response({"success": False, "message": "Login failed"}, status=403)
        return web.json_response({"success": True, "accountNumber": "RT-100", "sessionId": "rt-session"})

    async def rt_account(request):
        if request.headers.get("X-Session-ID") != "rt-session":
            return _unauthorized()
        return web.json_response(state["rt_account"])

    async def rt_fills(request):
        if request.headers.get("X-Session-ID") != "rt-session":
            return _unauthorized()
        return web.json_response({"fills": state["rt_fills"]})

    app = web.Application()
    app.router.add_post("/dx/v1/login", dx_login)
    app.router.add_get("/dx/v1/account", dx_account)
    app.router.add_get("/dx/v1/trades", dx_trades)
    app.router.add_post("/mt/v1/auth/login", mt_login)
    app.router.add_get("/mt/v1/account", mt_account)
    app.router.add_get("/mt/v1/trades", mt_trades)
    app.router.add_post("/ct/apps/token", ct_token)
    app.router.add_get("/ct/v1/accounts", ct_accounts)
    app.router.add_get("/ct/v1/deals", ct_deals)
    app.router.add_post("/rt/v1/login", rt_login)
    app.router.add_get("/rt/v1/account", rt_account)
    app.router.add_get("/rt/v1/fills", rt_fills)
    return app


def default_venue_state() -> Dict[str, Any]:
    return {
        "dx_account": {
            "accountNumber": "DX-1",
            "accountName": "DX Demo",
            "demo": True,
            "currency": "USD",
            "balance": 10000.00,
            "equity": 10012.5,
            "margin": 250,
            "freeMargin": 9762.5,
        },
        "dx_trades": [
            {
                "tradeId": "T-1",
                "instrument": "EURUSD",
                "direction": "BUY",
                "size": 1.5,
                "openPrice": 1.085,
                "stopLoss": 1.08,
                "takeProfit": None,
                "state": "OPEN",
                "orderType": "MARKET",
                "commission": -2.5,
                "swap": 0,
                "pnl": 12.5,
                "openTime": "2024-01-02T03:04:05Z",
                "closeTime": None,
            }
        ],
        "mt_account": {
            "accountNumber": "MT-7",
            "accountName": "Challenge",
            "accountType": "prop",
            "currency": "USD",
            "balance": "2500.75",
            "equity": "2490.10",
            "margin": "100",
            "freeMargin": "2390.10",
        },
        "mt_trades": [
            {
                "id": 55,
                "symbol": "XAUUSD",
                "side": "sell",
                "volume": "0.10",
                "price": "2050.5",
                "sl": "2060",
                "tp": "2030",
                "status": "closed",
                "type": "limit",
                "commission": "-0.7",
                "swap": "-0.12",
                "profit": "20.5",
                "openTime": 1704164645000,
                "closeTime": 1704168245000,
            }
        ],
        "ct_accounts": {
            "accounts": [
                {
                    "accountNumber": "CT-9",
                    "accountName": "Main",
                    "demo": False,
                    "currency": "EUR",
                    "balance": 1050050,
                    "equity": 1048010,
                    "margin": 20000,
                    "freeMargin": 1028010,
                    "moneyDigits": 2,
                }
            ]
        },
        "ct_deals": {
            "moneyDigits": 2,
            "deals": [
                {
                    "dealId": 101,
                    "symbolName": "EURUSD",
                    "tradeSide": "SELL",
                    "volume": 100000,
                    "executionPrice": 1.0876,
                    "dealStatus": "FILLED",
                    "commission": -150,
                    "swap": 0,
                    "grossProfit": 2500,
                    "createTimestamp": 1704164645000,
                }
            ],
        },
        "rt_account": {
            "accountNumber": "RT-100",
            "accountName": "Futures Eval",
            "accountType": "demo",
            "currency": "USD",
            "balance": 50000,
            "equity": 50125,
            "margin": 1200,
            "freeMargin": 48925,
        },
        "rt_fills": [
            {
                "fillId": "F-1",
                "ticker": "ESH4",
                "buySell": "B",
                "qty": 2,
                "fillPrice": 4780.25,
                "status": "filled",
                "priceType": "LMT",
                "fees": -4.2,
                "pnl": 125,
                "fillTime": 1704164645,
            }
        ],
    }


@pytest.fixture
def venue_state() -> Dict[str, Any]:
    return default_venue_state()


@pytest_asyncio.fixture
async def fake_venue(venue_state):
    server = TestServer(build_fake_venue_app(venue_state))
    await server.start_server()
    yield server
    await server.close()


def venue_descriptor(server: TestServer, slug: str) -> PlatformDescriptor:
    """Descriptor pointing the given venue at the fake server."""
    base = str(server.make_url("")).rstrip("/")
    if slug == "dxtrade":
        return PlatformDescriptor(slug, "DX Trade", PlatformType.SESSION_LOGIN, f"{base}/dx", base)
    if slug == "matchtrader":
        return PlatformDescriptor(slug, "Match Trader", PlatformType.API_KEY, f"{base}/mt", base)
    if slug == "ctrader":
        return PlatformDescriptor(
            slug,
            "cTrader",
            PlatformType.OAUTH2,
            f"{base}/ct",
            base,
            configuration={"oauthEndpoint": f"{base}/ct/apps/token"},
        )
    if slug == "rithmic":
        return PlatformDescriptor(slug, "Rithmic", PlatformType.SESSION_ID, f"{base}/rt", base)
    raise ValueError(slug)
