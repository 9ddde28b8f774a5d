"""
Venue Connector Tests.

============================================================
PURPOSE
============================================================
Wire-level tests for the four connector variants against a
fake venue server.

TEST CATEGORIES:
- Authentication per scheme
- Account and trade normalization
- Failure mapping (auth, malformed, timeout, network)
- OAuth2 refresh
- Factory dispatch

============================================================
"""

from datetime import datetime, timedelta
from decimal import Decimal

import aiohttp
import pytest

from platform_integration.config import IntegrationConfig, OAuthClientConfig, TimeoutConfig
from platform_integration.connectors import (
    ApiKeyConnector,
    ConnectorFactory,
    OAuth2Connector,
    SessionIdConnector,
    SessionLoginConnector,
)
from platform_integration.errors import ConnectorError, ConnectorPhase, ErrorCategory
from platform_integration.types import (
    AccountType,
    ConnectorSession,
    PlatformCredentials,
    PlatformDescriptor,
    PlatformType,
    TradeOrderType,
    TradeSide,
    TradeStatus,
    utcnow,
)

from conftest import venue_descriptor


# ============================================================
# SESSION LOGIN (DX TRADE)
# ============================================================

class TestSessionLoginConnector:
    """Tests for the username/password session connector."""

    @pytest.mark.asyncio
    async def test_authenticate_returns_bearer_session(self, fake_venue, venue_state):
        connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"))

        session = await connector.authenticate(PlatformCredentials(username="trader", password="secret"))

        assert session.access_token == "dx-token"
        assert session.remote_account_id == "DX-1"
        assert venue_state["dx_login_body"] == {"username": "trader", "password": "secret", "demo": True}

    @pytest.mark.asyncio
    async def test_wrong_password_is_auth_error(self, fake_venue):
        connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.authenticate(PlatformCredentials(username="trader", password="wrong"))

        error = exc_info.value
        assert error.venue == "dxtrade"
        assert error.phase == ConnectorPhase.AUTH
        assert error.category == ErrorCategory.AUTHENTICATION
        assert error.http_status == 401

    @pytest.mark.asyncio
    async def test_missing_username_rejected_without_request(self, fake_venue, venue_state):
        connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.authenticate(PlatformCredentials(password="secret"))

        assert exc_info.value.category == ErrorCategory.AUTHENTICATION
        assert "dx_login_body" not in venue_state

    @pytest.mark.asyncio
    async def test_fetch_account_normalizes(self, fake_venue):
        connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"))

        account = await connector.fetch_account(ConnectorSession(access_token="dx-token"))

        assert account.account_number == "DX-1"
        assert account.account_type == AccountType.DEMO
        assert account.balance == Decimal("10000")
        assert account.equity == Decimal("10012.5")
        assert account.free_margin == Decimal("9762.5")

    @pytest.mark.asyncio
    async def test_fetch_trades_normalizes(self, fake_venue):
        connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"))

        trades = await connector.fetch_trades(ConnectorSession(access_token="dx-token"))

        assert len(trades) == 1
        trade = trades[0]
        assert trade.platform_trade_id == "T-1"
        assert trade.side == TradeSide.BUY
        assert trade.status == TradeStatus.FILLED
        assert trade.order_type == TradeOrderType.MARKET
        assert trade.quantity == Decimal("1.5")
        assert trade.take_profit is None
        assert trade.commission == Decimal("-2.5")
        assert trade.open_time == datetime(2024, 1, 2, 3, 4, 5)
        assert trade.close_time is None

    @pytest.mark.asyncio
    async def test_expired_token_is_auth_error_in_fetch_phase(self, fake_venue):
        connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.fetch_account(ConnectorSession(access_token="stale"))

        assert exc_info.value.phase == ConnectorPhase.FETCH_ACCOUNT
        assert exc_info.value.category == ErrorCategory.AUTHENTICATION


# ============================================================
# MALFORMED PAYLOADS
# ============================================================

class TestMalformedResponses:
    """Connectors never coerce partial or non-numeric data."""

    @pytest.mark.asyncio
    async def test_missing_balance(self, fake_venue, venue_state):
        del venue_state["dx_account"]["balance"]
        connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.fetch_account(ConnectorSession(access_token="dx-token"))

        assert exc_info.value.category == ErrorCategory.MALFORMED_RESPONSE
        assert "balance" in exc_info.value.cause

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_value", ["abc", True, "NaN", ""])
    async def test_non_numeric_equity(self, fake_venue, venue_state, bad_value):
        venue_state["dx_account"]["equity"] = bad_value
        connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.fetch_account(ConnectorSession(access_token="dx-token"))

        assert exc_info.value.category == ErrorCategory.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_non_json_body(self, fake_venue, venue_state):
        venue_state["dx_account_raw"] = "<html>maintenance</html>"
        connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.fetch_account(ConnectorSession(access_token="dx-token"))

        assert exc_info.value.category == ErrorCategory.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_unknown_trade_side(self, fake_venue, venue_state):
        venue_state["dx_trades"][0]["direction"] = "SIDEWAYS"
        connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.fetch_trades(ConnectorSession(access_token="dx-token"))

        assert exc_info.value.phase == ConnectorPhase.FETCH_TRADES
        assert exc_info.value.category == ErrorCategory.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_overlong_symbol(self, fake_venue, venue_state):
        venue_state["dx_trades"][0]["instrument"] = "X" * 65
        connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.fetch_trades(ConnectorSession(access_token="dx-token"))

        assert exc_info.value.category == ErrorCategory.MALFORMED_RESPONSE
        assert "instrument" in exc_info.value.cause

    @pytest.mark.asyncio
    async def test_overlong_currency(self, fake_venue, venue_state):
        venue_state["dx_account"]["currency"] = "USD" * 6
        connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.fetch_account(ConnectorSession(access_token="dx-token"))

        assert exc_info.value.category == ErrorCategory.MALFORMED_RESPONSE
        assert "currency" in exc_info.value.cause

    @pytest.mark.asyncio
    async def test_long_symbol_within_limit_is_kept(self, fake_venue, venue_state):
        venue_state["dx_trades"][0]["instrument"] = "ES.FUT.CME.202412.QUARTERLY.FRONT-MONTH"
        connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"))

        trades = await connector.fetch_trades(ConnectorSession(access_token="dx-token"))

        assert trades[0].symbol == "ES.FUT.CME.202412.QUARTERLY.FRONT-MONTH"


# ============================================================
# TRANSPORT FAILURES
# ============================================================

class TestTransportFailures:
    """Timeouts and network errors surface as ConnectorError."""

    @pytest.mark.asyncio
    async def test_timeout(self, fake_venue, venue_state):
        venue_state["delay"] = 1.0
        connector = SessionLoginConnector(
            venue_descriptor(fake_venue, "dxtrade"),
            timeouts=TimeoutConfig(request_timeout_seconds=0.1, connect_timeout_seconds=0.1),
        )

        with pytest.raises(ConnectorError) as exc_info:
            await connector.fetch_account(ConnectorSession(access_token="dx-token"))

        assert exc_info.value.category == ErrorCategory.TIMEOUT
        assert exc_info.value.is_retryable

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        platform = PlatformDescriptor(
            "dxtrade", "DX Trade", PlatformType.SESSION_LOGIN, "http://127.0.0.1:1", "http://127.0.0.1:1"
        )
        connector = SessionLoginConnector(platform, timeouts=TimeoutConfig(request_timeout_seconds=2.0))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.authenticate(PlatformCredentials(username="trader", password="secret"))

        assert exc_info.value.category == ErrorCategory.NETWORK
        assert exc_info.value.phase == ConnectorPhase.AUTH

    @pytest.mark.asyncio
    async def test_shared_http_session_is_used(self, fake_venue):
        async with aiohttp.ClientSession() as http:
            connector = SessionLoginConnector(venue_descriptor(fake_venue, "dxtrade"), http_session=http)
            session = await connector.authenticate(PlatformCredentials(username="trader", password="secret"))
            assert not http.closed

        assert session.access_token == "dx-token"


# ============================================================
# API KEY (MATCH TRADER)
# ============================================================

class TestApiKeyConnector:
    """Tests for the API key connector."""

    @pytest.mark.asyncio
    async def test_full_flow(self, fake_venue):
        connector = ApiKeyConnector(venue_descriptor(fake_venue, "matchtrader"))

        session = await connector.authenticate(PlatformCredentials(api_key="key", api_secret="secret"))
        account = await connector.fetch_account(session)
        trades = await connector.fetch_trades(session)

        assert session.access_token == "mt-token"
        assert session.remote_account_id == "MT-7"
        assert account.account_type == AccountType.PROP
        assert account.balance == Decimal("2500.75")
        assert trades[0].platform_trade_id == "55"
        assert trades[0].side == TradeSide.SELL
        assert trades[0].order_type == TradeOrderType.LIMIT
        assert trades[0].open_time == datetime(2024, 1, 2, 3, 4, 5)
        assert trades[0].close_time == datetime(2024, 1, 2, 4, 4, 5)

    @pytest.mark.asyncio
    async def test_success_false_is_auth_error(self, fake_venue):
        connector = ApiKeyConnector(venue_descriptor(fake_venue, "matchtrader"))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.authenticate(PlatformCredentials(api_key="key", api_secret="nope"))

        assert exc_info.value.category == ErrorCategory.AUTHENTICATION
        assert "Bad API key" in exc_info.value.cause

    @pytest.mark.asyncio
    async def test_rate_limit(self, fake_venue, venue_state):
        venue_state["mt_rate_limited"] = True
        connector = ApiKeyConnector(venue_descriptor(fake_venue, "matchtrader"))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.fetch_trades(ConnectorSession(access_token="mt-token"))

        assert exc_info.value.category == ErrorCategory.RATE_LIMIT
        assert exc_info.value.http_status == 429


# ============================================================
# OAUTH2 (CTRADER)
# ============================================================

class TestOAuth2Connector:
    """Tests for the OAuth2 connector."""

    def _connector(self, fake_venue) -> OAuth2Connector:
        return OAuth2Connector(
            venue_descriptor(fake_venue, "ctrader"),
            client=OAuthClientConfig(client_id="cid", client_secret="csecret"),
        )

    @pytest.mark.asyncio
    async def test_password_grant(self, fake_venue, venue_state):
        connector = self._connector(fake_venue)
        before = utcnow()

        session = await connector.authenticate(PlatformCredentials(username="trader", password="secret"))

        body = venue_state["ct_token_bodies"][0]
        assert body["grant_type"] == "password"
        assert body["client_id"] == "cid"
        assert session.access_token == "ct-token"
        assert session.refresh_token == "ct-refresh"
        assert session.remote_account_id == "CT-9"
        assert session.token_expiry >= before + timedelta(seconds=3599)

    @pytest.mark.asyncio
    async def test_client_credentials_grant_without_username(self, fake_venue, venue_state):
        connector = self._connector(fake_venue)

        await connector.authenticate(PlatformCredentials())

        assert venue_state["ct_token_bodies"][0]["grant_type"] == "client_credentials"

    @pytest.mark.asyncio
    async def test_money_digits_scaling(self, fake_venue):
        connector = self._connector(fake_venue)
        session = ConnectorSession(access_token="ct-token", remote_account_id="CT-9")

        account = await connector.fetch_account(session)
        trades = await connector.fetch_trades(session)

        assert account.account_type == AccountType.LIVE
        assert account.balance == Decimal("10500.50")
        assert account.equity == Decimal("10480.10")
        assert account.margin == Decimal("200.00")
        assert trades[0].quantity == Decimal("1000.00")
        assert trades[0].commission == Decimal("-1.50")
        assert trades[0].profit == Decimal("25.00")

    @pytest.mark.asyncio
    async def test_deals_scoped_to_account(self, fake_venue, venue_state):
        connector = self._connector(fake_venue)

        await connector.fetch_trades(ConnectorSession(access_token="ct-token", remote_account_id="CT-9"))

        assert venue_state["ct_deals_query"] == {"accountId": "CT-9"}

    @pytest.mark.asyncio
    async def test_empty_account_list_is_malformed(self, fake_venue, venue_state):
        venue_state["ct_accounts"] = {"accounts": []}
        connector = self._connector(fake_venue)

        with pytest.raises(ConnectorError) as exc_info:
            await connector.fetch_account(ConnectorSession(access_token="ct-token"))

        assert exc_info.value.category == ErrorCategory.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_refresh_keeps_refresh_token_when_not_rotated(self, fake_venue, venue_state):
        connector = self._connector(fake_venue)
        stale = ConnectorSession(
            access_token="ct-token",
            remote_account_id="CT-9",
            refresh_token="ct-refresh",
            token_expiry=utcnow() - timedelta(minutes=1),
        )

        refreshed = await connector.refresh(stale)

        assert venue_state["ct_token_bodies"][-1]["grant_type"] == "refresh_token"
        assert refreshed.access_token == "ct-token-2"
        assert refreshed.refresh_token == "ct-refresh"
        assert refreshed.remote_account_id == "CT-9"
        assert not refreshed.is_expired(utcnow(), 60)

    @pytest.mark.asyncio
    async def test_rejected_refresh_is_refresh_phase_error(self, fake_venue):
        connector = self._connector(fake_venue)
        stale = ConnectorSession(access_token="x", refresh_token="revoked")

        with pytest.raises(ConnectorError) as exc_info:
            await connector.refresh(stale)

        assert exc_info.value.phase == ConnectorPhase.REFRESH

    def test_needs_refresh_honors_skew(self):
        platform = PlatformDescriptor("ctrader", "cTrader", PlatformType.OAUTH2, "https://a", "https://w")
        connector = OAuth2Connector(platform, client=OAuthClientConfig("cid", "csecret"))
        now = utcnow()
        session = ConnectorSession(access_token="t", token_expiry=now + timedelta(seconds=30))

        assert connector.needs_refresh(session, now, skew_seconds=60)
        assert not connector.needs_refresh(session, now, skew_seconds=10)


# ============================================================
# SESSION ID (RITHMIC)
# ============================================================

class TestSessionIdConnector:
    """Tests for the session id header connector."""

    @pytest.mark.asyncio
    async def test_login_sends_server_and_uses_header(self, fake_venue, venue_state):
        connector = SessionIdConnector(venue_descriptor(fake_venue, "rithmic"))

        session = await connector.authenticate(
            PlatformCredentials(username="demoUser", password="pw", server="Test-Server")
        )
        account = await connector.fetch_account(session)
        fills = await connector.fetch_trades(session)

        assert venue_state["rt_login_body"]["server"] == "Test-Server"
        assert session.access_token == "rt-session"
        assert session.remote_account_id == "RT-100"
        assert account.balance == Decimal("50000")
        assert fills[0].side == TradeSide.BUY
        assert fills[0].order_type == TradeOrderType.LIMIT
        assert fills[0].commission == Decimal("-4.2")
        assert fills[0].open_time == datetime(2024, 1, 2, 3, 4, 5)

    @pytest.mark.asyncio
    async def test_default_server(self, fake_venue, venue_state):
        connector = SessionIdConnector(venue_descriptor(fake_venue, "rithmic"))

        session = await connector.authenticate(PlatformCredentials(username="demoUser", password="pw"))

        assert venue_state["rt_login_body"]["server"] == "Rithmic Test"
        assert session.connection_data == {"server": "Rithmic Test"}

    @pytest.mark.asyncio
    async def test_forbidden_login(self, fake_venue):
        connector = SessionIdConnector(venue_descriptor(fake_venue, "rithmic"))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.authenticate(PlatformCredentials(username="demoUser", password="bad"))

        assert exc_info.value.category == ErrorCategory.AUTHENTICATION
        assert exc_info.value.http_status == 403

    @pytest.mark.asyncio
    async def test_refresh_logs_in_again(self, fake_venue):
        connector = SessionIdConnector(venue_descriptor(fake_venue, "rithmic"))
        credentials = PlatformCredentials(username="demoUser", password="pw")

        session = await connector.refresh(ConnectorSession(access_token="old"), credentials)

        assert session.access_token == "rt-session"
        assert not connector.needs_refresh(session, utcnow())

    @pytest.mark.asyncio
    async def test_refresh_without_credentials_fails(self, fake_venue):
        connector = SessionIdConnector(venue_descriptor(fake_venue, "rithmic"))

        with pytest.raises(ConnectorError) as exc_info:
            await connector.refresh(ConnectorSession(access_token="old"))

        assert exc_info.value.phase == ConnectorPhase.REFRESH


# ============================================================
# FACTORY
# ============================================================

class TestConnectorFactory:
    """Tests for ConnectorFactory dispatch."""

    def test_list_supported(self):
        supported = ConnectorFactory().list_supported()

        assert set(supported) == set(PlatformType)

    @pytest.mark.parametrize(
        "platform_type,expected",
        [
            (PlatformType.SESSION_LOGIN, SessionLoginConnector),
            (PlatformType.API_KEY, ApiKeyConnector),
            (PlatformType.OAUTH2, OAuth2Connector),
            (PlatformType.SESSION_ID, SessionIdConnector),
        ],
    )
    def test_create_by_type(self, platform_type, expected):
        platform = PlatformDescriptor("venue", "Venue", platform_type, "https://api.example", "https://web.example")

        connector = ConnectorFactory().create(platform)

        assert isinstance(connector, expected)
        assert connector.venue == "venue"

    def test_oauth_client_from_config(self):
        config = IntegrationConfig(oauth_clients={"ctrader": OAuthClientConfig("id-1", "secret-1")})
        platform = PlatformDescriptor("ctrader", "cTrader", PlatformType.OAUTH2, "https://a", "https://w")

        connector = ConnectorFactory(config).create(platform)

        assert connector._client.client_id == "id-1"

    def test_unregistered_type_raises(self):
        factory = ConnectorFactory()
        factory.unregister(PlatformType.API_KEY)
        platform = PlatformDescriptor("mt", "MT", PlatformType.API_KEY, "https://a", "https://w")

        with pytest.raises(ValueError):
            factory.create(platform)

    def test_creator_overrides_class(self):
        factory = ConnectorFactory()
        sentinel = object()
        factory.register(PlatformType.API_KEY, creator=lambda p: sentinel)
        platform = PlatformDescriptor("mt", "MT", PlatformType.API_KEY, "https://a", "https://w")

        assert factory.create(platform) is sentinel
