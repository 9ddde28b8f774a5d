"""
OAuth2 Connector (cTrader).

============================================================
PROTOCOL
============================================================
Token endpoint (platform configuration "oauthEndpoint"):
- password grant when a username is supplied
- client_credentials grant otherwise
- refresh_token grant to renew an expiring token

    -> {access_token, refresh_token, expires_in, accountId}

API (bearer):
- GET /v1/accounts -> {accounts: [...], moneyDigits}
- GET /v1/deals    -> {deals: [...], moneyDigits}

Monetary values are integers scaled by moneyDigits
(balance 1050050 with moneyDigits 2 is 10500.50).
Deal volume is reported in hundredths of a unit.

============================================================
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp

from ..config import OAuthClientConfig, TimeoutConfig
from ..errors import ConnectorPhase, malformed
from ..types import (
    AccountInfo,
    AccountType,
    ConnectorSession,
    PlatformCredentials,
    PlatformDescriptor,
    PlatformType,
    TradeInfo,
    utcnow,
)
from .base import (
    CURRENCY_MAX_LENGTH,
    ORDER_TYPE_MAP,
    SIDE_MAP,
    STATUS_MAP,
    SYMBOL_MAX_LENGTH,
    VenueConnector,
)


logger = logging.getLogger(__name__)


DEFAULT_TOKEN_ENDPOINT = "https://openapi.ctrader.com/apps/token"

VOLUME_DIGITS = 2


class OAuth2Connector(VenueConnector):
    """Connector for OAuth2 venues with refreshable tokens."""

    platform_type = PlatformType.OAUTH2

    def __init__(
        self,
        platform: PlatformDescriptor,
        timeouts: Optional[TimeoutConfig] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
        client: Optional[OAuthClientConfig] = None,
    ):
        super().__init__(platform, timeouts, http_session)
        self._client = client or OAuthClientConfig.from_env(platform.slug)

    @property
    def token_endpoint(self) -> str:
        return self.platform.configuration.get("oauthEndpoint") or DEFAULT_TOKEN_ENDPOINT

    def _headers(self, session: ConnectorSession) -> Dict[str, str]:
        return {"Authorization": f"Bearer {session.access_token}"}

    # --------------------------------------------------------
    # TOKENS
    # --------------------------------------------------------

    async def authenticate(self, credentials: PlatformCredentials) -> ConnectorSession:
        body: Dict[str, Any] = {
            "client_id": self._client.client_id,
            "client_secret": self._client.client_secret,
        }
        if credentials.username:
            body.update(
                grant_type="password",
                username=credentials.username,
                password=credentials.password,
            )
        else:
            body["grant_type"] = "client_credentials"

        data = await self._request(ConnectorPhase.AUTH, "POST", self.token_endpoint, json_body=body)
        session = self._session_from_token(data, ConnectorPhase.AUTH, previous=None)
        logger.info(f"[{self.venue}] Obtained access token ({body['grant_type']} grant)")
        return session

    def needs_refresh(self, session: ConnectorSession, now: datetime, skew_seconds: float = 0.0) -> bool:
        return session.is_expired(now, skew_seconds)

    async def refresh(
        self,
        session: ConnectorSession,
        credentials: Optional[PlatformCredentials] = None,
    ) -> ConnectorSession:
        if not session.refresh_token:
            return await super().refresh(session, credentials)

        data = await self._request(
            ConnectorPhase.REFRESH,
            "POST",
            self.token_endpoint,
            json_body={
                "grant_type": "refresh_token",
                "refresh_token": session.refresh_token,
                "client_id": self._client.client_id,
                "client_secret": self._client.client_secret,
            },
        )
        refreshed = self._session_from_token(data, ConnectorPhase.REFRESH, previous=session)
        logger.info(f"[{self.venue}] Refreshed access token, expires {refreshed.token_expiry}")
        return refreshed

    def _session_from_token(
        self,
        data: Dict[str, Any],
        phase: ConnectorPhase,
        previous: Optional[ConnectorSession],
    ) -> ConnectorSession:
        if not data.get("access_token"):
            if phase == ConnectorPhase.AUTH:
                raise self._auth_failed(data, "Token endpoint returned no access token")
            raise malformed(self.venue, phase, "Token endpoint returned no access token")

        expiry = None
        if data.get("expires_in") is not None:
            expires_in = self._decimal(data["expires_in"], "expires_in", phase)
            expiry = utcnow() + timedelta(seconds=float(expires_in))

        account_id = data.get("accountId")
        if account_id is None and previous is not None:
            account_id = previous.remote_account_id

        return ConnectorSession(
            access_token=str(data["access_token"]),
            remote_account_id=str(account_id) if account_id is not None else None,
            # Some servers rotate the refresh token, some reuse it
            refresh_token=data.get("refresh_token") or (previous.refresh_token if previous else None),
            token_expiry=expiry,
            connection_data=dict(previous.connection_data) if previous else {},
        )

    # --------------------------------------------------------
    # FETCH
    # --------------------------------------------------------

    async def fetch_account(self, session: ConnectorSession) -> AccountInfo:
        phase = ConnectorPhase.FETCH_ACCOUNT
        data = await self._request(phase, "GET", "/v1/accounts", headers=self._headers(session))
        accounts = self._list_field(data, "accounts", phase)
        if not accounts:
            raise malformed(self.venue, phase, "No accounts returned")

        account = accounts[0]
        if session.remote_account_id is not None:
            for candidate in accounts:
                if str(candidate.get("accountNumber")) == session.remote_account_id:
                    account = candidate
                    break

        digits = self._money_digits(account, data, phase)
        account_number = str(self._require(account, "accountNumber", phase))
        return AccountInfo(
            account_number=account_number,
            account_name=str(account.get("accountName") or account_number),
            account_type=AccountType.DEMO if account.get("demo") else AccountType.LIVE,
            currency=self._text(account, "currency", phase, CURRENCY_MAX_LENGTH),
            balance=self._scaled(self._require(account, "balance", phase), digits, "balance", phase),
            equity=self._scaled(self._require(account, "equity", phase), digits, "equity", phase),
            margin=self._scaled(self._require(account, "margin", phase), digits, "margin", phase),
            free_margin=self._scaled(self._require(account, "freeMargin", phase), digits, "freeMargin", phase),
        )

    async def fetch_trades(self, session: ConnectorSession) -> List[TradeInfo]:
        phase = ConnectorPhase.FETCH_TRADES
        params = {"accountId": session.remote_account_id} if session.remote_account_id else None
        data = await self._request(phase, "GET", "/v1/deals", headers=self._headers(session), params=params)
        digits = self._money_digits({}, data, phase)
        return [self._parse_deal(item, digits) for item in self._list_field(data, "deals", phase)]

    def _parse_deal(self, item: Dict[str, Any], digits: int) -> TradeInfo:
        phase = ConnectorPhase.FETCH_TRADES

        def money(key: str) -> Decimal:
            value = item.get(key)
            if value is None:
                return Decimal("0")
            return self._scaled(value, digits, key, phase)

        return TradeInfo(
            platform_trade_id=str(self._require(item, "dealId", phase)),
            symbol=self._text(item, "symbolName", phase, SYMBOL_MAX_LENGTH),
            side=self._lookup(SIDE_MAP, item.get("tradeSide"), "tradeSide", phase),
            quantity=self._scaled(self._require(item, "volume", phase), VOLUME_DIGITS, "volume", phase),
            status=self._lookup(STATUS_MAP, item.get("dealStatus", "filled"), "dealStatus", phase),
            order_type=self._lookup(ORDER_TYPE_MAP, item.get("orderType", "market"), "orderType", phase),
            price=self._optional_decimal(item, "executionPrice", phase),
            stop_loss=self._optional_decimal(item, "stopLoss", phase),
            take_profit=self._optional_decimal(item, "takeProfit", phase),
            commission=money("commission"),
            swap=money("swap"),
            profit=money("grossProfit"),
            open_time=self._timestamp(item.get("createTimestamp"), "createTimestamp", phase, unit="ms"),
            close_time=self._timestamp(item.get("closeTimestamp"), "closeTimestamp", phase, unit="ms"),
        )

    def _money_digits(self, item: Dict[str, Any], data: Dict[str, Any], phase: ConnectorPhase) -> int:
        value = item.get("moneyDigits", data.get("moneyDigits", 0))
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 12:
            raise malformed(self.venue, phase, f"Invalid moneyDigits: {value!r}")
        return value
