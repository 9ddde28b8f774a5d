"""
Session-Id Connector (Rithmic).

Login yields a session id which every later call echoes in
the X-Session-ID header. There is no bearer token.

ENDPOINTS:
- POST /v1/login    {username, password, server}
                    -> {success, accountNumber, sessionId}
- GET  /v1/account  -> {accountNumber, accountName,
                        accountType, currency, balance,
                        equity, margin, freeMargin}
- GET  /v1/fills    -> {fills: [...]}, times in epoch seconds
"""

import logging
from typing import Any, Dict, List

from ..errors import ConnectorPhase
from ..types import (
    AccountInfo,
    AccountType,
    ConnectorSession,
    PlatformCredentials,
    PlatformType,
    TradeInfo,
)
from .base import ACCOUNT_TYPE_MAP, ORDER_TYPE_MAP, SIDE_MAP, STATUS_MAP, SYMBOL_MAX_LENGTH, VenueConnector


logger = logging.getLogger(__name__)


DEFAULT_SERVER = "Rithmic Test"


class SessionIdConnector(VenueConnector):
    """Connector for venues keyed by a session id header."""

    platform_type = PlatformType.SESSION_ID

    def _headers(self, session: ConnectorSession) -> Dict[str, str]:
        return {"X-Session-ID": session.access_token}

    async def authenticate(self, credentials: PlatformCredentials) -> ConnectorSession:
        if not credentials.username or not credentials.password:
            raise self._auth_failed({}, "Username and password are required")

        server = credentials.server or self.platform.configuration.get("server") or DEFAULT_SERVER
        data = await self._request(
            ConnectorPhase.AUTH,
            "POST",
            "/v1/login",
            json_body={
                "username": credentials.username,
                "password": credentials.password,
                "server": server,
            },
        )
        if not data.get("success") or not data.get("sessionId"):
            raise self._auth_failed(data, "Login rejected")

        logger.info(f"[{self.venue}] Authenticated user {credentials.username} on {server}")
        return ConnectorSession(
            access_token=str(data["sessionId"]),
            remote_account_id=str(data["accountNumber"]) if data.get("accountNumber") is not None else None,
            connection_data={"server": server},
        )

    async def fetch_account(self, session: ConnectorSession) -> AccountInfo:
        phase = ConnectorPhase.FETCH_ACCOUNT
        data = await self._request(phase, "GET", "/v1/account", headers=self._headers(session))
        if data.get("accountType") is None:
            account_type = AccountType.DEMO
        else:
            account_type = self._lookup(ACCOUNT_TYPE_MAP, data.get("accountType"), "accountType", phase)
        return self._account_from(data, account_type)

    async def fetch_trades(self, session: ConnectorSession) -> List[TradeInfo]:
        phase = ConnectorPhase.FETCH_TRADES
        data = await self._request(phase, "GET", "/v1/fills", headers=self._headers(session))
        return [self._parse_fill(item) for item in self._list_field(data, "fills", phase)]

    def _parse_fill(self, item: Dict[str, Any]) -> TradeInfo:
        phase = ConnectorPhase.FETCH_TRADES
        fill_time = self._timestamp(item.get("fillTime"), "fillTime", phase)
        return TradeInfo(
            platform_trade_id=str(self._require(item, "fillId", phase)),
            symbol=self._text(item, "ticker", phase, SYMBOL_MAX_LENGTH),
            side=self._lookup(SIDE_MAP, item.get("buySell"), "buySell", phase),
            quantity=self._required_decimal(item, "qty", phase),
            status=self._lookup(STATUS_MAP, item.get("status", "filled"), "status", phase),
            order_type=self._lookup(ORDER_TYPE_MAP, item.get("priceType", "MKT"), "priceType", phase),
            price=self._optional_decimal(item, "fillPrice", phase),
            commission=self._amount(item, "fees", phase),
            profit=self._amount(item, "pnl", phase),
            open_time=fill_time,
        )
