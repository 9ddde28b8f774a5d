"""
Session-Login Connector (DX Trade).

Username/password login returning a session token that is
then sent as a bearer credential.

ENDPOINTS:
- POST /v1/login    {username, password, demo}
                    -> {success, accountId, token}
- GET  /v1/account  -> {accountNumber, accountName, demo,
                        currency, balance, equity, margin,
                        freeMargin}
- GET  /v1/trades   -> {trades: [...]}
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
from .base import ORDER_TYPE_MAP, SIDE_MAP, STATUS_MAP, SYMBOL_MAX_LENGTH, VenueConnector


logger = logging.getLogger(__name__)


class SessionLoginConnector(VenueConnector):
    """Connector for venues with a username/password session login."""

    platform_type = PlatformType.SESSION_LOGIN

    def _headers(self, session: ConnectorSession) -> Dict[str, str]:
        return {"Authorization": f"Bearer {session.access_token}"}

    async def authenticate(self, credentials: PlatformCredentials) -> ConnectorSession:
        if not credentials.username or not credentials.password:
            raise self._auth_failed({}, "Username and password are required")

        data = await self._request(
            ConnectorPhase.AUTH,
            "POST",
            "/v1/login",
            json_body={
                "username": credentials.username,
                "password": credentials.password,
                "demo": credentials.demo,
            },
        )
        if not data.get("success") or not data.get("token"):
            raise self._auth_failed(data, "Login rejected")

        logger.info(f"[{self.venue}] Authenticated user {credentials.username}")
        return ConnectorSession(
            access_token=str(data["token"]),
            remote_account_id=str(data["accountId"]) if data.get("accountId") is not None else None,
            connection_data={"demo": credentials.demo},
        )

    async def fetch_account(self, session: ConnectorSession) -> AccountInfo:
        data = await self._request(
            ConnectorPhase.FETCH_ACCOUNT, "GET", "/v1/account", headers=self._headers(session)
        )
        account_type = AccountType.DEMO if data.get("demo") else AccountType.LIVE
        return self._account_from(data, account_type)

    async def fetch_trades(self, session: ConnectorSession) -> List[TradeInfo]:
        phase = ConnectorPhase.FETCH_TRADES
        data = await self._request(phase, "GET", "/v1/trades", headers=self._headers(session))
        return [self._parse_trade(item) for item in self._list_field(data, "trades", phase)]

    def _parse_trade(self, item: Dict[str, Any]) -> TradeInfo:
        phase = ConnectorPhase.FETCH_TRADES
        return TradeInfo(
            platform_trade_id=str(self._require(item, "tradeId", phase)),
            symbol=self._text(item, "instrument", phase, SYMBOL_MAX_LENGTH),
            side=self._lookup(SIDE_MAP, item.get("direction"), "direction", phase),
            quantity=self._required_decimal(item, "size", phase),
            status=self._lookup(STATUS_MAP, item.get("state"), "state", phase),
            order_type=self._lookup(ORDER_TYPE_MAP, item.get("orderType", "market"), "orderType", phase),
            price=self._optional_decimal(item, "openPrice", phase),
            stop_loss=self._optional_decimal(item, "stopLoss", phase),
            take_profit=self._optional_decimal(item, "takeProfit", phase),
            commission=self._amount(item, "commission", phase),
            swap=self._amount(item, "swap", phase),
            profit=self._amount(item, "pnl", phase),
            open_time=self._timestamp(item.get("openTime"), "openTime", phase),
            close_time=self._timestamp(item.get("closeTime"), "closeTime", phase),
        )
