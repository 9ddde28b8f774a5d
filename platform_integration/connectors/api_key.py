"""
API-Key Connector (Match Trader).

ENDPOINTS:
- POST /v1/auth/login  {apiKey, apiSecret}
                       -> {success, accountId, accessToken}
- GET  /v1/account     -> {accountNumber, accountName,
                           accountType, currency, balance,
                           equity, margin, freeMargin}
- GET  /v1/trades      -> {trades: [...]}, times in epoch ms
"""

import logging
from typing import Any, Dict, List

from ..errors import ConnectorPhase
from ..types import (
    AccountInfo,
    ConnectorSession,
    PlatformCredentials,
    PlatformType,
    TradeInfo,
)
from .base import ACCOUNT_TYPE_MAP, ORDER_TYPE_MAP, SIDE_MAP, STATUS_MAP, SYMBOL_MAX_LENGTH, VenueConnector


logger = logging.getLogger(__name__)


class ApiKeyConnector(VenueConnector):
    """Connector for venues authenticated with an API key/secret pair."""

    platform_type = PlatformType.API_KEY

    def _headers(self, session: ConnectorSession) -> Dict[str, str]:
        return {"Authorization": f"Bearer {session.access_token}"}

    async def authenticate(self, credentials: PlatformCredentials) -> ConnectorSession:
        if not credentials.api_key or not credentials.api_secret:
            raise self._auth_failed({}, "API key and secret are required")

        data = await self._request(
            ConnectorPhase.AUTH,
            "POST",
            "/v1/auth/login",
            json_body={"apiKey": credentials.api_key, "apiSecret": credentials.api_secret},
        )
        if not data.get("success") or not data.get("accessToken"):
            raise self._auth_failed(data, "API key rejected")

        logger.info(f"[{self.venue}] Authenticated account {data.get('accountId')}")
        return ConnectorSession(
            access_token=str(data["accessToken"]),
            remote_account_id=str(data["accountId"]) if data.get("accountId") is not None else None,
        )

    async def fetch_account(self, session: ConnectorSession) -> AccountInfo:
        phase = ConnectorPhase.FETCH_ACCOUNT
        data = await self._request(phase, "GET", "/v1/account", headers=self._headers(session))
        account_type = self._lookup(ACCOUNT_TYPE_MAP, data.get("accountType"), "accountType", phase)
        return self._account_from(data, account_type)

    async def fetch_trades(self, session: ConnectorSession) -> List[TradeInfo]:
        phase = ConnectorPhase.FETCH_TRADES
        data = await self._request(phase, "GET", "/v1/trades", headers=self._headers(session))
        return [self._parse_trade(item) for item in self._list_field(data, "trades", phase)]

    def _parse_trade(self, item: Dict[str, Any]) -> TradeInfo:
        phase = ConnectorPhase.FETCH_TRADES
        return TradeInfo(
            platform_trade_id=str(self._require(item, "id", phase)),
            symbol=self._text(item, "symbol", phase, SYMBOL_MAX_LENGTH),
            side=self._lookup(SIDE_MAP, item.get("side"), "side", phase),
            quantity=self._required_decimal(item, "volume", phase),
            status=self._lookup(STATUS_MAP, item.get("status"), "status", phase),
            order_type=self._lookup(ORDER_TYPE_MAP, item.get("type", "market"), "type", phase),
            price=self._optional_decimal(item, "price", phase),
            stop_loss=self._optional_decimal(item, "sl", phase),
            take_profit=self._optional_decimal(item, "tp", phase),
            commission=self._amount(item, "commission", phase),
            swap=self._amount(item, "swap", phase),
            profit=self._amount(item, "profit", phase),
            open_time=self._timestamp(item.get("openTime"), "openTime", phase, unit="ms"),
            close_time=self._timestamp(item.get("closeTime"), "closeTime", phase, unit="ms"),
        )
