"""
Venue Connectors - Base.

============================================================
PURPOSE
============================================================
Abstract interface every venue connector implements, plus
the shared HTTP and normalization plumbing.

DESIGN PRINCIPLES:
- Venue-agnostic contract: authenticate / fetch_account /
  fetch_trades
- Every remote call carries a timeout
- Any failure surfaces as ConnectorError with venue + phase
- Missing or non-numeric fields are errors, never defaults

============================================================
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from ..config import TimeoutConfig
from ..errors import (
    ConnectorError,
    ConnectorPhase,
    ErrorCategory,
    malformed,
    map_http_error,
)
from ..types import (
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
)
from .logging_utils import mask_headers, mask_params


logger = logging.getLogger(__name__)

SYMBOL_MAX_LENGTH = 64
CURRENCY_MAX_LENGTH = 16


# ============================================================
# VENUE CONNECTOR
# ============================================================

class VenueConnector(ABC):
    """
    Abstract interface for venue connectors.

    One concrete class per PlatformType:
    - SessionLoginConnector: username/password -> bearer session token
    - ApiKeyConnector: key/secret -> access token
    - OAuth2Connector: token endpoint grants, refreshable
    - SessionIdConnector: username/password/server -> session id header
    """

    platform_type: PlatformType

    def __init__(
        self,
        platform: PlatformDescriptor,
        timeouts: Optional[TimeoutConfig] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize connector.

        Args:
            platform: Descriptor of the venue to talk to
            timeouts: Request timeouts
            http_session: Shared aiohttp session (a short-lived one
                is created per request when omitted)
        """
        self._platform = platform
        self._timeouts = timeouts or TimeoutConfig()
        self._http = http_session

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def venue(self) -> str:
        return self._platform.slug

    @property
    def platform(self) -> PlatformDescriptor:
        return self._platform

    @property
    def base_url(self) -> str:
        return self._platform.api_base_url.rstrip("/")

    # --------------------------------------------------------
    # CONTRACT
    # --------------------------------------------------------

    @abstractmethod
    async def authenticate(self, credentials: PlatformCredentials) -> ConnectorSession:
        """
        Authenticate against the venue.

        Raises:
            ConnectorError: phase=AUTH
        """

    @abstractmethod
    async def fetch_account(self, session: ConnectorSession) -> AccountInfo:
        """
        Fetch the normalized account snapshot.

        Raises:
            ConnectorError: phase=FETCH_ACCOUNT
        """

    @abstractmethod
    async def fetch_trades(self, session: ConnectorSession) -> List[TradeInfo]:
        """
        Fetch normalized trades.

        Raises:
            ConnectorError: phase=FETCH_TRADES
        """

    def needs_refresh(self, session: ConnectorSession, now: datetime, skew_seconds: float = 0.0) -> bool:
        """Whether the session must be refreshed before use."""
        return False

    async def refresh(
        self,
        session: ConnectorSession,
        credentials: Optional[PlatformCredentials] = None,
    ) -> ConnectorSession:
        """
        Obtain a fresh session.

        Venues without a refresh protocol simply log in again.
        """
        if credentials is None:
            raise ConnectorError(
                self.venue,
                ConnectorPhase.REFRESH,
                ErrorCategory.AUTHENTICATION,
                "Session expired and no credentials available to log in again",
            )
        return await self.authenticate(credentials)

    # --------------------------------------------------------
    # REQUEST HANDLING
    # --------------------------------------------------------

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _request(
        self,
        phase: ConnectorPhase,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Perform one HTTP call and return the decoded JSON object.

        Raises:
            ConnectorError: Network error, timeout, non-2xx status
                or a body that is not a JSON object
        """
        url = self._url(path)
        timeout = aiohttp.ClientTimeout(
            total=self._timeouts.request_timeout_seconds,
            connect=self._timeouts.connect_timeout_seconds,
        )

        logger.debug(
            f"[{self.venue}] {method} {url} phase={phase.value} "
            f"headers={mask_headers(headers)} body={mask_params(json_body)}"
        )
        start_time = time.monotonic()

        try:
            if self._http is not None:
                return await self._send(self._http, phase, method, url, json_body, headers, params, timeout)
            async with aiohttp.ClientSession() as http:
                return await self._send(http, phase, method, url, json_body, headers, params, timeout)
        except asyncio.TimeoutError:
            raise ConnectorError(
                self.venue,
                phase,
                ErrorCategory.TIMEOUT,
                f"Request timed out after {self._timeouts.request_timeout_seconds}s",
            )
        except aiohttp.ClientError as e:
            raise ConnectorError(self.venue, phase, ErrorCategory.NETWORK, str(e) or type(e).__name__)
        finally:
            latency_ms = (time.monotonic() - start_time) * 1000
            logger.debug(f"[{self.venue}] {method} {url} completed in {latency_ms:.1f}ms")

    async def _send(
        self,
        http: aiohttp.ClientSession,
        phase: ConnectorPhase,
        method: str,
        url: str,
        json_body: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]],
        params: Optional[Dict[str, Any]],
        timeout: aiohttp.ClientTimeout,
    ) -> Dict[str, Any]:
        async with http.request(
            method,
            url,
            json=json_body,
            headers=headers,
            params=params,
            timeout=timeout,
        ) as resp:
            text = await resp.text()

            if resp.status >= 400:
                raise map_http_error(self.venue, phase, resp.status, self._error_message(text))

            try:
                data = await resp.json(content_type=None)
            except ValueError:
                raise malformed(self.venue, phase, f"Response is not JSON: {text[:200]}")

            if not isinstance(data, dict):
                raise malformed(self.venue, phase, "Response is not a JSON object")
            return data

    @staticmethod
    def _error_message(text: str) -> str:
        return text[:200] if text else ""

    def _auth_failed(self, payload: Mapping[str, Any], default: str) -> ConnectorError:
        message = payload.get("message") or payload.get("error") or default
        return ConnectorError(self.venue, ConnectorPhase.AUTH, ErrorCategory.AUTHENTICATION, str(message))

    # --------------------------------------------------------
    # NORMALIZATION HELPERS
    # --------------------------------------------------------

    def _require(self, payload: Mapping[str, Any], key: str, phase: ConnectorPhase) -> Any:
        value = payload.get(key)
        if value is None or value == "":
            raise malformed(self.venue, phase, f"Missing field '{key}'")
        return value

    def _text(self, payload: Mapping[str, Any], key: str, phase: ConnectorPhase, max_length: int) -> str:
        value = str(self._require(payload, key, phase))
        if len(value) > max_length:
            raise malformed(self.venue, phase, f"Field '{key}' longer than {max_length} characters")
        return value

    def _decimal(self, value: Any, name: str, phase: ConnectorPhase) -> Decimal:
        if value is None or isinstance(value, bool):
            raise malformed(self.venue, phase, f"Field '{name}' is not numeric: {value!r}")
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise malformed(self.venue, phase, f"Field '{name}' is not numeric: {value!r}")
        if not result.is_finite():
            raise malformed(self.venue, phase, f"Field '{name}' is not finite: {value!r}")
        return result

    def _required_decimal(self, payload: Mapping[str, Any], key: str, phase: ConnectorPhase) -> Decimal:
        return self._decimal(self._require(payload, key, phase), key, phase)

    def _optional_decimal(self, payload: Mapping[str, Any], key: str, phase: ConnectorPhase) -> Optional[Decimal]:
        value = payload.get(key)
        if value is None or value == "":
            return None
        return self._decimal(value, key, phase)

    def _amount(self, payload: Mapping[str, Any], key: str, phase: ConnectorPhase) -> Decimal:
        """Optional fee/pnl amount; absent means zero."""
        value = self._optional_decimal(payload, key, phase)
        return value if value is not None else Decimal("0")

    def _scaled(self, value: Any, digits: int, name: str, phase: ConnectorPhase) -> Decimal:
        """Integer amount with an implied number of decimal places."""
        return self._decimal(value, name, phase).scaleb(-digits)

    def _timestamp(self, value: Any, name: str, phase: ConnectorPhase, unit: str = "s") -> Optional[datetime]:
        """
        Parse an ISO-8601 string or epoch number into naive UTC.

        Args:
            unit: "s" or "ms" for numeric epochs
        """
        if value is None or value == "":
            return None
        try:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                seconds = value / 1000 if unit == "ms" else value
                return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except (ValueError, OverflowError, OSError):
            raise malformed(self.venue, phase, f"Field '{name}' is not a timestamp: {value!r}")
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    def _lookup(self, mapping: Mapping[str, Any], value: Any, name: str, phase: ConnectorPhase) -> Any:
        key = str(value).strip().lower() if value is not None else ""
        if key not in mapping:
            raise malformed(self.venue, phase, f"Unknown {name}: {value!r}")
        return mapping[key]

    def _account_from(self, payload: Mapping[str, Any], account_type: AccountType) -> AccountInfo:
        """Build AccountInfo from the common camelCase account shape."""
        phase = ConnectorPhase.FETCH_ACCOUNT
        account_number = str(self._require(payload, "accountNumber", phase))
        return AccountInfo(
            account_number=account_number,
            account_name=str(payload.get("accountName") or account_number),
            account_type=account_type,
            currency=self._text(payload, "currency", phase, CURRENCY_MAX_LENGTH),
            balance=self._required_decimal(payload, "balance", phase),
            equity=self._required_decimal(payload, "equity", phase),
            margin=self._required_decimal(payload, "margin", phase),
            free_margin=self._required_decimal(payload, "freeMargin", phase),
        )

    def _list_field(self, payload: Mapping[str, Any], key: str, phase: ConnectorPhase) -> List[Dict[str, Any]]:
        items = payload.get(key)
        if items is None:
            raise malformed(self.venue, phase, f"Missing field '{key}'")
        if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
            raise malformed(self.venue, phase, f"Field '{key}' is not a list of objects")
        return items


# ============================================================
# VALUE MAPS
# ============================================================

ACCOUNT_TYPE_MAP = {
    "demo": AccountType.DEMO,
    "live": AccountType.LIVE,
    "real": AccountType.LIVE,
    "prop": AccountType.PROP,
    "funded": AccountType.PROP,
}

SIDE_MAP = {
    "buy": TradeSide.BUY,
    "b": TradeSide.BUY,
    "long": TradeSide.BUY,
    "sell": TradeSide.SELL,
    "s": TradeSide.SELL,
    "short": TradeSide.SELL,
}

ORDER_TYPE_MAP = {
    "market": TradeOrderType.MARKET,
    "mkt": TradeOrderType.MARKET,
    "limit": TradeOrderType.LIMIT,
    "lmt": TradeOrderType.LIMIT,
    "stop": TradeOrderType.STOP,
    "stp": TradeOrderType.STOP,
    "stop_limit": TradeOrderType.STOP,
}

STATUS_MAP = {
    "pending": TradeStatus.PENDING,
    "new": TradeStatus.PENDING,
    "working": TradeStatus.PENDING,
    "open": TradeStatus.FILLED,
    "filled": TradeStatus.FILLED,
    "partially_filled": TradeStatus.FILLED,
    "closed": TradeStatus.FILLED,
    "complete": TradeStatus.FILLED,
    "cancelled": TradeStatus.CANCELLED,
    "canceled": TradeStatus.CANCELLED,
    "expired": TradeStatus.CANCELLED,
    "rejected": TradeStatus.REJECTED,
    "internally_rejected": TradeStatus.REJECTED,
    "error": TradeStatus.REJECTED,
    "missed": TradeStatus.REJECTED,
}
