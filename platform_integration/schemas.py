"""
Pydantic Schemas for the Trading Platform API.

Request and response bodies use camelCase on the wire.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .types import PlatformCredentials


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================
# COMMON
# =============================================================

class OperationResponse(CamelModel):
    success: bool
    message: str


# =============================================================
# REQUESTS
# =============================================================

class CredentialsSchema(CamelModel):
    """Venue credentials. Which fields are needed depends on the venue."""
    username: Optional[str] = None
    password: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    server: Optional[str] = None
    demo: bool = True

    def to_credentials(self) -> PlatformCredentials:
        return PlatformCredentials(
            username=self.username,
            password=self.password,
            api_key=self.api_key,
            api_secret=self.api_secret,
            server=self.server,
            demo=self.demo,
        )


class ConnectRequest(CamelModel):
    platform_id: int = Field(..., gt=0)
    credentials: CredentialsSchema


class DisconnectRequest(CamelModel):
    connection_id: int = Field(..., gt=0)


# =============================================================
# RESPONSES
# =============================================================

class PlatformResponse(CamelModel):
    id: int
    slug: str
    name: str
    platform_type: str
    api_base_url: str
    web_trade_url: str
    supports_api: bool
    supports_web_trading: bool
    configuration: Dict[str, Any] = Field(default_factory=dict)


class AccountResponse(CamelModel):
    account_number: str
    account_name: str
    account_type: str
    currency: str
    balance: Decimal
    equity: Decimal
    margin: Decimal
    free_margin: Decimal
    last_updated: Optional[datetime] = None


class ConnectionResponse(CamelModel):
    id: int
    platform_id: int
    remote_account_id: Optional[str] = None
    is_connected: bool
    last_sync_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None
    created_at: datetime


class ConnectionEntry(CamelModel):
    connection: ConnectionResponse
    platform: PlatformResponse
    account: Optional[AccountResponse] = None
    stale_since: Optional[datetime] = None

