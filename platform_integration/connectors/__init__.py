"""
Platform Integration - Venue Connectors.

============================================================
PURPOSE
============================================================
One connector per authentication scheme, all speaking the
same authenticate / fetch_account / fetch_trades contract.

AVAILABLE CONNECTORS:
- SessionLoginConnector: DX Trade style session login
- ApiKeyConnector: Match Trader style key/secret
- OAuth2Connector: cTrader style OAuth2 with refresh
- SessionIdConnector: Rithmic style session id header

UTILITIES:
- ConnectorFactory: Selects a connector by PlatformType
- mask_headers / mask_params: Secret-safe request logging

============================================================
"""

from .api_key import ApiKeyConnector
from .base import VenueConnector
from .factory import ConnectorFactory, DEFAULT_CONNECTORS
from .logging_utils import mask_headers, mask_params, mask_value
from .oauth2 import OAuth2Connector
from .session_id import SessionIdConnector
from .session_login import SessionLoginConnector


__all__ = [
    "VenueConnector",
    "SessionLoginConnector",
    "ApiKeyConnector",
    "OAuth2Connector",
    "SessionIdConnector",
    "ConnectorFactory",
    "DEFAULT_CONNECTORS",
    "mask_headers",
    "mask_params",
    "mask_value",
]
