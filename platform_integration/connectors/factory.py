"""
Venue Connector Factory.

============================================================
PURPOSE
============================================================
Selects the connector implementation for a platform by its
PlatformType. Adding a venue type means registering a class
(or a creator function); nothing else dispatches on type.

============================================================
USAGE
============================================================
```python
factory = ConnectorFactory(config, http_session)
connector = factory.create(platform)
session = await connector.authenticate(credentials)

# Extension / test doubles
factory.register(PlatformType.API_KEY, creator=lambda p: StubConnector(p))
```

============================================================
"""

import logging
from typing import Callable, Dict, List, Optional, Type

import aiohttp

from ..config import IntegrationConfig
from ..types import PlatformDescriptor, PlatformType
from .api_key import ApiKeyConnector
from .base import VenueConnector
from .oauth2 import OAuth2Connector
from .session_id import SessionIdConnector
from .session_login import SessionLoginConnector


logger = logging.getLogger(__name__)


ConnectorCreator = Callable[[PlatformDescriptor], VenueConnector]


DEFAULT_CONNECTORS: Dict[PlatformType, Type[VenueConnector]] = {
    PlatformType.SESSION_LOGIN: SessionLoginConnector,
    PlatformType.API_KEY: ApiKeyConnector,
    PlatformType.OAUTH2: OAuth2Connector,
    PlatformType.SESSION_ID: SessionIdConnector,
}


class ConnectorFactory:
    """
    Factory for venue connectors.

    Holds the configuration and the shared HTTP session that
    every connector it creates uses.
    """

    def __init__(
        self,
        config: Optional[IntegrationConfig] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        self._config = config or IntegrationConfig()
        self._http = http_session
        self._registry: Dict[PlatformType, Type[VenueConnector]] = dict(DEFAULT_CONNECTORS)
        self._creators: Dict[PlatformType, ConnectorCreator] = {}

    def register(
        self,
        platform_type: PlatformType,
        connector_class: Optional[Type[VenueConnector]] = None,
        creator: Optional[ConnectorCreator] = None,
    ) -> None:
        """
        Register a connector class or creator.

        Args:
            platform_type: Platform type served
            connector_class: Connector class to register
            creator: Custom creator function, takes the descriptor
        """
        if connector_class:
            self._registry[platform_type] = connector_class
        if creator:
            self._creators[platform_type] = creator

    def unregister(self, platform_type: PlatformType) -> None:
        self._registry.pop(platform_type, None)
        self._creators.pop(platform_type, None)

    def create(self, platform: PlatformDescriptor) -> VenueConnector:
        """
        Create the connector for a platform.

        Raises:
            ValueError: If the platform type has no connector
        """
        platform_type = platform.platform_type

        if platform_type in self._creators:
            return self._creators[platform_type](platform)

        connector_class = self._registry.get(platform_type)
        if connector_class is None:
            raise ValueError(f"Unsupported platform type: {platform_type.value}")

        if issubclass(connector_class, OAuth2Connector):
            return connector_class(
                platform,
                timeouts=self._config.timeouts,
                http_session=self._http,
                client=self._config.oauth_client(platform.slug),
            )
        return connector_class(platform, timeouts=self._config.timeouts, http_session=self._http)

    def list_supported(self) -> List[PlatformType]:
        """List platform types with a registered connector."""
        return sorted(set(self._registry) | set(self._creators), key=lambda t: t.value)
