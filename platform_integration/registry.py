"""
Platform Integration - Platform Registry.

============================================================
PURPOSE
============================================================
Owns the set of supported venues.

- Seeds each known venue descriptor at startup, matched by
  slug, inserting only what is missing
- Never overwrites a row an operator may have edited
- Seeding failure is fatal (RegistrySeedError)

============================================================
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import async_sessionmaker

from .database import transaction_scope
from .errors import PersistenceError, PlatformNotFoundError, RegistrySeedError
from .repository import IntegrationRepository, to_descriptor
from .types import PlatformDescriptor, PlatformType


logger = logging.getLogger(__name__)


# ============================================================
# KNOWN VENUES
# ============================================================

KNOWN_PLATFORMS: List[PlatformDescriptor] = [
    PlatformDescriptor(
        slug="dxtrade",
        name="DX Trade",
        platform_type=PlatformType.SESSION_LOGIN,
        api_base_url="https://demo.dx.trade/api",
        web_trade_url="https://demo.dx.trade/traders",
        configuration={"demo": True},
    ),
    PlatformDescriptor(
        slug="matchtrader",
        name="Match Trader",
        platform_type=PlatformType.API_KEY,
        api_base_url="https://api.match-trader.com",
        web_trade_url="https://mtr.gooeytrade.com/dashboard",
        configuration={"demo": True, "whiteLabelUrl": "https://mtr.gooeytrade.com"},
    ),
    PlatformDescriptor(
        slug="ctrader",
        name="cTrader",
        platform_type=PlatformType.OAUTH2,
        api_base_url="https://api.ctrader.com",
        web_trade_url="https://ct.icmarkets.com",
        configuration={"demo": True, "oauthEndpoint": "https://openapi.ctrader.com/apps/token"},
    ),
    PlatformDescriptor(
        slug="rithmic",
        name="Rithmic",
        platform_type=PlatformType.SESSION_ID,
        api_base_url="https://api.rithmic.com",
        web_trade_url="https://rtraderpro.rithmic.com/rtraderpro-web",
        configuration={"demo": True, "rTraderProUrl": "https://www.rithmic.com/rtraderpro"},
    ),
]


# ============================================================
# REGISTRY
# ============================================================

class PlatformRegistry:
    """
    Registry of supported venues backed by the platform table.

    Usage:
        registry = PlatformRegistry(session_factory)
        await registry.ensure_seeded()
        platforms = await registry.list_platforms()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        descriptors: Optional[Sequence[PlatformDescriptor]] = None,
    ):
        self._session_factory = session_factory
        self._descriptors = list(descriptors) if descriptors is not None else list(KNOWN_PLATFORMS)

    @property
    def descriptors(self) -> List[PlatformDescriptor]:
        return list(self._descriptors)

    async def ensure_seeded(self) -> List[str]:
        """
        Insert every known venue that is not present yet.

        Returns:
            Slugs that were inserted

        Raises:
            RegistrySeedError: The store failed; startup must abort
        """
        inserted: List[str] = []
        try:
            async with transaction_scope(self._session_factory) as session:
                repo = IntegrationRepository(session)
                for descriptor in self._descriptors:
                    if await repo.get_platform_by_slug(descriptor.slug) is not None:
                        continue
                    await repo.add_platform(descriptor)
                    inserted.append(descriptor.slug)
        except PersistenceError as e:
            logger.critical(f"Platform registry seeding failed: {e}")
            raise RegistrySeedError(f"Failed to seed platform registry: {e.original_error}") from e

        for slug in inserted:
            logger.info(f"Added {slug} platform to registry")
        return inserted

    async def list_platforms(self, active_only: bool = True) -> List[PlatformDescriptor]:
        async with transaction_scope(self._session_factory) as session:
            models = await IntegrationRepository(session).list_platforms(active_only=active_only)
            return [to_descriptor(m) for m in models]

    async def get_platform(self, platform_id: int) -> PlatformDescriptor:
        """
        Raises:
            PlatformNotFoundError: No such platform
        """
        async with transaction_scope(self._session_factory) as session:
            model = await IntegrationRepository(session).get_platform(platform_id)
            if model is None:
                raise PlatformNotFoundError(platform_id)
            return to_descriptor(model)
