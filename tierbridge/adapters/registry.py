"""
AdapterRegistry: Resolves the platform adapter for a given shop.

Routers, the webhook and the operator script never construct a
platform-specific client themselves. They ask the registry for the
adapter matching the shop's registered platform.
"""

from typing import Callable, Dict, List, Optional

import httpx

from tierbridge.adapters.base import BasePlatformAdapter
from tierbridge.models import Shop

AdapterFactory = Callable[[Shop, Optional[httpx.AsyncClient]], BasePlatformAdapter]


class UnsupportedPlatformError(Exception):
    """Raised when a shop's platform is not in the registry."""
    pass


def _shopify_factory(shop: Shop, client: Optional[httpx.AsyncClient]) -> BasePlatformAdapter:
    from tierbridge.adapters.shopify import ShopifyPlatformAdapter
    return ShopifyPlatformAdapter(shop.domain, shop.access_token, client=client)


class AdapterRegistry:
    _REGISTRY: Dict[str, AdapterFactory] = {
        "shopify": _shopify_factory,
    }

    @classmethod
    def register(cls, name: str, factory: AdapterFactory):
        """Register a new platform adapter factory."""
        cls._REGISTRY[name] = factory

    @classmethod
    def for_shop(cls, shop: Shop, client: Optional[httpx.AsyncClient] = None) -> BasePlatformAdapter:
        """
        Return an adapter bound to the shop's credentials.

        Raises:
            UnsupportedPlatformError if the platform is not in the registry.
        """
        platform = shop.platform or "shopify"
        factory = cls._REGISTRY.get(platform)
        if factory is None:
            raise UnsupportedPlatformError(
                f"Platform '{platform}' is not supported. "
                f"Supported platforms: {cls.supported_platforms()}"
            )
        return factory(shop, client)

    @classmethod
    def supported_platforms(cls) -> List[str]:
        return list(cls._REGISTRY.keys())
