"""Cache warm-up for frequently browsed marketplace data.

The data layer is not part of this package; callers pass async loaders that
return lists of records (dicts carrying at least an ``id``).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from xianfeast.app.core.cache import AppCaches, CacheKeys

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[list[dict[str, Any]]]]


@dataclass
class WarmupResult:
    stalls: int = 0
    products: int = 0
    businesses: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def _active(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [r for r in records if r.get("status", "active") == "active"]


class CacheWarmer:
    """Primes the stalls, products and businesses caches.

    Both the list key (e.g. ``stalls:active``) and one key per record are
    written, using each cache's default TTL.
    """

    def __init__(
        self,
        caches: AppCaches,
        stalls_loader: Optional[Loader] = None,
        products_loader: Optional[Loader] = None,
        businesses_loader: Optional[Loader] = None,
    ):
        self._caches = caches
        self._targets = [
            ("stalls", stalls_loader, caches.stalls, CacheKeys.stalls_active, CacheKeys.stall, True),
            ("products", products_loader, caches.products, CacheKeys.products_active, CacheKeys.product, True),
            ("businesses", businesses_loader, caches.businesses, CacheKeys.businesses_active, CacheKeys.business, False),
        ]

    async def warm(self) -> WarmupResult:
        """Load and cache every configured category.

        A failing loader is logged and reported in ``errors``; the other
        categories are still warmed.
        """
        logger.info("Starting cache warm-up")
        result = WarmupResult()

        for name, loader, cache, list_key, item_key, active_only in self._targets:
            if loader is None:
                continue
            try:
                records = await loader()
            except Exception as e:
                logger.error(f"Cache warm-up failed for {name}: {e}", extra={"cache": name})
                result.errors[name] = str(e)[:200]
                continue

            if active_only:
                records = _active(records)
            cache.set(list_key(), records)
            for record in records:
                if record.get("id") is not None:
                    cache.set(item_key(str(record["id"])), record)
            setattr(result, name, len(records))

        logger.info(
            f"Cache warmed: {result.stalls} stalls, {result.products} products, "
            f"{result.businesses} businesses"
        )
        return result
