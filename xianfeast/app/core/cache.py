"""In-memory cache layer for frequently accessed marketplace data.

Each CacheManager is an independent, capacity-bounded store with per-entry
TTL and least-recently-used eviction. The application builds one instance per
data category (see AppCaches) and hands them to the code that needs them;
instances never share or invalidate each other's entries.

Note: caches are process-local and data is lost when the application
restarts.
"""

import functools
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, Iterator, List, Optional, TypeVar

from xianfeast.app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_MISSING: Any = object()


@dataclass
class _CacheEntry:
    """Internal cache entry with TTL and access tracking."""

    value: Any
    expires_at: float
    created_at: float
    last_accessed: float
    access_count: int = 1

    def is_expired(self, now: float) -> bool:
        """Entries are logically absent from ``expires_at`` onwards."""
        return now >= self.expires_at


@dataclass
class CacheStats:
    """Snapshot of a cache's counters."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    hit_rate: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


class CacheManager(Generic[T]):
    """LRU cache with per-entry TTL and hit/miss statistics.

    Recency is refreshed by ``set`` and by every successful ``get``. When a
    new key is inserted into a full cache, the least recently used entry is
    evicted first.

    All operations are synchronous and guarded by a lock, so an instance can
    be shared between event-loop handlers and worker threads.

    Example:
        >>> products = CacheManager(max_size=2000, default_ttl=300, name="products")
        >>> products.set(CacheKeys.product("p-1"), {"name": "Dumplings"})
        >>> products.get(CacheKeys.product("p-1"))
        {'name': 'Dumplings'}
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = 300.0,
        name: str = "default",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache.

        Args:
            max_size: Maximum number of entries kept before LRU eviction
            default_ttl: TTL in seconds used when ``set`` is given none
            name: Label used in logs and statistics
            clock: Source of the current time in seconds

        Raises:
            ValueError: If max_size < 1 or default_ttl <= 0
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")

        self.name = name
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        # Ordered oldest -> most recently used
        self._data: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._lock = threading.Lock()

    @staticmethod
    def _check_key(key: str) -> None:
        if key is None:
            raise TypeError("cache key must not be None")

    def get(self, key: str, default: Any = None) -> Optional[T]:
        """Retrieve a value from the cache.

        Args:
            key: The cache key to look up.
            default: Returned on a miss.

        Returns:
            The cached value, or ``default`` if not found or expired.
        """
        self._check_key(key)
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self._misses += 1
                return default

            now = self._clock()
            if entry.is_expired(now):
                del self._data[key]
                self._misses += 1
                return default

            entry.access_count += 1
            entry.last_accessed = now
            self._data.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        """Store a value in the cache.

        A ``ttl`` of zero or less means "do not cache": nothing is stored and
        any existing entry for the key is dropped.

        Args:
            key: The cache key.
            value: The value to store.
            ttl: Time-to-live in seconds; defaults to the instance default.
        """
        self._check_key(key)
        ttl = self.default_ttl if ttl is None else ttl

        with self._lock:
            if ttl <= 0:
                self._data.pop(key, None)
                return

            if key in self._data:
                self._data.move_to_end(key)
            elif len(self._data) >= self.max_size:
                self._evict_lru()

            now = self._clock()
            self._data[key] = _CacheEntry(
                value=value,
                expires_at=now + ttl,
                created_at=now,
                last_accessed=now,
            )

    def _evict_lru(self) -> None:
        """Evict the least recently used entry. Caller holds the lock."""
        if not self._data:
            return
        victim, _ = self._data.popitem(last=False)
        self._evictions += 1
        logger.debug(
            f"Evicted '{victim}' from cache", extra={"cache": self.name}
        )

    def delete(self, key: str) -> bool:
        """Remove a value from the cache.

        Returns:
            True if an entry was removed.
        """
        self._check_key(key)
        with self._lock:
            return self._data.pop(key, None) is not None

    def has(self, key: str) -> bool:
        """Check if a key exists and is not expired.

        Does not count as a hit or miss and does not refresh recency.
        """
        self._check_key(key)
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._data[key]
                return False
            return True

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        return len(self._data)

    def keys(self) -> List[str]:
        """Return the stored keys, least recently used first."""
        with self._lock:
            return list(self._data.keys())

    def clear(self) -> None:
        """Clear all entries. Statistics are kept."""
        with self._lock:
            self._data.clear()

    def cleanup(self) -> int:
        """Remove all expired entries from the cache.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self._data.items() if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._data[key]
            return len(expired_keys)

    def get_stats(self) -> CacheStats:
        """Return hit/miss/eviction counters and current size."""
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._data),
                hit_rate=self._hits / total if total > 0 else 0.0,
            )

    async def get_or_set(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
    ) -> T:
        """Return the cached value, or await ``fetch`` and cache its result.

        Concurrent misses for the same key may each call ``fetch``; the last
        result written wins.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value

        value = await fetch()
        self.set(key, value, ttl)
        return value


def cached(
    cache: CacheManager,
    key_builder: Callable[..., str],
    ttl: Optional[float] = None,
) -> Callable:
    """Decorator memoizing an async function in ``cache``.

    ``key_builder`` receives the same arguments as the decorated function.

    Example:
        >>> @cached(stalls_cache, lambda stall_id: CacheKeys.stall(stall_id))
        ... async def load_stall(stall_id: str) -> dict: ...
    """

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            key = key_builder(*args, **kwargs)
            return await cache.get_or_set(key, lambda: func(*args, **kwargs), ttl)

        return wrapper

    return decorator


class CacheKeys:
    """Key builders shared by every cache user."""

    @staticmethod
    def stall(stall_id: str) -> str:
        return f"stall:{stall_id}"

    @staticmethod
    def stalls_by_business(business_id: str) -> str:
        return f"stalls:business:{business_id}"

    @staticmethod
    def stalls_active() -> str:
        return "stalls:active"

    @staticmethod
    def stalls_with_products() -> str:
        return "stalls:with-products"

    @staticmethod
    def product(product_id: str) -> str:
        return f"product:{product_id}"

    @staticmethod
    def products_by_stall(stall_id: str) -> str:
        return f"products:stall:{stall_id}"

    @staticmethod
    def products_active() -> str:
        return "products:active"

    @staticmethod
    def order(order_id: str) -> str:
        return f"order:{order_id}"

    @staticmethod
    def orders_by_customer(customer_id: str) -> str:
        return f"orders:customer:{customer_id}"

    @staticmethod
    def order_items(order_id: str) -> str:
        return f"order:items:{order_id}"

    @staticmethod
    def business(business_id: str) -> str:
        return f"business:{business_id}"

    @staticmethod
    def businesses_active() -> str:
        return "businesses:active"

    @staticmethod
    def business_metrics(business_id: str) -> str:
        return f"business:metrics:{business_id}"

    @staticmethod
    def user(user_id: str) -> str:
        return f"user:{user_id}"

    @staticmethod
    def user_by_email(email: str) -> str:
        return f"user:email:{email}"

    @staticmethod
    def cart(customer_id: str) -> str:
        return f"cart:{customer_id}"

    @staticmethod
    def customer_order_stats(customer_id: str) -> str:
        return f"customer:stats:{customer_id}"


@dataclass
class AppCaches:
    """The application's named cache instances.

    Built once by the application factory and stored on ``app.state``.
    """

    stalls: CacheManager
    products: CacheManager
    orders: CacheManager
    businesses: CacheManager
    users: CacheManager
    _by_name: Dict[str, CacheManager] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._by_name = {
            "stalls": self.stalls,
            "products": self.products,
            "orders": self.orders,
            "businesses": self.businesses,
            "users": self.users,
        }

    @classmethod
    def from_settings(
        cls,
        app_settings: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> "AppCaches":
        """Build every instance from ``cache_<name>_*`` settings."""
        if app_settings is None:
            from xianfeast.app.core.config import settings as app_settings

        def build(name: str) -> CacheManager:
            return CacheManager(
                max_size=getattr(app_settings, f"cache_{name}_max_size"),
                default_ttl=getattr(app_settings, f"cache_{name}_ttl_seconds"),
                name=name,
                clock=clock,
            )

        return cls(
            stalls=build("stalls"),
            products=build("products"),
            orders=build("orders"),
            businesses=build("businesses"),
            users=build("users"),
        )

    def __iter__(self) -> Iterator[CacheManager]:
        return iter(self._by_name.values())

    def items(self):
        return self._by_name.items()

    def get(self, name: str) -> Optional[CacheManager]:
        return self._by_name.get(name)

    def cleanup(self) -> Dict[str, int]:
        """Run ``cleanup`` on every instance, returning removals per name."""
        return {name: cache.cleanup() for name, cache in self._by_name.items()}
