"""
Exchange Adapters - Market Registry.

============================================================
PURPOSE
============================================================
In-memory cache of instrument metadata for one market type of
one exchange facade, reachable by canonical symbol and by
native ID.

============================================================
CONCURRENCY
============================================================
The two maps live in one immutable snapshot. Readers grab the
current snapshot reference and never block. load() fetches
from the exchange with no lock held on the snapshot, builds a
fresh snapshot, and swaps it in under an exclusive lock.

Concurrent load(reload=False) calls are coalesced: the first
fetches, the others wait for it and return.

============================================================
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Awaitable, Callable, Iterable, List, Mapping, Optional

from .errors import MarketNotFound
from .models import Market, MarketType


logger = logging.getLogger(__name__)

MarketFetcher = Callable[[], Awaitable[Iterable[Market]]]


@dataclass(frozen=True)
class _Snapshot:
    by_symbol: Mapping[str, Market] = field(default_factory=lambda: MappingProxyType({}))
    by_id: Mapping[str, Market] = field(default_factory=lambda: MappingProxyType({}))


class MarketRegistry:
    """
    Load-once-or-reload market cache.

    Usage:
        registry = MarketRegistry("binance", MarketType.SPOT)
        await registry.load(fetch_spot_markets)
        market = registry.get("BTC/USDT")
    """

    def __init__(self, exchange_id: str, market_type: MarketType):
        self._exchange_id = exchange_id
        self._market_type = market_type
        self._snapshot = _Snapshot()
        self._swap_lock = threading.Lock()
        self._load_lock: Optional[asyncio.Lock] = None

    @property
    def market_type(self) -> MarketType:
        return self._market_type

    @property
    def loaded(self) -> bool:
        return bool(self._snapshot.by_symbol)

    def __len__(self) -> int:
        return len(self._snapshot.by_symbol)

    def __contains__(self, key: str) -> bool:
        snapshot = self._snapshot
        return key in snapshot.by_symbol or key in snapshot.by_id

    # ========================================================
    # LOADING
    # ========================================================

    async def load(self, fetcher: MarketFetcher, reload: bool = False) -> int:
        """
        Populate the registry.

        Args:
            fetcher: Coroutine function returning parsed markets
            reload: Fetch even when markets are already cached

        Returns:
            Number of cached markets
        """
        if not reload and self.loaded:
            return len(self)

        if self._load_lock is None:
            self._load_lock = asyncio.Lock()

        async with self._load_lock:
            if not reload and self.loaded:
                return len(self)

            markets = await fetcher()
            count = self.replace(markets)

        logger.info(
            f"[{self._exchange_id}] Loaded {count} {self._market_type.value} markets"
        )
        return count

    def replace(self, markets: Iterable[Market]) -> int:
        """Swap in a new snapshot built from ``markets``."""
        by_symbol = {}
        by_id = {}
        for market in markets:
            if market.type is not self._market_type:
                continue
            if market.symbol in by_symbol:
                logger.warning(
                    f"[{self._exchange_id}] Duplicate market {market.symbol} "
                    f"({by_symbol[market.symbol].id}, {market.id}); keeping first"
                )
                continue
            by_symbol[market.symbol] = market
            by_id[market.id] = market

        snapshot = _Snapshot(
            by_symbol=MappingProxyType(by_symbol),
            by_id=MappingProxyType(by_id),
        )
        with self._swap_lock:
            self._snapshot = snapshot
        return len(by_symbol)

    # ========================================================
    # LOOKUP
    # ========================================================

    def get(self, key: str) -> Market:
        """
        Look up by canonical symbol, then by native ID.

        Raises:
            MarketNotFound: Neither matches (or nothing loaded yet)
        """
        snapshot = self._snapshot
        market = snapshot.by_symbol.get(key)
        if market is None:
            market = snapshot.by_id.get(key)
        if market is None:
            hint = "" if snapshot.by_symbol else " (markets not loaded)"
            raise MarketNotFound(
                f"market not found: {key}{hint}",
                exchange_id=self._exchange_id,
                symbol=key,
            )
        return market

    def find(self, key: str) -> Optional[Market]:
        """Like get(), returning None instead of raising."""
        snapshot = self._snapshot
        return snapshot.by_symbol.get(key) or snapshot.by_id.get(key)

    def markets(self) -> List[Market]:
        """Snapshot list of every cached market."""
        return list(self._snapshot.by_symbol.values())
