"""
Exchange Facade Factory.

============================================================
PURPOSE
============================================================
Maps an exchange name to a facade constructor.

FEATURES:
- Centralized facade creation
- Configuration injection (explicit or from the environment)
- Registry for additional backends

============================================================
USAGE
============================================================
```python
# Create by exchange name, credentials from the environment
exchange = ExchangeFactory.create("binance", sandbox=True)

# Create with explicit config
config = ExchangeConfig(api_key="...", secret_key="...", passphrase="...")
exchange = ExchangeFactory.create("okx", config=config)

# Register another backend
ExchangeFactory.register("kraken", KrakenExchange)
```

============================================================
"""

import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type

from .base import Exchange
from .config import ExchangeConfig


logger = logging.getLogger(__name__)


# ============================================================
# EXCHANGE IDENTIFIERS
# ============================================================

class ExchangeId(Enum):
    """Built-in exchange identifiers."""

    BINANCE = "binance"
    GATE = "gate"
    OKX = "okx"


def _binance(config: ExchangeConfig, transport: Any = None) -> Exchange:
    from .binance import BinanceExchange
    return BinanceExchange(config, transport)


def _gate(config: ExchangeConfig, transport: Any = None) -> Exchange:
    from .gate import GateExchange
    return GateExchange(config, transport)


def _okx(config: ExchangeConfig, transport: Any = None) -> Exchange:
    from .okx import OKXExchange
    return OKXExchange(config, transport)


_BUILTIN_CREATORS: Dict[str, Callable[..., Exchange]] = {
    ExchangeId.BINANCE.value: _binance,
    ExchangeId.GATE.value: _gate,
    ExchangeId.OKX.value: _okx,
}


# ============================================================
# EXCHANGE FACTORY
# ============================================================

class ExchangeFactory:
    """
    Factory for exchange facades.

    Registered classes and creators take precedence over the
    built-in backends of the same name.
    """

    # Registry of facade classes
    _registry: Dict[str, Type[Exchange]] = {}

    # Custom creation functions: (config, transport) -> Exchange
    _creators: Dict[str, Callable[..., Exchange]] = {}

    @classmethod
    def register(
        cls,
        exchange_id: str,
        exchange_class: Type[Exchange] = None,
        creator: Callable[..., Exchange] = None,
    ) -> None:
        """
        Register a facade class or creator.

        Args:
            exchange_id: Exchange name
            exchange_class: Exchange subclass taking (config, transport)
            creator: Callable taking (config, transport)
        """
        if exchange_class is None and creator is None:
            raise ValueError("register() needs exchange_class or creator")
        exchange_id = exchange_id.lower()

        if exchange_class:
            cls._registry[exchange_id] = exchange_class
        if creator:
            cls._creators[exchange_id] = creator
        logger.info(f"Registered exchange backend: {exchange_id}")

    @classmethod
    def unregister(cls, exchange_id: str) -> None:
        """Unregister a backend. Built-ins stay available."""
        exchange_id = exchange_id.lower()
        cls._registry.pop(exchange_id, None)
        cls._creators.pop(exchange_id, None)

    @classmethod
    def create(
        cls,
        exchange_id: str,
        config: Optional[ExchangeConfig] = None,
        transport: Any = None,
        **overrides,
    ) -> Exchange:
        """
        Create an exchange facade.

        Args:
            exchange_id: Exchange name (case-insensitive)
            config: Facade configuration; read from the environment
                when omitted
            transport: Optional HTTP transport shared by spot and perp
            **overrides: Config fields (sandbox=True, ...) or options,
                applied to a copy of ``config``

        Returns:
            Exchange instance

        Raises:
            ValueError: If the exchange is not supported
        """
        exchange_id = exchange_id.lower()
        if not cls.is_supported(exchange_id):
            raise ValueError(f"Unsupported exchange: {exchange_id}")

        if config is None:
            config = ExchangeConfig.from_env(exchange_id, **overrides)
        elif overrides:
            # the caller keeps its config untouched
            config = replace(config, options=dict(config.options))
            for key, value in overrides.items():
                if hasattr(config, key):
                    setattr(config, key, value)
                else:
                    config.options[key] = value

        if exchange_id in cls._creators:
            return cls._creators[exchange_id](config, transport)
        if exchange_id in cls._registry:
            return cls._registry[exchange_id](config, transport)
        return _BUILTIN_CREATORS[exchange_id](config, transport)

    @classmethod
    def create_all(
        cls,
        exchange_ids: List[str],
        config_map: Dict[str, ExchangeConfig] = None,
        **common_overrides,
    ) -> Dict[str, Exchange]:
        """
        Create several facades.

        Unsupported names are logged and left out of the result.
        """
        config_map = config_map or {}
        exchanges = {}

        for exchange_id in exchange_ids:
            try:
                exchanges[exchange_id] = cls.create(
                    exchange_id,
                    config=config_map.get(exchange_id),
                    **common_overrides,
                )
            except ValueError as e:
                logger.error(f"Failed to create exchange {exchange_id}: {e}")

        return exchanges

    @classmethod
    def is_supported(cls, exchange_id: str) -> bool:
        exchange_id = exchange_id.lower()
        return (
            exchange_id in _BUILTIN_CREATORS
            or exchange_id in cls._registry
            or exchange_id in cls._creators
        )

    @classmethod
    def list_supported(cls) -> List[str]:
        """Built-in plus registered exchange names, sorted."""
        names = set(_BUILTIN_CREATORS) | set(cls._registry) | set(cls._creators)
        return sorted(names)


def create_exchange(exchange_id: str, **kwargs) -> Exchange:
    """Shorthand for ExchangeFactory.create()."""
    return ExchangeFactory.create(exchange_id, **kwargs)
