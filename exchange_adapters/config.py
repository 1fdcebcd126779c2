"""
Exchange Adapters - Configuration.

============================================================
PURPOSE
============================================================
Construction-time configuration for an exchange facade.

Recognized inputs:
- api_key / secret_key / passphrase (OKX only)
- base_url override
- sandbox (testnet / simulated trading)
- proxy URL
- debug (trace every request at DEBUG level)

Credentials may come from the environment (optionally a .env
file) via ExchangeConfig.from_env().

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

from dotenv import load_dotenv


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """
    HTTP timeouts handed to aiohttp.ClientTimeout.
    """

    connect_timeout_seconds: float = 10.0
    """Connection establishment timeout."""

    total_timeout_seconds: float = 30.0
    """Whole request timeout."""


# ============================================================
# EXCHANGE CONFIGURATION
# ============================================================

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUE_VALUES


@dataclass
class ExchangeConfig:
    """
    Configuration for one exchange facade.
    """

    api_key: str = ""
    """API key. Empty for public market data only."""

    secret_key: str = ""
    """API secret. Signed endpoints fail fast when empty."""

    passphrase: str = ""
    """API passphrase (OKX)."""

    base_url: Optional[str] = None
    """Overrides the exchange's REST host."""

    sandbox: bool = False
    """Use testnet / simulated trading."""

    proxy: Optional[str] = None
    """HTTP proxy URL for every request."""

    debug: bool = False
    """Log every request and response at DEBUG level."""

    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    """HTTP timeouts."""

    options: Dict[str, Any] = field(default_factory=dict)
    """Exchange-specific extras (e.g. ``settle`` for Gate)."""

    @property
    def has_credentials(self) -> bool:
        return bool(self.secret_key)

    @classmethod
    def from_env(
        cls,
        exchange_id: str,
        env_file: Optional[str] = None,
        **overrides: Any,
    ) -> "ExchangeConfig":
        """
        Create config from environment variables.

        Reads <ID>_API_KEY, <ID>_SECRET_KEY (or <ID>_API_SECRET),
        <ID>_PASSPHRASE, <ID>_BASE_URL, <ID>_SANDBOX, <ID>_PROXY and
        <ID>_DEBUG after loading ``env_file`` (default: .env lookup).

        Args:
            exchange_id: Exchange identifier
            env_file: Optional path to a dotenv file
            **overrides: Field values that win over the environment

        Returns:
            ExchangeConfig
        """
        load_dotenv(env_file)
        prefix = exchange_id.upper()

        config = cls(
            api_key=os.environ.get(f"{prefix}_API_KEY", ""),
            secret_key=os.environ.get(
                f"{prefix}_SECRET_KEY", os.environ.get(f"{prefix}_API_SECRET", "")
            ),
            passphrase=os.environ.get(f"{prefix}_PASSPHRASE", ""),
            base_url=os.environ.get(f"{prefix}_BASE_URL") or None,
            sandbox=_env_flag(f"{prefix}_SANDBOX"),
            proxy=os.environ.get(f"{prefix}_PROXY") or None,
            debug=_env_flag(f"{prefix}_DEBUG"),
        )
        for key, value in overrides.items():
            if hasattr(config, key):
                setattr(config, key, value)
            else:
                config.options[key] = value
        return config
