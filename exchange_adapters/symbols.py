"""
Exchange Adapters - Symbol Normalization.

============================================================
PURPOSE
============================================================
Stateless conversion between the canonical symbol and each
exchange's native instrument ID.

Canonical:  BASE/QUOTE (spot), BASE/QUOTE:SETTLE (perpetual)

Native:
- Binance   BTCUSDT        (spot and perpetual)
- Gate      BTC_USDT       (spot and perpetual)
- OKX       BTC-USDT       (spot), BTC-USDT-SWAP (perpetual)

============================================================
"""

from dataclasses import dataclass
from typing import Tuple

from .errors import InvalidSymbolFormat


# Quote currencies tried, longest first, when a native ID has no delimiter
KNOWN_QUOTES = (
    "FDUSD", "USDT", "USDC", "TUSD", "BUSD", "USDE",
    "EUR", "TRY", "BRL", "BTC", "ETH", "BNB", "DAI",
)


def to_canonical(base: str, quote: str, settle: str = "") -> str:
    """Build BASE/QUOTE or BASE/QUOTE:SETTLE (upper-cased)."""
    symbol = f"{base.upper()}/{quote.upper()}"
    if settle:
        symbol = f"{symbol}:{settle.upper()}"
    return symbol


def split_symbol(symbol: str, is_contract: bool = False) -> Tuple[str, str, str]:
    """
    Split a canonical symbol into (base, quote, settle).

    Perpetual symbols may omit ``:SETTLE``; settle is then "".
    Spot symbols must not carry a settle part.

    Raises:
        InvalidSymbolFormat: wrong number of parts or an empty part
    """
    if not isinstance(symbol, str):
        raise InvalidSymbolFormat(f"invalid symbol format: {symbol!r}, expected BASE/QUOTE")

    settle = ""
    pair = symbol
    if ":" in symbol:
        if not is_contract:
            raise InvalidSymbolFormat(
                f"invalid symbol format: {symbol}, expected BASE/QUOTE", symbol=symbol,
            )
        pair, _, settle = symbol.partition(":")
        if not settle or ":" in settle:
            raise InvalidSymbolFormat(
                f"invalid contract symbol format: {symbol}, expected BASE/QUOTE:SETTLE",
                symbol=symbol,
            )

    parts = pair.split("/")
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        expected = "BASE/QUOTE:SETTLE" if is_contract else "BASE/QUOTE"
        raise InvalidSymbolFormat(
            f"invalid symbol format: {symbol}, expected {expected}", symbol=symbol,
        )

    return parts[0].strip().upper(), parts[1].strip().upper(), settle.strip().upper()


# ============================================================
# PER-EXCHANGE FORMATS
# ============================================================

@dataclass(frozen=True)
class SymbolFormat:
    """
    Native ID convention for one exchange.

    Attributes:
        delimiter: Joins base and quote ("" for Binance)
        swap_suffix: Appended to perpetual IDs ("-SWAP" for OKX)
    """

    name: str
    delimiter: str = ""
    swap_suffix: str = ""

    def to_native(self, symbol: str, is_contract: bool = False) -> str:
        """Canonical symbol -> native instrument ID."""
        base, quote, _ = split_symbol(symbol, is_contract)
        native = f"{base}{self.delimiter}{quote}"
        if is_contract and self.swap_suffix:
            native += self.swap_suffix
        return native

    def from_native(self, native_id: str, is_contract: bool = False, settle: str = "") -> str:
        """
        Native instrument ID -> canonical symbol.

        For perpetuals the settle currency defaults to the quote.
        The market registry is the authoritative reverse mapping;
        this is the fallback for IDs it does not hold.
        """
        base, quote = self.split_native(native_id, is_contract)
        if is_contract:
            return to_canonical(base, quote, settle or quote)
        return to_canonical(base, quote)

    def split_native(self, native_id: str, is_contract: bool = False) -> Tuple[str, str]:
        raw = native_id.upper()
        if is_contract and self.swap_suffix and raw.endswith(self.swap_suffix):
            raw = raw[: -len(self.swap_suffix)]

        if self.delimiter:
            parts = raw.split(self.delimiter)
            if len(parts) != 2 or not all(parts):
                raise InvalidSymbolFormat(f"invalid {self.name} instrument ID: {native_id}")
            return parts[0], parts[1]

        for quote in KNOWN_QUOTES:
            if raw.endswith(quote) and len(raw) > len(quote):
                return raw[: -len(quote)], quote
        raise InvalidSymbolFormat(f"cannot split {self.name} instrument ID: {native_id}")


BINANCE_SYMBOLS = SymbolFormat(name="binance")
GATE_SYMBOLS = SymbolFormat(name="gate", delimiter="_")
OKX_SYMBOLS = SymbolFormat(name="okx", delimiter="-", swap_suffix="-SWAP")
