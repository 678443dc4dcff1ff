"""
Canonical to exchange-native symbol mapping.

Each exchange spells pairs differently (``BTCUSDT``, ``BTC_USDT``). The
tables live in config and are checked once at startup; lookups at run
time are plain dict reads.
"""

import logging
from collections.abc import Iterable, Mapping

from crossarb.config.exchanges import SUPPORTED_SYMBOLS, ExchangeConfig
from crossarb.core.errors import UnknownSymbolError


logger = logging.getLogger(__name__)


class SymbolMappingError(ValueError):
    """Symbol table is inconsistent."""

    pass


class SymbolMapper:
    """
    Bidirectional symbol lookup for one exchange.

    Provides O(1) translation in both directions plus base/quote
    asset lookup for canonical symbols.
    """

    __slots__ = ("_exchange", "_to_native", "_to_canonical")

    def __init__(self, exchange: str, table: Mapping[str, str]) -> None:
        """
        Initialize and validate a mapping table.

        Args:
            exchange: Exchange name, used in error messages.
            table: Canonical symbol -> native symbol.

        Raises:
            SymbolMappingError: If the table is empty, references unknown
                canonical symbols or maps two symbols to the same native one.
        """
        self._exchange = exchange
        self._to_native = dict(table)
        self._to_canonical = {native: canonical for canonical, native in table.items()}
        self.validate()

    @classmethod
    def from_config(cls, config: ExchangeConfig) -> "SymbolMapper":
        """Build a mapper from static exchange configuration."""
        return cls(config.name, config.symbols)

    def validate(self) -> None:
        """Check the table is non-empty, known and one-to-one."""
        if not self._to_native:
            raise SymbolMappingError(f"{self._exchange}: symbol table is empty")

        unknown = [s for s in self._to_native if s not in SUPPORTED_SYMBOLS]
        if unknown:
            raise SymbolMappingError(
                f"{self._exchange}: unknown canonical symbols {', '.join(sorted(unknown))}"
            )

        if len(self._to_canonical) != len(self._to_native):
            raise SymbolMappingError(f"{self._exchange}: native symbols are not unique")

        blank = [c for c, n in self._to_native.items() if not n or not n.strip()]
        if blank:
            raise SymbolMappingError(
                f"{self._exchange}: empty native symbol for {', '.join(sorted(blank))}"
            )

    def to_native(self, symbol: str) -> str:
        """
        Translate a canonical symbol.

        Raises:
            UnknownSymbolError: If the exchange does not list the symbol.
        """
        try:
            return self._to_native[symbol]
        except KeyError:
            raise UnknownSymbolError(self._exchange, symbol) from None

    def to_canonical(self, native: str) -> str | None:
        """Translate a native symbol, None if it is not mapped."""
        return self._to_canonical.get(native)

    def supports(self, symbol: str) -> bool:
        """Check if a canonical symbol is listed."""
        return symbol in self._to_native

    def filter_supported(self, symbols: Iterable[str]) -> list[str]:
        """Keep only the canonical symbols this exchange lists."""
        return [s for s in symbols if s in self._to_native]

    @staticmethod
    def split(symbol: str) -> tuple[str, str]:
        """
        Base and quote asset of a canonical symbol.

        Raises:
            UnknownSymbolError: If the symbol is not supported.
        """
        try:
            return SUPPORTED_SYMBOLS[symbol]
        except KeyError:
            raise UnknownSymbolError("canonical", symbol) from None

    @property
    def symbols(self) -> frozenset[str]:
        """All canonical symbols listed on this exchange."""
        return frozenset(self._to_native)

    def __len__(self) -> int:
        return len(self._to_native)
