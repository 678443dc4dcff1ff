"""
Unit tests for SymbolMapper.

Tests the declarative symbol tables and their startup validation.
"""

import pytest

from crossarb.config.exchanges import BINANCE, EXCHANGES, GATEIO, SUPPORTED_SYMBOLS
from crossarb.core.errors import UnknownSymbolError
from crossarb.market.symbols import SymbolMapper, SymbolMappingError


class TestSymbolMapper:
    """Tests for SymbolMapper."""

    def test_gateio_native_spelling(self) -> None:
        mapper = SymbolMapper.from_config(GATEIO)

        assert mapper.to_native("BTCUSDT") == "BTC_USDT"
        assert mapper.to_canonical("ETH_USDT") == "ETHUSDT"

    def test_binance_identity_mapping(self) -> None:
        mapper = SymbolMapper.from_config(BINANCE)

        assert mapper.to_native("SOLUSDT") == "SOLUSDT"
        assert mapper.to_canonical("SOLUSDT") == "SOLUSDT"

    def test_unknown_native_returns_none(self) -> None:
        mapper = SymbolMapper.from_config(GATEIO)
        assert mapper.to_canonical("PEPE_USDT") is None

    def test_unknown_canonical_raises(self) -> None:
        mapper = SymbolMapper("test", {"BTCUSDT": "BTC-USDT"})

        with pytest.raises(UnknownSymbolError) as exc_info:
            mapper.to_native("ETHUSDT")

        assert exc_info.value.exchange == "test"
        assert exc_info.value.symbol == "ETHUSDT"

    def test_filter_supported(self) -> None:
        mapper = SymbolMapper("test", {"BTCUSDT": "BTC-USDT"})

        assert mapper.filter_supported(["ETHUSDT", "BTCUSDT"]) == ["BTCUSDT"]
        assert mapper.supports("BTCUSDT")
        assert not mapper.supports("ETHUSDT")

    def test_split(self) -> None:
        assert SymbolMapper.split("DOGEUSDT") == ("DOGE", "USDT")

        with pytest.raises(UnknownSymbolError):
            SymbolMapper.split("FOOBAR")

    @pytest.mark.parametrize("config", list(EXCHANGES.values()), ids=list(EXCHANGES))
    def test_configured_tables_are_valid(self, config) -> None:
        """Every shipped table covers only supported symbols, one-to-one."""
        mapper = SymbolMapper.from_config(config)

        assert mapper.symbols <= frozenset(SUPPORTED_SYMBOLS)
        assert len(mapper) == len(config.symbols)


class TestSymbolTableValidation:
    """Tests for rejected symbol tables."""

    def test_empty_table(self) -> None:
        with pytest.raises(SymbolMappingError, match="empty"):
            SymbolMapper("test", {})

    def test_unknown_canonical_symbol(self) -> None:
        with pytest.raises(SymbolMappingError, match="FOOUSDT"):
            SymbolMapper("test", {"FOOUSDT": "FOO_USDT"})

    def test_duplicate_native_symbol(self) -> None:
        with pytest.raises(SymbolMappingError, match="unique"):
            SymbolMapper("test", {"BTCUSDT": "X", "ETHUSDT": "X"})

    def test_blank_native_symbol(self) -> None:
        with pytest.raises(SymbolMappingError, match="BTCUSDT"):
            SymbolMapper("test", {"BTCUSDT": "  "})
