"""
Unit tests for Settings.

Tests validation, mode-dependent defaults and credential resolution.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from crossarb.config.settings import Settings


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestValidation:
    """Tests for field and model validators."""

    def test_defaults(self) -> None:
        settings = make_settings()

        assert settings.is_testnet
        assert settings.dry_run
        assert settings.execution_mode == "simultaneous"
        assert settings.min_profit_threshold == Decimal("0.001")
        assert settings.capital_amount == Decimal("100")

    def test_symbols_normalized(self) -> None:
        settings = make_settings(symbols=[" btcusdt", "ETHUSDT", ""])
        assert settings.symbols == ["BTCUSDT", "ETHUSDT"]

    def test_unsupported_symbol(self) -> None:
        with pytest.raises(ValidationError, match="FOOUSDT"):
            make_settings(symbols=["BTCUSDT", "FOOUSDT"])

    def test_empty_symbols(self) -> None:
        with pytest.raises(ValidationError, match="At least one symbol"):
            make_settings(symbols=[])

    def test_min_above_max(self) -> None:
        with pytest.raises(ValidationError, match="min_trade_usdt"):
            make_settings(min_trade_usdt=Decimal("500"), max_trade_usdt=Decimal("100"), capital_amount=Decimal("50"))

    def test_capital_above_max(self) -> None:
        with pytest.raises(ValidationError, match="capital_amount"):
            make_settings(capital_amount=Decimal("2000"))

    def test_threshold_range(self) -> None:
        with pytest.raises(ValidationError):
            make_settings(min_profit_threshold=Decimal("0.5"))

    def test_low_threshold_warns(self) -> None:
        with pytest.warns(UserWarning, match="very low"):
            make_settings(min_profit_threshold=Decimal("0.00001"))


class TestModeDefaults:
    """Tests for values that depend on the trading mode."""

    def test_transfer_timing_testnet(self) -> None:
        settings = make_settings()

        assert settings.effective_transfer_timeout_ms == 5_000
        assert settings.effective_transfer_poll_interval_ms == 100

    def test_transfer_timing_live(self) -> None:
        settings = make_settings(trading_mode="live")

        assert settings.effective_transfer_timeout_ms == 300_000
        assert settings.effective_transfer_poll_interval_ms == 10_000

    def test_transfer_timing_override(self) -> None:
        settings = make_settings(trading_mode="live", transfer_timeout_ms=1_000)
        assert settings.effective_transfer_timeout_ms == 1_000

    def test_capital_adjustment_follows_mode(self) -> None:
        assert make_settings().capital_adjustment_enabled
        assert not make_settings(trading_mode="live").capital_adjustment_enabled
        assert make_settings(trading_mode="live", adjust_capital=True).capital_adjustment_enabled

    def test_fee_override(self) -> None:
        settings = make_settings(gateio_fee=Decimal("0.001"))

        assert settings.fee_for("gateio") == Decimal("0.001")
        assert settings.fee_for("binance") == Decimal("0.001")

    def test_exchange_enabled(self) -> None:
        settings = make_settings(gateio_enabled=False)

        assert settings.is_exchange_enabled("binance")
        assert not settings.is_exchange_enabled("gateio")
        assert not settings.is_exchange_enabled("kraken")

    def test_bybit_opt_in(self) -> None:
        assert not make_settings().is_exchange_enabled("bybit")
        assert make_settings(bybit_enabled=True).is_exchange_enabled("bybit")
        assert make_settings().fee_for("bybit") == Decimal("0.001")


class TestCredentials:
    """Tests for per-mode credential resolution."""

    @pytest.fixture
    def settings(self) -> Settings:
        return make_settings(
            binance_api_key="live-key",
            binance_api_secret="live-secret",
            binance_testnet_api_key="test-key",
            binance_testnet_api_secret="test-secret",
        )

    def test_current_mode(self, settings: Settings) -> None:
        assert settings.credentials_for("binance") == ("test-key", "test-secret")

    def test_explicit_mode(self, settings: Settings) -> None:
        assert settings.credentials_for("binance", "live") == ("live-key", "live-secret")

    def test_missing_credentials(self, settings: Settings) -> None:
        assert settings.credentials_for("gateio") is None

    def test_blank_credentials(self) -> None:
        settings = make_settings(gateio_testnet_api_key="  ", gateio_testnet_api_secret="secret")
        assert settings.credentials_for("gateio") is None

    def test_secrets_hidden_in_repr(self, settings: Settings) -> None:
        assert "live-secret" not in repr(settings)
