"""
Explicit trading context.

A frozen snapshot of the settings the detector and executor read on
every call, passed in rather than read from module state. Replaced
wholesale on mode switches and config updates.
"""

from dataclasses import dataclass, replace
from decimal import Decimal

from crossarb.config.settings import Settings
from crossarb.core.types import ExecutionMode, FeeSchedule, TradingMode


@dataclass(slots=True, frozen=True)
class TradingContext:
    """Parameters shared by detection and execution."""

    trading_mode: TradingMode
    execution_mode: ExecutionMode
    fee_schedule: FeeSchedule
    symbols: tuple[str, ...]
    min_profit_threshold: Decimal
    capital_amount: Decimal
    min_trade_usdt: Decimal
    max_trade_usdt: Decimal
    max_update_age_ms: int
    dry_run: bool
    user_id: str
    adjust_capital: bool
    safe_balance_fraction: Decimal
    max_adjusted_trade_usdt: Decimal
    transfer_timeout_ms: int
    transfer_poll_interval_ms: int
    withdrawal_network: str

    @property
    def is_testnet(self) -> bool:
        """Whether trades go to exchange test environments."""
        return self.trading_mode == TradingMode.TESTNET

    @classmethod
    def from_settings(cls, settings: Settings, fee_schedule: FeeSchedule) -> "TradingContext":
        """
        Build a context from loaded settings.

        Args:
            settings: Application settings.
            fee_schedule: Fee table of the configured exchanges.

        Returns:
            New TradingContext.
        """
        return cls(
            trading_mode=TradingMode(settings.trading_mode),
            execution_mode=ExecutionMode(settings.execution_mode),
            fee_schedule=fee_schedule,
            symbols=tuple(settings.symbols),
            min_profit_threshold=settings.min_profit_threshold,
            capital_amount=settings.capital_amount,
            min_trade_usdt=settings.min_trade_usdt,
            max_trade_usdt=settings.max_trade_usdt,
            max_update_age_ms=settings.max_update_age_ms,
            dry_run=settings.dry_run,
            user_id=settings.user_id,
            adjust_capital=settings.capital_adjustment_enabled,
            safe_balance_fraction=settings.safe_balance_fraction,
            max_adjusted_trade_usdt=settings.max_adjusted_trade_usdt,
            transfer_timeout_ms=settings.effective_transfer_timeout_ms,
            transfer_poll_interval_ms=settings.effective_transfer_poll_interval_ms,
            withdrawal_network=settings.withdrawal_network,
        )

    def with_changes(self, **changes: object) -> "TradingContext":
        """Copy of this context with some fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]
