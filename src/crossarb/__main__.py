"""
Entry point for the arbitrage engine.

Usage:
    python -m crossarb
    crossarb  # if installed via pip
"""

import asyncio
import sys


# Try to use uvloop for better performance
try:
    import uvloop

    uvloop.install()
    UVLOOP_ENABLED = True
except ImportError:
    UVLOOP_ENABLED = False


def main() -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success).
    """
    from crossarb import __version__
    from crossarb.config.settings import get_settings
    from crossarb.core.engine import ArbitrageEngine
    from crossarb.telemetry.logger import setup_logging

    print(
        f"""
╔═══════════════════════════════════════════════════════════════╗
║     CROSS-EXCHANGE ARBITRAGE ENGINE v{__version__:<19}      ║
║                                                               ║
║     Spot price gaps between Binance and Gate.io               ║
╚═══════════════════════════════════════════════════════════════╝
    """
    )

    try:
        settings = get_settings()
    except Exception as e:
        print(f"Configuration error: {e}")
        print("\nCredentials are read from .env, per trading mode:")
        print("  BINANCE_TESTNET_API_KEY / BINANCE_TESTNET_API_SECRET")
        print("  GATEIO_TESTNET_API_KEY / GATEIO_TESTNET_API_SECRET")
        print("  BINANCE_API_KEY / BINANCE_API_SECRET (live)")
        print("  GATEIO_API_KEY / GATEIO_API_SECRET (live)")
        return 1

    print("Configuration:")
    print(f"  Trading mode:   {settings.trading_mode.upper()}")
    print(f"  Execution:      {settings.execution_mode}")
    print(f"  Orders:         {'DRY RUN' if settings.dry_run else 'REAL'}")
    print(f"  Auto-execute:   {'Yes' if settings.auto_execute else 'No'}")
    print(f"  Symbols:        {', '.join(settings.symbols)}")
    print(f"  Min profit:     {settings.min_profit_threshold * 100:.3f}%")
    print(f"  Capital:        {settings.capital_amount} USDT")
    print(f"  Streaming:      {'Enabled' if settings.use_streaming else 'Disabled'}")
    print(f"  uvloop:         {'Enabled' if UVLOOP_ENABLED else 'Disabled'}")
    print()

    if not settings.is_testnet and not settings.dry_run:
        print("⚠️  WARNING: Live trading mode enabled!")
        print("    Real orders will be placed on the exchanges.")
        print()

    async def run_engine() -> int:
        queue_logging = setup_logging(level=settings.log_level, log_file=settings.log_file)
        engine = ArbitrageEngine(settings)

        try:
            await engine.setup()
            await engine.run()
            return 0

        except KeyboardInterrupt:
            print("\nInterrupted by user")
            return 0

        except Exception as e:
            print(f"\nFatal error: {e}")
            import traceback

            traceback.print_exc()
            return 1

        finally:
            await engine.shutdown()
            queue_logging.stop()

    return asyncio.run(run_engine())


if __name__ == "__main__":
    sys.exit(main())
