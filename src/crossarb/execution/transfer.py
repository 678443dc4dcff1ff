"""
Cross-exchange asset transfer.

Moves the bought asset from the buy exchange to the sell exchange:
deposit address on the destination, withdrawal on the source, then a
bounded polling loop over the destination's deposit history.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal

from crossarb.config.constants import DEPOSIT_AMOUNT_TOLERANCE, DEPOSIT_MATCH_WINDOW_MS
from crossarb.core.errors import ExchangeError, TransferFailed
from crossarb.core.types import Deposit, ExchangeAdapter, WithdrawalRequest
from crossarb.utils.time import get_timestamp_ms


logger = logging.getLogger(__name__)


# Native withdrawal network per base asset; others use the configured default
NATIVE_NETWORKS: dict[str, str] = {
    "BTC": "BTC",
    "ETH": "ETH",
    "BNB": "BSC",
    "SOL": "SOL",
    "XRP": "XRP",
    "ADA": "ADA",
    "DOGE": "DOGE",
    "TRX": "TRX",
    "LTC": "LTC",
    "LINK": "ETH",
    "DOT": "DOT",
    "AVAX": "AVAXC",
}


@dataclass(slots=True)
class TransferOutcome:
    """Result of a transfer attempt that did not fail outright."""

    currency: str
    amount: Decimal
    tx_id: str | None
    withdrawal_id: str | None
    deposit: Deposit | None
    elapsed_ms: int

    @property
    def completed(self) -> bool:
        """A matching deposit was credited on the destination."""
        return self.deposit is not None and self.deposit.is_completed

    @property
    def timed_out(self) -> bool:
        """The wait ended without a credited deposit."""
        return not self.completed


class TransferBridge:
    """
    Withdraw-and-wait transfer between two exchanges.

    Features:
    - Deposit matching by transaction id, else by amount and recency
    - Explicit timeout and poll interval
    - Cancellable wait (plain asyncio sleeps)
    - Transient deposit-history errors keep the loop polling
    """

    def __init__(
        self,
        timeout_ms: int,
        poll_interval_ms: int,
        default_network: str,
        match_window_ms: int = DEPOSIT_MATCH_WINDOW_MS,
        amount_tolerance: Decimal = DEPOSIT_AMOUNT_TOLERANCE,
    ) -> None:
        """
        Initialize bridge.

        Args:
            timeout_ms: Maximum time to wait for the deposit.
            poll_interval_ms: Sleep between deposit history polls.
            default_network: Network for assets without a native mapping.
            match_window_ms: How far before the withdrawal a deposit may
                be timestamped and still match.
            amount_tolerance: Relative amount difference accepted when
                matching without a transaction id (withdrawal fees).
        """
        self._timeout_ms = timeout_ms
        self._poll_interval_ms = poll_interval_ms
        self._default_network = default_network
        self._match_window_ms = match_window_ms
        self._amount_tolerance = amount_tolerance

    def network_for(self, currency: str) -> str:
        """Withdrawal network for an asset."""
        return NATIVE_NETWORKS.get(currency.upper(), self._default_network)

    async def transfer(
        self,
        source: ExchangeAdapter,
        destination: ExchangeAdapter,
        currency: str,
        amount: Decimal,
    ) -> TransferOutcome:
        """
        Move ``amount`` of ``currency`` from source to destination.

        Args:
            source: Exchange holding the asset.
            destination: Exchange receiving the asset.
            currency: Asset to move.
            amount: Quantity to withdraw.

        Returns:
            TransferOutcome; check ``completed`` for the deposit state.

        Raises:
            TransferFailed: If the address or withdrawal call fails, or
                the matching deposit is reported failed.
        """
        started_ms = get_timestamp_ms()
        network = self.network_for(currency)

        try:
            address = await destination.get_deposit_address(currency, network)
        except ExchangeError as e:
            raise TransferFailed(f"Deposit address on {destination.name} failed: {e}") from e

        request = WithdrawalRequest(
            currency=currency,
            address=address.address,
            network=address.network or network,
            amount=amount,
            tag=address.tag,
        )
        try:
            withdrawal = await source.withdraw(request)
        except ExchangeError as e:
            raise TransferFailed(f"Withdrawal from {source.name} failed: {e}") from e

        logger.info(
            f"Withdrew {amount} {currency} from {source.name} to {destination.name} "
            f"via {request.network} (id={withdrawal.withdrawal_id}, tx={withdrawal.tx_id})"
        )

        deposit = await self.wait_for_deposit(
            destination, currency, amount, withdrawal.tx_id, started_ms
        )
        return TransferOutcome(
            currency=currency,
            amount=amount,
            tx_id=withdrawal.tx_id,
            withdrawal_id=withdrawal.withdrawal_id,
            deposit=deposit,
            elapsed_ms=get_timestamp_ms() - started_ms,
        )

    async def wait_for_deposit(
        self,
        destination: ExchangeAdapter,
        currency: str,
        amount: Decimal,
        tx_id: str | None,
        started_ms: int,
    ) -> Deposit | None:
        """
        Poll deposit history until a match completes or the timeout elapses.

        Returns:
            The completed deposit, or None on timeout.

        Raises:
            TransferFailed: If the matched deposit failed.
        """
        deadline = time.monotonic() + self._timeout_ms / 1000
        interval = self._poll_interval_ms / 1000
        polls = 0

        while True:
            polls += 1
            try:
                deposits = await destination.get_deposits(currency)
            except ExchangeError as e:
                logger.warning(f"Deposit poll {polls} on {destination.name} failed: {e}")
                deposits = []

            match = self.match_deposit(deposits, amount, tx_id, started_ms)
            if match is not None:
                if match.is_completed:
                    logger.info(f"Deposit of {match.amount} {currency} credited after {polls} polls")
                    return match
                if match.status == "failed":
                    raise TransferFailed(
                        f"Deposit of {match.amount} {currency} on {destination.name} failed"
                    )

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(
                    f"No completed {currency} deposit on {destination.name} "
                    f"after {self._timeout_ms}ms ({polls} polls)"
                )
                return None
            await asyncio.sleep(min(interval, remaining))

    def match_deposit(
        self,
        deposits: list[Deposit],
        amount: Decimal,
        tx_id: str | None,
        started_ms: int,
    ) -> Deposit | None:
        """
        Find the deposit belonging to a withdrawal.

        Transaction id wins when known; otherwise the newest deposit
        inside the recency window whose amount is within tolerance.
        """
        if tx_id:
            for deposit in deposits:
                if deposit.tx_id == tx_id:
                    return deposit

        earliest = started_ms - self._match_window_ms
        tolerance = amount * self._amount_tolerance
        candidates = [
            d
            for d in deposits
            if d.timestamp_ms >= earliest and abs(d.amount - amount) <= tolerance
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda d: d.timestamp_ms)
