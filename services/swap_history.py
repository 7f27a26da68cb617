"""Daily swap volume and price history of a pair."""
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from loguru import logger

from models.schemas import SwapEvent, SwapHistory


class LedgerLogs(Protocol):
    async def get_swap_events(self, pair: str, from_block: int = 0, to_block="latest") -> List[SwapEvent]:
        ...

    async def get_block_timestamp(self, block_number: int) -> int:
        ...


def _swap_price(event: SwapEvent, decimals0: int, decimals1: int) -> Optional[float]:
    """Token1 per token0 for one swap, in human units."""
    if event.amount0_in > 0 and event.amount1_out > 0:
        amount0, amount1 = event.amount0_in, event.amount1_out
    elif event.amount1_in > 0 and event.amount0_out > 0:
        amount0, amount1 = event.amount0_out, event.amount1_in
    else:
        return None
    return (amount1 / 10 ** decimals1) / (amount0 / 10 ** decimals0)


def aggregate_swaps(
    events: Iterable[Tuple[SwapEvent, int]],
    days: int,
    today: date,
    decimals0: int = 18,
    decimals1: int = 18,
) -> SwapHistory:
    """
    Bucket swaps by UTC day.

    Args:
        events: (event, block timestamp) pairs
        days: Number of days ending with ``today``
        today: Last day of the range
        decimals0: Token0 decimals, for volume and price
        decimals1: Token1 decimals, for price

    Returns:
        SwapHistory with one entry per day
    """
    volume0: Dict[str, int] = defaultdict(int)
    prices: Dict[str, List[float]] = defaultdict(list)
    swap_count = 0

    for event, timestamp in events:
        day = datetime.fromtimestamp(timestamp, tz=timezone.utc).date().isoformat()
        volume0[day] += event.amount0_in + event.amount0_out
        price = _swap_price(event, decimals0, decimals1)
        if price is not None and price > 0:
            prices[day].append(price)
        swap_count += 1

    labels = []
    volume_data = []
    price_data = []
    for offset in range(days - 1, -1, -1):
        day = (today - timedelta(days=offset)).isoformat()
        labels.append(day)
        volume_data.append(volume0.get(day, 0) / 10 ** decimals0)
        day_prices = prices.get(day)
        price_data.append(sum(day_prices) / len(day_prices) if day_prices else 0.0)

    return SwapHistory(
        labels=labels,
        volume_data=volume_data,
        price_data=price_data,
        swap_count=swap_count,
    )


class SwapHistoryService:
    """Reads Swap events from chain and aggregates them per day."""

    def __init__(self, ledger: LedgerLogs):
        self.ledger = ledger

    async def fetch(
        self,
        pair: str,
        days: int = 30,
        decimals0: int = 18,
        decimals1: int = 18,
        today: Optional[date] = None,
    ) -> SwapHistory:
        """Swap history of ``pair`` over the last ``days`` days."""
        if days < 1:
            raise ValueError("days must be positive")
        today = today or datetime.now(timezone.utc).date()
        logger.info("Fetching swap history for pool {} for last {} days", pair, days)

        events = await self.ledger.get_swap_events(pair)

        timestamps: Dict[int, int] = {}
        dated = []
        for event in events:
            if event.block_number not in timestamps:
                timestamps[event.block_number] = await self.ledger.get_block_timestamp(
                    event.block_number
                )
            dated.append((event, timestamps[event.block_number]))

        history = aggregate_swaps(dated, days, today, decimals0, decimals1)
        logger.info(
            "Returning swap history with {} days ({} swaps)",
            len(history.labels),
            history.swap_count,
        )
        return history
