"""
Event indexer: chain to store synchronization.

Each tick reads the next block range of ReasoningRequested and
ReasoningFulfilled logs, applies them to the store idempotently and only then
moves the persisted cursor forward. A tick that fails anywhere leaves the
cursor untouched, so the same range is simply read again on the next tick.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from .models import RequestStatus
from .store import RequestStore
from .utils.chain_client import ChainClient


@dataclass(frozen=True, slots=True)
class IndexerTick:
    """Outcome of one indexer tick."""

    from_block: int
    to_block: int
    requested: int = 0
    inserted: int = 0
    fulfilled: int = 0
    cursor: int = 0


class EventIndexer:
    """
    Polls the oracle contract and mirrors its events into the store.

    """

    def __init__(
        self,
        chain: ChainClient,
        store: RequestStore,
        max_block_range: int = 2000,
    ):
        """
        Initialize the event indexer.

        Args:
            chain: Batching chain client
            store: Persisted request store
            max_block_range: Widest block span read in a single tick
        """
        self.chain = chain
        self.store = store
        self.max_block_range = max_block_range

        self.is_running = False
        self.ticks = 0
        self.failed_ticks = 0
        self.last_tick: IndexerTick | None = None

        # Setup logging
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def plan_range(self, cursor: int, head: int) -> tuple[int, int] | None:
        """
        Compute the block range for the next tick.

        Returns:
            (from_block, to_block) inclusive, or None when the cursor is
            already at or past ``head``
        """
        if head <= cursor:
            return None
        return cursor + 1, min(head, cursor + self.max_block_range)

    async def poll_once(self) -> IndexerTick | None:
        """
        Run one synchronization tick.

        Returns:
            IndexerTick describing what was applied, or None if there was
            nothing to do

        Raises:
            ChainReadError: If any chain read failed (cursor unchanged)
        """
        cursor = await asyncio.to_thread(self.store.get_cursor)
        if cursor is None:
            self.logger.warning("Sync cursor not initialized, skipping tick")
            return None

        head = await self.chain.get_block_number()
        planned = self.plan_range(cursor, head)
        if planned is None:
            return None
        from_block, to_block = planned

        snapshot = await self.chain.fetch_range(from_block, to_block)

        # The replica that answered the batch may be behind the one that
        # answered the head probe; never claim blocks it has not served.
        target = min(snapshot.latest_block, to_block)
        if target < from_block:
            self.logger.info(
                f"Indexer tick skipped: replica head {snapshot.latest_block} "
                f"behind range start {from_block}"
            )
            return None

        inserted = 0
        requested = [r for r in snapshot.requested if not r.block_number or r.block_number <= target]
        for request in requested:
            if await asyncio.to_thread(self.store.insert_if_absent, request):
                inserted += 1
                self.logger.info(f"Captured {request}")

        fulfilled = [f for f in snapshot.fulfilled if not f.block_number or f.block_number <= target]
        for event in fulfilled:
            await asyncio.to_thread(self.store.set_status, event.request_id, RequestStatus.FULFILLED)
            self.logger.info(f"Captured ReasoningFulfilled #{event.request_id} -> {event.result_action}")

        await asyncio.to_thread(self.store.advance_cursor, target)

        tick = IndexerTick(
            from_block=from_block,
            to_block=target,
            requested=len(requested),
            inserted=inserted,
            fulfilled=len(fulfilled),
            cursor=target,
        )
        self.last_tick = tick
        return tick

    async def start_polling(self, interval: float = 5) -> None:
        """
        Start polling at the specified interval until stopped.

        Errors abort the current tick only; the loop keeps going.

        Args:
            interval: Polling interval in seconds
        """
        if self.is_running:
            self.logger.warning("Indexer already running")
            return

        self.is_running = True
        self.logger.info(
            f"Starting indexer on {self.chain.contract_address} every {interval} seconds "
            f"(max range {self.max_block_range} blocks)"
        )

        while self.is_running:
            try:
                tick = await self.poll_once()
                self.ticks += 1
                if tick:
                    self.logger.info(
                        f"Indexer tick ok range={tick.from_block}-{tick.to_block} "
                        f"requested={tick.requested} new={tick.inserted} "
                        f"fulfilled={tick.fulfilled} cursor={tick.cursor}"
                    )
                else:
                    self.logger.debug("Indexer tick idle: no new blocks")
            except asyncio.CancelledError:
                self.logger.info("Indexer cancelled")
                raise
            except Exception as e:
                self.failed_ticks += 1
                self.logger.error(f"Indexer tick failed, cursor unchanged: {e}")

            await asyncio.sleep(interval)

    async def stop(self) -> None:
        """Stop scheduling further ticks."""
        self.logger.info("Stopping indexer")
        self.is_running = False

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the indexer.

        Returns:
            Dictionary with status information
        """
        return {
            "is_running": self.is_running,
            "ticks": self.ticks,
            "failed_ticks": self.failed_ticks,
            "last_tick": self.last_tick,
            "max_block_range": self.max_block_range,
        }
