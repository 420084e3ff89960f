"""
Reasoning Oracle node.

This module contains the service that wires the store, chain client and
inference client together and runs the event indexer and fulfillment worker
as independent polling tasks. The two loops never talk to each other
directly; everything they share goes through the store.
"""

import asyncio
import logging

from .config import OracleConfig
from .event_indexer import EventIndexer
from .exceptions import BootError, ChainReadError
from .fulfillment_worker import FulfillmentWorker
from .store import RequestStore
from .utils.chain_client import ChainClient
from .utils.contract_utility import ContractUtility
from .utils.inference_client import InferenceClient
from .utils.trace_pinner import PlaceholderTracePinner

logger = logging.getLogger(__name__)

ROLES = ("all", "indexer", "worker")


class ReasoningOracleNode:
    """
    Main service that owns the polling loops and their lifecycle.

    """

    def __init__(
        self,
        config: OracleConfig,
        role: str = "all",
        store: RequestStore | None = None,
        chain: ChainClient | None = None,
        inference: InferenceClient | None = None,
    ):
        """
        Initialize the node.

        Args:
            config: Oracle configuration
            role: Which loops to run: "all", "indexer" or "worker"
            store: Pre-built store (built from config when omitted)
            chain: Pre-built chain client (built from config when omitted)
            inference: Pre-built inference client (built from config when omitted)
        """
        if role not in ROLES:
            raise ValueError(f"Unknown role {role!r}, expected one of {', '.join(ROLES)}")

        self.config = config
        self.role = role
        self.running = False

        self.store = store or RequestStore.from_url(
            config.store.database_url, config.store.busy_timeout
        )
        self.chain = chain or ChainClient(
            contract_util=ContractUtility(config.chain.rpc_url, config.chain.private_key),
            contract_address=config.chain.contract_address,
            request_timeout=config.chain.request_timeout,
            gas_limit=config.chain.gas_limit,
        )
        self.inference = inference or InferenceClient(
            api_url=config.inference.api_url,
            api_key=config.inference.api_key,
            timeout=config.inference.timeout,
            temperature=config.inference.temperature,
            max_tokens=config.inference.max_tokens,
        )

        self.indexer = EventIndexer(
            chain=self.chain,
            store=self.store,
            max_block_range=config.scheduling.max_block_range,
        )
        self.worker = FulfillmentWorker(
            chain=self.chain,
            store=self.store,
            inference=self.inference,
            trace_pinner=PlaceholderTracePinner(config.trace_reference),
            default_model=config.inference.default_model,
            worker_index=config.scheduling.worker_index,
            worker_count=config.scheduling.worker_count,
            precheck_fulfillment=config.scheduling.precheck_fulfillment,
        )

        self.shutdown_event = asyncio.Event()

    @property
    def runs_indexer(self) -> bool:
        return self.role in ("all", "indexer")

    @property
    def runs_worker(self) -> bool:
        return self.role in ("all", "worker")

    async def initialize_cursor(self) -> int:
        """
        Make sure the sync cursor exists before the indexer starts.

        An existing cursor is kept. Otherwise it is seeded from START_BLOCK or
        the current chain head.

        Raises:
            BootError: If the chain head cannot be read and no cursor exists
        """
        cursor = await asyncio.to_thread(self.store.get_cursor)
        if cursor is not None:
            logger.info(f"Resuming from persisted cursor at block {cursor}")
            return cursor

        start_block = self.config.scheduling.start_block
        if start_block is None:
            try:
                start_block = await self.chain.get_block_number()
            except ChainReadError as e:
                raise BootError(f"Critical RPC failure during boot: {e}") from e

        return await asyncio.to_thread(self.store.initialize_cursor, start_block)

    async def status_line(self) -> str:
        """Build one status line from the store and the running loops."""
        counts = await asyncio.to_thread(self.store.count_by_status)
        cursor = await asyncio.to_thread(self.store.get_cursor)
        parts = [
            f"cursor={cursor}",
            f"pending={counts['PENDING']}",
            f"processed={counts['PROCESSED']}",
            f"fulfilled={counts['FULFILLED']}",
        ]

        if self.runs_indexer:
            status = self.indexer.get_status()
            last = status["last_tick"]
            parts.append(
                f"indexer_ticks={status['ticks']} indexer_failed={status['failed_ticks']} "
                f"last_range={f'{last.from_block}-{last.to_block}' if last else 'none'}"
            )
        if self.runs_worker:
            stats = self.worker.get_stats()
            parts.append(
                f"worker={stats['shard']} submitted={stats['processed']} "
                f"retry={stats['retry']} invalid={stats['invalid']} rejected={stats['rejected']}"
            )
        return "Status: " + " ".join(parts)

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.config.scheduling.status_interval)
            try:
                line = await self.status_line()
            except Exception as e:
                logger.warning(f"Status read failed: {e}")
                continue
            logger.info(line)

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any critical task has failed."""
        for name, task in tasks.items():
            if task.done():
                if not task.cancelled() and task.exception() is not None:
                    logger.error(f"{name} task failed: {task.exception()}", exc_info=task.exception())
                else:
                    logger.error(f"{name} task exited unexpectedly")
                return False
        return True

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Stop the loops and cancel all running tasks."""
        await self.indexer.stop()
        await self.worker.stop()

        for task in tasks.values():
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks.values(), return_exceptions=True)

    async def run(self) -> None:
        """
        Main event loop for the node.

        Raises:
            BootError: If the cursor cannot be initialized
        """
        self.running = True
        logger.info(f"Reasoning Oracle node starting (role={self.role})...")

        await asyncio.to_thread(self.store.create_schema)

        tasks: dict[str, asyncio.Task] = {}
        try:
            if self.runs_indexer:
                cursor = await self.initialize_cursor()
                logger.info(
                    f"Watching {self.config.chain.contract_address} on "
                    f"{self.config.chain.rpc_url} starting at block: {cursor}"
                )
                tasks["indexer"] = asyncio.create_task(
                    self.indexer.start_polling(interval=self.config.scheduling.indexer_interval)
                )
            if self.runs_worker:
                tasks["worker"] = asyncio.create_task(
                    self.worker.start_polling(interval=self.config.scheduling.worker_interval)
                )
            tasks["status"] = asyncio.create_task(self._periodic_status_logger())

            logger.info("Polling loops started")

            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass

                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure, shutting down")
                    break

        finally:
            self.running = False
            await self._cleanup_tasks(tasks)
            logger.info("Reasoning Oracle node stopped")

    def stop(self) -> None:
        """Stop scheduling future ticks."""
        self.running = False
        self.shutdown_event.set()
