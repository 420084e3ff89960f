#!/usr/bin/env python3
"""Fulfillment worker: store to AI to chain execution.

This module picks up PENDING requests owned by this shard, asks the inference
provider for an action, validates it against the request's action set and
submits the on-chain fulfillment. The only status change it makes on its own
is PENDING -> PROCESSED; FULFILLED is written when the chain says the request
is already closed.
"""

import asyncio
import logging
from collections import Counter
from enum import Enum
from typing import TYPE_CHECKING, Any

from .exceptions import AlreadyFulfilledError, ChainReadError, InferenceError, InvalidRequestError, SubmissionError
from .models import RequestStatus, StoredRequest
from .reasoning import build_messages, choose_action, owns_request

if TYPE_CHECKING:
    from .store import RequestStore
    from .utils.chain_client import ChainClient
    from .utils.inference_client import InferenceClient
    from .utils.trace_pinner import TracePinner

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """Result of handling one request in a worker tick."""

    PROCESSED = "processed"
    FULFILLED = "fulfilled"
    RETRY = "retry"
    INVALID = "invalid"


class FulfillmentWorker:
    """Processes PENDING requests for one shard of the request id space."""

    def __init__(
        self,
        chain: "ChainClient",
        store: "RequestStore",
        inference: "InferenceClient",
        trace_pinner: "TracePinner",
        default_model: str,
        worker_index: int = 0,
        worker_count: int = 1,
        precheck_fulfillment: bool = True,
    ) -> None:
        """Initialize the fulfillment worker.

        Args:
            chain: Chain client used for the pre-check and submission
            store: Persisted request store
            inference: Inference provider client
            trace_pinner: Produces the trace reference for each fulfillment
            default_model: Model used when a request names none
            worker_index: This instance's shard index
            worker_count: Total number of worker shards
            precheck_fulfillment: Ask the contract before spending inference
        """
        self.chain = chain
        self.store = store
        self.inference = inference
        self.trace_pinner = trace_pinner
        self.default_model = default_model
        self.worker_index = worker_index
        self.worker_count = worker_count
        self.precheck_fulfillment = precheck_fulfillment

        # Requests that can never be fulfilled (empty action set); logged once
        self.rejected: set[int] = set()

        self.is_running = False
        self.totals: Counter[str] = Counter()

    def owned(self, requests: list[StoredRequest]) -> list[StoredRequest]:
        return [
            r for r in requests
            if owns_request(r.request_id, self.worker_index, self.worker_count)
        ]

    async def poll_once(self) -> Counter[str]:
        """
        Run one worker tick over all PENDING requests owned by this shard.

        Returns:
            Counter of outcomes for this tick
        """
        pending = await asyncio.to_thread(self.store.list_by_status, RequestStatus.PENDING)
        owned = self.owned(pending)
        outcomes: Counter[str] = Counter()

        for request in owned:
            try:
                outcome = await self.process_request(request)
            except Exception as e:
                logger.error(f"Unexpected failure on Request #{request.request_id}: {e}", exc_info=True)
                outcome = Outcome.RETRY
            outcomes[outcome.value] += 1

        self.totals.update(outcomes)
        return outcomes

    async def _already_fulfilled_on_chain(self, request_id: int) -> bool:
        try:
            info = await self.chain.get_request_info(request_id)
        except ChainReadError as e:
            # Older contracts may lack getRequestInfo; proceed without the check
            logger.warning(f"Pre-check for Request #{request_id} failed, proceeding: {e}")
            return False
        return info.is_fulfilled

    async def process_request(self, request: StoredRequest) -> Outcome:
        """
        Take one PENDING request as far as it can go.

        Args:
            request: Stored request in PENDING status

        Returns:
            Outcome describing what happened; RETRY leaves it PENDING
        """
        request_id = request.request_id
        if request_id in self.rejected:
            return Outcome.INVALID

        logger.info(f"Processing Request #{request_id} for {request.model} from {request.requester}")

        if self.precheck_fulfillment and await self._already_fulfilled_on_chain(request_id):
            logger.info(f"Request #{request_id} is already fulfilled on-chain. Skipping AI call.")
            await asyncio.to_thread(self.store.set_status, request_id, RequestStatus.FULFILLED)
            return Outcome.FULFILLED

        if not request.action_set:
            self.rejected.add(request_id)
            logger.error(f"Request #{request_id} has an empty action set and cannot be fulfilled")
            return Outcome.INVALID

        messages = build_messages(request.system_prompt, request.state_string, request.action_set)
        model = request.model or self.default_model

        try:
            raw_output = await self.inference.complete(model, messages)
        except InferenceError as e:
            logger.warning(f"Inference failed for Request #{request_id}, will retry: {e}")
            return Outcome.RETRY

        try:
            action, fell_back = choose_action(raw_output, request.action_set)
        except InvalidRequestError as e:
            self.rejected.add(request_id)
            logger.error(f"Request #{request_id} rejected: {e}")
            return Outcome.INVALID

        if fell_back:
            logger.warning(f"Hallucination detected on Request #{request_id}: {raw_output!r}. Fallback to {action!r}")
        logger.info(f"Reasoned action for Request #{request_id}: {action}")

        trace_reference = await self.trace_pinner.pin(request, raw_output, action)

        try:
            tx_hash = await self.chain.submit_fulfillment(request_id, action, trace_reference)
        except AlreadyFulfilledError as e:
            logger.info(f"Request #{request_id} fulfilled elsewhere, closing locally: {e.reason or e}")
            await asyncio.to_thread(self.store.set_status, request_id, RequestStatus.FULFILLED)
            return Outcome.FULFILLED
        except SubmissionError as e:
            logger.error(f"Submission failed for Request #{request_id}, will retry: {e}")
            return Outcome.RETRY

        logger.info(f"Tx broadcasted for Request #{request_id}: {tx_hash}. Updating state to PROCESSED.")
        moved = await asyncio.to_thread(
            self.store.transition, request_id, RequestStatus.PENDING, RequestStatus.PROCESSED
        )
        if not moved:
            logger.debug(f"Request #{request_id} left PENDING before PROCESSED could be recorded")
        return Outcome.PROCESSED

    async def start_polling(self, interval: float = 3) -> None:
        """Run worker ticks at ``interval`` seconds until stopped."""
        if self.is_running:
            logger.warning("Worker already running")
            return

        self.is_running = True
        logger.info(
            f"Starting fulfillment worker shard {self.worker_index}/{self.worker_count} "
            f"every {interval} seconds"
        )

        while self.is_running:
            try:
                outcomes = await self.poll_once()
                if outcomes:
                    logger.info(
                        "Worker tick ok "
                        + " ".join(f"{o.value}={outcomes.get(o.value, 0)}" for o in Outcome)
                    )
                else:
                    logger.debug("Worker tick idle: no owned PENDING requests")
            except asyncio.CancelledError:
                logger.info("Worker cancelled")
                raise
            except Exception as e:
                logger.error(f"Worker tick failed: {e}")

            await asyncio.sleep(interval)

    async def stop(self) -> None:
        """Stop scheduling further ticks."""
        logger.info("Stopping fulfillment worker")
        self.is_running = False

    def get_stats(self) -> dict[str, Any]:
        return {
            "shard": f"{self.worker_index}/{self.worker_count}",
            "rejected": len(self.rejected),
            **{o.value: self.totals.get(o.value, 0) for o in Outcome},
        }
