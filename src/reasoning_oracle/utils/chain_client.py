"""
Batching RPC facade for the reasoning oracle contract.

Both polling loops go through this class. Reads that must agree with each
other (chain head and the log ranges derived from it) are sent as a single
JSON-RPC batch so that one load-balanced replica answers all of them.
"""

import asyncio
import logging
from typing import Any

from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError
from web3.types import EventData, LogReceipt

from ..exceptions import AlreadyFulfilledError, ChainReadError, SubmissionError
from ..models import FulfillmentEvent, OnChainRequestInfo, RangeSnapshot, ReasoningRequest
from .contract_utility import ContractUtility

ALREADY_FULFILLED_MARKERS = ("already fulfilled", "alreadyfulfilled", "request fulfilled")


def is_already_fulfilled_revert(error: Exception) -> bool:
    """Return True if a revert reason says the request was already fulfilled."""
    message = " ".join(str(part) for part in (error, getattr(error, "message", ""), getattr(error, "data", "")))
    message = message.lower()
    return any(marker in message for marker in ALREADY_FULFILLED_MARKERS)


class ChainClient:
    """
    Reads oracle events and submits fulfillments over HTTP JSON-RPC.

    """

    def __init__(
        self,
        contract_util: ContractUtility,
        contract_address: str,
        request_timeout: int = 30,
        gas_limit: int = 500_000,
    ):
        """
        Initialize the chain client.

        Args:
            contract_util: Utility holding the AsyncWeb3 connection and signer
            contract_address: Address of the oracle contract
            request_timeout: Upper bound in seconds for any single RPC step
            gas_limit: Gas limit for fulfillment transactions
        """
        if contract_util.w3 is None:
            raise ValueError("ContractUtility has no RPC connection")

        self.contract_util = contract_util
        self.w3: AsyncWeb3 = contract_util.w3
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.request_timeout = request_timeout
        self.gas_limit = gas_limit

        self.contract = self.w3.eth.contract(
            address=self.contract_address,
            abi=ContractUtility.get_contract_abi("ReasoningOracle"),
        )
        self.requested_event = self.contract.events.ReasoningRequested()
        self.fulfilled_event = self.contract.events.ReasoningFulfilled()

        # Setup logging
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def signer_address(self) -> str | None:
        account = self.contract_util.account
        return account.address if account else None

    async def _bounded(self, awaitable: Any, what: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.request_timeout)
        except asyncio.TimeoutError:
            raise ChainReadError(f"{what} timed out after {self.request_timeout}s") from None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_block_number(self) -> int:
        """Return the chain head reported by whichever replica answers."""
        try:
            return int(await self._bounded(self.w3.eth.get_block_number(), "eth_blockNumber"))
        except ChainReadError:
            raise
        except Exception as e:
            raise ChainReadError(f"eth_blockNumber failed: {e}") from e

    def _log_filter(self, topic: Any, from_block: int, to_block: int) -> dict[str, Any]:
        return {
            "address": self.contract_address,
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [topic],
        }

    async def fetch_range(self, from_block: int, to_block: int) -> RangeSnapshot:
        """
        Read the head and both event ranges in one batched round trip.

        Args:
            from_block: First block of the range (inclusive)
            to_block: Last block of the range (inclusive)

        Returns:
            RangeSnapshot whose latest_block comes from the same replica that
            served the log queries

        Raises:
            ChainReadError: If the batch or any of its entries failed
        """

        async def _execute() -> list[Any]:
            async with self.w3.batch_requests() as batch:
                batch.add(self.w3.eth.get_block_number())
                batch.add(self.w3.eth.get_logs(
                    self._log_filter(self.requested_event.topic, from_block, to_block)
                ))
                batch.add(self.w3.eth.get_logs(
                    self._log_filter(self.fulfilled_event.topic, from_block, to_block)
                ))
                return await batch.async_execute()

        try:
            latest, requested_logs, fulfilled_logs = await self._bounded(_execute(), "batched log read")
        except ChainReadError:
            raise
        except Exception as e:
            raise ChainReadError(f"Batched read of blocks {from_block}-{to_block} failed: {e}") from e

        return RangeSnapshot(
            latest_block=int(latest),
            requested=[self.decode_requested(log) for log in requested_logs],
            fulfilled=[self.decode_fulfilled(log) for log in fulfilled_logs],
        )

    def _process_log(self, event_obj: Any, log: LogReceipt) -> EventData:
        try:
            return event_obj.process_log(log)
        except Exception as e:
            raise ChainReadError(
                f"Could not decode {event_obj.event_name} log "
                f"in block {log.get('blockNumber')}: {e}"
            ) from e

    def decode_requested(self, log: LogReceipt) -> ReasoningRequest:
        event = self._process_log(self.requested_event, log)
        args = event["args"]
        return ReasoningRequest(
            request_id=int(args["requestId"]),
            requester=str(args["requester"]),
            model=str(args["model"]),
            system_prompt=str(args["systemPrompt"]),
            state_string=str(args["stateString"]),
            action_set=tuple(str(action) for action in args["actionSet"]),
            block_number=int(event.get("blockNumber") or 0),
        )

    def decode_fulfilled(self, log: LogReceipt) -> FulfillmentEvent:
        event = self._process_log(self.fulfilled_event, log)
        args = event["args"]
        return FulfillmentEvent(
            request_id=int(args["requestId"]),
            requester=str(args["requester"]),
            result_action=str(args["resultAction"]),
            trace_reference=str(args["traceReference"]),
            block_number=int(event.get("blockNumber") or 0),
        )

    async def get_request_info(self, request_id: int) -> OnChainRequestInfo:
        """Call ``getRequestInfo`` on the oracle contract."""
        try:
            requester, model, is_fulfilled = await self._bounded(
                self.contract.functions.getRequestInfo(request_id).call(),
                "getRequestInfo",
            )
        except ChainReadError:
            raise
        except Exception as e:
            raise ChainReadError(f"getRequestInfo({request_id}) failed: {e}") from e
        return OnChainRequestInfo(requester=requester, model=model, is_fulfilled=bool(is_fulfilled))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _classify_revert(self, request_id: int, error: ContractLogicError) -> SubmissionError:
        if is_already_fulfilled_revert(error):
            return AlreadyFulfilledError(request_id, str(error))
        # Revert reason not recognised; ask the contract directly
        try:
            info = await self.get_request_info(request_id)
        except ChainReadError as e:
            self.logger.debug(f"Could not confirm fulfillment state of #{request_id}: {e}")
        else:
            if info.is_fulfilled:
                return AlreadyFulfilledError(request_id, str(error))
        return SubmissionError(f"fulfillReason({request_id}) reverted: {error}")

    async def submit_fulfillment(self, request_id: int, action: str, trace_reference: str) -> str:
        """
        Simulate and broadcast ``fulfillReason``.

        The transaction is not awaited for confirmation.

        Args:
            request_id: Request being fulfilled
            action: Chosen action string
            trace_reference: Opaque trace artifact reference

        Returns:
            Transaction hash as a 0x-prefixed hex string

        Raises:
            AlreadyFulfilledError: If the contract rejects the call because the
                request is already fulfilled
            SubmissionError: For any other (retryable) failure
        """
        sender = self.signer_address
        if not sender:
            raise SubmissionError("No signing key configured (ORACLE_WALLET_PK)")

        fn = self.contract.functions.fulfillReason(request_id, action, trace_reference)

        try:
            await self._bounded(fn.call({"from": sender}), "fulfillReason simulation")
        except ContractLogicError as e:
            raise await self._classify_revert(request_id, e) from e
        except ChainReadError as e:
            raise SubmissionError(str(e)) from e
        except Exception as e:
            raise SubmissionError(f"fulfillReason({request_id}) simulation failed: {e}") from e

        try:
            tx_hash = await self._bounded(
                fn.transact({"from": sender, "gas": self.gas_limit}),
                "fulfillReason broadcast",
            )
        except ContractLogicError as e:
            raise await self._classify_revert(request_id, e) from e
        except ChainReadError as e:
            raise SubmissionError(str(e)) from e
        except Exception as e:
            raise SubmissionError(f"fulfillReason({request_id}) broadcast failed: {e}") from e

        return Web3.to_hex(tx_hash)
