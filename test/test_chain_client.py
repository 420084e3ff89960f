#!/usr/bin/env python3
"""Tests for the ChainClient.

The AsyncWeb3 connection is replaced by mocks; log decoding runs against
real ABI-encoded logs.
"""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

from eth_account import Account
from web3.exceptions import ContractLogicError
from web3.types import HexBytes

from conftest import CONTRACT_ADDRESS
from reasoning_oracle.exceptions import AlreadyFulfilledError, ChainReadError, SubmissionError
from reasoning_oracle.utils.chain_client import ChainClient, is_already_fulfilled_revert
from reasoning_oracle.utils.contract_utility import ContractUtility

PRIVATE_KEY = "0x" + "1" * 64
REQUESTER = "0x00000000000000000000000000000000000AAAaa"


def _batch_mock(results):
    """Mock ``w3.batch_requests()`` returning ``results`` from async_execute."""
    batch = MagicMock()
    batch.async_execute = AsyncMock(return_value=results)
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=batch)
    context.__aexit__ = AsyncMock(return_value=False)
    w3 = MagicMock()
    w3.batch_requests.return_value = context
    return w3, batch


class TestRevertClassification(unittest.TestCase):
    """Tests for is_already_fulfilled_revert."""

    def test_matches_reason_case_insensitively(self):
        assert is_already_fulfilled_revert(ContractLogicError("execution reverted: Request Already Fulfilled"))

    def test_matches_custom_error_name(self):
        assert is_already_fulfilled_revert(ContractLogicError("execution reverted: AlreadyFulfilled()"))

    def test_other_reason_does_not_match(self):
        assert not is_already_fulfilled_revert(ContractLogicError("execution reverted: Not authorized"))


class TestChainClient(unittest.IsolatedAsyncioTestCase):
    """Test cases for ChainClient."""

    def setUp(self):
        """Set up a client bound to an unreachable RPC; nothing is dialled at init."""
        self.util = ContractUtility("http://localhost:8545", PRIVATE_KEY)
        self.client = ChainClient(self.util, CONTRACT_ADDRESS.lower(), request_timeout=1)

    def test_init_checksums_address_and_signer(self):
        assert self.client.contract_address == CONTRACT_ADDRESS
        assert self.client.signer_address == Account.from_key(PRIVATE_KEY).address

    def test_read_only_client_has_no_signer(self):
        client = ChainClient(ContractUtility("http://localhost:8545"), CONTRACT_ADDRESS)
        assert client.signer_address is None

    def test_missing_connection_is_rejected(self):
        with self.assertRaises(ValueError):
            ChainClient(ContractUtility(), CONTRACT_ADDRESS)

    async def test_fetch_range_batches_three_calls(self):
        """Head and both log ranges travel in one batch."""
        w3, batch = _batch_mock([1234, [], []])
        self.client.w3 = w3

        snapshot = await self.client.fetch_range(1000, 1200)

        assert batch.add.call_count == 3
        assert snapshot.latest_block == 1234
        assert snapshot.requested == [] and snapshot.fulfilled == []
        filters = [call.args[0] for call in w3.eth.get_logs.call_args_list]
        assert [(f["fromBlock"], f["toBlock"]) for f in filters] == [(1000, 1200), (1000, 1200)]
        assert filters[0]["topics"] == [self.client.requested_event.topic]
        assert filters[1]["topics"] == [self.client.fulfilled_event.topic]
        assert all(f["address"] == CONTRACT_ADDRESS for f in filters)

    async def test_fetch_range_failure_is_chain_read_error(self):
        w3, batch = _batch_mock(None)
        batch.async_execute.side_effect = ValueError("block range too large")
        self.client.w3 = w3

        with self.assertRaises(ChainReadError):
            await self.client.fetch_range(1, 50_000)

    async def test_block_number_timeout(self):
        async def hang():
            await asyncio.sleep(10)

        self.client.request_timeout = 0.01
        self.client.w3 = MagicMock()
        self.client.w3.eth.get_block_number = MagicMock(side_effect=lambda: hang())

        with self.assertRaises(ChainReadError):
            await self.client.get_block_number()

    def test_decode_requested_log(self):
        codec = self.util.w3.codec
        log = {
            "address": CONTRACT_ADDRESS,
            "topics": [
                HexBytes(self.client.requested_event.topic),
                HexBytes((7).to_bytes(32, "big")),
                HexBytes(bytes(12) + bytes.fromhex(REQUESTER[2:])),
            ],
            "data": HexBytes(codec.encode(
                ["string", "string", "string", "string[]"],
                ["m1", "be careful", "price=1", ["noop", "burn"]],
            )),
            "blockNumber": 105,
            "blockHash": HexBytes(b"\x01" * 32),
            "transactionHash": HexBytes(b"\x02" * 32),
            "transactionIndex": 0,
            "logIndex": 0,
        }

        request = self.client.decode_requested(log)

        assert request.request_id == 7
        assert request.requester.lower() == REQUESTER.lower()
        assert request.model == "m1"
        assert request.state_string == "price=1"
        assert request.action_set == ("noop", "burn")
        assert request.block_number == 105

    def test_undecodable_log_raises(self):
        log = {
            "address": CONTRACT_ADDRESS,
            "topics": [HexBytes(self.client.fulfilled_event.topic)],
            "data": HexBytes(b""),
            "blockNumber": 9,
            "blockHash": HexBytes(b"\x01" * 32),
            "transactionHash": HexBytes(b"\x02" * 32),
            "transactionIndex": 0,
            "logIndex": 0,
        }

        with self.assertRaises(ChainReadError):
            self.client.decode_fulfilled(log)

    async def test_get_request_info(self):
        self.client.contract = MagicMock()
        self.client.contract.functions.getRequestInfo.return_value.call = AsyncMock(
            return_value=(REQUESTER, "m1", True)
        )

        info = await self.client.get_request_info(7)

        self.client.contract.functions.getRequestInfo.assert_called_once_with(7)
        assert info.is_fulfilled is True
        assert info.model == "m1"

    async def test_submit_simulates_then_broadcasts(self):
        self.client.contract = MagicMock()
        fn = self.client.contract.functions.fulfillReason.return_value
        fn.call = AsyncMock(return_value=[])
        fn.transact = AsyncMock(return_value=HexBytes("0x" + "ab" * 32))

        tx_hash = await self.client.submit_fulfillment(7, "burn", "QmTrace")

        self.client.contract.functions.fulfillReason.assert_called_once_with(7, "burn", "QmTrace")
        fn.call.assert_awaited_once_with({"from": self.client.signer_address})
        fn.transact.assert_awaited_once_with({"from": self.client.signer_address, "gas": 500_000})
        assert tx_hash == "0x" + "ab" * 32

    async def test_submit_already_fulfilled_revert(self):
        self.client.contract = MagicMock()
        fn = self.client.contract.functions.fulfillReason.return_value
        fn.call = AsyncMock(side_effect=ContractLogicError("execution reverted: Request already fulfilled"))
        fn.transact = AsyncMock()

        with self.assertRaises(AlreadyFulfilledError) as ctx:
            await self.client.submit_fulfillment(7, "burn", "QmTrace")

        assert ctx.exception.request_id == 7
        fn.transact.assert_not_awaited()

    async def test_unrecognised_revert_checks_contract_state(self):
        """An opaque revert on a fulfilled request is still terminal."""
        self.client.contract = MagicMock()
        fn = self.client.contract.functions.fulfillReason.return_value
        fn.call = AsyncMock(side_effect=ContractLogicError("execution reverted"))
        self.client.contract.functions.getRequestInfo.return_value.call = AsyncMock(
            return_value=(REQUESTER, "m1", True)
        )

        with self.assertRaises(AlreadyFulfilledError):
            await self.client.submit_fulfillment(7, "burn", "QmTrace")

    async def test_unrecognised_revert_on_open_request_is_retryable(self):
        self.client.contract = MagicMock()
        fn = self.client.contract.functions.fulfillReason.return_value
        fn.call = AsyncMock(side_effect=ContractLogicError("execution reverted: Not authorized"))
        self.client.contract.functions.getRequestInfo.return_value.call = AsyncMock(
            return_value=(REQUESTER, "m1", False)
        )

        with self.assertRaises(SubmissionError) as ctx:
            await self.client.submit_fulfillment(7, "burn", "QmTrace")

        assert not isinstance(ctx.exception, AlreadyFulfilledError)

    async def test_broadcast_failure_is_retryable(self):
        self.client.contract = MagicMock()
        fn = self.client.contract.functions.fulfillReason.return_value
        fn.call = AsyncMock(return_value=[])
        fn.transact = AsyncMock(side_effect=ValueError("nonce too low"))

        with self.assertRaises(SubmissionError):
            await self.client.submit_fulfillment(7, "burn", "QmTrace")

    async def test_submit_without_signer(self):
        client = ChainClient(ContractUtility("http://localhost:8545"), CONTRACT_ADDRESS)

        with self.assertRaises(SubmissionError):
            await client.submit_fulfillment(7, "burn", "QmTrace")
