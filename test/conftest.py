"""Shared fixtures for the Reasoning Oracle test suite."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from reasoning_oracle.models import ReasoningRequest, RangeSnapshot
from reasoning_oracle.store import RequestStore

CONTRACT_ADDRESS = "0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d"
REQUESTER = "0x00000000000000000000000000000000000AAAaa"


def make_request(request_id: int, action_set=("noop", "burn"), block_number: int = 0, model: str = "m1") -> ReasoningRequest:
    """Build a ReasoningRequest with sensible defaults."""
    return ReasoningRequest(
        request_id=request_id,
        requester=REQUESTER,
        model=model,
        system_prompt="prompt",
        state_string="state",
        action_set=tuple(action_set),
        block_number=block_number,
    )


@pytest.fixture
def store(tmp_path):
    """A fresh on-disk SQLite store per test."""
    request_store = RequestStore.from_url(f"sqlite:///{tmp_path / 'oracle.db'}", busy_timeout=5)
    request_store.create_schema()
    yield request_store
    request_store.engine.dispose()


@pytest.fixture
def mock_chain():
    """A ChainClient stand-in with async methods."""
    chain = MagicMock()
    chain.contract_address = CONTRACT_ADDRESS
    chain.get_block_number = AsyncMock(return_value=0)
    chain.fetch_range = AsyncMock(return_value=RangeSnapshot(latest_block=0))
    chain.get_request_info = AsyncMock()
    chain.submit_fulfillment = AsyncMock(return_value="0x" + "ab" * 32)
    return chain


@pytest.fixture
def mock_inference():
    """An InferenceClient stand-in."""
    inference = MagicMock()
    inference.complete = AsyncMock(return_value="burn")
    return inference
