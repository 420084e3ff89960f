#!/usr/bin/env python3
"""Data models for the Reasoning Oracle node.

This module provides the immutable records passed between the chain client,
the event indexer, the fulfillment worker and the persisted store.
"""

from dataclasses import dataclass, field
from enum import Enum


class RequestStatus(str, Enum):
    """Lifecycle of a reasoning request in the local store.

    PENDING: ingested, waiting for the fulfillment worker.
    PROCESSED: fulfillment transaction broadcast by this node.
    FULFILLED: fulfillment observed (or confirmed) on-chain.
    """

    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FULFILLED = "FULFILLED"


@dataclass(frozen=True, slots=True)
class ReasoningRequest:
    """Represents a ReasoningRequested event captured from the oracle contract.

    Attributes:
        request_id: Contract-assigned unique request identifier
        requester: Address that emitted the request
        model: Model identifier requested by the contract
        system_prompt: Caller supplied system context
        state_string: Serialized on-chain state for the prompt
        action_set: Ordered tuple of permitted actions
        block_number: Block number where the event was emitted
    """

    request_id: int
    requester: str
    model: str
    system_prompt: str
    state_string: str
    action_set: tuple[str, ...]
    block_number: int = 0

    def __str__(self) -> str:
        """Human-readable string representation."""
        return (
            f"ReasoningRequest(id={self.request_id}, "
            f"model={self.model}, "
            f"requester={self.requester[:8]}..., "
            f"actions={len(self.action_set)})"
        )


@dataclass(frozen=True, slots=True)
class FulfillmentEvent:
    """Represents a ReasoningFulfilled event from the oracle contract."""

    request_id: int
    requester: str
    result_action: str
    trace_reference: str
    block_number: int = 0


@dataclass(frozen=True, slots=True)
class StoredRequest:
    """A request row read back from the persisted store."""

    request_id: int
    requester: str
    model: str
    system_prompt: str
    state_string: str
    action_set: tuple[str, ...]
    status: RequestStatus
    created_at: int
    updated_at: int


@dataclass(frozen=True, slots=True)
class RangeSnapshot:
    """Result of one batched chain read.

    All three fields were resolved by the same RPC round trip, so
    ``latest_block`` describes the replica that served both log queries.
    """

    latest_block: int
    requested: list[ReasoningRequest] = field(default_factory=list)
    fulfilled: list[FulfillmentEvent] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class OnChainRequestInfo:
    """Decoded result of ``getRequestInfo``."""

    requester: str
    model: str
    is_fulfilled: bool
