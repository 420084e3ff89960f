"""
Reasoning Oracle package.

Off-chain bridge that indexes on-chain reasoning requests, asks an inference
provider for an action and writes the result back to the oracle contract.
"""

from .config import OracleConfig
from .event_indexer import EventIndexer
from .fulfillment_worker import FulfillmentWorker
from .models import ReasoningRequest, RequestStatus
from .oracle_node import ReasoningOracleNode
from .store import RequestStore

__all__ = [
    "OracleConfig",
    "ReasoningOracleNode",
    "EventIndexer",
    "FulfillmentWorker",
    "RequestStore",
    "ReasoningRequest",
    "RequestStatus",
]
__version__ = "0.1.0"
