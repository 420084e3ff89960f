"""Trace artifact references submitted alongside fulfillments."""

import logging
from typing import Protocol

from ..models import StoredRequest

logger = logging.getLogger(__name__)


class TracePinner(Protocol):
    async def pin(self, request: StoredRequest, raw_output: str, chosen_action: str) -> str:
        """Persist the reasoning trace and return its reference."""
        ...


class PlaceholderTracePinner:
    """Returns a fixed reference; nothing is pinned."""

    def __init__(self, reference: str):
        self.reference = reference

    async def pin(self, request: StoredRequest, raw_output: str, chosen_action: str) -> str:
        logger.debug(f"Trace pinning not configured, using placeholder for #{request.request_id}")
        return self.reference
