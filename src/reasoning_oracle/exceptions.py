"""Exception hierarchy for the Reasoning Oracle node."""


class OracleError(Exception):
    """Base class for all oracle node errors."""


class BootError(OracleError):
    """The node could not establish its sync cursor at startup."""


class ChainReadError(OracleError):
    """A read against the RPC endpoint failed or returned unusable data."""


class SubmissionError(OracleError):
    """A fulfillment transaction could not be simulated or broadcast.

    Raised for failures worth retrying on a later tick.
    """


class AlreadyFulfilledError(SubmissionError):
    """The contract reports the request as already fulfilled."""

    def __init__(self, request_id: int, reason: str = "") -> None:
        self.request_id = request_id
        self.reason = reason
        super().__init__(f"Request #{request_id} already fulfilled on-chain {reason}".rstrip())


class InferenceError(OracleError):
    """The inference provider failed to return a usable completion."""


class InvalidRequestError(OracleError):
    """A stored request cannot be fulfilled as specified."""
