#!/usr/bin/env python3
"""Prompt construction, action validation and shard ownership.

Pure functions used by the fulfillment worker. Nothing here touches the
network or the store.
"""

from collections.abc import Sequence

from .exceptions import InvalidRequestError

FALLBACK_ACTION = "noop"

SYSTEM_INSTRUCTION = (
    "You are a purely deterministic rule engine responding to a smart contract. "
    "You MUST output EXACTLY ONE text value from the explicitly permitted actionSet, "
    "copied verbatim. Do NOT add Markdown formatting, explanations, quotes, "
    "or any other characters."
)


def build_user_prompt(system_prompt: str, state_string: str, action_set: Sequence[str]) -> str:
    """Render the caller supplied context into the sectioned user prompt."""
    return (
        "[SYSTEM CONTEXT]:\n"
        f"{system_prompt}\n\n"
        "[CURRENT CHAIN STATE]:\n"
        f"{state_string}\n\n"
        "[AVAILABLE ACTIONS]:\n"
        f"{', '.join(action_set)}\n\n"
        "You are an on-chain autonomous brain. You MUST respond with exactly one of the "
        "actions from the [AVAILABLE ACTIONS] list based on the context and state provided.\n"
        "Do NOT output anything other than the chosen action string. Do NOT output markdown."
    )


def build_messages(system_prompt: str, state_string: str, action_set: Sequence[str]) -> list[dict[str, str]]:
    """
    Build the chat messages for one reasoning request.

    The system message is fixed; caller supplied text only ever lands in the
    user message, so it cannot replace the output constraint.
    """
    return [
        {"role": "system", "content": SYSTEM_INSTRUCTION},
        {"role": "user", "content": build_user_prompt(system_prompt, state_string, action_set)},
    ]


def fallback_action(action_set: Sequence[str]) -> str:
    """Deterministic substitute for an invalid model output."""
    if FALLBACK_ACTION in action_set:
        return FALLBACK_ACTION
    return action_set[0] if action_set else ""


def choose_action(raw_output: str, action_set: Sequence[str]) -> tuple[str, bool]:
    """
    Validate a model output against the permitted actions.

    Membership is exact and case-sensitive; surrounding whitespace is removed
    before comparing.

    Args:
        raw_output: Text returned by the inference provider
        action_set: Permitted actions, in contract order

    Returns:
        Tuple of (chosen action, whether the fallback was used)

    Raises:
        InvalidRequestError: If the action set is empty
    """
    if not action_set:
        raise InvalidRequestError("Action set is empty; no action can be chosen")

    candidate = raw_output.strip()
    if candidate in action_set:
        return candidate, False
    return fallback_action(action_set), True


def owns_request(request_id: int, worker_index: int, worker_count: int) -> bool:
    """Static modulo sharding: shard ``worker_index`` owns ``request_id``."""
    if worker_count <= 1:
        return True
    return request_id % worker_count == worker_index
