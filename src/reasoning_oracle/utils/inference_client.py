"""HTTP client for the chat-completion inference provider.

One request per reasoning call; every failure mode surfaces as InferenceError.
"""

import json
import logging
import typing

import httpx

from ..exceptions import InferenceError

logger = logging.getLogger(__name__)


class InferenceClient:
    """Chat-completion client for the inference provider.

    Speaks the OpenAI-compatible ``/v1/chat/completions`` format and returns
    the first choice's message content.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str = '',
        timeout: float = 60,
        temperature: float = 0.01,
        max_tokens: int = 50,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, payload: typing.Any) -> typing.Any:
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            logger.debug(f"Posting to {self.api_url}: model={payload.get('model')}")
            response = await client.post(self.api_url, json=payload, headers=self._headers())
            response.raise_for_status()
            return response.json()

    async def complete(self, model: str, messages: list[dict[str, str]]) -> str:
        """
        Request a completion and return its text.

        Args:
            model: Model identifier understood by the provider
            messages: Chat messages (system and user)

        Returns:
            The completion text, stripped of surrounding whitespace

        Raises:
            InferenceError: On timeout, non-2xx status or a malformed body
        """
        payload = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        try:
            body = await self._post(payload)
        except httpx.TimeoutException as e:
            raise InferenceError(f"Inference request timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise InferenceError(
                f"Inference provider returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise InferenceError(f"Inference transport error: {e}") from e
        except json.JSONDecodeError as e:
            raise InferenceError(f"Inference response is not JSON: {e}") from e

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise InferenceError(f"Malformed inference response: {str(body)[:200]}") from e

        if not isinstance(content, str):
            raise InferenceError(f"Inference content is not text: {type(content).__name__}")

        return content.strip()
