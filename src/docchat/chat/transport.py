"""HTTP transport for the Ollama chat endpoint."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import httpx

from docchat.exceptions import TransportError
from docchat.models import ConversationMessage

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ModelOptions:
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    repeat_penalty: Optional[float] = None
    seed: Optional[int] = None
    num_ctx: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Only the options that were explicitly set."""
        return {key: value for key, value in asdict(self).items() if value is not None}


def build_chat_payload(
    model: str,
    messages: Sequence[ConversationMessage],
    options: Optional[ModelOptions] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "model": model,
        "messages": [message.to_dict() for message in messages],
        "stream": True,
    }
    if options is not None:
        cleaned = options.to_dict()
        if cleaned:
            payload["options"] = cleaned
    return payload


class OllamaTransport:
    """Streams raw response bytes from a chat endpoint.

    Failures of any kind (connection, timeout, non-success status) surface as
    TransportError. Nothing is retried.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 300.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._client = client

    async def stream(self, payload: Dict[str, Any]) -> AsyncIterator[bytes]:
        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            async with client.stream("POST", self.endpoint, json=payload) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        f"Failed to fetch from Ollama API: {response.status_code} - {body}",
                        status_code=response.status_code,
                    )
                LOGGER.debug("Streaming %s from %s", payload.get("model"), self.endpoint)
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as exc:
            raise TransportError(f"Connection to {self.endpoint} failed: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()
