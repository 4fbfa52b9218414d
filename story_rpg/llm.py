"""LLM client: HTTP connection to an Ollama server.

The turn engine depends only on the StoryModel protocol:

    async def generate(self, prompt, *, options=None) -> str: ...
    async def generate_stream(self, prompt, on_token=None, *, options=None) -> str: ...
    async def check_connection(self) -> ConnectionStatus: ...
    def configure(self, base_url, model) -> None: ...

OllamaClient is the real implementation:

    GET  {base}/api/tags      : available models, used for connectivity probing
    POST {base}/api/generate   {"model", "prompt", "stream", "options"}
         stream=false → {"response": "..."}
         stream=true  → NDJSON records, decoded by story_rpg.stream

OllamaClient also offers stream(), an async iterator of tokens for callers
that consume the passage directly instead of through a sink.

Every connection or protocol failure is raised as TransportError. Nothing is
retried here; callers decide what a failure means for them.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Protocol

import httpx

from story_rpg.config import Settings
from story_rpg.models import ConnectionStatus
from story_rpg.stream import TokenSink, iter_tokens, read_stream

logger = logging.getLogger(__name__)

EMPTY_RESPONSE = "（無法生成回應）"
UNEXPECTED_FORMAT = "Unexpected response format from Ollama"


# ---------------------------------------------------------------------------
# Protocol: every model implementation must match this shape
# ---------------------------------------------------------------------------

class StoryModel(Protocol):
    async def generate(self, prompt: str, *, options: dict[str, Any] | None = None) -> str: ...

    async def generate_stream(
        self,
        prompt: str,
        on_token: TokenSink | None = None,
        *,
        options: dict[str, Any] | None = None,
    ) -> str: ...

    async def check_connection(self) -> ConnectionStatus: ...

    def configure(self, base_url: str, model: str) -> None: ...


def _json_object(resp: httpx.Response) -> dict[str, Any]:
    """Decode a reply body that must be a JSON object."""
    try:
        data = resp.json()
    except ValueError as e:
        raise TransportError(UNEXPECTED_FORMAT) from e
    if not isinstance(data, dict):
        raise TransportError(UNEXPECTED_FORMAT)
    return data


# ---------------------------------------------------------------------------
# OllamaClient
# ---------------------------------------------------------------------------

class OllamaClient:
    """Async HTTP client for the Ollama generate API.

    Args:
        base_url:      Base URL of the server, e.g. "http://localhost:11434".
        model:         Model name sent with every generate request.
        timeout:       HTTP timeout in seconds. Defaults to 120.
        stop_on_done:  End a stream at the first {"done": true} record instead
                       of waiting for the server to close the connection.
        transport:     Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama2",
        timeout: float = 120.0,
        stop_on_done: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.configure(base_url, model)
        self._timeout = timeout
        self._stop_on_done = stop_on_done
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> OllamaClient:
        return cls(
            settings.ollama_url,
            settings.model_name,
            timeout=settings.timeout,
            stop_on_done=settings.stop_on_done,
            transport=transport,
        )

    def configure(self, base_url: str, model: str) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _body(self, prompt: str, stream: bool, options: dict[str, Any] | None) -> dict:
        return {
            "model": self.model,
            "prompt": prompt,
            "stream": stream,
            "options": {k: v for k, v in (options or {}).items() if v is not None},
        }

    def _transport_error(self, e: httpx.HTTPError) -> TransportError:
        if isinstance(e, httpx.ConnectError):
            return TransportError(f"Cannot connect to Ollama at {self.base_url}")
        if isinstance(e, httpx.TimeoutException):
            return TransportError(f"Ollama timed out after {self._timeout}s")
        if isinstance(e, httpx.HTTPStatusError):
            return TransportError(f"Ollama returned HTTP {e.response.status_code}")
        return TransportError(f"Transport error talking to Ollama: {e}")

    # ------------------------------------------------------------------
    # Model listing / connectivity
    # ------------------------------------------------------------------

    async def list_models(self) -> list[dict[str, Any]]:
        url = f"{self.base_url}/api/tags"
        try:
            async with self._client() as client:
                resp = await client.get(url)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise self._transport_error(e) from e
        data = _json_object(resp)
        models = data.get("models") or []
        if not isinstance(models, list) or not all(isinstance(m, dict) for m in models):
            raise TransportError(UNEXPECTED_FORMAT)
        return models

    async def check_connection(self) -> ConnectionStatus:
        """Probe the server. Never raises; failures are reported in the status."""
        try:
            models = await self.list_models()
        except TransportError as e:
            logger.warning("Ollama connection check failed: %s", e)
            return ConnectionStatus(success=False, message=f"連線失敗: {e}")
        logger.debug("available models: %s", [m.get("name") for m in models])
        return ConnectionStatus(success=True, message="連線成功！", models=models)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(self, prompt: str, *, options: dict[str, Any] | None = None) -> str:
        url = f"{self.base_url}/api/generate"
        logger.debug("generate url=%s model=%s prompt_len=%d", url, self.model, len(prompt))
        try:
            async with self._client() as client:
                resp = await client.post(url, json=self._body(prompt, False, options))
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise self._transport_error(e) from e

        text = _json_object(resp).get("response") or EMPTY_RESPONSE
        if not isinstance(text, str):
            raise TransportError(UNEXPECTED_FORMAT)
        logger.debug("generate response len=%d", len(text))
        return text

    @asynccontextmanager
    async def _open_stream(
        self, prompt: str, options: dict[str, Any] | None
    ) -> AsyncIterator[AsyncIterator[str]]:
        url = f"{self.base_url}/api/generate"
        logger.debug("stream url=%s model=%s prompt_len=%d", url, self.model, len(prompt))
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", url, json=self._body(prompt, True, options)
                ) as resp:
                    resp.raise_for_status()
                    yield resp.aiter_lines()
        except httpx.HTTPError as e:
            raise self._transport_error(e) from e

    async def stream(
        self, prompt: str, *, options: dict[str, Any] | None = None
    ) -> AsyncIterator[str]:
        """Yield passage tokens as they arrive."""
        async with self._open_stream(prompt, options) as lines:
            async for token in iter_tokens(lines, stop_on_done=self._stop_on_done):
                yield token

    async def generate_stream(
        self,
        prompt: str,
        on_token: TokenSink | None = None,
        *,
        options: dict[str, Any] | None = None,
    ) -> str:
        """Stream a passage, forwarding tokens to ``on_token``; return the full text."""
        async with self._open_stream(prompt, options) as lines:
            text = await read_stream(lines, on_token, stop_on_done=self._stop_on_done)
        logger.debug("stream complete len=%d", len(text))
        return text


# ---------------------------------------------------------------------------
# TransportError: raised by OllamaClient for all connection and protocol failures
# ---------------------------------------------------------------------------

class TransportError(RuntimeError):
    """Raised when the model server cannot be reached or returns an error."""
