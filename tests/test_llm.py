"""Tests for story_rpg.llm: OllamaClient generate, stream and connectivity."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from story_rpg.config import Settings, load_settings
from story_rpg.llm import EMPTY_RESPONSE, OllamaClient, TransportError


def _mock_response(body: dict | list, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


def _ndjson(*records: dict | str) -> bytes:
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    return ("\n".join(lines) + "\n").encode()


class StreamServer:
    """httpx.MockTransport handler that records requests and replies with NDJSON."""

    def __init__(self, content=b"", status: int = 200) -> None:
        self.content = content
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, content=self.content)

    def body(self, index: int = 0) -> dict:
        return json.loads(self.requests[index].content)


# ---------------------------------------------------------------------------
# generate (non-streaming)
# ---------------------------------------------------------------------------

class TestGenerate:
    @pytest.fixture
    def client(self) -> OllamaClient:
        return OllamaClient(base_url="http://localhost:11434", model="llama2")

    async def test_happy_path(self, client: OllamaClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"response": "The gate opens."}))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await client.generate("Describe the gate.")
        assert result == "The gate opens."

    async def test_posts_to_generate_endpoint(self, client: OllamaClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"response": "ok"}))
        with patch("httpx.AsyncClient.post", mock_post):
            await client.generate("prompt")
        assert mock_post.call_args[0][0] == "http://localhost:11434/api/generate"

    async def test_sends_model_prompt_and_options(self, client: OllamaClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"response": "ok"}))
        with patch("httpx.AsyncClient.post", mock_post):
            await client.generate("my prompt", options={"temperature": 0.7, "max_tokens": None})
        assert mock_post.call_args.kwargs["json"] == {
            "model": "llama2",
            "prompt": "my prompt",
            "stream": False,
            "options": {"temperature": 0.7},
        }

    async def test_empty_response_placeholder(self, client: OllamaClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"done": True}))
        with patch("httpx.AsyncClient.post", mock_post):
            assert await client.generate("prompt") == EMPTY_RESPONSE

    async def test_trailing_slash_stripped(self) -> None:
        client = OllamaClient(base_url="http://gpu-box:11434/")
        mock_post = AsyncMock(return_value=_mock_response({"response": "ok"}))
        with patch("httpx.AsyncClient.post", mock_post):
            await client.generate("prompt")
        assert mock_post.call_args[0][0] == "http://gpu-box:11434/api/generate"

    async def test_configure_switches_server_and_model(self, client: OllamaClient) -> None:
        client.configure("http://other:9000/", "mistral")
        mock_post = AsyncMock(return_value=_mock_response({"response": "ok"}))
        with patch("httpx.AsyncClient.post", mock_post):
            await client.generate("prompt")
        assert mock_post.call_args[0][0] == "http://other:9000/api/generate"
        assert mock_post.call_args.kwargs["json"]["model"] == "mistral"

    async def test_connect_error(self, client: OllamaClient) -> None:
        mock_post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(TransportError, match="Cannot connect"):
                await client.generate("prompt")

    async def test_timeout(self, client: OllamaClient) -> None:
        mock_post = AsyncMock(side_effect=httpx.TimeoutException("timeout"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(TransportError, match="timed out"):
                await client.generate("prompt")

    async def test_http_error_status(self, client: OllamaClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response({}, status=503))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(TransportError, match="HTTP 503"):
                await client.generate("prompt")

    async def test_non_json_body(self, client: OllamaClient) -> None:
        resp = _mock_response({})
        resp.json.side_effect = ValueError("not json")
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(TransportError, match="Unexpected response format"):
                await client.generate("prompt")

    async def test_non_object_body(self, client: OllamaClient) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=_mock_response([1, 2]))):
            with pytest.raises(TransportError, match="Unexpected response format"):
                await client.generate("prompt")

    async def test_non_string_response(self, client: OllamaClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"response": {"text": "hi"}}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(TransportError, match="Unexpected response format"):
                await client.generate("prompt")


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

class TestStreaming:
    async def test_generate_stream_accumulates_and_forwards(self) -> None:
        server = StreamServer(_ndjson(
            {"response": "The "}, {"response": "bell "}, "garbage", {"response": "rings."},
            {"response": "", "done": True},
        ))
        client = OllamaClient(transport=httpx.MockTransport(server))
        tokens: list[str] = []

        text = await client.generate_stream("prompt", tokens.append, options={"top_k": 40})

        assert text == "The bell rings."
        assert tokens == ["The ", "bell ", "rings."]
        assert server.requests[0].url == "http://localhost:11434/api/generate"
        assert server.body() == {
            "model": "llama2", "prompt": "prompt", "stream": True, "options": {"top_k": 40},
        }

    async def test_stream_yields_tokens(self) -> None:
        server = StreamServer(_ndjson({"response": "a"}, {"response": "b"}))
        client = OllamaClient(transport=httpx.MockTransport(server))
        assert [t async for t in client.stream("prompt")] == ["a", "b"]

    async def test_stop_on_done(self) -> None:
        server = StreamServer(_ndjson(
            {"response": "a", "done": True}, {"response": "late"},
        ))
        client = OllamaClient(stop_on_done=True, transport=httpx.MockTransport(server))
        assert await client.generate_stream("prompt") == "a"

    async def test_http_error_status(self) -> None:
        server = StreamServer(b"", status=500)
        client = OllamaClient(transport=httpx.MockTransport(server))
        with pytest.raises(TransportError, match="HTTP 500"):
            await client.generate_stream("prompt")

    async def test_connect_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = OllamaClient(transport=httpx.MockTransport(refuse))
        with pytest.raises(TransportError, match="Cannot connect"):
            await client.generate_stream("prompt")

    async def test_failure_mid_stream_keeps_delivered_tokens(self) -> None:
        async def body():
            yield b'{"response": "Half"}\n'
            raise httpx.ReadError("connection reset")

        client = OllamaClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body()))
        )
        tokens: list[str] = []
        with pytest.raises(TransportError):
            await client.generate_stream("prompt", tokens.append)
        assert tokens == ["Half"]


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------

class TestConnection:
    async def test_list_models(self) -> None:
        client = OllamaClient()
        body = {"models": [{"name": "llama2:latest"}, {"name": "mistral:latest"}]}
        mock_get = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.get", mock_get):
            models = await client.list_models()
        assert mock_get.call_args[0][0] == "http://localhost:11434/api/tags"
        assert [m["name"] for m in models] == ["llama2:latest", "mistral:latest"]

    async def test_check_connection_success(self) -> None:
        client = OllamaClient()
        mock_get = AsyncMock(return_value=_mock_response({"models": [{"name": "llama2"}]}))
        with patch("httpx.AsyncClient.get", mock_get):
            status = await client.check_connection()
        assert status.success
        assert status.models == [{"name": "llama2"}]

    async def test_check_connection_failure_does_not_raise(self) -> None:
        client = OllamaClient()
        mock_get = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.get", mock_get):
            status = await client.check_connection()
        assert not status.success
        assert "Cannot connect" in status.message
        assert status.models == []

    async def test_check_connection_non_object_body(self) -> None:
        client = OllamaClient()
        with patch("httpx.AsyncClient.get", AsyncMock(return_value=_mock_response([1, 2]))):
            status = await client.check_connection()
        assert not status.success
        assert "Unexpected response format" in status.message

    async def test_list_models_rejects_malformed_entries(self) -> None:
        client = OllamaClient()
        mock_get = AsyncMock(return_value=_mock_response({"models": ["llama2"]}))
        with patch("httpx.AsyncClient.get", mock_get):
            with pytest.raises(TransportError, match="Unexpected response format"):
                await client.list_models()


# ---------------------------------------------------------------------------
# Construction from settings
# ---------------------------------------------------------------------------

class TestFromSettings:
    def test_copies_connection_settings(self) -> None:
        settings = Settings(ollama_url="http://gpu:11434/", model_name="mistral", timeout=5)
        client = OllamaClient.from_settings(settings)
        assert client.base_url == "http://gpu:11434"
        assert client.model == "mistral"
        assert client._timeout == 5

    async def test_stored_settings_reach_client(self, store, tmp_path) -> None:
        store.save_settings({"ollamaUrl": "http://box:1", "stopOnDone": True})
        settings = load_settings(store, env_file=tmp_path / "missing.env")
        server = StreamServer(_ndjson({"response": "a", "done": True}, {"response": "late"}))

        client = OllamaClient.from_settings(settings, transport=httpx.MockTransport(server))
        text = await client.generate_stream("prompt")

        assert text == "a"
        assert server.requests[0].url == "http://box:1/api/generate"
