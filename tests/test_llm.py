"""Tests for coc_keeper.llm: HttpLLM wire formats and EchoLLM."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from coc_keeper.config import KeeperConfig
from coc_keeper.llm import EchoLLM, HttpLLM, LLMError


def _response(body: dict, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


class TestEchoLLM:
    @pytest.mark.asyncio
    async def test_returns_prompt(self) -> None:
        assert await EchoLLM()("classifier", "where am I?") == "where am I?"


class TestHttpLLMKoboldCpp:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(provider_url="http://localhost:5001/", api_key="")

    @pytest.mark.asyncio
    async def test_generate_endpoint_and_body(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_response({"results": [{"text": "{}"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm("resolver", "Resolve the search.")
        assert result == "{}"
        assert mock_post.call_args[0][0] == "http://localhost:5001/api/v1/generate"
        assert mock_post.call_args.kwargs["json"] == {"prompt": "Resolve the search."}
        assert "Authorization" not in mock_post.call_args.kwargs["headers"]

    @pytest.mark.asyncio
    async def test_bearer_token(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:5001", api_key="s3cret")
        mock_post = AsyncMock(return_value=_response({"results": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("memory", "prompt")
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer s3cret"

    @pytest.mark.asyncio
    async def test_connect_error(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(side_effect=httpx.ConnectError("refused"))):
            with pytest.raises(LLMError, match="Cannot connect"):
                await llm("classifier", "prompt")

    @pytest.mark.asyncio
    async def test_timeout(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(side_effect=httpx.TimeoutException("slow"))):
            with pytest.raises(LLMError, match="timed out"):
                await llm("classifier", "prompt")

    @pytest.mark.asyncio
    async def test_http_status(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=_response({}, status=502))):
            with pytest.raises(LLMError, match="HTTP 502"):
                await llm("director", "prompt")

    @pytest.mark.asyncio
    async def test_unexpected_envelope(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=_response({"oops": 1}))):
            with pytest.raises(LLMError, match="Unexpected response format"):
                await llm("synthesizer", "prompt")

    @pytest.mark.asyncio
    async def test_non_json_body(self, llm: HttpLLM) -> None:
        resp = _response({})
        resp.json.side_effect = ValueError("not json")
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(LLMError, match="non-JSON"):
                await llm("memory", "prompt")

    @pytest.mark.asyncio
    async def test_other_transport_error(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(side_effect=httpx.ReadError("reset"))):
            with pytest.raises(LLMError, match="request failed"):
                await llm("memory", "prompt")


class TestHttpLLMOpenAI:
    @pytest.mark.asyncio
    async def test_completions_endpoint_with_model(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:8080", provider_format="openai", model="qwen")
        mock_post = AsyncMock(return_value=_response({"choices": [{"text": "fog rolls in"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm("synthesizer", "prompt")
        assert result == "fog rolls in"
        assert mock_post.call_args[0][0] == "http://localhost:8080/v1/completions"
        assert mock_post.call_args.kwargs["json"]["model"] == "qwen"

    @pytest.mark.asyncio
    async def test_from_config(self) -> None:
        config = KeeperConfig(
            provider_url="http://gpu:9000", provider_format="openai", model="m", api_key="k",
        )
        llm = HttpLLM.from_config(config)
        mock_post = AsyncMock(return_value=_response({"choices": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("classifier", "prompt")
        assert mock_post.call_args[0][0] == "http://gpu:9000/v1/completions"
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer k"
