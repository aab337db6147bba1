"""Reasoning collaborator client.

Each pipeline step that needs the model is handed one async callable:

    async def __call__(self, stage: str, prompt: str) -> str: ...

`stage` says who is asking ("classifier", "memory", "resolver", "character",
"director", "synthesizer") and is only used for logging here. What comes
back is raw completion text; the caller extracts and validates its own
payload (coc_keeper.pipeline.extractors).

Transport problems surface as `LLMError`, which the retry policy treats as
retryable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Protocol

import httpx

if TYPE_CHECKING:
    from coc_keeper.config import KeeperConfig

logger = logging.getLogger(__name__)

ProviderFormat = Literal["koboldcpp", "openai"]


class LLMError(RuntimeError):
    """The reasoning backend was unreachable or answered with something unusable."""


class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# Wire formats
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WireFormat:
    """Where to POST and which list in the reply holds the completions."""

    label: str
    path: str
    envelope: str
    sends_model: bool = False


WIRE_FORMATS: dict[str, WireFormat] = {
    # {"prompt": ...} -> {"results": [{"text": ...}]}
    "koboldcpp": WireFormat("KoboldCpp", "/api/v1/generate", "results"),
    # {"model": ..., "prompt": ...} -> {"choices": [{"text": ...}]}
    "openai": WireFormat("OpenAI-compatible", "/v1/completions", "choices", sends_model=True),
}


class HttpLLM:
    """Text-completion client over httpx, one short-lived AsyncClient per call."""

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._wire = WIRE_FORMATS[provider_format]
        self._model = model
        self._timeout = timeout

    @classmethod
    def from_config(cls, config: KeeperConfig) -> HttpLLM:
        return cls(
            provider_url=config.provider_url,
            api_key=config.api_key,
            provider_format=config.provider_format,
            model=config.model,
            timeout=config.timeout,
        )

    @property
    def endpoint(self) -> str:
        return self._base_url + self._wire.path

    def _payload(self, prompt: str) -> dict[str, Any]:
        payload: dict[str, Any] = {"prompt": prompt}
        if self._wire.sends_model and self._model:
            payload["model"] = self._model
        return payload

    def _auth_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _completion_text(self, data: Any) -> str:
        entries = data.get(self._wire.envelope) if isinstance(data, dict) else None
        if not entries or not isinstance(entries[0], dict) or "text" not in entries[0]:
            raise LLMError(f"Unexpected response format from {self._wire.label} backend")
        return entries[0]["text"]

    async def __call__(self, stage: str, prompt: str) -> str:
        logger.debug("llm %s -> %s (%d chars)", stage, self.endpoint, len(prompt))
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.endpoint, json=self._payload(prompt), headers=self._auth_headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to reasoning backend at {self._base_url}") from e
        except httpx.TimeoutException as e:
            raise LLMError(f"Reasoning backend timed out after {self._timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(f"Reasoning backend returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("Reasoning backend returned a non-JSON body") from e

        text = self._completion_text(data)
        logger.debug("llm %s <- %d chars", stage, len(text))
        return text


class EchoLLM:
    """Hands the prompt straight back. No network.

    No structured stage can parse an echoed prompt, so a turn run against
    this walks every degraded path end to end.
    """

    async def __call__(self, stage: str, prompt: str) -> str:
        logger.debug("echo %s (%d chars)", stage, len(prompt))
        return prompt
