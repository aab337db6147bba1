"""Tests for coc_keeper.retry."""

from unittest.mock import AsyncMock, patch

import pytest

from coc_keeper.llm import LLMError
from coc_keeper.pipeline.extractors import MalformedResponse, extract_json_object
from coc_keeper.retry import RetryPolicy, call_structured


class TestDelay:
    def test_exponential_curve_capped(self) -> None:
        p = RetryPolicy(initial_delay=0.5, max_delay=3.0, exponential_base=2.0, jitter=False)
        assert [p.delay_for(n) for n in range(4)] == [0.5, 1.0, 2.0, 3.0]

    def test_jitter_bounded(self) -> None:
        p = RetryPolicy(initial_delay=1.0, jitter=True)
        for _ in range(20):
            assert 1.0 <= p.delay_for(0) <= 1.25


class TestCall:
    @pytest.mark.asyncio
    async def test_retries_transport_failure_then_succeeds(self, policy) -> None:
        func = AsyncMock(side_effect=[LLMError("down"), LLMError("down"), "ok"])
        assert await policy.call(func) == "ok"
        assert func.call_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, policy) -> None:
        func = AsyncMock(side_effect=LLMError("down"))
        with pytest.raises(LLMError):
            await policy.call(func)
        assert func.call_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self, policy) -> None:
        func = AsyncMock(side_effect=KeyError("bug"))
        with pytest.raises(KeyError):
            await policy.call(func)
        assert func.call_count == 1

    @pytest.mark.asyncio
    async def test_sleeps_between_attempts(self) -> None:
        p = RetryPolicy(max_attempts=3, initial_delay=0.5, jitter=False)
        func = AsyncMock(side_effect=[LLMError("x"), LLMError("x"), "ok"])
        with patch("coc_keeper.retry.asyncio.sleep", AsyncMock()) as sleep:
            await p.call(func)
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_custom_predicate(self) -> None:
        p = RetryPolicy(max_attempts=2, initial_delay=0, jitter=False, retry_on=lambda e: False)
        func = AsyncMock(side_effect=LLMError("x"))
        with pytest.raises(LLMError):
            await p.call(func)
        assert func.call_count == 1


class TestCallStructured:
    @pytest.mark.asyncio
    async def test_parse_failure_is_retried(self, policy, llm_sequence) -> None:
        llm = llm_sequence(["no json here", '{"ok": true}'])
        data = await call_structured(llm, "memory", "prompt", extract_json_object, policy)
        assert data == {"ok": True}
        assert llm.call_count == 2

    @pytest.mark.asyncio
    async def test_persistent_parse_failure_surfaces(self, policy, llm_sequence) -> None:
        llm = llm_sequence(["nope", "still nope", "never"])
        with pytest.raises(MalformedResponse):
            await call_structured(llm, "memory", "prompt", extract_json_object, policy)
        assert llm.stages == ["memory", "memory", "memory"]
