from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Callable

import httpx
from openai import OpenAIError
import pytest

from digest.errors import BackendUnavailable
from digest.llm_client import HTTPTextProvider, OpenRouterProvider, clean_generated_text


def _provider(
    handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any
) -> HTTPTextProvider:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HTTPTextProvider("Test AI", "https://api.example.test/ai/chat", client=client, **kwargs)


def test_clean_generated_text_strips_think_blocks() -> None:
    assert clean_generated_text("<think>plan\nsteps</think>\n  Answer  ") == "Answer"
    assert clean_generated_text("<think>only</think>") == ""


def test_result_string_envelope_sends_prompt_as_text_param() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": True, "result": "<think>x</think> Summary"})

    provider = _provider(handler, extra_params={"prompt": "system"})

    assert provider.generate("hello chat") == "Summary"
    assert seen[0].method == "GET"
    assert seen[0].url.params["text"] == "hello chat"
    assert seen[0].url.params["prompt"] == "system"


def test_result_text_envelope() -> None:
    provider = _provider(
        lambda request: httpx.Response(200, json={"status": True, "result": {"text": "Deep"}}),
        envelope="result_text",
    )

    assert provider.generate("p") == "Deep"


def test_refined_results_envelope_checks_inner_status() -> None:
    ok = _provider(
        lambda request: httpx.Response(
            200,
            json={"status": True, "result": {"status": 200, "data": {"refined_results": "Refined"}}},
        ),
        envelope="refined_results",
    )
    failing = _provider(
        lambda request: httpx.Response(
            200, json={"status": True, "result": {"status": 500, "data": {}}}
        ),
        envelope="refined_results",
    )

    assert ok.generate("p") == "Refined"
    with pytest.raises(BackendUnavailable, match="returned status 500"):
        failing.generate("p")


def test_status_false_is_a_failure() -> None:
    provider = _provider(lambda request: httpx.Response(200, json={"status": False, "result": "x"}))

    with pytest.raises(BackendUnavailable, match="status false"):
        provider.generate("p")


def test_non_200_is_a_failure() -> None:
    provider = _provider(lambda request: httpx.Response(502, text="bad gateway"))

    with pytest.raises(BackendUnavailable, match="API error: status 502"):
        provider.generate("p")


def test_invalid_json_is_a_failure() -> None:
    provider = _provider(lambda request: httpx.Response(200, text="<html>"))

    with pytest.raises(BackendUnavailable, match="failed to parse response"):
        provider.generate("p")


def test_empty_text_after_cleaning_is_a_failure() -> None:
    provider = _provider(
        lambda request: httpx.Response(200, json={"status": True, "result": "<think>x</think>"})
    )

    with pytest.raises(BackendUnavailable, match="empty response text"):
        provider.generate("p")


def test_transport_error_is_a_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = _provider(handler)

    with pytest.raises(BackendUnavailable, match="request failed"):
        provider.generate("p")
    assert provider.is_available() is False


def test_unknown_envelope_rejected() -> None:
    with pytest.raises(ValueError):
        HTTPTextProvider("Bad", "https://api.example.test", envelope="nope")


class FakeCompletions:
    def __init__(self, outcomes: list[Any]) -> None:
        self.outcomes = outcomes
        self.calls: list[dict[str, Any]] = []

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=outcome))]
        )


def _openrouter(outcomes: list[Any], sleeps: list[float]) -> tuple[OpenRouterProvider, FakeCompletions]:
    completions = FakeCompletions(outcomes)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    provider = OpenRouterProvider(
        "key",
        "https://openrouter.ai/api/v1",
        "google/gemini-2.0-flash-001",
        client=client,
        sleep=sleeps.append,
    )
    return provider, completions


def test_openrouter_retries_with_fixed_delay() -> None:
    sleeps: list[float] = []
    provider, completions = _openrouter(
        [OpenAIError("rate limited"), "", "<think>hmm</think>Final summary"], sleeps
    )

    assert provider.generate("prompt") == "Final summary"
    assert len(completions.calls) == 3
    assert sleeps == [2.0, 2.0]
    assert completions.calls[0]["model"] == "google/gemini-2.0-flash-001"
    assert completions.calls[0]["messages"][-1] == {"role": "user", "content": "prompt"}


def test_openrouter_gives_up_after_max_retries() -> None:
    sleeps: list[float] = []
    provider, completions = _openrouter([OpenAIError("down")] * 3, sleeps)

    with pytest.raises(BackendUnavailable, match="failed after 3 attempts"):
        provider.generate("prompt")
    assert len(completions.calls) == 3
    assert sleeps == [2.0, 2.0]


def test_openrouter_without_api_key() -> None:
    provider = OpenRouterProvider("", "https://openrouter.ai/api/v1", "some/model")

    assert provider.is_available() is False
    with pytest.raises(BackendUnavailable, match="OPENROUTER_API_KEY is missing"):
        provider.generate("prompt")


def test_openrouter_makes_one_request_per_attempt() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(500, json={"error": {"message": "upstream down"}})

    sleeps: list[float] = []
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    provider = OpenRouterProvider(
        "key",
        "https://openrouter.test/api/v1",
        "test/model",
        max_retries=3,
        http_client=http_client,
        sleep=sleeps.append,
    )

    with pytest.raises(BackendUnavailable, match="failed after 3 attempts"):
        provider.generate("prompt")

    assert len(requests) == 3
    assert all(request.url.path == "/api/v1/chat/completions" for request in requests)
    assert sleeps == [2.0, 2.0]

    provider.close()
    assert http_client.is_closed


def test_http_provider_close_releases_client() -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    provider = HTTPTextProvider("Test AI", "https://api.example.test/ai/chat", client=client)

    provider.close()

    assert client.is_closed
