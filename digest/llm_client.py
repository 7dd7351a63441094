from __future__ import annotations

from abc import ABC, abstractmethod
import logging
import re
import time
from typing import Any, Callable

import httpx
from openai import OpenAI, OpenAIError

from config.settings import Settings
from digest.errors import BackendUnavailable

logger = logging.getLogger(__name__)

_THINK_BLOCK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)

SYSTEM_PROMPT = (
    "You summarize group chat conversations into structured, factual reports. "
    "Follow the requested section layout exactly."
)


def clean_generated_text(text: str) -> str:
    return _THINK_BLOCK_RE.sub("", text).strip()


class TextProvider(ABC):
    name: str = "provider"

    @abstractmethod
    def generate(self, prompt: str) -> str:
        raise NotImplementedError

    def is_available(self) -> bool:
        return True

    def close(self) -> None:
        pass


class OpenRouterProvider(TextProvider):
    def __init__(
        self,
        api_key: str,
        base_url: str,
        model_name: str,
        *,
        temperature: float = 0.2,
        max_tokens: int = 2_000,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        timeout: float = 60.0,
        client: Any | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.name = f"OpenRouter {model_name}"
        self.model_name = model_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._sleep = sleep
        self.client = client
        if self.client is None and api_key:
            # The fixed-delay loop in generate() is the only retry policy.
            self.client = OpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=timeout,
                max_retries=0,
                http_client=http_client,
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> OpenRouterProvider:
        return cls(
            settings.openrouter_api_key,
            settings.openrouter_base_url,
            settings.model_name,
            temperature=settings.model_temperature,
            max_tokens=settings.model_max_tokens,
            max_retries=settings.primary_max_retries,
            retry_delay=settings.primary_retry_delay,
            timeout=settings.provider_timeout,
        )

    def generate(self, prompt: str) -> str:
        if self.client is None:
            raise BackendUnavailable(self.name, "OPENROUTER_API_KEY is missing")

        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            logger.debug("%s call attempt %d/%d", self.name, attempt, self.max_retries)
            try:
                return self._complete(prompt)
            except (OpenAIError, BackendUnavailable) as exc:
                last_error = exc
                logger.warning("%s attempt %d failed: %s", self.name, attempt, exc)
            if attempt < self.max_retries:
                self._sleep(self.retry_delay)

        raise BackendUnavailable(
            self.name, f"failed after {self.max_retries} attempts: {last_error}"
        )

    def _complete(self, prompt: str) -> str:
        logger.debug("Prompt length: %d characters", len(prompt))
        response = self.client.chat.completions.create(
            model=self.model_name,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            extra_headers={
                "HTTP-Referer": "https://localhost/chat-digest",
                "X-Title": "ChatDigest",
            },
        )
        if not response.choices:
            raise BackendUnavailable(self.name, "no content in response")
        text = clean_generated_text(response.choices[0].message.content or "")
        if not text:
            raise BackendUnavailable(self.name, "empty response text")
        return text

    def is_available(self) -> bool:
        return self.client is not None

    def close(self) -> None:
        if isinstance(self.client, OpenAI):
            self.client.close()


def _require_status(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValueError("payload is not an object")
    if payload.get("status") is not True:
        raise ValueError("returned status false")
    return payload


def _result_string(payload: Any) -> str:
    result = _require_status(payload).get("result")
    if not isinstance(result, str):
        raise ValueError("result is not a string")
    return result


def _result_text(payload: Any) -> str:
    result = _require_status(payload).get("result")
    if not isinstance(result, dict) or not isinstance(result.get("text"), str):
        raise ValueError("result.text missing")
    return result["text"]


def _refined_results(payload: Any) -> str:
    result = _require_status(payload).get("result")
    if not isinstance(result, dict):
        raise ValueError("result is not an object")
    inner_status = result.get("status")
    if inner_status != 200:
        raise ValueError(f"returned status {inner_status}")
    data = result.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("refined_results"), str):
        raise ValueError("result.data.refined_results missing")
    return data["refined_results"]


ENVELOPES: dict[str, Callable[[Any], str]] = {
    "result": _result_string,
    "result_text": _result_text,
    "refined_results": _refined_results,
}


class HTTPTextProvider(TextProvider):
    def __init__(
        self,
        name: str,
        url: str,
        *,
        envelope: str = "result",
        extra_params: dict[str, str] | None = None,
        timeout: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        if envelope not in ENVELOPES:
            raise ValueError(f"Unknown response envelope: {envelope}")
        self.name = name
        self.url = url
        self.envelope = envelope
        self.extra_params = dict(extra_params or {})
        self.client = client or httpx.Client(timeout=timeout)

    def generate(self, prompt: str) -> str:
        params = {"text": prompt, **self.extra_params}
        try:
            response = self.client.get(self.url, params=params)
        except httpx.HTTPError as exc:
            raise BackendUnavailable(self.name, f"request failed: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise BackendUnavailable(self.name, f"API error: status {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise BackendUnavailable(self.name, f"failed to parse response: {exc}") from exc

        try:
            raw_text = ENVELOPES[self.envelope](payload)
        except ValueError as exc:
            raise BackendUnavailable(self.name, str(exc)) from exc

        text = clean_generated_text(raw_text)
        if not text:
            raise BackendUnavailable(self.name, "empty response text")
        return text

    def is_available(self) -> bool:
        try:
            response = self.client.get(self.url, params={"text": "test"})
        except httpx.HTTPError:
            return False
        return response.status_code == httpx.codes.OK

    def close(self) -> None:
        self.client.close()
