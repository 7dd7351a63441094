from __future__ import annotations

import logging
from typing import Sequence

from digest.errors import AllProvidersFailed, NoProvidersConfigured
from digest.llm_client import TextProvider
from digest.models import GenerationResult, ProviderAttempt

logger = logging.getLogger(__name__)


class FallbackChain:
    def __init__(self, providers: Sequence[TextProvider]) -> None:
        self._providers: tuple[TextProvider, ...] = tuple(providers)

    @property
    def providers(self) -> tuple[TextProvider, ...]:
        return self._providers

    @property
    def provider_count(self) -> int:
        return len(self._providers)

    @property
    def name(self) -> str:
        return "Fallback Chain: " + " → ".join(provider.name for provider in self._providers)

    def generate(self, prompt: str) -> str:
        return self.generate_with_report(prompt).text

    def generate_with_report(self, prompt: str) -> GenerationResult:
        if not self._providers:
            raise NoProvidersConfigured()

        total = len(self._providers)
        attempts: list[ProviderAttempt] = []
        last_error: Exception | None = None

        for index, provider in enumerate(self._providers, start=1):
            logger.info("Trying provider %d/%d: %s", index, total, provider.name)
            try:
                text = provider.generate(prompt)
            except Exception as exc:
                logger.warning("%s failed: %s", provider.name, exc)
                attempts.append(ProviderAttempt(provider=provider.name, error=str(exc)))
                last_error = exc
                continue

            attempts.append(ProviderAttempt(provider=provider.name))
            logger.info("Success with %s after %d attempt(s)", provider.name, len(attempts))
            return GenerationResult(text=text, provider=provider.name, attempts=attempts)

        raise AllProvidersFailed(
            total,
            last_error,
            [(attempt.provider, attempt.error or "") for attempt in attempts],
        )

    def is_available(self) -> bool:
        return any(provider.is_available() for provider in self._providers)

    def close(self) -> None:
        for provider in self._providers:
            provider.close()

    def __enter__(self) -> FallbackChain:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
