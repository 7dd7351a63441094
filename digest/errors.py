from __future__ import annotations


class DigestError(Exception):
    pass


class ConfigError(DigestError):
    pass


class BackendUnavailable(DigestError):
    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class AllProvidersFailed(DigestError):
    def __init__(
        self,
        attempts: int,
        last_error: Exception | None,
        failures: list[tuple[str, str]] | None = None,
    ) -> None:
        super().__init__(f"all {attempts} providers failed, last error: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
        self.failures = failures or []


class NoProvidersConfigured(AllProvidersFailed):
    def __init__(self) -> None:
        DigestError.__init__(self, "no providers configured")
        self.attempts = 0
        self.last_error = None
        self.failures = []


class RecursionLimitExceeded(DigestError):
    def __init__(self, max_depth: int) -> None:
        super().__init__(f"maximum recursion depth ({max_depth}) reached during merge")
        self.max_depth = max_depth


class SummarizationStepFailed(DigestError):
    def __init__(self, stage: str, index: int, total: int, cause: Exception) -> None:
        super().__init__(f"failed to {stage} {index}/{total}: {cause}")
        self.stage = stage
        self.index = index
        self.total = total
        self.cause = cause


class SummarizationCancelled(DigestError):
    pass
