from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any, Callable

import pytest

from config.settings import DEFAULT_FALLBACK_PROVIDERS, Settings


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    base = Settings(
        project_root=tmp_path,
        data_dir=tmp_path / "data",
        sqlite_path=tmp_path / "data" / "digest.db",
        openrouter_api_key="",
        openrouter_base_url="https://openrouter.ai/api/v1",
        model_name="google/gemini-2.0-flash-001",
        model_temperature=0.2,
        model_max_tokens=2_000,
        primary_max_retries=3,
        primary_retry_delay=2.0,
        provider_timeout=60.0,
        fallback_providers=DEFAULT_FALLBACK_PROVIDERS,
        max_messages_per_chunk=30,
        max_chars_per_prompt=8_000,
        prompt_template_overhead=3_500,
        merge_template_overhead=2_000,
        max_group_size=3,
        chunks_per_batch=3,
        max_merge_depth=3,
        max_workers=1,
        min_messages_for_summary=3,
    )

    def factory(**overrides: Any) -> Settings:
        return replace(base, **overrides)

    return factory
