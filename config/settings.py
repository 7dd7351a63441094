from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
import os

from dotenv import load_dotenv

DEFAULT_FALLBACK_PROVIDERS = (
    "openrouter",
    "yupra_copilot_think",
    "yupra_gpt5",
    "yupra_copilot",
    "yupra_ypai",
    "deline_copilot_think",
    "deline_copilot",
    "deline_openai",
    "elrayyxml_venice",
    "elrayyxml_powerbrain",
    "elrayyxml_lumin",
    "elrayyxml_chatgpt",
    "elrayyxml_perplexity",
    "elrayyxml_felo",
    "elrayyxml_gemini",
    "elrayyxml_copilot",
    "elrayyxml_alisia",
    "elrayyxml_biblegpt",
)


@dataclass(frozen=True)
class Settings:
    project_root: Path
    data_dir: Path
    sqlite_path: Path
    openrouter_api_key: str
    openrouter_base_url: str
    model_name: str
    model_temperature: float
    model_max_tokens: int
    primary_max_retries: int
    primary_retry_delay: float
    provider_timeout: float
    fallback_providers: tuple[str, ...]
    max_messages_per_chunk: int
    max_chars_per_prompt: int
    prompt_template_overhead: int
    merge_template_overhead: int
    max_group_size: int
    chunks_per_batch: int
    max_merge_depth: int
    max_workers: int
    min_messages_for_summary: int


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name)
    if not value:
        return default
    items = tuple(item.strip() for item in value.split(",") if item.strip())
    return items or default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    project_root = Path(__file__).resolve().parents[1]
    load_dotenv(project_root / ".env")

    data_dir = project_root / "data"
    sqlite_override = os.getenv("DIGEST_DB_PATH", "").strip()

    settings = Settings(
        project_root=project_root,
        data_dir=data_dir,
        sqlite_path=Path(sqlite_override) if sqlite_override else data_dir / "digest.db",
        openrouter_api_key=os.getenv("OPENROUTER_API_KEY", "").strip(),
        openrouter_base_url=os.getenv(
            "OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"
        ).strip(),
        model_name=os.getenv(
            "OPENROUTER_MODEL", "google/gemini-2.0-flash-001"
        ).strip(),
        model_temperature=_env_float("MODEL_TEMPERATURE", 0.2),
        model_max_tokens=_env_int("MODEL_MAX_TOKENS", 2_000),
        primary_max_retries=_env_int("PRIMARY_MAX_RETRIES", 3),
        primary_retry_delay=_env_float("PRIMARY_RETRY_DELAY", 2.0),
        provider_timeout=_env_float("PROVIDER_TIMEOUT", 60.0),
        fallback_providers=_env_list("FALLBACK_PROVIDERS", DEFAULT_FALLBACK_PROVIDERS),
        max_messages_per_chunk=_env_int("MAX_MESSAGES_PER_CHUNK", 30),
        max_chars_per_prompt=_env_int("MAX_CHARS_PER_PROMPT", 8_000),
        prompt_template_overhead=_env_int("PROMPT_TEMPLATE_OVERHEAD", 3_500),
        merge_template_overhead=_env_int("MERGE_TEMPLATE_OVERHEAD", 2_000),
        max_group_size=_env_int("MAX_GROUP_SIZE", 3),
        chunks_per_batch=_env_int("CHUNKS_PER_BATCH", 3),
        max_merge_depth=_env_int("MAX_MERGE_DEPTH", 3),
        max_workers=_env_int("MAX_WORKERS", 1),
        min_messages_for_summary=_env_int("MIN_MESSAGES_FOR_SUMMARY", 3),
    )
    ensure_directories(settings)
    return settings


def ensure_directories(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
