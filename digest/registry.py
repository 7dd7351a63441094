from __future__ import annotations

from dataclasses import dataclass, field
import logging

from config.settings import Settings
from digest.errors import ConfigError
from digest.llm_client import HTTPTextProvider, OpenRouterProvider, TextProvider

logger = logging.getLogger(__name__)

YUPRA_BASE = "https://api.yupra.my.id/api/ai"
DELINE_BASE = "https://api.deline.web.id/ai"
ELRAYYXML_BASE = "https://api.elrayyxml.web.id/api/ai"

DELINE_SYSTEM_PROMPT = (
    "You are a helpful AI assistant that creates concise summaries of conversations."
)


@dataclass(frozen=True, slots=True)
class ProviderSpec:
    key: str
    name: str
    url: str = ""
    envelope: str = "result"
    extra_params: dict[str, str] = field(default_factory=dict)
    kind: str = "http"


PROVIDER_SPECS: dict[str, ProviderSpec] = {
    spec.key: spec
    for spec in (
        ProviderSpec(key="openrouter", name="OpenRouter", kind="openrouter"),
        ProviderSpec("yupra_copilot_think", "Copilot Think Deeper", f"{YUPRA_BASE}/copilot-think"),
        ProviderSpec("yupra_gpt5", "GPT-5 Smart", f"{YUPRA_BASE}/gpt5"),
        ProviderSpec("yupra_copilot", "Copilot Default", f"{YUPRA_BASE}/copilot"),
        ProviderSpec("yupra_ypai", "YP AI", f"{YUPRA_BASE}/ypai"),
        ProviderSpec(
            "deline_copilot_think",
            "Copilot Think (Deline)",
            f"{DELINE_BASE}/copilot-think",
            envelope="result_text",
        ),
        ProviderSpec("deline_copilot", "Copilot (Deline)", f"{DELINE_BASE}/copilot"),
        ProviderSpec(
            "deline_openai",
            "OpenAI (Deline)",
            f"{DELINE_BASE}/openai",
            extra_params={"prompt": DELINE_SYSTEM_PROMPT},
        ),
        ProviderSpec("elrayyxml_venice", "Venice AI (ElrayyXml)", f"{ELRAYYXML_BASE}/veniceai"),
        ProviderSpec("elrayyxml_powerbrain", "PowerBrain AI (ElrayyXml)", f"{ELRAYYXML_BASE}/powerbrainai"),
        ProviderSpec("elrayyxml_lumin", "Lumin AI (ElrayyXml)", f"{ELRAYYXML_BASE}/luminai"),
        ProviderSpec("elrayyxml_chatgpt", "ChatGPT (ElrayyXml)", f"{ELRAYYXML_BASE}/chatgpt"),
        ProviderSpec("elrayyxml_perplexity", "Perplexity AI (ElrayyXml)", f"{ELRAYYXML_BASE}/perplexityai"),
        ProviderSpec("elrayyxml_felo", "Felo AI (ElrayyXml)", f"{ELRAYYXML_BASE}/feloai"),
        ProviderSpec("elrayyxml_gemini", "Gemini (ElrayyXml)", f"{ELRAYYXML_BASE}/gemini"),
        ProviderSpec("elrayyxml_copilot", "Copilot (ElrayyXml)", f"{ELRAYYXML_BASE}/copilot"),
        ProviderSpec(
            "elrayyxml_alisia",
            "Alisia AI (ElrayyXml)",
            f"{ELRAYYXML_BASE}/alisia",
            envelope="refined_results",
        ),
        ProviderSpec("elrayyxml_biblegpt", "BibleGPT (ElrayyXml)", f"{ELRAYYXML_BASE}/biblegpt"),
    )
}


def resolve_specs(keys: tuple[str, ...] | list[str]) -> list[ProviderSpec]:
    unknown = [key for key in keys if key not in PROVIDER_SPECS]
    if unknown:
        raise ConfigError(f"Unknown provider keys: {', '.join(unknown)}")
    return [PROVIDER_SPECS[key] for key in keys]


def build_provider(spec: ProviderSpec, settings: Settings) -> TextProvider:
    if spec.kind == "openrouter":
        return OpenRouterProvider.from_settings(settings)
    return HTTPTextProvider(
        spec.name,
        spec.url,
        envelope=spec.envelope,
        extra_params=spec.extra_params,
        timeout=settings.provider_timeout,
    )


def build_providers(settings: Settings) -> list[TextProvider]:
    specs = resolve_specs(settings.fallback_providers)
    providers = [build_provider(spec, settings) for spec in specs]
    logger.info(
        "Provider chain configured with %d providers: %s",
        len(providers),
        ", ".join(spec.key for spec in specs),
    )
    return providers
