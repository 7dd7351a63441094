from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True, slots=True)
class ChatMessage:
    chat_id: int
    user_id: int
    username: str
    text: str
    timestamp: datetime
    message_id: int | None = None

    @property
    def length(self) -> int:
        return len(self.text)


@dataclass(slots=True)
class Chunk:
    index: int
    messages: list[ChatMessage]

    @property
    def start(self) -> datetime:
        return self.messages[0].timestamp

    @property
    def end(self) -> datetime:
        return self.messages[-1].timestamp

    def __len__(self) -> int:
        return len(self.messages)


@dataclass(slots=True)
class ProductMention:
    product_name: str
    mention_count: int = 1
    credibility_score: int = 3
    sentiment: str = "neutral"
    validation_status: str = "mixed"
    price_mentioned: str | None = None
    summary_id: int | None = None
    mention_id: int | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class SummaryMetadata:
    sentiment: str = "neutral"
    credibility_score: int = 3
    products: list[ProductMention] = field(default_factory=list)
    products_json: str = "[]"
    red_flags_count: int = 0
    validation_status: str = "mixed"


@dataclass(slots=True)
class SummaryRecord:
    chat_id: int
    summary_type: str
    period_start: datetime
    period_end: datetime
    summary_text: str
    message_count: int
    sentiment: str = "neutral"
    credibility_score: int = 3
    products_mentioned: str = "[]"
    red_flags_count: int = 0
    validation_status: str = "mixed"
    summary_id: int | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class ProviderAttempt:
    provider: str
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class GenerationResult:
    text: str
    provider: str
    attempts: list[ProviderAttempt] = field(default_factory=list)
