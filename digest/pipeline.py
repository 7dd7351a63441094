from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging

from config.settings import Settings, get_settings
from digest.fallback import FallbackChain
from digest.hierarchical import (
    CancelToken,
    HierarchicalSummarizer,
    PartialResultCallback,
    ProgressCallback,
    TextGenerator,
)
from digest.metadata import MetadataExtractor
from digest.models import SummaryMetadata, SummaryRecord
from digest.registry import build_providers
from digest.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

PART_SEPARATOR = "\n\n---\n\n"
DEFAULT_RETENTION = timedelta(hours=24)


@dataclass(slots=True)
class PipelineResult:
    status: str
    message_count: int = 0
    text: str = ""
    summary_id: int | None = None
    metadata: SummaryMetadata | None = None
    partials: list[str] = field(default_factory=list)
    source_summaries: int = 0
    deleted_messages: int = 0

    @property
    def streamed(self) -> bool:
        return bool(self.partials)


class SummaryPipeline:
    def __init__(
        self,
        store: SQLiteStore,
        summarizer: HierarchicalSummarizer,
        extractor: MetadataExtractor | None = None,
        *,
        min_messages_for_summary: int = 3,
    ) -> None:
        self.store = store
        self.summarizer = summarizer
        self.extractor = extractor or MetadataExtractor()
        self.min_messages_for_summary = min_messages_for_summary

    @classmethod
    def from_settings(
        cls, settings: Settings | None = None, generator: TextGenerator | None = None
    ) -> SummaryPipeline:
        settings = settings or get_settings()
        if generator is None:
            generator = FallbackChain(build_providers(settings))
        return cls(
            SQLiteStore(settings.sqlite_path),
            HierarchicalSummarizer.from_settings(settings, generator),
            min_messages_for_summary=settings.min_messages_for_summary,
        )

    def run_window(
        self,
        chat_id: int,
        group_name: str,
        start: datetime,
        end: datetime,
        summary_type: str = "manual",
        on_progress: ProgressCallback | None = None,
        on_partial_result: PartialResultCallback | None = None,
        cancel_token: CancelToken | None = None,
    ) -> PipelineResult:
        messages = self.store.get_messages_in_range(chat_id, start, end)
        if len(messages) < self.min_messages_for_summary:
            logger.info(
                "Skipping %s summary for chat %d: %d messages (minimum %d)",
                summary_type,
                chat_id,
                len(messages),
                self.min_messages_for_summary,
            )
            return PipelineResult(status="skipped", message_count=len(messages))

        partials: list[str] = []

        def collect_partial(text: str) -> None:
            partials.append(text)
            if on_partial_result is not None:
                on_partial_result(text)

        returned = self.summarizer.summarize(
            messages,
            group_name,
            start,
            end,
            on_progress=on_progress,
            on_partial_result=collect_partial,
            cancel_token=cancel_token,
        )
        # Streaming mode returns only the completion marker; persist the parts themselves.
        persisted = PART_SEPARATOR.join(partials) if partials else returned
        summary_id, metadata = self._persist(
            chat_id, summary_type, start, end, persisted, len(messages)
        )

        return PipelineResult(
            status="completed",
            message_count=len(messages),
            text=returned,
            summary_id=summary_id,
            metadata=metadata,
            partials=partials,
        )

    def run_daily_rollup(
        self,
        chat_id: int,
        group_name: str,
        day_start: datetime,
        day_end: datetime,
        *,
        source_type: str = "1h",
        retention: timedelta | None = DEFAULT_RETENTION,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancelToken | None = None,
    ) -> PipelineResult:
        hourly = self.store.get_summaries_in_range(chat_id, source_type, day_start, day_end)
        if not hourly:
            logger.info(
                "Skipping daily roll-up for chat %d: no %s summaries between %s and %s",
                chat_id,
                source_type,
                day_start,
                day_end,
            )
            return PipelineResult(status="skipped")

        message_count = sum(record.message_count for record in hourly)
        logger.info(
            "Rolling up %d %s summaries (%d messages) for chat %d",
            len(hourly),
            source_type,
            message_count,
            chat_id,
        )
        sections = [
            f"Period {record.period_start:%H:%M} - {record.period_end:%H:%M} "
            f"({record.message_count} messages)\n{record.summary_text}"
            for record in hourly
        ]
        text = self.summarizer.merge_recursive(
            sections,
            group_name,
            day_start,
            day_end,
            on_progress=on_progress,
            cancel_token=cancel_token,
        )
        summary_id, metadata = self._persist(
            chat_id, "daily", day_start, day_end, text, message_count
        )

        deleted = 0
        if retention is not None:
            deleted = self.store.delete_messages_older_than(chat_id, day_end - retention)

        return PipelineResult(
            status="completed",
            message_count=message_count,
            text=text,
            summary_id=summary_id,
            metadata=metadata,
            source_summaries=len(hourly),
            deleted_messages=deleted,
        )

    def _persist(
        self,
        chat_id: int,
        summary_type: str,
        start: datetime,
        end: datetime,
        text: str,
        message_count: int,
    ) -> tuple[int, SummaryMetadata]:
        metadata = self.extractor.extract(text)
        summary_id = self.store.save_summary(
            SummaryRecord(
                chat_id=chat_id,
                summary_type=summary_type,
                period_start=start,
                period_end=end,
                summary_text=text,
                message_count=message_count,
                sentiment=metadata.sentiment,
                credibility_score=metadata.credibility_score,
                products_mentioned=metadata.products_json,
                red_flags_count=metadata.red_flags_count,
                validation_status=metadata.validation_status,
            )
        )

        for product in metadata.products:
            product.summary_id = summary_id
            self.store.save_product_mention(product)
        logger.info(
            "Saved %s summary %d for chat %d with %d product mentions",
            summary_type,
            summary_id,
            chat_id,
            len(metadata.products),
        )
        return summary_id, metadata
