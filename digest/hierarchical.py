from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
import logging
import threading
from typing import Callable, Protocol, Sequence

from config.settings import Settings
from digest.chunker import ChunkManager, batch_items, format_messages_for_prompt
from digest.errors import (
    DigestError,
    RecursionLimitExceeded,
    SummarizationCancelled,
    SummarizationStepFailed,
)
from digest.formatter import SummaryFormatter
from digest.models import ChatMessage, Chunk
from digest.prompts import PromptRenderer, PromptTemplates, format_summaries_for_merge

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]
PartialResultCallback = Callable[[str], None]


class TextGenerator(Protocol):
    def generate(self, prompt: str) -> str: ...


class CancelToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(slots=True)
class _RequestContext:
    on_progress: ProgressCallback | None = None
    on_partial_result: PartialResultCallback | None = None
    cancel_token: CancelToken | None = None

    def progress(self, message: str) -> None:
        logger.info("Progress: %s", message)
        if self.on_progress is None:
            return
        try:
            self.on_progress(message)
        except Exception:
            logger.exception("Progress callback raised; continuing")

    def emit_partial(self, text: str) -> None:
        if self.on_partial_result is None:
            logger.warning("Partial result callback not set, skipping partial summary")
            return
        self.on_partial_result(text)

    def check(self) -> None:
        if self.cancel_token is not None and self.cancel_token.cancelled:
            raise SummarizationCancelled("summarization cancelled")


class HierarchicalSummarizer:
    """Summarizes message windows of any size through a size-limited text generator.

    Small windows are summarized with one call. Larger windows are split into
    chunks, summarized chunk by chunk, merged per batch and streamed to the
    caller through ``on_partial_result``; the return value is then only a
    completion marker. Merges that are still too large are split and merged
    recursively up to ``max_merge_depth`` levels.
    """

    def __init__(
        self,
        generator: TextGenerator,
        chunk_manager: ChunkManager | None = None,
        prompts: PromptRenderer | None = None,
        formatter: SummaryFormatter | None = None,
        *,
        chunks_per_batch: int = 3,
        max_merge_depth: int = 3,
        max_workers: int = 1,
    ) -> None:
        self.generator = generator
        self.chunk_manager = chunk_manager or ChunkManager()
        self.prompts = prompts or PromptTemplates()
        self.formatter = formatter or SummaryFormatter()
        self.chunks_per_batch = max(1, chunks_per_batch)
        self.max_merge_depth = max_merge_depth
        self.max_workers = max(1, max_workers)

    @classmethod
    def from_settings(cls, settings: Settings, generator: TextGenerator) -> HierarchicalSummarizer:
        chunk_manager = ChunkManager(
            settings.max_messages_per_chunk,
            settings.max_chars_per_prompt,
            prompt_template_overhead=settings.prompt_template_overhead,
            merge_template_overhead=settings.merge_template_overhead,
            max_group_size=settings.max_group_size,
        )
        return cls(
            generator,
            chunk_manager,
            chunks_per_batch=settings.chunks_per_batch,
            max_merge_depth=settings.max_merge_depth,
            max_workers=settings.max_workers,
        )

    def needs_streaming(self, messages: Sequence[ChatMessage]) -> bool:
        return self.chunk_manager.should_split_messages(messages)

    def summarize(
        self,
        messages: Sequence[ChatMessage],
        group_name: str,
        start: datetime,
        end: datetime,
        on_progress: ProgressCallback | None = None,
        on_partial_result: PartialResultCallback | None = None,
        cancel_token: CancelToken | None = None,
    ) -> str:
        if not messages:
            raise ValueError("no messages to summarize")

        ctx = _RequestContext(on_progress, on_partial_result, cancel_token)
        logger.info("Starting summarization for %d messages from %s", len(messages), group_name)

        if not self.needs_streaming(messages):
            ctx.check()
            ctx.progress("Generating summary...")
            return self._summarize_direct(messages, group_name, start, end)

        ctx.progress("Chat is large - using streaming multi-part summarization...")
        return self._summarize_streaming(messages, group_name, ctx)

    def summarize_recursive(
        self,
        messages: Sequence[ChatMessage],
        group_name: str,
        start: datetime,
        end: datetime,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancelToken | None = None,
    ) -> str:
        if not messages:
            raise ValueError("no messages to summarize")

        ctx = _RequestContext(on_progress, None, cancel_token)
        if not self.needs_streaming(messages):
            ctx.check()
            ctx.progress("Generating summary...")
            return self._summarize_direct(messages, group_name, start, end)

        chunks = self.chunk_manager.split_messages(messages)
        summaries = self._summarize_chunks(chunks, len(chunks), group_name, ctx)
        ctx.progress(f"🔄 Merging {len(summaries)} summaries...")
        return self._merge_recursive(summaries, group_name, start, end, 1, ctx)

    def merge_recursive(
        self,
        summaries: Sequence[str],
        group_name: str,
        start: datetime,
        end: datetime,
        depth: int = 1,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancelToken | None = None,
    ) -> str:
        ctx = _RequestContext(on_progress, None, cancel_token)
        return self._merge_recursive(list(summaries), group_name, start, end, depth, ctx)

    def _summarize_streaming(
        self, messages: Sequence[ChatMessage], group_name: str, ctx: _RequestContext
    ) -> str:
        chunks = self.chunk_manager.split_messages(messages)
        batches = batch_items(chunks, self.chunks_per_batch)
        total_chunks = len(chunks)
        total_batches = len(batches)
        logger.info(
            "Processing %d chunks in %d batches (%d chunks per batch)",
            total_chunks,
            total_batches,
            self.chunks_per_batch,
        )

        for batch_number, batch in enumerate(batches, start=1):
            ctx.check()
            batch_messages = sum(len(chunk) for chunk in batch)
            ctx.progress(
                f"📦 Processing batch {batch_number}/{total_batches} "
                f"({len(batch)} chunks, {batch_messages} messages)..."
            )
            summaries = self._summarize_chunks(batch, total_chunks, group_name, ctx)

            batch_start = batch[0].start
            batch_end = batch[-1].end
            ctx.progress(
                f"🔄 Merging batch {batch_number}/{total_batches} ({len(summaries)} summaries)..."
            )
            try:
                merged = self._merge_recursive(summaries, group_name, batch_start, batch_end, 1, ctx)
            except SummarizationCancelled:
                raise
            except DigestError as exc:
                logger.error("Failed to merge batch %d: %s", batch_number, exc)
                raise SummarizationStepFailed("merge batch", batch_number, total_batches, exc) from exc

            ctx.check()
            logger.info("Batch %d/%d merged (%d chars)", batch_number, total_batches, len(merged))
            ctx.emit_partial(
                self.formatter.format_partial(
                    merged,
                    batch_number,
                    total_batches,
                    group_name,
                    batch_start,
                    batch_end,
                    batch_messages,
                )
            )

        return self.formatter.format_completion(total_batches)

    def _summarize_chunks(
        self, chunks: Sequence[Chunk], total_chunks: int, group_name: str, ctx: _RequestContext
    ) -> list[str]:
        if self.max_workers <= 1 or len(chunks) <= 1:
            return [self._summarize_chunk(chunk, total_chunks, group_name, ctx) for chunk in chunks]

        results: list[str] = [""] * len(chunks)
        workers = min(self.max_workers, len(chunks))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="chunk-summary") as executor:
            futures: dict[Future[str], int] = {
                executor.submit(self._summarize_chunk, chunk, total_chunks, group_name, ctx): position
                for position, chunk in enumerate(chunks)
            }
            try:
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

        ctx.check()
        return results

    def _summarize_chunk(
        self, chunk: Chunk, total_chunks: int, group_name: str, ctx: _RequestContext
    ) -> str:
        ctx.check()
        chunk_number = chunk.index + 1
        ctx.progress(f"📝 Processing chunk {chunk_number}/{total_chunks} ({len(chunk)} messages)...")
        try:
            summary = self._summarize_direct(chunk.messages, group_name, chunk.start, chunk.end)
        except DigestError as exc:
            logger.error("Failed to summarize chunk %d: %s", chunk_number, exc)
            raise SummarizationStepFailed("summarize chunk", chunk_number, total_chunks, exc) from exc
        logger.info("Chunk %d/%d completed (%d chars)", chunk_number, total_chunks, len(summary))
        return summary

    def _summarize_direct(
        self, messages: Sequence[ChatMessage], group_name: str, start: datetime, end: datetime
    ) -> str:
        prompt = self.prompts.render_chunk_prompt(
            format_messages_for_prompt(messages), group_name, start, end
        )
        logger.debug("Chunk prompt size: %d chars", len(prompt))
        return self.generator.generate(prompt)

    def _merge_recursive(
        self,
        summaries: list[str],
        group_name: str,
        start: datetime,
        end: datetime,
        depth: int,
        ctx: _RequestContext,
    ) -> str:
        if not summaries:
            raise ValueError("no summaries to merge")
        if depth > self.max_merge_depth:
            raise RecursionLimitExceeded(self.max_merge_depth)

        ctx.check()
        logger.info("Merging %d summaries at depth %d", len(summaries), depth)
        if not self.chunk_manager.should_split_summaries(summaries):
            return self._merge_direct(summaries, group_name, start, end)

        if len(summaries) == 1:
            logger.warning("Single summary exceeds merge budget, keeping it unmerged")
            return summaries[0]

        ctx.progress("⚙️ Summaries too large - doing multi-level merge...")
        groups = self.chunk_manager.split_summaries(summaries)
        merged: list[str] = []
        for group_number, group in enumerate(groups, start=1):
            ctx.check()
            ctx.progress(
                f"🔄 Merging group {group_number}/{len(groups)} ({len(group)} summaries)..."
            )
            try:
                merged.append(self._merge_direct(group, group_name, start, end))
            except DigestError as exc:
                raise SummarizationStepFailed("merge group", group_number, len(groups), exc) from exc

        return self._merge_recursive(merged, group_name, start, end, depth + 1, ctx)

    def _merge_direct(
        self, summaries: Sequence[str], group_name: str, start: datetime, end: datetime
    ) -> str:
        prompt = self.prompts.render_merge_prompt(
            format_summaries_for_merge(summaries), group_name, start, end
        )
        logger.debug("Merge prompt size: %d chars", len(prompt))
        return self.generator.generate(prompt)
