from __future__ import annotations

import logging
from typing import Sequence, TypeVar

from digest.models import ChatMessage, Chunk

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_GROUP_SIZE = 2


def format_messages_for_prompt(messages: Sequence[ChatMessage]) -> str:
    return "".join(
        f"[{msg.timestamp.strftime('%H:%M')}] {msg.username}: {msg.text}\n" for msg in messages
    )


def batch_items(items: Sequence[T], batch_size: int) -> list[list[T]]:
    size = max(1, batch_size)
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


class ChunkManager:
    def __init__(
        self,
        max_messages_per_chunk: int = 30,
        max_chars_per_prompt: int = 8_000,
        *,
        prompt_template_overhead: int = 3_500,
        merge_template_overhead: int = 2_000,
        max_group_size: int = 3,
    ) -> None:
        self.max_messages_per_chunk = max(1, max_messages_per_chunk)
        self.max_chars_per_prompt = max_chars_per_prompt
        self.prompt_template_overhead = prompt_template_overhead
        self.merge_template_overhead = merge_template_overhead
        self.max_group_size = max(MIN_GROUP_SIZE, max_group_size)

    @property
    def merge_budget(self) -> int:
        return self.max_chars_per_prompt - self.merge_template_overhead

    def estimate_prompt_size(self, messages: Sequence[ChatMessage]) -> int:
        return self.prompt_template_overhead + len(format_messages_for_prompt(messages))

    def estimate_merge_size(self, summaries: Sequence[str]) -> int:
        return self.merge_template_overhead + sum(len(summary) for summary in summaries)

    def should_split_messages(self, messages: Sequence[ChatMessage]) -> bool:
        if len(messages) > self.max_messages_per_chunk:
            logger.debug(
                "Should split: message count %d > threshold %d",
                len(messages),
                self.max_messages_per_chunk,
            )
            return True

        estimated = self.estimate_prompt_size(messages)
        if estimated > self.max_chars_per_prompt:
            logger.debug(
                "Should split: estimated size %d > threshold %d",
                estimated,
                self.max_chars_per_prompt,
            )
            return True

        logger.debug("No split needed: %d messages, %d chars", len(messages), estimated)
        return False

    def should_split_summaries(self, summaries: Sequence[str]) -> bool:
        return self.estimate_merge_size(summaries) > self.max_chars_per_prompt

    def split_messages(self, messages: Sequence[ChatMessage]) -> list[Chunk]:
        if not messages:
            return []

        chunks = [
            Chunk(index=index, messages=group)
            for index, group in enumerate(batch_items(messages, self.max_messages_per_chunk))
        ]
        for chunk in chunks:
            if self.estimate_prompt_size(chunk.messages) > self.max_chars_per_prompt:
                logger.warning(
                    "Chunk %d exceeds prompt budget (%d messages)", chunk.index + 1, len(chunk)
                )

        logger.info(
            "Split %d messages into %d chunks (max %d per chunk)",
            len(messages),
            len(chunks),
            self.max_messages_per_chunk,
        )
        return chunks

    def split_summaries(self, summaries: Sequence[str]) -> list[list[str]]:
        if not summaries:
            return []
        if len(summaries) == 1:
            return [list(summaries)]

        budget = self.merge_budget
        groups: list[list[str]] = []
        current: list[str] = []
        current_size = 0

        for summary in summaries:
            size = len(summary)
            if current and (
                current_size + size > budget or len(current) >= self.max_group_size
            ):
                groups.append(current)
                current = []
                current_size = 0
            current.append(summary)
            current_size += size

        if current:
            groups.append(current)

        if len(groups) > 1 and all(len(group) == 1 for group in groups):
            logger.warning("All %d groups hold a single summary, forcing pairs", len(groups))
            groups = _force_pairs(groups)

        logger.info(
            "Split %d summaries (%d chars) into %d groups",
            len(summaries),
            sum(len(summary) for summary in summaries),
            len(groups),
        )
        return groups


def _force_pairs(groups: list[list[str]]) -> list[list[str]]:
    paired: list[list[str]] = []
    for start in range(0, len(groups), 2):
        if start + 1 < len(groups):
            paired.append([groups[start][0], groups[start + 1][0]])
        elif paired:
            paired[-1].append(groups[start][0])
        else:
            paired.append(list(groups[start]))
    return paired
