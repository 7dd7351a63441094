from __future__ import annotations

from datetime import datetime, timedelta
import logging
import re
import threading
import time

import pytest

from digest.chunker import ChunkManager
from digest.errors import (
    BackendUnavailable,
    RecursionLimitExceeded,
    SummarizationCancelled,
    SummarizationStepFailed,
)
from digest.hierarchical import CancelToken, HierarchicalSummarizer
from digest.models import ChatMessage

START = datetime(2024, 5, 1, 9, 0, 0)
MSG_TOKEN_RE = re.compile(r"msg-(\d+)\b")


def _messages(count: int) -> list[ChatMessage]:
    return [
        ChatMessage(
            chat_id=-100,
            user_id=i % 5,
            username=f"user{i % 5}",
            text=f"msg-{i}",
            timestamp=START + timedelta(minutes=i),
            message_id=i,
        )
        for i in range(count)
    ]


def _is_merge(prompt: str) -> bool:
    return prompt.startswith("Combine the partial summaries")


class RecordingGenerator:
    def __init__(
        self,
        merge_reply: str = "merged summary",
        fail_on_chunk: int | None = None,
        fail_on_merge: int | None = None,
        chunk_reply: str | None = None,
    ) -> None:
        self.merge_reply = merge_reply
        self.fail_on_chunk = fail_on_chunk
        self.fail_on_merge = fail_on_merge
        self.chunk_reply = chunk_reply
        self.chunk_prompts: list[str] = []
        self.merge_prompts: list[str] = []
        self._lock = threading.Lock()

    def generate(self, prompt: str) -> str:
        if _is_merge(prompt):
            with self._lock:
                self.merge_prompts.append(prompt)
                call = len(self.merge_prompts)
            if call == self.fail_on_merge:
                raise BackendUnavailable("fake", "API error: status 502")
            return self.merge_reply

        with self._lock:
            self.chunk_prompts.append(prompt)
            call = len(self.chunk_prompts)
        if call == self.fail_on_chunk:
            raise BackendUnavailable("fake", "API error: status 500")
        if self.chunk_reply is not None:
            return self.chunk_reply
        first = MSG_TOKEN_RE.search(prompt)
        return f"summary from {first.group(0) if first else 'nothing'}"


def test_direct_mode_makes_single_call() -> None:
    generator = RecordingGenerator()
    summarizer = HierarchicalSummarizer(generator)
    partials: list[str] = []

    result = summarizer.summarize(
        _messages(10), "Group", START, START + timedelta(hours=1), on_partial_result=partials.append
    )

    assert result == "summary from msg-0"
    assert len(generator.chunk_prompts) == 1
    assert generator.merge_prompts == []
    assert partials == []


def test_empty_input_is_rejected() -> None:
    with pytest.raises(ValueError):
        HierarchicalSummarizer(RecordingGenerator()).summarize(
            [], "Group", START, START + timedelta(hours=1)
        )


def test_streaming_mode_emits_one_partial_per_batch() -> None:
    generator = RecordingGenerator()
    summarizer = HierarchicalSummarizer(generator)
    partials: list[str] = []
    progress: list[str] = []

    result = summarizer.summarize(
        _messages(75),
        "Group",
        START,
        START + timedelta(hours=2),
        on_progress=progress.append,
        on_partial_result=partials.append,
    )

    assert len(generator.chunk_prompts) == 3
    assert len(generator.merge_prompts) == 1
    assert len(partials) == 1
    assert partials[0].startswith("📊 Part 1/1 | Group\n")
    assert "75 messages" in partials[0]
    assert partials[0].endswith("merged summary")
    assert result == "✅ Summary complete: 1 part delivered."
    assert any("batch 1/1" in line for line in progress)


def test_streaming_batches_cover_all_chunks() -> None:
    generator = RecordingGenerator()
    summarizer = HierarchicalSummarizer(generator)
    partials: list[str] = []

    result = summarizer.summarize(
        _messages(200), "Group", START, START + timedelta(hours=4), on_partial_result=partials.append
    )

    # 200 messages -> 7 chunks -> batches of 3, 3, 1
    assert len(generator.chunk_prompts) == 7
    assert len(generator.merge_prompts) == 3
    assert [p.splitlines()[0] for p in partials] == [
        "📊 Part 1/3 | Group",
        "📊 Part 2/3 | Group",
        "📊 Part 3/3 | Group",
    ]
    assert "20 messages" in partials[2]
    assert result == "✅ Summary complete: 3 parts delivered."


def test_merge_recursive_handles_large_summaries_within_depth() -> None:
    generator = RecordingGenerator(merge_reply="short merged")
    summarizer = HierarchicalSummarizer(generator)
    summaries = [str(i) * 5_400 for i in range(10)]

    result = summarizer.merge_recursive(summaries, "Group", START, START + timedelta(hours=1))

    assert result == "short merged"
    # five forced pairs at depth 1, then one final merge at depth 2
    assert len(generator.merge_prompts) == 6


def test_merge_recursive_raises_when_depth_exhausted() -> None:
    generator = RecordingGenerator(merge_reply="y" * 200)
    manager = ChunkManager(max_chars_per_prompt=2_100, merge_template_overhead=2_000)
    summarizer = HierarchicalSummarizer(generator, manager)
    summaries = ["x" * 200 for _ in range(10)]

    with pytest.raises(RecursionLimitExceeded, match=r"maximum recursion depth \(3\)"):
        summarizer.merge_recursive(summaries, "Group", START, START + timedelta(hours=1))

    # 10 -> 5 -> 2 -> 1 before the depth check trips
    assert len(generator.merge_prompts) == 8


def test_chunk_failure_names_the_chunk() -> None:
    generator = RecordingGenerator(fail_on_chunk=2)
    summarizer = HierarchicalSummarizer(generator)
    partials: list[str] = []

    with pytest.raises(SummarizationStepFailed, match="failed to summarize chunk 2/3") as excinfo:
        summarizer.summarize(
            _messages(75), "Group", START, START + timedelta(hours=2), on_partial_result=partials.append
        )

    assert isinstance(excinfo.value.__cause__, BackendUnavailable)
    assert partials == []
    assert generator.merge_prompts == []


def test_cancellation_stops_before_next_batch() -> None:
    generator = RecordingGenerator()
    summarizer = HierarchicalSummarizer(generator)
    token = CancelToken()
    partials: list[str] = []

    def on_partial(text: str) -> None:
        partials.append(text)
        token.cancel()

    with pytest.raises(SummarizationCancelled):
        summarizer.summarize(
            _messages(150),
            "Group",
            START,
            START + timedelta(hours=3),
            on_partial_result=on_partial,
            cancel_token=token,
        )

    assert len(partials) == 1
    assert len(generator.chunk_prompts) == 3


def test_concurrent_chunks_keep_original_order() -> None:
    class SlowFirstGenerator(RecordingGenerator):
        def generate(self, prompt: str) -> str:
            first = MSG_TOKEN_RE.search(prompt)
            if first and not _is_merge(prompt):
                # earlier chunks finish last
                time.sleep(0.05 if first.group(1) == "0" else 0.0)
            return super().generate(prompt)

    generator = SlowFirstGenerator()
    summarizer = HierarchicalSummarizer(generator, max_workers=3)
    partials: list[str] = []

    summarizer.summarize(
        _messages(75), "Group", START, START + timedelta(hours=2), on_partial_result=partials.append
    )

    merge_prompt = generator.merge_prompts[0]
    first = merge_prompt.index("## Part 1/3:\nsummary from msg-0")
    second = merge_prompt.index("## Part 2/3:\nsummary from msg-30")
    third = merge_prompt.index("## Part 3/3:\nsummary from msg-60")
    assert first < second < third
    assert len(partials) == 1


def test_summarize_recursive_returns_single_merged_summary() -> None:
    generator = RecordingGenerator()
    summarizer = HierarchicalSummarizer(generator)
    partials: list[str] = []

    result = summarizer.summarize_recursive(
        _messages(200), "Group", START, START + timedelta(hours=4), on_progress=partials.append
    )

    assert result == "merged summary"
    assert len(generator.chunk_prompts) == 7
    assert len(generator.merge_prompts) == 1
    assert "## Part 7/7:\nsummary from msg-180" in generator.merge_prompts[0]


def test_merge_failure_in_later_batch_keeps_earlier_parts() -> None:
    generator = RecordingGenerator(fail_on_merge=2)
    summarizer = HierarchicalSummarizer(generator)
    partials: list[str] = []

    # 150 messages -> 5 chunks -> batches of 3, 2
    with pytest.raises(SummarizationStepFailed, match="failed to merge batch 2/2") as excinfo:
        summarizer.summarize(
            _messages(150), "Group", START, START + timedelta(hours=3), on_partial_result=partials.append
        )

    assert isinstance(excinfo.value.__cause__, BackendUnavailable)
    assert len(partials) == 1
    assert partials[0].startswith("📊 Part 1/2 | Group\n")
    assert len(generator.chunk_prompts) == 5
    assert len(generator.merge_prompts) == 2


def test_oversized_batch_merge_goes_multi_level() -> None:
    generator = RecordingGenerator(chunk_reply="x" * 5_400)
    summarizer = HierarchicalSummarizer(generator)
    partials: list[str] = []
    progress: list[str] = []

    summarizer.summarize(
        _messages(75),
        "Group",
        START,
        START + timedelta(hours=2),
        on_progress=progress.append,
        on_partial_result=partials.append,
    )

    # three oversized summaries fold into one group, then one final merge at depth 2
    assert len(generator.merge_prompts) == 2
    assert generator.merge_prompts[0].count("x" * 5_400) == 3
    assert "## Part 1/1:\nmerged summary" in generator.merge_prompts[1]
    assert len(partials) == 1
    assert partials[0].endswith("merged summary")
    assert any("multi-level merge" in line for line in progress)


def test_single_oversized_summary_is_returned_unchanged() -> None:
    generator = RecordingGenerator()
    summarizer = HierarchicalSummarizer(generator)
    oversized = "z" * 7_000

    result = summarizer.merge_recursive([oversized], "Group", START, START + timedelta(hours=1))

    assert result == oversized
    assert generator.merge_prompts == []


def test_raising_progress_callback_does_not_abort(caplog: pytest.LogCaptureFixture) -> None:
    generator = RecordingGenerator()
    summarizer = HierarchicalSummarizer(generator)
    partials: list[str] = []
    calls: list[str] = []

    def broken_progress(message: str) -> None:
        calls.append(message)
        raise RuntimeError("display went away")

    with caplog.at_level(logging.ERROR, logger="digest.hierarchical"):
        result = summarizer.summarize(
            _messages(75),
            "Group",
            START,
            START + timedelta(hours=2),
            on_progress=broken_progress,
            on_partial_result=partials.append,
        )

    assert result == "✅ Summary complete: 1 part delivered."
    assert len(partials) == 1
    assert len(calls) > 1
    assert "Progress callback raised" in caplog.text
