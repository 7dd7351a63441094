from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence


class PromptRenderer(Protocol):
    def render_chunk_prompt(
        self, formatted_messages: str, group_name: str, start: datetime, end: datetime
    ) -> str: ...

    def render_merge_prompt(
        self, formatted_summaries: str, group_name: str, start: datetime, end: datetime
    ) -> str: ...


def format_summaries_for_merge(summaries: Sequence[str]) -> str:
    total = len(summaries)
    return "".join(
        f"\n## Part {index}/{total}:\n{summary}\n" for index, summary in enumerate(summaries, start=1)
    )


class PromptTemplates:
    def render_chunk_prompt(
        self, formatted_messages: str, group_name: str, start: datetime, end: datetime
    ) -> str:
        period = f"{start:%Y-%m-%d %H:%M} - {end:%Y-%m-%d %H:%M}"
        return (
            "You are an analyst for an online community group chat. Analyse this chat segment "
            "using ONLY facts present in the messages.\n\n"
            f'Group: "{group_name}"\n'
            f"Period: {period}\n\n"
            f"Messages:\n{formatted_messages}\n"
            "RULES:\n"
            "1. Only report what is actually in the messages, never invent details.\n"
            "2. If data is missing write \"Not enough data\".\n"
            "3. Keep the section headers below exactly as written, add no other sections.\n\n"
            "## 📅 SUMMARY\n"
            f"- Period: {period}\n"
            "- Total messages: [count]\n"
            "- Active users: [count unique users]\n"
            "- Overall sentiment: [positive/neutral/negative]\n\n"
            "## 🔥 MAIN TOPICS\n"
            "1. [Topic] - [one or two sentence description]\n\n"
            "## 📦 PRODUCTS DISCUSSED\n"
            "For every product, package or service that is mentioned:\n"
            "**[Product name]**\n"
            "- Mention count: [X] times\n"
            "- Context: [recommendation/question/complaint/review]\n"
            "- Price: [price if mentioned]\n"
            "- Credibility: [⭐ to ⭐⭐⭐⭐⭐ based on evidence]\n\n"
            "## ✅ VALIDATION\n"
            "- [Product]: Valid or Suspicious, with the evidence shared in chat\n\n"
            "## 🚩 RED FLAGS\n"
            "- [Spam, propaganda or repeated promotional patterns]\n"
            'If none detected, write: "No red flags detected."\n\n'
            "## 💡 CONCLUSION\n"
            "[Two or three sentences on this period]\n"
        )

    def render_merge_prompt(
        self, formatted_summaries: str, group_name: str, start: datetime, end: datetime
    ) -> str:
        return (
            "Combine the partial summaries below into ONE complete and coherent summary.\n\n"
            f'Group: "{group_name}" | Period: {start:%Y-%m-%d %H:%M} - {end:%H:%M}\n\n'
            f"Partial summaries:\n{formatted_summaries}\n\n"
            "Instructions:\n"
            "1. Merge all information into a single summary\n"
            "2. Remove duplication and combine identical topics\n"
            "3. Keep important details: products, prices, testimonials, credibility\n"
            "4. Use the same section headers as the partial summaries\n"
            "5. Coherent, detailed and easy to read\n\n"
            "Final summary:"
        )
