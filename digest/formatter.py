from __future__ import annotations

from datetime import datetime


class SummaryFormatter:
    def format_partial(
        self,
        text: str,
        part: int,
        total: int,
        group_name: str,
        start: datetime,
        end: datetime,
        message_count: int,
    ) -> str:
        header = (
            f"📊 Part {part}/{total} | {group_name}\n"
            f"🕐 {start:%Y-%m-%d %H:%M} - {end:%H:%M} | {message_count} messages"
        )
        return f"{header}\n\n{text.strip()}"

    def format_completion(self, total_parts: int) -> str:
        noun = "part" if total_parts == 1 else "parts"
        return f"✅ Summary complete: {total_parts} {noun} delivered."
