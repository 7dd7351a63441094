from __future__ import annotations

from collections import Counter
from contextlib import contextmanager
from datetime import datetime
import logging
from pathlib import Path
import sqlite3
from typing import Any, Iterator, Sequence

from digest.models import ChatMessage, ProductMention, SummaryRecord

logger = logging.getLogger(__name__)


class SQLiteStore:
    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.execute("PRAGMA busy_timeout=30000;")
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _initialize(self) -> None:
        with self.connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    chat_id INTEGER NOT NULL,
                    message_id INTEGER,
                    user_id INTEGER NOT NULL,
                    username TEXT NOT NULL,
                    message_text TEXT NOT NULL,
                    message_length INTEGER NOT NULL,
                    timestamp TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(chat_id, message_id)
                );

                CREATE INDEX IF NOT EXISTS idx_messages_chat_time ON messages(chat_id, timestamp);

                CREATE TABLE IF NOT EXISTS summaries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    chat_id INTEGER NOT NULL,
                    summary_type TEXT NOT NULL,
                    period_start TEXT NOT NULL,
                    period_end TEXT NOT NULL,
                    summary_text TEXT NOT NULL,
                    message_count INTEGER NOT NULL,
                    sentiment TEXT NOT NULL DEFAULT 'neutral',
                    credibility_score INTEGER NOT NULL DEFAULT 3,
                    products_mentioned TEXT NOT NULL DEFAULT '[]',
                    red_flags_count INTEGER NOT NULL DEFAULT 0,
                    validation_status TEXT NOT NULL DEFAULT 'mixed',
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_summaries_chat_time ON summaries(chat_id, period_start);

                CREATE TABLE IF NOT EXISTS product_mentions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    summary_id INTEGER NOT NULL,
                    product_name TEXT NOT NULL,
                    mention_count INTEGER NOT NULL DEFAULT 1,
                    credibility_score INTEGER NOT NULL DEFAULT 3,
                    sentiment TEXT NOT NULL DEFAULT 'neutral',
                    validation_status TEXT NOT NULL DEFAULT 'mixed',
                    price_mentioned TEXT,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (summary_id) REFERENCES summaries(id)
                );

                CREATE INDEX IF NOT EXISTS idx_product_mentions_summary ON product_mentions(summary_id);
                CREATE INDEX IF NOT EXISTS idx_product_mentions_name ON product_mentions(product_name);
                """
            )
            conn.commit()

    def upsert_messages(self, messages: Sequence[ChatMessage]) -> int:
        if not messages:
            return 0

        rows = [
            (
                msg.chat_id,
                msg.message_id,
                msg.user_id,
                msg.username,
                msg.text,
                msg.length,
                msg.timestamp.isoformat(),
            )
            for msg in messages
        ]
        with self.connect() as conn:
            before = conn.total_changes
            conn.executemany(
                """
                INSERT OR IGNORE INTO messages(
                    chat_id, message_id, user_id, username, message_text, message_length, timestamp
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
            inserted = conn.total_changes - before
        logger.debug("Stored %d of %d messages", inserted, len(messages))
        return inserted

    def get_messages_in_range(self, chat_id: int, start: datetime, end: datetime) -> list[ChatMessage]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT chat_id, message_id, user_id, username, message_text, timestamp
                FROM messages
                WHERE chat_id = ? AND timestamp >= ? AND timestamp <= ?
                ORDER BY timestamp ASC, id ASC
                """,
                (chat_id, start.isoformat(), end.isoformat()),
            ).fetchall()

        return [
            ChatMessage(
                chat_id=int(row["chat_id"]),
                user_id=int(row["user_id"]),
                username=str(row["username"]),
                text=str(row["message_text"]),
                timestamp=datetime.fromisoformat(str(row["timestamp"])),
                message_id=row["message_id"],
            )
            for row in rows
        ]

    def save_summary(self, summary: SummaryRecord) -> int:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO summaries(
                    chat_id, summary_type, period_start, period_end, summary_text, message_count,
                    sentiment, credibility_score, products_mentioned, red_flags_count, validation_status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    summary.chat_id,
                    summary.summary_type,
                    summary.period_start.isoformat(),
                    summary.period_end.isoformat(),
                    summary.summary_text,
                    summary.message_count,
                    summary.sentiment,
                    summary.credibility_score,
                    summary.products_mentioned,
                    summary.red_flags_count,
                    summary.validation_status,
                ),
            )
            conn.commit()
            summary_id = int(cursor.lastrowid)

        logger.info(
            "Summary saved: id=%d type=%s chat_id=%d", summary_id, summary.summary_type, summary.chat_id
        )
        return summary_id

    def save_product_mention(self, mention: ProductMention) -> int:
        if mention.summary_id is None:
            raise ValueError(f"Product mention {mention.product_name!r} is not bound to a summary")

        with self.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO product_mentions(
                    summary_id, product_name, mention_count, credibility_score,
                    sentiment, validation_status, price_mentioned
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    mention.summary_id,
                    mention.product_name,
                    mention.mention_count,
                    mention.credibility_score,
                    mention.sentiment,
                    mention.validation_status,
                    mention.price_mentioned,
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def get_summaries(self, chat_id: int, summary_type: str, limit: int = 10) -> list[SummaryRecord]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM summaries
                WHERE chat_id = ? AND summary_type = ?
                ORDER BY period_start DESC, id DESC
                LIMIT ?
                """,
                (chat_id, summary_type, limit),
            ).fetchall()
        return [_row_to_summary(row) for row in rows]

    def get_product_mentions(self, summary_id: int) -> list[ProductMention]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM product_mentions WHERE summary_id = ? ORDER BY id ASC",
                (summary_id,),
            ).fetchall()
        return [_row_to_mention(row) for row in rows]

    def get_product_trends(self, product_name: str, days: int = 7) -> list[ProductMention]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM product_mentions
                WHERE product_name = ? AND created_at >= datetime('now', ?)
                ORDER BY created_at DESC, id DESC
                """,
                (product_name, f"-{max(0, days)} days"),
            ).fetchall()

        logger.info("Found %d mentions of %s in last %d days", len(rows), product_name, days)
        return [_row_to_mention(row) for row in rows]

    def get_summaries_in_range(
        self, chat_id: int, summary_type: str, start: datetime, end: datetime
    ) -> list[SummaryRecord]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM summaries
                WHERE chat_id = ? AND summary_type = ? AND period_start >= ? AND period_end <= ?
                ORDER BY period_start ASC, id ASC
                """,
                (chat_id, summary_type, start.isoformat(), end.isoformat()),
            ).fetchall()
        return [_row_to_summary(row) for row in rows]

    def delete_messages_older_than(self, chat_id: int, before: datetime) -> int:
        with self.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM messages WHERE chat_id = ? AND timestamp < ?",
                (chat_id, before.isoformat()),
            )
            conn.commit()
            deleted = cursor.rowcount

        logger.info("Deleted %d messages older than %s from chat %d", deleted, before, chat_id)
        return deleted

    def get_last_summary_time(self, chat_id: int, summary_type: str) -> datetime | None:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT MAX(period_end) AS last_end FROM summaries WHERE chat_id = ? AND summary_type = ?",
                (chat_id, summary_type),
            ).fetchone()
        if not row or row["last_end"] is None:
            return None
        return datetime.fromisoformat(str(row["last_end"]))

    def get_chat_stats(self, chat_id: int, start: datetime, end: datetime) -> dict[str, Any]:
        messages = self.get_messages_in_range(chat_id, start, end)
        per_user = Counter(msg.username for msg in messages)
        most_active = per_user.most_common(1)
        return {
            "total_messages": len(messages),
            "user_stats": dict(per_user),
            "most_active_user": most_active[0][0] if most_active else None,
        }


def _row_to_summary(row: sqlite3.Row) -> SummaryRecord:
    return SummaryRecord(
        summary_id=int(row["id"]),
        chat_id=int(row["chat_id"]),
        summary_type=str(row["summary_type"]),
        period_start=datetime.fromisoformat(str(row["period_start"])),
        period_end=datetime.fromisoformat(str(row["period_end"])),
        summary_text=str(row["summary_text"]),
        message_count=int(row["message_count"]),
        sentiment=str(row["sentiment"]),
        credibility_score=int(row["credibility_score"]),
        products_mentioned=str(row["products_mentioned"]),
        red_flags_count=int(row["red_flags_count"]),
        validation_status=str(row["validation_status"]),
        created_at=datetime.fromisoformat(str(row["created_at"])),
    )


def _row_to_mention(row: sqlite3.Row) -> ProductMention:
    return ProductMention(
        product_name=str(row["product_name"]),
        mention_count=int(row["mention_count"]),
        credibility_score=int(row["credibility_score"]),
        sentiment=str(row["sentiment"]),
        validation_status=str(row["validation_status"]),
        price_mentioned=row["price_mentioned"],
        summary_id=int(row["summary_id"]),
        mention_id=int(row["id"]),
        created_at=datetime.fromisoformat(str(row["created_at"])),
    )
