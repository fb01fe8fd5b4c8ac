"""SQLite storage adapter.

Implements the core RoutingStorePort and MessageStorePort using a simple
SQLite database.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from core.models import (
    AiState,
    Direction,
    MessagePayload,
    MessageRecord,
    Platform,
    RoutingEntry,
    SenderProfile,
)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _entry_from_row(row: sqlite3.Row) -> RoutingEntry:
    return RoutingEntry(
        id=int(row["id"]),
        platform=Platform(row["platform"]),
        external_chat_id=row["external_chat_id"],
        thread_id=int(row["thread_id"]) if row["thread_id"] is not None else None,
        title=row["title"] or "",
        username=row["username"],
        created_at=_parse_ts(row["created_at"]),
    )


def _record_from_row(row: sqlite3.Row) -> MessageRecord:
    return MessageRecord(
        id=int(row["id"]),
        entry_id=int(row["entry_id"]),
        direction=Direction(row["direction"]),
        source_message_id=row["source_message_id"],
        relayed_message_id=row["relayed_message_id"],
        payload=MessagePayload.from_dict(json.loads(row["payload"])),
        created_at=_parse_ts(row["created_at"]),
        edited_at=_parse_ts(row["edited_at"]),
    )


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the storage ports."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - routing_entries: one row per end user, bound to a staff thread
        - messages: append-only log of relayed messages (edits update payload)
        - ai_state: current AI draft per entry
        """

        with self._connect() as conn:
            # routing_entries is the user <-> thread directory.
            # Fields:
            # - platform + external_chat_id: the user, unique together
            # - thread_id: forum topic id in the staff chat, NULL until provisioned
            # - title/username: profile snapshot used for topic titles and cards
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS routing_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    platform TEXT NOT NULL,
                    external_chat_id TEXT NOT NULL,
                    thread_id INTEGER UNIQUE,
                    title TEXT,
                    username TEXT,
                    created_at TIMESTAMP NOT NULL,
                    UNIQUE (platform, external_chat_id)
                )
                """
            )
            # messages maps a message on one side to its copy on the other.
            # Fields:
            # - direction: incoming (user -> staff) or outgoing (staff -> user)
            # - source_message_id: id on the side the message was written
            # - relayed_message_id: id of the copy we sent
            # - payload: JSON snapshot of the relayed content
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    entry_id INTEGER NOT NULL REFERENCES routing_entries(id),
                    direction TEXT NOT NULL,
                    source_message_id TEXT NOT NULL,
                    relayed_message_id TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    edited_at TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_messages_source
                ON messages (entry_id, direction, source_message_id)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_state (
                    entry_id INTEGER PRIMARY KEY REFERENCES routing_entries(id),
                    draft_message_id TEXT,
                    generations INTEGER NOT NULL DEFAULT 0,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )

    # -- routing entries ----------------------------------------------------

    def get_entry(self, platform: Platform, external_chat_id: str) -> Optional[RoutingEntry]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM routing_entries WHERE platform = ? AND external_chat_id = ?",
                (platform.value, str(external_chat_id)),
            ).fetchone()
        return _entry_from_row(row) if row else None

    def get_entry_by_thread(self, thread_id: int) -> Optional[RoutingEntry]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM routing_entries WHERE thread_id = ?",
                (thread_id,),
            ).fetchone()
        return _entry_from_row(row) if row else None

    def get_entry_by_id(self, entry_id: int) -> Optional[RoutingEntry]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM routing_entries WHERE id = ?",
                (entry_id,),
            ).fetchone()
        return _entry_from_row(row) if row else None

    def get_or_create_entry(
        self,
        platform: Platform,
        external_chat_id: str,
        profile: Optional[SenderProfile] = None,
    ) -> RoutingEntry:
        """Atomically insert the entry if missing and return the stored row."""

        profile = profile or SenderProfile()
        now = datetime.now(timezone.utc)
        with self._connect() as conn:
            # INSERT OR IGNORE relies on UNIQUE(platform, external_chat_id), so
            # concurrent writers converge on the same row.
            conn.execute(
                """
                INSERT OR IGNORE INTO routing_entries (
                    platform,
                    external_chat_id,
                    title,
                    username,
                    created_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    platform.value,
                    str(external_chat_id),
                    profile.display_name,
                    profile.username,
                    now.isoformat(),
                ),
            )
            row = conn.execute(
                "SELECT * FROM routing_entries WHERE platform = ? AND external_chat_id = ?",
                (platform.value, str(external_chat_id)),
            ).fetchone()
        return _entry_from_row(row)

    def set_thread_id(self, entry_id: int, thread_id: int) -> RoutingEntry:
        """Assign a thread unless one is already set; returns the stored row."""

        with self._connect() as conn:
            conn.execute(
                "UPDATE routing_entries SET thread_id = ? WHERE id = ? AND thread_id IS NULL",
                (thread_id, entry_id),
            )
            row = conn.execute(
                "SELECT * FROM routing_entries WHERE id = ?",
                (entry_id,),
            ).fetchone()
        if row is None:
            raise LookupError(f"routing entry {entry_id} does not exist")
        return _entry_from_row(row)

    # -- message records ----------------------------------------------------

    def save_record(
        self,
        entry_id: int,
        direction: Direction,
        source_message_id: str,
        relayed_message_id: str,
        payload: MessagePayload,
    ) -> MessageRecord:
        """Append a relayed message to the messages table."""

        created_at = datetime.now(timezone.utc)
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO messages (
                    entry_id,
                    direction,
                    source_message_id,
                    relayed_message_id,
                    payload,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry_id,
                    direction.value,
                    str(source_message_id),
                    str(relayed_message_id),
                    json.dumps(payload.to_dict(), ensure_ascii=False),
                    created_at.isoformat(),
                ),
            )
            record_id = cur.lastrowid
        return MessageRecord(
            id=int(record_id),
            entry_id=entry_id,
            direction=direction,
            source_message_id=str(source_message_id),
            relayed_message_id=str(relayed_message_id),
            payload=payload,
            created_at=created_at,
        )

    def find_record(
        self, entry_id: int, direction: Direction, source_message_id: str
    ) -> Optional[MessageRecord]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM messages
                WHERE entry_id = ? AND direction = ? AND source_message_id = ?
                ORDER BY id DESC
                LIMIT 1
                """,
                (entry_id, direction.value, str(source_message_id)),
            ).fetchone()
        return _record_from_row(row) if row else None

    def update_record_payload(self, record_id: int, payload: MessagePayload) -> None:
        """Store the content of an edit; the only mutation a record allows."""

        with self._connect() as conn:
            conn.execute(
                "UPDATE messages SET payload = ?, edited_at = ? WHERE id = ?",
                (
                    json.dumps(payload.to_dict(), ensure_ascii=False),
                    datetime.now(timezone.utc).isoformat(),
                    record_id,
                ),
            )

    def recent_records(self, entry_id: int, limit: int) -> list[MessageRecord]:
        """Return the last ``limit`` records of an entry, oldest first."""

        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE entry_id = ? ORDER BY id DESC LIMIT ?",
                (entry_id, limit),
            ).fetchall()
        return [_record_from_row(row) for row in reversed(rows)]

    def latest_record(self, entry_id: int, direction: Direction) -> Optional[MessageRecord]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM messages
                WHERE entry_id = ? AND direction = ?
                ORDER BY id DESC
                LIMIT 1
                """,
                (entry_id, direction.value),
            ).fetchone()
        return _record_from_row(row) if row else None

    # -- AI drafts ----------------------------------------------------------

    def get_ai_state(self, entry_id: int) -> Optional[AiState]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM ai_state WHERE entry_id = ?",
                (entry_id,),
            ).fetchone()
        if row is None:
            return None
        return AiState(
            entry_id=int(row["entry_id"]),
            draft_message_id=row["draft_message_id"],
            generations=int(row["generations"]),
        )

    def save_ai_state(self, entry_id: int, draft_message_id: Optional[str]) -> AiState:
        """Upsert the draft pointer and count one more generation."""

        now = datetime.now(timezone.utc)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO ai_state (entry_id, draft_message_id, generations, updated_at)
                VALUES (?, ?, 1, ?)
                ON CONFLICT(entry_id) DO UPDATE SET
                    draft_message_id = excluded.draft_message_id,
                    generations = ai_state.generations + 1,
                    updated_at = excluded.updated_at
                """,
                (entry_id, draft_message_id, now.isoformat()),
            )
        state = self.get_ai_state(entry_id)
        if state is None:
            raise LookupError(f"ai state for entry {entry_id} was not stored")
        return state

    def count_entries(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM routing_entries").fetchone()
        return int(row["total"])
