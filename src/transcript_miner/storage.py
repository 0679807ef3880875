"""SQLite storage for conversations, entries, artifacts and parse checkpoints."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from .config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .models import (
    Artifact,
    ArtifactStats,
    Conversation,
    ConversationSummary,
    Entry,
    ParseCheckpoint,
)

logger = logging.getLogger(__name__)


class TranscriptStore(Protocol):
    """The persistence operations the parser and extractor depend on."""

    def get_checkpoint(self, file_path: str) -> ParseCheckpoint | None: ...

    def save_checkpoint(
        self, file_path: str, line_number: int, entry_hash: str | None
    ) -> None: ...

    def find_or_create_conversation(
        self, session_id: str, file_path: str, file_type: str, metadata: dict | None = None
    ) -> Conversation: ...

    def find_conversation(self, session_id: str) -> Conversation | None: ...

    def set_project(self, conversation_id: int, project_id: str) -> None: ...

    def next_entry_index(self, conversation_id: int) -> int: ...

    def insert_entry(self, entry: Entry) -> bool: ...

    def update_conversation_stats(self, conversation_id: int) -> None: ...

    def get_conversation(self, conversation_id: int) -> Conversation | None: ...

    def list_entries(
        self, conversation_id: int, role: str | None = None,
        limit: int | None = DEFAULT_PAGE_SIZE, offset: int = 0,
    ) -> list[Entry]: ...

    def artifact_exists(self, conversation_id: int, content_hash: str) -> bool: ...

    def insert_artifact(self, artifact: Artifact) -> bool: ...


class ConversationStore:
    """SQLite-backed implementation of TranscriptStore plus the read queries."""

    def __init__(self, db_path: Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._migrate()

    def _migrate(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS conversations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL UNIQUE,
                project_id TEXT,
                source_file_path TEXT NOT NULL,
                source_file_type TEXT NOT NULL,
                started_at TEXT,
                ended_at TEXT,
                duration_seconds INTEGER,
                message_count INTEGER DEFAULT 0,
                model_used TEXT,
                assistant_version TEXT,
                git_branch TEXT,
                working_directory TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id INTEGER NOT NULL,
                entry_hash TEXT NOT NULL,
                entry_index INTEGER NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY (conversation_id) REFERENCES conversations(id),
                UNIQUE (conversation_id, entry_hash)
            );

            CREATE TABLE IF NOT EXISTS artifacts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id INTEGER NOT NULL,
                entry_id INTEGER,
                artifact_type TEXT NOT NULL,
                language TEXT,
                tool_name TEXT,
                content TEXT,
                metadata TEXT,
                content_hash TEXT NOT NULL,
                outcome TEXT,
                output_summary TEXT,
                output_full TEXT,
                output_size_bytes INTEGER DEFAULT 0,
                output_truncated INTEGER DEFAULT 0,
                error_type TEXT,
                prompt_context TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY (conversation_id) REFERENCES conversations(id),
                FOREIGN KEY (entry_id) REFERENCES entries(id),
                UNIQUE (conversation_id, content_hash)
            );

            CREATE TABLE IF NOT EXISTS parse_checkpoints (
                file_path TEXT PRIMARY KEY,
                last_line_number INTEGER DEFAULT 0,
                last_entry_hash TEXT,
                last_parsed_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_conv_project ON conversations(project_id);
            CREATE INDEX IF NOT EXISTS idx_conv_started ON conversations(started_at);
            CREATE INDEX IF NOT EXISTS idx_entries_conv ON entries(conversation_id, entry_index);
            CREATE INDEX IF NOT EXISTS idx_artifacts_conv ON artifacts(conversation_id);
            CREATE INDEX IF NOT EXISTS idx_artifacts_type ON artifacts(artifact_type);
            CREATE INDEX IF NOT EXISTS idx_artifacts_tool ON artifacts(tool_name);
            CREATE INDEX IF NOT EXISTS idx_artifacts_outcome ON artifacts(outcome);
        """)
        self.conn.commit()

    # -- checkpoints --

    def get_checkpoint(self, file_path: str) -> ParseCheckpoint | None:
        row = self.conn.execute(
            "SELECT * FROM parse_checkpoints WHERE file_path = ?", (file_path,)
        ).fetchone()
        return ParseCheckpoint(**dict(row)) if row else None

    def save_checkpoint(self, file_path: str, line_number: int, entry_hash: str | None):
        self.conn.execute(
            """INSERT INTO parse_checkpoints (file_path, last_line_number, last_entry_hash, last_parsed_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(file_path) DO UPDATE SET
                   last_line_number = excluded.last_line_number,
                   last_entry_hash = excluded.last_entry_hash,
                   last_parsed_at = excluded.last_parsed_at""",
            (file_path, line_number, entry_hash, _now()),
        )
        self.conn.commit()

    # -- conversations --

    def find_conversation(self, session_id: str) -> Conversation | None:
        row = self.conn.execute(
            "SELECT * FROM conversations WHERE session_id = ?", (session_id,)
        ).fetchone()
        return Conversation(**dict(row)) if row else None

    def find_or_create_conversation(
        self,
        session_id: str,
        file_path: str,
        file_type: str,
        metadata: dict | None = None,
    ) -> Conversation:
        """Find a conversation by session id, creating it on first reference.

        Environment metadata is only recorded on creation.
        """
        existing = self.find_conversation(session_id)
        if existing:
            return existing

        metadata = metadata or {}
        self.conn.execute(
            """INSERT OR IGNORE INTO conversations (
                   session_id, source_file_path, source_file_type,
                   model_used, assistant_version, git_branch, working_directory)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                session_id, file_path, file_type,
                metadata.get("model"), metadata.get("version"),
                metadata.get("git_branch"), metadata.get("cwd"),
            ),
        )
        self.conn.commit()
        return self.find_conversation(session_id)

    def set_project(self, conversation_id: int, project_id: str):
        """Attach a project unless the conversation already has one."""
        self.conn.execute(
            "UPDATE conversations SET project_id = ? WHERE id = ? AND project_id IS NULL",
            (project_id, conversation_id),
        )
        self.conn.commit()

    def update_conversation_stats(self, conversation_id: int):
        """Recompute message count, time bounds and duration from stored entries."""
        stats = self.conn.execute(
            """SELECT COUNT(*) AS message_count,
                      MIN(timestamp) AS started_at,
                      MAX(timestamp) AS ended_at
               FROM entries WHERE conversation_id = ?""",
            (conversation_id,),
        ).fetchone()

        self.conn.execute(
            """UPDATE conversations SET
                   message_count = ?, started_at = ?, ended_at = ?, duration_seconds = ?
               WHERE id = ?""",
            (
                stats["message_count"], stats["started_at"], stats["ended_at"],
                duration_seconds(stats["started_at"], stats["ended_at"]),
                conversation_id,
            ),
        )
        self.conn.commit()

    def get_conversation(self, conversation_id: int) -> Conversation | None:
        row = self.conn.execute(
            "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
        ).fetchone()
        return Conversation(**dict(row)) if row else None

    def list_conversations(
        self,
        project_id: str | None = None,
        since: str | None = None,
        has_errors: bool = False,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[ConversationSummary]:
        """List conversations most-recent-first with artifact and error counts."""
        sql = """SELECT c.*,
                        COUNT(a.id) AS artifact_count,
                        COUNT(CASE WHEN a.outcome = 'error' THEN 1 END) AS error_count
                 FROM conversations c
                 LEFT JOIN artifacts a ON a.conversation_id = c.id
                 WHERE 1=1"""
        params: list = []

        if project_id:
            sql += " AND c.project_id = ?"
            params.append(project_id)
        if since:
            sql += " AND c.started_at >= ?"
            params.append(since)

        sql += " GROUP BY c.id"
        if has_errors:
            sql += " HAVING error_count > 0"

        sql += " ORDER BY c.started_at DESC, c.id DESC LIMIT ? OFFSET ?"
        params.extend([_limit(limit), offset])

        rows = self.conn.execute(sql, params).fetchall()
        return [ConversationSummary(**dict(r)) for r in rows]

    # -- entries --

    def next_entry_index(self, conversation_id: int) -> int:
        row = self.conn.execute(
            "SELECT MAX(entry_index) FROM entries WHERE conversation_id = ?",
            (conversation_id,),
        ).fetchone()
        return 0 if row[0] is None else row[0] + 1

    def insert_entry(self, entry: Entry) -> bool:
        """Insert an entry. Returns False if its hash is already stored."""
        try:
            self.conn.execute(
                """INSERT INTO entries (conversation_id, entry_hash, entry_index, role, content, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    entry.conversation_id, entry.entry_hash, entry.entry_index,
                    entry.role, entry.content, entry.timestamp,
                ),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE constraint" not in str(e):
                raise
            return False
        self.conn.commit()
        return True

    def list_entries(
        self,
        conversation_id: int,
        role: str | None = None,
        limit: int | None = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[Entry]:
        """Entries in sequence order. limit=None returns all of them."""
        sql = "SELECT * FROM entries WHERE conversation_id = ?"
        params: list = [conversation_id]
        if role:
            sql += " AND role = ?"
            params.append(role)
        sql += " ORDER BY entry_index ASC LIMIT ? OFFSET ?"
        params.extend([_limit(limit), offset])

        rows = self.conn.execute(sql, params).fetchall()
        return [Entry(**_pick(r, Entry)) for r in rows]

    # -- artifacts --

    def artifact_exists(self, conversation_id: int, content_hash: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM artifacts WHERE conversation_id = ? AND content_hash = ?",
            (conversation_id, content_hash),
        ).fetchone()
        return row is not None

    def insert_artifact(self, artifact: Artifact) -> bool:
        """Insert an artifact. Returns False if its hash is already stored."""
        try:
            self.conn.execute(
                """INSERT INTO artifacts (
                       conversation_id, entry_id, artifact_type, language, tool_name,
                       content, metadata, content_hash, outcome,
                       output_summary, output_full, output_size_bytes, output_truncated,
                       error_type, prompt_context)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    artifact.conversation_id, artifact.entry_id, artifact.artifact_type,
                    artifact.language, artifact.tool_name, artifact.content,
                    json.dumps(artifact.metadata) if artifact.metadata is not None else None,
                    artifact.content_hash, artifact.outcome,
                    artifact.output_summary, artifact.output_full,
                    artifact.output_size_bytes, int(artifact.output_truncated),
                    artifact.error_type, artifact.prompt_context,
                ),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE constraint" not in str(e):
                raise
            return False
        self.conn.commit()
        return True

    def list_artifacts(
        self,
        conversation_id: int,
        artifact_type: str | None = None,
        tool_name: str | None = None,
        outcome: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[Artifact]:
        sql = "SELECT * FROM artifacts WHERE conversation_id = ?"
        params: list = [conversation_id]

        if artifact_type:
            sql += " AND artifact_type = ?"
            params.append(artifact_type)
        if tool_name:
            sql += " AND tool_name = ?"
            params.append(tool_name)
        if outcome:
            sql += " AND outcome = ?"
            params.append(outcome)

        sql += " ORDER BY id ASC LIMIT ? OFFSET ?"
        params.extend([_limit(limit), offset])

        rows = self.conn.execute(sql, params).fetchall()
        return [_artifact_from_row(r) for r in rows]

    def search_artifacts(
        self,
        query: str,
        project_id: str | None = None,
        artifact_type: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[Artifact]:
        """Substring search over artifact content across all conversations."""
        sql = """SELECT a.*, c.project_id
                 FROM artifacts a
                 JOIN conversations c ON c.id = a.conversation_id
                 WHERE a.content LIKE ? ESCAPE '\\'"""
        params: list = [f"%{_escape_like(query)}%"]

        if project_id:
            sql += " AND c.project_id = ?"
            params.append(project_id)
        if artifact_type:
            sql += " AND a.artifact_type = ?"
            params.append(artifact_type)

        sql += " ORDER BY a.created_at DESC, a.id DESC LIMIT ? OFFSET ?"
        params.extend([_limit(limit), offset])

        rows = self.conn.execute(sql, params).fetchall()
        return [_artifact_from_row(r) for r in rows]

    def artifact_stats(self, conversation_id: int | None = None) -> ArtifactStats:
        """Count artifacts by type and error outcome, for one conversation or all."""
        where = "WHERE conversation_id = ?" if conversation_id is not None else ""
        params = (conversation_id,) if conversation_id is not None else ()

        row = self.conn.execute(
            f"""SELECT
                    COUNT(*) AS total,
                    COUNT(CASE WHEN artifact_type = 'code_block' THEN 1 END) AS code_blocks,
                    COUNT(CASE WHEN artifact_type = 'tool_call' THEN 1 END) AS tool_calls,
                    COUNT(CASE WHEN artifact_type = 'tool_result' THEN 1 END) AS tool_results,
                    COUNT(CASE WHEN artifact_type = 'json_object' THEN 1 END) AS json_objects,
                    COUNT(CASE WHEN outcome = 'error' THEN 1 END) AS errors
                FROM artifacts {where}""",
            params,
        ).fetchone()
        return ArtifactStats(**dict(row))

    def close(self):
        self.conn.close()


def duration_seconds(started_at: str | None, ended_at: str | None) -> int | None:
    """Whole seconds between two ISO-8601 timestamps, None if either is unusable."""
    if not started_at or not ended_at:
        return None
    try:
        start = _parse_ts(started_at)
        end = _parse_ts(ended_at)
        return int((end - start).total_seconds())
    except (TypeError, ValueError):
        logger.debug("Cannot compute duration from %r to %r", started_at, ended_at)
        return None


def _parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _limit(limit: int | None) -> int:
    # SQLite treats a negative LIMIT as unbounded
    if limit is None:
        return -1
    return max(0, min(limit, MAX_PAGE_SIZE))


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _pick(row: sqlite3.Row, model) -> dict:
    return {k: row[k] for k in row.keys() if k in model.model_fields}


def _artifact_from_row(row: sqlite3.Row) -> Artifact:
    data = _pick(row, Artifact)
    if data.get("metadata"):
        data["metadata"] = json.loads(data["metadata"])
    data["output_truncated"] = bool(data.get("output_truncated"))
    return Artifact(**data)
