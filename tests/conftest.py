"""Shared fixtures: SQLite and in-memory stores, transcript writers."""

import json
from pathlib import Path

import pytest

from transcript_miner.models import Artifact, Conversation, Entry, ParseCheckpoint
from transcript_miner.storage import ConversationStore, duration_seconds


class InMemoryStore:
    """Dict-backed TranscriptStore double."""

    def __init__(self):
        self.checkpoints: dict[str, ParseCheckpoint] = {}
        self.conversations: dict[int, Conversation] = {}
        self.entries: list[Entry] = []
        self.artifacts: list[Artifact] = []

    def get_checkpoint(self, file_path):
        return self.checkpoints.get(file_path)

    def save_checkpoint(self, file_path, line_number, entry_hash):
        self.checkpoints[file_path] = ParseCheckpoint(
            file_path=file_path, last_line_number=line_number, last_entry_hash=entry_hash
        )

    def find_conversation(self, session_id):
        for conv in self.conversations.values():
            if conv.session_id == session_id:
                return conv
        return None

    def find_or_create_conversation(self, session_id, file_path, file_type, metadata=None):
        existing = self.find_conversation(session_id)
        if existing:
            return existing
        metadata = metadata or {}
        conv = Conversation(
            id=len(self.conversations) + 1,
            session_id=session_id,
            source_file_path=file_path,
            source_file_type=file_type,
            model_used=metadata.get("model"),
            assistant_version=metadata.get("version"),
            git_branch=metadata.get("git_branch"),
            working_directory=metadata.get("cwd"),
        )
        self.conversations[conv.id] = conv
        return conv

    def set_project(self, conversation_id, project_id):
        conv = self.conversations[conversation_id]
        if conv.project_id is None:
            conv.project_id = project_id

    def next_entry_index(self, conversation_id):
        indices = [e.entry_index for e in self.entries if e.conversation_id == conversation_id]
        return max(indices) + 1 if indices else 0

    def insert_entry(self, entry):
        if any(
            e.conversation_id == entry.conversation_id and e.entry_hash == entry.entry_hash
            for e in self.entries
        ):
            return False
        self.entries.append(entry.model_copy(update={"id": len(self.entries) + 1}))
        return True

    def update_conversation_stats(self, conversation_id):
        conv = self.conversations[conversation_id]
        mine = [e for e in self.entries if e.conversation_id == conversation_id]
        stamps = sorted(e.timestamp for e in mine if e.timestamp)
        conv.message_count = len(mine)
        conv.started_at = stamps[0] if stamps else None
        conv.ended_at = stamps[-1] if stamps else None
        conv.duration_seconds = duration_seconds(conv.started_at, conv.ended_at)

    def get_conversation(self, conversation_id):
        return self.conversations.get(conversation_id)

    def list_entries(self, conversation_id, role=None, limit=50, offset=0):
        rows = sorted(
            (e for e in self.entries
             if e.conversation_id == conversation_id and (role is None or e.role == role)),
            key=lambda e: e.entry_index,
        )
        rows = rows[offset:]
        return rows if limit is None else rows[:limit]

    def artifact_exists(self, conversation_id, content_hash):
        return any(
            a.conversation_id == conversation_id and a.content_hash == content_hash
            for a in self.artifacts
        )

    def insert_artifact(self, artifact):
        if self.artifact_exists(artifact.conversation_id, artifact.content_hash):
            return False
        self.artifacts.append(artifact.model_copy(update={"id": len(self.artifacts) + 1}))
        return True


@pytest.fixture
def store(tmp_path):
    s = ConversationStore(tmp_path / "data" / "transcripts.db")
    yield s
    s.close()


@pytest.fixture
def memory_store():
    return InMemoryStore()


def write_jsonl(path: Path, events: list) -> Path:
    """Write one JSON value per line; plain strings are written verbatim."""
    lines = [e if isinstance(e, str) else json.dumps(e) for e in events]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def sample_session() -> list[dict]:
    """A short session: prompt, tool call, tool result, answer with code."""
    return [
        {"type": "summary", "summary": "Reading config"},
        {
            "type": "user",
            "sessionId": "s-1",
            "timestamp": "2025-01-01T10:00:00Z",
            "version": "1.0.3",
            "gitBranch": "main",
            "cwd": "/work",
            "message": {"role": "user", "content": "Read the config"},
        },
        {
            "type": "assistant",
            "sessionId": "s-1",
            "timestamp": "2025-01-01T10:00:05Z",
            "message": {
                "role": "assistant",
                "content": [
                    {"type": "text", "text": "Reading it."},
                    {"type": "tool_use", "id": "t1", "name": "Read",
                     "input": {"file_path": "/work/config.toml"}},
                ],
            },
        },
        {
            "type": "user",
            "sessionId": "s-1",
            "timestamp": "2025-01-01T10:00:06Z",
            "message": {
                "role": "user",
                "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "name = 'demo'"}],
            },
        },
        {
            "type": "assistant",
            "sessionId": "s-1",
            "timestamp": "2025-01-01T10:01:05Z",
            "message": {
                "role": "assistant",
                "content": [{"type": "text", "text": "Here it is:\n```toml\nname = 'demo'\n```"}],
            },
        },
    ]
