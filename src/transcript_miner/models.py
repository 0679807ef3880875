"""Data models for conversations, entries and extracted artifacts."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

ArtifactType = Literal["code_block", "tool_call", "tool_result", "json_object"]
Outcome = Literal["success", "error", "pending"]


class Conversation(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    id: int
    session_id: str
    project_id: str | None = None
    source_file_path: str
    source_file_type: str
    started_at: str | None = None
    ended_at: str | None = None
    duration_seconds: int | None = None
    message_count: int = 0
    model_used: str | None = None
    assistant_version: str | None = None
    git_branch: str | None = None
    working_directory: str | None = None
    created_at: str | None = None


class ConversationSummary(Conversation):
    artifact_count: int = 0
    error_count: int = 0


class Entry(BaseModel):
    id: int | None = None
    conversation_id: int
    entry_hash: str
    entry_index: int
    role: str
    content: str
    timestamp: str | None = None


class Artifact(BaseModel):
    id: int | None = None
    conversation_id: int
    entry_id: int | None = None
    artifact_type: ArtifactType
    language: str | None = None
    tool_name: str | None = None
    content: str | None = None
    metadata: dict[str, Any] | None = None
    content_hash: str
    outcome: Outcome | None = None
    output_summary: str | None = None
    output_full: str | None = None
    output_size_bytes: int = 0
    output_truncated: bool = False
    error_type: str | None = None
    prompt_context: str | None = None
    created_at: str | None = None
    # Populated by cross-conversation search only
    project_id: str | None = None


class ParseCheckpoint(BaseModel):
    file_path: str
    last_line_number: int = 0
    last_entry_hash: str | None = None
    last_parsed_at: str | None = None


class TieredOutput(BaseModel):
    summary: str | None = None
    full: str | None = None
    size: int = 0
    truncated: bool = False


class ParseResult(BaseModel):
    success: bool = True
    conversation_id: int | None = None
    session_id: str | None = None
    new_entries: int = 0
    skipped: int = 0
    total_lines: int | None = None


class ExtractionResult(BaseModel):
    success: bool = True
    conversation_id: int
    tool_calls: int = 0
    tool_results: int = 0
    code_blocks: int = 0
    json_objects: int = 0
    skipped: int = 0


class ArtifactStats(BaseModel):
    total: int = 0
    code_blocks: int = 0
    tool_calls: int = 0
    tool_results: int = 0
    json_objects: int = 0
    errors: int = 0
