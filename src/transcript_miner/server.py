"""FastMCP server exposing transcript parsing, extraction and queries as tools."""

from __future__ import annotations

import logging
import sys

from mcp.server.fastmcp import FastMCP

from .config import DEFAULT_PAGE_SIZE, SQLITE_PATH
from .errors import TranscriptError
from .extractor import extract_artifacts as run_extraction
from .models import Artifact
from .parser import parse_file
from .storage import ConversationStore

# Logging to stderr only; stdout is the MCP JSON-RPC transport
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)

mcp = FastMCP(
    "transcript-miner",
    instructions=(
        "Ingest and query coding-assistant transcripts. "
        "Use parse_transcript to ingest a .jsonl or .txt transcript, then "
        "extract_artifacts to pull tool calls, results and code blocks out of it. "
        "Use list_conversations, get_conversation_entries and "
        "get_conversation_artifacts to browse, search_artifacts to find code or "
        "tool output by text, and get_artifact_stats for counts."
    ),
)

# Singleton store, reused across tool calls
_store: ConversationStore | None = None


def _get_store() -> ConversationStore:
    global _store
    if _store is None:
        _store = ConversationStore(SQLITE_PATH)
    return _store


def _preview(text: str | None, length: int = 150) -> str:
    if not text:
        return ""
    return text.replace("\n", " ")[:length]


def _format_artifact(i: int, a: Artifact) -> list[str]:
    label = a.tool_name or a.language or a.artifact_type
    outcome = f" | {a.outcome}" if a.outcome else ""
    if a.error_type:
        outcome += f" ({a.error_type})"
    lines = [f"{i}. **{a.artifact_type}** `{label}`{outcome}", f"   ID: {a.id} | Conversation: {a.conversation_id}"]
    if a.content:
        lines.append(f"   Content: {_preview(a.content)}")
    if a.output_summary:
        size = f"{a.output_size_bytes:,} bytes" + (", truncated" if a.output_truncated else "")
        lines.append(f"   Output ({size}): {_preview(a.output_summary)}")
    return lines


@mcp.tool()
def parse_transcript(path: str, project_id: str | None = None) -> str:
    """Ingest new content from a transcript file (.jsonl event log or .txt).

    Args:
        path: Path to the transcript file
        project_id: Optional project to associate with the conversation
    """
    try:
        result = parse_file(_get_store(), path, project_id)
    except TranscriptError as e:
        return str(e)

    return (
        f"Parsed {path}\n"
        f"- Conversation: {result.conversation_id} (session `{result.session_id}`)\n"
        f"- New entries: {result.new_entries}\n"
        f"- Duplicates skipped: {result.skipped}"
    )


@mcp.tool()
def extract_artifacts(conversation_id: int) -> str:
    """Extract tool calls, tool results, code blocks and JSON objects from a conversation.

    Args:
        conversation_id: Numeric conversation ID (from parse_transcript or list_conversations)
    """
    try:
        r = run_extraction(_get_store(), conversation_id)
    except TranscriptError as e:
        return str(e)

    return (
        f"Extracted from conversation {conversation_id}:\n"
        f"- Tool calls: {r.tool_calls}\n"
        f"- Tool results: {r.tool_results}\n"
        f"- Code blocks: {r.code_blocks}\n"
        f"- JSON objects: {r.json_objects}\n"
        f"- Already stored: {r.skipped}"
    )


@mcp.tool()
def get_conversation(conversation_id: int) -> str:
    """Show a conversation's metadata.

    Args:
        conversation_id: Numeric conversation ID
    """
    conv = _get_store().get_conversation(conversation_id)
    if not conv:
        return f"Conversation not found: {conversation_id}"

    return "\n".join([
        f"# Session {conv.session_id}",
        f"- **Source**: {conv.source_file_path} ({conv.source_file_type})",
        f"- **Project**: {conv.project_id or '-'}",
        f"- **Started**: {conv.started_at or 'Unknown'}",
        f"- **Ended**: {conv.ended_at or 'Unknown'}",
        f"- **Duration**: {conv.duration_seconds if conv.duration_seconds is not None else '?'} s",
        f"- **Messages**: {conv.message_count}",
        f"- **Model**: {conv.model_used or 'Unknown'}",
        f"- **Branch**: {conv.git_branch or '-'}",
        f"- **Working directory**: {conv.working_directory or '-'}",
    ])


@mcp.tool()
def list_conversations(
    project_id: str | None = None,
    since: str | None = None,
    has_errors: bool = False,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> str:
    """Browse conversations, most recent first.

    Args:
        project_id: Only conversations of this project
        since: Only conversations started at or after this ISO timestamp
        has_errors: Only conversations with at least one failed tool call
        limit: Maximum results
        offset: Skip this many results (for pagination)
    """
    conversations = _get_store().list_conversations(
        project_id=project_id, since=since, has_errors=has_errors, limit=limit, offset=offset
    )
    if not conversations:
        return "No conversations found."

    lines = [f"Conversations (showing {offset + 1}–{offset + len(conversations)}):\n"]
    for i, c in enumerate(conversations, offset + 1):
        lines.append(f"{i}. **{c.session_id}** ({c.started_at or 'Unknown date'})")
        lines.append(
            f"   ID: {c.id} | {c.message_count} msgs | {c.artifact_count} artifacts | {c.error_count} errors"
        )

    if len(conversations) == limit:
        lines.append(f"\nMore available, use offset={offset + limit} to see the next page.")
    return "\n".join(lines)


@mcp.tool()
def get_conversation_entries(
    conversation_id: int,
    role: str | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> str:
    """Read a conversation's messages in order.

    Args:
        conversation_id: Numeric conversation ID
        role: Only entries of this role (user, assistant, tool, system)
        limit: Maximum results
        offset: Skip this many entries
    """
    entries = _get_store().list_entries(conversation_id, role=role, limit=limit, offset=offset)
    if not entries:
        return f"No entries found for conversation {conversation_id}."

    lines = []
    for e in entries:
        ts = f" ({e.timestamp})" if e.timestamp else ""
        lines.append(f"**{e.role}** #{e.entry_index}{ts}:")
        lines.append(e.content)
        lines.append("")
    return "\n".join(lines)


@mcp.tool()
def get_conversation_artifacts(
    conversation_id: int,
    artifact_type: str | None = None,
    tool_name: str | None = None,
    outcome: str | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> str:
    """List artifacts extracted from a conversation.

    Args:
        conversation_id: Numeric conversation ID
        artifact_type: code_block, tool_call, tool_result or json_object
        tool_name: Only artifacts of this tool
        outcome: success, error or pending
        limit: Maximum results
        offset: Skip this many results
    """
    artifacts = _get_store().list_artifacts(
        conversation_id, artifact_type=artifact_type, tool_name=tool_name,
        outcome=outcome, limit=limit, offset=offset,
    )
    if not artifacts:
        return f"No artifacts found for conversation {conversation_id}."

    lines = []
    for i, a in enumerate(artifacts, offset + 1):
        lines.extend(_format_artifact(i, a))
    return "\n".join(lines)


@mcp.tool()
def search_artifacts(
    query: str,
    project_id: str | None = None,
    artifact_type: str | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> str:
    """Search artifact content across all conversations.

    Args:
        query: Text to look for
        project_id: Only conversations of this project
        artifact_type: code_block, tool_call, tool_result or json_object
        limit: Maximum results
        offset: Skip this many results
    """
    artifacts = _get_store().search_artifacts(
        query, project_id=project_id, artifact_type=artifact_type, limit=limit, offset=offset
    )
    if not artifacts:
        return f"No artifacts found matching '{query}'."

    lines = [f"Found {len(artifacts)} artifacts matching '{query}':\n"]
    for i, a in enumerate(artifacts, offset + 1):
        lines.extend(_format_artifact(i, a))
    return "\n".join(lines)


@mcp.tool()
def get_artifact_stats(conversation_id: int | None = None) -> str:
    """Count artifacts by type and errors, for one conversation or overall.

    Args:
        conversation_id: Optional numeric conversation ID
    """
    store = _get_store()
    if conversation_id is not None and store.get_conversation(conversation_id) is None:
        return f"Conversation not found: {conversation_id}"

    s = store.artifact_stats(conversation_id)
    scope = f"conversation {conversation_id}" if conversation_id is not None else "all conversations"
    return "\n".join([
        f"# Artifact statistics ({scope})",
        "",
        f"- **Total**: {s.total:,}",
        f"- **Tool calls**: {s.tool_calls:,}",
        f"- **Tool results**: {s.tool_results:,}",
        f"- **Code blocks**: {s.code_blocks:,}",
        f"- **JSON objects**: {s.json_objects:,}",
        f"- **Errors**: {s.errors:,}",
    ])
