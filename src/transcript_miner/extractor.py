"""Extract tool calls, tool results, code blocks and JSON objects from conversations.

Artifacts are deduplicated per conversation by content hash, so running the
extraction again over an unchanged source stores nothing new.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Sequence

from pydantic import BaseModel

from .config import PROMPT_CONTEXT_LENGTH
from .errors import ConversationNotFound
from .events import (
    ToolResultBlock,
    ToolUseBlock,
    TranscriptEvent,
    assistant_text,
    decode_lines,
    flatten_content,
    read_lines,
)
from .models import Artifact, Conversation, ExtractionResult
from .outputs import classify_error, tier_output
from .parser import hash_content
from .storage import TranscriptStore

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```([\w+#.-]*)\n(.*?)```", re.DOTALL)
_json_decoder = json.JSONDecoder()
# Head of a ToolUseBlock rendering inside flattened entry content
_TOOL_RENDER_PREFIX = "[Tool: "


class ToolExchange(BaseModel):
    """A tool invocation and, once seen, its result."""

    tool_use_id: str
    name: str
    input: Any = None
    line_index: int
    timestamp: str | None = None
    has_result: bool = False
    result: Any = None
    is_error: bool = False
    result_line_index: int | None = None

    @property
    def outcome(self) -> str:
        if self.is_error:
            return "error"
        if self.has_result:
            return "success"
        return "pending"


class CodeBlock(BaseModel):
    language: str
    content: str
    start: int


class JsonObject(BaseModel):
    content: str
    parsed: dict[str, Any]
    start: int


def correlate_tool_calls(events: Sequence[TranscriptEvent | None]) -> list[ToolExchange]:
    """Pair every tool invocation with its result by tool-use id.

    Invocations come from assistant events, results from user events.
    Results with no known invocation are ignored.
    """
    calls: dict[str, ToolExchange] = {}

    for i, event in enumerate(events):
        if event is None or event.type != "assistant" or event.message is None:
            continue
        for block in event.message.blocks:
            if isinstance(block, ToolUseBlock) and block.id:
                calls[block.id] = ToolExchange(
                    tool_use_id=block.id,
                    name=block.name,
                    input=block.input,
                    line_index=i,
                    timestamp=event.timestamp,
                )

    for i, event in enumerate(events):
        if event is None or event.type != "user" or event.message is None:
            continue
        for block in event.message.blocks:
            if not isinstance(block, ToolResultBlock):
                continue
            call = calls.get(block.tool_use_id)
            if call is None:
                continue
            call.has_result = True
            call.result = block.content
            call.is_error = block.is_error is True
            call.result_line_index = i

    return list(calls.values())


def extract_code_blocks(text: str) -> list[CodeBlock]:
    """Fenced code regions; the language defaults to "text"."""
    blocks = []
    for match in _CODE_FENCE.finditer(text or ""):
        body = match.group(2).strip()
        if not body:
            continue
        blocks.append(
            CodeBlock(language=match.group(1) or "text", content=body, start=match.start())
        )
    return blocks


def extract_json_objects(text: str) -> list[JsonObject]:
    """Non-empty JSON objects embedded in free text.

    Each opening brace is handed to the JSON decoder, which copes with
    nesting and braces inside string literals; a failed decode moves on to
    the next brace.
    """
    objects = []
    pos = 0
    text = text or ""
    while True:
        start = text.find("{", pos)
        if start < 0:
            break
        try:
            parsed, end = _json_decoder.raw_decode(text, start)
        except ValueError:
            pos = start + 1
            continue
        if isinstance(parsed, dict) and parsed:
            objects.append(JsonObject(content=text[start:end], parsed=parsed, start=start))
            pos = end
        else:
            pos = start + 1
    return objects


def _tail(text: str | None) -> str | None:
    if not text:
        return None
    return text[-PROMPT_CONTEXT_LENGTH:]


def _prompt_context(events: Sequence[TranscriptEvent | None], index: int) -> str | None:
    """Trailing text of the event just before `index`."""
    if index <= 0 or index > len(events):
        return None
    return _tail(flatten_content(events[index - 1]))


def _prose(content: str) -> str:
    """Stored assistant content without its rendered tool invocations."""
    return "\n\n".join(
        part for part in content.split("\n\n") if not part.startswith(_TOOL_RENDER_PREFIX)
    )


def _persist(store: TranscriptStore, artifact: Artifact) -> bool:
    # The pre-check is an optimization; the store's unique index is the guarantee.
    if store.artifact_exists(artifact.conversation_id, artifact.content_hash):
        return False
    return store.insert_artifact(artifact)


def extract_artifacts(store: TranscriptStore, conversation_id: int) -> ExtractionResult:
    """Extract artifacts for one conversation.

    JSONL sources still on disk are re-read for tool correlation; anything
    else falls back to scanning stored entries.
    """
    conversation = store.get_conversation(conversation_id)
    if conversation is None:
        raise ConversationNotFound(conversation_id)

    source = Path(conversation.source_file_path)
    if conversation.source_file_type == "jsonl" and source.is_file():
        return _extract_from_event_log(store, conversation, source)
    return _extract_from_entries(store, conversation)


def _extract_from_event_log(
    store: TranscriptStore, conversation: Conversation, source: Path
) -> ExtractionResult:
    events = decode_lines(read_lines(source), str(source))
    result = ExtractionResult(conversation_id=conversation.id)

    for call in correlate_tool_calls(events):
        _store_tool_exchange(store, conversation.id, call, events, result)

    for i, event in enumerate(events):
        if event is None or event.type != "assistant":
            continue
        text = assistant_text(event)
        if not text:
            continue
        _store_text_artifacts(store, conversation.id, text, _tail(text), result, line_index=i)

    logger.info(
        "Extracted artifacts from %s: %d tool calls, %d results, %d code blocks, %d JSON objects, %d skipped",
        source, result.tool_calls, result.tool_results, result.code_blocks,
        result.json_objects, result.skipped,
    )
    return result


def _store_tool_exchange(
    store: TranscriptStore,
    conversation_id: int,
    call: ToolExchange,
    events: Sequence[TranscriptEvent | None],
    result: ExtractionResult,
):
    outcome = call.outcome
    output = tier_output(call.result, call.is_error)
    error_type = classify_error(call.result) if outcome == "error" else None

    call_artifact = Artifact(
        conversation_id=conversation_id,
        artifact_type="tool_call",
        tool_name=call.name,
        content=json.dumps(call.input, ensure_ascii=False),
        metadata={
            "tool_use_id": call.tool_use_id,
            "input_keys": list(call.input) if isinstance(call.input, dict) else [],
            "line_index": call.line_index,
            "timestamp": call.timestamp,
        },
        content_hash=hash_content(
            json.dumps({"id": call.tool_use_id, "input": call.input}, ensure_ascii=False)
        ),
        outcome=outcome,
        output_summary=output.summary,
        output_full=output.full,
        output_size_bytes=output.size,
        output_truncated=output.truncated,
        error_type=error_type,
        prompt_context=_prompt_context(events, call.line_index),
    )
    if _persist(store, call_artifact):
        result.tool_calls += 1
    else:
        result.skipped += 1

    if not call.has_result:
        return

    result_artifact = Artifact(
        conversation_id=conversation_id,
        artifact_type="tool_result",
        tool_name=call.name,
        content=output.summary,
        metadata={
            "tool_use_id": call.tool_use_id,
            "result_line_index": call.result_line_index,
        },
        content_hash=hash_content(
            json.dumps({"id": call.tool_use_id, "result": call.result}, ensure_ascii=False)
        ),
        outcome=outcome,
        output_summary=output.summary,
        output_full=output.full,
        output_size_bytes=output.size,
        output_truncated=output.truncated,
        error_type=error_type,
    )
    if _persist(store, result_artifact):
        result.tool_results += 1
    else:
        result.skipped += 1


def _store_text_artifacts(
    store: TranscriptStore,
    conversation_id: int,
    text: str,
    context: str | None,
    result: ExtractionResult,
    entry_id: int | None = None,
    line_index: int | None = None,
):
    """Code blocks and JSON objects found in one assistant message."""
    metadata = {"line_index": line_index} if line_index is not None else None

    for block in extract_code_blocks(text):
        artifact = Artifact(
            conversation_id=conversation_id,
            entry_id=entry_id,
            artifact_type="code_block",
            language=block.language,
            content=block.content,
            metadata=metadata,
            content_hash=hash_content(block.content),
            prompt_context=context,
        )
        if _persist(store, artifact):
            result.code_blocks += 1
        else:
            result.skipped += 1

    for obj in extract_json_objects(text):
        artifact = Artifact(
            conversation_id=conversation_id,
            entry_id=entry_id,
            artifact_type="json_object",
            content=obj.content,
            metadata={**(metadata or {}), "keys": list(obj.parsed)},
            content_hash=hash_content(json.dumps(obj.parsed, sort_keys=True)),
            prompt_context=context,
        )
        if _persist(store, artifact):
            result.json_objects += 1
        else:
            result.skipped += 1


def _extract_from_entries(store: TranscriptStore, conversation: Conversation) -> ExtractionResult:
    # Flattened entries carry no tool structure, so only text artifacts apply.
    entries = store.list_entries(conversation.id, limit=None)
    result = ExtractionResult(conversation_id=conversation.id)

    for i, entry in enumerate(entries):
        if entry.role != "assistant":
            continue
        context = _tail(entries[i - 1].content) if i > 0 else None
        _store_text_artifacts(store, conversation.id, _prose(entry.content), context, result, entry_id=entry.id)

    logger.info(
        "Extracted artifacts from stored entries of conversation %d: %d code blocks, %d JSON objects, %d skipped",
        conversation.id, result.code_blocks, result.json_objects, result.skipped,
    )
    return result
