"""Incrementally parse transcript files into deduplicated conversation entries."""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path

from .config import EVENT_LOG_SUFFIXES, MESSAGE_EVENT_TYPES, PLAIN_TEXT_SUFFIXES
from .errors import FileNotFound, UnknownFormat
from .events import TranscriptEvent, decode_lines, derive_role, flatten_content, read_lines
from .models import Entry, ParseResult
from .storage import TranscriptStore

logger = logging.getLogger(__name__)

# Speaker markers at the start of a line in plain-text transcripts
_ROLE_MARKER = re.compile(r"^(Human:|User:|Assistant:|>)\s*", re.MULTILINE)
_MARKER_ROLES = {"Human:": "user", "User:": "user", ">": "user", "Assistant:": "assistant"}


def hash_content(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def parse_file(store: TranscriptStore, path: str | Path, project_id: str | None = None) -> ParseResult:
    """Parse a transcript file, dispatching on its extension.

    The path is resolved first, so checkpoints and the conversation's source
    path are absolute whatever working directory the caller used.

    Raises FileNotFound or UnknownFormat before touching the store.
    """
    file_path = Path(path).expanduser().resolve()
    suffix = file_path.suffix.lower()

    if suffix in EVENT_LOG_SUFFIXES:
        parse = parse_event_log
    elif suffix in PLAIN_TEXT_SUFFIXES:
        parse = parse_plain_text
    else:
        logger.warning("Unknown file format: %s", file_path)
        raise UnknownFormat(file_path)

    if not file_path.is_file():
        logger.warning("Transcript not found: %s", file_path)
        raise FileNotFound(file_path)

    return parse(store, file_path, project_id)


def _find_session(events: list[TranscriptEvent | None]) -> TranscriptEvent | None:
    """First decodable event that names its session."""
    for event in events:
        if event is not None and event.session_id:
            return event
    return None


def parse_event_log(store: TranscriptStore, file_path: Path, project_id: str | None = None) -> ParseResult:
    """Parse the lines of a JSONL event log appended since the last checkpoint."""
    source = str(file_path)
    lines = read_lines(file_path)

    checkpoint = store.get_checkpoint(source)
    start_line = checkpoint.last_line_number if checkpoint else 0

    if len(lines) < start_line:
        logger.warning(
            "%s shrank from %d to %d lines, re-reading from the start",
            source, start_line, len(lines),
        )
        start_line = 0

    events = decode_lines(lines, source)
    session_event = _find_session(events)
    if session_event is not None:
        session_id = session_event.session_id
        metadata = session_event.metadata()
    else:
        session_id = file_path.stem
        metadata = {}

    if len(lines) == start_line:
        logger.debug("No new lines in %s", source)
        existing = store.find_conversation(session_id)
        return ParseResult(
            conversation_id=existing.id if existing else None,
            session_id=session_id,
            total_lines=len(lines),
        )

    conversation = store.find_or_create_conversation(session_id, source, "jsonl", metadata)
    if project_id and not conversation.project_id:
        store.set_project(conversation.id, project_id)

    new_entries = 0
    skipped = 0
    last_hash = checkpoint.last_entry_hash if checkpoint else None
    entry_index = store.next_entry_index(conversation.id)

    for line, event in zip(lines[start_line:], events[start_line:]):
        if event is None or event.type not in MESSAGE_EVENT_TYPES:
            continue

        content = flatten_content(event)
        if not content:
            continue

        line_hash = hash_content(line)
        inserted = store.insert_entry(
            Entry(
                conversation_id=conversation.id,
                entry_hash=line_hash,
                entry_index=entry_index,
                role=derive_role(event),
                content=content,
                timestamp=event.timestamp,
            )
        )
        if inserted:
            new_entries += 1
            entry_index += 1
        else:
            skipped += 1
        last_hash = line_hash

    store.save_checkpoint(source, len(lines), last_hash)
    store.update_conversation_stats(conversation.id)

    logger.info("Parsed %s: %d new entries, %d duplicates", source, new_entries, skipped)

    return ParseResult(
        conversation_id=conversation.id,
        session_id=session_id,
        new_entries=new_entries,
        skipped=skipped,
        total_lines=len(lines),
    )


def split_plain_text(text: str) -> list[tuple[str, str]]:
    """Split a plain-text transcript into (role, segment) pairs in file order.

    Text before the first marker is attributed to the user.
    """
    segments: list[tuple[str, str]] = []
    current_role = "user"

    for part in _ROLE_MARKER.split(text):
        block = part.strip()
        if not block:
            continue
        if block in _MARKER_ROLES:
            current_role = _MARKER_ROLES[block]
            continue
        segments.append((current_role, block))

    return segments


def parse_plain_text(store: TranscriptStore, file_path: Path, project_id: str | None = None) -> ParseResult:
    """Re-split a whole plain-text transcript whenever its content hash changes."""
    source = str(file_path)
    text = file_path.read_text(encoding="utf-8", errors="replace")
    content_hash = hash_content(text)
    session_id = f"txt-{file_path.stem}"

    checkpoint = store.get_checkpoint(source)
    if checkpoint and checkpoint.last_entry_hash == content_hash:
        logger.debug("No changes in %s", source)
        existing = store.find_conversation(session_id)
        return ParseResult(
            conversation_id=existing.id if existing else None,
            session_id=session_id,
        )

    conversation = store.find_or_create_conversation(session_id, source, "txt")
    if project_id and not conversation.project_id:
        store.set_project(conversation.id, project_id)

    new_entries = 0
    skipped = 0
    entry_index = store.next_entry_index(conversation.id)

    for role, block in split_plain_text(text):
        inserted = store.insert_entry(
            Entry(
                conversation_id=conversation.id,
                entry_hash=hash_content(block),
                entry_index=entry_index,
                role=role,
                content=block,
            )
        )
        if inserted:
            new_entries += 1
            entry_index += 1
        else:
            skipped += 1

    store.save_checkpoint(source, 0, content_hash)
    store.update_conversation_stats(conversation.id)

    logger.info("Parsed TXT %s: %d new entries, %d duplicates", source, new_entries, skipped)

    return ParseResult(
        conversation_id=conversation.id,
        session_id=session_id,
        new_entries=new_entries,
        skipped=skipped,
    )
