"""Decode event-log lines and normalize their heterogeneous content shapes."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import ROLES

logger = logging.getLogger(__name__)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""

    def render(self) -> str:
        return self.text


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str | None = None
    name: str = ""
    input: Any = None

    def render(self) -> str:
        return f"[Tool: {self.name}]\n{json.dumps(self.input, indent=2, ensure_ascii=False)}"


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str | None = None
    content: Any = None
    is_error: bool | None = None

    def render(self) -> str:
        return f"[Tool Result: {self.tool_use_id}]\n{_stringify(self.content)}"


class RawBlock(BaseModel):
    """A block of a type we don't model; rendered back as JSON."""

    raw: Any = None

    def render(self) -> str:
        return _stringify(self.raw)


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock, RawBlock]

_BLOCK_TYPES: dict[str, type[BaseModel]] = {
    "text": TextBlock,
    "tool_use": ToolUseBlock,
    "tool_result": ToolResultBlock,
}


def parse_block(raw: Any) -> ContentBlock:
    """Map one raw content element onto its block variant."""
    if isinstance(raw, str):
        return TextBlock(text=raw)
    if isinstance(raw, dict):
        block_cls = _BLOCK_TYPES.get(raw.get("type"))
        if block_cls is not None:
            try:
                return block_cls.model_validate(raw)
            except ValidationError:
                logger.debug("Block of type %s did not validate, keeping raw", raw.get("type"))
    return RawBlock(raw=raw)


class EventMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str | None = None
    content: Any = None
    model: str | None = None

    @property
    def blocks(self) -> list[ContentBlock]:
        if not isinstance(self.content, list):
            return []
        return [parse_block(b) for b in self.content]


class TranscriptEvent(BaseModel):
    """One decoded event-log line."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str | None = None
    session_id: str | None = Field(default=None, alias="sessionId")
    timestamp: str | None = None
    version: str | None = None
    git_branch: str | None = Field(default=None, alias="gitBranch")
    cwd: str | None = None
    model: str | None = None
    message: EventMessage | None = None

    @field_validator("timestamp", "version", "model", mode="before")
    @classmethod
    def _coerce_scalar(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return str(v)

    def metadata(self) -> dict[str, str | None]:
        """Environment metadata recorded on conversation creation."""
        return {
            "model": self.model or (self.message.model if self.message else None),
            "version": self.version,
            "git_branch": self.git_branch,
            "cwd": self.cwd,
        }


def decode_line(line: str) -> TranscriptEvent:
    """Decode a single event-log line.

    Raises ValueError (JSON and pydantic errors both subclass it) when the
    line is not a JSON object of the expected shape.
    """
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return TranscriptEvent.model_validate(data)


def decode_lines(lines: list[str], source: str = "") -> list[TranscriptEvent | None]:
    """Decode every line, keeping positions aligned; bad lines become None."""
    events: list[TranscriptEvent | None] = []
    for i, line in enumerate(lines):
        try:
            events.append(decode_line(line))
        except ValueError as e:
            logger.debug("Skipping malformed line %d in %s: %s", i, source, e)
            events.append(None)
    return events


def read_lines(path: Path) -> list[str]:
    """Read a whole file and return its non-empty lines.

    Undecodable bytes become U+FFFD so one bad line cannot sink the file.
    """
    text = path.read_text(encoding="utf-8", errors="replace")
    return [line for line in text.split("\n") if line.strip()]


def derive_role(event: TranscriptEvent) -> str:
    if event.message and event.message.role in ROLES:
        return event.message.role
    if event.type in ("user", "assistant"):
        return event.type
    if event.type in ("tool_result", "tool"):
        return "tool"
    return "system"


def flatten_content(event: TranscriptEvent | None) -> str | None:
    """Render an event's message content as a single text value."""
    if event is None or event.message is None or not event.message.content:
        return None

    content = event.message.content
    if isinstance(content, list):
        return "\n\n".join(block.render() for block in event.message.blocks)
    return _stringify(content)


def assistant_text(event: TranscriptEvent) -> str:
    """Prose written by the assistant: string content or its text blocks."""
    if event.message is None:
        return ""
    content = event.message.content
    if isinstance(content, str):
        return content
    return "".join(
        block.text + "\n" for block in event.message.blocks if isinstance(block, TextBlock)
    )
