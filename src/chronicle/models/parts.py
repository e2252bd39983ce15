"""Content fragments (parts) streamed into messages, as a tagged union."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter

# Upstream text payloads are either a plain string or arbitrarily nested
# segments ({"value": ...}, {"content": [...]}, [..., ...]).
TextContent = Union[str, dict[str, Any], list[Any]]


class _PartBase(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str | None = None
    session_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("sessionID", "sessionId", "session_id"),
        serialization_alias="sessionID",
    )
    message_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("messageID", "messageId", "message_id"),
        serialization_alias="messageID",
    )
    version: int | None = Field(
        default=None,
        description="Explicit upstream revision used to seed the part revision on first sight.",
    )
    pruned_at: int | None = Field(
        default=None,
        description="Unix millisecond timestamp when this part's content was pruned.",
    )


# ── Part Models ────────────────────────────────────────────────────────────────


class TextPart(_PartBase):
    """A text segment of a message."""

    type: Literal["text"] = "text"
    text: TextContent = ""
    synthetic: bool = False
    """True for client-injected content that the user did not type."""


class ReasoningPart(_PartBase):
    """Chain-of-thought reasoning text streamed by the model."""

    type: Literal["reasoning"] = "reasoning"
    text: TextContent = ""


class ToolState(BaseModel):
    """Lifecycle state of a tool call."""

    model_config = ConfigDict(extra="allow")

    status: Literal["pending", "running", "completed", "error"] = "pending"
    input: dict[str, Any] = Field(default_factory=dict)
    output: TextContent | None = None
    error: str | None = None
    title: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ToolPart(_PartBase):
    """A tool call and its result within an assistant message."""

    type: Literal["tool"] = "tool"
    tool: str = ""
    call_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("callID", "callId", "toolCallID", "toolCallId", "call_id"),
        serialization_alias="callID",
    )
    state: ToolState = Field(default_factory=ToolState)


class FilePart(_PartBase):
    """A file attachment or file reference."""

    type: Literal["file"] = "file"
    filename: str | None = None
    mime: str = ""
    url: str = ""
    source: dict[str, Any] | None = None


class StepStartPart(_PartBase):
    """Marker for the start of an agentic step within a turn."""

    type: Literal["step-start"] = "step-start"


class StepFinishPart(_PartBase):
    """Marker for the end of an agentic step, with its accounting."""

    type: Literal["step-finish"] = "step-finish"
    reason: str | None = None
    cost: float = 0.0
    tokens: dict[str, Any] | None = None


class PatchPart(_PartBase):
    """Records which files were changed by a step."""

    type: Literal["patch"] = "patch"
    hash: str = ""
    files: list[str] = Field(default_factory=list)


MessagePart = Annotated[
    Union[
        TextPart,
        ReasoningPart,
        ToolPart,
        FilePart,
        StepStartPart,
        StepFinishPart,
        PatchPart,
    ],
    Field(discriminator="type"),
]

_PART_ADAPTER: TypeAdapter[MessagePart] = TypeAdapter(MessagePart)


def parse_part(data: Mapping[str, Any] | BaseModel) -> MessagePart:
    """
    Validate a raw part payload into its typed model.

    Already-typed parts are returned unchanged.

    Raises:
        pydantic.ValidationError: If the payload has an unknown ``type`` or a
            malformed shape.
    """
    if isinstance(data, BaseModel):
        return data  # type: ignore[return-value]
    return _PART_ADAPTER.validate_python(dict(data))


def dump_part(part: MessagePart) -> dict[str, Any]:
    """Serialize a part back to its upstream (camel-cased) shape."""
    return part.model_dump(by_alias=True, exclude_none=True)


# ── Text extraction ────────────────────────────────────────────────────────────

_SEGMENT_KEYS = ("text", "value", "content")


def extract_text(value: Any) -> str:
    """
    Flatten any text payload shape into plain text.

    Strings are returned as-is, lists are joined with newlines, and mappings
    are searched for ``text``, ``value`` then ``content`` (recursively).
    Unrecognised mappings contribute nothing.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        return extract_text(value.model_dump())
    if isinstance(value, (list, tuple)):
        return "\n".join(text for text in (extract_text(item) for item in value) if text)
    if isinstance(value, Mapping):
        for key in _SEGMENT_KEYS:
            if key in value:
                text = extract_text(value[key])
                if text:
                    return text
        return ""
    return str(value)


def part_text(part: MessagePart) -> str:
    """
    Render a part as the plain text used for classification and summaries.

    Tool parts include their name, input and output; markers render as empty.
    """
    if isinstance(part, (TextPart, ReasoningPart)):
        return extract_text(part.text)
    if isinstance(part, ToolPart):
        lines = [f"[tool:{part.tool}] {part.state.status}"]
        if part.state.input:
            lines.append(json.dumps(part.state.input, sort_keys=True, default=str))
        output = extract_text(part.state.output)
        if output:
            lines.append(output)
        if part.state.error:
            lines.append(f"error: {part.state.error}")
        return "\n".join(lines)
    if isinstance(part, FilePart):
        return f"[file] {part.filename or part.url}"
    if isinstance(part, PatchPart):
        return "[patch] " + ", ".join(part.files)
    return ""


def derive_part_id(message_id: str, part: MessagePart, index: int) -> str:
    """
    Stable identity for a part within its message.

    Uses the part's own id when present, the upstream call id for tool parts,
    and otherwise ``<message_id>-part-<index>``.
    """
    if part.id:
        return part.id
    if isinstance(part, ToolPart) and part.call_id:
        return part.call_id
    return f"{message_id}-part-{index}"
