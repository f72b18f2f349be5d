"""Decoding of agent session transcripts.

Codex and Gemini both write one JSON object per line, in different
shapes. Each line decodes to at most one ``Entry``; lines that carry only
metadata, duplicate another line, or fail to parse decode to ``None``.

Codex (``response_item`` lines)::

    {"type": "response_item", "payload": {"type": "reasoning", "summary": [{"text": "..."}]}}
    {"type": "response_item", "payload": {"type": "message", "role": "assistant",
                                          "content": [{"type": "output_text", "text": "..."}]}}
    {"type": "response_item", "payload": {"type": "function_call", "name": "shell",
                                          "arguments": "{\\"command\\": [\\"ls\\"]}"}}
    {"type": "response_item", "payload": {"type": "function_call_output", "output": "..."}}

Gemini (stream-json)::

    {"type": "init", "session_id": "..."}
    {"type": "message", "role": "assistant", "content": "Hi", "delta": true}
    {"type": "tool_use", "tool_name": "read_file", "parameters": {...}}
    {"type": "tool_result", "output": "..."}
    {"type": "result", "stats": {...}}

Gemini streams assistant text as ``delta`` fragments which are merged back
into one message entry by ``decode_lines``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from june.db import AgentKind, normalize_agent_kind

log = logging.getLogger(__name__)

OUTPUT_TRUNCATE_LIMIT = 200
TRUNCATION_SUFFIX = "..."


class EntryKind(StrEnum):
    USER = "user"
    MESSAGE = "message"
    REASONING = "reasoning"
    TOOL = "tool"
    TOOL_OUTPUT = "tool_output"


@dataclass(frozen=True)
class Entry:
    kind: EntryKind
    content: str
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    # Streaming fragment of an assistant message, merged by decode_lines().
    partial: bool = False


def truncate_output(text: str, limit: int = OUTPUT_TRUNCATE_LIMIT) -> str:
    """Cut ``text`` to ``limit`` characters and mark the cut with ``...``.

    Slices decoded code points, so a multi-byte character is never split.
    """
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_SUFFIX


def _load_object(data: bytes | str) -> dict[str, Any] | None:
    """Decode one line, returning None for anything but a JSON object."""
    try:
        parsed = json.loads(data)
    except ValueError:
        log.debug("Skipping undecodable transcript line: %.80r", data)
        return None
    return parsed if isinstance(parsed, dict) else None


def _joined_text(items: Any) -> str:
    """Join the ``text`` fields of a list of content/summary parts."""
    if not isinstance(items, list):
        return ""
    parts = [
        item["text"]
        for item in items
        if isinstance(item, dict) and isinstance(item.get("text"), str) and item["text"]
    ]
    return "\n".join(parts)


def _tool_entry(name: str, tool_input: dict[str, Any] | None) -> Entry:
    return Entry(EntryKind.TOOL, f"[tool: {name}]", tool_name=name, tool_input=tool_input)


# -- Codex --


def _codex_tool_arguments(name: str, raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        log.debug("codex: failed to decode tool arguments for %s", name)
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_codex_line(
    data: bytes | str, *, truncate: int = OUTPUT_TRUNCATE_LIMIT
) -> Entry | None:
    """Decode one line of a Codex session file.

    ``event_msg`` lines (``agent_reasoning``, ``agent_message``) repeat the
    ``response_item`` payloads and are skipped, as are ``session_meta`` and
    ``turn_context`` lines, which have no displayable payload type.
    """
    raw = _load_object(data)
    if raw is None:
        return None
    payload = raw.get("payload")
    if not isinstance(payload, dict):
        return None

    match payload.get("type"):
        case "reasoning":
            text = _joined_text(payload.get("summary"))
            return Entry(EntryKind.REASONING, text) if text else None
        case "message":
            text = _joined_text(payload.get("content"))
            if not text:
                return None
            kind = EntryKind.USER if payload.get("role") == "user" else EntryKind.MESSAGE
            return Entry(kind, text)
        case "function_call":
            name = payload.get("name")
            if not isinstance(name, str) or not name:
                return None
            return _tool_entry(name, _codex_tool_arguments(name, payload.get("arguments")))
        case "function_call_output":
            output = payload.get("output")
            if not isinstance(output, str) or not output:
                return None
            return Entry(EntryKind.TOOL_OUTPUT, truncate_output(output, truncate))
    return None


# -- Gemini --


def parse_gemini_line(
    data: bytes | str, *, truncate: int = OUTPUT_TRUNCATE_LIMIT
) -> Entry | None:
    """Decode one line of Gemini ``--output-format stream-json`` output.

    ``init`` is session metadata and ``result`` is end-of-turn statistics;
    neither produces an entry.
    """
    raw = _load_object(data)
    if raw is None:
        return None

    match raw.get("type"):
        case "message":
            content = raw.get("content")
            if not isinstance(content, str):
                return None
            if raw.get("role") != "user" and raw.get("delta") is True:
                # Empty fragments still belong to the message being streamed.
                return Entry(EntryKind.MESSAGE, content, partial=True)
            if not content:
                return None
            if raw.get("role") == "user":
                return Entry(EntryKind.USER, content)
            return Entry(EntryKind.MESSAGE, content)
        case "thinking" | "reasoning":
            content = raw.get("content")
            if not isinstance(content, str) or not content:
                return None
            return Entry(EntryKind.REASONING, content)
        case "tool_use":
            name = raw.get("tool_name")
            if not isinstance(name, str) or not name:
                return None
            params = raw.get("parameters")
            return _tool_entry(name, params if isinstance(params, dict) else None)
        case "tool_result":
            output = raw.get("output")
            if not isinstance(output, str) or not output:
                return None
            return Entry(EntryKind.TOOL_OUTPUT, truncate_output(output, truncate))
    return None


# -- Dispatch --


@dataclass(frozen=True)
class Decoder:
    parse_line: Callable[..., Entry | None]
    accumulates_deltas: bool


DECODERS: dict[AgentKind, Decoder] = {
    AgentKind.CODEX: Decoder(parse_codex_line, accumulates_deltas=False),
    AgentKind.GEMINI: Decoder(parse_gemini_line, accumulates_deltas=True),
}


def get_decoder(kind: str | None) -> Decoder:
    return DECODERS[normalize_agent_kind(kind)]


def decode_lines(
    lines: Iterable[bytes | str],
    kind: str | None,
    *,
    truncate: int = OUTPUT_TRUNCATE_LIMIT,
) -> list[Entry]:
    """Decode complete transcript lines into entries.

    For kinds that stream assistant text, consecutive ``delta`` fragments
    are concatenated into one message. The buffer is flushed by the next
    line that is not a fragment (whatever it decodes to) and at the end of
    input.
    """
    decoder = get_decoder(kind)
    entries: list[Entry] = []
    pending: list[str] = []

    def flush() -> None:
        text = "".join(pending)
        pending.clear()
        if text:
            entries.append(Entry(EntryKind.MESSAGE, text))

    for line in lines:
        entry = decoder.parse_line(line, truncate=truncate)
        if decoder.accumulates_deltas:
            if entry is not None and entry.partial:
                pending.append(entry.content)
                continue
            flush()
        if entry is not None:
            entries.append(entry)
    flush()
    return entries


# -- Rendering --


def format_entries(entries: Iterable[Entry]) -> str:
    """Render entries as plain text for terminal output."""
    chunks: list[str] = []
    for entry in entries:
        match entry.kind:
            case EntryKind.USER:
                chunks.append(f"[user] {entry.content}\n\n")
            case EntryKind.MESSAGE:
                chunks.append(f"{entry.content}\n\n")
            case EntryKind.REASONING:
                chunks.append(f"[thinking] {entry.content}\n\n")
            case EntryKind.TOOL:
                chunks.append(f"{entry.content}\n")
            case EntryKind.TOOL_OUTPUT:
                chunks.append(f"  -> {entry.content}\n")
    return "".join(chunks)


def entry_to_dict(entry: Entry) -> dict[str, Any]:
    data: dict[str, Any] = {"type": entry.kind.value, "content": entry.content}
    if entry.tool_name is not None:
        data["tool_name"] = entry.tool_name
    if entry.tool_input is not None:
        data["tool_input"] = entry.tool_input
    return data
