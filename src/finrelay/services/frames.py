"""Translation between the provider's streaming lines and downstream SSE frames.

Upstream lines are classified into three variants:

- :class:`DeltaLine` carries a non-empty chunk of generated text.
- :class:`TerminalLine` marks the provider's ``[DONE]`` sentinel.
- :class:`NoiseLine` covers everything else (blank lines, comments,
  keepalives, malformed or content-less envelopes).

Classification never raises; unrecognised shapes are noise.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel


DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class DeltaLine:
    content: str


@dataclass(frozen=True)
class TerminalLine:
    pass


@dataclass(frozen=True)
class NoiseLine:
    reason: str = ""


UpstreamLine = Union[DeltaLine, TerminalLine, NoiseLine]


def _delta_content(envelope: Any) -> Optional[str]:
    if not isinstance(envelope, dict):
        return None
    choices = envelope.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    if not isinstance(choice, dict):
        return None
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


def classify_line(raw: bytes | str) -> UpstreamLine:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return NoiseLine("undecodable")
    line = raw.strip()
    if not line:
        return NoiseLine("blank")
    if not line.startswith(DATA_PREFIX):
        return NoiseLine("not-data")
    payload = line[len(DATA_PREFIX):].strip()
    if payload == DONE_SENTINEL:
        return TerminalLine()
    try:
        envelope = json.loads(payload)
    except json.JSONDecodeError:
        return NoiseLine("malformed")
    content = _delta_content(envelope)
    if not content:
        return NoiseLine("empty")
    return DeltaLine(content)


class StreamFrame(BaseModel):
    type: Literal["delta", "done", "error"]
    content: Optional[str] = None

    @classmethod
    def delta(cls, content: str) -> "StreamFrame":
        return cls(type="delta", content=content)

    @classmethod
    def done(cls) -> "StreamFrame":
        return cls(type="done")

    @classmethod
    def error(cls, content: str) -> "StreamFrame":
        return cls(type="error", content=content)

    def to_sse(self) -> str:
        body = json.dumps(self.model_dump(exclude_none=True), ensure_ascii=False)
        return f"data: {body}\n\n"
