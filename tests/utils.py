from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from src.finrelay.security.auth import User, create_access_token


def bearer_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


def user_headers(uid: int = 7, email: str = "member@example.com") -> Dict[str, str]:
    return bearer_headers(User(id=uid, email=email, name="Member", roles=["user"]))


def admin_headers(uid: int = 1) -> Dict[str, str]:
    return bearer_headers(User(id=uid, email="admin@example.com", name="Admin", roles=["admin"]))


def sse_line(content: str) -> bytes:
    return ('data: {"choices":[{"delta":{"content":"%s"}}]}' % content).encode("utf-8")


class FakeStream:
    """Stand-in for UpstreamStream that replays canned lines."""

    def __init__(self, lines: Iterable[Any], fail_after: Optional[int] = None) -> None:
        self._lines = list(lines)
        self._fail_after = fail_after
        self.closed = False

    def iter_lines(self):
        from src.finrelay.services.upstream_client import UpstreamReadError

        for i, line in enumerate(self._lines):
            if self._fail_after is not None and i >= self._fail_after:
                raise UpstreamReadError("connection reset by peer")
            yield line
        if self._fail_after is not None and self._fail_after >= len(self._lines):
            raise UpstreamReadError("connection reset by peer")

    def close(self) -> None:
        self.closed = True


class FakeUpstreamClient:
    """Records open_stream calls; returns a FakeStream or raises the configured error."""

    def __init__(self, lines: Iterable[Any] = (), error: Optional[Exception] = None) -> None:
        self.lines = list(lines)
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.streams: List[FakeStream] = []

    def open_stream(self, model, body):
        self.calls.append({"model": model, "body": body})
        if self.error is not None:
            raise self.error
        stream = FakeStream(self.lines)
        self.streams.append(stream)
        return stream


def parse_sse(text: str) -> List[Dict[str, Any]]:
    import json

    frames = []
    for block in text.split("\n\n"):
        block = block.strip()
        if block.startswith("data: "):
            frames.append(json.loads(block[len("data: "):]))
    return frames
