"""Outbound streaming calls to OpenAI-compatible chat-completion endpoints.

One POST per relay, no retries. The whole exchange (connect, headers and
body transfer) is bounded by a single total-duration ceiling.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import os
import socket
import threading
import time
from typing import Any, Dict, Iterator, List, Optional

import requests
from requests.adapters import HTTPAdapter

from ..domain.ai_models import ModelReference


LOG = logging.getLogger("finrelay.relay")

DEFAULT_CHAT_SYSTEM_PROMPT = (
    "You are a professional, friendly and concise personal finance assistant. "
    "Answer in the language the user writes in."
)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
        return value if value > 0 else default
    except ValueError:
        return default


def _env_temperature(name: str, default: float) -> float:
    # 0 is a valid sampling temperature
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


@dataclass
class RelayConfig:
    total_timeout: float = 300.0
    connect_timeout: float = 10.0
    chat_temperature: Optional[float] = 0.3
    chat_system_prompt: str = DEFAULT_CHAT_SYSTEM_PROMPT
    prestream_errors: str = "json"

    @staticmethod
    def from_env() -> "RelayConfig":
        mode = (os.getenv("FINRELAY_PRESTREAM_ERRORS") or "json").strip().lower()
        return RelayConfig(
            total_timeout=_env_float("FINRELAY_UPSTREAM_TIMEOUT", 300.0),
            connect_timeout=_env_float("FINRELAY_UPSTREAM_CONNECT_TIMEOUT", 10.0),
            chat_temperature=_env_temperature("FINRELAY_CHAT_TEMPERATURE", 0.3),
            chat_system_prompt=os.getenv("FINRELAY_CHAT_SYSTEM_PROMPT") or DEFAULT_CHAT_SYSTEM_PROMPT,
            prestream_errors=mode if mode in ("json", "sse") else "json",
        )


class UpstreamError(RuntimeError):
    """The provider could not be reached or answered with a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UpstreamReadError(RuntimeError):
    """The stream broke after the provider had started answering."""


def build_request_body(
    model: ModelReference,
    messages: List[Dict[str, str]],
    temperature: Optional[float] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "model": model.name,
        "messages": messages,
        "stream": True,
    }
    if temperature is not None:
        body["temperature"] = temperature
    return body


def _build_session() -> requests.Session:
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=0, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


DEADLINE_MESSAGE = "upstream exceeded total timeout"


class UpstreamStream:
    """An open 2xx streaming response; iterate :meth:`iter_lines` once, then close.

    Bytes are pulled one at a time, so lines reach the relay as soon as their
    newline arrives, whether the body is chunked or close-delimited. A
    watchdog timer tears the connection down at the deadline, which also
    unblocks a read that is waiting on a silent or trickling provider.
    """

    def __init__(self, response: requests.Response, deadline: float) -> None:
        self._response = response
        self._deadline = deadline
        self._closed = False
        self._expired = False
        self._lock = threading.Lock()
        self._watchdog: Optional[threading.Timer] = None
        remaining = deadline - time.monotonic()
        if math.isfinite(remaining):
            self._watchdog = threading.Timer(max(remaining, 0.0), self._expire)
            self._watchdog.daemon = True
            self._watchdog.start()

    def _expire(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._expired = True
        LOG.warning("upstream_deadline_exceeded")
        self._shutdown_socket()
        self.close()

    def _shutdown_socket(self) -> None:
        # Closing alone does not wake a recv() blocked in another thread
        conn = getattr(getattr(self._response, "raw", None), "connection", None)
        sock = getattr(conn, "sock", None)
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def _check_deadline(self) -> None:
        if self._expired or time.monotonic() > self._deadline:
            raise UpstreamReadError(DEADLINE_MESSAGE)

    def iter_lines(self) -> Iterator[bytes]:
        buf = bytearray()
        try:
            for chunk in self._response.iter_content(chunk_size=1):
                self._check_deadline()
                buf += chunk
                # Decoded content may yield more than one byte at a time
                while True:
                    end = buf.find(b"\n")
                    if end < 0:
                        break
                    line = bytes(buf[:end])
                    del buf[: end + 1]
                    yield line
        except UpstreamReadError:
            raise
        except Exception as exc:
            if self._expired:
                raise UpstreamReadError(DEADLINE_MESSAGE) from exc
            if isinstance(exc, requests.exceptions.RequestException):
                raise UpstreamReadError(str(exc)) from exc
            raise
        # A torn-down connection can look like a clean EOF
        if self._expired:
            raise UpstreamReadError(DEADLINE_MESSAGE)
        if buf:
            yield bytes(buf)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._watchdog is not None:
            self._watchdog.cancel()
        self._response.close()

    def __enter__(self) -> "UpstreamStream":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class UpstreamClient:
    def __init__(self, config: Optional[RelayConfig] = None, session: Optional[requests.Session] = None) -> None:
        self._config = config or RelayConfig.from_env()
        self._session = session or _build_session()

    def open_stream(self, model: ModelReference, body: Dict[str, Any]) -> UpstreamStream:
        url = model.base_url.rstrip("/") + "/chat/completions"
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "Authorization": f"Bearer {model.secret_key}",
        }
        deadline = time.monotonic() + self._config.total_timeout
        LOG.debug("upstream_open", extra={"model_id": model.id, "url": url})
        try:
            resp = self._session.post(
                url,
                json=body,
                headers=headers,
                stream=True,
                timeout=(self._config.connect_timeout, self._config.total_timeout),
            )
        except requests.exceptions.RequestException as exc:
            raise UpstreamError(f"AI service request failed: {exc.__class__.__name__}") from exc

        if not 200 <= resp.status_code < 300:
            try:
                text = resp.text
            except requests.exceptions.RequestException:
                text = ""
            finally:
                resp.close()
            raise UpstreamError(
                f"AI service returned error: {resp.status_code}",
                status_code=resp.status_code,
                body=text,
            )
        return UpstreamStream(resp, deadline)
