"""
Incremental decoding of a server-sent-event completion stream.

Each line of the response body is handled on its own:

- an error envelope ({"error": {"message": ...}}) ends the stream as an error
- the [DONE] marker ends the stream normally
- lines without the 'data:' prefix (blank lines, keep-alives) are skipped
- 'data:' frames carrying choices[0].delta.content extend the reply

Exactly one final event (done=True) is emitted however the stream ends.
"""

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"


class DecoderState(Enum):
    SCANNING = "scanning"
    ERROR_DETECTED = "error_detected"
    DONE = "done"


@dataclass(frozen=True)
class StreamEvent:
    """Accumulated reply at one point of the stream."""

    text: str
    done: bool = False
    is_error: bool = False


def strip_data_prefix(s: str) -> str:
    """'data: X' -> 'X'. Strings without the prefix come back unchanged."""
    if not s.startswith(DATA_PREFIX):
        return s
    return s[len(DATA_PREFIX) :].lstrip(" ")


def parse_error_envelope(line: str) -> str | None:
    """Returns the message of an {"error": {...}} envelope, None for anything else."""
    candidate = strip_data_prefix(line)
    if not candidate.startswith("{") or '"error"' not in candidate:
        return None
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict) or "message" not in error:
        return None
    return str(error["message"] or error.get("code") or "Unknown error")


def delta_content(payload) -> str | None:
    """Pulls choices[0].delta.content out of a decoded frame."""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    delta = first.get("delta") if isinstance(first, dict) else None
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) else None


class StreamDecoder:
    """Line-driven state machine: SCANNING -> ERROR_DETECTED | DONE"""

    def __init__(
        self,
        callback: Callable[[StreamEvent], None] | None = None,
        cancelled: Callable[[], bool] | None = None,
    ):
        self.callback = callback
        self.cancelled = cancelled
        self.state: DecoderState = DecoderState.SCANNING
        self.reply_buffer: list[str] = []
        self.reply: str = ""
        self.progress_count: int = 0
        self.finished: bool = False

    @property
    def is_error(self) -> bool:
        return self.state is DecoderState.ERROR_DETECTED

    def _emit(self, event: StreamEvent):
        if self.callback:
            self.callback(event)

    def feed(self, raw_line: str) -> bool:
        """Consumes one line. Returns False once the stream reached a terminal state."""
        if self.state is not DecoderState.SCANNING:
            return False
        line = raw_line.strip()

        message = parse_error_envelope(line)
        if message is not None:
            self.reply_buffer = [message]
            self.reply = message
            self.state = DecoderState.ERROR_DETECTED
            return False

        if line.startswith(DONE_MARKER) or strip_data_prefix(line) == DONE_MARKER:
            self.state = DecoderState.DONE
            return False

        if not line.startswith(DATA_PREFIX):
            return True

        try:
            payload = json.loads(strip_data_prefix(line))
        except json.JSONDecodeError:
            logger.debug("Skipping malformed frame: %r", line)
            return True

        content = delta_content(payload)
        # Empty fragments would repeat the previous progress event
        if content:
            self.reply_buffer.append(content)
            self.reply = "".join(self.reply_buffer)
            self.progress_count += 1
            self._emit(StreamEvent(self.reply))
        return True

    def finish(self) -> StreamEvent:
        """Emits the one and only final event. Safe to call more than once."""
        final = StreamEvent(self.reply, done=True, is_error=self.is_error)
        if not self.finished:
            self.finished = True
            self._emit(final)
        return final

    def decode(self, lines: Iterable[str]) -> str:
        """
        Feeds lines until a terminal state, end of input, or cancellation.\n
        Exceptions raised by the line source propagate without a final event.
        """
        for line in lines:
            if self.cancelled and self.cancelled():
                logger.debug("Decode cancelled after %d deltas", self.progress_count)
                break
            if not self.feed(line):
                break
        self.finish()
        return self.reply
