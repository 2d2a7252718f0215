"""
Conversation state and the per-turn state machine.

The owner loop (the terminal shell) is the only thread that mutates
conversation state. Network work runs on a single worker thread which reports
back through an ordered queue of events:

- StreamProgress: the accumulated reply grew
- StreamDone: the turn ended, successfully or not (always the last event of a turn)
- TokenRenewed: the worker obtained a new bearer token

The owner applies events with poll() or drain(). Events from a turn that was
cleared or canceled, and tokens from before a reload, are discarded.
"""

import dataclasses
import json
import logging
import queue
import threading
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

import httpx
from openai.types.chat import ChatCompletionMessageParam

from copilotsage.errors import CopilotError, TransportError
from copilotsage.globals import PLACEHOLDER, log_exception
from copilotsage.request_builder import RequestBuilder, Session
from copilotsage.session_manager import SessionManager
from copilotsage.stream_decoder import StreamDecoder, StreamEvent, parse_error_envelope
from copilotsage.token_manager import TokenManager

logger = logging.getLogger(__name__)


class TurnState(Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    STREAMING = "streaming"


@dataclass(frozen=True)
class StreamProgress:
    generation: int
    text: str


@dataclass(frozen=True)
class StreamDone:
    generation: int
    text: str
    is_error: bool = False
    error: CopilotError | None = None


@dataclass(frozen=True)
class TokenRenewed:
    epoch: int
    token: str


ControllerEvent = StreamProgress | StreamDone | TokenRenewed
Listener = Callable[[str, bool, bool], None]


class ConversationController:
    """Owns history, display messages and the Session; drives each turn"""

    def __init__(
        self,
        config,
        session_manager: SessionManager | None = None,
        client: httpx.Client | None = None,
        executor: Executor | None = None,
    ):
        self.config = config
        self.session_manager = session_manager or SessionManager(config)
        self.client = client or httpx.Client(timeout=httpx.Timeout(config.timeout))
        self.executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="copilot-worker"
        )
        self.tokens = TokenManager(config, self.client)
        self.builder = RequestBuilder(config)
        self.session: Session = self.builder.new_session()

        self.events: queue.Queue[ControllerEvent] = queue.Queue()
        self.state: TurnState = TurnState.IDLE
        self.generation: int = 0  # Bumped per turn, and by clear()/cancel()
        self.epoch: int = 0  # Bumped by reload()
        self.cancel_event: threading.Event = threading.Event()
        self.last_error: CopilotError | None = None
        self.listeners: list[Listener] = []

        self.handlers: dict[type, Callable] = {
            StreamProgress: self._on_progress,
            StreamDone: self._on_done,
            TokenRenewed: self._on_token_renewed,
        }

    # <~~STATE~~>
    @property
    def answering(self) -> bool:
        return self.state is not TurnState.IDLE

    @property
    def history(self) -> list[ChatCompletionMessageParam]:
        return self.session_manager.history

    @property
    def messages(self) -> list[ChatCompletionMessageParam]:
        return self.session_manager.messages

    def subscribe(self, listener: Listener):
        """Registers a shell callback receiving (text, done, is_error)."""
        self.listeners.append(listener)

    def _notify(self, text: str, done: bool, is_error: bool):
        for listener in self.listeners:
            listener(text, done, is_error)

    # <~~COMMANDS~~>
    def authenticate(self) -> CopilotError | None:
        """Blocking token fetch for startup. Errors are returned, not raised."""
        try:
            self.session = self.tokens.ensure_fresh(self.session)
        except CopilotError as e:
            log_exception(e, f"Error in authenticate() [{e.kind}]")
            self.last_error = e
            return e
        return None

    def submit(self, text: str) -> bool:
        """Starts a turn. Returns False, changing nothing, while a turn is in flight."""
        if self.answering or not text.strip():
            return False

        self.session_manager.append_message("user", text)
        self.session_manager.append_display("user", text)
        self.session_manager.append_display("assistant", PLACEHOLDER)

        self.generation += 1
        self.cancel_event = threading.Event()
        self.last_error = None
        self.state = TurnState.SUBMITTED

        self.executor.submit(
            self._run_turn,
            self.generation,
            self.epoch,
            self.session,
            self.session_manager.snapshot(),
            self.cancel_event,
        )
        logger.debug("Dispatched turn %d", self.generation)
        return True

    def clear(self):
        """Truncates the conversation. Any in-flight turn is abandoned."""
        if self.answering:
            self.cancel_event.set()
            self.state = TurnState.IDLE
        self.generation += 1
        self.session_manager.reset()

    def reload(self):
        """New session identifiers; the next turn fetches a new token."""
        self.epoch += 1
        self.session = self.builder.new_session()
        logger.debug("Session identifiers regenerated (epoch %d)", self.epoch)

    def cancel(self) -> bool:
        """Abandons the in-flight turn, keeping whatever text already arrived."""
        if not self.answering:
            return False
        self.cancel_event.set()
        self.generation += 1
        self.state = TurnState.IDLE
        partial = self.messages[-1]["content"]
        text = "" if partial == PLACEHOLDER else str(partial)
        self.session_manager.update_last_display(text)
        if text:
            self.session_manager.append_message("assistant", text)
        self._notify(text, True, False)
        return True

    def close(self):
        self.cancel_event.set()
        self.executor.shutdown(wait=False)
        self.client.close()

    # <~~EVENT LOOP~~>
    def handle(self, event: ControllerEvent) -> bool:
        """Applies one worker event. Returns False when the event was stale."""
        handler = self.handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unknown controller event: {event!r}")
        return handler(event)

    def poll(self, timeout: float | None = None) -> ControllerEvent | None:
        """Waits up to timeout for one event and applies it."""
        try:
            event = self.events.get(timeout=timeout)
        except queue.Empty:
            return None
        self.handle(event)
        return event

    def drain(self) -> int:
        """Applies every queued event without blocking."""
        count = 0
        while True:
            try:
                event = self.events.get_nowait()
            except queue.Empty:
                return count
            self.handle(event)
            count += 1

    def _on_progress(self, event: StreamProgress) -> bool:
        if event.generation != self.generation or not self.answering:
            return False
        self.state = TurnState.STREAMING
        self.session_manager.update_last_display(event.text)
        self._notify(event.text, False, False)
        return True

    def _on_done(self, event: StreamDone) -> bool:
        if event.generation != self.generation or not self.answering:
            return False
        self.state = TurnState.IDLE
        self.session_manager.update_last_display(event.text)
        # The question stays in history even when no reply came back
        if event.is_error:
            self.last_error = event.error
        else:
            self.session_manager.append_message("assistant", event.text)
        self._notify(event.text, True, event.is_error)
        return True

    def _on_token_renewed(self, event: TokenRenewed) -> bool:
        if event.epoch != self.epoch:
            logger.debug("Discarding token from epoch %d", event.epoch)
            return False
        self.session = dataclasses.replace(self.session, token=event.token)
        return True

    # <~~WORKER~~>
    def _run_turn(
        self,
        generation: int,
        epoch: int,
        session: Session,
        history: list[ChatCompletionMessageParam],
        cancel_event: threading.Event,
    ):
        """Worker body. Never touches controller state, only posts events."""

        def forward(event: StreamEvent):
            if event.done:
                self.events.put(StreamDone(generation, event.text, event.is_error))
            else:
                self.events.put(StreamProgress(generation, event.text))

        try:
            fresh = self.tokens.ensure_fresh(session)
            if fresh is not session:
                self.events.put(TokenRenewed(epoch, fresh.token))
            decoder = StreamDecoder(callback=forward, cancelled=cancel_event.is_set)
            self._stream(fresh, history, decoder)
        except CopilotError as e:
            log_exception(e, f"Error in turn {generation} [{e.kind}]")
            self.events.put(StreamDone(generation, str(e), is_error=True, error=e))
        except Exception as e:
            log_exception(e, f"Unexpected error in turn {generation}")
            self.events.put(
                StreamDone(generation, str(e), is_error=True, error=CopilotError(str(e)))
            )

    def _stream(
        self,
        session: Session,
        history: list[ChatCompletionMessageParam],
        decoder: StreamDecoder,
    ) -> str:
        """POSTs the request and runs the decoder over the response lines."""
        try:
            with self.client.stream(
                "POST",
                self.config.completion_url,
                json=self.builder.build(history),
                headers=self.builder.headers(session),
                timeout=self.config.timeout,
            ) as response:
                if response.is_error:
                    response.read()
                    return decoder.decode(self._error_lines(response))
                return decoder.decode(response.iter_lines())
        except httpx.TimeoutException as e:
            raise TransportError(f"timed out after {self.config.timeout}s") from e
        except httpx.HTTPError as e:
            raise TransportError(str(e)) from e

    def _error_lines(self, response: httpx.Response) -> list[str]:
        """Compacts an error body to one line, so an error envelope decodes normally."""
        try:
            compact = json.dumps(json.loads(response.text))
        except ValueError:
            compact = ""
        if parse_error_envelope(compact) is None:
            raise TransportError(
                f"HTTP {response.status_code} {response.reason_phrase}".strip()
            )
        return [compact]
