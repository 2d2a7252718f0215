"""Turn state machine, event ordering and stale-event handling."""

import json
import threading
from unittest.mock import patch

import httpx
import pytest

from conftest import (
    FRESH_TOKEN,
    STALE_TOKEN,
    FakeCopilot,
    InlineExecutor,
    RecordingExecutor,
    sse_body,
)
from copilotsage.controller import (
    ConversationController,
    StreamDone,
    StreamProgress,
    TokenRenewed,
    TurnState,
)
from copilotsage.errors import ConfigError, TransportError
from copilotsage.globals import GREETING, PLACEHOLDER


def make_controller(config, fake=None, executor=None):
    fake = fake or FakeCopilot(body=sse_body("hello", " ", "world"))
    controller = ConversationController(
        config, client=fake.client(), executor=executor or InlineExecutor()
    )
    updates = []
    controller.subscribe(lambda text, done, is_error: updates.append((text, done, is_error)))
    return controller, fake, updates


def test_initial_state(config):
    controller, _, _ = make_controller(config)

    assert controller.state is TurnState.IDLE
    assert not controller.answering
    assert controller.history == [{"role": "system", "content": config.system_prompt}]
    assert controller.messages == [{"role": "assistant", "content": GREETING}]


def test_full_turn(config):
    controller, fake, updates = make_controller(config)

    assert controller.submit("say hello")
    assert controller.answering
    assert controller.messages[-1] == {"role": "assistant", "content": PLACEHOLDER}

    controller.drain()

    assert not controller.answering
    assert updates == [
        ("hello", False, False),
        ("hello ", False, False),
        ("hello world", False, False),
        ("hello world", True, False),
    ]
    assert controller.messages[-2:] == [
        {"role": "user", "content": "say hello"},
        {"role": "assistant", "content": "hello world"},
    ]
    assert controller.history[-2:] == [
        {"role": "user", "content": "say hello"},
        {"role": "assistant", "content": "hello world"},
    ]
    assert controller.last_error is None


def test_request_carries_history_and_session(config):
    controller, fake, _ = make_controller(config)
    controller.submit("first")
    controller.drain()

    request = fake.completion_requests[0]
    body = json.loads(request.content)
    assert request.method == "POST"
    assert body["stream"] is True
    assert body["messages"][-1] == {"role": "user", "content": "first"}
    assert request.headers["authorization"] == f"Bearer {FRESH_TOKEN}"
    assert request.headers["vscode-sessionid"] == controller.session.session_id


def test_token_renewal_is_applied_by_owner(config):
    controller, fake, _ = make_controller(config)
    assert controller.session.token == ""

    controller.submit("first")
    # Worker ran inline, but nothing is applied until the owner drains
    assert controller.session.token == ""
    controller.drain()
    assert controller.session.token == FRESH_TOKEN

    controller.submit("second")
    controller.drain()
    assert len(fake.token_requests) == 1


def test_session_identifiers_survive_turns(config):
    controller, _, _ = make_controller(config)
    before = controller.session.session_id
    controller.submit("one")
    controller.drain()
    controller.submit("two")
    controller.drain()
    assert controller.session.session_id == before


def test_submit_while_answering_is_noop(config):
    executor = RecordingExecutor()
    controller, _, _ = make_controller(config, executor=executor)

    assert controller.submit("first")
    history = list(controller.history)
    messages = [dict(m) for m in controller.messages]

    assert not controller.submit("second")
    assert controller.history == history
    assert controller.messages == messages
    assert len(executor.calls) == 1


def test_blank_submit_is_noop(config):
    executor = RecordingExecutor()
    controller, _, _ = make_controller(config, executor=executor)

    assert not controller.submit("   ")
    assert executor.calls == []
    assert len(controller.messages) == 1


def test_progress_sets_streaming_state(config):
    executor = RecordingExecutor()
    controller, _, _ = make_controller(config, executor=executor)
    controller.submit("hi")
    assert controller.state is TurnState.SUBMITTED

    controller.handle(StreamProgress(controller.generation, "he"))
    assert controller.state is TurnState.STREAMING
    assert controller.messages[-1]["content"] == "he"


def test_clear_discards_stale_reply(config):
    executor = RecordingExecutor()
    controller, _, updates = make_controller(config, executor=executor)
    controller.submit("question")

    controller.clear()
    assert not controller.answering
    # The abandoned worker finishes after the clear
    executor.run()
    controller.drain()

    assert controller.history == [{"role": "system", "content": config.system_prompt}]
    assert controller.messages == [{"role": "assistant", "content": GREETING}]
    assert updates == []


def test_clear_signals_worker_cancellation(config):
    executor = RecordingExecutor()
    controller, _, _ = make_controller(config, executor=executor)
    controller.submit("question")
    cancel_event = executor.calls[-1][1][-1]

    controller.clear()
    assert isinstance(cancel_event, threading.Event)
    assert cancel_event.is_set()


def test_clear_when_idle_keeps_initial_entries(config):
    controller, _, _ = make_controller(config)
    controller.submit("one")
    controller.drain()

    controller.clear()

    assert len(controller.history) == 1
    assert len(controller.messages) == 1
    assert controller.submit("two")


def test_reload_regenerates_identifiers_and_drops_token(config):
    controller, fake, _ = make_controller(config)
    controller.submit("one")
    controller.drain()
    old = controller.session

    controller.reload()

    assert controller.session.token == ""
    assert controller.session.session_id != old.session_id
    assert controller.session.machine_id != old.machine_id

    controller.submit("two")
    controller.drain()
    assert len(fake.token_requests) == 2


def test_token_from_before_reload_is_discarded(config):
    executor = RecordingExecutor()
    controller, _, _ = make_controller(config, executor=executor)
    controller.submit("one")

    controller.reload()
    executor.run()
    controller.drain()

    assert controller.session.token == ""
    assert not controller.answering


def test_stale_token_event_handled_directly(config):
    controller, _, _ = make_controller(config)
    controller.reload()
    assert not controller.handle(TokenRenewed(epoch=0, token=STALE_TOKEN))
    assert controller.handle(TokenRenewed(epoch=controller.epoch, token=FRESH_TOKEN))
    assert controller.session.token == FRESH_TOKEN


def test_events_after_done_are_ignored(config):
    executor = RecordingExecutor()
    controller, _, updates = make_controller(config, executor=executor)
    controller.submit("hi")
    generation = controller.generation

    controller.handle(StreamDone(generation, "final"))
    assert not controller.handle(StreamProgress(generation, "final and more"))
    assert controller.messages[-1]["content"] == "final"
    assert updates == [("final", True, False)]


def test_cancel_keeps_partial_text(config):
    executor = RecordingExecutor()
    controller, _, updates = make_controller(config, executor=executor)
    controller.submit("long question")
    controller.handle(StreamProgress(controller.generation, "partial"))

    assert controller.cancel()
    assert not controller.answering
    assert controller.messages[-1]["content"] == "partial"
    assert controller.history[-2:] == [
        {"role": "user", "content": "long question"},
        {"role": "assistant", "content": "partial"},
    ]

    executor.run()
    controller.drain()
    assert controller.messages[-1]["content"] == "partial"
    assert updates[-1] == ("partial", True, False)


def test_cancel_when_idle(config):
    controller, _, _ = make_controller(config)
    assert not controller.cancel()


def test_error_envelope_becomes_reply(config):
    body = (
        b'{"error":{"code":"model_not_supported","message":"The requested model is not supported",'
        b'"param":"model","type":"invalid_request_error"}}\n'
    )
    controller, _, updates = make_controller(config, fake=FakeCopilot(body=body))

    controller.submit("my question")
    controller.drain()

    assert updates[-1] == ("The requested model is not supported", True, True)
    assert controller.messages[-1]["content"] == "The requested model is not supported"
    assert controller.history[-1] == {"role": "user", "content": "my question"}
    assert controller.last_error is None
    assert not controller.answering
    assert controller.submit("again")


def test_http_error_with_envelope_body(config):
    body = json.dumps(
        {"error": {"code": "bad", "message": "Bad request", "param": None, "type": "x"}},
        indent=2,
    ).encode()
    fake = FakeCopilot(body=body, status_code=400)
    controller, _, updates = make_controller(config, fake=fake)

    controller.submit("hi")
    controller.drain()

    assert updates[-1] == ("Bad request", True, True)


def test_http_error_message_mentioning_data(config):
    body = json.dumps(
        {"error": {"code": "bad", "message": "invalid data: messages[1]", "param": None, "type": "x"}}
    ).encode()
    fake = FakeCopilot(body=body, status_code=400)
    controller, _, updates = make_controller(config, fake=fake)

    controller.submit("hi")
    controller.drain()

    assert updates[-1] == ("invalid data: messages[1]", True, True)
    assert controller.last_error is None


def test_empty_reply_still_answers_the_question(config):
    fake = FakeCopilot(body=sse_body())
    controller, _, updates = make_controller(config, fake=fake)

    controller.submit("first")
    controller.drain()
    assert updates == [("", True, False)]

    fake.body = sse_body("second answer")
    controller.submit("second")
    controller.drain()

    assert [m["role"] for m in controller.history] == [
        "system",
        "user",
        "assistant",
        "user",
        "assistant",
    ]
    assert controller.history[2] == {"role": "assistant", "content": ""}


def test_http_error_without_envelope_is_transport_error(config):
    fake = FakeCopilot(body=b"<html>bad gateway</html>", status_code=502)
    controller, _, updates = make_controller(config, fake=fake)

    controller.submit("hi")
    controller.drain()

    assert isinstance(controller.last_error, TransportError)
    assert "502" in str(controller.last_error)
    assert updates[-1][1:] == (True, True)


def test_connection_failure_is_reported(config):
    def handler(request):
        if request.url.path.endswith("/token"):
            return httpx.Response(200, json={"token": FRESH_TOKEN})
        raise httpx.ConnectError("connection refused", request=request)

    controller = ConversationController(
        config,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        executor=InlineExecutor(),
    )
    controller.submit("hi")
    controller.drain()

    assert isinstance(controller.last_error, TransportError)
    assert controller.last_error.is_retryable()
    assert not controller.answering
    assert controller.history[-1] == {"role": "user", "content": "hi"}


@patch("copilotsage.controller.log_exception")
def test_failures_are_logged_with_their_kind(mock_log, config, tmp_path):
    fake = FakeCopilot(body=b"<html>bad gateway</html>", status_code=502)
    controller, _, _ = make_controller(config, fake=fake)
    controller.submit("hi")
    controller.drain()

    error, context = mock_log.call_args.args
    assert error is controller.last_error
    assert "[transport]" in context

    config.credential_path = str(tmp_path / "nowhere.json")
    controller.reload()
    controller.authenticate()
    assert "[config]" in mock_log.call_args.args[1]


def test_credential_failure_is_reported_not_raised(config, tmp_path):
    config.credential_path = str(tmp_path / "nowhere.json")
    controller, fake, updates = make_controller(config)

    controller.submit("hi")
    controller.drain()

    assert isinstance(controller.last_error, ConfigError)
    assert controller.messages[-1]["content"].startswith("Credential error")
    assert updates == [(controller.messages[-1]["content"], True, True)]
    assert fake.completion_requests == []


def test_authenticate_returns_errors(config, tmp_path):
    controller, _, _ = make_controller(config)
    assert controller.authenticate() is None
    assert controller.session.token == FRESH_TOKEN

    config.credential_path = str(tmp_path / "nowhere.json")
    controller.reload()
    error = controller.authenticate()
    assert isinstance(error, ConfigError)
    assert controller.last_error is error


def test_unknown_event_type(config):
    controller, _, _ = make_controller(config)
    with pytest.raises(TypeError):
        controller.handle(object())


def test_threaded_worker_orders_events(config):
    body = sse_body(*[f"w{i} " for i in range(25)])
    fake = FakeCopilot(body=body)
    controller = ConversationController(config, client=fake.client())
    updates = []
    controller.subscribe(lambda text, done, is_error: updates.append((text, done)))
    try:
        controller.submit("count")
        while controller.answering:
            controller.poll(timeout=5)
    finally:
        controller.close()

    progress = [text for text, done in updates if not done]
    assert len(progress) == 25
    assert [len(t) for t in progress] == sorted({len(t) for t in progress})
    assert updates[-1] == ("".join(f"w{i} " for i in range(25)), True)
    assert sum(1 for _, done in updates if done) == 1
