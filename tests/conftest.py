"""Shared fixtures: a temp config, fake Copilot endpoints, and controllable executors."""

import json
import time

import httpx
import pytest

from copilotsage.config import Config

FUTURE_EXP = int(time.time()) + 3600
FRESH_TOKEN = f"tid=abc;exp={FUTURE_EXP};sku=yearly_subscriber;chat=1"
STALE_TOKEN = "tid=abc;exp=1714329795;sku=yearly_subscriber;chat=1"


def sse_body(*deltas: str, done=True) -> bytes:
    """Builds a completion stream with one data frame per delta."""
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": d}}]})
        for d in deltas
    ]
    if done:
        lines.append("[DONE]")
    return ("\n\n".join(lines) + "\n").encode("utf-8")


class InlineExecutor:
    """Runs submitted work immediately, on the calling thread"""

    def __init__(self):
        self.calls = []

    def submit(self, fn, *args):
        self.calls.append(args)
        fn(*args)

    def shutdown(self, wait=True):
        pass


class RecordingExecutor:
    """Records submitted work without running it, so tests decide when it happens"""

    def __init__(self):
        self.calls = []

    def submit(self, fn, *args):
        self.calls.append((fn, args))

    def run(self, index=-1):
        fn, args = self.calls[index]
        fn(*args)

    def shutdown(self, wait=True):
        pass


class FakeCopilot:
    """Stand-in for the token and completion endpoints"""

    def __init__(self, token=FRESH_TOKEN, body: bytes = b"", status_code=200):
        self.token = token
        self.body = body
        self.status_code = status_code
        self.token_requests: list[httpx.Request] = []
        self.completion_requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/copilot_internal/v2/token"):
            self.token_requests.append(request)
            return httpx.Response(200, json={"token": self.token})
        self.completion_requests.append(request)
        return httpx.Response(
            self.status_code,
            content=self.body,
            headers={"content-type": "text/event-stream"},
        )

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture
def credential_file(tmp_path):
    path = tmp_path / "hosts.json"
    path.write_text(
        json.dumps({"github.com": {"user": "octocat", "oauth_token": "gho_test"}}),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def config(credential_file):
    cfg = Config()
    cfg.credential_path = str(credential_file)
    return cfg
