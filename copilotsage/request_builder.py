"""Wire request construction and per-process session identifiers."""

import secrets
import time
from dataclasses import dataclass

from openai.types.chat import ChatCompletionMessageParam

HEX_DIGITS = "0123456789abcdef"
UUID_TEMPLATE = "xxxxxxxx-xxxx-4xxx-yxxx-xxxxxxxxxxxx"
MACHINE_ID_LENGTH = 65

# Client identification, sent with every completion request
CLIENT_HEADERS = {
    "content-type": "application/json",
    "openai-intent": "conversation-panel",
    "openai-organization": "github-copilot",
    "user-agent": "GitHubCopilotChat/0.14.2024032901",
    "editor-version": "vscode/1.88.0",
    "editor-plugin-version": "copilot-chat/0.14.2024032901",
    "x-github-api-version": "2023-07-07",
    "copilot-integration-id": "vscode-chat",
    "accept": "*/*",
    "accept-encoding": "gzip,deflate",
}


@dataclass(frozen=True)
class Session:
    """Bearer token plus the identifiers that accompany every request."""

    token: str
    session_id: str
    request_id: str
    machine_id: str


def random_uuid() -> str:
    """Version-4 style identifier: 'x' is any hex nibble, 'y' is one of 8-b."""
    chars = []
    for c in UUID_TEMPLATE:
        if c == "x":
            chars.append(secrets.choice(HEX_DIGITS))
        elif c == "y":
            chars.append(HEX_DIGITS[8 + secrets.randbelow(4)])
        else:
            chars.append(c)
    return "".join(chars)


def machine_id() -> str:
    return "".join(secrets.choice(HEX_DIGITS) for _ in range(MACHINE_ID_LENGTH))


def session_id() -> str:
    return random_uuid() + str(time.time_ns() // 1_000_000)


class RequestBuilder:
    """Assembles completion requests from the conversation history."""

    def __init__(self, config):
        self.config = config

    def new_session_identifiers(self) -> tuple[str, str, str]:
        """Returns (request_id, machine_id, session_id)."""
        return random_uuid(), machine_id(), session_id()

    def new_session(self, token: str = "") -> Session:
        """Fresh identifiers. Called once at startup and again on reload only."""
        request_id, machine, session = self.new_session_identifiers()
        return Session(
            token=token,
            session_id=session,
            request_id=request_id,
            machine_id=machine,
        )

    def build(self, history: list[ChatCompletionMessageParam]) -> dict:
        """Request body carrying the full, untrimmed history."""
        return {
            "intent": self.config.intent,
            "model": self.config.model,
            "n": self.config.n,
            "stream": True,
            "temperature": self.config.temperature,
            "top_p": self.config.top_p,
            "messages": [
                {"role": m["role"], "content": m.get("content") or ""}
                for m in history
            ],
            "max_tokens": self.config.max_tokens,
        }

    def headers(self, session: Session) -> dict[str, str]:
        return {
            "authorization": f"Bearer {session.token}",
            "vscode-sessionid": session.session_id,
            "x-request-id": session.request_id,
            "vscode-machineid": session.machine_id,
            **CLIENT_HEADERS,
        }
