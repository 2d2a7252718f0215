"""Short-lived bearer token acquisition and renewal."""

import dataclasses
import json
import logging
import time

import httpx

from copilotsage.errors import AuthError, ConfigError
from copilotsage.request_builder import Session

logger = logging.getLogger(__name__)

# Seconds of remaining validity below which a token is renewed
EXPIRY_MARGIN = 60

TOKEN_HEADERS = {
    "accept": "application/json",
    "editor-version": "vscode/1.85.1",
    "editor-plugin-version": "copilot-chat/0.12.2023120701",
    "user-agent": "GitHubCopilotChat/0.12.2023120701",
}


def extract_expiration(token: str) -> int:
    """
    Returns the 'exp' attribute of a token as epoch seconds.\n
    Tokens look like 'tid=...;exp=1714329795;sku=...'. Missing or unparsable gives 0.
    """
    for pair in token.split(";"):
        if pair.startswith("exp="):
            try:
                return int(pair.split("=", 1)[1])
            except ValueError:
                logger.debug("Failed to parse token expiry: %r", pair)
                return 0
    return 0


def is_expired(t: int, now: float | None = None) -> bool:
    """True when the timestamp is within EXPIRY_MARGIN seconds of now, or past it."""
    if now is None:
        now = time.time()
    return t + EXPIRY_MARGIN <= now


class TokenManager:
    """Reads the long-lived OAuth token and trades it for a bearer token"""

    def __init__(self, config, client: httpx.Client):
        self.config = config
        self.client = client

    def read_oauth_token(self) -> str:
        """Reads github.com.oauth_token from the credential file."""
        path = self.config.credential_file
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise ConfigError("credential file not found", path)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(str(e), path) from e

        host = data.get("github.com") if isinstance(data, dict) else None
        oauth_token = host.get("oauth_token") if isinstance(host, dict) else None
        if not oauth_token or not isinstance(oauth_token, str):
            raise ConfigError("no github.com oauth_token entry", path)
        return oauth_token

    def fetch_token(self) -> str:
        """Requests a new bearer token from the identity endpoint."""
        headers = {
            "authorization": f"token {self.read_oauth_token()}",
            **TOKEN_HEADERS,
        }
        try:
            response = self.client.get(
                self.config.token_url, headers=headers, timeout=self.config.timeout
            )
        except httpx.TimeoutException as e:
            raise AuthError(f"timed out after {self.config.timeout}s") from e
        except httpx.HTTPError as e:
            raise AuthError(str(e)) from e

        if response.status_code != 200:
            raise AuthError(response.reason_phrase or "rejected", response.status_code)
        try:
            token = response.json()["token"]
        except (ValueError, KeyError, TypeError) as e:
            raise AuthError("malformed token response") from e
        if not isinstance(token, str) or not token:
            raise AuthError("empty token in response")

        logger.debug("Fetched token expiring at %d", extract_expiration(token))
        return token

    def ensure_fresh(self, session: Session) -> Session:
        """
        Returns a session whose token is valid for at least EXPIRY_MARGIN seconds.\n
        The given session is returned untouched when its token is still fresh.
        """
        if not is_expired(extract_expiration(session.token)):
            return session
        logger.debug("Renewing expired token")
        return dataclasses.replace(session, token=self.fetch_token())
