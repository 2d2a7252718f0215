"""Handles all user-facing configuration actions."""

import json
import os

from copilotsage.globals import (
    CONFIG_FILE,
    COPILOT_COMPLETION_API,
    COPILOT_TOKEN_API,
    CREDENTIAL_FILE,
    SYSTEM_PROMPT,
)


class Config:
    """User-facing configuration variables"""

    def __init__(self):
        # Generation parameters
        self.model: str = "gpt-3.5-turbo"
        self.temperature: float = 0.1
        self.top_p: int = 1
        self.n: int = 1
        self.max_tokens: int = 4096
        self.intent: bool = True
        # Network
        self.timeout: float = 10.0
        self.credential_path: str = CREDENTIAL_FILE
        self.token_url: str = COPILOT_TOKEN_API
        self.completion_url: str = COPILOT_COMPLETION_API
        # Display
        self.refresh_rate: int = 30
        self.rich_code_theme: str = "monokai"
        self.system_prompt: str = SYSTEM_PROMPT

    def save(self):
        """Saves any config changes to the config file."""
        with open(CONFIG_FILE, "w", encoding="utf-8") as f:
            json.dump(self.__dict__, f, indent=2)

    def load(self):
        """Loads the config file."""
        if not os.path.exists(CONFIG_FILE):
            self.save()
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            data = json.load(f)
        for key, val in data.items():
            setattr(self, key, val)

    @property
    def credential_file(self) -> str:
        """Returns the expanded credential path for use in TokenManager"""
        return os.path.abspath(os.path.expanduser(self.credential_path))
