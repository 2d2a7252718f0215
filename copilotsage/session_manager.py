"""Conversation history and display message management."""

import logging

import tiktoken
from openai.types.chat import ChatCompletionMessageParam

from copilotsage.globals import GREETING


class SessionManager:
    """Holds the model context (history) and the rendered transcript (messages)"""

    def __init__(self, config):
        self.config = config
        self.history: list[ChatCompletionMessageParam] = [
            {"role": "system", "content": self.config.system_prompt}
        ]
        self.messages: list[ChatCompletionMessageParam] = [
            {"role": "assistant", "content": GREETING}
        ]
        self.encoder = None
        self.token_cache: list[tuple[int, int] | None] = []

    def append_message(self, role: str, content: str):
        """Append content to the conversation history"""
        self.history.append({"role": role, "content": content})  # pyright: ignore

    def append_display(self, role: str, content: str):
        """Append content to the rendered transcript"""
        self.messages.append({"role": role, "content": content})  # pyright: ignore

    def update_last_display(self, content: str):
        """Overwrites the trailing assistant placeholder"""
        self.messages[-1]["content"] = content

    def reset(self):
        """Truncates history and messages back to their initial entries"""
        self.history[:] = [{"role": "system", "content": self.config.system_prompt}]
        del self.messages[1:]
        self.token_cache = []

    def snapshot(self) -> list[ChatCompletionMessageParam]:
        """Copy of the history, safe to hand to the network worker"""
        return [dict(m) for m in self.history]  # pyright: ignore

    def count_turns(self) -> int:
        """Calculates and returns the turn number"""
        return sum(1 for m in self.history if m["role"] == "user")

    def count_tokens(self) -> int:
        """Counts and caches tokens."""
        # Ensure cache length matches history
        cache: list[tuple[int, int] | None] = self.token_cache
        diff = len(self.history) - len(cache)
        if diff > 0:
            cache.extend([None] * diff)
        elif diff < 0:
            del cache[len(self.history) :]

        total = 0
        for i, msg in enumerate(self.history):
            text = str(msg.get("content") or "")
            text_hash = hash(text)
            cached = cache[i]
            if cached is None or cached[0] != text_hash:
                count = self.encode(text)
                cache[i] = (text_hash, count)
                total += count
            else:
                total += cached[1]
        return total

    def encode(self, text: str) -> int:
        """Converts a string to tokens"""
        try:
            if self.encoder is None:
                self.encoder = tiktoken.get_encoding("cl100k_base")
            count = len(self.encoder.encode(text))
        except Exception as e:
            # Encodings are downloaded on first use, offline machines get no count
            logging.debug(f"Token counting unavailable: {e}")
            count = 0
        return count
