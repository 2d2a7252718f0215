"""CopilotSage, a terminal chat client for the GitHub Copilot chat service."""

__version__ = "0.1.0"
