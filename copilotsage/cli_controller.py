"""Command interactivity logic lives here."""

import sys

from prompt_toolkit import prompt
from prompt_toolkit.formatted_text import HTML

from copilotsage.globals import CONSOLE


class CLIController:
    """Handles and supports all command input"""

    def __init__(self, config, controller, panel, ui):
        self.config = config
        self.controller = controller
        self.panel = panel
        self.ui = ui

        # Command dict
        self.commands = {
            "!h": self.spawn_help_chart,
            "!help": self.spawn_help_chart,
            "!clear": self.clear_conversation,
            "!cls": CONSOLE.clear,
            "!reload": self.reload_session,
            "!config": self.spawn_settings_chart,
            "!model": self.set_model,
            "!prompt": self.set_system_prompt,
            "!rate": self.set_refresh_rate,
            "!theme": self.set_code_theme,
            "!timeout": self.set_timeout,
            "!q": sys.exit,
            "!quit": sys.exit,
        }

    # <~~HELPERS~~>
    def _prompt_wrapper(
        self, prefix, cancel_msg="Canceled.", allow_empty=False, **kwargs
    ) -> str | None:
        """Prompt_toolkit wrapper for validating input."""
        try:
            # **kwargs passes completers, styles, history, etc automatically
            user_input = prompt(prefix, **kwargs)
            stripped = user_input.strip()
            if not stripped and not allow_empty:
                CONSOLE.print("[dim]No input detected.[/dim]\n")
                return None
            return stripped
        except (KeyboardInterrupt, EOFError):
            CONSOLE.print(f"[dim]{cancel_msg}[/dim]\n")
            return None

    def handle_input(self, user_input: str) -> bool:
        """Parse user input for a command & handle it. Returns False when no command matched."""
        cmd = user_input.strip().lower()
        if cmd not in self.commands:
            return False
        if cmd in ("!q", "!quit"):
            CONSOLE.print("[yellow]✨ Farewell![/yellow]\n")
        self.commands[cmd]()
        return True

    # <~~CHARTS~~>
    def spawn_help_chart(self):
        """Markdown usage chart."""
        CONSOLE.print(self.ui.help_chart_constructor())
        CONSOLE.print()

    def spawn_settings_chart(self):
        """Markdown settings chart."""
        CONSOLE.print(self.ui.settings_chart_constructor())
        CONSOLE.print()

    # <~~CONVERSATION~~>
    def clear_conversation(self):
        """Resets history and transcript to their initial entries."""
        self.controller.clear()
        CONSOLE.print("[green]Chat history cleared.[/green]")
        self.panel.spawn_status_panel()

    def reload_session(self):
        """New session identifiers plus a fresh token."""
        self.controller.reload()
        with CONSOLE.status(
            "[bold medium_orchid]Reloading Copilot token...[/bold medium_orchid]",
            spinner="moon",
        ):
            error = self.controller.authenticate()
        if error:
            self.panel.spawn_error_panel(error.title, f"{error}")
            return
        CONSOLE.print("[green]Session reloaded.[/green]\n")

    # <~~MAIN CONFIG~~>
    def set_model(self):
        """Sets the model name sent with each request"""
        model = self._prompt_wrapper(HTML("Enter a model name<seagreen>:</seagreen> "))
        if not model:
            return

        self.config.model = model
        self.config.save()
        CONSOLE.print(f"[green]Model set to:[/green] {model}\n")

    def set_system_prompt(self):
        """Sets a new persistent system prompt within the config file."""
        sysprompt = self._prompt_wrapper(
            HTML("Enter a system prompt<seagreen>:</seagreen> ")
        )
        if not sysprompt:
            return
        self.config.system_prompt = sysprompt
        self.config.save()
        CONSOLE.print(f"[green]System prompt updated to:[/green] {sysprompt}")
        CONSOLE.print(
            "[dim]Use [cyan]!clear[/cyan] to start a conversation with the new prompt.[/dim]"
        )
        CONSOLE.print()

    def set_refresh_rate(self):
        """Set a new custom refresh rate"""
        rate = self._prompt_wrapper(HTML("Enter a refresh rate<seagreen>:</seagreen> "))
        if not rate:
            return
        try:
            value = int(rate)
            if value <= 3:
                raise ValueError
        except ValueError:
            self.panel.spawn_error_panel(
                "VALUE ERROR", "Please enter a positive number ≥ 4."
            )
            return

        self.config.refresh_rate = value
        self.config.save()
        CONSOLE.print(f"[green]Refresh rate set to:[/green] {value}\n")

    def set_code_theme(self):
        """Allows the user to change out the rich markdown theme"""
        theme = self._prompt_wrapper(
            HTML("Enter a valid theme name<seagreen>:</seagreen> ")
        )
        if not theme:
            return

        self.config.rich_code_theme = theme.lower()
        self.config.save()
        CONSOLE.print(f"[green]Your theme has been set to: [/green]{theme}\n")

    def set_timeout(self):
        """Sets the network timeout used for token and completion requests"""
        timeout = self._prompt_wrapper(
            HTML("Enter a timeout in seconds<seagreen>:</seagreen> ")
        )
        if not timeout:
            return
        try:
            value = float(timeout)
            if value <= 0:
                raise ValueError
        except ValueError:
            self.panel.spawn_error_panel(
                "VALUE ERROR", "Please enter a positive number of seconds."
            )
            return

        self.config.timeout = value
        self.config.save()
        CONSOLE.print(f"[green]Timeout set to:[/green] {value}s\n")
