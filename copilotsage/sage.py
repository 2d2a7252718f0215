#!/usr/bin/env python3

# <~~~~~~~~~~~~>
#  COPILOT SAGE
# <~~~~~~~~~~~~>

import argparse
import sys
import time

from rich.console import Group
from rich.live import Live

from copilotsage.cli_controller import CLIController
from copilotsage.config import Config
from copilotsage.controller import ConversationController
from copilotsage.globals import (
    CONSOLE,
    init_logger,
    log_exception,
    root_prompt,
    spinner_constructor,
)
from copilotsage.session_manager import SessionManager
from copilotsage.ui import GlobalPanels, UIConstructor


class Chat:
    """Owner loop: reads input, dispatches turns, renders controller events"""

    def __init__(
        self,
        config: Config,
        session: SessionManager,
        controller: ConversationController,
        panel: GlobalPanels,
        ui: UIConstructor,
        cli: CLIController,
    ):
        self.config = config
        self.session = session
        self.controller = controller
        self.panel = panel
        self.ui = ui
        self.cli = cli

        # Placeholder for live display object
        self.live: Live | None = None

        # Latest (text, is_error) pushed by the controller, and a redraw flag
        self.reply_text: str = ""
        self.reply_error: bool = False
        self.dirty: bool = False

        # Baseline timer for the rendering loop
        self.last_update_time: float = time.monotonic()

        self.controller.subscribe(self.on_update)

    def on_update(self, text: str, done: bool, is_error: bool):
        """Controller listener. Only records state, drawing happens in the loop."""
        self.reply_text = text
        self.reply_error = is_error
        self.dirty = True

    def reset_turn_state(self):
        """Little helper that resets the turn state."""
        self.reply_text = ""
        self.reply_error = False
        self.dirty = False

    # <~~INPUT~~>
    def read_input(self) -> str | None:
        """
        Prompts until the user submits a message.\n
        Commands are handled in place. Returns None when the user exits.
        """
        while True:
            try:
                user_message = root_prompt()
            except (KeyboardInterrupt, EOFError):  # Ctrl + c implementation for exiting
                return None
            if not user_message.strip():
                continue
            if self.cli.handle_input(user_message):
                continue
            return user_message

    # <~~STREAMING~~>
    def init_rich_live(self):
        """Defines and starts a rich live instance for the streaming loop."""
        self.live = Live(
            self.ui.assistant_panel_constructor(self.session.messages[-1]["content"]),
            console=CONSOLE,
            screen=False,
            refresh_per_second=self.config.refresh_rate,
        )
        self.live.start()

    def update_renderables(self, force=False):
        """Redraws the reply panel, frame-limited to the configured refresh rate."""
        current_time = time.monotonic()
        if not self.live or not self.dirty:
            return
        if force or current_time - self.last_update_time >= 1 / self.config.refresh_rate:
            self.live.update(
                self.ui.assistant_panel_constructor(self.reply_text, self.reply_error)
            )
            self.live.refresh()
            self.dirty = False
            self.last_update_time = current_time

    def stream_turn(self):
        """
        Runs one turn in the owner loop:
        - Polls controller events while the worker streams
        - Keeps the live display refreshed
        - Ctrl+C abandons the turn and keeps the text received so far
        """
        self.reset_turn_state()
        interval = 1 / self.config.refresh_rate
        try:
            self.init_rich_live()
            while self.controller.answering:
                self.controller.poll(timeout=interval)
                self.controller.drain()
                self.update_renderables()
            self.update_renderables(force=True)
        except KeyboardInterrupt:
            self.controller.cancel()
            self.update_renderables(force=True)
            CONSOLE.print("[dim]Response canceled.[/dim]")
        finally:
            if self.live:
                error = self.controller.last_error
                if error:
                    # The error panel below replaces the reply panel
                    self.live.update(Group())
                self.live.stop()
                self.live = None

        error = self.controller.last_error
        if error:
            self.panel.spawn_error_panel(error.title, f"{error}")
            if error.is_retryable():
                CONSOLE.print("[dim]Send your message again to retry.[/dim]\n")
            return
        CONSOLE.print()
        self.panel.spawn_status_panel()

    # <~~RUN~~>
    def run(self):
        """Helper function for running the application"""
        self.panel.spawn_intro_panel()
        error = self.controller.last_error
        if error:
            self.panel.spawn_error_panel(error.title, f"{error}")
        while True:
            user_message = self.read_input()
            if user_message is None:
                CONSOLE.print("[yellow]✨ Farewell![/yellow]\n")
                break
            if self.controller.submit(user_message):
                self.panel.spawn_user_panel(user_message)
                self.stream_turn()


# <~~MAIN FLOW~~>
def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="copilotsage", description="Chat with GitHub Copilot from your terminal."
    )
    parser.add_argument(
        "-d", "--debug", action="store_true", help="Enable debug logging"
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    controller = None
    config = None
    try:
        # Start a spinner, the first token fetch can take a moment
        with Live(
            spinner_constructor("Launching Copilot Sage..."),
            refresh_per_second=8,
            console=CONSOLE,
        ):
            init_logger(args.debug)
            config = Config()
            config.load()
            session = SessionManager(config)
            controller = ConversationController(config, session)
            # Failures are kept on the controller and reported by run()
            controller.authenticate()
            ui = UIConstructor(config, session)
            panel = GlobalPanels(session, config, ui)
            cli = CLIController(config, controller, panel, ui)
            chat = Chat(config, session, controller, panel, ui, cli)
        CONSOLE.clear()
        chat.run()
    except (KeyboardInterrupt, EOFError):
        CONSOLE.print("[yellow]✨ Farewell![/yellow]\n")
    except Exception as e:
        log_exception(e, "Critical startup error")
        CONSOLE.print(
            UIConstructor(config, None).error_panel_constructor(
                "CRITICAL ERROR", f"{e}"
            )
        )
        sys.exit(1)
    finally:
        if controller:
            controller.close()
        if config:
            config.save()


if __name__ == "__main__":
    main()
