"""Builds and spawns UI objects. UIConstructor and GlobalPanels live here."""

import os
import textwrap

from rich import box
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

from copilotsage import __version__
from copilotsage.globals import CONFIG_FILE, CONSOLE, LOG_DIR


class UIConstructor:
    """Constructs and returns various UI objects"""

    def __init__(self, config, session):
        self.config = config
        self.session = session

    def user_panel_constructor(self, content: str) -> Panel:
        return Panel(
            content,
            box=box.HORIZONTALS,
            padding=(0, 0),
            title=Text("🌐 You", style="bold blue"),
            title_align="left",
            border_style="blue",
            style="default",
        )

    def assistant_panel_constructor(self, content: str, is_error=False) -> Panel:
        if is_error:
            body = Text(content, style="red")
        else:
            body = Markdown(content, code_theme=self.config.rich_code_theme)
        return Panel(
            body,
            title=Text("💬 GitHub Copilot", style="bold green"),
            title_align="left",
            border_style="red" if is_error else "green",
            style="default",
            width=None,
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    def status_panel_constructor(self) -> Panel:
        status_text = Text.assemble(
            (" ", "cyan"),
            ("Context: "),
            (f"{self.session.count_tokens()} tokens", "dim"),
            (" | "),
            (f"Turn: {self.session.count_turns()}"),
        )
        return Panel(
            status_text,
            border_style="dim",
            style="dim",
            expand=False,
        )

    def intro_panel_constructor(self) -> Panel:
        intro_text = Text.assemble(
            ("Model: ", "bold sandy_brown"),
            (f"{self.config.model}"),
            ("\nCredentials: ", "bold sandy_brown"),
            (f"{self.config.credential_file}"),
            ("\nWorking Directory: ", "bold sandy_brown"),
            (f"{os.getcwd()}"),
        )
        return Panel(
            intro_text,
            title=Text(f"🔮 Copilot Sage {__version__}", "bold medium_orchid"),
            title_align="left",
            border_style="medium_orchid",
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    def error_panel_constructor(self, error: str, exception: str) -> Panel:
        return Panel(
            exception,
            title=Text(f"❌ {error}", style="bold red"),
            title_align="left",
            border_style="red",
            expand=False,
        )

    def help_chart_constructor(self) -> Markdown:
        return Markdown(
            textwrap.dedent("""
            | **Conversation** | *Manage the active conversation* |
            | --- | ----------- |
            | `!clear` | Clear the chat history. Abandons a reply that is still streaming. |
            | `!reload` | Regenerate session identifiers and fetch a new Copilot token. |
            | `!cls` | Clear the terminal window. |
            | `!q` or `!quit` | Exit Copilot Sage. |
            | | |
            | `Ctrl + C` | Abort mid-stream and return to the root prompt. Also acts as an immediate exit. |

            | **Configuration** | *Main configuration commands* |
            | --- | ----------- |
            | `!config` | Display your current configuration settings and default directories. |
            | `!model` | Set the model name sent with each request. |
            | `!prompt` | Set a new system prompt. Takes effect after `!clear`. |
            | `!rate` | Set the current refresh rate (default is 30). Higher refresh rate = higher CPU usage. |
            | `!theme` | Change your Markdown theme. Built-in themes can be found at https://pygments.org/styles/ |
            | `!timeout` | Set the network timeout in seconds (default is 10). |
            """)
        )

    def settings_chart_constructor(self) -> Markdown:
        return Markdown(
            textwrap.dedent(f"""
            | **Current Settings** | *Your current persistent settings* |
            | --- | ----------- |
            | **Model Name**: | *{self.config.model}* |
            | | |
            | **Temperature**: | *{self.config.temperature}* |
            | | |
            | **Max Tokens**: | *{self.config.max_tokens}* |
            | | |
            | **Timeout**: | *{self.config.timeout}s* |
            | | |
            | **Refresh Rate**: | *{self.config.refresh_rate}* |
            | | |
            | **Markdown Theme**: | *{self.config.rich_code_theme}* |
            - Your configuration file is located at: `{CONFIG_FILE}`
            - Your Copilot credentials are read from: `{self.config.credential_file}`
            - Your error logs are located at:        `{LOG_DIR}`
            """)
        )


class GlobalPanels:
    """Global panel spawner"""

    def __init__(self, session, config, ui: UIConstructor):
        self.session = session
        self.config = config
        self.ui: UIConstructor = ui

    def spawn_intro_panel(self):
        """Simple welcome panel, prints on application launch."""
        CONSOLE.print(self.ui.intro_panel_constructor())
        CONSOLE.print(Markdown("Type `!h` for a list of commands."))
        CONSOLE.print()

    def spawn_status_panel(self):
        """Prints a status panel."""
        CONSOLE.print(self.ui.status_panel_constructor())
        CONSOLE.print()

    def spawn_error_panel(self, error: str, exception: str):
        """Error panel template, used in Chat() and main()"""
        CONSOLE.print(self.ui.error_panel_constructor(error, exception))
        CONSOLE.print()

    def spawn_user_panel(self, content: str):
        """Spawns the user panel."""
        CONSOLE.print()
        CONSOLE.print(self.ui.user_panel_constructor(content))
        CONSOLE.print()
