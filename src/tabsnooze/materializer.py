import shlex
import subprocess

from .shared import log_msg


class MaterializerError(Exception):
    """A tab, window or notification command failed."""


def build_command(template: str, **fields) -> list[str]:
    """
    Split template with shlex, then fill in placeholders per argument.

    An argument that is exactly "{urls}" expands to one argument per url, so
    urls never need quoting.
    """
    urls = fields.pop("urls", [])
    args: list[str] = []
    try:
        for token in shlex.split(template):
            if token == "{urls}":
                args.extend(urls)
            else:
                args.append(token.format(**fields))
    except (KeyError, IndexError, ValueError) as e:
        raise MaterializerError(f"Bad command template {template!r}: {e}") from e
    return args


class CommandMaterializer:
    """Restores tabs and windows by running the commands from [commands]."""

    def __init__(self, env):
        commands = env.config.commands
        self.open_tab_command = commands.open_tab
        self.open_window_command = commands.open_window
        self.notify_command = commands.notify
        self.default_icon = commands.default_icon

    def execute(self, args: list[str]):
        if not args:
            raise MaterializerError("No command provided to execute.")
        try:
            subprocess.run(args, check=True)
        except subprocess.CalledProcessError as e:
            raise MaterializerError(f"Error executing command: {args}\n{e}") from e
        except FileNotFoundError as e:
            raise MaterializerError(f"Command not found: {args[0]}") from e
        log_msg(f"executed {args}")

    def open_tab(self, url: str):
        self.execute(build_command(self.open_tab_command, url=url))

    def open_window(self, urls: list[str]):
        if not self.open_window_command:
            # no window command configured: fall back to one tab per url
            for url in urls:
                self.open_tab(url)
            return
        self.execute(build_command(self.open_window_command, urls=list(urls)))

    def notify(self, title: str, message: str, icon: str | None = None):
        if not self.notify_command:
            log_msg(f"notifications disabled: {title}: {message}")
            return
        self.execute(
            build_command(
                self.notify_command,
                title=title,
                message=message,
                icon=icon or self.default_icon,
            )
        )
