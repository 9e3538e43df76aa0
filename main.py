#!/usr/bin/env python3
"""
Bondsman - An interactive shell with a local AI assistant one ';' away
"""

import argparse
import logging
import os
import sys
from typing import Optional, Tuple

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text
from rich.theme import Theme
from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggest, Suggestion
from prompt_toolkit.history import History
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.styles import Style

from chat_engine import ChatEngine, TextSink
from errors import BondsmanError, DaemonNotInstalled, FilesystemError, StartupError
from history import HistoryStore
from ollama_service import DEFAULT_MODEL_NAME, OllamaService, ServiceState
from session import SessionState, ShellRunner
from system_facts import SystemFacts
import i18n

logger = logging.getLogger(__name__)

CHAT_SIGIL = ";"
META_SIGIL = CHAT_SIGIL * 2
QUIT_COMMANDS = ("quit", "exit")

# Status reported for a shell command interrupted with Ctrl+C
INTERRUPTED_STATUS = 130

_bondsman_theme = Theme({
    "assistant.header": "bold cyan",
    "assistant.marker": "dim cyan",
    "error":            "bold red",
    "warning":          "bold yellow",
    "success":          "bold green",
})
console = Console(theme=_bondsman_theme)
err_console = Console(stderr=True, theme=_bondsman_theme)

prompt_style = Style.from_dict(
    {
        "ok": "ansigreen",
        "fail": "ansired",
        "glyph": "ansicyan",
        "cwd": "ansiblue",
        "prompt": "ansiwhite bold",
        "bottom-toolbar": "noreverse #888888",
    }
)


def parse_input(line: str) -> Tuple[str, str]:
    """
    Route one input line.

    Returns (mode, text) with mode one of "empty", "meta", "chat", "command".
    """
    text = line.strip()
    if not text:
        return "empty", ""
    if text.startswith(META_SIGIL):
        return "meta", text[len(META_SIGIL):].strip().lower()
    if text.startswith(CHAT_SIGIL):
        return "chat", text[len(CHAT_SIGIL):].strip()
    if text in QUIT_COMMANDS:
        return "meta", text
    return "command", text


# ── prompt_toolkit adapters over the history store ────────────────────────────

class StoreHistory(History):
    """Up/down recall backed by HistoryStore (newest first)."""

    def __init__(self, store: HistoryStore):
        super().__init__()
        self.store = store

    def load_history_strings(self):
        for entry in reversed(self.store.entries):
            yield entry.command

    def append_string(self, string: str) -> None:
        # Chat and meta lines never enter recall
        if parse_input(string)[0] == "command":
            super().append_string(string)

    def store_string(self, string: str) -> None:
        # Only shell commands are persisted, by BondsmanShell.handle_command
        pass


class StoreSuggest(AutoSuggest):
    """Greyed-out completion from the most recent command sharing the typed prefix."""

    def __init__(self, store: HistoryStore):
        self.store = store

    def get_suggestion(self, buffer, document) -> Optional[Suggestion]:
        text = document.text
        if not text.strip() or text.startswith(CHAT_SIGIL):
            return None
        for command in reversed(self.store.search(text)):
            if command != text:
                return Suggestion(command[len(text):])
        return None


class ConsoleSink(TextSink):
    """Streams assistant deltas straight to the terminal."""

    def __init__(self, out: Console):
        super().__init__(lambda text: out.out(text, end="", highlight=False))
        self.console = out

    def write_marker(self) -> None:
        self.console.out(self.marker, style="assistant.marker", end="", highlight=False)


class BondsmanShell:
    def __init__(
        self,
        facts: SystemFacts,
        session: SessionState,
        history: HistoryStore,
        engine: ChatEngine,
        runner: ShellRunner,
    ):
        self.facts = facts
        self.session = session
        self.history = history
        self.engine = engine
        self.runner = runner
        self.prompt_session = None

    def setup_prompt_session(self):
        """Setup prompt_toolkit session over the command history store"""
        kb = KeyBindings()

        @kb.add("escape", "enter")
        def _(event):
            event.current_buffer.insert_text("\n")

        self.prompt_session = PromptSession(
            history=StoreHistory(self.history),
            auto_suggest=StoreSuggest(self.history),
            style=prompt_style,
            multiline=False,
            key_bindings=kb,
            bottom_toolbar=lambda: i18n.t('cli.toolbar'),
        )

    def _prompt_message(self):
        parts = [("", "\n")]
        status = self.session.last_status
        if status is not None:
            parts.append(("class:ok", "> ") if status == 0 else ("class:fail", "! "))
        basename = os.path.basename(self.session.cwd.rstrip("/\\")) or self.session.cwd
        parts.append(("class:glyph", "ᗹ "))
        parts.append(("class:cwd", basename))
        parts.append(("class:prompt", " $ "))
        return parts

    def print_welcome(self):
        console.print(i18n.t('cli.welcome'), style="dim")

    def print_error(self, message: str):
        console.print(Text.assemble((i18n.t('cli.error'), "error"), " ", message))

    def print_warning(self, message: str):
        console.print(Text.assemble((i18n.t('cli.warning'), "warning"), " ", message))

    def handle_meta_command(self, command: str) -> bool:
        """Handle ;;commands. Returns True if the shell should exit."""
        if command in QUIT_COMMANDS:
            console.print(f"\n{i18n.t('cli.goodbye')}", style="success")
            return True
        if command == "help":
            console.print(i18n.t('cli.help'))
        else:
            console.print(i18n.t('cli.unknown_meta', command=command), style="yellow", markup=False)
        return False

    def handle_chat(self, query: str):
        """Stream the assistant's answer to `query`."""
        if not query:
            console.print(i18n.t('cli.empty_query'), style="yellow")
            return

        console.print(Text(f"\n=== {i18n.t('cli.chat_header')} ===\n", style="assistant.header"))
        sink = ConsoleSink(console)
        try:
            self.engine.ask(query, sink)
        except KeyboardInterrupt:
            console.print()
            console.print(i18n.t('cli.cancelled'), style="yellow")
            return
        except BondsmanError as e:
            if sink.started:
                console.print()
            self.print_error(str(e))
            return
        console.print("\n")

    def _change_directory(self, command: str, target: str):
        try:
            self.session.change_directory(target)
            status = 0
        except FilesystemError as e:
            self.print_error(str(e))
            status = 1
        self.session.update_after_command(command, status)

    def handle_command(self, command: str):
        """Record, run and report one shell command."""
        try:
            self.history.record(command)
        except FilesystemError as e:
            self.print_warning(i18n.t('history.save_failed', error=e))

        if command == "cd" or command.startswith("cd "):
            self._change_directory(command, command[2:].strip())
            return

        try:
            result = self.runner.run(command, self.session.cwd, self.session.env)
        except KeyboardInterrupt:
            console.print()
            console.print(i18n.t('cli.cancelled'), style="yellow")
            self.session.update_after_command(command, INTERRUPTED_STATUS)
            return

        self.session.update_after_command(command, result.exit_status)

        if result.stdout:
            stdout = result.stdout if result.stdout.endswith("\n") else result.stdout + "\n"
            console.out(stdout, end="", highlight=False)
        if result.stderr:
            self.print_error(result.stderr.rstrip("\n"))

    def dispatch(self, line: str) -> bool:
        """Route one input line. Returns True if the shell should exit."""
        mode, text = parse_input(line)
        if mode == "meta":
            return self.handle_meta_command(text)
        if mode == "chat":
            self.handle_chat(text)
        elif mode == "command":
            self.handle_command(text)
        return False

    def run(self):
        """Main interactive loop"""
        self.setup_prompt_session()
        self.print_welcome()

        try:
            while True:
                try:
                    line = self.prompt_session.prompt(self._prompt_message)
                    if self.dispatch(line):
                        break
                except KeyboardInterrupt:
                    console.print(i18n.t('cli.exit_hint'), style="yellow")
                    continue
                except EOFError:
                    console.print(f"\n{i18n.t('cli.goodbye')}", style="success")
                    break

        except Exception as e:
            logger.debug("fatal error in interactive loop", exc_info=True)
            console.print(Text.assemble((i18n.t('cli.error'), "error"), f" {e}"))
            sys.exit(1)


def _ensure_service_ready(service: OllamaService, model_name: str):
    """Run the daemon lifecycle with a spinner; `ollama pull` draws its own progress."""
    status = None
    pulled = False

    def _on_progress(state: ServiceState, detail: str):
        nonlocal status, pulled
        if state is ServiceState.DOWNLOADING:
            if status is not None:
                status.stop()
                status = None
            pulled = True
            console.print(i18n.t('service.pulling', model=detail), style="warning")
            return

        keys = {
            ServiceState.PROBING: 'service.probing',
            ServiceState.STARTING: 'service.starting',
            ServiceState.POLLING: 'service.polling',
            ServiceState.MODEL_MISSING: 'service.checking_model',
        }
        if state not in keys:
            return
        message = i18n.t(keys[state], detail=detail)
        if status is None:
            status = console.status(f"[yellow]{message}[/]", spinner="dots")
            status.start()
        else:
            status.update(f"[yellow]{message}[/]")

    service.progress_callback = _on_progress
    try:
        service.ensure_ready(model_name)
    finally:
        if status is not None:
            status.stop()
        service.progress_callback = None

    if pulled:
        console.print(i18n.t('service.pulled', model=model_name), style="success")
    logger.info(i18n.t('service.ready', model=model_name))


def _setup_logging(debug: bool):
    level_name = "DEBUG" if debug else os.environ.get("BONDSMAN_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bondsman",
        description=i18n.t('cli.arg_description'),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  bondsman                    # start Ollama if needed, then open the shell
  bondsman --no-auto-start    # use an Ollama server you manage yourself
        """,
    )
    parser.add_argument(
        "--no-auto-start", action="store_true", help=i18n.t('cli.arg_no_auto_start')
    )
    parser.add_argument(
        "--debug", action="store_true", help=i18n.t('cli.arg_debug')
    )
    return parser


def main(argv=None):
    """Entry point"""
    i18n.init()
    args = build_parser().parse_args(argv)
    _setup_logging(args.debug)

    facts = SystemFacts.collect()
    service = OllamaService()

    if args.no_auto_start:
        if not service.is_running():
            console.print(
                Text.assemble((i18n.t('cli.warning'), "warning"), " ", i18n.t('service.not_running'))
            )
    else:
        try:
            _ensure_service_ready(service, DEFAULT_MODEL_NAME)
        except DaemonNotInstalled:
            console.print(Text.assemble((i18n.t('cli.error'), "error"), " ", i18n.t('service.not_installed')))
            console.print(i18n.t('service.install_hint'))
            sys.exit(1)
        except StartupError as e:
            console.print(Text.assemble(
                (i18n.t('cli.error'), "error"), " ", i18n.t('service.startup_failed', error=e)
            ))
            sys.exit(1)

    history = HistoryStore()
    try:
        history.load()
    except FilesystemError as e:
        console.print(Text.assemble((i18n.t('cli.warning'), "warning"), " ", i18n.t('history.load_failed', error=e)))

    session = SessionState.from_process()
    engine = ChatEngine(facts, session, model_name=DEFAULT_MODEL_NAME)

    if service.state is ServiceState.READY:
        with console.status(f"[yellow]{i18n.t('cli.initializing')}[/]", spinner="dots"):
            try:
                engine.preload()
            except BondsmanError as e:
                logger.warning(i18n.t('service.preload_failed', error=e))
        console.print(i18n.t('cli.ready'), style="success")

    shell = BondsmanShell(
        facts=facts,
        session=session,
        history=history,
        engine=engine,
        runner=ShellRunner(facts.shell_path),
    )
    try:
        shell.run()
    finally:
        service.close()


if __name__ == "__main__":
    main()
