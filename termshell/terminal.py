#!/usr/bin/env python3
"""
Terminal session for termshell.

Owns one filesystem, one shell state and one execution engine, and exposes
``submit_line`` as the single entry point a host UI calls per submitted
line. Also provides the interactive REPL, state persistence to a JSON file
on the host and the command-line entry point.
"""

import getpass
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .builtins import CLEAR_SCREEN, apply_rc
from .errors import ParseError
from .executor import ExecutionEngine
from .filesystem import FileSystem, Limits
from .snapshot import default_snapshot
from .state import ShellState


logger = logging.getLogger(__name__)

STATE_VERSION = '1.0.0'


@dataclass
class TerminalConfig:
    """Configuration for a terminal session."""
    user: str = 'user'
    hostname: str = 'termshell'
    home_dir: Optional[str] = None  # default: /home/<user>
    initial_dir: Optional[str] = None  # default: home_dir
    prompt_format: str = '{user}@{hostname}:{cwd}$ '
    enable_colors: bool = False
    source_rc: bool = True
    max_line_length: int = 1000
    snapshot: Optional[Dict[str, Any]] = None
    limits: Limits = field(default_factory=Limits)

    @property
    def home(self) -> str:
        return self.home_dir or f'/home/{self.user}'


@dataclass
class LineResult:
    """What the host UI shows for one submitted line."""
    output_text: str
    exit_status: int
    clear_screen: bool = False
    exit_requested: bool = False


class TerminalSession:
    """
    Main terminal session manager.

    This class provides the line interface and the REPL loop, and manages
    the session's filesystem and shell state.
    """

    SLASH_COMMANDS = ('/save', '/load', '/status', '/help')

    def __init__(self, config: Optional[TerminalConfig] = None, fs: Optional[FileSystem] = None):
        self.config = config or TerminalConfig()
        home = self.config.home
        snapshot = self.config.snapshot if self.config.snapshot is not None else default_snapshot(home)
        self.fs = fs or FileSystem(snapshot, limits=self.config.limits)
        if not self.fs.is_dir(home):
            self.fs.create_directory(home, parents=True)

        initial = self.config.initial_dir or home
        if not self.fs.is_dir(initial):
            logger.warning("initial directory %s does not exist, starting in %s", initial, home)
            initial = home
        self.state = ShellState.create(user=self.config.user, home=home, cwd=initial)
        self.engine = ExecutionEngine(self.fs, self.state)
        self.running = False

        if self.config.source_rc:
            self._source_rc()
        logger.info("session started for %s in %s", self.config.user, initial)

    def _source_rc(self) -> None:
        rc_path = self.config.home.rstrip('/') + '/.bashrc'
        result = self.fs.read(rc_path)
        if not result.ok:
            return
        aliases, exports, problems = apply_rc(result.value, self.state)
        for problem in problems:
            logger.warning("%s: %s", rc_path, problem)
        logger.debug("%s: applied %d aliases, %d exports", rc_path, aliases, exports)

    # Line interface

    def submit_line(self, raw: str) -> LineResult:
        """
        Execute one submitted line (which may span several lines, e.g. heredocs).

        Parse errors are reported as output with status 2; nothing runs.
        """
        if len(raw) > self.config.max_line_length:
            return LineResult(
                f"termshell: command too long (max {self.config.max_line_length} characters)", 2)
        if not raw.strip():
            return LineResult('', self.state.last_exit_status)

        first_word = raw.split(None, 1)[0]
        if first_word in self.SLASH_COMMANDS:
            return LineResult(self._execute_slash_command(raw.strip()), 0)

        try:
            result = self.engine.execute(raw)
        except ParseError as e:
            self.state.last_exit_status = e.exit_code
            return LineResult(f"termshell: {e}", e.exit_code)

        text = result.output
        clear = CLEAR_SCREEN in text
        if clear:
            text = text.replace(CLEAR_SCREEN, '')
        if text.endswith('\n'):
            text = text[:-1]

        exit_requested = self.state.exit_requested
        return LineResult(text, result.exit_status, clear, exit_requested)

    def execute_command(self, command_line: str) -> Optional[str]:
        """
        Execute a command line and return the output.

        Returns None once ``exit`` has been run.
        """
        result = self.submit_line(command_line)
        if result.exit_requested:
            return None
        return result.output_text

    def get_prompt(self) -> str:
        """Generate the command prompt."""
        cwd = self.state.cwd
        home = self.state.home
        if cwd == home or cwd.startswith(home.rstrip('/') + '/'):
            display_cwd = '~' + cwd[len(home):]
        else:
            display_cwd = cwd

        if self.config.enable_colors:
            # Green for user@host, blue for path
            return f'\033[32m{self.state.user}@{self.config.hostname}\033[0m:\033[34m{display_cwd}\033[0m$ '

        return self.config.prompt_format.format(
            user=self.state.user,
            hostname=self.config.hostname,
            cwd=display_cwd,
            time=datetime.now().strftime('%H:%M:%S'),
        )

    # Persistence

    def state_dict(self) -> Dict[str, Any]:
        return {
            'version': STATE_VERSION,
            'savedAt': datetime.now(timezone.utc).isoformat(),
            'filesystem': self.fs.to_dict(),
            'shell': self.state.to_dict(),
        }

    def save_state(self, filename: str) -> None:
        """Write the filesystem and shell state to a JSON file on the host."""
        with open(filename, 'w', encoding='utf-8') as f:
            json.dump(self.state_dict(), f)
        logger.info("saved session state to %s", filename)

    def load_state(self, filename: str) -> None:
        """
        Restore a state file written by ``save_state``.

        Raises:
            OSError: the file cannot be read.
            ValueError: the file is not a valid state file.
        """
        with open(filename, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict) or 'filesystem' not in data:
            raise ValueError(f"{filename}: not a termshell state file")

        self.fs.load(data['filesystem'])
        restored = ShellState.from_dict(data.get('shell') or {})
        restored.confirm = self.state.confirm
        if not self.fs.is_dir(restored.cwd):
            restored.change_directory(restored.home if self.fs.is_dir(restored.home) else '/')
        self.state = restored
        self.engine = ExecutionEngine(self.fs, self.state)
        logger.info("loaded session state from %s", filename)

    # Slash command handlers

    def _execute_slash_command(self, command_line: str) -> str:
        parts = command_line.split()
        name, args = parts[0], parts[1:]
        filename = args[0] if args else 'termshell-state.json'

        if name == '/save':
            try:
                self.save_state(filename)
            except OSError as e:
                return f"Error saving state: {e}"
            return f"Saved state to {filename}"
        if name == '/load':
            try:
                self.load_state(filename)
            except (OSError, ValueError) as e:
                return f"Error loading state: {e}"
            return f"Loaded state from {filename}"
        if name == '/status':
            files = sum(1 for _, node in self.fs.walk('/') if node.is_file())
            directories = sum(1 for _, node in self.fs.walk('/') if node.is_dir())
            return '\n'.join([
                f"User: {self.state.user}",
                f"Working directory: {self.state.cwd}",
                f"Files: {files}",
                f"Directories: {directories}",
                f"Aliases: {len(self.state.aliases)}",
                f"Last exit status: {self.state.last_exit_status}",
            ])
        return '\n'.join([
            "Slash commands:",
            "  /save [FILE]   Save filesystem and shell state to a host file",
            "  /load [FILE]   Restore state saved with /save",
            "  /status        Show session information",
            "  /help          Show this help",
        ])

    # Host loops

    def _confirm_interactively(self, prompt: str) -> bool:
        try:
            return input(prompt + ' ').strip().lower().startswith('y')
        except EOFError:
            return False

    def run_interactive(self):
        """Run the interactive REPL loop."""
        self.running = True
        self.state.confirm = self._confirm_interactively

        print("Welcome to termshell")
        print("Type 'help' for commands, '/help' for session commands, 'exit' to quit")
        print()

        while self.running:
            try:
                command_line = input(self.get_prompt())
                result = self.submit_line(command_line)
                if result.clear_screen:
                    print(CLEAR_SCREEN, end='')
                if result.output_text:
                    print(result.output_text)
                if result.exit_requested:
                    break
            except KeyboardInterrupt:
                print("^C")
                continue
            except EOFError:
                print()
                break
            except Exception as e:
                logger.exception("unexpected error")
                print(f"Error: {e}")

        self.running = False
        print("Goodbye!")

    def run_command(self, command_line: str) -> str:
        """
        Run a single command and return output.

        This method is useful for non-interactive use.
        """
        output = self.execute_command(command_line)
        return output if output is not None else ''

    def run_script(self, script_lines: List[str]) -> List[str]:
        """Run each line of a script and collect the outputs; stops at ``exit``."""
        outputs = []
        for line in script_lines:
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            output = self.execute_command(line)
            if output is None:
                break
            outputs.append(output)
        return outputs


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the termshell command."""
    import argparse

    parser = argparse.ArgumentParser(description='termshell: an in-memory Unix-like shell')
    parser.add_argument('-c', '--command', help='Execute command and exit')
    parser.add_argument('-f', '--file', help='Execute a script from the host filesystem and exit')
    parser.add_argument('-u', '--user', help='Set username', default=getpass.getuser())
    parser.add_argument('-d', '--directory', help='Set initial directory')
    parser.add_argument('--hostname', default='termshell', help='Hostname shown in the prompt')
    parser.add_argument('--snapshot', help='JSON snapshot file to use as the initial filesystem')
    parser.add_argument('--state', help='State file to load at start and save at exit')
    parser.add_argument('--no-rc', action='store_true', help='Do not apply ~/.bashrc at start')
    parser.add_argument('--no-color', action='store_true', help='Plain prompt without colors')
    parser.add_argument('--log-level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level')
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level),
                        format='%(levelname)s %(name)s: %(message)s')

    snapshot = None
    if args.snapshot:
        with open(args.snapshot, 'r', encoding='utf-8') as f:
            snapshot = json.load(f)

    config = TerminalConfig(
        user=args.user,
        hostname=args.hostname,
        initial_dir=args.directory,
        enable_colors=not args.no_color and sys.stdout.isatty(),
        source_rc=not args.no_rc,
        snapshot=snapshot,
    )
    session = TerminalSession(config=config)
    if args.state and os.path.exists(args.state):
        session.load_state(args.state)

    status = 0
    if args.command or args.file:
        if args.file:
            with open(args.file, 'r', encoding='utf-8') as f:
                script = f.read()
            # Scripts are submitted whole so heredocs span lines
            session.config.max_line_length = max(session.config.max_line_length, len(script))
            result = session.submit_line(script)
        else:
            result = session.submit_line(args.command)
        if result.output_text:
            print(result.output_text)
        status = result.exit_status
    else:
        session.run_interactive()

    if args.state:
        session.save_state(args.state)
    return status


if __name__ == '__main__':
    sys.exit(main())
