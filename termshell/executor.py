#!/usr/bin/env python3
"""
Execution engine for termshell.

Walks a CommandSequence: control operators decide whether each pipeline
runs, stages are wired stdin-to-stdout through in-memory strings, and
redirections read from or write to the virtual filesystem.

Built-ins never see the engine; they only get the filesystem and shell
state. Errors raised by a built-in are converted to stderr text and an exit
status at the stage boundary, so one failing command never aborts the line.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from .builtins import registry as default_registry
from .command_parser import (
    Command, CommandParser, CommandSequence, Pipeline, RedirectType,
    expand_target, expand_variables, expand_words,
)
from .errors import CommandNotFound, ShellError
from .filesystem import FileSystem, WriteMode
from .registry import CommandRegistry, CommandResult
from .state import ShellState
from . import paths


logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """What a whole line produced: terminal text and the final exit status."""
    output: str
    exit_status: int


class ExecutionEngine:
    """
    Executes parsed command lines against one filesystem and shell state.

    One engine per session. ``execute`` is not re-entrant.
    """

    def __init__(self, fs: FileSystem, state: ShellState,
                 registry: Optional[CommandRegistry] = None,
                 parser: Optional[CommandParser] = None):
        self.fs = fs
        self.state = state
        self.registry = registry or default_registry
        self.parser = parser or CommandParser()
        self._running = False

    def execute(self, source: Union[str, CommandSequence]) -> ExecutionResult:
        """
        Parse (if needed) and run a command line.

        Raises:
            ParseError: the line is malformed; nothing was executed.
            RuntimeError: called while another execution is in progress.
        """
        if self._running:
            raise RuntimeError("ExecutionEngine.execute() is not re-entrant")
        self._running = True
        self.state.exit_requested = False
        try:
            if isinstance(source, CommandSequence):
                sequence = source
            else:
                sequence = self.parser.parse(source, self.state)
            return self._run_sequence(sequence)
        finally:
            self._running = False

    def _run_sequence(self, sequence: CommandSequence) -> ExecutionResult:
        output: List[str] = []
        previous_op = None

        for pipeline, operator in sequence.pipelines:
            status = self.state.last_exit_status
            if (previous_op == '&&' and status != 0) or (previous_op == '||' and status == 0):
                logger.debug("skipping pipeline after %s (status %d): %s", previous_op, status, pipeline)
            else:
                self.state.last_exit_status = self._run_pipeline(pipeline, output)
            previous_op = operator
            if self.state.exit_requested:
                break

        return ExecutionResult(''.join(output), self.state.last_exit_status)

    def _run_pipeline(self, pipeline: Pipeline, output: List[str]) -> int:
        """Run all stages; stderr goes straight to ``output``, the last stdout after."""
        stdin = ''
        status = 0
        for command in pipeline.commands:
            result = self._run_stage(command, stdin)
            if result.stderr:
                output.append(result.stderr)
            stdin = result.stdout
            status = result.exit_code
            self._repair_cwd()
        output.append(stdin)
        return status

    # Stages

    def _expand_argv(self, command: Command) -> List[str]:
        argv = []
        for field in expand_words(command.words, self.state):
            if field.globbable:
                matches = paths.glob(self.fs.root, field.text, self.state.cwd, self.state.home)
                argv.extend(matches or [field.text])
            else:
                argv.append(field.text)
        return argv

    def _abs(self, path: str) -> str:
        return paths.normalize(path, self.state.cwd, self.state.home)

    def _prepare_input(self, command: Command, stdin: str) -> Union[str, CommandResult]:
        """Apply input redirections. Returns the stdin text or a failed result."""
        for redirect in command.redirects:
            if redirect.type is RedirectType.READ:
                target = expand_target(redirect.word, self.state) if redirect.word else redirect.target
                result = self.fs.read(self._abs(target))
                if not result.ok:
                    return CommandResult.error(f"termshell: {target}: {result.error.message}")
                stdin = result.value
            elif redirect.type is RedirectType.HERE_DOC:
                body = redirect.body or ''
                stdin = expand_variables(body, self.state) if redirect.expand_body else body
            elif redirect.type is RedirectType.HERE_STR:
                stdin = expand_target(redirect.word, self.state) + '\n'
        return stdin

    def _prepare_output(self, command: Command) -> Union[Optional[tuple], CommandResult]:
        """
        Create/truncate every output target before the command runs.

        Returns (path, mode) of the last output redirection, None if there
        is none, or a failed result.
        """
        final = None
        for redirect in command.redirects:
            if redirect.type not in (RedirectType.WRITE, RedirectType.APPEND):
                continue
            target = expand_target(redirect.word, self.state) if redirect.word else redirect.target
            if not target:
                return CommandResult.error(f"termshell: {redirect.word}: ambiguous redirect")
            path = self._abs(target)
            mode = WriteMode.APPEND if redirect.type is RedirectType.APPEND else WriteMode.TRUNCATE
            result = self.fs.write(path, '', mode)
            if not result.ok:
                return CommandResult.error(f"termshell: {target}: {result.error.message}")
            final = (path, mode, target)
        return final

    def _apply_assignments(self, command: Command) -> Dict[str, str]:
        return {name: expand_target(word, self.state) for name, word in command.assignments}

    def _run_stage(self, command: Command, stdin: str) -> CommandResult:
        argv = self._expand_argv(command)
        assignments = self._apply_assignments(command)

        stdin = self._prepare_input(command, stdin)
        if isinstance(stdin, CommandResult):
            return stdin
        output_target = self._prepare_output(command)
        if isinstance(output_target, CommandResult):
            return output_target

        if not argv:
            # Bare assignments (or bare redirections) change the session
            errors = []
            for name, value in assignments.items():
                try:
                    self.state.set_var(name, value)
                except ValueError as e:
                    errors.append(f"termshell: {e}\n")
            return CommandResult(stderr=''.join(errors), exit_code=1 if errors else 0)

        result = self._invoke(argv, stdin, assignments)

        if output_target is not None and result.stdout:
            path, mode, target = output_target
            written = self.fs.write(path, result.stdout, WriteMode.APPEND)
            if not written.ok:
                return CommandResult(
                    stderr=result.stderr + f"termshell: {target}: {written.error.message}\n",
                    exit_code=1,
                )
        if output_target is not None:
            result = CommandResult(stdout='', stderr=result.stderr, exit_code=result.exit_code)
        return result

    def _invoke(self, argv: List[str], stdin: str, assignments: Dict[str, str]) -> CommandResult:
        name = argv[0]
        try:
            builtin = self.registry.lookup(name)
        except CommandNotFound as e:
            logger.debug("command not found: %s", name)
            return CommandResult.error(str(e), e.exit_code)

        if builtin.help_flag and '--help' in argv[1:]:
            return CommandResult(stdout=builtin.format_help())

        saved = {key: self.state.env.get(key) for key in assignments}
        self.state.env.update(assignments)
        try:
            logger.debug("running %s", argv)
            return builtin(argv, stdin, self.fs, self.state)
        except ShellError as e:
            return CommandResult.error(f"{name}: {e}", e.exit_code)
        finally:
            for key, value in saved.items():
                if value is None:
                    self.state.env.pop(key, None)
                else:
                    self.state.env[key] = value

    def _repair_cwd(self) -> None:
        """Move cwd to its nearest existing ancestor if a command removed it."""
        cwd = self.state.cwd
        if self.fs.is_dir(cwd):
            return
        repaired = cwd
        while repaired != '/' and not self.fs.is_dir(repaired):
            repaired = paths.dirname(repaired)
        logger.warning("working directory %s vanished; moving to %s", cwd, repaired)
        self.state.change_directory(repaired)
