#!/usr/bin/env python3
"""
Tests for the execution engine: control operators, pipes, redirection,
expansion at run time and error handling at the stage boundary.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest

from termshell.builtins import registry
from termshell.errors import CommandNotFound, ParseError
from termshell.executor import ExecutionEngine
from termshell.filesystem import FileSystem
from termshell.registry import BuiltinCommand, CommandResult
from termshell.state import ShellState


class EngineTestCase(unittest.TestCase):

    def setUp(self):
        self.fs = FileSystem()
        self.fs.create_directory('/home/user', parents=True)
        self.state = ShellState.create(user='user', home='/home/user')
        self.engine = ExecutionEngine(self.fs, self.state)

    def run_line(self, line):
        return self.engine.execute(line)

    def read(self, name):
        return self.fs.read('/home/user/' + name).value


class TestControlOperators(EngineTestCase):

    def test_and_after_failure(self):
        result = self.run_line('false && echo X')
        self.assertEqual(result.output, '')
        self.assertEqual(result.exit_status, 1)

    def test_or_after_failure(self):
        result = self.run_line('false || echo X')
        self.assertEqual(result.output, 'X\n')
        self.assertEqual(result.exit_status, 0)

    def test_semicolon(self):
        self.assertEqual(self.run_line('true ; echo X').output, 'X\n')
        self.assertEqual(self.run_line('false ; echo X').output, 'X\n')

    def test_or_after_success(self):
        result = self.run_line('true || echo X')
        self.assertEqual(result.output, '')
        self.assertEqual(result.exit_status, 0)

    def test_chain(self):
        self.assertEqual(self.run_line('false && echo a || echo b').output, 'b\n')
        self.assertEqual(self.run_line('true && echo a || echo b').output, 'a\n')

    def test_skipped_pipeline_keeps_status(self):
        self.assertEqual(self.run_line('false && true').exit_status, 1)

    def test_exit_status_variable(self):
        self.assertEqual(self.run_line('false; echo $?').output, '1\n')
        self.assertEqual(self.run_line('true; echo $?').output, '0\n')

    def test_pipeline_status_is_last_stage(self):
        self.assertEqual(self.run_line('false | true').exit_status, 0)
        self.assertEqual(self.run_line('true | false').exit_status, 1)


class TestPipes(EngineTestCase):

    def test_sort(self):
        self.assertEqual(self.run_line('echo "b\\na" | sort').output, 'a\nb\n')

    def test_three_stages(self):
        result = self.run_line('echo "c\\na\\nc\\nb" | sort | uniq')
        self.assertEqual(result.output, 'a\nb\nc\n')

    def test_stderr_is_not_piped(self):
        result = self.run_line('cat missing | wc -l')
        self.assertEqual(result.output, 'cat: missing: No such file or directory\n0\n')
        self.assertEqual(result.exit_status, 0)


class TestRedirection(EngineTestCase):

    def test_write_then_append(self):
        self.assertEqual(self.run_line('echo hi > f.txt').output, '')
        self.assertEqual(self.run_line('cat f.txt').output, 'hi\n')
        self.run_line('echo bye >> f.txt')
        self.assertEqual(self.run_line('cat f.txt').output, 'hi\nbye\n')

    def test_truncate(self):
        self.run_line('echo long line > f.txt')
        self.run_line('echo x > f.txt')
        self.assertEqual(self.read('f.txt'), 'x\n')

    def test_every_target_is_created_last_one_wins(self):
        self.run_line('echo hi > a > b')
        self.assertEqual(self.read('a'), '')
        self.assertEqual(self.read('b'), 'hi\n')

    def test_redirect_inside_pipeline(self):
        result = self.run_line('echo hi > f | cat')
        self.assertEqual(result.output, '')
        self.assertEqual(self.read('f'), 'hi\n')

    def test_empty_output_still_truncates(self):
        self.run_line('echo old > f')
        self.run_line('true > f')
        self.assertEqual(self.read('f'), '')

    def test_input(self):
        self.fs.write('/home/user/data', 'b\na\n')
        self.assertEqual(self.run_line('sort < data').output, 'a\nb\n')

    def test_missing_input(self):
        result = self.run_line('sort < nope')
        self.assertEqual(result.output, 'termshell: nope: No such file or directory\n')
        self.assertEqual(result.exit_status, 1)

    def test_redirect_into_read_only_directory(self):
        result = self.run_line('mkdir ro && chmod 555 ro; echo x > ro/f; cat ro/f')
        self.assertEqual(result.output,
                         'termshell: ro/f: Permission denied\n'
                         'cat: ro/f: No such file or directory\n')
        self.assertEqual(result.exit_status, 1)
        self.assertFalse(self.fs.exists('/home/user/ro/f'))

    def test_redirect_to_directory(self):
        result = self.run_line('echo hi > /home')
        self.assertEqual(result.output, 'termshell: /home: Is a directory\n')
        self.assertEqual(result.exit_status, 1)

    def test_ambiguous_redirect(self):
        result = self.run_line('echo hi > $NOPE')
        self.assertIn('ambiguous redirect', result.output)
        self.assertEqual(result.exit_status, 1)

    def test_heredoc(self):
        self.assertEqual(self.run_line('cat << EOF\nhello $USER\nEOF').output, 'hello user\n')

    def test_heredoc_quoted_delimiter(self):
        self.assertEqual(self.run_line("cat << 'EOF'\n$USER\nEOF").output, '$USER\n')

    def test_here_string(self):
        self.assertEqual(self.run_line('cat <<< "a b"').output, 'a b\n')

    def test_heredoc_then_next_command(self):
        result = self.run_line('cat << EOF\nbody\nEOF\necho after')
        self.assertEqual(result.output, 'body\nafter\n')


class TestExpansion(EngineTestCase):

    def test_variables_refresh_between_pipelines(self):
        self.assertEqual(self.run_line('export A=1; echo $A').output, '1\n')

    def test_bare_assignment(self):
        self.assertEqual(self.run_line('X=5; echo $X').output, '5\n')
        self.assertEqual(self.state.env['X'], '5')

    def test_prefix_assignment_is_temporary(self):
        result = self.run_line('FOO=tmp env | grep FOO')
        self.assertEqual(result.output, 'FOO=tmp\n')
        self.assertNotIn('FOO', self.state.env)

    def test_glob(self):
        for name in ['a.txt', 'b.txt', 'c.md']:
            self.fs.write('/home/user/' + name, '')
        self.assertEqual(self.run_line('echo *.txt').output, 'a.txt b.txt\n')
        self.assertEqual(self.run_line('echo "*.txt"').output, '*.txt\n')
        self.assertEqual(self.run_line('echo *.none').output, '*.none\n')
        self.assertEqual(self.run_line('ls *.md').output, 'c.md\n')

    def test_tilde_then_variable(self):
        self.assertEqual(self.run_line('echo ~/$USER').output, '/home/user/user\n')

    def test_tilde_then_glob(self):
        self.fs.write('/home/user/x1.txt', 'one\n')
        self.fs.write('/home/user/x2.txt', 'two\n')
        self.fs.create_directory('/tmp')
        self.run_line('cd /tmp')
        result = self.run_line('cat ~/x*.txt')
        self.assertEqual(result.output, 'one\ntwo\n')
        self.assertEqual(result.exit_status, 0)


class TestErrors(EngineTestCase):

    def test_command_not_found(self):
        result = self.run_line('nope')
        self.assertEqual(result.output, 'nope: command not found\n')
        self.assertEqual(result.exit_status, 127)

    def test_registry_lookup_raises(self):
        with self.assertRaises(CommandNotFound) as ctx:
            registry.lookup('nope')
        self.assertEqual(ctx.exception.exit_code, 127)
        self.assertEqual(str(ctx.exception), 'nope: command not found')
        self.assertIs(registry.lookup('ls'), registry.get('dir'))

    def test_line_continues_after_failure(self):
        result = self.run_line('nope; echo after')
        self.assertEqual(result.output, 'nope: command not found\nafter\n')
        self.assertEqual(result.exit_status, 0)

    def test_builtin_error_is_caught(self):
        result = self.run_line('cd /nope')
        self.assertEqual(result.output, 'cd: /nope: No such file or directory\n')
        self.assertEqual(result.exit_status, 1)

    def test_option_error(self):
        result = self.run_line('ls -z')
        self.assertEqual(result.output, "ls: invalid option -- 'z'\n")
        self.assertEqual(result.exit_status, 2)

    def test_parse_error_runs_nothing(self):
        with self.assertRaises(ParseError):
            self.run_line('echo hi > x.txt &&')
        self.assertFalse(self.fs.exists('/home/user/x.txt'))

    def test_help_flag(self):
        output = self.run_line('ls --help').output
        self.assertTrue(output.startswith('ls - List directory contents.'))
        self.assertIn('Usage:', output)

    def test_not_reentrant(self):
        commands = registry.copy()

        def recurse(argv, stdin, fs, state):
            return self.engine.execute('true')

        commands.add(BuiltinCommand('recurse', recurse))
        self.engine = ExecutionEngine(self.fs, self.state, registry=commands)
        with self.assertRaises(RuntimeError):
            self.engine.execute('recurse')
        self.assertEqual(self.engine.execute('echo ok').output, 'ok\n')

    def test_custom_registry(self):
        commands = registry.copy()
        commands.add(BuiltinCommand('hello', lambda argv, stdin, fs, state: CommandResult('hi\n')))
        engine = ExecutionEngine(self.fs, self.state, registry=commands)
        self.assertEqual(engine.execute('hello').output, 'hi\n')
        self.assertNotIn('hello', registry)


class TestWorkingDirectory(EngineTestCase):

    def test_cwd_repaired_after_removal(self):
        result = self.run_line('mkdir -p x/y && cd x/y && rm -r /home/user/x && pwd')
        self.assertEqual(result.output, '/home/user\n')
        self.assertEqual(self.state.cwd, '/home/user')
        self.assertEqual(self.state.env['PWD'], '/home/user')

    def test_exit_stops_the_line(self):
        result = self.run_line('echo a; exit 3; echo b')
        self.assertEqual(result.output, 'a\n')
        self.assertEqual(result.exit_status, 3)
        self.assertTrue(self.state.exit_requested)
        self.assertEqual(self.run_line('echo c').output, 'c\n')
        self.assertFalse(self.state.exit_requested)


if __name__ == '__main__':
    unittest.main()
