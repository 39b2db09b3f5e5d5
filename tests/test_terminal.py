#!/usr/bin/env python3
"""
Tests for the terminal session: line submission, prompt, rc file, state
persistence, slash commands and the command-line entry point.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
import unittest

import pytest

from termshell.snapshot import default_snapshot
from termshell.terminal import TerminalConfig, TerminalSession, main


class TestTerminalSession(unittest.TestCase):
    """Session behaviour over the default tree."""

    def setUp(self):
        self.session = TerminalSession(TerminalConfig(user='user'))

    def test_submit_line(self):
        result = self.session.submit_line('echo hi')
        self.assertEqual(result.output_text, 'hi')
        self.assertEqual(result.exit_status, 0)
        self.assertFalse(result.clear_screen)
        self.assertFalse(result.exit_requested)

    def test_blank_line(self):
        self.session.submit_line('false')
        result = self.session.submit_line('   ')
        self.assertEqual(result.output_text, '')
        self.assertEqual(result.exit_status, 1)

    def test_parse_error(self):
        result = self.session.submit_line('ls |')
        self.assertTrue(result.output_text.startswith('termshell: syntax error'))
        self.assertEqual(result.exit_status, 2)
        self.assertEqual(self.session.state.last_exit_status, 2)

    def test_line_too_long(self):
        result = self.session.submit_line('echo ' + 'x' * 1000)
        self.assertEqual(result.exit_status, 2)
        self.assertIn('too long', result.output_text)

    def test_rc_file_applied(self):
        self.assertEqual(self.session.state.aliases['ll'], 'ls -la')
        output = self.session.submit_line('ll').output_text
        self.assertIn('.bashrc', output)

    def test_rc_file_skipped(self):
        session = TerminalSession(TerminalConfig(user='user', source_rc=False))
        self.assertEqual(session.state.aliases, {})

    def test_default_tree(self):
        self.assertEqual(self.session.run_command('ls'), 'README.md\ndocuments\nnotes.txt')
        self.assertEqual(self.session.run_command('cat /etc/hostname'), 'termshell')

    def test_prompt(self):
        self.assertEqual(self.session.get_prompt(), 'user@termshell:~$ ')
        self.session.submit_line('cd documents')
        self.assertEqual(self.session.get_prompt(), 'user@termshell:~/documents$ ')
        self.session.submit_line('cd /etc')
        self.assertEqual(self.session.get_prompt(), 'user@termshell:/etc$ ')

    def test_other_user(self):
        session = TerminalSession(TerminalConfig(user='alice', hostname='box'))
        self.assertEqual(session.state.cwd, '/home/alice')
        self.assertEqual(session.run_command('whoami'), 'alice')
        self.assertEqual(session.get_prompt(), 'alice@box:~$ ')

    def test_initial_dir(self):
        session = TerminalSession(TerminalConfig(user='user', initial_dir='/tmp'))
        self.assertEqual(session.state.cwd, '/tmp')
        fallback = TerminalSession(TerminalConfig(user='user', initial_dir='/missing'))
        self.assertEqual(fallback.state.cwd, '/home/user')

    def test_execute_command_returns_none_on_exit(self):
        self.assertEqual(self.session.execute_command('echo a'), 'a')
        self.assertIsNone(self.session.execute_command('exit'))

    def test_run_script(self):
        outputs = self.session.run_script(['echo a', '# comment', '', 'echo b', 'exit', 'echo c'])
        self.assertEqual(outputs, ['a', 'b'])

    def test_slash_status(self):
        text = self.session.submit_line('/status').output_text
        self.assertIn('Working directory: /home/user', text)
        self.assertIn('User: user', text)

    def test_slash_help(self):
        self.assertIn('/save', self.session.submit_line('/help').output_text)

    def test_state_dict(self):
        data = self.session.state_dict()
        self.assertEqual(data['version'], '1.0.0')
        self.assertEqual(data['shell']['cwd'], '/home/user')
        self.assertEqual(data['filesystem']['type'], 'directory')


class TestPersistence:

    def test_save_and_load(self, tmp_path):
        path = str(tmp_path / 'state.json')
        session = TerminalSession(TerminalConfig(user='user', source_rc=False))
        session.submit_line('echo data > keep.txt')
        session.submit_line("alias x='echo x'")
        session.submit_line('cd /tmp')
        session.save_state(path)

        restored = TerminalSession(TerminalConfig(user='user', source_rc=False))
        restored.load_state(path)
        assert restored.state.cwd == '/tmp'
        assert restored.run_command('cat ~/keep.txt') == 'data'
        assert restored.run_command('x') == 'x'

    def test_reset_after_load_returns_to_initial_tree(self, tmp_path):
        path = str(tmp_path / 'state.json')
        session = TerminalSession(TerminalConfig(user='user', source_rc=False))
        session.submit_line('echo data > keep.txt')
        session.save_state(path)

        restored = TerminalSession(TerminalConfig(user='user', source_rc=False))
        restored.load_state(path)
        restored.submit_line('reset-fs')
        assert not restored.fs.exists('/home/user/keep.txt')

    def test_slash_save_and_load(self, tmp_path):
        path = str(tmp_path / 'slash.json')
        session = TerminalSession(TerminalConfig(user='user', source_rc=False))
        session.submit_line('touch marker')
        assert session.submit_line(f'/save {path}').output_text == f'Saved state to {path}'
        session.submit_line('rm marker')
        assert session.submit_line(f'/load {path}').output_text == f'Loaded state from {path}'
        assert session.fs.exists('/home/user/marker')

    def test_load_errors(self, tmp_path):
        bad = tmp_path / 'bad.json'
        bad.write_text(json.dumps(['not', 'a', 'state']))
        session = TerminalSession(TerminalConfig(user='user', source_rc=False))
        with pytest.raises(ValueError):
            session.load_state(str(bad))
        message = session.submit_line(f'/load {tmp_path / "missing.json"}').output_text
        assert message.startswith('Error loading state')


class TestMain:

    def test_command(self, capsys):
        assert main(['-c', 'echo hi', '--no-rc', '-u', 'user']) == 0
        assert capsys.readouterr().out == 'hi\n'

    def test_command_status(self, capsys):
        assert main(['-c', 'false', '--no-rc', '-u', 'user']) == 1

    def test_script_file(self, tmp_path, capsys):
        script = tmp_path / 'script.sh'
        script.write_text('echo one\ncat << EOF\ntwo\nEOF\n')
        assert main(['-f', str(script), '--no-rc', '-u', 'user']) == 0
        assert capsys.readouterr().out == 'one\ntwo\n'

    def test_snapshot_file(self, tmp_path, capsys):
        snapshot = default_snapshot('/home/user')
        snapshot['children']['srv'] = {'name': 'srv', 'type': 'directory', 'children': {}}
        path = tmp_path / 'snapshot.json'
        path.write_text(json.dumps(snapshot))
        assert main(['-c', 'ls -d /srv', '--snapshot', str(path), '--no-rc', '-u', 'user']) == 0
        assert capsys.readouterr().out == '/srv\n'

    def test_state_file(self, tmp_path, capsys):
        state = str(tmp_path / 'state.json')
        main(['-c', 'echo kept > note', '--state', state, '--no-rc', '-u', 'user'])
        capsys.readouterr()
        main(['-c', 'cat note', '--state', state, '--no-rc', '-u', 'user'])
        assert capsys.readouterr().out == 'kept\n'


if __name__ == '__main__':
    unittest.main()
