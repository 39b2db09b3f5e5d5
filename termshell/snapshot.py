#!/usr/bin/env python3
"""
Starter filesystem used when a session is not given a snapshot.

The tree is built through FileSystem operations and exported with
``to_dict()``, the same shape any other snapshot source must produce.
"""

from typing import Any, Dict

from .filesystem import FileSystem


README = """\
Welcome to termshell!

This is an in-memory Unix-like shell. Nothing you do here touches your disk.

Try:
  ls -la
  cat notes.txt | grep shell
  mkdir -p projects/demo && cd projects/demo
  echo "hello" > hello.txt && cat hello.txt
  help
"""

BASHRC = """\
# ~/.bashrc: aliases and exports applied at session start
alias ll='ls -la'
alias la='ls -A'
alias l='ls -F'
export EDITOR=vi
"""

NOTES = """\
termshell supports pipes, redirection and && || ;
variables like $HOME and $? expand inside double quotes
single quotes keep text literal
"""


def default_snapshot(home: str = '/home/user') -> Dict[str, Any]:
    """Build the default tree with the user's home directory at ``home``."""
    fs = FileSystem()
    for directory in ('/bin', '/etc', '/tmp', '/usr/bin', '/var/log', home):
        fs.create_directory(directory, parents=True).unwrap()

    fs.write('/etc/hostname', 'termshell\n').unwrap()
    fs.write('/etc/motd', 'Type help to list the available commands.\n').unwrap()
    fs.write('/var/log/system.log', 'boot: ok\nfs: mounted /\nshell: ready\n').unwrap()
    fs.write(f'{home}/README.md', README).unwrap()
    fs.write(f'{home}/.bashrc', BASHRC).unwrap()
    fs.write(f'{home}/notes.txt', NOTES).unwrap()
    fs.create_directory(f'{home}/documents').unwrap()
    return fs.to_dict()
