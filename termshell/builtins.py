#!/usr/bin/env python3
"""
Built-in commands.

Every command is a plain function ``(argv, stdin, fs, state) -> CommandResult``
registered on the module-level ``registry``. Commands only touch the
filesystem and shell state they are handed. Flag handling goes through the
per-command tables in ``options``; docstrings follow the
Usage/Options/Examples layout that ``--help`` renders.

Commands report expected failures as stderr text plus a non-zero status;
they may also raise CommandError/ResolutionError, which the engine turns
into the same thing.
"""

import dataclasses
import fnmatch
import logging
import re
from datetime import datetime
from typing import List, Optional, Tuple

from .command_parser import expand_target, split_assignment
from .errors import CommandError, FsErrorKind, OptionError, ParseError
from .filesystem import FileSystem, NodeStat, WriteMode
from .nodes import NodeKind, format_mode, mode_bits
from .options import flag_table, parse_int, parse_options
from .registry import CommandRegistry, CommandResult, lines_output
from .state import ShellState
from .tokenizer import TokenType, Tokenizer
from . import paths


logger = logging.getLogger(__name__)

registry = CommandRegistry()
command = registry.register

CLEAR_SCREEN = '\033[2J\033[H'


# Shared helpers

def _abs(state: ShellState, path: str) -> str:
    return paths.normalize(path, state.cwd, state.home)


def split_lines(text: str) -> List[str]:
    """Split text into lines; a trailing newline does not start a new line."""
    if not text:
        return []
    lines = text.split('\n')
    if lines[-1] == '':
        lines.pop()
    return lines


def _split_keepends(text: str) -> List[str]:
    return re.findall(r'[^\n]*\n|[^\n]+$', text)


def _read_sources(name: str, operands: List[str], stdin: str, fs: FileSystem,
                  state: ShellState) -> Tuple[List[Tuple[str, str]], List[str]]:
    """
    Read each operand (``-`` is stdin); stdin alone when there are none.

    Returns ([(label, text), ...], [error lines]).
    """
    if not operands:
        return [('(standard input)', stdin)], []
    sources, errors = [], []
    for operand in operands:
        if operand == '-':
            sources.append(('(standard input)', stdin))
            continue
        result = fs.read(_abs(state, operand))
        if result.ok:
            sources.append((operand, result.value))
        else:
            errors.append(f"{name}: {operand}: {result.error.message}")
    return sources, errors


def _confirm(state: ShellState, prompt: str) -> bool:
    if state.confirm is None:
        return False
    return bool(state.confirm(prompt))


def _result(lines: List[str], errors: List[str], status: Optional[int] = None) -> CommandResult:
    if status is None:
        status = 1 if errors else 0
    return CommandResult(stdout=lines_output(lines), stderr=lines_output(errors), exit_code=status)


def human_size(size: int) -> str:
    if size < 1024:
        return str(size)
    value = float(size)
    for unit in 'KMGT':
        value /= 1024
        if value < 1024 or unit == 'T':
            return f"{value:.1f}{unit}" if value < 10 else f"{value:.0f}{unit}"


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime('%b %d %H:%M')


# Navigation

CD_FLAGS = flag_table({'L': 'logical', 'P': 'physical'})


@command('cd', category='Navigation')
def cd(argv, stdin, fs, state):
    """Change the current directory.

    Usage:
        cd [DIR]

    Options:
        DIR                    Target directory (default: $HOME, '-' for previous)

    Examples:
        cd /tmp                # Go to /tmp
        cd ..                  # Go up one level
        cd -                   # Return to the previous directory
    """
    options = parse_options(argv[1:], CD_FLAGS)
    if len(options.operands) > 1:
        raise CommandError("too many arguments")

    target = options.operands[0] if options.operands else state.home
    output = ''
    if target == '-':
        if 'OLDPWD' not in state.env:
            raise CommandError("OLDPWD not set")
        target = state.env['OLDPWD']
        output = target + '\n'

    resolved = fs.stat(_abs(state, target))
    if not resolved.ok:
        raise CommandError(f"{target}: {resolved.error.message}")
    if not resolved.value.is_dir:
        raise CommandError(f"{target}: {FsErrorKind.NOT_A_DIRECTORY.message}")
    state.change_directory(resolved.value.path)
    return CommandResult(stdout=output)


@command('pwd', category='Navigation')
def pwd(argv, stdin, fs, state):
    """Print the current working directory.

    Usage:
        pwd
    """
    return CommandResult(stdout=state.cwd + '\n')


LS_FLAGS = flag_table({
    'a': 'all', 'A': 'almost-all', 'l': 'long', '1': 'one', 'r': 'reverse',
    't': 'time', 'S': 'size', 'R': 'recursive', 'h': 'human-readable',
    'd': 'directory', 'F': 'classify',
})


def _ls_sort(entries: List[NodeStat], options) -> List[NodeStat]:
    if 'time' in options:
        entries = sorted(entries, key=lambda e: e.modified_at, reverse=True)
    elif 'size' in options:
        entries = sorted(entries, key=lambda e: e.size, reverse=True)
    if 'reverse' in options:
        entries = list(reversed(entries))
    return entries


def _ls_name(entry: NodeStat, options) -> str:
    if 'classify' in options and entry.is_dir:
        return entry.name + '/'
    return entry.name


def _ls_format(entries: List[NodeStat], options, owner: str) -> List[str]:
    if 'long' not in options:
        return [_ls_name(entry, options) for entry in entries]

    sizes = [human_size(e.size) if 'human-readable' in options else str(e.size) for e in entries]
    width = max((len(s) for s in sizes), default=1)
    lines = []
    for entry, size in zip(entries, sizes):
        links = 2 if entry.is_dir else 1
        lines.append(
            f"{entry.permissions} {links:>2} {owner} {owner} {size:>{width}} "
            f"{_format_time(entry.modified_at)} {_ls_name(entry, options)}"
        )
    return lines


def _ls_directory(fs: FileSystem, stat: NodeStat, options) -> List[NodeStat]:
    show_all = 'all' in options
    listing = fs.list(stat.path, include_hidden=show_all or 'almost-all' in options)
    entries = listing.unwrap(stat.path)
    if show_all:
        parent = fs.stat(paths.dirname(stat.path)).value
        entries = [dataclasses.replace(stat, name='.'), dataclasses.replace(parent, name='..')] + entries
    return _ls_sort(entries, options)


@command('ls', 'dir', category='File Operations')
def ls(argv, stdin, fs, state):
    """List directory contents.

    Usage:
        ls [OPTIONS] [PATH...]

    Options:
        -a, --all              Include entries starting with . (and . ..)
        -A, --almost-all       Include dotfiles but not . and ..
        -l, --long             Use long listing format
        -h, --human-readable   With -l, print sizes like 1.5K
        -t, --time             Sort by modification time, newest first
        -S, --size             Sort by size, largest first
        -r, --reverse          Reverse the sort order
        -R, --recursive        List subdirectories recursively
        -d, --directory        List directories themselves, not their contents
        -F, --classify         Append / to directory names
        -1, --one              One entry per line

    Examples:
        ls                     # List current directory
        ls -la /tmp            # Long format with hidden files
        ls -lt                 # Newest first
    """
    options = parse_options(argv[1:], LS_FLAGS)
    operands = options.operands or ['.']
    owner = state.user

    files: List[NodeStat] = []
    directories: List[Tuple[str, NodeStat]] = []
    errors: List[str] = []
    for operand in operands:
        result = fs.stat(_abs(state, operand))
        if not result.ok:
            errors.append(f"ls: cannot access '{operand}': {result.error.message}")
        elif result.value.is_dir and 'directory' not in options:
            directories.append((operand, result.value))
        else:
            files.append(dataclasses.replace(result.value, name=operand))

    out: List[str] = _ls_format(_ls_sort(files, options), options, owner)
    show_headers = len(operands) > 1 or 'recursive' in options

    queue = list(directories)
    while queue:
        label, stat = queue.pop(0)
        entries = _ls_directory(fs, stat, options)
        if show_headers:
            if out:
                out.append('')
            out.append(f"{label}:")
        out.extend(_ls_format(entries, options, owner))
        if 'recursive' in options:
            subdirs = [
                (paths.join_path(label, e.name) if label != '/' else '/' + e.name, e)
                for e in entries if e.is_dir and e.name not in ('.', '..')
            ]
            queue = subdirs + queue

    return _result(out, errors, 2 if errors else 0)


# File operations

CAT_FLAGS = flag_table({'n': 'number', 'b': 'number-nonblank', 'E': 'show-ends'})


@command('cat', category='File Operations')
def cat(argv, stdin, fs, state):
    """Concatenate files and print them.

    Usage:
        cat [OPTIONS] [FILE...]

    Options:
        -n, --number           Number all output lines
        -b, --number-nonblank  Number non-empty output lines
        -E, --show-ends        Display $ at the end of each line
        FILE                   File(s) to display ('-' or none: stdin)

    Examples:
        cat file.txt           # Display a file
        cat a.txt b.txt        # Concatenate files
        echo hi | cat -n       # Number piped input
    """
    options = parse_options(argv[1:], CAT_FLAGS)
    sources, errors = _read_sources('cat', options.operands, stdin, fs, state)
    text = ''.join(content for _, content in sources)

    if options.flags:
        number = 0
        out = []
        for line in _split_keepends(text):
            body = line[:-1] if line.endswith('\n') else line
            ending = '\n' if line.endswith('\n') else ''
            if 'show-ends' in options:
                body += '$'
            if 'number-nonblank' in options and body not in ('', '$'):
                number += 1
                body = f"{number:>6}\t{body}"
            elif 'number' in options and 'number-nonblank' not in options:
                number += 1
                body = f"{number:>6}\t{body}"
            out.append(body + ending)
        text = ''.join(out)

    return CommandResult(stdout=text, stderr=lines_output(errors), exit_code=1 if errors else 0)


TOUCH_FLAGS = flag_table({'c': 'no-create'})


@command('touch', category='File Operations')
def touch(argv, stdin, fs, state):
    """Create empty files or update their timestamps.

    Usage:
        touch [OPTIONS] FILE...

    Options:
        -c, --no-create        Do not create missing files

    Examples:
        touch notes.txt        # Create an empty file
        touch a b c            # Create several files
    """
    options = parse_options(argv[1:], TOUCH_FLAGS)
    if not options.operands:
        raise CommandError("missing file operand")

    errors = []
    for operand in options.operands:
        path = _abs(state, operand)
        if 'no-create' in options and not fs.exists(path):
            continue
        result = fs.create_file(path, exist_ok=True)
        if not result.ok:
            errors.append(f"touch: cannot touch '{operand}': {result.error.message}")
    return _result([], errors)


MKDIR_FLAGS = flag_table({'p': 'parents', 'v': 'verbose'})


@command('mkdir', category='File Operations')
def mkdir(argv, stdin, fs, state):
    """Create directories.

    Usage:
        mkdir [OPTIONS] DIRECTORY...

    Options:
        -p, --parents          Create parent directories as needed, no error if existing
        -v, --verbose          Print a message for each created directory

    Examples:
        mkdir projects         # Create a directory
        mkdir -p a/b/c         # Create nested directories
    """
    options = parse_options(argv[1:], MKDIR_FLAGS)
    if not options.operands:
        raise CommandError("missing operand")

    out, errors = [], []
    for operand in options.operands:
        path = _abs(state, operand)
        existed = fs.exists(path)
        result = fs.create_directory(path, parents='parents' in options)
        if not result.ok:
            errors.append(f"mkdir: cannot create directory '{operand}': {result.error.message}")
        elif 'verbose' in options and not existed:
            out.append(f"mkdir: created directory '{operand}'")
    return _result(out, errors)


RMDIR_FLAGS = flag_table({'v': 'verbose'})


@command('rmdir', category='File Operations')
def rmdir(argv, stdin, fs, state):
    """Remove empty directories.

    Usage:
        rmdir [OPTIONS] DIRECTORY...

    Options:
        -v, --verbose          Print a message for each removed directory

    Examples:
        rmdir old              # Remove an empty directory
    """
    options = parse_options(argv[1:], RMDIR_FLAGS)
    if not options.operands:
        raise CommandError("missing operand")

    out, errors = [], []
    for operand in options.operands:
        path = _abs(state, operand)
        stat = fs.stat(path)
        if stat.ok and not stat.value.is_dir:
            errors.append(f"rmdir: failed to remove '{operand}': {FsErrorKind.NOT_A_DIRECTORY.message}")
            continue
        result = fs.remove(path, recursive=False)
        if not result.ok:
            errors.append(f"rmdir: failed to remove '{operand}': {result.error.message}")
        elif 'verbose' in options:
            out.append(f"rmdir: removing directory, '{operand}'")
    return _result(out, errors)


RM_FLAGS = flag_table({
    'r': 'recursive', 'R': 'recursive', 'f': 'force', 'i': 'interactive',
    'v': 'verbose', 'd': 'dir',
})


@command('rm', category='File Operations')
def rm(argv, stdin, fs, state):
    """Remove files or directories.

    Usage:
        rm [OPTIONS] FILE...

    Options:
        -r, -R, --recursive    Remove directories and their contents
        -f, --force            Ignore missing files, never prompt
        -i, --interactive      Prompt before every removal
        -d, --dir              Remove empty directories
        -v, --verbose          Explain what is being done

    Examples:
        rm file.txt            # Remove a file
        rm -r build            # Remove a directory tree
        rm -f maybe.txt        # No error if missing
    """
    options = parse_options(argv[1:], RM_FLAGS)
    force = 'force' in options
    if not options.operands:
        if force:
            return CommandResult()
        raise CommandError("missing operand")

    out, errors = [], []
    for operand in options.operands:
        path = _abs(state, operand)
        if paths.basename(operand.rstrip('/')) in ('.', '..'):
            errors.append(f"rm: refusing to remove '.' or '..' directory: skipping '{operand}'")
            continue
        if path == '/':
            errors.append("rm: it is dangerous to operate recursively on '/'")
            continue

        stat = fs.stat(path)
        if not stat.ok:
            if not force:
                errors.append(f"rm: cannot remove '{operand}': {stat.error.message}")
            continue
        is_dir = stat.value.is_dir
        if is_dir and 'recursive' not in options and 'dir' not in options:
            errors.append(f"rm: cannot remove '{operand}': {FsErrorKind.IS_A_DIRECTORY.message}")
            continue
        if 'interactive' in options and not force:
            kind = 'directory' if is_dir else 'regular file'
            if not _confirm(state, f"rm: remove {kind} '{operand}'?"):
                continue

        result = fs.remove(path, recursive='recursive' in options, force=force)
        if not result.ok:
            errors.append(f"rm: cannot remove '{operand}': {result.error.message}")
        elif 'verbose' in options:
            out.append(f"removed {'directory ' if is_dir else ''}'{operand}'")
    return _result(out, errors)


def _transfer_targets(name: str, operands: List[str], fs: FileSystem,
                      state: ShellState) -> List[Tuple[str, str, str]]:
    """Work out (source operand, source path, destination path) triples for cp/mv."""
    if not operands:
        raise CommandError("missing file operand")
    if len(operands) == 1:
        raise CommandError(f"missing destination file operand after '{operands[0]}'")

    *sources, destination = operands
    dest_path = _abs(state, destination)
    dest_is_dir = fs.is_dir(dest_path)
    if len(sources) > 1 and not dest_is_dir:
        raise CommandError(f"target '{destination}' is not a directory")

    triples = []
    for source in sources:
        source_path = _abs(state, source)
        if dest_is_dir:
            target = paths.join_path(dest_path, paths.basename(source_path))
        else:
            target = dest_path
        triples.append((source, source_path, target))
    return triples


CP_FLAGS = flag_table({
    'r': 'recursive', 'R': 'recursive', 'f': 'force', 'i': 'interactive',
    'n': 'no-clobber', 'v': 'verbose',
})


@command('cp', category='File Operations')
def cp(argv, stdin, fs, state):
    """Copy files and directories.

    Usage:
        cp [OPTIONS] SOURCE... DEST

    Options:
        -r, -R, --recursive    Copy directories recursively
        -f, --force            Overwrite existing files without asking
        -i, --interactive      Prompt before overwriting
        -n, --no-clobber       Never overwrite existing files
        -v, --verbose          Explain what is being done

    Examples:
        cp a.txt b.txt         # Copy a file
        cp -r src backup       # Copy a directory tree
        cp *.txt docs/         # Copy into a directory
    """
    options = parse_options(argv[1:], CP_FLAGS)
    out, errors = [], []
    for source, source_path, target in _transfer_targets('cp', options.operands, fs, state):
        stat = fs.stat(source_path)
        if not stat.ok:
            errors.append(f"cp: cannot stat '{source}': {stat.error.message}")
            continue
        if stat.value.is_dir and 'recursive' not in options:
            errors.append(f"cp: -r not specified; omitting directory '{source}'")
            continue
        if fs.exists(target) and 'no-clobber' in options:
            continue

        interactive = 'interactive' in options and 'force' not in options
        result = fs.copy(
            source_path, target,
            recursive='recursive' in options,
            overwrite=not interactive,
            confirm=(lambda p: _confirm(state, f"cp: overwrite '{p}'?")) if interactive else None,
        )
        if result.ok:
            if 'verbose' in options:
                out.append(f"'{source}' -> '{target}'")
        elif result.error is FsErrorKind.INVALID_ARGUMENT:
            if target == source_path:
                errors.append(f"cp: '{source}' and '{target}' are the same file")
            else:
                errors.append(f"cp: cannot copy a directory, '{source}', into itself, '{target}'")
        elif result.error is FsErrorKind.ALREADY_EXISTS and interactive:
            continue
        else:
            errors.append(f"cp: cannot create '{target}': {result.error.message}")
    return _result(out, errors)


MV_FLAGS = flag_table({'f': 'force', 'i': 'interactive', 'n': 'no-clobber', 'v': 'verbose'})


@command('mv', category='File Operations')
def mv(argv, stdin, fs, state):
    """Move or rename files and directories.

    Usage:
        mv [OPTIONS] SOURCE... DEST

    Options:
        -f, --force            Overwrite without asking
        -i, --interactive      Prompt before overwriting
        -n, --no-clobber       Never overwrite existing files
        -v, --verbose          Explain what is being done

    Examples:
        mv old.txt new.txt     # Rename
        mv a.txt b.txt docs/   # Move into a directory
    """
    options = parse_options(argv[1:], MV_FLAGS)
    out, errors = [], []
    for source, source_path, target in _transfer_targets('mv', options.operands, fs, state):
        if not fs.exists(source_path):
            errors.append(f"mv: cannot stat '{source}': {FsErrorKind.NOT_FOUND.message}")
            continue
        if source_path == target:
            errors.append(f"mv: '{source}' and '{target}' are the same file")
            continue
        if fs.exists(target) and 'no-clobber' in options:
            continue

        interactive = 'interactive' in options and 'force' not in options
        result = fs.move(
            source_path, target,
            overwrite=not interactive,
            confirm=(lambda p: _confirm(state, f"mv: overwrite '{p}'?")) if interactive else None,
        )
        if result.ok:
            if 'verbose' in options:
                out.append(f"renamed '{source}' -> '{target}'")
        elif result.error is FsErrorKind.INVALID_ARGUMENT:
            errors.append(f"mv: cannot move '{source}' to a subdirectory of itself, '{target}'")
        elif result.error is FsErrorKind.ALREADY_EXISTS and interactive:
            continue
        else:
            errors.append(f"mv: cannot move '{source}' to '{target}': {result.error.message}")
    return _result(out, errors)


CHMOD_FLAGS = flag_table({'R': 'recursive', 'v': 'verbose'})


def parse_symbolic_mode(mode_str: str, current: int) -> int:
    """Apply a symbolic mode like ``+x``, ``u+w,go-r`` or ``a=r`` to ``current``."""
    result = current
    for part in mode_str.split(','):
        match = re.fullmatch(r'([ugoa]*)([+\-=])([rwx]*)', part.strip())
        if not match:
            raise ValueError(mode_str)
        who, op, perms = match.groups()
        who = who or 'a'

        mask = 0
        if 'u' in who or 'a' in who:
            mask |= 0o700
        if 'g' in who or 'a' in who:
            mask |= 0o070
        if 'o' in who or 'a' in who:
            mask |= 0o007

        bits = 0
        for p in perms:
            bits |= {'r': 0o444, 'w': 0o222, 'x': 0o111}[p]
        bits &= mask

        if op == '+':
            result |= bits
        elif op == '-':
            result &= ~bits
        else:
            result = (result & ~mask) | bits
    return result


@command('chmod', category='File Operations')
def chmod(argv, stdin, fs, state):
    """Change file mode bits.

    Usage:
        chmod [OPTIONS] MODE FILE...

    Options:
        -R, --recursive        Change files and directories recursively
        -v, --verbose          Report every change
        MODE                   Octal (644, 755) or symbolic (+x, u+w, go-r)

    Examples:
        chmod 755 script.sh    # rwxr-xr-x
        chmod +x script.sh     # Add execute for everyone
        chmod -R u+w docs      # Recursive symbolic change
    """
    # '-x' style modes look like flags, so pull the mode out first
    args = argv[1:]
    flags = [a for a in args if re.fullmatch(r'-[Rv]+', a)]
    rest = [a for a in args if a not in flags]
    options = parse_options(flags, CHMOD_FLAGS)
    if len(rest) < 2:
        raise CommandError(f"missing operand after '{rest[0]}'" if rest else "missing operand")
    mode, *targets = rest

    out, errors = [], []
    for operand in targets:
        path = _abs(state, operand)
        if not fs.exists(path):
            errors.append(f"chmod: cannot access '{operand}': {FsErrorKind.NOT_FOUND.message}")
            continue
        nodes = list(fs.walk(path)) if 'recursive' in options else [(path, fs.get(path))]
        for node_path, node in nodes:
            current = mode_bits(node.permissions)
            try:
                bits = int(mode, 8) if re.fullmatch(r'[0-7]{1,4}', mode) else parse_symbolic_mode(mode, current)
            except ValueError:
                raise CommandError(f"invalid mode: '{mode}'")
            new_permissions = format_mode(node.kind, bits & 0o777)
            fs.set_permissions(node_path, new_permissions).unwrap(operand)
            if 'verbose' in options:
                out.append(f"mode of '{node_path}' changed to {bits & 0o777:04o} ({new_permissions[1:]})")
    return _result(out, errors)


@command('stat', category='File Operations')
def stat(argv, stdin, fs, state):
    """Display file or directory status.

    Usage:
        stat FILE...

    Examples:
        stat notes.txt
    """
    operands = parse_options(argv[1:], {}).operands
    if not operands:
        raise CommandError("missing operand")

    out, errors = [], []
    for operand in operands:
        result = fs.stat(_abs(state, operand))
        if not result.ok:
            errors.append(f"stat: cannot stat '{operand}': {result.error.message}")
            continue
        info = result.value
        kind = 'directory' if info.is_dir else ('regular file' if info.size else 'regular empty file')
        out.extend([
            f"  File: {operand}",
            f"  Size: {info.size:<10} Type: {kind}",
            f"Access: ({mode_bits(info.permissions):04o}/{info.permissions})  Uid: {state.user}",
            f"Modify: {datetime.fromtimestamp(info.modified_at).isoformat(sep=' ')}",
            f" Birth: {datetime.fromtimestamp(info.created_at).isoformat(sep=' ')}",
        ])
    return _result(out, errors)


FIND_TESTS = ('-name', '-iname', '-type', '-maxdepth', '-mindepth')


@command('find', category='File Operations')
def find(argv, stdin, fs, state):
    """Search for files in a directory hierarchy.

    Usage:
        find [PATH...] [-name PATTERN] [-iname PATTERN] [-type f|d] [-maxdepth N] [-mindepth N]

    Examples:
        find . -name "*.txt"   # All .txt files below here
        find /etc -type d      # Directories only
    """
    args = argv[1:]
    starts = []
    while args and not args[0].startswith('-'):
        starts.append(args.pop(0))
    starts = starts or ['.']

    tests = {}
    while args:
        test = args.pop(0)
        if test not in FIND_TESTS:
            raise CommandError(f"unknown predicate `{test}'")
        if not args:
            raise CommandError(f"missing argument to `{test}'")
        tests[test] = args.pop(0)

    if tests.get('-type', 'f') not in ('f', 'd'):
        raise CommandError(f"Unknown argument to -type: {tests['-type']}")
    maxdepth = parse_int(tests['-maxdepth'], 'levels') if '-maxdepth' in tests else None
    mindepth = parse_int(tests['-mindepth'], 'levels') if '-mindepth' in tests else 0

    out, errors = [], []
    for start in starts:
        start_path = _abs(state, start)
        if not fs.exists(start_path):
            errors.append(f"find: '{start}': {FsErrorKind.NOT_FOUND.message}")
            continue
        for path, node in fs.walk(start_path):
            suffix = path[len(start_path):].lstrip('/') if start_path != '/' else path.lstrip('/')
            depth = len(paths.split_path(suffix))
            if maxdepth is not None and depth > maxdepth:
                continue
            if depth < mindepth:
                continue
            name = node.name if path != '/' else '/'
            if '-name' in tests and not fnmatch.fnmatchcase(name, tests['-name']):
                continue
            if '-iname' in tests and not fnmatch.fnmatchcase(name.lower(), tests['-iname'].lower()):
                continue
            if '-type' in tests and (tests['-type'] == 'd') != node.is_dir():
                continue
            if not suffix:
                out.append(start)
            else:
                out.append(start.rstrip('/') + '/' + suffix if start != '/' else '/' + suffix)
    return _result(out, errors)


TEE_FLAGS = flag_table({'a': 'append'})


@command('tee', category='Text Processing')
def tee(argv, stdin, fs, state):
    """Copy standard input to files and to standard output.

    Usage:
        tee [OPTIONS] [FILE...]

    Options:
        -a, --append           Append to files instead of overwriting

    Examples:
        ls | tee listing.txt   # Save and show a listing
    """
    options = parse_options(argv[1:], TEE_FLAGS)
    mode = WriteMode.APPEND if 'append' in options else WriteMode.TRUNCATE
    errors = []
    for operand in options.operands:
        result = fs.write(_abs(state, operand), stdin, mode)
        if not result.ok:
            errors.append(f"tee: {operand}: {result.error.message}")
    return CommandResult(stdout=stdin, stderr=lines_output(errors), exit_code=1 if errors else 0)


# Text processing

ECHO_ESCAPES = {
    'n': '\n', 't': '\t', '\\': '\\', 'a': '\a', 'b': '\b',
    'r': '\r', 'v': '\v', 'f': '\f', 'e': '\x1b',
}


def interpret_escapes(text: str) -> Tuple[str, bool]:
    """Expand backslash escapes. Returns (text, stop) where stop means ``\\c`` was seen."""
    out = []
    i = 0
    while i < len(text):
        char = text[i]
        if char == '\\' and i + 1 < len(text):
            following = text[i + 1]
            if following in ECHO_ESCAPES:
                out.append(ECHO_ESCAPES[following])
                i += 2
                continue
            if following == 'c':
                return ''.join(out), True
            if following == '0':
                digits = re.match(r'[0-7]{0,3}', text[i + 2:]).group()
                out.append(chr(int(digits or '0', 8)))
                i += 2 + len(digits)
                continue
        out.append(char)
        i += 1
    return ''.join(out), False


@command('echo', category='Text Processing', help_flag=False)
def echo(argv, stdin, fs, state):
    """Display a line of text.

    Usage:
        echo [-neE] [STRING...]

    Options:
        -n                     Do not output the trailing newline
        -e                     Interpret backslash escapes (the default)
        -E                     Do not interpret backslash escapes

    Examples:
        echo "Hello World"     # Print Hello World
        echo -n "No newline"   # Print without newline
        echo "a\\nb"            # Two lines
    """
    args = argv[1:]
    newline = True
    escapes = True
    while args and re.fullmatch(r'-[neE]+', args[0]):
        for flag in args.pop(0)[1:]:
            if flag == 'n':
                newline = False
            elif flag == 'e':
                escapes = True
            else:
                escapes = False

    text = ' '.join(args)
    if escapes:
        text, stop = interpret_escapes(text)
        if stop:
            newline = False
    return CommandResult(stdout=text + ('\n' if newline else ''))


GREP_FLAGS = flag_table({
    'i': 'ignore-case', 'v': 'invert-match', 'n': 'line-number', 'c': 'count',
    'l': 'files-with-matches', 'E': 'extended-regexp', 'F': 'fixed-strings',
    'w': 'word-regexp', 'x': 'line-regexp', 'q': 'quiet', 's': 'no-messages',
    'H': 'with-filename', 'h': 'no-filename', 'e': 'regexp',
}, values={'regexp'})


@command('grep', category='Text Processing')
def grep(argv, stdin, fs, state):
    """Print lines that match a pattern.

    Usage:
        grep [OPTIONS] PATTERN [FILE...]

    Options:
        -i, --ignore-case      Ignore case distinctions
        -v, --invert-match     Select non-matching lines
        -n, --line-number      Prefix each line with its line number
        -c, --count            Print only a count of matching lines
        -l, --files-with-matches  Print only names of files with matches
        -w, --word-regexp      Match whole words only
        -x, --line-regexp      Match whole lines only
        -F, --fixed-strings    PATTERN is a literal string
        -E, --extended-regexp  PATTERN is an extended regular expression
        -e, --regexp PATTERN   Use PATTERN (may start with -)
        -q, --quiet            No output, exit status only
        -H / -h                Always / never prefix file names

    Examples:
        grep error log.txt     # Lines containing "error"
        grep -i "cat|dog" pets # Alternation, case-insensitive
        ls | grep -v .txt      # Entries not matching .txt
    """
    options = parse_options(argv[1:], GREP_FLAGS)
    operands = list(options.operands)
    if 'regexp' in options:
        pattern = options.get('regexp')
    elif operands:
        pattern = operands.pop(0)
    else:
        raise OptionError("usage: grep [OPTION]... PATTERNS [FILE]...")

    if 'fixed-strings' in options:
        pattern = re.escape(pattern)
    if 'word-regexp' in options:
        pattern = rf'\b(?:{pattern})\b'
    if 'line-regexp' in options:
        pattern = rf'^(?:{pattern})$'
    try:
        regex = re.compile(pattern, re.IGNORECASE if 'ignore-case' in options else 0)
    except re.error as e:
        raise CommandError(f"invalid regular expression: {e}", exit_code=2)

    sources, errors = _read_sources('grep', operands, stdin, fs, state)
    if 'no-messages' in options:
        errors = []
    show_names = (len(operands) > 1 or 'with-filename' in options) and 'no-filename' not in options
    invert = 'invert-match' in options

    out = []
    matched_any = False
    for label, text in sources:
        count = 0
        for number, line in enumerate(split_lines(text), start=1):
            if (regex.search(line) is not None) == invert:
                continue
            count += 1
            if 'count' in options or 'files-with-matches' in options or 'quiet' in options:
                continue
            prefix = f"{label}:" if show_names else ''
            if 'line-number' in options:
                prefix += f"{number}:"
            out.append(prefix + line)
        matched_any = matched_any or count > 0
        if 'files-with-matches' in options:
            if count:
                out.append(label)
        elif 'count' in options:
            out.append(f"{label}:{count}" if show_names else str(count))

    if 'quiet' in options:
        return CommandResult(exit_code=0 if matched_any else (2 if errors else 1))
    if errors:
        return _result(out, errors, 2)
    return _result(out, [], 0 if matched_any else 1)


WC_FLAGS = flag_table({'l': 'lines', 'w': 'words', 'c': 'bytes', 'm': 'chars'})


def _wc_counts(text: str, options) -> List[int]:
    selected = [f for f in ('lines', 'words', 'chars', 'bytes') if f in options]
    if not selected:
        selected = ['lines', 'words', 'bytes']
    counts = []
    for what in selected:
        if what == 'lines':
            counts.append(text.count('\n') + (1 if text and not text.endswith('\n') else 0))
        elif what == 'words':
            counts.append(len(text.split()))
        elif what == 'chars':
            counts.append(len(text))
        else:
            counts.append(len(text.encode('utf-8')))
    return counts


@command('wc', category='Text Processing')
def wc(argv, stdin, fs, state):
    """Print line, word, and byte counts.

    Usage:
        wc [OPTIONS] [FILE...]

    Options:
        -l, --lines            Print the line count
        -w, --words            Print the word count
        -c, --bytes            Print the byte count
        -m, --chars            Print the character count

    Examples:
        wc notes.txt           # Lines, words and bytes
        ls | wc -l             # Count directory entries
    """
    options = parse_options(argv[1:], WC_FLAGS)
    sources, errors = _read_sources('wc', options.operands, stdin, fs, state)

    rows = [(_wc_counts(text, options), label if options.operands else None) for label, text in sources]
    if len(rows) > 1:
        totals = [sum(column) for column in zip(*(counts for counts, _ in rows))]
        rows.append((totals, 'total'))

    width = max((len(str(n)) for counts, _ in rows for n in counts), default=1)
    out = []
    for counts, label in rows:
        if len(counts) == 1 and label is None:
            line = str(counts[0])
        else:
            line = ' '.join(str(n).rjust(width) for n in counts)
        if label is not None:
            line += f" {label}"
        out.append(line)
    return _result(out, errors)


SORT_FLAGS = flag_table({
    'r': 'reverse', 'n': 'numeric-sort', 'u': 'unique', 'f': 'ignore-case',
})
_LEADING_NUMBER = re.compile(r'^\s*([-+]?\d+(?:\.\d*)?|[-+]?\.\d+)')


def _numeric_key(line: str):
    match = _LEADING_NUMBER.match(line)
    return (float(match.group(1)) if match else 0.0, line)


@command('sort', category='Text Processing')
def sort(argv, stdin, fs, state):
    """Sort lines of text.

    Usage:
        sort [OPTIONS] [FILE...]

    Options:
        -r, --reverse          Reverse the result
        -n, --numeric-sort     Compare by leading numeric value
        -u, --unique           Output only the first of equal lines
        -f, --ignore-case      Fold lower case to upper case

    Examples:
        sort names.txt         # Alphabetical
        sort -n -r sizes       # Largest number first
        cat a b | sort -u      # Merge and deduplicate
    """
    options = parse_options(argv[1:], SORT_FLAGS)
    sources, errors = _read_sources('sort', options.operands, stdin, fs, state)
    if errors:
        return _result([], errors, 2)

    lines = [line for _, text in sources for line in split_lines(text)]
    if 'numeric-sort' in options:
        key = _numeric_key
    elif 'ignore-case' in options:
        key = str.upper
    else:
        key = None
    lines.sort(key=key, reverse='reverse' in options)

    if 'unique' in options:
        seen = set()
        unique_lines = []
        for line in lines:
            marker = key(line) if key else line
            if key is _numeric_key:
                marker = marker[0]
            if marker not in seen:
                seen.add(marker)
                unique_lines.append(line)
        lines = unique_lines
    return _result(lines, [])


UNIQ_FLAGS = flag_table({'c': 'count', 'd': 'repeated', 'u': 'unique', 'i': 'ignore-case'})


@command('uniq', category='Text Processing')
def uniq(argv, stdin, fs, state):
    """Report or omit repeated adjacent lines.

    Usage:
        uniq [OPTIONS] [INPUT [OUTPUT]]

    Options:
        -c, --count            Prefix lines by the number of occurrences
        -d, --repeated         Only print duplicated lines
        -u, --unique           Only print lines that are not repeated
        -i, --ignore-case      Ignore case when comparing

    Examples:
        sort words | uniq      # Remove duplicates
        sort words | uniq -c   # Count occurrences
    """
    options = parse_options(argv[1:], UNIQ_FLAGS)
    if len(options.operands) > 2:
        raise CommandError(f"extra operand '{options.operands[2]}'")
    sources, errors = _read_sources('uniq', options.operands[:1], stdin, fs, state)
    if errors:
        return _result([], errors)

    fold = str.lower if 'ignore-case' in options else (lambda s: s)
    groups: List[List] = []
    for line in split_lines(sources[0][1]):
        if groups and fold(groups[-1][0]) == fold(line):
            groups[-1][1] += 1
        else:
            groups.append([line, 1])

    out = []
    for line, count in groups:
        if 'repeated' in options and count < 2:
            continue
        if 'unique' in options and count > 1:
            continue
        out.append(f"{count:>7} {line}" if 'count' in options else line)

    if len(options.operands) == 2:
        fs.write(_abs(state, options.operands[1]), lines_output(out)).unwrap(options.operands[1])
        return CommandResult()
    return _result(out, [])


HEAD_FLAGS = flag_table({'n': 'lines', 'c': 'bytes', 'q': 'quiet', 'v': 'verbose'},
                        values={'lines', 'bytes'})


def _head_tail(name: str, argv, stdin, fs, state, select):
    options = parse_options(argv[1:], HEAD_FLAGS, numeric='lines')
    sources, errors = _read_sources(name, options.operands, stdin, fs, state)
    count_spec = str(options.get('bytes', options.get('lines', '10')))
    headers = (len(sources) > 1 or 'verbose' in options) and 'quiet' not in options

    chunks = []
    for index, (label, text) in enumerate(sources):
        if headers:
            chunks.append(('\n' if index else '') + f"==> {label} <==\n")
        if 'bytes' in options:
            data = text.encode('utf-8')
            chunks.append(bytes(select(list(data), count_spec)).decode('utf-8', errors='replace'))
        else:
            chunks.append(''.join(select(_split_keepends(text), count_spec)))
    return CommandResult(stdout=''.join(chunks), stderr=lines_output(errors), exit_code=1 if errors else 0)


def _select_head(items: list, spec: str) -> list:
    # A negative count keeps all but the last items
    return items[:parse_int(spec, 'lines')]


def _select_tail(items: list, spec: str) -> list:
    if spec.startswith('+'):
        start = parse_int(spec[1:], 'lines')
        return items[max(start - 1, 0):]
    count = abs(parse_int(spec, 'lines'))
    return items[-count:] if count else []


@command('head', category='Text Processing')
def head(argv, stdin, fs, state):
    """Output the first part of files.

    Usage:
        head [OPTIONS] [FILE...]

    Options:
        -n, --lines NUM        Print the first NUM lines (default 10); -NUM: all but the last NUM
        -c, --bytes NUM        Print the first NUM bytes
        -NUM                   Same as -n NUM

    Examples:
        head notes.txt         # First 10 lines
        head -5 log.txt        # First 5 lines
        ls | head -n 3         # First 3 entries
    """
    return _head_tail('head', argv, stdin, fs, state, _select_head)


@command('tail', category='Text Processing')
def tail(argv, stdin, fs, state):
    """Output the last part of files.

    Usage:
        tail [OPTIONS] [FILE...]

    Options:
        -n, --lines NUM        Print the last NUM lines (default 10); +NUM starts at line NUM
        -c, --bytes NUM        Print the last NUM bytes
        -NUM                   Same as -n NUM

    Examples:
        tail log.txt           # Last 10 lines
        tail -n +2 data.csv    # Skip the header line
    """
    return _head_tail('tail', argv, stdin, fs, state, _select_tail)


# Shell state

def _quote(value: str) -> str:
    return "'" + value.replace("'", "'\\''") + "'"


@command('alias', category='Shell')
def alias(argv, stdin, fs, state):
    """Define or display aliases.

    Usage:
        alias [NAME[=VALUE] ...]

    Examples:
        alias                  # List all aliases
        alias ll='ls -la'      # Define an alias
        alias ll               # Show one alias
    """
    args = [a for a in argv[1:] if a != '-p']
    if not args:
        return _result([f"alias {name}={_quote(value)}" for name, value in sorted(state.aliases.items())], [])

    out, errors = [], []
    for arg in args:
        name, has_value, value = arg.partition('=')
        if has_value:
            try:
                state.set_alias(name, value)
            except ValueError as e:
                errors.append(f"alias: {e}")
        elif name in state.aliases:
            out.append(f"alias {name}={_quote(state.aliases[name])}")
        else:
            errors.append(f"alias: {name}: not found")
    return _result(out, errors)


@command('unalias', category='Shell')
def unalias(argv, stdin, fs, state):
    """Remove alias definitions.

    Usage:
        unalias [-a] NAME...

    Options:
        -a                     Remove all aliases

    Examples:
        unalias ll
    """
    options = parse_options(argv[1:], flag_table({'a': 'all'}))
    if 'all' in options:
        state.clear_aliases()
        return CommandResult()
    if not options.operands:
        raise CommandError("usage: unalias [-a] name [name ...]", exit_code=2)

    errors = [f"unalias: {name}: not found" for name in options.operands if not state.remove_alias(name)]
    return _result([], errors)


@command('export', category='Shell')
def export(argv, stdin, fs, state):
    """Set environment variables.

    Usage:
        export [NAME[=VALUE] ...]

    Options:
        -p                     List all exported variables

    Examples:
        export EDITOR=vi
        export PATH=$PATH:/opt/bin
    """
    args = [a for a in argv[1:] if a != '-p']
    if not args:
        lines = [f'declare -x {name}="{value}"' for name, value in sorted(state.env.items())]
        return _result(lines, [])

    errors = []
    for arg in args:
        name, has_value, value = arg.partition('=')
        try:
            if has_value:
                state.set_var(name, value)
            else:
                state.set_var(name, state.env.get(name, ''))
        except ValueError as e:
            errors.append(f"export: {e}")
    return _result([], errors)


@command('unset', category='Shell')
def unset(argv, stdin, fs, state):
    """Remove environment variables.

    Usage:
        unset NAME...

    Examples:
        unset EDITOR
    """
    errors = []
    for name in argv[1:]:
        if name == '-v':
            continue
        try:
            state.unset_var(name)
        except ValueError as e:
            errors.append(f"unset: {e}")
    return _result([], errors)


@command('env', 'printenv', category='Shell')
def env(argv, stdin, fs, state):
    """Print the environment.

    Usage:
        env
        printenv [NAME...]
    """
    names = argv[1:]
    if names:
        values = [state.env[name] for name in names if name in state.env]
        return _result(values, [], 0 if len(values) == len(names) else 1)
    return _result([f"{name}={value}" for name, value in sorted(state.env.items())], [])


def apply_rc(text: str, state: ShellState) -> Tuple[int, int, List[str]]:
    """
    Apply the ``alias`` and ``export`` lines of an rc file.

    Other lines are ignored. Returns (aliases applied, exports applied,
    problems found).
    """
    tokenizer = Tokenizer()
    aliases = exports = 0
    problems = []
    for number, line in enumerate(text.split('\n'), start=1):
        stripped = line.strip()
        if not stripped.startswith(('alias ', 'export ')):
            continue
        try:
            tokens = tokenizer.tokenize(stripped)
        except ParseError as e:
            problems.append(f"line {number}: {e}")
            continue
        words = []
        for token in tokens:
            if token.type is not TokenType.WORD:
                break
            words.append(token.word)

        keyword = words[0].text
        for word in words[1:]:
            try:
                if keyword == 'alias':
                    name, has_value, value = word.text.partition('=')
                    if has_value:
                        state.set_alias(name, value)
                        aliases += 1
                else:
                    assignment = split_assignment(word)
                    if assignment is not None:
                        name, value_word = assignment
                        state.set_var(name, expand_target(value_word, state))
                        exports += 1
            except ValueError as e:
                problems.append(f"line {number}: {e}")
    return aliases, exports, problems


@command('source', '.', category='Shell')
def source(argv, stdin, fs, state):
    """Apply alias and export lines from a file.

    Usage:
        source FILE

    Examples:
        source ~/.bashrc       # Reload aliases and exports
    """
    if len(argv) < 2:
        raise CommandError("filename argument required", exit_code=2)
    content = fs.read(_abs(state, argv[1])).unwrap(argv[1])
    aliases, exports, problems = apply_rc(content, state)
    errors = [f"{argv[0]}: {argv[1]}: {problem}" for problem in problems]
    message = f"Applied {aliases} alias(es) and {exports} export(s) from {argv[1]}"
    return _result([message], errors)


@command('whoami', category='System')
def whoami(argv, stdin, fs, state):
    """Print the current user name."""
    return CommandResult(stdout=state.user + '\n')


@command('true', category='Shell')
def true(argv, stdin, fs, state):
    """Do nothing, successfully."""
    return CommandResult()


@command('false', category='Shell')
def false(argv, stdin, fs, state):
    """Do nothing, unsuccessfully."""
    return CommandResult(exit_code=1)


@command('clear', category='System')
def clear(argv, stdin, fs, state):
    """Clear the terminal screen."""
    return CommandResult(stdout=CLEAR_SCREEN)


@command('reset-fs', category='System')
def reset_fs(argv, stdin, fs, state):
    """Reset the filesystem to its initial state.

    Usage:
        reset-fs

    Examples:
        reset-fs               # Discard all changes to files
    """
    fs.reset()
    state.change_directory(state.home if fs.is_dir(state.home) else '/')
    return CommandResult(stdout="Filesystem reset to initial state\n")


@command('exit', 'logout', category='Shell')
def exit_(argv, stdin, fs, state):
    """Exit the shell.

    Usage:
        exit [STATUS]
    """
    status = state.last_exit_status
    if len(argv) > 1:
        try:
            status = int(argv[1]) & 0xFF
        except ValueError:
            raise CommandError(f"{argv[1]}: numeric argument required", exit_code=2)
    state.exit_requested = True
    return CommandResult(exit_code=status)


@command('help', category='System')
def help_(argv, stdin, fs, state):
    """Show help for built-in commands.

    Usage:
        help [COMMAND]

    Examples:
        help                   # List all commands
        help grep              # Details for grep
    """
    if len(argv) > 1:
        found = registry.get(argv[1])
        if found is None:
            raise CommandError(f"no help topics match '{argv[1]}'")
        return CommandResult(stdout=found.format_help())

    by_category = {}
    for builtin in registry.commands():
        by_category.setdefault(builtin.category, []).append(builtin)

    lines = ['termshell built-in commands:', '']
    for category in sorted(by_category):
        lines.append(f"{category}:")
        for builtin in by_category[category]:
            lines.append(f"  {builtin.name:<10} {builtin.description}")
        lines.append('')
    lines.append("Type 'help COMMAND' or 'COMMAND --help' for details.")
    return _result(lines, [])
