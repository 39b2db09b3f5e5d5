#!/usr/bin/env python3
"""
Tests for the virtual filesystem: creation, writing, removal, copy/move,
permissions, limits and snapshots.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json

import pytest

from termshell.errors import FsErrorKind, ResolutionError
from termshell.filesystem import UNLIMITED, FileSystem, Limits, WriteMode
from termshell.nodes import NodeKind, format_mode, mode_bits, normalize_permissions


@pytest.fixture
def fs():
    return FileSystem()


def count_nodes(fs):
    return len(list(fs.walk('/')))


class TestPermissionStrings:

    def test_nine_character_form(self):
        assert normalize_permissions('rwxr-xr-x', NodeKind.DIRECTORY) == 'drwxr-xr-x'
        assert normalize_permissions('rw-r--r--', NodeKind.FILE) == '-rw-r--r--'

    def test_type_character_is_corrected(self):
        assert normalize_permissions('drw-r--r--', NodeKind.FILE) == '-rw-r--r--'

    def test_invalid(self):
        with pytest.raises(ValueError):
            normalize_permissions('rwxq', NodeKind.FILE)
        with pytest.raises(ValueError):
            normalize_permissions('-rwzr-xr-x', NodeKind.FILE)

    def test_bits(self):
        assert mode_bits('-rwxr-xr-x') == 0o755
        assert mode_bits('-rw-r--r--') == 0o644
        assert format_mode(NodeKind.FILE, 0o640) == '-rw-r-----'
        assert format_mode(NodeKind.DIRECTORY, 0o700) == 'drwx------'


class TestCreateDirectory:

    def test_parents_creates_whole_chain(self, fs):
        result = fs.create_directory('/a/b/c', parents=True)
        assert result.ok
        for path in ['/a', '/a/b', '/a/b/c']:
            assert fs.is_dir(path)
        assert count_nodes(fs) == 4

    def test_parents_creates_exactly_the_missing_ones(self, fs):
        fs.create_directory('/a', parents=False)
        existing = fs.get('/a')
        fs.create_directory('/a/b/c', parents=True)
        assert fs.get('/a') is existing
        assert count_nodes(fs) == 4

    def test_parents_on_existing_directory_is_noop(self, fs):
        fs.create_directory('/a/b', parents=True)
        before = count_nodes(fs)
        assert fs.create_directory('/a/b', parents=True).ok
        assert count_nodes(fs) == before

    def test_missing_parent_without_flag(self, fs):
        result = fs.create_directory('/x/y')
        assert result.error is FsErrorKind.NOT_FOUND
        assert not fs.exists('/x')

    def test_existing_without_flag(self, fs):
        fs.create_directory('/a')
        assert fs.create_directory('/a').error is FsErrorKind.ALREADY_EXISTS

    def test_file_in_the_way_leaves_tree_untouched(self, fs):
        fs.create_directory('/a')
        fs.write('/a/file', 'x')
        before = count_nodes(fs)
        result = fs.create_directory('/a/file/sub/deep', parents=True)
        assert result.error is FsErrorKind.NOT_A_DIRECTORY
        assert result.path == '/a/file'
        assert fs.is_file('/a/file')
        assert count_nodes(fs) == before

    def test_existing_file_as_target(self, fs):
        fs.write('/f', '')
        assert fs.create_directory('/f', parents=True).error is FsErrorKind.ALREADY_EXISTS

    def test_parent_modified_time_refreshed(self, fs):
        fs.create_directory('/a')
        fs.get('/a').modified_at = 1.0
        fs.create_directory('/a/b')
        assert fs.get('/a').modified_at > 1.0

    def test_relative_path_rejected(self, fs):
        with pytest.raises(ValueError):
            fs.create_directory('a/b')


class TestReadWrite:

    def test_append_then_truncate(self, fs):
        fs.write('/f', 'x', WriteMode.APPEND)
        fs.write('/f', 'x', WriteMode.APPEND)
        assert fs.read('/f').value == 'xx'
        fs.write('/f', 'x')
        assert fs.read('/f').value == 'x'

    def test_write_creates_file(self, fs):
        result = fs.write('/new.txt', 'hello')
        assert result.ok
        assert fs.read('/new.txt').value == 'hello'

    def test_write_into_missing_directory(self, fs):
        assert fs.write('/nope/f', 'x').error is FsErrorKind.NOT_FOUND

    def test_write_to_directory(self, fs):
        fs.create_directory('/d')
        assert fs.write('/d', 'x').error is FsErrorKind.IS_A_DIRECTORY

    def test_read_errors(self, fs):
        fs.create_directory('/d')
        assert fs.read('/d').error is FsErrorKind.IS_A_DIRECTORY
        missing = fs.read('/missing')
        assert missing.error is FsErrorKind.NOT_FOUND
        assert not missing

    def test_unwrap_raises_resolution_error(self, fs):
        with pytest.raises(ResolutionError) as excinfo:
            fs.read('/missing').unwrap('missing')
        assert str(excinfo.value) == 'missing: No such file or directory'
        assert excinfo.value.kind is FsErrorKind.NOT_FOUND

    def test_create_file_existing(self, fs):
        fs.create_file('/f')
        assert fs.create_file('/f').error is FsErrorKind.ALREADY_EXISTS

    def test_create_file_exist_ok_touches(self, fs):
        fs.create_file('/f', 'keep')
        fs.get('/f').modified_at = 1.0
        assert fs.create_file('/f', exist_ok=True).ok
        assert fs.get('/f').modified_at > 1.0
        assert fs.read('/f').value == 'keep'

    def test_size_counts_utf8_bytes(self, fs):
        fs.write('/u', 'héllo')
        assert fs.stat('/u').value.size == 6

    def test_stat(self, fs):
        fs.create_directory('/d')
        fs.write('/d/f', 'abc')
        file_stat = fs.stat('/d/f').value
        assert file_stat.kind is NodeKind.FILE
        assert file_stat.permissions == '-rw-r--r--'
        assert file_stat.size == 3
        dir_stat = fs.stat('/d').value
        assert dir_stat.is_dir
        assert dir_stat.size == 4096
        assert dir_stat.child_count == 1
        assert fs.stat('/').value.name == '/'


class TestList:

    def test_sorted_and_hidden(self, fs):
        for name in ['b', 'a', '.h']:
            fs.write('/' + name, '')
        assert [e.name for e in fs.list('/').value] == ['a', 'b']
        assert [e.name for e in fs.list('/', include_hidden=True).value] == ['.h', 'a', 'b']

    def test_entry_paths(self, fs):
        fs.create_directory('/d')
        fs.write('/d/f', '')
        assert [e.path for e in fs.list('/d').value] == ['/d/f']

    def test_list_file(self, fs):
        fs.write('/f', '')
        assert fs.list('/f').error is FsErrorKind.NOT_A_DIRECTORY

    def test_walk_is_preorder_by_name(self, fs):
        fs.create_directory('/b/y', parents=True)
        fs.create_directory('/a')
        fs.write('/b/x', '')
        assert [path for path, _ in fs.walk('/')] == ['/', '/a', '/b', '/b/x', '/b/y']


class TestRemove:

    def test_remove_file(self, fs):
        fs.write('/f', '')
        assert fs.remove('/f').ok
        assert not fs.exists('/f')

    def test_non_empty_directory_needs_recursive(self, fs):
        fs.create_directory('/d')
        fs.write('/d/f', '')
        assert fs.remove('/d').error is FsErrorKind.NOT_EMPTY
        assert fs.remove('/d', force=True).error is FsErrorKind.NOT_EMPTY
        assert fs.exists('/d/f')
        assert fs.remove('/d', recursive=True).ok
        assert not fs.exists('/d')

    def test_empty_directory(self, fs):
        fs.create_directory('/d')
        assert fs.remove('/d').ok

    def test_root_cannot_be_removed(self, fs):
        assert fs.remove('/', recursive=True).error is FsErrorKind.PERMISSION_DENIED

    def test_missing(self, fs):
        assert fs.remove('/missing').error is FsErrorKind.NOT_FOUND
        assert fs.remove('/missing', force=True).ok
        assert fs.remove('/missing/deeper', force=True).ok

    def test_parent_modified_time_refreshed(self, fs):
        fs.create_directory('/d')
        fs.write('/d/f', '')
        fs.get('/d').modified_at = 1.0
        fs.remove('/d/f')
        assert fs.get('/d').modified_at > 1.0


class TestCopyMove:

    def test_copy_file(self, fs):
        fs.write('/a', 'data')
        assert fs.copy('/a', '/b').value == '/b'
        assert fs.read('/b').value == 'data'
        assert fs.read('/a').value == 'data'

    def test_copy_onto_existing(self, fs):
        fs.write('/a', 'new')
        fs.write('/b', 'old')
        assert fs.copy('/a', '/b').error is FsErrorKind.ALREADY_EXISTS
        assert fs.copy('/a', '/b', confirm=lambda path: False).error is FsErrorKind.ALREADY_EXISTS
        assert fs.read('/b').value == 'old'
        assert fs.copy('/a', '/b', confirm=lambda path: True).ok
        assert fs.read('/b').value == 'new'

    def test_copy_overwrite(self, fs):
        fs.write('/a', 'new')
        fs.write('/b', 'old')
        assert fs.copy('/a', '/b', overwrite=True).ok
        assert fs.read('/b').value == 'new'

    def test_copy_directory_needs_recursive(self, fs):
        fs.create_directory('/src')
        assert fs.copy('/src', '/dst').error is FsErrorKind.IS_A_DIRECTORY

    def test_copy_is_deep(self, fs):
        fs.create_directory('/src/sub', parents=True)
        fs.write('/src/sub/f', '1')
        assert fs.copy('/src', '/dst', recursive=True).ok
        fs.write('/dst/sub/f', '2')
        assert fs.read('/src/sub/f').value == '1'
        assert fs.read('/dst/sub/f').value == '2'

    def test_copy_into_itself(self, fs):
        fs.create_directory('/src')
        result = fs.copy('/src', '/src/inner', recursive=True)
        assert result.error is FsErrorKind.INVALID_ARGUMENT

    def test_copy_onto_itself(self, fs):
        fs.write('/a', '')
        assert fs.copy('/a', '/a', overwrite=True).error is FsErrorKind.INVALID_ARGUMENT

    def test_rename_keeps_node(self, fs):
        fs.create_directory('/d')
        fs.write('/d/old', 'x')
        node = fs.get('/d/old')
        assert fs.move('/d/old', '/d/new').ok
        assert fs.get('/d/new') is node
        assert node.name == 'new'
        assert not fs.exists('/d/old')

    def test_move_across_directories(self, fs):
        fs.create_directory('/a')
        fs.create_directory('/b')
        fs.write('/a/f', 'payload')
        created = fs.get('/a/f').created_at
        assert fs.move('/a/f', '/b/g').ok
        assert fs.read('/b/g').value == 'payload'
        assert fs.get('/b/g').created_at == created
        assert not fs.exists('/a/f')

    def test_move_directory_into_itself(self, fs):
        fs.create_directory('/d')
        assert fs.move('/d', '/d/sub').error is FsErrorKind.INVALID_ARGUMENT
        assert fs.is_dir('/d')

    def test_move_root(self, fs):
        assert fs.move('/', '/x').error is FsErrorKind.PERMISSION_DENIED

    def test_move_missing(self, fs):
        assert fs.move('/missing', '/x').error is FsErrorKind.NOT_FOUND

    def test_move_directory_onto_non_empty_directory(self, fs):
        fs.create_directory('/src/d', parents=True)
        fs.create_directory('/dst/d', parents=True)
        fs.write('/dst/d/important.txt', 'keep')
        assert fs.move('/src/d', '/dst/d', overwrite=True).error is FsErrorKind.NOT_EMPTY
        assert fs.read('/dst/d/important.txt').value == 'keep'
        assert fs.is_dir('/src/d')

    def test_copy_directory_onto_non_empty_directory(self, fs):
        fs.create_directory('/src')
        fs.create_directory('/dst')
        fs.write('/dst/f', 'keep')
        result = fs.copy('/src', '/dst', recursive=True, overwrite=True)
        assert result.error is FsErrorKind.NOT_EMPTY
        assert fs.read('/dst/f').value == 'keep'

    def test_move_directory_onto_empty_directory(self, fs):
        fs.create_directory('/src')
        fs.write('/src/f', 'x')
        fs.create_directory('/dst')
        assert fs.move('/src', '/dst', overwrite=True).ok
        assert fs.read('/dst/f').value == 'x'
        assert not fs.exists('/src')


class TestPermissions:

    def test_read_only_file(self, fs):
        fs.write('/f', 'x')
        assert fs.set_permissions('/f', 'r--r--r--').ok
        assert fs.get('/f').permissions == '-r--r--r--'
        assert fs.write('/f', 'y').error is FsErrorKind.PERMISSION_DENIED
        assert fs.read('/f').value == 'x'

    def test_unreadable_file(self, fs):
        fs.write('/f', 'x')
        fs.set_permissions('/f', '-w-------')
        assert fs.read('/f').error is FsErrorKind.PERMISSION_DENIED

    def test_read_only_directory(self, fs):
        fs.create_directory('/d')
        fs.set_permissions('/d', 'r-xr-xr-x')
        assert fs.write('/d/f', 'x').error is FsErrorKind.PERMISSION_DENIED
        assert not fs.exists('/d/f')

    def test_read_only_directory_blocks_every_new_entry(self, fs):
        fs.create_directory('/d')
        fs.write('/src', 'x')
        fs.set_permissions('/d', 'r-xr-xr-x')
        assert fs.create_file('/d/f').error is FsErrorKind.PERMISSION_DENIED
        assert fs.create_directory('/d/sub').error is FsErrorKind.PERMISSION_DENIED
        assert fs.copy('/src', '/d/src').error is FsErrorKind.PERMISSION_DENIED
        assert fs.move('/src', '/d/src').error is FsErrorKind.PERMISSION_DENIED
        assert fs.get('/d').children == {}
        assert fs.exists('/src')

    def test_invalid_permission_string(self, fs):
        fs.write('/f', '')
        assert fs.set_permissions('/f', 'bogus').error is FsErrorKind.INVALID_ARGUMENT


class TestLimits:

    def test_file_size(self):
        fs = FileSystem(limits=Limits(max_file_size=4))
        assert fs.write('/f', 'hello').error is FsErrorKind.NO_SPACE
        assert fs.write('/f', 'hell').ok
        assert fs.write('/f', 'o', WriteMode.APPEND).error is FsErrorKind.NO_SPACE
        assert fs.read('/f').value == 'hell'

    def test_entries_per_directory(self):
        fs = FileSystem(limits=Limits(max_entries_per_directory=2))
        assert fs.create_file('/a').ok
        assert fs.create_file('/b').ok
        assert fs.create_file('/c').error is FsErrorKind.NO_SPACE
        assert fs.write('/a', 'still writable').ok

    def test_name_length(self):
        fs = FileSystem(limits=Limits(max_name_length=3))
        assert fs.create_file('/abcd').error is FsErrorKind.NAME_TOO_LONG
        assert fs.create_directory('/ab/cdef', parents=True).error is FsErrorKind.NAME_TOO_LONG
        assert not fs.exists('/ab')

    def test_rename_inside_full_directory(self):
        fs = FileSystem(limits=Limits(max_entries_per_directory=2))
        fs.create_file('/a')
        fs.create_file('/b')
        assert fs.move('/a', '/c').ok
        assert sorted(fs.root.children) == ['b', 'c']

    def test_move_into_full_directory(self):
        fs = FileSystem(limits=Limits(max_entries_per_directory=2))
        fs.create_directory('/d')
        fs.create_file('/d/x')
        fs.create_file('/d/z')
        fs.create_directory('/e')
        fs.create_file('/e/y')
        assert fs.move('/e/y', '/d/y').error is FsErrorKind.NO_SPACE
        assert fs.exists('/e/y')

    def test_total_size(self):
        fs = FileSystem(limits=Limits(max_total_size=10))
        assert fs.write('/a', '123456').ok
        assert fs.create_file('/b', '12345').error is FsErrorKind.NO_SPACE
        assert fs.write('/b', '1234').ok
        assert fs.total_size() == 10
        assert fs.write('/a', 'x', WriteMode.APPEND).error is FsErrorKind.NO_SPACE
        assert fs.write('/a', '12').ok
        assert fs.total_size() == 6

    def test_total_size_counts_copies(self):
        fs = FileSystem(limits=Limits(max_total_size=10))
        fs.create_directory('/d')
        fs.write('/d/f', '123456')
        assert fs.copy('/d', '/e', recursive=True).error is FsErrorKind.NO_SPACE
        assert not fs.exists('/e')
        assert fs.move('/d', '/e').ok

    def test_default_limits(self):
        limits = FileSystem().limits
        assert limits.max_file_size == 5 * 1024 * 1024
        assert limits.max_total_size == 50 * 1024 * 1024
        assert limits.max_entries_per_directory == 1000
        assert limits.max_name_length == 255

    def test_unlimited(self):
        fs = FileSystem(limits=UNLIMITED)
        assert fs.create_file('/' + 'n' * 300).ok


class TestSnapshots:

    def test_round_trip(self, fs):
        fs.create_directory('/home/user', parents=True)
        fs.write('/home/user/notes.txt', 'line one\nline two\n')
        fs.set_permissions('/home/user/notes.txt', 'rw-------')
        restored = FileSystem.from_dict(fs.to_dict())
        assert restored.to_dict() == fs.to_dict()

    def test_json_round_trip(self, fs):
        fs.create_directory('/d')
        fs.write('/d/f', 'ü')
        restored = FileSystem.from_json(fs.to_json())
        assert restored.to_dict() == fs.to_dict()
        assert json.loads(fs.to_json())['children']['d']['type'] == 'directory'

    def test_browser_snapshot_shape(self):
        data = {
            'name': '',
            'type': 'directory',
            'permissions': 'rwxr-xr-x',
            'createdAt': 1700000000000,
            'children': {
                'f': {'name': 'f', 'type': 'file', 'content': 'hi', 'permissions': 'rw-r--r--'},
            },
        }
        fs = FileSystem(data)
        assert fs.root.permissions == 'drwxr-xr-x'
        assert fs.root.created_at == 1700000000.0
        assert fs.read('/f').value == 'hi'

    def test_mismatched_child_key(self):
        data = {'name': '', 'type': 'directory',
                'children': {'a': {'name': 'b', 'type': 'file'}}}
        with pytest.raises(ValueError):
            FileSystem(data)

    def test_root_must_be_directory(self):
        with pytest.raises(ValueError):
            FileSystem({'name': '', 'type': 'file'})

    def test_reset_restores_initial_snapshot(self):
        fs = FileSystem({'name': '', 'type': 'directory',
                         'children': {'keep': {'name': 'keep', 'type': 'file', 'content': 'k'}}})
        fs.write('/scratch', 'x')
        fs.remove('/keep')
        fs.reset()
        assert fs.read('/keep').value == 'k'
        assert not fs.exists('/scratch')

    def test_load_does_not_change_reset_target(self, fs):
        other = FileSystem()
        other.write('/loaded', 'x')
        fs.load(other.to_dict())
        assert fs.exists('/loaded')
        fs.reset()
        assert not fs.exists('/loaded')
