"""Tests for the session registry."""

import json

import pytest

from coordinator.exceptions import (
    InvalidIndexError,
    InvalidMetadataError,
    SessionNotFoundError,
    StorageError,
)
from coordinator.session_registry import SessionRegistry
from coordinator.utils import derive_session_key, normalize_file_name


@pytest.fixture
def registry(memory_blobs):
    return SessionRegistry(memory_blobs)


def test_begin_creates_session(registry):
    session = registry.begin('movie-abc', 'movie.mp4', 3, total_size=25)

    assert session.total_chunks == 3
    assert session.received_chunks == set()
    assert registry.exists('movie-abc')
    assert registry.get_received('movie-abc') == (3, set())


def test_begin_is_idempotent(registry):
    registry.begin('k', 'a.txt', 4)
    registry.record_chunk('k', 1)

    session = registry.begin('k', 'a.txt', 4)

    assert session.received_chunks == {1}
    assert registry.count() == 1


def test_begin_rejects_changed_chunk_count_after_chunks(registry):
    registry.begin('k', 'a.txt', 4)
    registry.record_chunk('k', 0)

    with pytest.raises(InvalidMetadataError):
        registry.begin('k', 'a.txt', 5)


def test_begin_replaces_metadata_before_chunks(registry):
    registry.begin('k', 'a.txt', 4)

    session = registry.begin('k', 'a.txt', 6)

    assert session.total_chunks == 6


@pytest.mark.parametrize('total_chunks', [0, -1, True, '3', None])
def test_begin_rejects_bad_total_chunks(registry, total_chunks):
    with pytest.raises(InvalidMetadataError):
        registry.begin('k', 'a.txt', total_chunks)

    assert not registry.exists('k')


def test_begin_rejects_inconsistent_chunk_size(registry):
    with pytest.raises(InvalidMetadataError):
        registry.begin('k', 'a.txt', 2, total_size=100, chunk_size=10)


def test_record_chunk_reports_duplicates(registry):
    registry.begin('k', 'a.txt', 3)

    assert registry.record_chunk('k', 2) is True
    assert registry.record_chunk('k', 2) is False
    assert registry.get_received('k') == (3, {2})


@pytest.mark.parametrize('index', [-1, 3, 100])
def test_record_chunk_rejects_out_of_range(registry, index):
    registry.begin('k', 'a.txt', 3)

    with pytest.raises(InvalidIndexError):
        registry.record_chunk('k', index)

    assert registry.get_received('k') == (3, set())


def test_unknown_session_raises(registry):
    with pytest.raises(SessionNotFoundError):
        registry.get('nope')
    with pytest.raises(SessionNotFoundError):
        registry.record_chunk('nope', 0)


def test_is_complete(registry):
    registry.begin('k', 'a.txt', 2)
    registry.record_chunk('k', 1)
    assert not registry.is_complete('k')

    registry.record_chunk('k', 0)
    assert registry.is_complete('k')


def test_delete_removes_snapshot(registry, memory_blobs):
    registry.begin('k', 'a.txt', 2)
    assert memory_blobs.exists(SessionRegistry.snapshot_key('k'))

    registry.delete('k')

    assert not registry.exists('k')
    assert not memory_blobs.exists(SessionRegistry.snapshot_key('k'))


def test_state_survives_restart(memory_blobs):
    registry = SessionRegistry(memory_blobs)
    registry.begin('k', 'a.txt', 5, total_size=50, chunk_size=10)
    registry.record_chunk('k', 0)
    registry.record_chunk('k', 3)

    restarted = SessionRegistry(memory_blobs)
    assert restarted.load() == 1

    session = restarted.get('k')
    assert session.file_name == 'a.txt'
    assert session.chunk_size == 10
    assert session.received_chunks == {0, 3}


def test_load_skips_corrupt_snapshot(memory_blobs):
    registry = SessionRegistry(memory_blobs)
    registry.begin('good', 'good.txt', 2)
    memory_blobs.put(SessionRegistry.snapshot_key('bad'), b'{not json')

    restarted = SessionRegistry(memory_blobs)

    assert restarted.load() == 1
    assert restarted.session_keys() == ['good']


def test_load_drops_out_of_range_indices(memory_blobs):
    snapshot = {
        'session_key': 'k',
        'file_name': 'a.txt',
        'total_chunks': 2,
        'received_chunks': [0, 1, 7],
    }
    memory_blobs.put(SessionRegistry.snapshot_key('k'), json.dumps(snapshot).encode())

    registry = SessionRegistry(memory_blobs)
    registry.load()

    assert registry.get_received('k') == (2, {0, 1})


def test_failed_snapshot_write_keeps_previous_state(registry, memory_blobs, monkeypatch):
    registry.begin('k', 'a.txt', 3)
    registry.record_chunk('k', 0)

    def failing_put(key, data):
        raise OSError("read-only file system")

    monkeypatch.setattr(memory_blobs, 'put', failing_put)

    with pytest.raises(StorageError):
        registry.record_chunk('k', 1)

    assert registry.get_received('k') == (3, {0})


def test_forget_chunks(registry):
    registry.begin('k', 'a.txt', 3)
    registry.record_chunk('k', 0)
    registry.record_chunk('k', 1)

    registry.forget_chunks('k', {1})

    assert registry.get_received('k') == (3, {0})


def test_record_chunk_stores_learned_sizes(registry, memory_blobs):
    registry.begin('k', 'a.txt', 3)

    registry.record_chunk('k', 2, size=3)
    registry.record_chunk('k', 0, size=4, chunk_size=4)
    registry.record_chunk('k', 1, size=4, chunk_size=5)

    session = registry.get('k')
    assert session.chunk_size == 4
    assert session.last_chunk_size == 3

    reloaded = SessionRegistry(memory_blobs)
    reloaded.load()
    assert reloaded.get('k').last_chunk_size == 3


def test_forgetting_last_chunk_clears_its_size(registry):
    registry.begin('k', 'a.txt', 2)
    registry.record_chunk('k', 1, size=3)

    registry.forget_chunks('k', {1})

    assert registry.get('k').last_chunk_size is None


def test_session_locks_are_evicted(registry):
    registry.begin('k', 'a.txt', 2)

    with registry.lock('k'):
        with registry.lock('k'):
            assert registry.lock_count() == 1
        assert registry.lock_count() == 1

    assert registry.lock_count() == 0
    registry.delete('k')
    assert registry.lock_count() == 0


def test_normalize_file_name_strips_directories():
    assert normalize_file_name('/tmp/uploads/report.pdf') == 'report.pdf'
    assert normalize_file_name('C:\\Users\\me\\report.pdf') == 'report.pdf'


@pytest.mark.parametrize('name', ['', '   ', '..', '/', 'dir/..'])
def test_normalize_file_name_rejects_empty(name):
    with pytest.raises(InvalidMetadataError):
        normalize_file_name(name)


def test_session_keys_differ_by_extension():
    assert derive_session_key('report.pdf') != derive_session_key('report.txt')
    assert derive_session_key('report.pdf') == derive_session_key('/elsewhere/report.pdf')
    assert derive_session_key('report.pdf').startswith('report-')
