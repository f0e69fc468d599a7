"""Tests for chunk receiving, completion detection and reassembly."""

import itertools
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from conftest import split_chunks
from coordinator.exceptions import (
    ChecksumMismatchError,
    ChunkSizeMismatchError,
    InconsistentStateError,
    InvalidIndexError,
    InvalidMetadataError,
    SessionNotFoundError,
    StorageError,
)
from coordinator.services.reassembler import Reassembler
from coordinator.services.upload_coordinator import UploadCoordinator
from coordinator.storage.blob_store import InMemoryBlobStore
from coordinator.utils import derive_session_key
from common.checksum import compute_checksum

MiB = 1024 * 1024


@pytest.mark.parametrize('order', list(itertools.permutations(range(4))))
def test_any_arrival_order_reassembles(tmp_path, order):
    """Every permutation of chunk arrival produces the original bytes."""
    coordinator = UploadCoordinator(InMemoryBlobStore(), tmp_path / 'files')
    data = os.urandom(14)
    chunks = split_chunks(data, 4)

    results = [
        coordinator.upload_chunk('doc.bin', index, chunks[index], total_chunks=4, total_size=len(data))
        for index in order
    ]

    assert [r.completed for r in results] == [False, False, False, True]
    assert (tmp_path / 'files' / 'doc.bin').read_bytes() == data


def test_duplicate_chunk_is_idempotent(coordinator):
    coordinator.begin_upload('a.bin', 3, total_size=10, chunk_size=4)

    first = coordinator.upload_chunk('a.bin', 1, b'bbbb', total_chunks=3)
    second = coordinator.upload_chunk('a.bin', 1, b'bbbb', total_chunks=3)

    assert first.duplicate is False
    assert second.duplicate is True
    assert second.received == 1
    assert coordinator.resume_info('a.bin').received_chunks == [1]


def test_single_chunk_upload(coordinator, output_dir):
    result = coordinator.upload_chunk('one.txt', 0, b'hello', total_chunks=1, total_size=5)

    assert result.completed is True
    assert (output_dir / 'one.txt').read_bytes() == b'hello'


def test_empty_file_upload(coordinator, output_dir):
    result = coordinator.upload_chunk('empty.txt', 0, b'', total_chunks=1, total_size=0)

    assert result.completed is True
    assert (output_dir / 'empty.txt').read_bytes() == b''


@pytest.mark.parametrize('total_chunks', [0, -3])
def test_non_positive_total_chunks_rejected(coordinator, total_chunks):
    with pytest.raises(InvalidMetadataError):
        coordinator.upload_chunk('a.bin', 0, b'x', total_chunks=total_chunks)

    with pytest.raises(SessionNotFoundError):
        coordinator.resume_info('a.bin')


def test_large_file_out_of_order(tmp_path, local_blobs):
    """25 MiB in 10 MiB chunks, arriving 2, 0, 1."""
    output = tmp_path / 'files'
    coordinator = UploadCoordinator(local_blobs, output)
    data = os.urandom(25 * MiB)
    chunks = split_chunks(data, 10 * MiB)
    assert [len(c) for c in chunks] == [10 * MiB, 10 * MiB, 5 * MiB]

    for index in (2, 0, 1):
        result = coordinator.upload_chunk('big.bin', index, chunks[index], total_chunks=3, total_size=len(data))

    assert result.completed is True
    assert (output / 'big.bin').read_bytes() == data
    assert local_blobs.list() == []
    assert coordinator.registry.count() == 0
    assert sorted(p.name for p in output.iterdir()) == ['big.bin']


def test_chunk_without_session_or_metadata(coordinator):
    with pytest.raises(SessionNotFoundError):
        coordinator.upload_chunk('nobody.bin', 0, b'x')


@pytest.mark.parametrize('index', [-1, 3])
def test_out_of_range_index(coordinator, index):
    coordinator.begin_upload('a.bin', 3)

    with pytest.raises(InvalidIndexError):
        coordinator.upload_chunk('a.bin', index, b'x', total_chunks=3)

    assert coordinator.chunks.list_indices(derive_session_key('a.bin')) == []


def test_declared_total_chunks_must_match_session(coordinator):
    coordinator.begin_upload('a.bin', 3)

    with pytest.raises(InvalidMetadataError):
        coordinator.upload_chunk('a.bin', 0, b'x', total_chunks=4)


def test_chunk_size_must_be_uniform(coordinator):
    coordinator.begin_upload('a.bin', 3, total_size=10, chunk_size=4)

    with pytest.raises(ChunkSizeMismatchError):
        coordinator.upload_chunk('a.bin', 0, b'abc', total_chunks=3)
    with pytest.raises(ChunkSizeMismatchError):
        coordinator.upload_chunk('a.bin', 2, b'abc', total_chunks=3)

    assert coordinator.resume_info('a.bin').received_chunks == []


def test_first_chunk_fixes_chunk_size(coordinator):
    coordinator.upload_chunk('a.bin', 0, b'abcd', total_chunks=3)

    with pytest.raises(ChunkSizeMismatchError):
        coordinator.upload_chunk('a.bin', 1, b'abcdef', total_chunks=3)


def test_chunk_above_limit_rejected(memory_blobs, output_dir):
    coordinator = UploadCoordinator(memory_blobs, output_dir, max_chunk_size=8)

    with pytest.raises(ChunkSizeMismatchError):
        coordinator.upload_chunk('a.bin', 0, b'x' * 16, total_chunks=2)


def test_checksum_verified(coordinator):
    coordinator.begin_upload('a.bin', 2)

    with pytest.raises(ChecksumMismatchError):
        coordinator.upload_chunk('a.bin', 0, b'data', total_chunks=2, checksum=compute_checksum(b'other'))

    result = coordinator.upload_chunk('a.bin', 0, b'data', total_chunks=2, checksum=compute_checksum(b'data'))
    assert result.duplicate is False


def test_storage_failure_leaves_registry_unchanged(coordinator):
    coordinator.begin_upload('a.bin', 2, total_size=8, chunk_size=4)

    with patch.object(coordinator.chunks, 'write_chunk', side_effect=StorageError("disk full")):
        with pytest.raises(StorageError):
            coordinator.upload_chunk('a.bin', 0, b'aaaa', total_chunks=2)

    assert coordinator.resume_info('a.bin').received_chunks == []

    retried = coordinator.upload_chunk('a.bin', 0, b'aaaa', total_chunks=2)
    assert retried.duplicate is False
    assert retried.received == 1


def test_missing_chunk_data_keeps_session(coordinator, output_dir):
    coordinator.begin_upload('a.bin', 2, total_size=8, chunk_size=4)
    coordinator.upload_chunk('a.bin', 0, b'aaaa', total_chunks=2)
    coordinator.chunks.delete_chunk(derive_session_key('a.bin'), 0)

    with pytest.raises(InconsistentStateError):
        coordinator.upload_chunk('a.bin', 1, b'bbbb', total_chunks=2)

    assert coordinator.resume_info('a.bin').received_chunks == [0, 1]
    assert not (output_dir / 'a.bin').exists()
    assert list(output_dir.iterdir()) == []


def test_chunk_after_completion_is_duplicate(coordinator, output_dir):
    coordinator.upload_chunk('a.bin', 0, b'hi', total_chunks=1, total_size=2)

    late = coordinator.upload_chunk('a.bin', 0, b'hi', total_chunks=1, total_size=2)

    assert late.duplicate is True
    assert late.completed is True
    assert coordinator.blobs.list() == []


def test_begin_after_completion_starts_new_upload(coordinator, output_dir):
    coordinator.upload_chunk('a.bin', 0, b'v1', total_chunks=1, total_size=2)
    coordinator.begin_upload('a.bin', 1, total_size=2)

    result = coordinator.upload_chunk('a.bin', 0, b'v2', total_chunks=1, total_size=2)

    assert result.duplicate is False
    assert (output_dir / 'a.bin').read_bytes() == b'v2'


def test_first_chunk_after_completion_starts_new_upload(coordinator, output_dir):
    coordinator.upload_chunk('a.bin', 0, b'v1', total_chunks=1, total_size=2)

    result = coordinator.upload_chunk('a.bin', 0, b'v2', total_chunks=1, total_size=2)

    assert result.duplicate is False
    assert result.completed is True
    assert (output_dir / 'a.bin').read_bytes() == b'v2'


def test_new_multi_chunk_upload_after_completion(coordinator, output_dir):
    for index, chunk in enumerate([b'aaaa', b'bb']):
        coordinator.upload_chunk('a.bin', index, chunk, total_chunks=2, total_size=6)

    first = coordinator.upload_chunk('a.bin', 0, b'cccc', total_chunks=2, total_size=6)

    assert first.duplicate is False
    assert first.completed is False
    assert coordinator.resume_info('a.bin').received_chunks == [0]

    coordinator.upload_chunk('a.bin', 1, b'dd', total_chunks=2, total_size=6)
    assert (output_dir / 'a.bin').read_bytes() == b'ccccdd'


def test_late_chunk_of_multi_chunk_upload_is_duplicate(coordinator, output_dir):
    data = b'abcdefghij'
    for index, chunk in enumerate(split_chunks(data, 4)):
        coordinator.upload_chunk('a.bin', index, chunk, total_chunks=3, total_size=len(data))

    late = coordinator.upload_chunk('a.bin', 1, b'efgh', total_chunks=3, total_size=len(data))

    assert late.duplicate is True
    assert late.completed is True
    assert coordinator.registry.count() == 0
    assert coordinator.blobs.list() == []
    assert (output_dir / 'a.bin').read_bytes() == data


def test_changed_chunk_after_completion_needs_metadata(coordinator, output_dir):
    coordinator.upload_chunk('a.bin', 0, b'hi', total_chunks=1, total_size=2)

    with pytest.raises(SessionNotFoundError):
        coordinator.upload_chunk('a.bin', 0, b'yo')

    assert (output_dir / 'a.bin').read_bytes() == b'hi'


def test_last_chunk_checked_when_chunk_size_is_learned_later(coordinator):
    coordinator.upload_chunk('b.bin', 1, b'0123456789', total_chunks=2)

    with pytest.raises(ChunkSizeMismatchError):
        coordinator.upload_chunk('b.bin', 0, b'abcd', total_chunks=2)

    assert coordinator.resume_info('b.bin').received_chunks == [1]
    assert coordinator.chunks.list_indices(derive_session_key('b.bin')) == [1]


@pytest.mark.parametrize('last', [b'x' * 5, b'x' * 6])
def test_last_chunk_first_must_fit_declared_size(coordinator, last):
    with pytest.raises(ChunkSizeMismatchError):
        coordinator.upload_chunk('a.bin', 2, last, total_chunks=3, total_size=10)

    assert coordinator.resume_info('a.bin').received_chunks == []


def test_last_chunk_first_fixes_chunk_size(coordinator):
    coordinator.upload_chunk('a.bin', 2, b'yy', total_chunks=3, total_size=10)

    assert coordinator.registry.get(derive_session_key('a.bin')).chunk_size == 4
    with pytest.raises(ChunkSizeMismatchError):
        coordinator.upload_chunk('a.bin', 0, b'abc', total_chunks=3)


def test_storage_failure_does_not_learn_chunk_size(coordinator):
    coordinator.begin_upload('a.bin', 3)
    key = derive_session_key('a.bin')

    with patch.object(coordinator.chunks, 'write_chunk', side_effect=StorageError("disk full")):
        with pytest.raises(StorageError):
            coordinator.upload_chunk('a.bin', 0, b'aaaa', total_chunks=3)

    assert coordinator.registry.get(key).chunk_size is None

    result = coordinator.upload_chunk('a.bin', 0, b'bb', total_chunks=3)
    assert result.duplicate is False
    assert coordinator.registry.get(key).chunk_size == 2


def test_session_locks_released(coordinator):
    coordinator.upload_chunk('a.bin', 0, b'aaaa', total_chunks=2, total_size=6)
    assert coordinator.registry.lock_count() == 0

    coordinator.upload_chunk('a.bin', 1, b'bb', total_chunks=2, total_size=6)
    assert coordinator.registry.lock_count() == 0


def _count_combines(monkeypatch):
    calls = []
    original = Reassembler._combine

    def counting(self, session):
        calls.append(session.session_key)
        return original(self, session)

    monkeypatch.setattr(Reassembler, '_combine', counting)
    return calls


def _race(coordinator, uploads):
    barrier = threading.Barrier(len(uploads))

    def send(args):
        barrier.wait()
        return coordinator.upload_chunk(*args)

    with ThreadPoolExecutor(max_workers=len(uploads)) as pool:
        return list(pool.map(send, uploads))


@pytest.mark.parametrize('attempt', range(10))
def test_racing_final_chunks_reassemble_once(tmp_path, monkeypatch, attempt):
    calls = _count_combines(monkeypatch)
    output = tmp_path / 'files'
    coordinator = UploadCoordinator(InMemoryBlobStore(), output)
    data = os.urandom(12)
    chunks = split_chunks(data, 4)
    coordinator.upload_chunk('race.bin', 0, chunks[0], 3, len(data))

    results = _race(coordinator, [
        ('race.bin', 1, chunks[1], 3, len(data)),
        ('race.bin', 2, chunks[2], 3, len(data)),
    ])

    assert len(calls) == 1
    assert sum(r.completed for r in results) == 1
    assert (output / 'race.bin').read_bytes() == data


@pytest.mark.parametrize('attempt', range(10))
def test_racing_duplicate_last_chunk_reassembles_once(tmp_path, monkeypatch, attempt):
    calls = _count_combines(monkeypatch)
    output = tmp_path / 'files'
    coordinator = UploadCoordinator(InMemoryBlobStore(), output)
    data = os.urandom(12)
    chunks = split_chunks(data, 4)
    coordinator.upload_chunk('race.bin', 0, chunks[0], 3, len(data))
    coordinator.upload_chunk('race.bin', 1, chunks[1], 3, len(data))

    results = _race(coordinator, [('race.bin', 2, chunks[2], 3, len(data))] * 2)

    assert len(calls) == 1
    assert sorted(r.duplicate for r in results) == [False, True]
    assert (output / 'race.bin').read_bytes() == data
    assert coordinator.blobs.list() == []
