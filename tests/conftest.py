"""Shared pytest fixtures for all tests."""

import os

import pytest
from pathlib import Path
from cli.config import Config
from coordinator.services.upload_coordinator import UploadCoordinator
from coordinator.storage.blob_store import InMemoryBlobStore, LocalBlobStore


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .chunkup directory
    """
    config_dir = tmp_path / '.chunkup'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance with fast retries.

    Args:
        temp_config_dir: Temporary config directory fixture

    Returns:
        Config instance with temp config file
    """
    config = Config(temp_config_dir / 'config.json')
    config.data['retry_base_delay'] = 0.0
    return config


@pytest.fixture
def memory_blobs():
    """In-memory blob store."""
    return InMemoryBlobStore()


@pytest.fixture
def local_blobs(tmp_path):
    """Blob store rooted in a temporary data directory."""
    return LocalBlobStore(tmp_path / 'data')


@pytest.fixture
def output_dir(tmp_path):
    """Directory receiving finished files."""
    return tmp_path / 'files'


@pytest.fixture
def coordinator(memory_blobs, output_dir):
    """
    Create an upload coordinator over in-memory storage.

    Returns:
        UploadCoordinator writing final files to output_dir
    """
    return UploadCoordinator(memory_blobs, output_dir)


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a sample file for testing chunked uploads.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to a 10000 byte file of random content
    """
    file_path = tmp_path / 'upload' / 'sample.bin'
    file_path.parent.mkdir()
    file_path.write_bytes(os.urandom(10000))
    return file_path


def split_chunks(data: bytes, chunk_size: int):
    """
    Split data into fixed-size chunks; empty data is one empty chunk.
    """
    if not data:
        return [b'']
    return [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)]
