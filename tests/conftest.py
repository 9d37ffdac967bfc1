"""Shared pytest fixtures for Capture Agent tests.

This module contains common fixtures used across multiple test files:
temporary databases and content stores, a wired JobLifecycle with a pinned
clock, sample media files, an in-memory credential store and a FastAPI
test client.
"""

import struct
import tempfile
import wave
import zlib
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from keyring.errors import PasswordDeleteError

from app.config import CREDENTIAL_ENV_VAR
from app.db import init_db
from app.ingestion import AssetIngestor
from app.integrations import secrets
from app.jobs import JobRepository
from app.lifecycle import JobLifecycle, SequentialIdGenerator

# 2024-03-15T12:00:00Z
FIXED_NOW_MS = 1_710_504_000_000


class FakeClock:
    """Deterministic epoch-ms clock; advance() moves it forward."""

    def __init__(self, start_ms: int = FIXED_NOW_MS):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1) -> int:
        self.now += ms
        return self.now


def write_wav(path: Path, duration_sec: float = 1.0, sample_rate: int = 8000) -> Path:
    """Create a minimal valid mono 16-bit WAV file of silence."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(b"\x00\x00" * int(sample_rate * duration_sec))
    return path


def write_png(path: Path) -> Path:
    """Create a valid 1x1 RGB PNG file."""

    def chunk(kind: bytes, data: bytes) -> bytes:
        body = kind + data
        return struct.pack(">I", len(data)) + body + struct.pack(">I", zlib.crc32(body))

    ihdr = struct.pack(">IIBBBBB", 1, 1, 8, 2, 0, 0, 0)
    idat = zlib.compress(b"\x00\xff\x00\x00")
    payload = (
        b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IDAT", idat) + chunk(b"IEND", b"")
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
    return path


@pytest.fixture
def tmp_dir():
    """Temporary working directory, removed after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_pool(tmp_dir):
    """Create a migrated temporary database.

    Yields:
        ConnectionPool over tmp_dir/test.db
    """
    pool = init_db(tmp_dir / "test.db")
    yield pool
    pool.dispose()


@pytest.fixture
def content_root(tmp_dir):
    root = tmp_dir / "content"
    root.mkdir()
    return root


@pytest.fixture
def inputs_dir(tmp_dir):
    """Directory holding input files handed to enqueue."""
    path = tmp_dir / "inputs"
    path.mkdir()
    return path


@pytest.fixture
def sample_wav(inputs_dir):
    return write_wav(inputs_dir / "voice memo.wav")


@pytest.fixture
def sample_png(inputs_dir):
    return write_png(inputs_dir / "photo.png")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repository(temp_pool):
    return JobRepository(temp_pool)


@pytest.fixture
def ingestor(content_root):
    return AssetIngestor(content_root)


@pytest.fixture
def lifecycle(repository, ingestor, clock):
    """JobLifecycle over the temp database and content store with a pinned clock."""
    return JobLifecycle(repository, ingestor, SequentialIdGenerator(clock), clock)


@pytest.fixture
def client(lifecycle):
    """Create a FastAPI test client wired to the temporary lifecycle.

    Yields:
        tuple: (test_client, lifecycle)
    """
    from services.capture_api.main import app, override_lifecycle

    override_lifecycle(lifecycle)
    try:
        with TestClient(app) as test_client:
            yield test_client, lifecycle
    finally:
        app.dependency_overrides.clear()
        override_lifecycle(None)


@pytest.fixture
def wav_factory():
    """Callable creating WAV files: wav_factory(path, duration_sec=1.0, sample_rate=8000)."""
    return write_wav


@pytest.fixture
def png_factory():
    """Callable creating 1x1 PNG files: png_factory(path)."""
    return write_png


@pytest.fixture
def keychain(monkeypatch):
    """In-memory stand-in for the platform credential store.

    Returns the backing dict keyed by (service, entry name). The environment
    variable fallback is cleared.
    """
    store: dict[tuple[str, str], str] = {}

    def get_password(service, name):
        return store.get((service, name))

    def set_password(service, name, value):
        store[(service, name)] = value

    def delete_password(service, name):
        if (service, name) not in store:
            raise PasswordDeleteError("not found")
        del store[(service, name)]

    monkeypatch.setattr(secrets.keyring, "get_password", get_password)
    monkeypatch.setattr(secrets.keyring, "set_password", set_password)
    monkeypatch.setattr(secrets.keyring, "delete_password", delete_password)
    monkeypatch.delenv(CREDENTIAL_ENV_VAR, raising=False)
    return store
