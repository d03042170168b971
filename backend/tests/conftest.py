"""
Shared pytest fixtures.

Environment variables are set before the compressor package is imported, so
uploads and the history database live in a throwaway directory.
"""

import os
import sys
import tempfile
import threading
import time
from io import BytesIO
from pathlib import Path

_TMP_DIR = Path(tempfile.mkdtemp(prefix="compressor-tests-"))
os.environ["UPLOAD_DIR"] = str(_TMP_DIR / "uploads")
os.environ["UPLOAD_STAGING"] = "disk"
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'history.db'}"
os.environ["CONVERSION_TIMEOUT_SECONDS"] = "0"
os.environ["EXPOSE_ERROR_DETAILS"] = "true"

backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from compressor.conversion import BatchOrchestrator, ConversionWorker
from compressor.conversion.models import CodecError, FormatTag
from compressor.main import create_app
from compressor.store import ResultStore


# ============================================
# Image helpers
# ============================================

def make_image_bytes(fmt: str = "PNG", size=(8, 8), mode: str = "RGB", color=(200, 30, 30)) -> bytes:
    """Encode a solid-colour image in memory."""
    if mode == "RGBA" and len(color) == 3:
        color = (*color, 128)
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


# ============================================
# Fake codecs
# ============================================

class EchoCodec:
    """Returns b"<fmt>:" + input. Inputs starting with b"bad" fail; b"sleep:<s>" sleeps first."""

    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def encode(self, data: bytes, fmt: FormatTag, quality: int) -> bytes:
        with self._lock:
            self.calls.append((data, fmt, quality))
        if data.startswith(b"bad"):
            raise CodecError("cannot identify image file")
        if data.startswith(b"sleep:"):
            time.sleep(float(data.split(b":", 2)[1].decode()))
        return fmt.value.encode() + b":" + data


class HangingCodec:
    """Blocks on inputs equal to b"hang" until released."""

    def __init__(self):
        self.release = threading.Event()

    def encode(self, data: bytes, fmt: FormatTag, quality: int) -> bytes:
        if data == b"hang":
            self.release.wait(10)
            raise CodecError("released")
        return b"ok:" + data


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def upload_dir():
    path = Path(os.environ["UPLOAD_DIR"])
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def staging_dir(tmp_path):
    path = tmp_path / "staging"
    path.mkdir()
    return path


@pytest.fixture
def store():
    return ResultStore()


@pytest.fixture
def echo_codec():
    return EchoCodec()


@pytest.fixture
def orchestrator(store, echo_codec):
    orch = BatchOrchestrator(store, ConversionWorker(echo_codec), max_workers=4)
    yield orch
    orch.shutdown()


@pytest.fixture
def client():
    """TestClient over a fresh app with its own result store and real Pillow codec."""
    with TestClient(create_app()) as c:
        yield c
