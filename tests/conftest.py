"""
Shared fixtures.

Every test gets fresh, isolated instances: in-memory snapshot backends,
an in-memory SQLite attachment repository and a fast crypto service.
"""

from io import BytesIO

import pytest
from PIL import Image

from luxeledger.services.attachments import AttachmentRepository, AttachmentStore
from luxeledger.services.crypto import CryptoService
from luxeledger.services.storage import (
    EntityStore,
    InMemoryDurableBackend,
    InMemoryMirror,
)


# Low iteration count keeps the KDF fast in tests
TEST_KDF_ITERATIONS = 1_000


def make_image_bytes(width: int, height: int, fmt: str = "PNG", mode: str = "RGB") -> bytes:
    color = (200, 30, 30, 255) if mode == "RGBA" else (200, 30, 30)
    img = Image.new(mode, (width, height), color)
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def durable():
    return InMemoryDurableBackend()


@pytest.fixture
def mirror():
    return InMemoryMirror()


@pytest.fixture
def store(durable, mirror):
    return EntityStore(durable, mirror)


@pytest.fixture
def repository():
    repo = AttachmentRepository(":memory:")
    yield repo
    repo.close()


@pytest.fixture
def attachments(repository):
    return AttachmentStore(repository)


@pytest.fixture
def crypto():
    return CryptoService(iterations=TEST_KDF_ITERATIONS)


@pytest.fixture
def png_bytes():
    return make_image_bytes(1000, 500)


@pytest.fixture
def make_image():
    return make_image_bytes
