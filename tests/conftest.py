import io
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from upload_server.config import ServerConfig
from upload_server.main import create_app
from upload_server.logger_config import setup_logger
from upload_server.services.storage import LocalStorage, MemoryStorage

MAX_UPLOAD_SIZE = 16


class StoredFiles:
    """Synchronous access to what a storage holds, for arranging and checking tests."""

    def __init__(self, storage):
        self.storage = storage

    def _local_path(self, path: str) -> Path:
        return self.storage.real_path(path)

    def write(self, path: str, data: bytes):
        if isinstance(self.storage, MemoryStorage):
            self.storage.write_file(path, data)
        else:
            local_path = self._local_path(path)
            local_path.parent.mkdir(parents=True, exist_ok=True)
            local_path.write_bytes(data)

    def read(self, path: str) -> bytes:
        if isinstance(self.storage, MemoryStorage):
            return self.storage.read_file(path)
        return self._local_path(path).read_bytes()

    def exists(self, path: str) -> bool:
        if isinstance(self.storage, MemoryStorage):
            try:
                self.storage.read_file(path)
                return True
            except FileNotFoundError:
                return False
        return self._local_path(path).is_file()

    def is_dir(self, path: str) -> bool:
        if isinstance(self.storage, MemoryStorage):
            return path.strip("/") in self.storage._dirs
        return self._local_path(path).is_dir()


@pytest.fixture(params=["memory", "local"])
def storage(request, tmp_path):
    """Each server test runs once against memory and once against a real directory."""
    if request.param == "memory":
        return MemoryStorage()
    document_root = tmp_path / "docroot"
    document_root.mkdir()
    return LocalStorage(document_root)


@pytest.fixture
def stored(storage):
    files = StoredFiles(storage)
    files.write("test.txt", b"lorem ipsum")
    files.write("foo/bar.txt", b"hello, world")
    return files


@pytest.fixture
def logger():
    return setup_logger()


@pytest.fixture
def make_client(storage, stored, logger):
    clients = []

    def _make_client(**overrides) -> TestClient:
        values = {
            "document_root": "/opt/app",
            "enable_cors": True,
            "max_upload_size": MAX_UPLOAD_SIZE,
            "shutdown_timeout": 5000,
        }
        values.update(overrides)
        app = create_app(ServerConfig(**values), storage=storage, logger=logger)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make_client

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def anonymous_form():
    """Build a multipart body whose file part has an empty filename."""

    def _build(content: bytes, boundary: str = "uploadboundary"):
        body = io.BytesIO()
        body.write(f"--{boundary}\r\n".encode())
        body.write(b'Content-Disposition: form-data; name="file"; filename=""\r\n')
        body.write(b"Content-Type: application/octet-stream\r\n\r\n")
        body.write(content)
        body.write(f"\r\n--{boundary}--\r\n".encode())
        headers = {"Content-Type": f"multipart/form-data; boundary={boundary}"}
        return body.getvalue(), headers

    return _build
