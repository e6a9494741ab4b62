"""
Shared fixtures: SQLite database per test, fake providers and fake storage (no network).
Environment is set before any stefna import so Settings() picks it up.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["REDIS_URL"] = ""
os.environ["APP_ENV"] = "test"
os.environ["TASK_QUEUE_BACKEND"] = "inline"
os.environ["CB_ENABLED"] = "false"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["CLOUDINARY_CLOUD_NAME"] = "test-cloud"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from stefna.db.base import Base
import stefna.models  # noqa: F401
from stefna.services.errors import StorageError
from stefna.services.generation.base import GenerationProvider, ProviderOutput
from stefna.services.storage.base import Storage, StoredMedia
from stefna.services.task_queue import TaskQueue

DURABLE_HOST = "https://res.cloudinary.com/test-cloud/"


class FakeStorage(Storage):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: list[tuple] = []

    def _stored(self, resource_type, public_id):
        pid = public_id or f"generated-{len(self.uploads)}"
        return StoredMedia(url=f"{DURABLE_HOST}{resource_type}/upload/{pid}", public_id=pid, resource_type=resource_type)

    def upload_bytes(self, content, resource_type="image", public_id=None, content_type=None):
        if self.fail:
            raise StorageError("upload failed")
        self.uploads.append(("bytes", content, public_id))
        return self._stored(resource_type, public_id)

    def upload_url(self, url, resource_type="image", public_id=None):
        if self.fail:
            raise StorageError("upload failed")
        self.uploads.append(("url", url, public_id))
        return self._stored(resource_type, public_id)

    def is_durable(self, url):
        return url.startswith(DURABLE_HOST)


class FakeProvider(GenerationProvider):
    """outcome: ProviderOutput to return, an exception to raise, or a callable(request, timeout)."""

    def __init__(self, name, outcome, model="model", timeout=30.0, available=True, poll_outcome=None):
        super().__init__({"timeout": timeout}, model)
        self.name = name
        self.outcome = outcome
        self.available = available
        self.poll_outcome = poll_outcome
        self.calls: list[tuple] = []
        self.poll_calls = 0

    def is_available(self):
        return self.available

    def generate(self, request, timeout):
        self.calls.append((request, timeout))
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        if callable(self.outcome):
            return self.outcome(request, timeout)
        return self.outcome

    def poll(self, handle, deadline):
        self.poll_calls += 1
        if isinstance(self.poll_outcome, BaseException):
            raise self.poll_outcome
        return self.poll_outcome


class RecordingQueue(TaskQueue):
    def __init__(self):
        self.enqueued: list[tuple[str, str]] = []

    def enqueue(self, media_kind, job_id):
        self.enqueued.append((media_kind, job_id))


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def make_provider():
    return FakeProvider


@pytest.fixture
def recording_queue():
    return RecordingQueue()


@pytest.fixture
def inline_output():
    """Base64 JPEG-ish payload as providers return it inline."""
    return ProviderOutput(inline="aGVsbG8gd29ybGQ=")
