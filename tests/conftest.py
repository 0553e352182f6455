"""
Shared pytest fixtures. No test touches the network.
"""

import os

import pytest

from tubelift.auth.token_store import FileTokenStore
from tubelift.upload.media import MediaSource
from tubelift.upload.progress import ProgressRecorder
from tubelift.upload.retry_policy import RetryPolicy
from tubelift.upload.session import ResumableUpload

from tests.fakes import FakeResumableServer, UPLOAD_URL


@pytest.fixture
def server():
    return FakeResumableServer()


@pytest.fixture
def recorder():
    return ProgressRecorder()


@pytest.fixture
def sleeps():
    """Collects requested backoff delays instead of sleeping"""
    return []


@pytest.fixture
def policy():
    return RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=64.0, jitter=0.0)


@pytest.fixture
def make_upload(server, recorder, sleeps, policy):
    def _make(payload=b"", chunk_size=4, media=None, **kwargs):
        kwargs.setdefault("retry_policy", policy)
        return ResumableUpload(
            server,
            UPLOAD_URL,
            media or MediaSource.from_bytes(payload),
            "video/mp4",
            chunk_size=chunk_size,
            listener=recorder,
            sleep=sleeps.append,
            **kwargs,
        )
    return _make


@pytest.fixture
def token_store(tmp_path):
    return FileTokenStore(os.path.join(str(tmp_path), "credentials"))
