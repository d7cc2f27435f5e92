"""
Pytest configuration and shared fixtures.

The test environment is set here before any settings are loaded, so the
module-level engine points at a throwaway SQLite file and S3 calls go to moto.
"""

import os
import shutil
import struct
import tempfile

import boto3
import pytest
from moto import mock_aws

# fresh database directory per test session
TEST_DB_DIR = tempfile.mkdtemp(prefix="wa_archiver_test_")
TEST_DB_PATH = os.path.join(TEST_DB_DIR, "test.db")
TEST_WEBHOOK_SECRET = "test-webhook-secret"
TEST_BUCKET = "test-archive"

os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["WEBHOOK_SECRET"] = TEST_WEBHOOK_SECRET
os.environ["AWS_S3_BUCKET_NAME"] = TEST_BUCKET
os.environ["AWS_REGION"] = "us-east-1"
os.environ["LOG_LEVEL"] = "DEBUG"
# moto never sees real credentials
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"

# Clear settings cache before any app imports to ensure test env vars are used
from wa_archiver.config import get_settings  # noqa: E402

get_settings.cache_clear()

# registers the tables on Base.metadata
from wa_archiver import models  # noqa: E402, F401
from wa_archiver.bridge import MediaDownloadRequest, UploadedMedia  # noqa: E402
from wa_archiver.exceptions import MediaFetchError  # noqa: E402
from wa_archiver.events import EventDispatcher  # noqa: E402
from wa_archiver.storage import Base, SessionLocal, engine  # noqa: E402


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    shutil.rmtree(TEST_DB_DIR, ignore_errors=True)


class FakeMessagingClient:
    """In-memory MessagingClient recording every call."""

    def __init__(self):
        self.connected = True
        self.user = "15550001111"
        self.contacts: dict[str, str] = {}
        self.groups: dict[str, str] = {}
        self.media: dict[str, bytes] = {}
        self.contact_lookups: list[str] = []
        self.group_lookups: list[str] = []
        self.downloads: list[MediaDownloadRequest] = []
        self.uploads: list[tuple[bytes, str]] = []
        self.sent: list[tuple[str, dict]] = []

    def is_connected(self) -> bool:
        return self.connected

    def own_user(self) -> str:
        return self.user

    def get_contact_name(self, jid):
        self.contact_lookups.append(str(jid))
        return self.contacts.get(str(jid))

    def get_group_name(self, jid):
        self.group_lookups.append(str(jid))
        return self.groups.get(str(jid))

    def download_media(self, request: MediaDownloadRequest) -> bytes:
        self.downloads.append(request)
        if request.url not in self.media:
            raise MediaFetchError(f"no media at {request.url}")
        return self.media[request.url]

    def upload_media(self, data: bytes, media_type: str) -> UploadedMedia:
        self.uploads.append((data, media_type))
        return UploadedMedia(
            url="https://mmg.whatsapp.net/v/t62.7118-24/uploaded.enc?ccb=11-4",
            direct_path="/v/t62.7118-24/uploaded.enc",
            media_key=b"k" * 32,
            file_sha256=b"s" * 32,
            file_enc_sha256=b"e" * 32,
            file_length=len(data),
        )

    def send_message(self, jid, payload: dict) -> None:
        self.sent.append((str(jid), payload))


@pytest.fixture
def db():
    """Fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def messaging_client() -> FakeMessagingClient:
    return FakeMessagingClient()


@pytest.fixture
def s3():
    """moto-backed S3 client with the test bucket created."""
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=TEST_BUCKET)
        yield client


@pytest.fixture
def dispatcher(db, messaging_client, s3) -> EventDispatcher:
    return EventDispatcher(
        session_factory=SessionLocal,
        client=messaging_client,
        s3=s3,
        bucket=TEST_BUCKET,
    )


def _ogg_page(payload: bytes, granule: int, seq: int, header_type: int = 0) -> bytes:
    segments = [255] * (len(payload) // 255) + [len(payload) % 255]
    header = b"OggS" + struct.pack("<BBQIIIB", 0, header_type, granule, 1234, seq, 0, len(segments))
    return header + bytes(segments) + payload


def _opus_head(pre_skip: int = 312, sample_rate: int = 48000) -> bytes:
    return b"OpusHead" + struct.pack("<BBHIhB", 1, 1, pre_skip, sample_rate, 0, 0)


@pytest.fixture
def make_ogg():
    """
    Build an Ogg/Opus byte stream.

    ``granules`` lists the granule position of each audio page, in order.
    """
    def build(granules, pre_skip=312, sample_rate=48000, with_head=True, audio_bytes=100):
        pages = []
        seq = 0
        if with_head:
            pages.append(_ogg_page(_opus_head(pre_skip, sample_rate), 0, seq, header_type=2))
            seq += 1
            pages.append(_ogg_page(b"OpusTags" + b"\x00" * 8, 0, seq))
            seq += 1
        for granule in granules:
            pages.append(_ogg_page(b"\x01" * audio_bytes, granule, seq))
            seq += 1
        return b"".join(pages)

    return build
