import pytest
import requests_mock

from gcs_uploader.client import UploadClient
from gcs_uploader.config import UploaderConfig
from gcs_uploader.const import MINIMUM_CHUNK_SIZE
from gcs_uploader.models import ObjectDestination
from tests.unit.helpers.fake_gcs import BASE_URL, FakeClientSession, FakeGcsServer

TEST_BUCKET = "test-bucket"


@pytest.fixture
def server() -> FakeGcsServer:
    """In-memory resumable store."""
    return FakeGcsServer()


@pytest.fixture
def mock_store(server: FakeGcsServer):
    """Route every ``requests`` call to the fake store."""
    with requests_mock.Mocker() as m:
        m.add_matcher(server.requests_matcher)
        yield m


@pytest.fixture
def config() -> UploaderConfig:
    """Configuration pointing at the fake store, with no backoff delay."""
    return UploaderConfig(
        api_url=BASE_URL,
        access_token="test-token",
        default_chunk_size=MINIMUM_CHUNK_SIZE,
        max_retries=3,
        backoff_base_seconds=0,
    )


@pytest.fixture
def client(config: UploaderConfig, mock_store) -> UploadClient:
    """Blocking client talking to the fake store."""
    with UploadClient(config) as upload_client:
        yield upload_client


@pytest.fixture
def async_client(config: UploaderConfig, server: FakeGcsServer) -> UploadClient:
    """Asynchronous client talking to the fake store."""
    return UploadClient(config, client_session=FakeClientSession(server))


@pytest.fixture
def destination() -> ObjectDestination:
    return ObjectDestination(bucket=TEST_BUCKET, name="videos/trace.mp4")

