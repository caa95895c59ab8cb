"""End-to-end tests of the blocking UploadClient against the fake store."""

import pytest

from gcs_uploader import (
    ConfigurationError,
    NotModified,
    ObjectDestination,
    PreconditionFailed,
    PredefinedAcl,
    UploadOptions,
    UploadStatus,
)
from gcs_uploader.const import DEFAULT_CONTENT_TYPE, MINIMUM_CHUNK_SIZE
from tests.unit.conftest import TEST_BUCKET
from tests.unit.helpers.fake_gcs import generate_data

MIN_CHUNK = UploadOptions(chunk_size=MINIMUM_CHUNK_SIZE)


def _upload(client, name="file.bin", data_len=100, options=MIN_CHUNK):
    source = generate_data(data_len)
    events = []
    result = client.upload_object(
        TEST_BUCKET,
        name,
        "application/octet-stream",
        source,
        options=options,
        progress_observer=events.append,
    )
    return result, source.getvalue(), events


def test_simple_upload(client, server):
    result, data, events = _upload(client, data_len=100)

    assert result.size == 100
    assert result.bucket == TEST_BUCKET
    assert result.name == "file.bin"
    assert len(server.chunk_requests()) == 1
    assert len(events) == 2
    assert [e.bytes_sent for e in events] == [0, 100]
    assert server.objects[(TEST_BUCKET, "file.bin")].data == data


def test_progress_notifications(client, server):
    length = MINIMUM_CHUNK_SIZE * 2 + 1
    _, _, events = _upload(client, data_len=length)

    assert len(server.chunk_requests()) == 3
    assert [e.bytes_sent for e in events] == [
        0,
        MINIMUM_CHUNK_SIZE,
        2 * MINIMUM_CHUNK_SIZE,
        length,
    ]
    assert events[0].status == UploadStatus.STARTING
    assert events[-1].status == UploadStatus.COMPLETED


def test_default_chunk_size_from_config(client, server, destination):
    client.upload(destination, generate_data(MINIMUM_CHUNK_SIZE + 1))

    assert len(server.chunk_requests()) == 2


def test_upload_with_object_resource(client, server):
    destination = ObjectDestination(
        bucket=TEST_BUCKET,
        name="report.txt",
        content_type="text/plain",
        content_disposition="attachment",
        metadata={"x": "y"},
    )

    result = client.upload(destination, generate_data(50), MIN_CHUNK)

    assert result.content_type == "text/plain"
    assert result.resource["contentDisposition"] == "attachment"
    assert result.resource["metadata"] == {"x": "y"}
    assert server.last_session.resource["contentType"] == "text/plain"


def test_upload_object_defaults_content_type(client, mock_store):
    client.upload_object(TEST_BUCKET, "untyped", None, generate_data(10))

    initiation = mock_store.request_history[0]
    assert initiation.headers["X-Upload-Content-Type"] == DEFAULT_CONTENT_TYPE


def test_authorization_header_sent(client, mock_store):
    _upload(client)

    assert all(
        request.headers["Authorization"] == "Bearer test-token"
        for request in mock_store.request_history
    )


def test_predefined_acl(client, server):
    _upload(
        client,
        options=UploadOptions(predefined_acl=PredefinedAcl.PUBLIC_READ),
    )

    assert server.last_session.params["predefinedAcl"] == "publicRead"


def test_replace_object(client, server):
    first, _, _ = _upload(client, name="replace.bin", data_len=10)
    second, data, _ = _upload(client, name="replace.bin", data_len=20)

    assert first.generation != second.generation
    assert second.size == 20
    assert server.objects[(TEST_BUCKET, "replace.bin")].data == data


class TestPreconditions:
    @pytest.fixture
    def existing(self, server):
        return server.put_object(TEST_BUCKET, "existing.bin", b"previous")

    def _upload_existing(self, client, **preconditions):
        return _upload(
            client,
            name="existing.bin",
            options=UploadOptions(**preconditions),
        )[0]

    def test_generation_match(self, client, existing):
        result = self._upload_existing(
            client, if_generation_match=existing.generation
        )
        assert result.generation != existing.generation

    def test_generation_match_failure(self, client, server, existing):
        with pytest.raises(PreconditionFailed) as exc_info:
            self._upload_existing(
                client, if_generation_match=existing.generation + 1
            )
        assert exc_info.value.status_code == 412
        assert server.chunk_requests() == []
        assert server.objects[(TEST_BUCKET, "existing.bin")].data == b"previous"

    def test_generation_match_zero_for_new_object(self, client):
        result = _upload(
            client, name="brand-new", options=UploadOptions(if_generation_match=0)
        )[0]
        assert result.size == 100

    def test_generation_match_zero_for_existing_object(self, client, existing):
        with pytest.raises(PreconditionFailed):
            self._upload_existing(client, if_generation_match=0)

    def test_generation_not_match(self, client, existing):
        result = self._upload_existing(
            client, if_generation_not_match=existing.generation + 1
        )
        assert result.size == 100

    def test_generation_not_match_failure(self, client, existing):
        with pytest.raises(NotModified) as exc_info:
            self._upload_existing(
                client, if_generation_not_match=existing.generation
            )
        assert exc_info.value.status_code == 304

    def test_metageneration_match(self, client, existing):
        result = self._upload_existing(
            client, if_metageneration_match=existing.metageneration
        )
        assert result.size == 100

    def test_metageneration_match_failure(self, client, existing):
        with pytest.raises(PreconditionFailed):
            self._upload_existing(
                client, if_metageneration_match=existing.metageneration + 1
            )

    def test_metageneration_not_match(self, client, existing):
        result = self._upload_existing(
            client, if_metageneration_not_match=existing.metageneration + 1
        )
        assert result.size == 100

    def test_metageneration_not_match_failure(self, client, existing):
        with pytest.raises(NotModified):
            self._upload_existing(
                client, if_metageneration_not_match=existing.metageneration
            )

    @pytest.mark.parametrize(
        "preconditions",
        [
            {"if_generation_match": 1, "if_generation_not_match": 2},
            {"if_metageneration_match": 1, "if_metageneration_not_match": 2},
        ],
    )
    def test_both_set_fails_before_any_request(
        self, client, server, existing, preconditions
    ):
        with pytest.raises(ConfigurationError):
            self._upload_existing(client, **preconditions)
        assert server.request_log == []


def test_invalid_chunk_size_fails_before_any_request(client, server):
    with pytest.raises(ConfigurationError):
        _upload(client, options=UploadOptions(chunk_size=1000))
    assert server.request_log == []
