"""
Tests for the attachment upload handshake.
"""

import json
import re

import httpx
import pytest
from conftest import FakeTransport, make_response

from arenabridge.core.config import ArenaSettings
from arenabridge.core.errors import TransportError, UploadError
from arenabridge.core.transport import BridgeResponse
from arenabridge.core.uploads import AttachmentUploader
from arenabridge.models.session import Attachment

INIT_OK = '0:{"a":"$@1"}\n1:{"success":true,"data":{"uploadUrl":"https://bucket.test/put?sig=1","key":"img-key"}}\n'
FETCH_OK = '0:{"a":"$@1"}\n1:{"success":true,"data":{"url":"https://cdn.test/img-key"}}\n'


class FakeActions:
    async def resolve(self, key):
        return {"ATTACHMENT_URL_INIT": "init-id", "ATTACHMENT_FETCH_URL": "fetch-id"}[key]


class RecordingBucket:
    """httpx handler that records PUT requests."""

    def __init__(self, status=200):
        self.status = status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, text="denied" if self.status >= 400 else "")


def _uploader(transport, bucket, settings):
    client = httpx.AsyncClient(transport=httpx.MockTransport(bucket))
    return AttachmentUploader(transport, FakeActions(), settings, http_client=client)


class TestUpload:
    """Tests for AttachmentUploader.upload()."""

    @pytest.mark.asyncio
    async def test_buffer_upload(self, settings, session):
        """Bytes are PUT to the bucket and the signed URL is returned."""
        transport = FakeTransport(make_response(200, [INIT_OK]), make_response(200, [FETCH_OK]))
        bucket = RecordingBucket()
        uploader = _uploader(transport, bucket, settings)

        url, key = await uploader.upload(session, Attachment(mime="image/png", content=b"PNGDATA"))

        assert (url, key) == ("https://cdn.test/img-key", "img-key")

        init, fetch = transport.requests
        assert init.method == "POST"
        assert init.url == "https://arena.test/?mode=direct&chat-modality=image"
        assert init.headers["next-action"] == "init-id"
        assert init.headers["accept"] == "text/x-component"
        name, mime = json.loads(init.body)
        assert re.fullmatch(r"image-[0-9a-f-]{36}\.png", name)
        assert mime == "image/png"
        assert fetch.headers["next-action"] == "fetch-id"
        assert json.loads(fetch.body) == ["img-key"]

        put = bucket.requests[0]
        assert put.method == "PUT"
        assert str(put.url) == "https://bucket.test/put?sig=1"
        assert put.headers["content-type"] == "image/png"
        assert put.content == b"PNGDATA"

    @pytest.mark.asyncio
    async def test_existing_session_uses_its_page(self, settings, session):
        session.exists = True
        transport = FakeTransport(make_response(200, [INIT_OK]), make_response(200, [FETCH_OK]))
        uploader = _uploader(transport, RecordingBucket(), settings)

        await uploader.upload(session, Attachment(mime="image/jpeg", content=b"x"))

        assert transport.requests[0].url == f"https://arena.test/c/{session.session_id}?chat-modality=image"
        assert json.loads(transport.requests[0].body)[0].endswith(".jpeg")

    @pytest.mark.asyncio
    async def test_streamed_upload_reports_progress(self, session, tmp_path):
        """Files are streamed in chunks with a progress callback per chunk."""
        path = tmp_path / "pic.png"
        path.write_bytes(b"0123456789")
        settings = ArenaSettings(base_url="https://arena.test", upload_chunk_size=4)
        transport = FakeTransport(make_response(200, [INIT_OK]), make_response(200, [FETCH_OK]))
        bucket = RecordingBucket()
        uploader = _uploader(transport, bucket, settings)
        progress = []

        await uploader.upload(
            session,
            Attachment(mime="image/png", file_path=path, size=10),
            on_progress=progress.append,
        )

        assert [p.percentage for p in progress] == [40, 80, 100]
        assert progress[-1].bytes_uploaded == 10
        assert progress[-1].total_size == 10
        assert bucket.requests[0].content == b"0123456789"
        assert bucket.requests[0].headers["content-length"] == "10"

    @pytest.mark.asyncio
    async def test_init_failure(self, settings, session):
        transport = FakeTransport(make_response(200, ['0:{"a":{"success":false}}']))
        bucket = RecordingBucket()
        uploader = _uploader(transport, bucket, settings)

        with pytest.raises(UploadError, match="Failed to get upload URL"):
            await uploader.upload(session, Attachment(mime="image/png", content=b"x"))
        assert bucket.requests == []

    @pytest.mark.asyncio
    async def test_unreadable_action_response(self, settings, session):
        transport = FakeTransport(make_response(200, ["<html>challenge</html>"]))
        uploader = _uploader(transport, RecordingBucket(), settings)

        with pytest.raises(UploadError, match="Unreadable response"):
            await uploader.upload(session, Attachment(mime="image/png", content=b"x"))

    @pytest.mark.asyncio
    async def test_action_response_interrupted(self, settings, session):
        response = BridgeResponse(status=200)
        response.feed('0:{"a":')
        response.fail(TransportError("Error from browser: network"))
        transport = FakeTransport(response)
        uploader = _uploader(transport, RecordingBucket(), settings)

        with pytest.raises(UploadError, match="Failed to read response") as exc_info:
            await uploader.upload(session, Attachment(mime="image/png", content=b"x"))
        assert isinstance(exc_info.value.original, TransportError)

    @pytest.mark.asyncio
    async def test_bucket_rejects(self, settings, session):
        transport = FakeTransport(make_response(200, [INIT_OK]))
        uploader = _uploader(transport, RecordingBucket(status=403), settings)

        with pytest.raises(UploadError, match="Status: 403"):
            await uploader.upload(session, Attachment(mime="image/png", content=b"x"))

    @pytest.mark.asyncio
    async def test_bucket_unreachable(self, settings, session):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        transport = FakeTransport(make_response(200, [INIT_OK]))
        client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        uploader = AttachmentUploader(transport, FakeActions(), settings, http_client=client)

        with pytest.raises(UploadError, match="Failed to upload to storage") as exc_info:
            await uploader.upload(session, Attachment(mime="image/png", content=b"x"))
        assert isinstance(exc_info.value.original, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_final_url_missing(self, settings, session):
        transport = FakeTransport(
            make_response(200, [INIT_OK]),
            make_response(200, ['0:{"a":{"success":true,"data":{}}}']),
        )
        uploader = _uploader(transport, RecordingBucket(), settings)

        with pytest.raises(UploadError, match="Failed to get final URL"):
            await uploader.upload(session, Attachment(mime="image/png", content=b"x"))

    @pytest.mark.asyncio
    async def test_attachment_validation(self, settings, session, tmp_path):
        uploader = _uploader(FakeTransport(), RecordingBucket(), settings)

        with pytest.raises(UploadError, match="neither"):
            await uploader.upload(session, Attachment(mime="image/png"))
        with pytest.raises(UploadError, match="size"):
            await uploader.upload(session, Attachment(mime="image/png", file_path=tmp_path / "a.png"))
        with pytest.raises(UploadError, match="mime"):
            await uploader.upload(session, Attachment(mime="", content=b"x"))
