"""
Attachment upload handshake.

1. Ask the service (server action ``ATTACHMENT_URL_INIT``) for a short-lived
   upload target in its storage bucket.
2. PUT the raw bytes to that target directly.
3. Ask the service (server action ``ATTACHMENT_FETCH_URL``) for a signed
   retrieval URL of the uploaded key.

Steps 1 and 3 run as the browser identity; step 2 goes straight to the
bucket with httpx.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Callable

import httpx

from arenabridge.core.actions import ActionResolver
from arenabridge.core.config import ArenaSettings, get_settings
from arenabridge.core.errors import DereferenceError, TransportError, UploadError
from arenabridge.core.transport import BridgeRequest, Transport
from arenabridge.models.session import Attachment, ConversationSession
from arenabridge.protocol.dereference import parse_and_dereference
from arenabridge.utils.ids import new_id
from arenabridge.utils.media import extension_for_mime

logger = logging.getLogger(__name__)

_ACTION_HEADERS = {
    "content-type": "text/plain;charset=UTF-8",
    "accept": "text/x-component",
}


@dataclass
class UploadProgress:
    """Progress of a streamed upload."""

    percentage: int
    bytes_uploaded: int
    total_size: int


ProgressCallback = Callable[[UploadProgress], None]


async def _iter_file(
    path: Path,
    total_size: int,
    chunk_size: int,
    on_progress: ProgressCallback | None,
) -> AsyncIterator[bytes]:
    """Yield a file's bytes in chunks, reporting progress as they are read."""
    uploaded = 0
    with open(path, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            uploaded += len(chunk)
            if on_progress is not None:
                percentage = round(uploaded / total_size * 100) if total_size else 100
                on_progress(UploadProgress(percentage, uploaded, total_size))
            yield chunk


class AttachmentUploader:
    """Uploads pending attachments and returns their hosted URLs."""

    def __init__(
        self,
        transport: Transport,
        actions: ActionResolver,
        settings: ArenaSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.transport = transport
        self.actions = actions
        self.settings = settings or get_settings()
        self._http = http_client

    def _action_page_url(self, session: ConversationSession) -> str:
        if session.exists:
            return self.settings.url(f"/c/{session.session_id}?chat-modality=image")
        return self.settings.url("/?mode=direct&chat-modality=image")

    async def _call_action(self, session: ConversationSession, key: str, args: list[Any]) -> Any:
        """Invoke a server action and return the ``a`` member of its decoded root."""
        headers = dict(_ACTION_HEADERS)
        headers["next-action"] = await self.actions.resolve(key)
        response = await self.transport.send(
            BridgeRequest(
                url=self._action_page_url(session),
                method="POST",
                headers=headers,
                body=json.dumps(args),
            )
        )
        try:
            text = await response.text()
        except TransportError as e:
            raise UploadError(f"Failed to read response from {key}: {e}", original=e) from e
        try:
            root = parse_and_dereference(text)
        except DereferenceError as e:
            raise UploadError(f"Unreadable response from {key}: {e}", original=e) from e
        return root.get("a") if isinstance(root, dict) else None

    async def upload(
        self,
        session: ConversationSession,
        attachment: Attachment,
        on_progress: ProgressCallback | None = None,
    ) -> tuple[str, str]:
        """
        Upload one attachment.

        Args:
            session: The session the attachment belongs to
            attachment: A pending attachment with ``content`` or ``file_path``
            on_progress: Called per chunk for streamed (file) uploads

        Returns:
            (url, key) of the hosted file

        Raises:
            UploadError: If any step of the handshake fails
        """
        if not attachment.mime:
            raise UploadError("Attachment must include a 'mime' type.")

        streamed = attachment.file_path is not None
        if streamed and attachment.size is None:
            raise UploadError("For stream uploads, attachment must include 'file_path' and 'size'.")
        if not streamed and attachment.content is None:
            raise UploadError("Attachment has neither 'content' nor 'file_path'.")

        # Step 1: upload target
        file_name = f"image-{new_id()}.{extension_for_mime(attachment.mime)}"
        upload_data = await self._call_action(
            session, "ATTACHMENT_URL_INIT", [file_name, attachment.mime]
        )
        if not isinstance(upload_data, dict) or not upload_data.get("success") or not upload_data.get("data"):
            raise UploadError("Failed to get upload URL: Invalid response from the service.")
        upload_url = upload_data["data"].get("uploadUrl")
        key = upload_data["data"].get("key")
        if not upload_url or not key:
            raise UploadError("Failed to get upload URL: response has no uploadUrl/key.")

        # Step 2: PUT to the bucket
        headers = {"Content-Type": attachment.mime}
        if streamed:
            headers["Content-Length"] = str(attachment.size)
            content: Any = _iter_file(
                attachment.file_path,
                attachment.size,
                self.settings.upload_chunk_size,
                on_progress,
            )
        else:
            content = attachment.content

        logger.info(f"Starting upload ({'streaming' if streamed else 'buffer'}) of {file_name}")
        await self._put(upload_url, headers, content)
        logger.info("Upload finished successfully")

        # Step 3: signed retrieval URL
        final_data = await self._call_action(session, "ATTACHMENT_FETCH_URL", [key])
        if (
            not isinstance(final_data, dict)
            or not final_data.get("success")
            or not isinstance(final_data.get("data"), dict)
            or not final_data["data"].get("url")
        ):
            raise UploadError("Failed to get final URL after confirming upload.")

        return final_data["data"]["url"], key

    async def _put(self, url: str, headers: dict[str, str], content: Any) -> None:
        client = self._http or httpx.AsyncClient(timeout=self.settings.upload_timeout)
        try:
            response = await client.put(url, headers=headers, content=content)
        except httpx.RequestError as e:
            raise UploadError(f"Failed to upload to storage: {e}", original=e) from e
        finally:
            if self._http is None:
                await client.aclose()

        if response.is_error:
            raise UploadError(
                f"Failed to upload to storage. Status: {response.status_code}. "
                f"Response: {response.text[:500]}"
            )
