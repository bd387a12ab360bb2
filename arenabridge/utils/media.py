"""Media utilities for attachment handling.

Builds pending attachments from files on disk and maps MIME types to the
file extensions the upload handshake expects.
"""

from __future__ import annotations

import mimetypes
from pathlib import Path

from arenabridge.models.session import Attachment

# Supported image MIME types
SUPPORTED_IMAGE_TYPES = {"image/png", "image/jpeg", "image/gif", "image/webp"}

# Files above this size are streamed from disk instead of read into memory
STREAM_THRESHOLD = 8 * 1024 * 1024

_EXTENSION_OVERRIDES = {
    "image/jpeg": "jpeg",
    "image/svg+xml": "svg",
}


def guess_mime(file_path: str | Path) -> str:
    """Guess a file's MIME type from its name, defaulting to PNG."""
    return mimetypes.guess_type(str(file_path))[0] or "image/png"


def extension_for_mime(mime: str) -> str:
    """Return the file extension used when naming an upload of this type.

    ``image/png`` -> ``png``. Parameters such as ``;charset=`` are ignored.
    """
    base = mime.split(";", 1)[0].strip().lower()
    if base in _EXTENSION_OVERRIDES:
        return _EXTENSION_OVERRIDES[base]
    if "/" in base:
        return base.split("/", 1)[1] or "bin"
    return "bin"


def is_image(mime: str | None) -> bool:
    return bool(mime) and mime.split(";", 1)[0].strip().lower() in SUPPORTED_IMAGE_TYPES


def attachment_from_path(
    file_path: str | Path,
    mime: str | None = None,
    stream: bool | None = None,
) -> Attachment:
    """Create a pending attachment for a file on disk.

    Args:
        file_path: Path to the file.
        mime: MIME type (guessed from the extension if omitted).
        stream: Stream the file during upload instead of loading it. Defaults
            to streaming files larger than ``STREAM_THRESHOLD``.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(file_path)
    if not path.is_file():
        raise FileNotFoundError(f"Attachment not found: {file_path}")
    mime = mime or guess_mime(path)
    size = path.stat().st_size
    if stream is None:
        stream = size > STREAM_THRESHOLD
    if stream:
        return Attachment(mime=mime, file_path=path, size=size)
    return Attachment(mime=mime, content=path.read_bytes())
