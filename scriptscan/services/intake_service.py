import base64
import logging
import re
from typing import Optional

from fastapi import UploadFile
from pydantic import BaseModel, ConfigDict

from scriptscan.core.config import settings
from scriptscan.core.errors import ImageTooLargeError, ReadError, UnsupportedImageError


class ImageUpload(BaseModel):
    """An image selected by the user, held in memory only."""

    model_config = ConfigDict(frozen=True)

    filename: str
    mime_type: str
    data: bytes

    def to_base64(self) -> str:
        return encode_image(self.data)

    def preview_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


def encode_image(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


def sniff_image_type(contents: bytes) -> Optional[str]:
    """Guess an image MIME type from its magic number."""
    if contents[:3] == b'\xff\xd8\xff':
        return "image/jpeg"
    if contents[:4] == b'\x89PNG':
        return "image/png"
    if contents[:6] in (b'GIF87a', b'GIF89a'):
        return "image/gif"
    if contents[:4] == b'RIFF' and contents[8:12] == b'WEBP':
        return "image/webp"
    return None


def build_upload(filename: Optional[str], content_type: Optional[str], contents: bytes) -> ImageUpload:
    if not contents:
        raise ReadError("The selected file is empty.")

    if settings.ENFORCE_UPLOAD_LIMIT and len(contents) > settings.max_upload_bytes:
        raise ImageTooLargeError(f"File too large (max {settings.MAX_UPLOAD_MB}MB).")

    mime_type = (content_type or '').split(';')[0].strip().lower()
    if not mime_type.startswith("image/"):
        sniffed = sniff_image_type(contents)
        if mime_type and mime_type != "application/octet-stream":
            sniffed = None
        if not sniffed:
            raise UnsupportedImageError("Only image files (PNG, JPG, JPEG) can be analyzed.")
        mime_type = sniffed

    safe_filename = re.sub(r'[^a-zA-Z0-9_.-]', '_', filename or "prescription")
    return ImageUpload(filename=safe_filename, mime_type=mime_type, data=contents)


def read_upload(file: UploadFile) -> ImageUpload:
    """Read a multipart upload into memory and validate it is an image.

    With the size limit enforced at most one byte past the limit is read, which
    is enough for build_upload to reject the file.
    """
    limit = settings.max_upload_bytes + 1 if settings.ENFORCE_UPLOAD_LIMIT else -1
    try:
        contents = file.file.read(limit)
    except OSError as e:
        logging.error(f"Reading upload failed: {str(e)}")
        raise ReadError("Error reading file.") from e
    return build_upload(file.filename, file.content_type, contents)
