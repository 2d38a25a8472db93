"""
Media store for uploaded meme images.

Files are validated by extension and magic bytes, then written under a
random UUID name so user-controlled names never reach the filesystem.
The stored file name doubles as the delete handle.
"""

import logging
import mimetypes
import os
import re
import uuid
from typing import Tuple

from meme_service.errors import InvalidInput

logger = logging.getLogger(__name__)

# Allowed file types with magic bytes for validation
ALLOWED_MIME_TYPES = {
    "image/jpeg": [b"\xff\xd8\xff"],
    "image/png": [b"\x89PNG\r\n\x1a\n"],
    "image/gif": [b"GIF87a", b"GIF89a"],
    "image/webp": [b"RIFF"],  # RIFF....WEBP
}

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}

STORED_FILENAME_PATTERN = re.compile(r"^[a-f0-9]{32}\.(jpg|jpeg|png|gif|webp)$")


def allowed_file(filename):
    """Check if file extension is allowed."""
    if not filename:
        return False
    return "." in filename and \
           filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def validate_file_magic(file_data, declared_mimetype):
    """
    Validate file by checking magic bytes.
    This prevents uploading malicious files disguised as images.
    """
    if declared_mimetype not in ALLOWED_MIME_TYPES:
        return False

    if declared_mimetype == "image/webp":
        return file_data[:4] == b"RIFF" and file_data[8:12] == b"WEBP"

    return any(file_data.startswith(sig) for sig in ALLOWED_MIME_TYPES[declared_mimetype])


def is_stored_filename(filename) -> bool:
    return bool(filename) and bool(STORED_FILENAME_PATTERN.match(filename))


class LocalMediaStore:
    """Stores images on local disk and hands out public URLs for them."""

    def __init__(self, upload_folder: str, public_prefix: str = "/memes/uploads",
                 max_size: int = 5 * 1024 * 1024):
        self.upload_folder = upload_folder
        self.public_prefix = public_prefix.rstrip("/")
        self.max_size = max_size

    def url_for(self, handle: str) -> str:
        return f"{self.public_prefix}/{handle}"

    def store(self, file) -> Tuple[str, str]:
        """
        Validate and save an uploaded file.

        Returns:
            (url, delete_handle)

        Raises:
            InvalidInput: the upload is missing, too large or not an image.
        """
        if not file or not file.filename:
            raise InvalidInput("Please upload an image")

        if not allowed_file(file.filename):
            raise InvalidInput("File type not allowed. Supported: JPEG, PNG, GIF, WebP")

        file.seek(0)
        file_data = file.read()
        file.seek(0)

        if len(file_data) > self.max_size:
            raise InvalidInput(f"Image size should be less than {self.max_size // (1024 * 1024)}MB")

        original_ext = file.filename.rsplit(".", 1)[1].lower()
        mime_type = mimetypes.guess_type(file.filename)[0]
        if not mime_type or mime_type not in ALLOWED_MIME_TYPES:
            raise InvalidInput("Invalid file type")

        if not validate_file_magic(file_data, mime_type):
            logger.warning(f"Magic byte validation failed for upload: {file.filename}")
            raise InvalidInput("File content does not match declared type")

        handle = f"{uuid.uuid4().hex}.{original_ext}"
        os.makedirs(self.upload_folder, exist_ok=True)
        with open(os.path.join(self.upload_folder, handle), "wb") as f:
            f.write(file_data)
        logger.info(f"File saved: {handle}")
        return self.url_for(handle), handle

    def remove(self, handle: str) -> bool:
        """Delete a stored file. Failures are logged and reported, never raised."""
        if not is_stored_filename(handle):
            logger.warning(f"Refusing to remove unexpected media handle: {handle!r}")
            return False
        try:
            os.remove(os.path.join(self.upload_folder, handle))
            return True
        except OSError as e:
            logger.warning(f"Failed to delete image file {handle}: {e}")
            return False
