"""Classification of mirror files into text and image entries."""

import mimetypes
from pathlib import PurePosixPath

from ..models import FileEntry, ImageFile, TextFile

IMAGE_EXTENSIONS = frozenset({
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg",
    ".bmp", ".ico", ".avif", ".tif", ".tiff",
})

DEFAULT_MIME_TYPE = "application/octet-stream"


def is_image_path(path: str) -> bool:
    return PurePosixPath(path).suffix.lower() in IMAGE_EXTENSIONS


def mime_type_for(path: str) -> str:
    """MIME type guessed from the extension, or the generic binary type."""
    mime_type, _ = mimetypes.guess_type(PurePosixPath(path).name)
    return mime_type or DEFAULT_MIME_TYPE


def classify_file(path: str, data: bytes) -> FileEntry:
    """Wrap raw file bytes as an image or decode them as UTF-8 text."""
    if is_image_path(path):
        return ImageFile(content=data, mime_type=mime_type_for(path))
    return TextFile(content=data.decode("utf-8", errors="replace"))
