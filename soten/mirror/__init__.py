"""Local mirror of the selected repository: git sync and file access."""

from .content import classify_file, mime_type_for, is_image_path
from .store import MirrorStore
from .git import GitMirror, authenticated_url

__all__ = [
    'MirrorStore',
    'GitMirror',
    'authenticated_url',
    'classify_file',
    'mime_type_for',
    'is_image_path'
]
