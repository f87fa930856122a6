"""Filesystem access to the local mirror store."""

import asyncio
import logging
import os
import shutil
from pathlib import Path, PurePosixPath
from typing import List

from ..config import MIRROR_REPO_NAME
from ..errors import ReadError
from ..models import FileEntry
from .content import classify_file


class MirrorStore:
    """
    Directory holding one mirrored repository working tree.

    Paths handed out and accepted by this class are POSIX paths rooted at the
    mirror root, e.g. ``/soten/notes/today.md``. The ``lock`` serializes every
    operation that rewrites the tree (clone, pull, wipe).
    """

    def __init__(self, root: Path, repo_name: str = MIRROR_REPO_NAME):
        self.root = root
        self.repo_name = repo_name
        self.repo_dir = root / repo_name
        self.lock = asyncio.Lock()
        self.logger = logging.getLogger('soten.mirror')

    def to_mirror_path(self, file_path: Path) -> str:
        return "/" + file_path.relative_to(self.root).as_posix()

    def to_local_path(self, mirror_path: str) -> Path:
        """Resolve a mirror path inside the root, refusing anything that escapes it."""
        relative = PurePosixPath(mirror_path.lstrip("/"))
        if not relative.parts or ".." in relative.parts:
            raise ReadError(mirror_path, "path outside the mirror")
        return self.root.joinpath(*relative.parts)

    def _walk(self) -> List[str]:
        if not self.repo_dir.is_dir():
            return []

        found = []
        for current, dirs, files in os.walk(self.repo_dir):
            # Prune dot-directories (.git included) in place
            dirs[:] = sorted(d for d in dirs if not d.startswith("."))
            for name in sorted(files):
                if not name.startswith("."):
                    found.append(self.to_mirror_path(Path(current) / name))
        return found

    async def list_files(self) -> List[str]:
        """Recursively enumerate the mirrored files, skipping dot-entries."""
        filenames = await asyncio.to_thread(self._walk)
        self.logger.debug(f"Mirror holds {len(filenames)} file(s)")
        return filenames

    def _read(self, mirror_path: str) -> FileEntry:
        local_path = self.to_local_path(mirror_path)
        try:
            data = local_path.read_bytes()
        except OSError as e:
            raise ReadError(mirror_path, e.strerror or str(e))
        return classify_file(mirror_path, data)

    async def read_file(self, mirror_path: str) -> FileEntry:
        """
        Read and classify one mirrored file.

        Raises:
            ReadError: the file is missing, unreadable, or outside the mirror
        """
        return await asyncio.to_thread(self._read, mirror_path)

    def _remove_tree(self) -> None:
        if self.repo_dir.exists():
            shutil.rmtree(self.repo_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    async def wipe(self) -> None:
        """Delete the mirrored repository."""
        async with self.lock:
            await asyncio.to_thread(self._remove_tree)
        self.logger.info("Mirror wiped")
