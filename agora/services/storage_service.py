"""
agora.services.storage_service — Object storage for uploads
============================================================

Uploaded objects (avatars, banners, discussion images, chat files) are
stored in a local directory (``AGORA_STORAGE_DIR``, a Docker volume in
production) and served back by the API's static mount.  Object keys follow
``{user_id}/{category}/{timestamp}.{ext}``; the public URL is the configured
base URL plus the key.
"""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from pathlib import Path, PurePosixPath

from agora.constants import STORAGE_CATEGORIES
from agora.errors import InvalidInputError

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_DIR = "storage"
DEFAULT_MAX_BYTES = 25 * 1024 * 1024  # 25 MB

_SAFE_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_EXT_RE = re.compile(r"^[a-z0-9]{1,10}$")


class ObjectStorage:
    """Directory-backed object store that hands out public URLs.

    Parameters
    ----------
    root:
        Directory holding the objects.  Created on first upload.
    public_url:
        Base URL the static mount serves *root* under
        (e.g. ``http://localhost:8000/api/storage``).
    max_bytes:
        Largest accepted object.
    """

    def __init__(
        self,
        root: str | Path | None = None,
        public_url: str = "/api/storage",
        *,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> None:
        self.root = Path(root or os.getenv("AGORA_STORAGE_DIR", DEFAULT_STORAGE_DIR))
        self.public_url = public_url.rstrip("/")
        self.max_bytes = max_bytes
        self._lock = threading.Lock()

    # -------------------------------------------------------------------
    # Keys and URLs
    # -------------------------------------------------------------------
    @staticmethod
    def extension_of(filename: str) -> str:
        ext = PurePosixPath(filename or "").suffix.lower().lstrip(".")
        return ext if _EXT_RE.match(ext) else "bin"

    def url_for(self, key: str) -> str:
        return f"{self.public_url}/{key}"

    def key_for(self, url: str | None) -> str | None:
        """The object key behind *url*, or ``None`` if it is not one of ours."""
        prefix = self.public_url + "/"
        if not url or not url.startswith(prefix):
            return None
        key = url[len(prefix):].split("?", 1)[0]
        parts = PurePosixPath(key).parts
        if not parts or any(p in ("..", ".") or p.startswith("/") for p in parts):
            return None
        return key

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise InvalidInputError(f"Object key escapes storage root: {key!r}")
        return path

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------
    def upload(
        self,
        user_id: str,
        category: str,
        filename: str,
        content: bytes,
        content_type: str | None = None,
    ) -> str:
        """Validate and persist *content*; return its public URL.

        Raises
        ------
        InvalidInputError
            Unknown category, unsafe user id, empty or oversized content.
        """
        if category not in STORAGE_CATEGORIES:
            raise InvalidInputError(
                f"Unknown storage category: {category!r}. "
                f"Allowed: {', '.join(sorted(STORAGE_CATEGORIES))}"
            )
        if not user_id or not _SAFE_SEGMENT_RE.match(user_id):
            raise InvalidInputError(f"Invalid user id for storage: {user_id!r}")
        if not content:
            raise InvalidInputError("File is empty")
        if len(content) > self.max_bytes:
            raise InvalidInputError(
                f"File too large: {len(content)} bytes (max {self.max_bytes // 1024 // 1024}MB)"
            )

        ext = self.extension_of(filename)
        folder = self.root / user_id / category
        with self._lock:
            folder.mkdir(parents=True, exist_ok=True)
            stamp = int(time.time() * 1000)
            while (folder / f"{stamp}.{ext}").exists():
                stamp += 1
            key = f"{user_id}/{category}/{stamp}.{ext}"
            self._path(key).write_bytes(content)

        logger.info(
            "Stored %s (%d bytes, %s)", key, len(content), content_type or "unknown type",
        )
        return self.url_for(key)

    def exists(self, url: str | None) -> bool:
        key = self.key_for(url)
        if key is None:
            return False
        try:
            return self._path(key).is_file()
        except InvalidInputError:
            return False

    def delete(self, url: str | None) -> bool:
        """Remove the object behind *url*.  Returns True if it existed."""
        key = self.key_for(url)
        if key is None:
            return False
        path = self._path(key)
        if path.is_file():
            path.unlink()
            logger.info("Deleted %s", key)
            return True
        return False
