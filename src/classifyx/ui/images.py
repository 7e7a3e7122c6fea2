"""In-memory store for uploaded images.

Each upload gets an opaque handle id that the page uses as its preview URL.
Handles stay servable until released.
"""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageHandle:
    """An uploaded image held in memory."""

    id: str
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class ImageStore:
    """Creates, serves, and releases image handles."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: dict[str, ImageHandle] = {}

    def create(self, data: bytes, filename: str, content_type: str) -> ImageHandle:
        handle = ImageHandle(
            id=secrets.token_urlsafe(12),
            filename=filename,
            content_type=content_type,
            data=data,
        )
        with self._lock:
            self._handles[handle.id] = handle
        logger.debug("Created image handle %s (%s, %d bytes)", handle.id, filename, handle.size)
        return handle

    def get(self, handle_id: str) -> ImageHandle | None:
        with self._lock:
            return self._handles.get(handle_id)

    def release(self, handle: ImageHandle) -> None:
        """Drop a handle; releasing twice is harmless."""
        with self._lock:
            released = self._handles.pop(handle.id, None)
        if released is not None:
            logger.debug("Released image handle %s", handle.id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def clear(self) -> None:
        with self._lock:
            self._handles.clear()
