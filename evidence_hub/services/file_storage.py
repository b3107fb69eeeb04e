"""
Local filesystem storage for evidence files.

Layout under the storage root (``UPLOAD_FOLDER``):

    <root>/evidences/<evidence_id>/<stored_name>

Paths handed back to callers are relative to the root and use forward
slashes, so rows stay valid when the root moves. Writes never overwrite:
an existing path is a ConflictError.
"""

import logging
import os
import shutil

from evidence_hub.core.exceptions import ConflictError, ValidationError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class LocalFileStorage:
    """Exclusive-create file store rooted at one directory."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def __repr__(self):
        return f"<LocalFileStorage {self.root}>"

    @staticmethod
    def evidence_directory(evidence_id: int) -> str:
        return f"evidences/{evidence_id}"

    def absolute_path(self, relative_path: str) -> str:
        """Resolve *relative_path* under the root; refuse anything escaping it."""
        path = os.path.abspath(os.path.join(self.root, relative_path))
        if os.path.commonpath([self.root, path]) != self.root:
            raise ValidationError(
                f"Path {relative_path!r} escapes the storage root",
                details={"file_path": "invalid"},
            )
        return path

    def exists(self, relative_path: str) -> bool:
        return os.path.isfile(self.absolute_path(relative_path))

    def save(self, stream, stored_name: str, directory: str) -> tuple[str, int]:
        """Write *stream* to ``directory/stored_name``.

        Returns:
            (relative path, bytes written)

        Raises:
            ConflictError: the target path already exists.
        """
        relative_path = f"{directory.strip('/')}/{stored_name}"
        path = self.absolute_path(relative_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)

        try:
            handle = open(path, "xb")
        except FileExistsError:
            raise ConflictError("EvidenceFile", "stored_name", stored_name, scope=directory) from None

        try:
            with handle:
                shutil.copyfileobj(stream, handle, _CHUNK_SIZE)
                size = handle.tell()
        except OSError:
            logger.exception("Write failed for %s; removing partial file", relative_path)
            self._remove(path)
            raise

        logger.debug("Stored %s (%d bytes)", relative_path, size)
        return relative_path, size

    def delete(self, relative_path: str) -> bool:
        """Remove a stored file. Returns False when it was already gone."""
        return self._remove(self.absolute_path(relative_path))

    @staticmethod
    def _remove(path: str) -> bool:
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        return True
