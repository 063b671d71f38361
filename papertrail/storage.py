"""Object storage on a local bucket directory.

Objects live under ``<root>/<bucket>/<path>`` and are served publicly at
``<public_base_url>/<bucket>/<path>``. Paths follow the layout
``{project_id}/{timestamp}-{safe_title}/<file>``.
"""
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Iterable, Optional
import structlog

from papertrail import config
from papertrail.errors import StoreWriteError

logger = structlog.get_logger()


def safe_title(title: str, max_length: int = 50) -> str:
    """Replace everything but ASCII letters and digits with underscores."""
    return re.sub(r"[^a-zA-Z0-9]", "_", title)[:max_length]


def make_prefix(project_id: str, title: str) -> str:
    """Build a fresh, project-scoped storage prefix for one source."""
    timestamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"{project_id}/{timestamp}-{safe_title(title)}"


class ObjectStorage:
    """Bucket-scoped file storage with upload/download/remove."""

    def __init__(
        self,
        root: Optional[Path] = None,
        bucket: Optional[str] = None,
        public_base_url: Optional[str] = None,
    ):
        self.root = Path(root or config.STORAGE_DIR)
        self.bucket = bucket or config.STORAGE_BUCKET
        self.public_base_url = (public_base_url or config.STORAGE_PUBLIC_BASE_URL).rstrip("/")
        self.bucket_dir = self.root / self.bucket
        self.bucket_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        target = (self.bucket_dir / path).resolve()
        if self.bucket_dir.resolve() not in target.parents:
            raise StoreWriteError(f"Path escapes bucket: {path}")
        return target

    def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Write an object.

        Args:
            path: Object path inside the bucket
            data: Object bytes
            content_type: MIME type (recorded in the log only)

        Returns:
            The object path

        Raises:
            StoreWriteError: If the write fails
        """
        try:
            target = self._resolve(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            logger.error("storage_upload_failed", path=path, error=str(e))
            raise StoreWriteError(f"Failed to upload {path}: {e}") from e

        logger.info(
            "storage_object_uploaded",
            path=path,
            size=len(data),
            content_type=content_type,
        )
        return path

    def download(self, path: str) -> bytes:
        """Read an object.

        Raises:
            FileNotFoundError: If the object doesn't exist
        """
        return self._resolve(path).read_bytes()

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def get_public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{self.bucket}/{path}"

    def remove(self, paths: Iterable[str]) -> List[str]:
        """Delete objects, ignoring ones that are already gone.

        Returns:
            Paths that were actually removed
        """
        removed = []
        for path in paths:
            target = self._resolve(path)
            if target.is_file():
                target.unlink()
                removed.append(path)
                # Drop the now-empty source folder
                parent = target.parent
                if parent != self.bucket_dir and not any(parent.iterdir()):
                    parent.rmdir()

        if removed:
            logger.info("storage_objects_removed", count=len(removed))
        return removed
