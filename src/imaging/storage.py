"""Filesystem content store for imaging documents."""

import logging
import os
import time
from pathlib import Path
from typing import Iterator, Optional, Tuple

from src.config import settings
from src.imaging import sanitize_filename
from src.imaging.errors import StorageError

logger = logging.getLogger(__name__)


def generate_storage_path(filename: str, prefix: str = "imaging") -> str:
    """Storage path for an ingested file: ``imaging/<epoch-ms>-<filename>``."""
    return f"{prefix}/{int(time.time() * 1000)}-{sanitize_filename(filename)}"


class LocalContentStore:
    """Stores blobs under ``<root>/<bucket_id>/<storage_path>``."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or settings.storage_dir)

    def _resolve(self, bucket_id: int, storage_path: str) -> Path:
        bucket_dir = (self.root / str(bucket_id)).resolve()
        path = (bucket_dir / storage_path).resolve()
        if bucket_dir != path and bucket_dir not in path.parents:
            raise StorageError(f"Storage path escapes bucket directory: {storage_path}")
        return path

    def put(self, bucket_id: int, storage_path: str, data: bytes) -> str:
        """Write ``data`` and return the storage path it was written to.

        An existing file at the same path is never overwritten; a numeric
        suffix is appended instead.
        """
        path = self._resolve(bucket_id, storage_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            counter = 1
            original = path
            while path.exists():
                path = original.with_name(f"{original.stem}_{counter}{original.suffix}")
                counter += 1

            with open(path, 'wb') as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Could not write {storage_path} to bucket {bucket_id}: {e}") from e

        stored = path.relative_to((self.root / str(bucket_id)).resolve()).as_posix()
        logger.debug(f"Stored {len(data)} bytes at bucket {bucket_id}/{stored}")
        return stored

    def get(self, bucket_id: int, storage_path: str) -> bytes:
        path = self._resolve(bucket_id, storage_path)
        try:
            with open(path, 'rb') as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"Could not read {storage_path} from bucket {bucket_id}: {e}") from e

    def exists(self, bucket_id: int, storage_path: str) -> bool:
        return self._resolve(bucket_id, storage_path).is_file()

    def delete(self, bucket_id: int, storage_path: str) -> bool:
        path = self._resolve(bucket_id, storage_path)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Could not delete {storage_path} from bucket {bucket_id}: {e}") from e

    def iter_blobs(self) -> Iterator[Tuple[int, str, float]]:
        """Yield ``(bucket_id, storage_path, mtime)`` for every stored blob."""
        if not self.root.exists():
            return
        for bucket_dir in self.root.iterdir():
            if not bucket_dir.is_dir() or not bucket_dir.name.isdigit():
                continue
            for dirpath, _, filenames in os.walk(bucket_dir):
                for filename in filenames:
                    path = Path(dirpath) / filename
                    yield int(bucket_dir.name), path.relative_to(bucket_dir).as_posix(), path.stat().st_mtime
