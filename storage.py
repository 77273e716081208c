import logging
import uuid
from pathlib import Path
from typing import Dict, Optional

import config

logger = logging.getLogger(__name__)


class BlobStoreError(RuntimeError):
    pass


def _secure_filename(filename: str) -> str:
    name = Path(filename).name
    name = name.replace(' ', '_')
    name = name.replace('..', '')
    return name or "file"


class LocalBlobStore:
    """Blob store on local disk, served under `UPLOAD_BASE_URL`.

    `public_id` is the path relative to the upload root, e.g. `legal-documents/3f2a..._brief.pdf`.
    """

    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        self.root = Path(root or config.UPLOAD_DIR)
        self.base_url = (base_url or config.UPLOAD_BASE_URL).rstrip("/")

    def upload(self, data: bytes, folder: str, filename: str) -> Dict[str, str]:
        dest_dir = self.root / _secure_filename(folder)
        name = f"{uuid.uuid4().hex}_{_secure_filename(filename)}"
        dest = dest_dir / name
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            with dest.open("wb") as buffer:
                buffer.write(data)
        except OSError as e:
            raise BlobStoreError(f"Could not store {filename}: {e}") from e
        public_id = f"{dest_dir.name}/{name}"
        logger.info("Stored %d bytes as %s", len(data), public_id)
        return {"url": f"{self.base_url}/{public_id}", "public_id": public_id}

    def delete(self, public_id: str) -> None:
        path = (self.root / public_id).resolve()
        if self.root.resolve() not in path.parents:
            raise BlobStoreError(f"Refusing to delete outside upload root: {public_id}")
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise BlobStoreError(f"Could not delete {public_id}: {e}") from e
        logger.info("Deleted blob %s", public_id)


_blob_store = None


# FastAPI dependency
def get_blob_store():
    """pCloud when a token is configured, local disk otherwise."""
    global _blob_store
    if _blob_store is None:
        if config.PCLOUD_UPLOAD_TOKEN:
            from pcloud_integration import PCloudBlobStore
            _blob_store = PCloudBlobStore()
        else:
            _blob_store = LocalBlobStore()
    return _blob_store
