import logging
from typing import Dict, Optional

import requests

import config
from storage import BlobStoreError

# pCloud blob store talking to the official REST API.
#
# Configuration via environment variables (see config.py):
# - PCLOUD_UPLOAD_TOKEN: pCloud access token (OAuth2 access token or a long-lived token).
# - PCLOUD_FOLDER_ID: optional numeric folder id to upload into (default: 0 / root)

API_BASE = "https://api.pcloud.com"

logger = logging.getLogger(__name__)


class PCloudError(BlobStoreError):
    pass


class PCloudBlobStore:
    def __init__(self, token: Optional[str] = None, folder_id: Optional[str] = None, session=None):
        self.token = token or config.PCLOUD_UPLOAD_TOKEN
        if not self.token:
            raise PCloudError("PCLOUD_UPLOAD_TOKEN is required to use the pCloud API")
        try:
            self.folder_id = int(folder_id if folder_id is not None else (config.PCLOUD_FOLDER_ID or 0))
        except ValueError:
            self.folder_id = 0
        self.http = session or requests.Session()

    def _call(self, method: str, call: str, timeout: int = 30, **kwargs) -> dict:
        params = dict(kwargs.pop("params", {}), access_token=self.token)
        try:
            resp = self.http.request(method, f"{API_BASE}/{call}", params=params, timeout=timeout, **kwargs)
        except requests.RequestException as e:
            raise PCloudError(f"pCloud {call} failed: {e}") from e
        if resp.status_code != 200:
            raise PCloudError(f"pCloud {call} failed: {resp.status_code} {resp.text}")
        data = resp.json()
        # pCloud reports errors with HTTP 200 and a non-zero `result`
        if data.get("result", 0) != 0:
            raise PCloudError(f"pCloud {call} failed: {data.get('error', data)}")
        return data

    def upload(self, data: bytes, folder: str, filename: str) -> Dict[str, str]:
        """Upload `data` and publish it. Returns the public link and the pCloud file id as `public_id`.

        `folder` is folded into the stored filename; pCloud places files by folder id.
        """
        name = f"{folder}_{filename}" if folder else filename
        body = self._call(
            "POST", "uploadfile", timeout=60,
            params={"folderid": self.folder_id, "renameifexists": 1},
            files={"file": (name, data)},
        )

        # {"result": 0, "fileids": [...], "metadata": [{"fileid": ...}]}
        metadata = body.get("metadata") or []
        if isinstance(metadata, dict):
            metadata = [metadata]
        fileid = (metadata[0].get("fileid") if metadata else None) or (body.get("fileids") or [None])[0]
        if not fileid:
            raise PCloudError(f"pCloud upload returned unexpected response, missing file id: {body}")

        published = self._call("GET", "getfilepublink", params={"fileid": fileid})
        link = published.get("link") or published.get("publiclink")
        if not link:
            raise PCloudError(f"pCloud getfilepublink returned unexpected response: {published}")

        logger.info("Uploaded %s to pCloud as file %s", name, fileid)
        return {"url": link, "public_id": str(fileid)}

    def delete(self, public_id: str) -> None:
        self._call("GET", "deletefile", params={"fileid": public_id})
        logger.info("Deleted pCloud file %s", public_id)
