import base64
import json
import logging
from dataclasses import dataclass
from typing import Optional

from ..credentials import GalleryStoreCredentials
from ..errors import MalformedRecord, PlatformUserError
from ..platforms import GALLERY_STORE
from .http import ApiClient

logger = logging.getLogger(__name__)

GITHUB_API_URL = 'https://api.github.com'


@dataclass
class GalleryFile:
    path: str
    content: dict
    sha: Optional[str]


class GalleryStoreClient(ApiClient):
    """
    Reads and writes the gallery storefront's collection files through the
    GitHub contents API. Every write is a commit guarded by the blob SHA the
    caller last read, so a stale write fails with HTTP 409.
    """

    platform = GALLERY_STORE

    def __init__(self, credentials: GalleryStoreCredentials, **kwargs):
        kwargs.setdefault('rate_limit', credentials.rate_limit)
        super().__init__(f"{GITHUB_API_URL}/repos/{credentials.repo}/contents", **kwargs)
        self._branch = credentials.branch
        self._data_dir = credentials.data_dir.strip('/')
        self._session.headers.update({
            'Authorization': f"Bearer {credentials.token}",
            'Accept': 'application/vnd.github.v3+json',
        })

    def collection_path(self, collection: str) -> str:
        return f"{self._data_dir}/{collection}.json"

    def get_file(self, path: str) -> Optional[GalleryFile]:
        """Return the decoded JSON file, or None when it does not exist yet."""
        try:
            response = self._request_with_retry('GET', f"{self._base_url}/{path}", params={'ref': self._branch})
        except PlatformUserError as exc:
            if exc.status_code == 404:
                return None
            raise
        body = response.json()
        try:
            raw = base64.b64decode(body['content']).decode('utf-8')
            return GalleryFile(path=path, content=json.loads(raw), sha=body.get('sha'))
        except (KeyError, ValueError) as exc:
            raise MalformedRecord(self.platform, f"{path} is not a readable JSON file: {exc}") from exc

    def put_file(self, path: str, content: dict, message: str, sha: Optional[str] = None) -> dict:
        encoded = base64.b64encode(json.dumps(content, indent=2, ensure_ascii=False).encode('utf-8')).decode('ascii')
        body = {'message': message, 'content': encoded, 'branch': self._branch}
        if sha:
            body['sha'] = sha
        result = self._request_with_retry('PUT', f"{self._base_url}/{path}", json=body).json()
        logger.info("Committed %s (%s).", path, (result.get('commit') or {}).get('sha', 'no sha'))
        return result
