"""HTTP client for the visualization service."""
import logging
import requests
from config import VISUAL_API_URL, VISUAL_API_TIMEOUT
from errors import NotFound, UpstreamError, ValidationError, IncompleteUpload

logger = logging.getLogger(__name__)


class VisualClient:
    """Thin wrapper over the visualization API.

    Transport failures and unexpected statuses surface as ``UpstreamError``;
    no call is retried.
    """

    def __init__(self, base_url: str = VISUAL_API_URL, timeout: float = VISUAL_API_TIMEOUT, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("visualization service %s %s failed: %s", method, path, exc)
            raise UpstreamError("Visualization service unavailable")

        if resp.status_code == 404:
            raise NotFound("Visualization content not found")
        if resp.status_code == 400:
            body = _json_or_empty(resp)
            if "received" in body and "expected" in body:
                raise IncompleteUpload(received=body["received"], expected=body["expected"])
            raise ValidationError(body.get("error", "Invalid input"))
        if resp.status_code >= 400:
            logger.error("visualization service %s %s answered %s", method, path, resp.status_code)
            raise UpstreamError(f"Visualization service error ({resp.status_code})")
        return resp

    def get_svg(self, content_id: int) -> dict:
        return self._request("GET", f"/{content_id}").json()

    def create(self, svg: str | None = None, details_on_hover: bool = True) -> int:
        resp = self._request("POST", "/", json={"svg": svg, "detailsOnHover": details_on_hover})
        return resp.json()["id"]

    def replace(self, content_id: int, **fields) -> None:
        self._request("PUT", f"/{content_id}", json=fields)

    def delete(self, content_id: int) -> None:
        self._request("DELETE", f"/{content_id}")

    def upload_init(self, content_id: int, total_chunks: int, file_size: int | None = None) -> dict:
        return self._request("POST", f"/{content_id}/upload/init",
                             json={"totalChunks": total_chunks, "fileSize": file_size}).json()

    def upload_chunk(self, content_id: int, upload_id: str, chunk_index: int, data: str) -> dict:
        return self._request("POST", f"/{content_id}/upload/chunk",
                             json={"uploadId": upload_id, "chunkIndex": chunk_index, "data": data}).json()

    def upload_finalize(self, content_id: int, upload_id: str) -> None:
        self._request("POST", f"/{content_id}/upload/finalize", json={"uploadId": upload_id})


def _json_or_empty(resp) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


_client = VisualClient()

def get_visual_client() -> VisualClient:
    return _client
