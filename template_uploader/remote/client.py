"""HTTP client for the template management service.

Wire protocol (JSON over HTTP)::

    GET  /category/                          → {"categories": [{id, displayName}, ...]}
    POST /image/            {imageName, categoryId} → {"id": ..., ...}
    PUT  /image/{id}/template/{session}      multipart field "template"
    PUT  /image/{id}/background/{session}    multipart field "background"
    POST /layer/{id}        full metadata mapping
    POST /font/             multipart, one "font" field per file

Non-2xx answers raise RemoteError; connection failures, timeouts and
undecodable bodies raise TransportError.  Nothing is retried here.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Mapping, Sequence

import httpx

from template_uploader.errors import MissingAssetError, RemoteError, TransportError
from template_uploader.generator.asset_exporter import AssetSlot
from template_uploader.schema.models import Category, LayerMetadata, metadata_to_dict

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class RemoteClient:
    """Async client for the four template service operations.

    Pass ``client`` to share or fake the transport (tests use
    ``httpx.MockTransport``); an injected client is not closed by ``aclose``.
    """

    def __init__(
        self,
        base_url: str,
        session_id: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self.session_id = session_id
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "RemoteClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _build_url(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return f"{self._base}{path}"

    # -- Transport -----------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = self._build_url(path)
        try:
            resp = await self._client.request(method, url, timeout=self._timeout, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError(f"{method} {url} timed out after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        logger.debug("%s %s -> %d", method, url, resp.status_code)
        if not resp.is_success:
            raise RemoteError(resp.status_code, _error_message(resp))
        if not resp.content.strip():
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise TransportError(f"{method} {url} returned a non-JSON body") from exc

    # -- Operations ----------------------------------------------------------

    async def list_categories(self) -> list[Category]:
        payload = await self._request("GET", "/category/")
        if isinstance(payload, Mapping):
            payload = payload.get("categories")
        if not isinstance(payload, list):
            raise TransportError("Category listing has an unexpected shape")
        try:
            return [Category.from_dict(c) for c in payload]
        except (KeyError, TypeError, AttributeError) as exc:
            raise TransportError(f"Malformed category entry: {exc!r}") from exc

    async def create_image_record(self, name: str, category_id: str) -> dict:
        payload = await self._request(
            "POST", "/image/", json={"imageName": name, "categoryId": category_id}
        )
        if not isinstance(payload, Mapping) or "id" not in payload:
            raise TransportError("Image record response has no id")
        return dict(payload)

    async def upload_asset(
        self,
        image_id: str,
        slot: AssetSlot | str,
        file_path: Path | Sequence[Path],
    ) -> Any:
        """Upload one or more exported files to an image's asset slot."""
        slot_name = AssetSlot(slot).value
        paths = [file_path] if isinstance(file_path, (str, Path)) else list(file_path)
        if not paths:
            raise MissingAssetError(None, slot_name)
        files = [(slot_name, item) for item in await _read_files(paths, slot_name)]
        return await self._request(
            "PUT", f"/image/{image_id}/{slot_name}/{self.session_id}", files=files
        )

    async def upload_metadata(
        self, image_id: str, metadata: Mapping[str, LayerMetadata]
    ) -> Any:
        return await self._request(
            "POST", f"/layer/{image_id}", json=metadata_to_dict(metadata)
        )

    async def upload_fonts(self, font_paths: Sequence[Path]) -> Any:
        if not font_paths:
            logger.debug("No fonts to upload")
            return None
        files = [("font", item) for item in await _read_files(font_paths, "font")]
        return await self._request("POST", "/font/", files=files)

    async def upload_metadata_and_fonts(
        self,
        image_id: str,
        metadata: Mapping[str, LayerMetadata],
        font_paths: Sequence[Path],
    ) -> dict:
        layer_ack = await self.upload_metadata(image_id, metadata)
        font_ack = await self.upload_fonts(font_paths)
        return {"layers": layer_ack, "fonts": font_ack}


async def _read_files(paths: Sequence[Path], slot: str) -> list[tuple[str, bytes]]:
    """Read files for a multipart body as (filename, content) pairs."""
    items = []
    for path in paths:
        path = Path(path)
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise MissingAssetError(path, slot) from exc
        items.append((path.name, content))
    return items


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text.strip() or resp.reason_phrase
    if isinstance(body, Mapping):
        for key in ("message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    return resp.reason_phrase
