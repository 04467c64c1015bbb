"""
Image turn helpers: turning an uploaded image reference into something the
model can read, and parsing the strict-JSON search intent the model derives
from its own description of the image.
"""
import base64
import json
import mimetypes
import os
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ValidationError, field_validator

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

UPLOADS_PREFIX = "/uploads/"
IMAGE_FETCH_TIMEOUT_SECONDS = 10.0


def _mime_for(name: str, header: str | None = None) -> str:
    if header and header.lower().startswith("image/"):
        return header.split(";")[0].strip()
    guessed, _ = mimetypes.guess_type(name)
    return guessed if guessed and guessed.startswith("image/") else "image/jpeg"


def to_data_url(content: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"


class ImageResolver:
    """
    Resolve an image reference to a data URL when possible.

    - `/uploads/<name>` is read from the upload directory
    - `http(s)://` URLs are downloaded; on failure the URL is passed through
    - anything else is treated as a path, then as a path on the public origin
    """

    def __init__(
        self,
        *,
        upload_dir: str | None = None,
        public_origin: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.upload_dir = upload_dir or settings.UPLOAD_DIR
        self.public_origin = (public_origin if public_origin is not None else settings.PUBLIC_ORIGIN) or ""
        self._transport = transport

    def _read_file(self, path: str) -> Optional[str]:
        try:
            with open(path, "rb") as fh:
                content = fh.read()
        except OSError:
            return None
        return to_data_url(content, _mime_for(path))

    async def _fetch(self, url: str) -> Optional[str]:
        try:
            async with httpx.AsyncClient(
                timeout=IMAGE_FETCH_TIMEOUT_SECONDS,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning("Image download failed", extra_data={"error": str(e)})
            return None
        if response.status_code >= 400:
            logger.warning("Image download failed", extra_data={"status_code": response.status_code})
            return None
        return to_data_url(response.content, _mime_for(url, response.headers.get("content-type")))

    async def resolve(self, url: str) -> str:
        if url.startswith("data:"):
            return url
        if url.startswith(UPLOADS_PREFIX):
            local = os.path.join(self.upload_dir, os.path.basename(url))
            return self._read_file(local) or f"{self.public_origin}{url}"
        if url.startswith(("http://", "https://")):
            return await self._fetch(url) or url
        return self._read_file(url) or f"{self.public_origin}{url}"


class SearchIntent(BaseModel):
    """Search the model proposes for an image"""
    query: str = ""
    category: Optional[str] = None
    per_page: int = 6

    @field_validator("query", mode="before")
    @classmethod
    def query_text(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("category", mode="before")
    @classmethod
    def category_text(cls, v: Any) -> Optional[str]:
        return None if v in (None, "") else str(v)

    @field_validator("per_page", mode="before")
    @classmethod
    def clamp_per_page(cls, v: Any) -> int:
        try:
            number = int(float(v)) if v not in (None, "") else 6
        except (TypeError, ValueError):
            number = 6
        return min(8, max(3, number))


def parse_intent(raw: str) -> SearchIntent:
    """Parse the model's JSON answer; anything unusable becomes an empty intent"""
    text = (raw or "").strip()
    if text.startswith("```"):
        text = text.strip("`")
        text = text[text.find("{"):] if "{" in text else text
    try:
        data = json.loads(text or "{}")
        return SearchIntent.model_validate(data if isinstance(data, dict) else {})
    except (ValueError, ValidationError):
        return SearchIntent()
