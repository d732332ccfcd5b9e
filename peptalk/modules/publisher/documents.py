"""Document stores for rendered page documents."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path

import httpx
import structlog

from peptalk.core.exceptions import StoreError
from peptalk.core.retry import RetryPolicy, call_with_retry
from peptalk.core.security import INTERNAL_SECRET_HEADER

logger = structlog.get_logger()


class DocumentStore(ABC):
    @abstractmethod
    async def put(self, key: str, content: bytes, content_type: str) -> str | None:
        """Store ``content`` under ``key``. Returns its public URL if there is one."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``. Deleting a missing key is not an error."""


class LocalDocumentStore(DocumentStore):
    def __init__(self, base_dir: str | Path, public_base_url: str = "") -> None:
        self.base_dir = Path(base_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if not path.is_relative_to(self.base_dir.resolve()):
            raise StoreError(f"document key escapes the document directory: {key}")
        return path

    async def put(self, key: str, content: bytes, content_type: str) -> str | None:
        path = self._path(key)

        def write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

        await asyncio.to_thread(write)
        logger.info("document_stored", key=key, bytes=len(content))
        return f"{self.public_base_url}/{key}" if self.public_base_url else None

    async def delete(self, key: str) -> None:
        path = self._path(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)


class InternalApiDocumentStore(DocumentStore):
    def __init__(
        self,
        base_url: str,
        secret: str,
        policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self.policy = policy or RetryPolicy()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.policy.timeout,
            transport=self._transport,
            headers={INTERNAL_SECRET_HEADER: self.secret},
        )

    async def put(self, key: str, content: bytes, content_type: str) -> str | None:
        async def send() -> httpx.Response:
            async with self._client() as http:
                resp = await http.put(
                    f"/internal/documents/{key}",
                    content=content,
                    headers={"Content-Type": content_type},
                )
                resp.raise_for_status()
                return resp

        result = await call_with_retry(send, self.policy, label="document_upload")
        if not result.ok:
            raise StoreError(result.error or f"upload of {key} failed")
        return result.value.json().get("url")

    async def delete(self, key: str) -> None:
        async def send() -> httpx.Response:
            async with self._client() as http:
                resp = await http.delete(f"/internal/documents/{key}")
                if resp.status_code != 404:
                    resp.raise_for_status()
                return resp

        result = await call_with_retry(send, self.policy, label="document_delete")
        if not result.ok:
            raise StoreError(result.error or f"delete of {key} failed")
