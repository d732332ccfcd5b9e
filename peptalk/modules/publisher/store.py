"""Page stores: where published page rows live.

``SqlPageStore`` writes straight to the database, one transaction per
operation. ``InternalApiPageStore`` sends the same operations to the site's
internal write API over HTTP. The publisher only sees ``PageStore``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from peptalk.core.exceptions import StoreError
from peptalk.core.retry import RetryPolicy, call_with_retry
from peptalk.core.security import INTERNAL_SECRET_HEADER
from peptalk.modules.publisher import service
from peptalk.modules.publisher.schemas import (
    AuditEntry,
    EvidenceRow,
    PageSnapshot,
    PeptideRow,
    SectionRow,
)

logger = structlog.get_logger()


class PageStore(ABC):
    @abstractmethod
    async def get_snapshot(self, peptide_id: str) -> PageSnapshot: ...

    @abstractmethod
    async def upsert_peptide(self, row: PeptideRow) -> None: ...

    @abstractmethod
    async def replace_evidence(self, peptide_id: str, rows: list[EvidenceRow]) -> None: ...

    @abstractmethod
    async def replace_sections(self, peptide_id: str, rows: list[SectionRow]) -> None: ...

    @abstractmethod
    async def append_audit(self, entry: AuditEntry) -> None: ...

    @abstractmethod
    async def delete_peptide(self, peptide_id: str) -> None: ...

    async def restore(self, peptide_id: str, snapshot: PageSnapshot) -> None:
        """Put a peptide back the way ``snapshot`` found it."""
        if snapshot.peptide is None:
            await self.delete_peptide(peptide_id)
            return
        await self.replace_sections(peptide_id, snapshot.sections)
        await self.replace_evidence(peptide_id, snapshot.evidence)
        await self.upsert_peptide(snapshot.peptide)


class SqlPageStore(PageStore):
    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get_snapshot(self, peptide_id: str) -> PageSnapshot:
        async with self.session_factory() as db:
            return await service.get_snapshot(db, peptide_id)

    async def upsert_peptide(self, row: PeptideRow) -> None:
        async with self.session_factory() as db:
            await service.upsert_peptide(db, row)
            await db.commit()

    async def replace_evidence(self, peptide_id: str, rows: list[EvidenceRow]) -> None:
        async with self.session_factory() as db:
            await service.replace_evidence(db, peptide_id, rows)
            await db.commit()

    async def replace_sections(self, peptide_id: str, rows: list[SectionRow]) -> None:
        async with self.session_factory() as db:
            await service.replace_sections(db, peptide_id, rows)
            await db.commit()

    async def append_audit(self, entry: AuditEntry) -> None:
        async with self.session_factory() as db:
            await service.append_audit(db, entry)
            await db.commit()

    async def delete_peptide(self, peptide_id: str) -> None:
        async with self.session_factory() as db:
            await service.delete_peptide(db, peptide_id)
            await db.commit()

    async def restore(self, peptide_id: str, snapshot: PageSnapshot) -> None:
        # single transaction: the restore either lands whole or not at all
        async with self.session_factory() as db:
            if snapshot.peptide is None:
                await service.delete_peptide(db, peptide_id)
            else:
                await service.upsert_peptide(db, snapshot.peptide)
                await service.replace_evidence(db, peptide_id, snapshot.evidence)
                await service.replace_sections(db, peptide_id, snapshot.sections)
            await db.commit()


class InternalApiPageStore(PageStore):
    """Client for the ``/internal`` write API, authenticated with the shared secret."""

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

    async def _request(
        self, method: str, path: str, *, json: Any = None, allow_404: bool = False
    ) -> httpx.Response | None:
        async def send() -> httpx.Response:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.policy.timeout,
                transport=self._transport,
                headers={INTERNAL_SECRET_HEADER: self.secret},
            ) as http:
                resp = await http.request(method, path, json=json)
                if allow_404 and resp.status_code == 404:
                    return resp
                resp.raise_for_status()
                return resp

        result = await call_with_retry(send, self.policy, label=f"internal_api {method} {path}")
        if not result.ok:
            raise StoreError(result.error or f"{method} {path} failed")
        if allow_404 and result.value.status_code == 404:
            return None
        return result.value

    async def get_snapshot(self, peptide_id: str) -> PageSnapshot:
        resp = await self._request("GET", f"/internal/peptides/{peptide_id}", allow_404=True)
        if resp is None:
            return PageSnapshot()
        return PageSnapshot.model_validate(resp.json())

    async def upsert_peptide(self, row: PeptideRow) -> None:
        await self._request("PUT", f"/internal/peptides/{row.id}", json=row.model_dump(mode="json"))

    async def replace_evidence(self, peptide_id: str, rows: list[EvidenceRow]) -> None:
        await self._request(
            "PUT",
            f"/internal/peptides/{peptide_id}/evidence",
            json=[r.model_dump(mode="json") for r in rows],
        )

    async def replace_sections(self, peptide_id: str, rows: list[SectionRow]) -> None:
        await self._request(
            "PUT",
            f"/internal/peptides/{peptide_id}/sections",
            json=[r.model_dump(mode="json") for r in rows],
        )

    async def append_audit(self, entry: AuditEntry) -> None:
        await self._request("POST", "/internal/audit", json=entry.model_dump(mode="json"))

    async def delete_peptide(self, peptide_id: str) -> None:
        await self._request("DELETE", f"/internal/peptides/{peptide_id}", allow_404=True)
