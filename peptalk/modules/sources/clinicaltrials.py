"""ClinicalTrials.gov registry client (API v2).

Queries ``/studies`` by term and follows ``nextPageToken`` up to
``max_pages``. A failed page ends pagination; studies already collected are
kept and the failure becomes a note on the result.
"""

from __future__ import annotations

import re
from typing import Any

import httpx
import structlog

from peptalk.core.config import ClinicalTrialsConfig
from peptalk.core.ratelimit import RateLimiter
from peptalk.core.retry import CallStatus, call_with_retry
from peptalk.modules.evidence.mapping import registry_item
from peptalk.modules.evidence.schemas import EvidenceItem, RegistryDetails
from peptalk.modules.sources.base import BaseSourceClient, SourceResult, build_query

logger = structlog.get_logger()

_YEAR = re.compile(r"^(\d{4})")

# API v2 enum -> display label
_PHASE_LABELS = {
    "EARLY_PHASE1": "Early Phase 1",
    "PHASE1": "Phase 1",
    "PHASE2": "Phase 2",
    "PHASE3": "Phase 3",
    "PHASE4": "Phase 4",
    "NA": "Not Applicable",
}


def _phase_label(phases: list[str]) -> str | None:
    labels = [_PHASE_LABELS.get(p, p) for p in phases if p]
    return "/".join(labels) if labels else None


def _obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _strings(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(v for v in value if isinstance(v, str) and v)


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _year(date_struct: Any) -> tuple[str | None, int | None]:
    date = _obj(date_struct).get("date")
    if not isinstance(date, str) or not date:
        return None, None
    match = _YEAR.match(date)
    return date, int(match.group(1)) if match else None


class ClinicalTrialsClient(BaseSourceClient):
    """Registry client: term query -> paginated study summaries."""

    source_name = "clinicaltrials"

    def __init__(
        self,
        config: ClinicalTrialsConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(transport)
        self.config = config
        self.limiter = RateLimiter(config.requests_per_second)

    async def _get_page(self, http: httpx.AsyncClient, params: dict[str, Any]) -> httpx.Response:
        await self.limiter.acquire()
        resp = await http.get(f"{self.config.base_url}/studies", params=params)
        resp.raise_for_status()
        return resp

    async def fetch(self, name: str, aliases: list[str]) -> SourceResult:
        result = SourceResult(source=self.source_name)
        query = build_query(name, aliases, quote=False)
        policy = self.config.retry
        page_token: str | None = None

        async with self._client(policy.timeout) as http:
            for page in range(1, self.config.max_pages + 1):
                params: dict[str, Any] = {
                    "query.term": query,
                    "pageSize": self.config.page_size,
                    "format": "json",
                }
                if page_token:
                    params["pageToken"] = page_token

                response = await call_with_retry(
                    lambda: self._get_page(http, params),
                    policy,
                    label="clinicaltrials_search",
                )
                if not response.ok:
                    result.add_failure(f"ClinicalTrials.gov page {page} failed: {response.error}")
                    break

                try:
                    payload = response.value.json()
                except ValueError as e:
                    result.add_failure(f"ClinicalTrials.gov page {page} was not JSON: {e}")
                    break

                studies = payload.get("studies", []) if isinstance(payload, dict) else None
                if not isinstance(studies, list):
                    result.add_failure(f"ClinicalTrials.gov page {page} had an unexpected shape")
                    break

                for study in studies:
                    item = self.parse_study(study)
                    if item is None:
                        result.skipped += 1
                    else:
                        result.items.append(item)

                page_token = payload.get("nextPageToken")
                if not page_token:
                    break

        if result.notes and result.items:
            result.status = CallStatus.partial

        logger.info(
            "clinicaltrials_fetch_complete",
            query=query,
            items=len(result.items),
            skipped=result.skipped,
            status=result.status.value,
        )
        return result

    @staticmethod
    def parse_study(study: Any) -> EvidenceItem | None:
        """Map one v2 study to an EvidenceItem.

        Returns None when required fields are missing or a module has the
        wrong shape; the caller counts it as skipped.
        """
        protocol = _obj(_obj(study).get("protocolSection"))
        ident = _obj(protocol.get("identificationModule"))
        nct_id = ident.get("nctId")
        title = ident.get("officialTitle") or ident.get("briefTitle") or ""
        status_module = _obj(protocol.get("statusModule"))
        design = _obj(protocol.get("designModule"))
        conditions = _strings(_obj(protocol.get("conditionsModule")).get("conditions"))
        arms = _obj(protocol.get("armsInterventionsModule")).get("interventions")
        interventions = _strings([_obj(i).get("name") for i in arms] if isinstance(arms, list) else None)

        if not isinstance(nct_id, str) or not nct_id or not isinstance(title, str) or not title:
            return None
        if not conditions or not interventions:
            return None

        start_date, start_year = _year(status_module.get("startDateStruct"))
        completion_date, _ = _year(status_module.get("completionDateStruct"))
        enrollment = _obj(design.get("enrollmentInfo")).get("count")

        details = RegistryDetails(
            nct_id=nct_id,
            status=_text(status_module.get("overallStatus")),
            phase=_phase_label(list(_strings(design.get("phases")))),
            study_type=_text(design.get("studyType")),
            allocation=_text(_obj(design.get("designInfo")).get("allocation")),
            conditions=conditions,
            interventions=interventions,
            enrollment=enrollment if isinstance(enrollment, int) else None,
            start_date=start_date,
            completion_date=completion_date,
        )
        summary = _text(_obj(protocol.get("descriptionModule")).get("briefSummary")) or ""
        return registry_item(details, title=title, summary=summary, year=start_year)
