"""PubMed literature client (NCBI E-utilities).

Flow: esearch (JSON) for a bounded PMID list, then efetch (XML) in batches
of up to 200 ids. Requests are throttled to 3/s, or 10/s with an API key.
A failed efetch batch is noted and skipped; the run keeps whatever the other
batches returned.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import Any

import httpx
import structlog

from peptalk.core.config import PubMedConfig
from peptalk.core.ratelimit import RateLimiter
from peptalk.core.retry import CallStatus, call_with_retry
from peptalk.modules.evidence.mapping import literature_item
from peptalk.modules.evidence.schemas import EvidenceItem, LiteratureDetails
from peptalk.modules.sources.base import BaseSourceClient, SourceResult, build_query

logger = structlog.get_logger()

_YEAR = re.compile(r"(\d{4})")


class PubMedClient(BaseSourceClient):
    """Literature client: disjunctive query -> PMID list -> detail records."""

    source_name = "pubmed"

    def __init__(
        self,
        config: PubMedConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(transport)
        self.config = config
        self.limiter = RateLimiter(config.effective_rate)

    def _base_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"db": "pubmed", "tool": self.config.tool}
        if self.config.email:
            params["email"] = self.config.email
        if self.config.api_key:
            params["api_key"] = self.config.api_key
        return params

    async def _get(self, http: httpx.AsyncClient, endpoint: str, params: dict[str, Any]) -> httpx.Response:
        await self.limiter.acquire()
        resp = await http.get(f"{self.config.base_url}/{endpoint}", params=params)
        resp.raise_for_status()
        return resp

    async def fetch(self, name: str, aliases: list[str]) -> SourceResult:
        result = SourceResult(source=self.source_name)
        query = build_query(name, aliases, quote=True)
        policy = self.config.retry

        async with self._client(policy.timeout) as http:
            search_params = {
                **self._base_params(),
                "term": query,
                "retmax": self.config.max_results,
                "retmode": "json",
                "sort": "relevance",
            }
            search = await call_with_retry(
                lambda: self._get(http, "esearch.fcgi", search_params),
                policy,
                label="pubmed_esearch",
            )
            if not search.ok:
                result.add_failure(f"PubMed search failed: {search.error}")
                return result

            try:
                id_list = [str(i) for i in search.value.json()["esearchresult"]["idlist"]]
            except (ValueError, KeyError, TypeError) as e:
                result.add_failure(f"PubMed search returned an unexpected payload: {e}")
                return result

            logger.info("pubmed_search_complete", query=query, ids=len(id_list))

            batch_size = self.config.fetch_batch_size
            for start in range(0, len(id_list), batch_size):
                batch = id_list[start:start + batch_size]
                fetch_params = {
                    **self._base_params(),
                    "id": ",".join(batch),
                    "retmode": "xml",
                    "rettype": "abstract",
                }
                fetched = await call_with_retry(
                    lambda: self._get(http, "efetch.fcgi", fetch_params),
                    policy,
                    label="pubmed_efetch",
                )
                if not fetched.ok:
                    result.add_failure(
                        f"PubMed fetch of {len(batch)} records failed: {fetched.error}"
                    )
                    continue

                items, skipped = self.parse_articles(fetched.value.text)
                result.items.extend(items)
                result.skipped += skipped

        if result.notes and result.items:
            result.status = CallStatus.partial

        logger.info(
            "pubmed_fetch_complete",
            query=query,
            items=len(result.items),
            skipped=result.skipped,
            status=result.status.value,
        )
        return result

    # ------------------------------------------------------------------
    # XML parsing
    # ------------------------------------------------------------------

    def parse_articles(self, xml_text: str) -> tuple[list[EvidenceItem], int]:
        """Parse an efetch payload. Returns (items, skipped_count)."""
        try:
            root = ET.fromstring(xml_text)
        except ET.ParseError as e:
            logger.warning("pubmed_xml_parse_error", error=str(e))
            return [], 1

        items: list[EvidenceItem] = []
        skipped = 0
        for article in root.findall(".//PubmedArticle"):
            try:
                item = self._parse_article(article)
            except (ValueError, TypeError):
                logger.debug("pubmed_article_unparseable", exc_info=True)
                item = None
            if item is None:
                skipped += 1
                continue
            items.append(item)
        return items, skipped

    def _parse_article(self, article: ET.Element) -> EvidenceItem | None:
        pmid = (article.findtext("MedlineCitation/PMID") or article.findtext(".//PMID") or "").strip()

        title_el = article.find(".//ArticleTitle")
        title = " ".join("".join(title_el.itertext()).split()) if title_el is not None else ""

        parts: list[str] = []
        for abs_el in article.findall(".//Abstract/AbstractText"):
            text = " ".join("".join(abs_el.itertext()).split())
            if not text:
                continue
            label = abs_el.get("Label")
            parts.append(f"{label}: {text}" if label else text)
        abstract = " ".join(parts)

        if not pmid or not title or len(abstract) < self.config.min_abstract_chars:
            return None

        authors: list[str] = []
        for author in article.findall(".//AuthorList/Author"):
            last = author.findtext("LastName")
            if last:
                initials = author.findtext("Initials") or ""
                authors.append(f"{last} {initials}".strip())
            elif author.findtext("CollectiveName"):
                authors.append(author.findtext("CollectiveName"))

        doi = None
        for id_el in article.findall(".//ArticleIdList/ArticleId"):
            if id_el.get("IdType") == "doi" and id_el.text:
                doi = id_el.text.strip()
                break
        if not doi:
            for eloc in article.findall(".//ELocationID"):
                if eloc.get("EIdType") == "doi" and eloc.text:
                    doi = eloc.text.strip()
                    break

        publication_types = tuple(
            pt.text.strip() for pt in article.findall(".//PublicationType") if pt.text
        )

        mesh_terms = tuple(
            d.text.strip() for d in article.findall(".//MeshHeadingList/MeshHeading/DescriptorName") if d.text
        )

        details = LiteratureDetails(
            pmid=pmid,
            authors=tuple(authors),
            journal=article.findtext(".//Journal/Title"),
            doi=doi,
            publication_types=publication_types,
            mesh_terms=mesh_terms,
        )
        return literature_item(details, title=title, abstract=abstract, year=self._parse_year(article))

    @staticmethod
    def _parse_year(article: ET.Element) -> int | None:
        for path in (".//JournalIssue/PubDate/Year", ".//PubDate/Year", ".//ArticleDate/Year"):
            text = article.findtext(path)
            if text and text.strip().isdigit():
                return int(text.strip())
        medline = article.findtext(".//PubDate/MedlineDate")
        if medline:
            match = _YEAR.search(medline)
            if match:
                return int(match.group(1))
        return None
