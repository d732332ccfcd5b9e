"""Page document rendering.

The page is rendered to HTML through a Jinja2 template, then printed to PDF
with headless Chromium. The HTML renderer is used for ``document_format=html``
and by tests; it needs no browser.

Requires (PDF only):
    pip install playwright
    playwright install chromium
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape

from peptalk.modules.evidence.schemas import GradeLevel
from peptalk.modules.synthesis.schemas import PageRecord

logger = structlog.get_logger()

_TEMPLATES_DIR = Path(__file__).parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "xml", "j2"]),
    trim_blocks=True,
    lstrip_blocks=True,
)

GRADE_COLORS = {
    GradeLevel.high: "#1b7f3b",
    GradeLevel.moderate: "#2f6db5",
    GradeLevel.low: "#c28a00",
    GradeLevel.very_low: "#b23a3a",
}

_PDF_PAGE = re.compile(rb"/Type\s*/Page[^s]")


@dataclass
class RenderedDocument:
    content: bytes
    content_type: str
    extension: str
    page_count: int | None = None


def render_html(page: PageRecord) -> str:
    template = _env.get_template("page.html.j2")
    return template.render(
        page=page,
        grade_color=GRADE_COLORS.get(page.grade.level, "#555555"),
        generated=page.generated_at.strftime("%Y-%m-%d"),
    )


class DocumentRenderer(ABC):
    extension: str = ""

    @abstractmethod
    async def render(self, page: PageRecord) -> RenderedDocument: ...


class HtmlDocumentRenderer(DocumentRenderer):
    extension = "html"

    async def render(self, page: PageRecord) -> RenderedDocument:
        html = render_html(page)
        return RenderedDocument(
            content=html.encode("utf-8"),
            content_type="text/html; charset=utf-8",
            extension=self.extension,
        )


class PdfDocumentRenderer(DocumentRenderer):
    extension = "pdf"

    def __init__(self, timeout_seconds: float = 60.0) -> None:
        self.timeout_ms = int(timeout_seconds * 1000)

    async def render(self, page: PageRecord) -> RenderedDocument:
        try:
            from playwright.async_api import async_playwright
        except ImportError:
            raise ImportError(
                "playwright is required for PDF rendering. "
                "Install with: pip install playwright && playwright install chromium"
            )

        html = render_html(page)
        pw = await async_playwright().start()
        browser = None
        try:
            browser = await pw.chromium.launch(headless=True)
            tab = await browser.new_page()
            await tab.set_content(html, wait_until="load", timeout=self.timeout_ms)
            pdf = await tab.pdf(
                format="A4",
                margin={"top": "1in", "bottom": "1in", "left": "1in", "right": "1in"},
                print_background=True,
            )
        finally:
            if browser is not None:
                await browser.close()
            await pw.stop()

        page_count = len(_PDF_PAGE.findall(pdf)) or None
        logger.info("pdf_rendered", peptide=page.peptide_id, bytes=len(pdf), pages=page_count)
        return RenderedDocument(
            content=pdf,
            content_type="application/pdf",
            extension=self.extension,
            page_count=page_count,
        )


def get_renderer(document_format: str, timeout_seconds: float = 60.0) -> DocumentRenderer:
    if document_format == "pdf":
        return PdfDocumentRenderer(timeout_seconds)
    if document_format == "html":
        return HtmlDocumentRenderer()
    raise ValueError(f"unknown document format: {document_format}")
