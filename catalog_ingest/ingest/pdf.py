"""Local PDF brochures as a document source (text layer via pdfminer)."""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List

from pdfminer.high_level import extract_pages
from pdfminer.layout import LTTextContainer
from pdfminer.psparser import PSException

from catalog_ingest.catalog.models import SourceKind
from catalog_ingest.ingest.base import (
    DocumentSource,
    ExtractedText,
    SourceDocument,
    SourceError,
    build_page_map,
)

logger = logging.getLogger(__name__)


def extract_pdf_pages(path: Path) -> Dict[int, str]:
    """
    Extract text per page, keyed by 1-based page number.

    Raises:
        SourceError: If the file cannot be read as a PDF
    """
    pages: Dict[int, List[str]] = {}
    try:
        for page_number, layout in enumerate(extract_pages(str(path)), 1):
            lines = []
            for element in layout:
                if isinstance(element, LTTextContainer):
                    text = element.get_text().strip()
                    if text:
                        lines.append(text)
            pages[page_number] = lines
    except (OSError, PSException) as e:
        raise SourceError(f"Failed to read PDF {path}: {e}") from e
    return build_page_map(pages)


def join_pages(page_map: Dict[int, str]) -> str:
    """Full text with a page marker before each page."""
    return "\n\n".join(f"--- Page {page} ---\n{text}" for page, text in page_map.items())


class PdfSource(DocumentSource):
    """PDF files in a local folder."""

    kind = SourceKind.PDF

    def __init__(self, folder: str | Path):
        self.folder = Path(folder)

    async def list(self) -> List[SourceDocument]:
        folder = self.folder.resolve()
        if not folder.is_dir():
            logger.warning(f"PDF folder not found: {folder}")
            return []

        return [
            SourceDocument(
                file_name=path.name,
                source_key=str(path),
                kind=self.kind,
                file_path=str(path),
            )
            for path in sorted(folder.iterdir())
            if path.is_file() and path.suffix.lower() == ".pdf"
        ]

    async def fetch_text(self, document: SourceDocument) -> ExtractedText:
        page_map = await asyncio.to_thread(extract_pdf_pages, Path(document.source_key))
        logger.info(f"Extracted {len(page_map)} page(s) from {document.file_name}")
        return ExtractedText(
            full_text=join_pages(page_map),
            page_map=page_map,
            metadata={"pages": len(page_map)},
        )
