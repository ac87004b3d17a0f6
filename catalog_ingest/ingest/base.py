"""Base interface for document sources."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from catalog_ingest.catalog.models import SourceKind


class SourceError(Exception):
    """Raised when a document cannot be read or parsed."""

    pass


@dataclass(frozen=True)
class SourceDocument:
    """Opaque reference to one ingestible document."""

    file_name: str
    source_key: str
    kind: SourceKind
    file_path: Optional[str] = None


@dataclass
class ExtractedText:
    """Text derived from a document, with an optional per-page breakdown."""

    full_text: str
    page_map: Dict[int, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def page_count(self) -> Optional[int]:
        return len(self.page_map) if self.page_map else None


def build_page_map(pages: Dict[int, List[str]]) -> Dict[int, str]:
    """Join per-page lines into text, ordered by page number."""
    return {page: "\n".join(lines) for page, lines in sorted(pages.items())}


class DocumentSource(ABC):
    """Abstract base class for document sources."""

    kind: SourceKind

    @abstractmethod
    async def list(self) -> List[SourceDocument]:
        """
        List the ingestible documents of this source.

        Returns:
            Documents in processing order
        """
        pass

    @abstractmethod
    async def fetch_text(self, document: SourceDocument) -> ExtractedText:
        """
        Extract the text of a document.

        Raises:
            SourceError: If the document cannot be read
        """
        pass
