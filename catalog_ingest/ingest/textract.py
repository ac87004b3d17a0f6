"""OCR-backed PDF source driven by an asynchronous document-analysis job.

The OCR and object-storage clients are injected. Any objects exposing the
boto3 method shapes work (`start_document_analysis`/`get_document_analysis`
and `list_objects_v2`); their calls are blocking and run in worker threads.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from catalog_ingest.catalog.models import SourceKind
from catalog_ingest.config import Settings
from catalog_ingest.ingest.base import (
    DocumentSource,
    ExtractedText,
    SourceDocument,
    SourceError,
    build_page_map,
)

logger = logging.getLogger(__name__)

FEATURE_TYPES = ["TABLES", "FORMS"]


class OcrJobError(SourceError):
    """Raised when an OCR job ends in any state other than SUCCEEDED."""

    pass


class TextractSource(DocumentSource):
    """PDFs in an object-storage bucket, text extracted by an OCR job."""

    kind = SourceKind.PDF

    def __init__(
        self,
        ocr_client: Any,
        storage_client: Any,
        bucket: str,
        prefix: str = "uploads/",
        poll_interval: float = 3.0,
    ):
        self.ocr_client = ocr_client
        self.storage_client = storage_client
        self.bucket = bucket
        self.prefix = prefix
        self.poll_interval = poll_interval

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        ocr_client: Any,
        storage_client: Any,
        bucket: str,
        prefix: str = "uploads/",
    ) -> "TextractSource":
        """Build a source using the configured OCR poll interval."""
        return cls(
            ocr_client,
            storage_client,
            bucket,
            prefix=prefix,
            poll_interval=settings.ocr_poll_interval_ms / 1000,
        )

    async def list(self) -> List[SourceDocument]:
        keys: List[str] = []
        token: Optional[str] = None

        while True:
            request = {"Bucket": self.bucket, "Prefix": self.prefix}
            if token:
                request["ContinuationToken"] = token
            response = await asyncio.to_thread(self.storage_client.list_objects_v2, **request)
            keys.extend(obj["Key"] for obj in response.get("Contents", []))
            if not response.get("IsTruncated"):
                break
            token = response.get("NextContinuationToken")

        documents = [
            SourceDocument(
                file_name=key.split("/")[-1],
                source_key=key,
                kind=self.kind,
            )
            for key in keys
            if key.lower().endswith(".pdf")
        ]
        logger.info(f"Found {len(documents)} PDF(s) in {self.bucket}/{self.prefix}")
        return documents

    async def fetch_text(self, document: SourceDocument) -> ExtractedText:
        job_id = await self._start_job(document.source_key)
        blocks, total_pages = await self._wait_for_job(job_id, document.file_name)

        pages: Dict[int, List[str]] = {}
        lines: List[str] = []
        table_count = 0
        for block in blocks:
            if block.get("BlockType") == "LINE":
                text = block.get("Text", "")
                lines.append(text)
                pages.setdefault(int(block.get("Page", 1)), []).append(text)
            elif block.get("BlockType") == "TABLE":
                table_count += 1

        return ExtractedText(
            full_text="\n".join(lines),
            page_map=build_page_map(pages),
            metadata={
                "job_id": job_id,
                "bucket": self.bucket,
                "pages": total_pages,
                "tables_found": table_count,
                "blocks_returned": len(blocks),
            },
        )

    async def _start_job(self, key: str) -> str:
        logger.info(f"Starting OCR job for {key}")
        response = await asyncio.to_thread(
            self.ocr_client.start_document_analysis,
            DocumentLocation={"S3Object": {"Bucket": self.bucket, "Name": key}},
            FeatureTypes=FEATURE_TYPES,
        )
        return response["JobId"]

    async def _wait_for_job(self, job_id: str, file_name: str) -> tuple[List[Dict[str, Any]], Optional[int]]:
        """Poll until the job leaves IN_PROGRESS, then collect every result page."""
        status = "IN_PROGRESS"
        result: Dict[str, Any] = {}

        while status == "IN_PROGRESS":
            await asyncio.sleep(self.poll_interval)
            result = await asyncio.to_thread(self.ocr_client.get_document_analysis, JobId=job_id)
            status = result.get("JobStatus")
            logger.info(f"OCR status for {file_name}: {status}")

        if status != "SUCCEEDED":
            message = result.get("StatusMessage") or "no status message"
            raise OcrJobError(f"OCR job {job_id} for {file_name} ended with {status}: {message}")

        blocks = list(result.get("Blocks", []))
        total_pages = result.get("DocumentMetadata", {}).get("Pages")

        token = result.get("NextToken")
        while token:
            page = await asyncio.to_thread(
                self.ocr_client.get_document_analysis, JobId=job_id, NextToken=token
            )
            blocks.extend(page.get("Blocks", []))
            token = page.get("NextToken")

        logger.info(f"OCR completed for {file_name} ({len(blocks)} blocks)")
        return blocks, total_pages
