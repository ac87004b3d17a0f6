"""Batch orchestration of document ingestion."""

import asyncio
import json
import logging
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from catalog_ingest import metrics
from catalog_ingest.ai.product_matcher import MatchUnavailableError, ProductMatcher
from catalog_ingest.catalog.manifest import Manifest
from catalog_ingest.catalog.merger import ProductMerger
from catalog_ingest.catalog.models import (
    CandidateError,
    CandidateProduct,
    RawContext,
    SourceRef,
    UpsertOutcome,
)
from catalog_ingest.catalog.price_extractor import PriceExtractor
from catalog_ingest.db.store import CatalogStore, DuplicateIngestionError
from catalog_ingest.ingest.base import DocumentSource, ExtractedText, SourceDocument
from catalog_ingest.logging_config import get_logger

logger = logging.getLogger(__name__)


@dataclass
class RunTally:
    """Success/skip/failure counters for a group or a whole run."""

    documents_succeeded: int = 0
    documents_skipped: int = 0
    documents_failed: int = 0
    products_inserted: int = 0
    products_updated: int = 0
    products_unchanged: int = 0
    products_failed: int = 0

    def add(self, other: "RunTally") -> None:
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))

    def count_outcome(self, outcome: UpsertOutcome) -> None:
        if outcome is UpsertOutcome.INSERTED:
            self.products_inserted += 1
        elif outcome is UpsertOutcome.UPDATED:
            self.products_updated += 1
        else:
            self.products_unchanged += 1

    def summary(self) -> str:
        return (
            f"{self.documents_succeeded} succeeded, {self.documents_skipped} skipped, "
            f"{self.documents_failed} failed; products: {self.products_inserted} inserted, "
            f"{self.products_updated} updated, {self.products_unchanged} unchanged, "
            f"{self.products_failed} failed"
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BatchOrchestrator:
    """
    Runs documents through match → normalize → merge in bounded groups.

    Groups of `batch_size` documents run concurrently; the next group starts
    when every member of the current one has finished. A failing document
    never affects its siblings, and a failing candidate never affects the
    other candidates of its document.
    """

    def __init__(
        self,
        source: DocumentSource,
        store: CatalogStore,
        manifest: Manifest,
        matcher: ProductMatcher,
        merger: ProductMerger,
        batch_size: int = 3,
        price_extractor: Optional[PriceExtractor] = None,
    ):
        self.source = source
        self.store = store
        self.manifest = manifest
        self.matcher = matcher
        self.merger = merger
        self.batch_size = max(1, batch_size)
        self.price_extractor = price_extractor or PriceExtractor()

    async def run(self, documents: Optional[Sequence[SourceDocument]] = None) -> RunTally:
        """
        Process documents in groups and return the run tally.

        Args:
            documents: Documents to process (defaults to everything the source lists)
        """
        if documents is None:
            documents = await self.source.list()

        run_tally = RunTally()
        if not documents:
            logger.warning("No documents found. Nothing to ingest.")
            return run_tally

        documents, duplicates = self._unique_by_file_name(documents)
        run_tally.documents_skipped += duplicates

        total_groups = (len(documents) + self.batch_size - 1) // self.batch_size

        for group_index, start in enumerate(range(0, len(documents), self.batch_size), 1):
            group = documents[start:start + self.batch_size]
            logger.info(
                f"Processing batch {group_index} of {total_groups} ({len(group)} file(s))"
            )

            results = await asyncio.gather(
                *(self._process_safely(document) for document in group),
                return_exceptions=True,
            )

            group_tally = RunTally()
            for document, result in zip(group, results):
                if isinstance(result, BaseException):
                    # _process_safely already catches Exception; this is the last guard
                    logger.error(f"Batch item failed: {document.file_name} → {result}")
                    result = RunTally(documents_failed=1)
                group_tally.add(result)

            logger.info(f"Batch {group_index} complete: {group_tally.summary()}")
            run_tally.add(group_tally)

        logger.info(f"Batch processing complete: {run_tally.summary()}")
        return run_tally

    @staticmethod
    def _unique_by_file_name(
        documents: Sequence[SourceDocument],
    ) -> Tuple[List[SourceDocument], int]:
        """Keep the first document per file name; the skip key is the file name."""
        seen = set()
        unique = []
        for document in documents:
            if document.file_name in seen:
                logger.warning(
                    f"Skipped (duplicate file name in this run): {document.source_key}"
                )
                metrics.documents_processed_total.labels(
                    source=document.kind.value, status="skipped"
                ).inc()
                continue
            seen.add(document.file_name)
            unique.append(document)
        return unique, len(documents) - len(unique)

    async def _process_safely(self, document: SourceDocument) -> RunTally:
        """Document-level failure boundary."""
        try:
            tally = await self.process_document(document)
        except Exception as e:
            logger.exception(f"{document.file_name} → {e}")
            metrics.documents_processed_total.labels(
                source=document.kind.value, status="failed"
            ).inc()
            return RunTally(documents_failed=1)

        status = "skipped" if tally.documents_skipped else "succeeded"
        metrics.documents_processed_total.labels(source=document.kind.value, status=status).inc()
        return tally

    async def process_document(self, document: SourceDocument) -> RunTally:
        """
        Ingest one document.

        Raises whatever the source, matcher or store raise before the
        ingestion record is written, and MatchUnavailableError when the
        service gave up; candidate failures are counted instead.
        """
        log = get_logger(__name__, file_name=document.file_name, source_kind=document.kind.value)
        tally = RunTally()

        if await self.store.has_ingestion(document.file_name):
            log.warning(f"Skipped (already processed): {document.file_name}")
            tally.documents_skipped = 1
            return tally

        log.info(f"Processing {document.kind.value}: {document.file_name}")

        extracted = await self.source.fetch_text(document)
        log.info(f"Extracted text length: {len(extracted.full_text)} characters")

        normalized_bom = self.manifest.scan(extracted.full_text)
        match = await self.matcher.match_result(extracted.full_text, self.manifest, document.kind)
        if match.gave_up:
            # No ingestion record, so the next run retries this document
            raise MatchUnavailableError(f"Product matching gave up for {document.file_name}")
        candidates = match.candidates
        if candidates:
            sample = [c.raw for c in candidates[:2]]
            log.info(f"Sample matched products: {json.dumps(sample, default=str)[:1000]}")

        try:
            ingestion_id = await self.store.insert_ingestion({
                "file_name": document.file_name,
                "source": document.kind.value,
                "collection": document.kind.collection,
                "source_key": document.source_key,
                "extracted_text": extracted.full_text,
                "page_map": {str(page): text for page, text in extracted.page_map.items()} or None,
                "page_count": extracted.page_count or extracted.metadata.get("pages"),
                "doc_metadata": extracted.metadata or None,
                "normalized_bom": normalized_bom,
                "matched_products_count": len(candidates),
                "created_at": _utcnow(),
            })
        except DuplicateIngestionError:
            log.warning(f"Skipped (recorded concurrently): {document.file_name}")
            tally.documents_skipped = 1
            return tally
        log.info(f"Saved ingestion record: {document.file_name} (ID: {ingestion_id})")

        for candidate in candidates:
            await self._store_candidate(candidate, document, extracted, str(ingestion_id), tally)

        if not candidates:
            log.warning(f"No products matched for {document.file_name} - ingestion record still saved")
        else:
            log.info(
                f"{document.file_name}: {tally.products_inserted} inserted, "
                f"{tally.products_updated} updated, {tally.products_unchanged} unchanged, "
                f"{tally.products_failed} failed"
            )

        tally.documents_succeeded = 1
        return tally

    async def _store_candidate(
        self,
        candidate: CandidateProduct,
        document: SourceDocument,
        extracted: ExtractedText,
        ingestion_id: str,
        tally: RunTally,
    ) -> None:
        """Candidate-level failure boundary."""
        source = document.kind.value
        try:
            candidate.validate()

            if candidate.price is None:
                candidate.price = self.price_extractor.extract_price(
                    extracted.full_text, candidate.name
                )

            provenance = SourceRef(
                source=document.kind,
                collection=document.kind.collection,
                source_id=ingestion_id,
                file_name=document.file_name,
                page=candidate.page,
                file_path=document.file_path,
                component_type=candidate.component_type,
            )
            raw_context = RawContext(
                file_name=document.file_name,
                source_key=document.source_key,
                page=candidate.page,
                file_path=document.file_path,
                component_type=candidate.component_type,
                extra=extracted.metadata,
            )

            result = await self.merger.upsert(candidate, provenance, raw_context)
        except CandidateError as e:
            tally.products_failed += 1
            metrics.candidates_failed_total.labels(source=source, reason="invalid").inc()
            logger.warning(f"Skipping product from {document.file_name}: {e}")
            return
        except Exception as e:
            tally.products_failed += 1
            metrics.candidates_failed_total.labels(source=source, reason="store").inc()
            logger.error(
                f"Failed to save product {candidate.label} from {document.file_name}: {e}",
                exc_info=True,
            )
            return

        tally.count_outcome(result.outcome)
        metrics.products_upserted_total.labels(source=source, outcome=result.outcome.value).inc()
