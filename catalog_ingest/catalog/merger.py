"""Insert-or-merge of candidate products into the catalog."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from catalog_ingest.catalog.models import (
    CandidateProduct,
    RawContext,
    SourceRef,
    UpsertOutcome,
    UpsertResult,
)
from catalog_ingest.catalog.normalizer import NormalizedKey, ProductNormalizer
from catalog_ingest.db.models import ProductRecord
from catalog_ingest.db.store import CatalogStore, DuplicateProductError, ref_identity

logger = logging.getLogger(__name__)

# Nullable fields a later candidate may fill in but never clear
MERGEABLE_FIELDS = ("product_type", "sub_type", "price", "bom_layer", "vendor_name")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ProductMerger:
    """
    Deduplicates candidates by normalized (brand, name) key.

    A new key creates a product; a known key updates the existing product:
    non-null candidate values overwrite, null values never do, and the
    source reference is appended unless an equal one is already present.
    """

    def __init__(self, store: CatalogStore, normalizer: Optional[ProductNormalizer] = None):
        self.store = store
        self.normalizer = normalizer or ProductNormalizer()

    async def upsert(
        self,
        candidate: CandidateProduct,
        provenance: SourceRef,
        raw_context: Optional[RawContext] = None,
    ) -> UpsertResult:
        """
        Insert or merge one validated candidate.

        Args:
            candidate: Candidate with name and brand present
            provenance: Where the candidate was found
            raw_context: Extraction context stored as the product's `raw`

        Returns:
            UpsertResult with outcome and product id
        """
        candidate.validate()
        key = self.normalizer.normalize(candidate)
        raw = raw_context.to_dict() if raw_context else None

        existing = await self.store.find_product(key.brand_norm, key.name_norm)
        if existing is None:
            try:
                product_id = await self.store.insert_product(
                    self._new_product_fields(candidate, key, provenance, raw)
                )
                logger.info(f"Inserted new product: {candidate.label}")
                return UpsertResult(outcome=UpsertOutcome.INSERTED, id=product_id)
            except DuplicateProductError:
                # Another document inserted the same key first; merge into it
                logger.info(f"Concurrent insert for {candidate.label}, merging instead")
                existing = await self.store.find_product(key.brand_norm, key.name_norm)
                if existing is None:
                    raise

        return await self._merge(existing, candidate, provenance, raw)

    async def _merge(
        self,
        existing: ProductRecord,
        candidate: CandidateProduct,
        provenance: SourceRef,
        raw: Optional[Dict[str, Any]],
    ) -> UpsertResult:
        set_fields: Dict[str, Any] = {}
        for name in MERGEABLE_FIELDS:
            value = getattr(candidate, name)
            if value is not None and value != getattr(existing, name):
                set_fields[name] = value

        ref = provenance.to_dict()
        known_refs = {ref_identity(r) for r in (existing.source_refs or [])}
        new_ref = ref_identity(ref) not in known_refs

        changed = bool(set_fields) or new_ref

        if raw is not None:
            set_fields["raw"] = raw
        set_fields["updated_at"] = _utcnow()

        await self.store.update_product(
            existing.id,
            set_fields,
            add_source_refs=[ref] if new_ref else [],
        )

        if changed:
            logger.info(f"Updated existing product: {candidate.label}")
            return UpsertResult(outcome=UpsertOutcome.UPDATED, id=existing.id)

        logger.info(f"Product already exists (no changes): {candidate.label}")
        return UpsertResult(outcome=UpsertOutcome.UNCHANGED, id=existing.id)

    @staticmethod
    def _new_product_fields(
        candidate: CandidateProduct,
        key: NormalizedKey,
        provenance: SourceRef,
        raw: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        now = _utcnow()
        return {
            "name": candidate.name,
            "brand": candidate.brand,
            "product_type": candidate.product_type,
            "sub_type": candidate.sub_type,
            "bom_layer": candidate.bom_layer,
            "vendor_name": candidate.vendor_name,
            "price": candidate.price,
            "brand_norm": key.brand_norm,
            "name_norm": key.name_norm,
            "norm": key.to_dict(),
            "source_refs": [provenance.to_dict()],
            "raw": raw,
            "assets": [],
            "created_at": now,
            "updated_at": now,
        }
