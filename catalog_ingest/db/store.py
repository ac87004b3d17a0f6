"""Catalog persistence: products and ingestion records."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from catalog_ingest.db.models import Base, IngestionRecord, ProductRecord
from catalog_ingest.db.session import create_session_factory

logger = logging.getLogger(__name__)

REF_IDENTITY_FIELDS = ("source", "collection", "source_id", "file_name")


class DuplicateProductError(Exception):
    """Raised when an insert collides with an existing normalized key."""

    pass


class DuplicateIngestionError(Exception):
    """Raised when an ingestion record already exists for a file name."""

    pass


def ref_identity(ref: Dict[str, Any]) -> tuple:
    """Value-equality key for a stored source reference."""
    return tuple(str(ref.get(name)) for name in REF_IDENTITY_FIELDS)


class CatalogStore:
    """
    Document-style access to the catalog tables.

    Every call uses its own session, so concurrent documents never share
    session state. There is no multi-document transaction.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_factory = create_session_factory(engine)

    async def create_schema(self):
        """Create tables and indexes if they do not exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self):
        """Round-trip to the database; raises if it is unreachable."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self):
        """Dispose of pooled connections."""
        await self.engine.dispose()

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def find_product(self, brand_norm: str, name_norm: str) -> Optional[ProductRecord]:
        """Look up a product by its normalized key."""
        async with self._session_factory() as db:
            query = select(ProductRecord).where(
                ProductRecord.brand_norm == brand_norm,
                ProductRecord.name_norm == name_norm,
            )
            result = await db.execute(query)
            return result.scalar_one_or_none()

    async def insert_product(self, fields: Dict[str, Any]) -> int:
        """
        Insert a new product.

        Raises:
            DuplicateProductError: If the normalized key already exists
        """
        async with self._session_factory() as db:
            product = ProductRecord(**fields)
            db.add(product)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise DuplicateProductError(
                    f"Product already exists for key "
                    f"({fields.get('brand_norm')!r}, {fields.get('name_norm')!r})"
                ) from e
            return product.id

    async def update_product(
        self,
        product_id: int,
        set_fields: Dict[str, Any],
        add_source_refs: Iterable[Dict[str, Any]] = (),
    ) -> bool:
        """
        Update a product in place.

        Args:
            product_id: Product to update
            set_fields: Column values to overwrite
            add_source_refs: References appended unless an equal one is present

        Returns:
            True if the product was found and written
        """
        async with self._session_factory() as db:
            query = select(ProductRecord).where(ProductRecord.id == product_id).with_for_update()
            result = await db.execute(query)
            product = result.scalar_one_or_none()
            if product is None:
                return False

            for name, value in set_fields.items():
                setattr(product, name, value)

            refs = list(product.source_refs or [])
            seen = {ref_identity(ref) for ref in refs}
            for ref in add_source_refs:
                if ref_identity(ref) not in seen:
                    refs.append(ref)
                    seen.add(ref_identity(ref))
            # Reassign so the JSON column is flagged as modified
            product.source_refs = refs

            await db.commit()
            return True

    async def get_product(self, product_id: int) -> Optional[ProductRecord]:
        async with self._session_factory() as db:
            return await db.get(ProductRecord, product_id)

    async def list_products(self) -> List[ProductRecord]:
        async with self._session_factory() as db:
            result = await db.execute(select(ProductRecord).order_by(ProductRecord.id))
            return list(result.scalars().all())

    async def count_products(self) -> int:
        async with self._session_factory() as db:
            result = await db.execute(select(func.count()).select_from(ProductRecord))
            return result.scalar_one()

    # ------------------------------------------------------------------
    # Ingestion records
    # ------------------------------------------------------------------

    async def has_ingestion(self, file_name: str) -> bool:
        """Whether a document with this file name was already processed."""
        async with self._session_factory() as db:
            query = select(IngestionRecord.id).where(IngestionRecord.file_name == file_name)
            result = await db.execute(query)
            return result.first() is not None

    async def insert_ingestion(self, fields: Dict[str, Any]) -> int:
        """
        Write the ingestion record for a document and return its id.

        Raises:
            DuplicateIngestionError: If the file name was recorded concurrently
        """
        async with self._session_factory() as db:
            record = IngestionRecord(**fields)
            db.add(record)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise DuplicateIngestionError(
                    f"Ingestion record already exists for {fields.get('file_name')!r}"
                ) from e
            logger.debug(f"Saved ingestion record {record.id} for {record.file_name}")
            return record.id

    async def count_ingestions(self) -> int:
        async with self._session_factory() as db:
            result = await db.execute(select(func.count()).select_from(IngestionRecord))
            return result.scalar_one()
