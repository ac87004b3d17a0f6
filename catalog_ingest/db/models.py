"""SQLAlchemy database models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ProductRecord(Base):
    """Catalog product, unique by normalized (brand, name)."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    brand: Mapped[str] = mapped_column(Text, nullable=False)
    product_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sub_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    bom_layer: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    vendor_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Dedup key, copied out of `norm` so it can carry the unique index
    brand_norm: Mapped[str] = mapped_column(String(255), nullable=False)
    name_norm: Mapped[str] = mapped_column(String(255), nullable=False)

    norm: Mapped[dict] = mapped_column(JSON, nullable=False)  # NormalizedKey
    source_refs: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    raw: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)  # Last-seen extraction context
    assets: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # Image references

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("brand_norm", "name_norm", name="uq_product_norm_key"),
    )


class IngestionRecord(Base):
    """Per-document marker; its presence means the document was processed."""

    __tablename__ = "ingestion_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    file_name: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)  # pdf_extract, urdf_extract
    collection: Mapped[str] = mapped_column(String(64), nullable=False)
    source_key: Mapped[str] = mapped_column(Text, nullable=False)
    extracted_text: Mapped[str] = mapped_column(Text, nullable=False)
    page_map: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    page_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    doc_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    normalized_bom: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    matched_products_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
