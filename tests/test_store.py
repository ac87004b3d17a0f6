"""Tests for catalog persistence."""

from datetime import datetime

import pytest

from catalog_ingest.db.store import DuplicateIngestionError, DuplicateProductError, ref_identity


def product_fields(name="Robo Arm", brand="ABB", **overrides):
    now = datetime(2024, 1, 1)
    fields = {
        "name": name,
        "brand": brand,
        "price": None,
        "brand_norm": brand.lower(),
        "name_norm": name.lower(),
        "norm": {"brand_norm": brand.lower(), "name_norm": name.lower()},
        "source_refs": [ref("doc1.pdf", "1")],
        "raw": None,
        "assets": [],
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return fields


def ref(file_name, source_id, page=None):
    return {
        "source": "pdf_extract",
        "collection": "pdfExtracts",
        "source_id": source_id,
        "file_name": file_name,
        "page": page,
    }


def test_ref_identity_ignores_page():
    assert ref_identity(ref("a.pdf", "1", page=2)) == ref_identity(ref("a.pdf", "1", page=9))
    assert ref_identity(ref("a.pdf", "1")) != ref_identity(ref("a.pdf", "2"))


@pytest.mark.asyncio
async def test_insert_and_find_product(catalog_store):
    """Test a product can be found by its normalized key."""
    product_id = await catalog_store.insert_product(product_fields())

    found = await catalog_store.find_product("abb", "robo arm")

    assert found is not None
    assert found.id == product_id
    assert found.name == "Robo Arm"
    assert await catalog_store.find_product("abb", "other") is None
    assert await catalog_store.count_products() == 1


@pytest.mark.asyncio
async def test_duplicate_key_is_rejected(catalog_store):
    """Test the unique index on the normalized key."""
    await catalog_store.insert_product(product_fields())

    with pytest.raises(DuplicateProductError):
        await catalog_store.insert_product(product_fields(name="robo arm", brand="abb"))

    assert await catalog_store.count_products() == 1


@pytest.mark.asyncio
async def test_update_product_adds_refs_as_a_set(catalog_store):
    """Test equal references are not appended twice."""
    product_id = await catalog_store.insert_product(product_fields())

    updated = await catalog_store.update_product(
        product_id,
        {"price": 99.5},
        add_source_refs=[ref("doc1.pdf", "1", page=4), ref("doc2.pdf", "2"), ref("doc2.pdf", "2")],
    )

    assert updated is True
    product = await catalog_store.get_product(product_id)
    assert product.price == 99.5
    assert [r["file_name"] for r in product.source_refs] == ["doc1.pdf", "doc2.pdf"]


@pytest.mark.asyncio
async def test_update_missing_product(catalog_store):
    """Test updating an unknown id reports nothing was written."""
    assert await catalog_store.update_product(12345, {"price": 1.0}) is False


@pytest.mark.asyncio
async def test_ingestion_records(catalog_store):
    """Test ingestion markers are written and detected."""
    assert await catalog_store.has_ingestion("doc1.pdf") is False

    record_id = await catalog_store.insert_ingestion({
        "file_name": "doc1.pdf",
        "source": "pdf_extract",
        "collection": "pdfExtracts",
        "source_key": "uploads/doc1.pdf",
        "extracted_text": "IRB 1200",
        "page_map": {"1": "IRB 1200"},
        "page_count": 1,
        "doc_metadata": {"pages": 1},
        "normalized_bom": [],
        "matched_products_count": 0,
        "created_at": datetime(2024, 1, 1),
    })

    assert record_id is not None
    assert await catalog_store.has_ingestion("doc1.pdf") is True
    assert await catalog_store.count_ingestions() == 1


@pytest.mark.asyncio
async def test_ping(catalog_store):
    """Test the connectivity check succeeds on a live database."""
    await catalog_store.ping()


@pytest.mark.asyncio
async def test_duplicate_ingestion_is_rejected(catalog_store):
    """Test a second record for the same file name raises a typed error."""
    fields = {
        "file_name": "x.pdf",
        "source": "pdf_extract",
        "collection": "pdfExtracts",
        "source_key": "a/x.pdf",
        "extracted_text": "",
        "created_at": datetime(2024, 1, 1),
    }
    await catalog_store.insert_ingestion(fields)

    with pytest.raises(DuplicateIngestionError):
        await catalog_store.insert_ingestion({**fields, "source_key": "b/x.pdf"})

    assert await catalog_store.count_ingestions() == 1
