"""Shared fixtures."""

import json

import pytest
import pytest_asyncio

from catalog_ingest.catalog.manifest import Manifest
from catalog_ingest.config import Settings

MANIFEST_DATA = {
    "vendors": [
        {
            "vendor_name": "ABB",
            "product_groups": [
                {
                    "product_group": "Industrial Robots",
                    "bom_layer": "L1",
                    "items": ["IRB 1200", "YuMi (IRB 14000)", "FlexPicker"],
                },
                {
                    "product_group": "Controllers",
                    "bom_layer": "L2",
                    "items": ["OmniCore C30"],
                },
            ],
        },
        {
            "vendor_name": "Siemens",
            "product_groups": [
                {
                    "product_group": "PLCs",
                    "bom_layer": "L3",
                    "items": ["SIMATIC S7-1500"],
                },
            ],
        },
    ]
}


@pytest.fixture
def manifest_data():
    return json.loads(json.dumps(MANIFEST_DATA))


@pytest.fixture
def manifest(manifest_data) -> Manifest:
    return Manifest.model_validate(manifest_data)


@pytest.fixture
def manifest_file(tmp_path, manifest_data):
    path = tmp_path / "manifest.json"
    path.write_text(json.dumps(manifest_data), encoding="utf-8")
    return path


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        openai_api_key="sk-test",
    )


@pytest_asyncio.fixture
async def catalog_store(tmp_path):
    """CatalogStore over a throwaway SQLite file."""
    pytest.importorskip("aiosqlite")
    from catalog_ingest.db.session import create_engine
    from catalog_ingest.db.store import CatalogStore

    store = CatalogStore(create_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}"))
    await store.create_schema()
    yield store
    await store.close()
