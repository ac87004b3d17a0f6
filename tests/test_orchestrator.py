"""Tests for batch orchestration."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from sqlalchemy import select

from catalog_ingest.ai.product_matcher import MatchResult, ProductMatcher
from catalog_ingest.ai.retry_policy import RetryPolicy
from catalog_ingest.catalog.merger import ProductMerger
from catalog_ingest.catalog.models import CandidateProduct, SourceKind
from catalog_ingest.db.models import IngestionRecord
from catalog_ingest.db.store import DuplicateIngestionError
from catalog_ingest.ingest.base import DocumentSource, ExtractedText, SourceDocument, SourceError
from catalog_ingest.worker.orchestrator import BatchOrchestrator, RunTally


class FakeSource(DocumentSource):
    """In-memory source: file name -> text, or an exception to raise."""

    kind = SourceKind.PDF

    def __init__(self, texts):
        self.texts = texts
        self.fetched = []

    async def list(self):
        return [
            SourceDocument(file_name=name, source_key=f"uploads/{name}", kind=self.kind)
            for name in self.texts
        ]

    async def fetch_text(self, document):
        self.fetched.append(document.file_name)
        text = self.texts[document.file_name]
        if isinstance(text, Exception):
            raise text
        return ExtractedText(full_text=text, page_map={1: text}, metadata={"pages": 1})


def make_matcher(by_text):
    """Matcher stub returning fresh candidates keyed by document text."""

    async def match_result(document_text, manifest, source=SourceKind.PDF):
        return MatchResult(candidates=[
            CandidateProduct(**fields, raw=fields) for fields in by_text.get(document_text, [])
        ])

    matcher = MagicMock()
    matcher.match_result = AsyncMock(side_effect=match_result)
    return matcher


def make_orchestrator(source, store, manifest, matcher, batch_size=3):
    return BatchOrchestrator(
        source=source,
        store=store,
        manifest=manifest,
        matcher=matcher,
        merger=ProductMerger(store),
        batch_size=batch_size,
    )


@pytest.mark.asyncio
async def test_rerun_is_idempotent(catalog_store, manifest):
    """Test a second run over the same documents writes nothing new."""
    source = FakeSource({"doc1.pdf": "IRB 1200 $1,200.00", "doc2.pdf": "FlexPicker"})
    matcher = make_matcher({
        "IRB 1200 $1,200.00": [{"name": "IRB 1200", "brand": "ABB"}],
        "FlexPicker": [{"name": "FlexPicker", "brand": "ABB"}],
    })
    orchestrator = make_orchestrator(source, catalog_store, manifest, matcher)

    first = await orchestrator.run()
    second = await orchestrator.run()

    assert first.documents_succeeded == 2
    assert first.products_inserted == 2
    assert second.documents_skipped == 2
    assert second.documents_succeeded == 0
    assert await catalog_store.count_products() == 2
    assert await catalog_store.count_ingestions() == 2
    assert matcher.match_result.await_count == 2


@pytest.mark.asyncio
async def test_failing_document_does_not_affect_siblings(catalog_store, manifest):
    """Test one failing document in a group leaves the others persisted."""
    source = FakeSource({
        "doc1.pdf": "IRB 1200",
        "doc2.pdf": SourceError("corrupt file"),
        "doc3.pdf": "OmniCore C30",
    })
    matcher = make_matcher({
        "IRB 1200": [{"name": "IRB 1200", "brand": "ABB"}],
        "OmniCore C30": [{"name": "OmniCore C30", "brand": "ABB"}],
    })
    orchestrator = make_orchestrator(source, catalog_store, manifest, matcher)

    tally = await orchestrator.run()

    assert tally.documents_succeeded == 2
    assert tally.documents_failed == 1
    assert await catalog_store.has_ingestion("doc1.pdf")
    assert not await catalog_store.has_ingestion("doc2.pdf")
    assert await catalog_store.has_ingestion("doc3.pdf")
    assert await catalog_store.count_products() == 2


@pytest.mark.asyncio
async def test_failed_document_is_retried_next_run(catalog_store, manifest):
    """Test a document without an ingestion record is processed again."""
    source = FakeSource({"doc1.pdf": SourceError("timeout")})
    orchestrator = make_orchestrator(source, catalog_store, manifest, make_matcher({}))

    assert (await orchestrator.run()).documents_failed == 1

    source.texts["doc1.pdf"] = "nothing to match"
    tally = await orchestrator.run()

    assert tally.documents_succeeded == 1
    assert source.fetched == ["doc1.pdf", "doc1.pdf"]


@pytest.mark.asyncio
async def test_invalid_candidate_is_isolated(catalog_store, manifest):
    """Test a candidate without a brand is counted and the rest are stored."""
    source = FakeSource({"doc1.pdf": "IRB 1200 and FlexPicker"})
    matcher = make_matcher({
        "IRB 1200 and FlexPicker": [
            {"name": "IRB 1200", "brand": "ABB"},
            {"name": "Mystery Arm"},
            {"name": "FlexPicker", "brand": "ABB"},
        ],
    })
    orchestrator = make_orchestrator(source, catalog_store, manifest, matcher)

    tally = await orchestrator.run()

    assert tally.documents_succeeded == 1
    assert tally.products_failed == 1
    assert tally.products_inserted == 2
    assert await catalog_store.count_products() == 2


@pytest.mark.asyncio
async def test_no_matches_still_records_ingestion(catalog_store, manifest):
    """Test a document with zero candidates is marked processed."""
    source = FakeSource({"doc1.pdf": "unrelated text"})
    orchestrator = make_orchestrator(source, catalog_store, manifest, make_matcher({}))

    tally = await orchestrator.run()

    assert tally.documents_succeeded == 1
    assert await catalog_store.has_ingestion("doc1.pdf")
    assert await catalog_store.count_products() == 0


@pytest.mark.asyncio
async def test_price_fallback_from_text(catalog_store, manifest):
    """Test a missing model price is filled from the document text."""
    text = "Robo Arm Model X Price: $1,234.56"
    source = FakeSource({"doc1.pdf": text})
    matcher = make_matcher({text: [{"name": "Robo Arm Model X", "brand": "ABB"}]})
    orchestrator = make_orchestrator(source, catalog_store, manifest, matcher)

    await orchestrator.run()

    product = await catalog_store.find_product("abb", "robo arm model x")
    assert product.price == 1234.56


@pytest.mark.asyncio
async def test_model_price_is_kept(catalog_store, manifest):
    """Test the fallback never replaces a price the model supplied."""
    text = "Robo Arm Model X Price: $1,234.56"
    source = FakeSource({"doc1.pdf": text})
    matcher = make_matcher({text: [{"name": "Robo Arm Model X", "brand": "ABB", "price": 999.0}]})
    orchestrator = make_orchestrator(source, catalog_store, manifest, matcher)

    await orchestrator.run()

    product = await catalog_store.find_product("abb", "robo arm model x")
    assert product.price == 999.0


@pytest.mark.asyncio
async def test_same_product_across_documents(catalog_store, manifest):
    """Test sightings in two documents merge into one product with two refs."""
    source = FakeSource({"doc1.pdf": "first", "doc2.pdf": "second"})
    matcher = make_matcher({
        "first": [{"name": "Robo Arm", "brand": "ABB"}],
        "second": [{"name": "robo arm", "brand": "abb"}],
    })
    orchestrator = make_orchestrator(source, catalog_store, manifest, matcher, batch_size=1)

    tally = await orchestrator.run()

    assert tally.products_inserted == 1
    assert tally.products_updated == 1
    products = await catalog_store.list_products()
    assert len(products) == 1
    assert [r["file_name"] for r in products[0].source_refs] == ["doc1.pdf", "doc2.pdf"]
    assert {r["source"] for r in products[0].source_refs} == {"pdf_extract"}
    assert {r["collection"] for r in products[0].source_refs} == {"pdfExtracts"}


@pytest.mark.asyncio
async def test_ingestion_record_contents(catalog_store, manifest):
    """Test the ingestion record carries text, pages and the manifest scan."""
    source = FakeSource({"doc1.pdf": "IRB 1200 brochure"})
    matcher = make_matcher({"IRB 1200 brochure": [{"name": "IRB 1200", "brand": "ABB", "page": 1}]})
    orchestrator = make_orchestrator(source, catalog_store, manifest, matcher)

    await orchestrator.run()

    async with catalog_store._session_factory() as db:
        record = (await db.execute(select(IngestionRecord))).scalar_one()

    assert record.collection == "pdfExtracts"
    assert record.source == "pdf_extract"
    assert record.page_map == {"1": "IRB 1200 brochure"}
    assert record.page_count == 1
    assert record.matched_products_count == 1
    assert record.normalized_bom[0]["vendor_name"] == "ABB"

    product = await catalog_store.find_product("abb", "irb 1200")
    assert product.source_refs[0]["source_id"] == str(record.id)
    assert product.source_refs[0]["page"] == 1


@pytest.mark.asyncio
async def test_groups_are_bounded(catalog_store, manifest):
    """Test documents are processed in groups of batch_size."""
    names = [f"doc{i}.pdf" for i in range(5)]
    source = FakeSource({name: name for name in names})
    orchestrator = make_orchestrator(source, catalog_store, manifest, make_matcher({}), batch_size=2)

    tally = await orchestrator.run()

    assert tally.documents_succeeded == 5
    assert sorted(source.fetched) == names


@pytest.mark.asyncio
async def test_empty_source(catalog_store, manifest):
    """Test an empty source yields an empty tally."""
    orchestrator = make_orchestrator(FakeSource({}), catalog_store, manifest, make_matcher({}))

    assert await orchestrator.run() == RunTally()


def rate_limited_matcher(calls):
    """Real matcher whose service answers 429 on every attempt."""
    response = httpx.Response(
        429, request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    )
    llm = MagicMock()
    llm.complete = calls
    calls.side_effect = openai.RateLimitError("rate limited", response=response, body=None)
    return ProductMatcher(llm, retry_policy=RetryPolicy(max_attempts=3), sleep=AsyncMock())


@pytest.mark.asyncio
async def test_exhausted_retries_fail_document(catalog_store, manifest):
    """Test a document whose matching gave up is failed and retried next run."""
    calls = AsyncMock()
    source = FakeSource({"doc1.pdf": "IRB 1200 brochure"})
    orchestrator = make_orchestrator(source, catalog_store, manifest, rate_limited_matcher(calls))

    first = await orchestrator.run()

    assert first.documents_failed == 1
    assert first.documents_succeeded == 0
    assert not await catalog_store.has_ingestion("doc1.pdf")
    assert calls.await_count == 3

    second = await orchestrator.run()

    assert second.documents_failed == 1
    assert second.documents_skipped == 0
    assert calls.await_count == 6


@pytest.mark.asyncio
async def test_zero_matches_is_not_a_failure(catalog_store, manifest):
    """Test an honest empty answer still counts as processed."""
    llm = MagicMock()
    llm.complete = AsyncMock(return_value='{"products": []}')
    matcher = ProductMatcher(llm, sleep=AsyncMock())
    source = FakeSource({"doc1.pdf": "no products here"})
    orchestrator = make_orchestrator(source, catalog_store, manifest, matcher)

    tally = await orchestrator.run()

    assert tally.documents_succeeded == 1
    assert await catalog_store.has_ingestion("doc1.pdf")


@pytest.mark.asyncio
async def test_duplicate_file_names_in_one_run_are_skipped(catalog_store, manifest):
    """Test two keys ending in the same file name are processed once."""
    source = FakeSource({"x.pdf": "IRB 1200"})
    matcher = make_matcher({"IRB 1200": [{"name": "IRB 1200", "brand": "ABB"}]})
    orchestrator = make_orchestrator(source, catalog_store, manifest, matcher)
    documents = [
        SourceDocument(file_name="x.pdf", source_key="a/x.pdf", kind=SourceKind.PDF),
        SourceDocument(file_name="x.pdf", source_key="b/x.pdf", kind=SourceKind.PDF),
    ]

    tally = await orchestrator.run(documents)

    assert tally.documents_succeeded == 1
    assert tally.documents_skipped == 1
    assert tally.documents_failed == 0
    assert matcher.match_result.await_count == 1


@pytest.mark.asyncio
async def test_concurrently_recorded_document_is_skipped(catalog_store, manifest, monkeypatch):
    """Test losing the ingestion-record race counts as a skip, not a failure."""
    monkeypatch.setattr(
        catalog_store, "insert_ingestion", AsyncMock(side_effect=DuplicateIngestionError("x.pdf"))
    )
    source = FakeSource({"x.pdf": "IRB 1200"})
    matcher = make_matcher({"IRB 1200": [{"name": "IRB 1200", "brand": "ABB"}]})
    orchestrator = make_orchestrator(source, catalog_store, manifest, matcher)

    tally = await orchestrator.run()

    assert tally.documents_skipped == 1
    assert tally.documents_failed == 0
    assert await catalog_store.count_products() == 0
