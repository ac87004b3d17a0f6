"""Command-line entry point for an ingestion run."""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

import boto3
from pydantic import ValidationError

from catalog_ingest import metrics
from catalog_ingest.ai.llm_service import LLMService
from catalog_ingest.ai.product_matcher import ProductMatcher
from catalog_ingest.ai.retry_policy import RetryPolicy
from catalog_ingest.catalog.manifest import load_manifest
from catalog_ingest.catalog.merger import ProductMerger
from catalog_ingest.config import ConfigError, Settings
from catalog_ingest.db.session import create_engine
from catalog_ingest.db.store import CatalogStore
from catalog_ingest.ingest.base import DocumentSource
from catalog_ingest.ingest.pdf import PdfSource
from catalog_ingest.ingest.textract import TextractSource
from catalog_ingest.ingest.urdf import UrdfSource
from catalog_ingest.logging_config import setup_logging
from catalog_ingest.worker.orchestrator import BatchOrchestrator, RunTally

logger = logging.getLogger(__name__)

SOURCES = ("urdf", "pdf", "textract")


def aws_client(service: str, settings: Settings):
    """boto3 client; explicit keys only when both are configured."""
    kwargs = {"region_name": settings.aws_region}
    if settings.aws_access_key_id and settings.aws_secret_access_key:
        kwargs["aws_access_key_id"] = settings.aws_access_key_id
        kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
    return boto3.client(service, **kwargs)


def build_source(kind: str, settings: Settings) -> DocumentSource:
    """Document source for the requested kind."""
    if kind == "urdf":
        return UrdfSource(settings.urdf_folder)
    if kind == "pdf":
        return PdfSource(settings.pdf_folder)
    if kind == "textract":
        return TextractSource.from_settings(
            settings,
            aws_client("textract", settings),
            aws_client("s3", settings),
            bucket=settings.s3_bucket,
            prefix=settings.s3_prefix,
        )
    raise ConfigError(f"Unknown source '{kind}' (expected one of: {', '.join(SOURCES)})")


async def run_ingestion(kind: str, settings: Settings) -> RunTally:
    """
    Run one ingestion over a source.

    Raises:
        ConfigError: On invalid configuration or manifest
        Exception: If the database cannot be reached
    """
    settings.require(kind)
    manifest = load_manifest(settings.manifest_path)
    source = build_source(kind, settings)

    store = CatalogStore(create_engine(settings.database_url))
    llm_service = LLMService(settings)
    try:
        logger.info("Connecting to database...")
        await store.ping()
        await store.create_schema()
        logger.info("Database connected")

        matcher = ProductMatcher(
            llm_service,
            RetryPolicy(
                max_attempts=settings.llm_max_attempts,
                rate_limit_wait=settings.llm_rate_limit_wait_seconds,
                server_error_wait=settings.llm_server_error_wait_seconds,
            ),
        )
        orchestrator = BatchOrchestrator(
            source=source,
            store=store,
            manifest=manifest,
            matcher=matcher,
            merger=ProductMerger(store),
            batch_size=settings.batch_size,
        )

        tally = await orchestrator.run()

        ingestion_count = await store.count_ingestions()
        product_count = await store.count_products()
        logger.info(
            f"Database summary: {ingestion_count} ingestion record(s), "
            f"{product_count} product record(s)"
        )
        logger.info(f"LLM stats: {llm_service.get_stats()}")
        return tally
    finally:
        await llm_service.close()
        await store.close()
        if settings.metrics_pushgateway_url:
            metrics.push_metrics(settings.metrics_pushgateway_url)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="catalog-ingest",
        description="Match vendor documents against the manifest and merge products into the catalog.",
    )
    parser.add_argument("source", choices=SOURCES, help="Document source to ingest")
    args = parser.parse_args(argv)

    try:
        settings = Settings()
    except ValidationError as e:
        # Logging is configured from these settings, so report on stderr
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(settings.log_level, settings.log_dir or None)

    try:
        tally = asyncio.run(run_ingestion(args.source, settings))
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1

    logger.info(f"Ingestion finished: {tally.summary()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
