"""Prometheus metrics for catalog ingestion."""

import logging

from prometheus_client import REGISTRY, Counter, Histogram, Info, push_to_gateway

logger = logging.getLogger(__name__)

# Application info
app_info = Info("catalog_ingest", "Catalog ingestion application info")
app_info.info({"version": "0.1.0", "name": "catalog-ingest"})

# Document metrics
documents_processed_total = Counter(
    "documents_processed_total",
    "Total number of source documents handled",
    ["source", "status"],  # status: succeeded, skipped, failed
)

# Product metrics
products_upserted_total = Counter(
    "products_upserted_total",
    "Total number of candidate products written to the catalog",
    ["source", "outcome"],  # outcome: inserted, updated, unchanged
)

candidates_failed_total = Counter(
    "candidates_failed_total",
    "Total number of candidate products that could not be stored",
    ["source", "reason"],
)

# LLM metrics
llm_calls_total = Counter(
    "llm_calls_total",
    "Total number of matching calls to the reasoning service",
    ["status"],
)

llm_retries_total = Counter(
    "llm_retries_total",
    "Total number of retried matching calls",
    ["reason"],
)

llm_call_duration_seconds = Histogram(
    "llm_call_duration_seconds",
    "Time spent waiting for the reasoning service",
    buckets=[1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)


def push_metrics(gateway_url: str, job: str = "catalog_ingest") -> bool:
    """
    Push the registry to a Prometheus Pushgateway.

    A batch run exits before any scraper could reach it, so counters are
    pushed once at the end instead. Failures are logged, not raised.

    Returns:
        True if the push succeeded
    """
    try:
        push_to_gateway(gateway_url, job=job, registry=REGISTRY)
    except Exception as e:
        logger.warning(f"Failed to push metrics to {gateway_url}: {e}")
        return False
    logger.info(f"Pushed metrics to {gateway_url} (job: {job})")
    return True
