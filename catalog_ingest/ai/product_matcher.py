"""Product matching against the manifest via the reasoning service."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

import openai

from catalog_ingest import metrics
from catalog_ingest.ai.llm_service import LLMService
from catalog_ingest.ai.prompts import MATCH_SYSTEM_PROMPT, ProductMatchPrompt
from catalog_ingest.ai.response_parser import parse_products_envelope
from catalog_ingest.ai.retry_policy import RetryPolicy
from catalog_ingest.catalog.manifest import Manifest
from catalog_ingest.catalog.models import CandidateProduct, SourceKind

logger = logging.getLogger(__name__)


class MatchUnavailableError(Exception):
    """Raised when a document could not be matched because the service gave up."""

    pass


@dataclass
class MatchResult:
    """Candidates from one matching call, plus whether the call was abandoned."""

    candidates: List[CandidateProduct] = field(default_factory=list)
    gave_up: bool = False


class ProductMatcher:
    """
    Asks the reasoning service which manifest products a document mentions.

    Stateless between calls. Failures never propagate: exhausted retries,
    permanent API errors and unparseable responses all yield no candidates.
    match_result() additionally flags the service failures as `gave_up`.
    """

    def __init__(
        self,
        llm_service: LLMService,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.llm_service = llm_service
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def match(
        self,
        document_text: str,
        manifest: Manifest,
        source: SourceKind = SourceKind.PDF,
    ) -> List[CandidateProduct]:
        """
        Match document text against the manifest.

        Args:
            document_text: Full extracted text of one document
            manifest: Reference manifest
            source: Source kind, selects the prompt wording

        Returns:
            Candidate products (possibly invalid ones, validated downstream)
        """
        result = await self.match_result(document_text, manifest, source)
        return result.candidates

    async def match_result(
        self,
        document_text: str,
        manifest: Manifest,
        source: SourceKind = SourceKind.PDF,
    ) -> MatchResult:
        """
        Like match(), but also reports whether the service call was abandoned.

        `gave_up` is set when retries ran out or the API failed permanently,
        so callers can tell an outage apart from a document with no matches.
        """
        if not document_text or not document_text.strip():
            logger.warning("Empty document text provided to product matching")
            return MatchResult()

        prompt = ProductMatchPrompt(
            source=source,
            manifest_json=manifest.to_prompt_json(),
            document_text=document_text,
        ).to_prompt()

        content = await self._complete_with_retry(prompt)
        if content is None:
            return MatchResult(gave_up=True)
        if not content.strip():
            logger.warning("LLM returned empty response")
            return MatchResult()

        items = parse_products_envelope(content)
        candidates = [CandidateProduct.from_raw(item) for item in items]
        logger.info(f"LLM matched {len(candidates)} product(s)")
        return MatchResult(candidates=candidates)

    async def _complete_with_retry(self, prompt: str) -> Optional[str]:
        """Run the completion under the retry policy; None means give up."""
        policy = self.retry_policy

        for attempt in range(1, policy.max_attempts + 1):
            start = time.monotonic()
            try:
                content = await self.llm_service.complete(
                    prompt=prompt,
                    system_prompt=MATCH_SYSTEM_PROMPT,
                    json_mode=True,
                )
                metrics.llm_calls_total.labels(status="ok").inc()
                return content
            except openai.OpenAIError as e:
                error = e
            except Exception as e:
                metrics.llm_calls_total.labels(status="error").inc()
                logger.error(f"LLM call failed: {e}")
                return None
            finally:
                metrics.llm_call_duration_seconds.observe(time.monotonic() - start)

            status = getattr(error, "status_code", None)
            metrics.llm_calls_total.labels(status=str(status or "error")).inc()

            delay = policy.backoff_for_error(error)
            if delay is None:
                logger.error(f"OpenAI API error: {error}" + (f" (status {status})" if status else ""))
                return None

            if attempt >= policy.max_attempts:
                logger.error(f"Max retries reached after {attempt} attempt(s) (status {status})")
                return None

            reason = "rate_limit" if status == 429 else "server_error"
            metrics.llm_retries_total.labels(reason=reason).inc()
            logger.warning(
                f"OpenAI {reason.replace('_', ' ')} ({status}) on attempt {attempt}/"
                f"{policy.max_attempts}, waiting {delay:g} seconds..."
            )
            await self._sleep(delay)

        return None
