"""LLM service for OpenAI chat completions."""

import hashlib
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis
from openai import AsyncOpenAI

from catalog_ingest.config import Settings

logger = logging.getLogger(__name__)


class LLMService:
    """
    Service for LLM interactions with OpenAI.

    Features:
    - OpenAI API integration
    - JSON-object response mode
    - Optional Redis response cache
    - Cost tracking

    API errors are not handled here; callers decide what is worth retrying.
    """

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.settings = settings
        self._client: Optional[AsyncOpenAI] = client
        self._redis: Optional[redis.Redis] = None
        self._total_cost: float = 0.0
        self._call_count: int = 0

    def _get_client(self) -> AsyncOpenAI:
        """Get or create OpenAI client."""
        if self._client is None:
            if not self.settings.openai_api_key:
                raise ValueError("OpenAI API key not configured")
            # Retries are owned by the matcher's retry policy
            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key, max_retries=0)
        return self._client

    async def _get_redis(self) -> Optional[redis.Redis]:
        """Get or create Redis connection for caching."""
        if not self.settings.llm_cache_enabled:
            return None

        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    self.settings.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
            except Exception as e:
                logger.warning(f"Failed to connect to Redis for LLM cache: {e}")
                return None
        return self._redis

    def _get_cache_key(self, prompt: str, system_prompt: str, model: str) -> str:
        """Generate cache key for prompt."""
        combined = f"{system_prompt}:{prompt}:{model}"
        key_hash = hashlib.sha256(combined.encode('utf-8')).hexdigest()
        return f"llm_cache:{key_hash}"

    async def _cache_get(self, key: str) -> Optional[str]:
        redis_client = await self._get_redis()
        if redis_client is None:
            return None
        try:
            return await redis_client.get(key)
        except Exception as e:
            logger.warning(f"LLM cache read failed: {e}")
            return None

    async def _cache_set(self, key: str, value: str):
        redis_client = await self._get_redis()
        if redis_client is None:
            return
        try:
            await redis_client.setex(key, self.settings.llm_cache_ttl_seconds, value)
        except Exception as e:
            logger.warning(f"LLM cache write failed: {e}")

    def _estimate_cost(self, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        """
        Estimate cost for LLM call.

        Pricing (approximate, per 1K tokens):
        - gpt-4o: $0.0025 input, $0.01 output
        - gpt-4o-mini: $0.00015 input, $0.0006 output
        """
        if "mini" in model.lower():
            input_cost = (prompt_tokens / 1000) * 0.00015
            output_cost = (completion_tokens / 1000) * 0.0006
        else:
            input_cost = (prompt_tokens / 1000) * 0.0025
            output_cost = (completion_tokens / 1000) * 0.01

        return input_cost + output_cost

    async def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        json_mode: bool = True,
        model: Optional[str] = None,
        use_cache: bool = True,
    ) -> str:
        """
        Call the chat completions API and return the response text.

        Args:
            prompt: User prompt
            system_prompt: System prompt/instructions
            json_mode: Request a JSON-object response
            model: Model name (defaults to settings.openai_model)
            use_cache: Whether to use the response cache

        Returns:
            Response content ("" when the model returned no content)

        Raises:
            openai.APIError: Any API failure, unchanged
        """
        model = model or self.settings.openai_model

        cache_key = self._get_cache_key(prompt, system_prompt, model)
        if use_cache:
            cached = await self._cache_get(cache_key)
            if cached:
                logger.debug(f"LLM cache hit for prompt: {prompt[:50]}...")
                return cached

        client = self._get_client()

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        request: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": self.settings.llm_temperature,
            "max_tokens": self.settings.llm_max_tokens,
            "timeout": self.settings.llm_timeout_seconds,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        response = await client.chat.completions.create(**request)
        self._call_count += 1

        result = ""
        if response.choices:
            result = response.choices[0].message.content or ""

        if self.settings.track_llm_costs and response.usage:
            cost = self._estimate_cost(
                model,
                response.usage.prompt_tokens,
                response.usage.completion_tokens,
            )
            self._total_cost += cost
            logger.debug(
                f"LLM call cost: ${cost:.4f} "
                f"(tokens: {response.usage.prompt_tokens}+{response.usage.completion_tokens}, "
                f"total: ${self._total_cost:.2f})"
            )

        if use_cache and result:
            await self._cache_set(cache_key, result)

        return result

    def get_stats(self) -> Dict[str, Any]:
        """
        Get LLM service statistics.

        Returns:
            Dictionary with call count, estimated cost, etc.
        """
        return {
            "call_count": self._call_count,
            "total_cost": self._total_cost,
            "model": self.settings.openai_model,
            "cache_enabled": self.settings.llm_cache_enabled,
        }

    async def close(self):
        """Close connections."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
        if self._client:
            await self._client.close()
            self._client = None
