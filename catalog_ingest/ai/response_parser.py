"""Parsing of the matching response envelope."""

import json
import logging
from typing import Any, List

logger = logging.getLogger(__name__)

# Named fields tried before falling back to the first array-valued field
ENVELOPE_KEYS = ("products", "matches")


def strip_code_fence(content: str) -> str:
    """Remove a surrounding ```json ... ``` fence if the model added one."""
    text = content.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_products_envelope(content: str) -> List[Any]:
    """
    Extract the candidate array from a model response.

    Accepted shapes, in priority order:
    1. a bare top-level array
    2. an object with a `products` array
    3. an object with a `matches` array
    4. the first array-valued field of an object

    Invalid JSON or any other shape yields an empty list; this never raises.
    """
    if not content or not content.strip():
        return []

    text = strip_code_fence(content)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse LLM response: {e}. Response content: {text[:500]}")
        return []

    if isinstance(parsed, list):
        return parsed

    if not isinstance(parsed, dict):
        logger.warning(f"LLM response is a {type(parsed).__name__}, expected an object or array")
        return []

    for key in ENVELOPE_KEYS:
        if isinstance(parsed.get(key), list):
            return parsed[key]

    for key, value in parsed.items():
        if isinstance(value, list):
            logger.debug(f"Using array field '{key}' from LLM response")
            return value

    logger.warning("LLM response doesn't contain expected array structure")
    return []
