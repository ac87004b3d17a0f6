"""Fallback price extraction from raw document text."""

import logging
import math
import re
from typing import Optional

logger = logging.getLogger(__name__)

_NUMBER = r"(\d[\d,]*(?:\.\d+)?)"


class PriceExtractor:
    """
    Regex proximity search for a product's price.

    Used only when the reasoning service did not return a price. Looks in a
    window around the first mention of the product, then over the whole text.
    """

    WINDOW_CHARS = 200
    MAX_PRICE = 1_000_000.0

    # Priority order: first class with an acceptable value wins
    PRICE_PATTERNS = [
        re.compile(r"[$€£¥]\s*" + _NUMBER),  # $1,234.56
        re.compile(_NUMBER + r"\s*(?:USD|EUR|GBP|JPY|CAD|AUD|CHF|CNY|INR)\b", re.IGNORECASE),  # 1234.56 USD
        re.compile(r"\b(?:price|cost)\s*[:=\-]?\s*[$€£¥]?\s*" + _NUMBER, re.IGNORECASE),  # Price: 1234
        re.compile(r"\b(\d+(?:,\d{3})*\.\d{1,2})\b"),  # 1,234.56
    ]

    def extract_price(self, text: str, product_name: str) -> Optional[float]:
        """
        Find a plausible price for a product in document text.

        Args:
            text: Full document text
            product_name: Product name to anchor the search on

        Returns:
            Price as float, or None when nothing qualifies
        """
        if not text:
            return None

        if product_name:
            # Offsets come from the original text; lower() can change its length
            mention = re.search(re.escape(product_name), text, re.IGNORECASE)
            if mention:
                half = self.WINDOW_CHARS // 2
                window = text[max(0, mention.start() - half):mention.end() + half]
                price = self._scan(window)
                if price is not None:
                    logger.debug(f"Price {price} found near '{product_name}'")
                    return price

        return self._scan(text)

    def _scan(self, text: str) -> Optional[float]:
        for pattern in self.PRICE_PATTERNS:
            for match in pattern.finditer(text):
                price = self.parse_numeral(match.group(1))
                if price is not None:
                    return price
        return None

    def parse_numeral(self, numeral: str) -> Optional[float]:
        """
        Parse a captured numeral into an accepted price.

        A comma without a dot is a decimal separator ("12,50"); otherwise
        commas are thousands separators. Values that are not finite, not
        positive, or at least MAX_PRICE are rejected (page and part numbers).
        """
        if "," in numeral and "." not in numeral:
            cleaned = numeral.replace(",", ".")
        else:
            cleaned = numeral.replace(",", "")

        try:
            value = float(cleaned)
        except ValueError:
            return None

        if not math.isfinite(value) or value <= 0 or value >= self.MAX_PRICE:
            return None
        return value


def extract_price(text: str, product_name: str) -> Optional[float]:
    """Module-level shortcut for PriceExtractor().extract_price."""
    return PriceExtractor().extract_price(text, product_name)
