"""Canonical keys for product deduplication."""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

from catalog_ingest.catalog.models import CandidateProduct

_TOKEN_SPLIT = re.compile(r"[\s\-_]+")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class NormalizedKey:
    """Canonical (brand, name) pair plus the name variants used for lookup."""

    brand_norm: str
    name_norm: str
    name_tokens: List[str] = field(default_factory=list)
    aliases: List[str] = field(default_factory=list)

    @property
    def dedup_key(self) -> tuple:
        return (self.brand_norm, self.name_norm)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "brand_norm": self.brand_norm,
            "name_norm": self.name_norm,
            "name_tokens": list(self.name_tokens),
            "aliases": list(self.aliases),
        }


class ProductNormalizer:
    """Normalize candidate products into dedup keys."""

    def normalize(self, candidate: CandidateProduct) -> NormalizedKey:
        """
        Build the canonical key for a candidate.

        Never raises for a non-null candidate; missing fields normalize to
        empty strings.
        """
        brand_norm = (candidate.brand or "").strip().lower()
        name_norm = (candidate.name or "").strip().lower()

        name_tokens = [token for token in _TOKEN_SPLIT.split(name_norm) if token]

        aliases: List[str] = []
        if name_norm:
            aliases.append(name_norm)
            aliases.append(_WHITESPACE.sub("", name_norm))
            aliases.append(_WHITESPACE.sub("-", name_norm))
            aliases.append(_WHITESPACE.sub("_", name_norm))
            if candidate.product_type:
                aliases.append(f"{name_norm} {candidate.product_type.lower()}")

        return NormalizedKey(
            brand_norm=brand_norm,
            name_norm=name_norm,
            name_tokens=name_tokens,
            aliases=list(dict.fromkeys(aliases)),
        )


def normalize(candidate: CandidateProduct) -> NormalizedKey:
    """Module-level shortcut for ProductNormalizer().normalize."""
    return ProductNormalizer().normalize(candidate)
