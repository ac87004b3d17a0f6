"""Vendor/product manifest used to ground product matching."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from catalog_ingest.config import ConfigError

logger = logging.getLogger(__name__)


class ProductGroup(BaseModel):
    """A product group offered by a vendor."""

    model_config = ConfigDict(frozen=True)

    product_group: str
    bom_layer: Optional[str] = None
    items: List[str] = []

    @field_validator("bom_layer", mode="before")
    @classmethod
    def _bom_layer_as_text(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value)


class Vendor(BaseModel):
    """A vendor and its product groups."""

    model_config = ConfigDict(frozen=True)

    vendor_name: str
    product_groups: List[ProductGroup] = []

    @field_validator("vendor_name")
    @classmethod
    def _vendor_name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("vendor_name must not be empty")
        return value


def item_keyword(item: str) -> str:
    """
    Keyword used to spot a manifest item in free text.

    Parentheses are dropped and the first word is taken, lowercased.
    """
    words = item.replace("(", "").replace(")", "").strip().split()
    return words[0].lower() if words else ""


class Manifest(BaseModel):
    """Static reference list of vendors, product groups and items."""

    model_config = ConfigDict(frozen=True)

    vendors: List[Vendor]

    def to_prompt_json(self) -> str:
        """Render the manifest the way it is embedded in matching prompts."""
        return json.dumps(self.model_dump(), indent=2)

    def scan(self, text: str) -> List[Dict[str, Any]]:
        """
        Keyword scan of a document against the manifest.

        Returns the vendors whose items have their keyword present in the text,
        keeping only the matching groups and items.
        """
        lower_text = text.lower()
        found = []

        for vendor in self.vendors:
            groups = []
            for group in vendor.product_groups:
                matched = [
                    item for item in group.items
                    if item_keyword(item) and item_keyword(item) in lower_text
                ]
                if matched:
                    groups.append({
                        "product_group": group.product_group,
                        "bom_layer": group.bom_layer,
                        "items": matched,
                    })

            if groups:
                found.append({"vendor_name": vendor.vendor_name, "product_groups": groups})
                logger.debug(f"Manifest scan matched vendor {vendor.vendor_name} ({len(groups)} group(s))")

        return found


def load_manifest(path: str | Path) -> Manifest:
    """
    Load and validate the manifest file.

    Args:
        path: Path to the manifest JSON file

    Returns:
        Parsed Manifest

    Raises:
        ConfigError: If the file is absent, unparseable or has no vendors list
    """
    manifest_path = Path(path)
    if not manifest_path.is_file():
        raise ConfigError(f"Manifest file not found at: {manifest_path.resolve()}")

    try:
        payload = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to read manifest {manifest_path}: {e}") from e

    if not isinstance(payload, dict) or not isinstance(payload.get("vendors"), list):
        raise ConfigError("Manifest file is missing required 'vendors' array")

    try:
        manifest = Manifest.model_validate(payload)
    except ValidationError as e:
        raise ConfigError(f"Invalid manifest {manifest_path}: {e}") from e

    logger.info(f"Manifest loaded: {len(manifest.vendors)} vendor(s)")
    return manifest
