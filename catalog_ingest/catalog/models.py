"""Domain types shared by the matching and merge pipeline."""

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class SourceKind(str, Enum):
    """Origin type of an ingested document."""

    PDF = "pdf_extract"
    URDF = "urdf_extract"

    @property
    def collection(self) -> str:
        """Name of the ingestion-record collection for this source kind."""
        return "pdfExtracts" if self is SourceKind.PDF else "urdfExtracts"


class CandidateError(Exception):
    """Raised when a candidate product cannot be stored."""

    pass


class UpsertOutcome(str, Enum):
    """What an upsert did to the catalog."""

    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class UpsertResult:
    """Result of merging one candidate into the catalog."""

    outcome: UpsertOutcome
    id: int


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _coerce_price(value: Any) -> Optional[float]:
    """Accept numbers and numeric strings from the model; anything else is no price."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        price = float(value)
    elif isinstance(value, str):
        cleaned = value.replace("$", "").replace(",", "").strip()
        try:
            price = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(price):
        return None
    return price


def _coerce_page(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class CandidateProduct:
    """
    Unverified product match proposed by the reasoning service.

    `name` and `brand` are mandatory for storage; use `validate()` before
    merging. Other fields are optional.
    """

    name: Optional[str] = None
    brand: Optional[str] = None
    product_type: Optional[str] = None
    sub_type: Optional[str] = None
    bom_layer: Optional[str] = None
    vendor_name: Optional[str] = None
    page: Optional[int] = None
    price: Optional[float] = None
    component_type: Optional[str] = None
    raw: Any = None

    @classmethod
    def from_raw(cls, item: Any) -> "CandidateProduct":
        """Build a candidate from one entry of the model's products array."""
        if not isinstance(item, dict):
            return cls(raw=item)
        return cls(
            name=_clean_str(item.get("name")),
            brand=_clean_str(item.get("brand")),
            product_type=_clean_str(item.get("product_type")),
            sub_type=_clean_str(item.get("sub_type")),
            bom_layer=_clean_str(item.get("bom_layer")),
            vendor_name=_clean_str(item.get("vendor_name")),
            page=_coerce_page(item.get("page")),
            price=_coerce_price(item.get("price")),
            component_type=_clean_str(item.get("component_type")),
            raw=item,
        )

    def validate(self) -> None:
        """
        Check the fields required to build a dedup key.

        Raises:
            CandidateError: If name or brand is missing
        """
        if not self.name or not self.brand:
            raise CandidateError(
                f"Candidate is missing name or brand: {self.raw!r}"
            )

    @property
    def label(self) -> str:
        """Short identity used in log lines."""
        return f"{self.name or 'unknown'} ({self.brand or 'unknown'})"


@dataclass
class SourceRef:
    """Provenance entry linking a product back to where it was found."""

    source: SourceKind
    collection: str
    source_id: str
    file_name: str
    page: Optional[int] = None
    file_path: Optional[str] = None
    component_type: Optional[str] = None

    def identity(self) -> tuple:
        """Fields that make two references the same reference."""
        return (self.source.value, self.collection, str(self.source_id), self.file_name)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["source"] = self.source.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceRef":
        return cls(
            source=SourceKind(data["source"]),
            collection=data["collection"],
            source_id=str(data["source_id"]),
            file_name=data["file_name"],
            page=data.get("page"),
            file_path=data.get("file_path"),
            component_type=data.get("component_type"),
        )


@dataclass
class RawContext:
    """Last-seen extraction context stored with a product."""

    file_name: str
    source_key: str
    page: Optional[int] = None
    file_path: Optional[str] = None
    component_type: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
