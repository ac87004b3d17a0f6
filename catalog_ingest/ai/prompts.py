"""Centralized prompt templates for product matching."""

from pydantic import BaseModel

from catalog_ingest.catalog.models import SourceKind

MATCH_SYSTEM_PROMPT = (
    "You are a precise product matching assistant. "
    "Always return valid JSON with a 'products' array."
)

_PRODUCT_SHAPE = """{{
  "products": [
    {{
      "name": "exact product name from the document or manifest",
      "brand": "vendor name from manifest",
      "product_type": "product group from manifest",
      "sub_type": "specific item from manifest or null",
      "bom_layer": "bom_layer from manifest",
      "vendor_name": "vendor_name from manifest",
{extra_fields}
    }}
  ]
}}"""

_PDF_FIELDS = """      "page": page number where the product appears or null,
      "price": numeric price if stated in the document, otherwise null"""

_URDF_FIELDS = """      "component_type": "robot|link|joint|sensor|actuator|material",
      "price": null (URDF files typically don't contain pricing)"""


class ProductMatchPrompt(BaseModel):
    """Prompt schema for matching a document against the manifest."""

    source: SourceKind
    manifest_json: str
    document_text: str

    def to_prompt(self) -> str:
        """Convert to prompt text."""
        if self.source is SourceKind.URDF:
            intro = (
                "You are an expert at identifying industrial automation products from URDF "
                "(Unified Robot Description Format) files.\n\n"
                "Analyze the following URDF robot description and match it against the provided product manifest.\n\n"
                "URDF files describe robot structures including:\n"
                "- Complete robots (robot arms, manipulators)\n"
                "- Robot components (links, joints, actuators, sensors)\n"
                "- Materials and parts used in robot construction\n\n"
                "Your task:\n"
                "1. Identify products from the manifest that match components described in the URDF\n"
                "2. Extract product names, brands (vendors), product types, and sub-types\n"
                "3. Identify the complete robot as a product if it matches manifest entries\n"
                "4. Identify individual components (sensors, actuators, joints) as products if they match\n"
                "5. Return a JSON array of matched products"
            )
            document_label = "URDF Robot Description"
            extra_fields = _URDF_FIELDS
        else:
            intro = (
                "You are an expert at identifying industrial automation products in vendor catalogs "
                "and brochures.\n\n"
                "Analyze the following document text (extracted by OCR, pages are marked) and match it "
                "against the provided product manifest.\n\n"
                "Your task:\n"
                "1. Identify products from the manifest that are described in the document\n"
                "2. Extract product names, brands (vendors), product types, and sub-types\n"
                "3. Record the page each product appears on and its price when one is stated\n"
                "4. Return a JSON array of matched products"
            )
            document_label = "Document Text"
            extra_fields = _PDF_FIELDS

        shape = _PRODUCT_SHAPE.format(extra_fields=extra_fields)

        return (
            f"{intro}\n\n"
            f"Manifest structure:\n{self.manifest_json}\n\n"
            f"{document_label}:\n{self.document_text}\n\n"
            "Return a JSON object with a \"products\" array containing matched products. "
            f"Each product should have this structure:\n{shape}\n\n"
            "Only return products that have a clear match. "
            "Return {\"products\": []} if no matches are found.\n"
            "Return ONLY valid JSON, no additional text or markdown."
        )
