"""
System prompt for the header mapping classifier.

The prompt states the data model (core attributes and known custom fields),
the matching policy as numbered rules, and the closed JSON grammar the
mapping engine validates.
"""
import json
from typing import Iterable, List

from contact_importer.domain.contacts.models import (
    CORE_ATTRIBUTE_SPECS,
    NEW_FIELD_PREFIX,
    UNMAPPED_TOKEN,
    CustomFieldDef,
)


MAPPING_ROLE_PROMPT = """You are a field mapping engine for a contact importer.

**Your Task:**
Given the column headers of an uploaded contact spreadsheet and the system's
contact data model, map every header to at most one system field.

Respond ONLY with the JSON document described under **Output Format**.
Do not add commentary or any text outside the JSON."""


MAPPING_RULES_PROMPT = f"""**Matching Rules:**
1. Compare headers ignoring case, whitespace, underscores and punctuation.
2. Match by meaning, not only by text. Synonyms count: "mobile", "cell", "contact no" -> phone;
   "address", "location", "place" -> the same field; "company", "organization", "firm" -> the same field;
   "job", "position", "title", "occupation" -> the same field.
3. Prefer core fields over custom fields.
4. Prefer an existing custom field over proposing a new one. Propose "{NEW_FIELD_PREFIX}<FieldName>" only when
   no existing field, core or custom, has the same meaning, and only for contact-related data.
5. Use "{UNMAPPED_TOKEN}" when the header is not understandable, or is understandable but not
   contact-related (e.g. "orderId", "transactionDate", "productName").
6. Confidence is a number between 0 and 1:
   - 0.9-1.0: clear match
   - 0.7-0.9: partial match
   - 0.5-0.7: uncertain match
   - below 0.5: do not map, return "{UNMAPPED_TOKEN}"

**Output Format:**
{{
  "mapping": {{
    "<header>": {{
      "mappedTo": "<core field name> | <customFieldId> | {NEW_FIELD_PREFIX}<FieldName> | {UNMAPPED_TOKEN}",
      "confidence": 0.0
    }}
  }},
  "unmappedHeaders": ["<header>", "..."],
  "notes": "<2-3 short lines explaining the reasoning>"
}}

Every input header must appear in "mapping" exactly once, spelled exactly as given."""


def format_core_fields() -> List[str]:
    return [
        f"- {attribute.value} ({spec['type'].value})"
        for attribute, spec in CORE_ATTRIBUTE_SPECS.items()
    ]


def format_custom_fields(known_fields: Iterable[CustomFieldDef]) -> List[str]:
    lines = [
        f"- {field.label} ({field.type.value}, customFieldId: {field.id})"
        for field in known_fields
        if not field.core
    ]
    return lines or ["(None defined yet)"]


def build_mapping_prompt(known_fields: Iterable[CustomFieldDef]) -> str:
    """Build the classifier system prompt for the current schema."""
    sections = [
        MAPPING_ROLE_PROMPT,
        "**Core Contact Fields:**",
        "\n".join(format_core_fields()),
        "**Custom Contact Fields:**",
        "\n".join(format_custom_fields(known_fields)),
        MAPPING_RULES_PROMPT,
    ]
    return "\n\n".join(sections)


def build_header_message(headers: List[str]) -> str:
    """Render the header list the classifier is asked to map."""
    return f"Now, map these headers:\n{json.dumps({'headers': headers})}"
