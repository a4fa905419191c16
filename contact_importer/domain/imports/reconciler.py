"""
Human review of classifier mappings.

Every operation here is a pure function over a frozen MappingResult and
returns a new value; nothing is persisted. ``MappingReview`` keeps the
untouched classifier proposal next to the working copy so single headers can
be reset.
"""
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from pydantic import BaseModel, ConfigDict

from contact_importer.domain.contacts.models import (
    CORE_ATTRIBUTE_SPECS,
    CoreTarget,
    CustomFieldDef,
    ExistingCustomTarget,
    MappingEntry,
    MappingResult,
    NewCustomTarget,
    TargetRef,
    is_unmapped,
)
from .errors import EmptyLabel, UnknownHeader

HIGH_CONFIDENCE = 0.9
MEDIUM_CONFIDENCE = 0.7
LOW_CONFIDENCE = 0.5


def _replace_entry(result: MappingResult, entry: MappingEntry) -> MappingResult:
    entries = dict(result.entries)
    entries[entry.header] = entry
    return result.model_copy(update={"entries": entries})


def _require_entry(result: MappingResult, header: str) -> MappingEntry:
    try:
        return result.entries[header]
    except KeyError:
        raise UnknownHeader(header) from None


def set_target(result: MappingResult, header: str, target: TargetRef) -> MappingResult:
    """Point one header at a different target, keeping its confidence."""
    entry = _require_entry(result, header)
    if isinstance(target, NewCustomTarget):
        label = (target.label or "").strip()
        if not label:
            raise EmptyLabel(f"A new field for '{header}' needs a non-blank label")
        target = NewCustomTarget(label=label)
    return _replace_entry(result, entry.model_copy(update={"target": target}))


def propose_new_field(result: MappingResult, header: str, label: str) -> MappingResult:
    """Map one header to a custom field that will be created at import time."""
    return set_target(result, header, NewCustomTarget(label=label or ""))


def reset_to_proposal(result: MappingResult, header: str, original: MappingEntry) -> MappingResult:
    """Restore the classifier's suggestion for one header."""
    _require_entry(result, header)
    if original.header != header:
        raise UnknownHeader(original.header)
    return _replace_entry(result, original)


class MappingReview(BaseModel):
    """The classifier proposal and the reviewer's working copy, side by side."""
    model_config = ConfigDict(frozen=True)

    proposal: MappingResult
    current: MappingResult

    @classmethod
    def start(cls, proposal: MappingResult) -> "MappingReview":
        return cls(proposal=proposal, current=proposal)

    def set_target(self, header: str, target: TargetRef) -> "MappingReview":
        return self.model_copy(update={"current": set_target(self.current, header, target)})

    def propose_new_field(self, header: str, label: str) -> "MappingReview":
        return self.model_copy(update={"current": propose_new_field(self.current, header, label)})

    def reset(self, header: str) -> "MappingReview":
        original = _require_entry(self.proposal, header)
        return self.model_copy(update={"current": reset_to_proposal(self.current, header, original)})

    def edited_headers(self) -> List[str]:
        return [
            header
            for header, entry in self.current.entries.items()
            if entry != self.proposal.entries.get(header)
        ]


class MappingSummary(BaseModel):
    mapped: int
    high_confidence: int
    custom: int
    new_fields: int
    unmapped: int


def confidence_band(confidence: float) -> str:
    if confidence >= HIGH_CONFIDENCE:
        return "High"
    if confidence >= MEDIUM_CONFIDENCE:
        return "Medium"
    if confidence >= LOW_CONFIDENCE:
        return "Low"
    return "Very Low"


def target_label(target: TargetRef, known_fields: Iterable[CustomFieldDef]) -> str:
    """Human-readable name of a mapping target."""
    if is_unmapped(target):
        return "(Unmapped)"
    if isinstance(target, CoreTarget):
        return CORE_ATTRIBUTE_SPECS[target.name]["label"]
    if isinstance(target, NewCustomTarget):
        return f"{target.label} (New Field)"
    if isinstance(target, ExistingCustomTarget):
        for field in known_fields:
            if field.id == target.field_id:
                return field.label
    return target.token()


def summarize_mapping(result: MappingResult) -> MappingSummary:
    entries = list(result.entries.values())
    mapped = [entry for entry in entries if not is_unmapped(entry.target)]
    return MappingSummary(
        mapped=len(mapped),
        high_confidence=sum(1 for entry in mapped if entry.confidence >= MEDIUM_CONFIDENCE),
        custom=sum(1 for entry in mapped if not isinstance(entry.target, CoreTarget)),
        new_fields=sum(1 for entry in mapped if isinstance(entry.target, NewCustomTarget)),
        unmapped=len(entries) - len(mapped),
    )


def target_conflicts(result: MappingResult) -> Dict[str, List[str]]:
    """
    Targets claimed by more than one header, keyed by target token.

    New-field labels are compared case-insensitively since they collapse
    into a single field at import time.
    """
    claims: Dict[str, List[str]] = {}
    for header, entry in result.entries.items():
        if is_unmapped(entry.target):
            continue
        key = entry.target.token()
        if isinstance(entry.target, NewCustomTarget):
            key = NewCustomTarget(label=entry.target.label.strip().casefold()).token()
        claims.setdefault(key, []).append(header)
    return {key: headers for key, headers in claims.items() if len(headers) > 1}


def sample_values(rows: Sequence[Mapping[str, Any]], header: str, limit: int = 3) -> List[str]:
    """First non-blank values of a column, for previews."""
    samples: List[str] = []
    for row in rows:
        value = row.get(header)
        if value is None or not str(value).strip():
            continue
        samples.append(str(value))
        if len(samples) >= limit:
            break
    return samples
