from typing import Dict, Iterable, List

from pydantic import BaseModel, ConfigDict, Field

from contact_importer.domain.contacts.models import (
    CustomFieldDef,
    ImportStats,
    MappingEntry,
    MappingResult,
    RowError,
    target_from_token,
)
from contact_importer.domain.imports.reconciler import MappingSummary


class FieldMappingPayload(BaseModel):
    """One header's assignment in the classifier wire format."""
    model_config = ConfigDict(populate_by_name=True)

    mapped_to: str = Field(alias="mappedTo")
    confidence: float = Field(ge=0.0, le=1.0)


class MappingPayload(BaseModel):
    """Mapping in the classifier wire format, as exchanged with clients."""
    model_config = ConfigDict(populate_by_name=True)

    mapping: Dict[str, FieldMappingPayload]
    unmapped_headers: List[str] = Field(default_factory=list, alias="unmappedHeaders")
    notes: str = ""

    @classmethod
    def from_result(cls, result: MappingResult) -> "MappingPayload":
        return cls.model_validate(result.to_wire())

    def to_result(self, known_fields: Iterable[CustomFieldDef]) -> MappingResult:
        """
        Convert back into a MappingResult.

        Raises:
            ValueError: a ``mappedTo`` token is not a valid target.
        """
        known_ids = {field.id for field in known_fields}
        entries: Dict[str, MappingEntry] = {}
        for header, item in self.mapping.items():
            try:
                target = target_from_token(item.mapped_to, known_ids)
            except ValueError as exc:
                raise ValueError(f"Header '{header}': {exc}") from exc
            entries[header] = MappingEntry(header=header, target=target, confidence=item.confidence)
        return MappingResult(entries=entries, notes=self.notes)


class ColumnPreview(BaseModel):
    header: str
    target_label: str
    confidence_band: str
    samples: List[str] = Field(default_factory=list)


class MappingProposalResponse(BaseModel):
    success: bool
    upload_id: str
    file_name: str
    headers: List[str]
    row_count: int
    mapping: MappingPayload
    summary: MappingSummary
    columns: List[ColumnPreview]
    conflicts: Dict[str, List[str]] = Field(default_factory=dict)


class ImportExecuteRequest(BaseModel):
    upload_id: str
    mapping: MappingPayload


class ImportExecuteResponse(BaseModel):
    success: bool
    message: str
    stats: ImportStats
    row_errors: List[RowError] = Field(default_factory=list)
    created_fields: List[CustomFieldDef] = Field(default_factory=list)


class ContactFieldsResponse(BaseModel):
    success: bool
    fields: List[CustomFieldDef]
