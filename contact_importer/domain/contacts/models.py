"""
Shared data model for contacts, custom fields and header mappings.

Mapping targets are a tagged union keyed on ``kind``. Each variant knows its
classifier wire token (``firstName``, ``<fieldId>``, ``NEW:<label>``,
``unmapped``) so the engine, the reconciler and the API agree on one grammar.
"""
from enum import Enum
from typing import Annotated, Any, Dict, Iterable, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


NEW_FIELD_PREFIX = "NEW:"
UNMAPPED_TOKEN = "unmapped"


class CoreAttribute(str, Enum):
    FIRST_NAME = "firstName"
    LAST_NAME = "lastName"
    PHONE = "phone"
    EMAIL = "email"
    AGENT_UID = "agentUid"


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    PHONE = "phone"
    EMAIL = "email"
    DATETIME = "datetime"


# Value type and display label for each core attribute, in display order.
CORE_ATTRIBUTE_SPECS: Dict[CoreAttribute, Dict[str, Any]] = {
    CoreAttribute.FIRST_NAME: {"type": FieldType.TEXT, "label": "First Name"},
    CoreAttribute.LAST_NAME: {"type": FieldType.TEXT, "label": "Last Name"},
    CoreAttribute.PHONE: {"type": FieldType.PHONE, "label": "Phone"},
    CoreAttribute.EMAIL: {"type": FieldType.EMAIL, "label": "Email"},
    CoreAttribute.AGENT_UID: {"type": FieldType.EMAIL, "label": "Assigned Agent"},
}

CORE_ATTRIBUTE_NAMES = frozenset(attr.value for attr in CoreAttribute)


class CustomFieldDef(BaseModel):
    """A deployment-defined contact attribute."""
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    type: FieldType = FieldType.TEXT
    core: bool = False


class CoreTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["core"] = "core"
    name: CoreAttribute

    def token(self) -> str:
        return self.name.value


class ExistingCustomTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["existing_custom"] = "existing_custom"
    field_id: str

    def token(self) -> str:
        return self.field_id


class NewCustomTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["new_custom"] = "new_custom"
    label: str

    def token(self) -> str:
        return f"{NEW_FIELD_PREFIX}{self.label}"


class UnmappedTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["unmapped"] = "unmapped"

    def token(self) -> str:
        return UNMAPPED_TOKEN


TargetRef = Annotated[
    Union[CoreTarget, ExistingCustomTarget, NewCustomTarget, UnmappedTarget],
    Field(discriminator="kind"),
]

UNMAPPED = UnmappedTarget()


def is_unmapped(target: Any) -> bool:
    return isinstance(target, UnmappedTarget)


def target_from_token(token: str, known_field_ids: Iterable[str]) -> TargetRef:
    """
    Parse a classifier ``mappedTo`` token into a target.

    Raises:
        ValueError: when the token is blank, a ``NEW:`` token has no label,
            or the token names neither a core attribute nor a known field id.
    """
    if not isinstance(token, str):
        raise ValueError(f"mappedTo must be a string, got {type(token).__name__}")

    value = token.strip()
    if not value:
        raise ValueError("mappedTo is blank")
    if value.lower() == UNMAPPED_TOKEN:
        return UNMAPPED
    if value in CORE_ATTRIBUTE_NAMES:
        return CoreTarget(name=CoreAttribute(value))
    if value[:len(NEW_FIELD_PREFIX)].upper() == NEW_FIELD_PREFIX:
        label = value[len(NEW_FIELD_PREFIX):].strip()
        if not label:
            raise ValueError(f"'{token}' proposes a new field without a label")
        return NewCustomTarget(label=label)
    if value in set(known_field_ids):
        return ExistingCustomTarget(field_id=value)
    raise ValueError(f"'{token}' is not a core attribute, known field id, NEW:<label> or unmapped")


class MappingEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    header: str
    target: TargetRef
    confidence: float = Field(ge=0.0, le=1.0)


class MappingResult(BaseModel):
    """
    Header -> mapping entry assignment for one import job.

    ``entries`` keeps the source header order. ``unmapped_headers`` is always
    derived from the entries, never stored independently.
    """
    model_config = ConfigDict(frozen=True)

    entries: Dict[str, MappingEntry]
    notes: str = ""

    @model_validator(mode="after")
    def _check_entry_keys(self) -> "MappingResult":
        for header, entry in self.entries.items():
            if entry.header != header:
                raise ValueError(f"Entry for '{header}' is labelled '{entry.header}'")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def unmapped_headers(self) -> List[str]:
        return [header for header, entry in self.entries.items() if is_unmapped(entry.target)]

    @property
    def headers(self) -> List[str]:
        return list(self.entries)

    def to_wire(self) -> Dict[str, Any]:
        """Render in the classifier's JSON response shape."""
        return {
            "mapping": {
                header: {"mappedTo": entry.target.token(), "confidence": entry.confidence}
                for header, entry in self.entries.items()
            },
            "unmappedHeaders": self.unmapped_headers,
            "notes": self.notes,
        }


class ContactRecord(BaseModel):
    """
    A contact document: typed core attributes plus custom field values.

    The flat attribute form (``{"firstName": ..., "<fieldId>": ...}``) is the
    store-facing and wire-facing representation.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    phone: Optional[str] = None
    email: Optional[str] = None
    agent_uid: Optional[str] = Field(default=None, alias="agentUid")
    custom: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_attributes(cls, attributes: Mapping[str, Any], contact_id: Optional[str] = None) -> "ContactRecord":
        core_values: Dict[str, Any] = {}
        custom: Dict[str, str] = {}
        for key, value in attributes.items():
            if key in CORE_ATTRIBUTE_NAMES:
                core_values[key] = value
            elif key != "id":
                custom[key] = value
        return cls(id=contact_id, custom=custom, **core_values)

    def get(self, attribute: CoreAttribute) -> Optional[str]:
        return self.core_attributes().get(attribute.value)

    def core_attributes(self) -> Dict[str, str]:
        """Core attributes that carry a value, keyed by wire name."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"id", "custom"})

    def to_attributes(self) -> Dict[str, Any]:
        attributes: Dict[str, Any] = self.core_attributes()
        attributes.update(self.custom)
        return attributes

    def is_empty(self) -> bool:
        return not self.core_attributes() and not self.custom


class ImportStats(BaseModel):
    total: int = 0
    created: int = 0
    merged: int = 0
    errors: int = 0
    skipped: int = 0  # Rows that produced no usable attributes


class RowError(BaseModel):
    record_number: int
    message: str


class ImportReport(BaseModel):
    stats: ImportStats
    row_errors: List[RowError] = Field(default_factory=list)
    created_fields: List[CustomFieldDef] = Field(default_factory=list)
