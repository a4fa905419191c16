"""
Import execution: turns a reviewed mapping plus parsed rows into contact writes.

Phases, in order:
1. Materialize proposed custom fields (fatal on failure).
2. Transform each row into a contact record.
3. Validate it against the deployment's validation policy.
4. Look for an existing contact by email, then phone.
5. Create or merge, counting the outcome.

Rows are processed in fixed-size chunks, sequentially, so two rows with the
same identity in one file serialize: the second becomes a merge. A failing
row is counted in ``errors`` and never aborts the run.
"""
import logging
import math
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from contact_importer.core.config import settings
from contact_importer.db.store import ContactStore
from contact_importer.domain.contacts.models import (
    CORE_ATTRIBUTE_SPECS,
    ContactRecord,
    CoreAttribute,
    CoreTarget,
    CustomFieldDef,
    ExistingCustomTarget,
    FieldType,
    ImportReport,
    ImportStats,
    MappingResult,
    NewCustomTarget,
    RowError,
    TargetRef,
    is_unmapped,
)
from .errors import FieldMaterializationError, RowValidationError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class ValidationPolicy(str, Enum):
    EMAIL_OR_PHONE = "email_or_phone"
    ALL_CORE = "all_core"


ALL_CORE_REQUIRED = (
    CoreAttribute.FIRST_NAME,
    CoreAttribute.LAST_NAME,
    CoreAttribute.EMAIL,
    CoreAttribute.PHONE,
)


def _label_key(label: str) -> str:
    return label.strip().casefold()


def _core_target_for_label(label: str) -> Optional[CoreTarget]:
    """A proposed field named like a core attribute is that attribute."""
    key = _label_key(label)
    for attribute, spec in CORE_ATTRIBUTE_SPECS.items():
        if key in (attribute.value.casefold(), spec["label"].casefold()):
            return CoreTarget(name=attribute)
    return None


def validate_record(record: ContactRecord, policy: ValidationPolicy) -> None:
    """
    Raise RowValidationError when a record breaks the validation policy.

    ``email_or_phone`` requires a reachable channel; ``all_core`` requires
    first name, last name, email and phone.
    """
    if policy == ValidationPolicy.ALL_CORE:
        missing = [attribute.value for attribute in ALL_CORE_REQUIRED if not record.get(attribute)]
        if missing:
            raise RowValidationError(f"Missing required fields: {', '.join(missing)}")
        return

    if not record.email and not record.phone:
        raise RowValidationError("Row has neither an email nor a phone number")


class ImportExecutor:
    """
    Writes mapped rows into the contact store.

    Example:
        executor = ImportExecutor(get_store())
        report = executor.execute(rows, mapping, store.agent_directory())
    """

    def __init__(
        self,
        store: ContactStore,
        *,
        batch_size: Optional[int] = None,
        validation_policy: Optional[ValidationPolicy] = None,
        placeholder_values: Optional[Iterable[str]] = None,
        row_error_limit: Optional[int] = None,
    ):
        self.store = store
        self.batch_size = max(1, batch_size or settings.import_batch_size)
        self.validation_policy = ValidationPolicy(validation_policy or settings.import_validation_policy)
        placeholders = settings.placeholder_values if placeholder_values is None else placeholder_values
        self.placeholder_values = {value.strip().casefold() for value in placeholders}
        self.row_error_limit = settings.row_error_limit if row_error_limit is None else row_error_limit

    # Phase 1 -------------------------------------------------------------

    def materialize_fields(self, mapping: MappingResult) -> Tuple[MappingResult, List[CustomFieldDef]]:
        """
        Create one custom field per distinct proposed label.

        Labels are compared case- and whitespace-insensitively. A label that
        names a core attribute or an existing custom field reuses it instead
        of creating a duplicate. Returns the rewritten mapping (no NewCustom
        targets left) and the fields created.

        Raises:
            FieldMaterializationError: a field could not be created.
        """
        proposed = [
            entry.target.label
            for entry in mapping.entries.values()
            if isinstance(entry.target, NewCustomTarget)
        ]
        if not proposed:
            return mapping, []

        existing_by_label = {_label_key(field.label): field for field in self.store.list_fields()}
        resolved: Dict[str, TargetRef] = {}
        created: List[CustomFieldDef] = []

        for label in proposed:
            key = _label_key(label)
            if key in resolved:
                continue

            core_target = _core_target_for_label(label)
            if core_target is not None:
                logger.info("Proposed field '%s' resolves to core attribute '%s'", label, core_target.token())
                resolved[key] = core_target
                continue

            if key in existing_by_label:
                field = existing_by_label[key]
                logger.info("Proposed field '%s' resolves to existing field %s", label, field.id)
                resolved[key] = ExistingCustomTarget(field_id=field.id)
                continue

            try:
                field = self.store.create_field(label.strip(), FieldType.TEXT)
            except Exception as exc:
                logger.error("Failed to create custom field '%s': %s", label, exc)
                raise FieldMaterializationError(label, exc) from exc
            created.append(field)
            resolved[key] = ExistingCustomTarget(field_id=field.id)

        entries = {
            header: (
                entry.model_copy(update={"target": resolved[_label_key(entry.target.label)]})
                if isinstance(entry.target, NewCustomTarget)
                else entry
            )
            for header, entry in mapping.entries.items()
        }
        return mapping.model_copy(update={"entries": entries}), created

    # Phase 2 -------------------------------------------------------------

    def _clean_value(self, value: Any) -> Optional[str]:
        """The value as text, or None when blank or a placeholder. Never trimmed."""
        if value is None:
            return None
        if isinstance(value, float) and math.isnan(value):
            return None
        text = str(value)
        stripped = text.strip()
        if not stripped or stripped.casefold() in self.placeholder_values:
            return None
        return text

    def transform_row(
        self,
        row: Mapping[str, Any],
        mapping: MappingResult,
        agent_directory: Mapping[str, str],
    ) -> ContactRecord:
        """
        Build a contact record from one parsed row.

        Unmapped headers and blank or placeholder values are skipped. Values
        are stored as given so duplicate lookups compare exact strings. Agent
        emails are trimmed and resolved to user ids; unknown agents are
        dropped. When two headers share a target, the first non-blank value
        in header order wins.
        """
        attributes: Dict[str, str] = {}
        for header, entry in mapping.entries.items():
            target = entry.target
            if is_unmapped(target) or header not in row:
                continue

            value = self._clean_value(row[header])
            if value is None:
                continue

            if isinstance(target, NewCustomTarget):
                raise ValueError(f"Header '{header}' still points at unmaterialized field '{target.label}'")

            key = target.token()
            if key in attributes:
                logger.debug("Ignoring '%s' for %s; an earlier header already set it", header, key)
                continue

            if isinstance(target, CoreTarget) and target.name == CoreAttribute.AGENT_UID:
                agent_id = agent_directory.get(value.strip())
                if agent_id is None:
                    logger.debug("No agent found for '%s'; leaving contact unassigned", value)
                    continue
                value = agent_id

            attributes[key] = value

        return ContactRecord.from_attributes(attributes)

    # Phases 4-5 ----------------------------------------------------------

    def find_existing(self, record: ContactRecord) -> Optional[ContactRecord]:
        if record.email:
            existing = self.store.find_contact(CoreAttribute.EMAIL, record.email)
            if existing:
                return existing
        if record.phone:
            return self.store.find_contact(CoreAttribute.PHONE, record.phone)
        return None

    def _import_row(
        self,
        row: Mapping[str, Any],
        mapping: MappingResult,
        agent_directory: Mapping[str, str],
        stats: ImportStats,
    ) -> None:
        record = self.transform_row(row, mapping, agent_directory)
        if record.is_empty():
            stats.skipped += 1
            return

        validate_record(record, self.validation_policy)

        existing = self.find_existing(record)
        if existing:
            self.store.merge_contact(existing.id, record)
            stats.merged += 1
        else:
            self.store.create_contact(record)
            stats.created += 1

    # Entry point ---------------------------------------------------------

    def execute(
        self,
        rows: Sequence[Mapping[str, Any]],
        mapping: MappingResult,
        agent_directory: Mapping[str, str],
        *,
        progress: Optional[ProgressCallback] = None,
    ) -> ImportReport:
        """
        Run an import and return its statistics.

        Raises:
            FieldMaterializationError: a proposed custom field could not be
                created; no rows are processed.
        """
        stats = ImportStats(total=len(rows))
        row_errors: List[RowError] = []

        final_mapping, created_fields = self.materialize_fields(mapping)
        if created_fields:
            logger.info("Created %d custom field(s): %s", len(created_fields), [f.label for f in created_fields])

        logger.info(
            "Importing %d rows in chunks of %d (validation: %s)",
            stats.total,
            self.batch_size,
            self.validation_policy.value,
        )

        for chunk_start in range(0, stats.total, self.batch_size):
            chunk = rows[chunk_start:chunk_start + self.batch_size]
            for offset, row in enumerate(chunk):
                record_number = chunk_start + offset + 1
                try:
                    self._import_row(row, final_mapping, agent_directory, stats)
                except Exception as exc:
                    stats.errors += 1
                    if isinstance(exc, RowValidationError):
                        logger.info("Row %d rejected: %s", record_number, exc)
                    else:
                        logger.error("Error processing row %d: %s", record_number, exc)
                    if len(row_errors) < self.row_error_limit:
                        row_errors.append(RowError(record_number=record_number, message=str(exc)))

            processed = min(chunk_start + self.batch_size, stats.total)
            logger.info("Processed %d of %d contacts", processed, stats.total)
            if progress is not None:
                progress(processed, stats.total)

        logger.info(
            "Import finished: total=%d created=%d merged=%d errors=%d skipped=%d",
            stats.total,
            stats.created,
            stats.merged,
            stats.errors,
            stats.skipped,
        )
        return ImportReport(stats=stats, row_errors=row_errors, created_fields=created_fields)
