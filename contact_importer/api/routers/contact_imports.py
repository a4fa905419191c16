"""
Contact import endpoints: propose a header mapping, then execute the import.
"""
import hashlib
import logging
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool

from contact_importer.api.dependencies import cache_upload, get_cached_upload, get_contact_store
from contact_importer.api.schemas.contact_imports import (
    ColumnPreview,
    ContactFieldsResponse,
    ImportExecuteRequest,
    ImportExecuteResponse,
    MappingPayload,
    MappingProposalResponse,
)
from contact_importer.db.store import ContactStore
from contact_importer.domain.contacts.models import CustomFieldDef, MappingResult
from contact_importer.domain.imports.errors import (
    ClassifierUnavailable,
    EmptyFile,
    FieldMaterializationError,
    MalformedResponse,
    UnsupportedFileType,
)
from contact_importer.domain.imports.executor import ImportExecutor
from contact_importer.domain.imports.mapping_engine import propose_mapping
from contact_importer.domain.imports.processors.csv_processor import ParsedFile, parse_contact_file
from contact_importer.domain.imports.reconciler import (
    confidence_band,
    sample_values,
    summarize_mapping,
    target_conflicts,
    target_label,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["contact-imports"])


def _column_previews(
    parsed: ParsedFile,
    mapping: MappingResult,
    known_fields: List[CustomFieldDef],
) -> List[ColumnPreview]:
    return [
        ColumnPreview(
            header=header,
            target_label=target_label(entry.target, known_fields),
            confidence_band=confidence_band(entry.confidence),
            samples=sample_values(parsed.rows, header),
        )
        for header, entry in mapping.entries.items()
    ]


@router.get("/contact-fields", response_model=ContactFieldsResponse)
def list_contact_fields(store: ContactStore = Depends(get_contact_store)):
    """List the custom contact fields currently defined."""
    return ContactFieldsResponse(success=True, fields=store.list_fields())


@router.post("/contact-imports/mapping", response_model=MappingProposalResponse)
async def propose_import_mapping(
    file: UploadFile = File(...),
    store: ContactStore = Depends(get_contact_store),
):
    """
    Parse an uploaded contact file and ask the classifier for a header mapping.

    The parsed rows are cached under the returned ``upload_id`` so the
    reviewed mapping can be executed without re-uploading the file.

    Returns:
    - upload_id, headers and row count
    - the proposed mapping in classifier wire format
    - per-column previews (target label, confidence band, sample values)
    - targets claimed by more than one header
    """
    file_content = await file.read()
    file_name = file.filename or ""

    try:
        parsed = parse_contact_file(file_content, file_name)
    except (UnsupportedFileType, EmptyFile, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    known_fields = store.list_fields()
    try:
        mapping = await run_in_threadpool(propose_mapping, parsed.headers, known_fields)
    except ClassifierUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except MalformedResponse as e:
        raise HTTPException(
            status_code=502,
            detail=f"The mapping service returned an unexpected answer; please retry. ({e})",
        )

    upload_id = hashlib.sha256(file_content).hexdigest()
    cache_upload(upload_id, parsed, file_name)
    logger.info("Cached %d parsed rows for upload %s...", len(parsed.rows), upload_id[:8])

    return MappingProposalResponse(
        success=True,
        upload_id=upload_id,
        file_name=file_name,
        headers=parsed.headers,
        row_count=len(parsed.rows),
        mapping=MappingPayload.from_result(mapping),
        summary=summarize_mapping(mapping),
        columns=_column_previews(parsed, mapping, known_fields),
        conflicts=target_conflicts(mapping),
    )


@router.post("/contact-imports/execute", response_model=ImportExecuteResponse)
def execute_contact_import(
    request: ImportExecuteRequest,
    store: ContactStore = Depends(get_contact_store),
):
    """
    Import the cached rows of an upload using a reviewed mapping.

    Per-row failures are counted in ``stats.errors`` and do not fail the
    request. A custom field that cannot be created fails the whole import.
    """
    parsed = get_cached_upload(request.upload_id)
    if parsed is None:
        raise HTTPException(status_code=404, detail="Upload not found or expired; please upload the file again")

    try:
        mapping = request.mapping.to_result(store.list_fields())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    missing = [header for header in parsed.headers if header not in mapping.entries]
    unexpected = [header for header in mapping.entries if header not in parsed.headers]
    if missing or unexpected:
        raise HTTPException(
            status_code=422,
            detail=f"Mapping does not match the uploaded headers (missing: {missing}, unexpected: {unexpected})",
        )

    try:
        report = ImportExecutor(store).execute(parsed.rows, mapping, store.agent_directory())
    except FieldMaterializationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    stats = report.stats
    return ImportExecuteResponse(
        success=True,
        message=(
            f"Imported {stats.total} rows: {stats.created} created, {stats.merged} merged, "
            f"{stats.errors} errors, {stats.skipped} skipped"
        ),
        stats=stats,
        row_errors=report.row_errors,
        created_fields=report.created_fields,
    )
