"""
Shared dependencies and state used by the API routers.

Parsed uploads are cached between the mapping step and the import step so
the file does not have to be sent twice.
"""
import time
from typing import Any, Dict, Optional

from contact_importer.db.store import ContactStore, get_store
from contact_importer.domain.imports.processors.csv_processor import ParsedFile

# Cache for parsed uploads (in production, use Redis or database)
# Key: upload_id (file hash), Value: dict with 'parsed', 'file_name', 'timestamp'
uploads_cache: Dict[str, Dict[str, Any]] = {}
CACHE_TTL_SECONDS = 300  # 5 minutes


def get_contact_store() -> ContactStore:
    return get_store()


def cache_upload(upload_id: str, parsed: ParsedFile, file_name: str) -> None:
    current_time = time.time()
    uploads_cache[upload_id] = {
        "parsed": parsed,
        "file_name": file_name,
        "timestamp": current_time,
    }

    # Clean up old cache entries (older than TTL)
    expired_keys = [
        key for key, entry in list(uploads_cache.items())
        if current_time - entry.get("timestamp", 0) > CACHE_TTL_SECONDS
    ]
    for key in expired_keys:
        uploads_cache.pop(key, None)


def get_cached_upload(upload_id: str) -> Optional[ParsedFile]:
    entry = uploads_cache.get(upload_id)
    if entry is None:
        return None
    if time.time() - entry.get("timestamp", 0) > CACHE_TTL_SECONDS:
        uploads_cache.pop(upload_id, None)
        return None
    return entry["parsed"]
