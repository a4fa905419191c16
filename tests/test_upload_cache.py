"""
Tests for the parsed upload cache shared by the import endpoints.
"""
import time

import pytest

from contact_importer.api import dependencies
from contact_importer.api.dependencies import CACHE_TTL_SECONDS, cache_upload, get_cached_upload, uploads_cache
from contact_importer.domain.imports.processors.csv_processor import ParsedFile


@pytest.fixture(autouse=True)
def empty_cache():
    uploads_cache.clear()
    yield
    uploads_cache.clear()


def _parsed():
    return ParsedFile(headers=["Email"], rows=[{"Email": "a@x.com"}])


def test_cached_upload_is_returned():
    parsed = _parsed()
    cache_upload("abc", parsed, "contacts.csv")

    assert get_cached_upload("abc") is parsed


def test_expired_upload_is_evicted_once():
    cache_upload("abc", _parsed(), "contacts.csv")
    uploads_cache["abc"]["timestamp"] -= CACHE_TTL_SECONDS + 1

    assert get_cached_upload("abc") is None
    assert "abc" not in uploads_cache
    assert get_cached_upload("abc") is None


def test_expired_entry_removed_by_another_request(monkeypatch):
    cache_upload("abc", _parsed(), "contacts.csv")
    entry = uploads_cache["abc"]
    entry["timestamp"] -= CACHE_TTL_SECONDS + 1

    # Another request evicts the entry between our lookup and our eviction.
    original_time = time.time

    def time_after_concurrent_eviction():
        uploads_cache.pop("abc", None)
        return original_time()

    monkeypatch.setattr(dependencies.time, "time", time_after_concurrent_eviction)

    assert get_cached_upload("abc") is None


def test_caching_sweeps_expired_entries():
    cache_upload("old", _parsed(), "old.csv")
    uploads_cache["old"]["timestamp"] -= CACHE_TTL_SECONDS + 1

    cache_upload("new", _parsed(), "new.csv")

    assert set(uploads_cache) == {"new"}
