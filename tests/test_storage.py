import re

import pytest

from egov_portal.errors import StorageError
from egov_portal.storage.local_provider import LocalStorageProvider
from egov_portal.storage.provider import document_key


def test_document_key_is_unique_and_safe():
    a = document_key("My Passport Scan.PDF")
    b = document_key("My Passport Scan.PDF")
    assert a != b
    assert re.match(r"^/requests/\d{4}/\d{2}/[0-9a-f]{32}-my-passport-scan\.pdf$", a)


def test_document_key_handles_odd_names():
    key = document_key("../../etc/passwd")
    assert ".." not in key
    assert document_key("").endswith("-upload")


def test_local_store_and_delete(tmp_path):
    storage = LocalStorageProvider(str(tmp_path))
    key = document_key("form.pdf")
    locator = storage.store(b"%PDF-1.4", key, "application/pdf")

    assert locator == "/uploads/" + key.lstrip("/")
    assert storage.exists(key)
    assert (tmp_path / locator.lstrip("/")).read_bytes() == b"%PDF-1.4"
    assert storage.get_download_url(key, 60).endswith(key.lstrip("/"))

    storage.delete(key)
    assert not storage.exists(key)
    assert storage.get_download_url(key, 60) is None
    # Deleting twice is harmless
    storage.delete(key)


def test_local_store_failure_raises_storage_error(tmp_path, monkeypatch):
    storage = LocalStorageProvider(str(tmp_path))

    def fail(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr("builtins.open", fail)
    with pytest.raises(StorageError):
        storage.store(b"data", document_key("form.pdf"))
