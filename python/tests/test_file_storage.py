"""
Tests for FileStorage and PdfViewerService.

Files are written under a per-test temporary storage root.
"""

import re
import time
from pathlib import Path
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

from config_manager import StorageConfig
from services.file_storage import FileStorage, _safe_filename
from services.pdf_viewer import PdfViewerService


@pytest.fixture
def security_logger_mock():
    return MagicMock()


@pytest.fixture
def storage(db_session, storage_config, security_logger_mock):
    return FileStorage(db_session, storage_config, security_logger_mock)


def signed_parts(url):
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    return parsed.path, int(query["expires"][0]), query["signature"][0]


# ============================================
# VALIDATION TESTS
# ============================================

class TestValidation:
    """Tests for validate_file and filename handling."""

    def test_valid_file(self, storage):
        assert storage.validate_file("a.pdf", "application/pdf", 10) == []

    def test_all_errors_reported(self, storage):
        errors = storage.validate_file("", "application/x-msdownload", 0)

        assert errors == [
            "File name is required",
            "File is empty",
            "File type application/x-msdownload is not allowed",
        ]

    def test_size_limit(self, db_session, tmp_path):
        storage = FileStorage(db_session, StorageConfig(root=str(tmp_path), max_file_size_mb=1))

        errors = storage.validate_file("big.pdf", "application/pdf", 2 * 1024 * 1024)

        assert errors == ["File exceeds the maximum size of 1MB"]

    @pytest.mark.parametrize("filename,expected", [
        ("report.pdf", "report.pdf"),
        ("../../etc/passwd", "passwd"),
        ("C:\\scans\\claim.pdf", "claim.pdf"),
        ("claim?<1>.pdf", "claim__1_.pdf"),
        ("///", "document"),
    ])
    def test_safe_filename(self, filename, expected):
        assert _safe_filename(filename) == expected

    def test_generated_path_layout(self, storage):
        path = storage.generate_file_path("My Claim.pdf")

        assert re.fullmatch(r"\d{4}/\d{2}/\d{2}/[0-9a-f]{13}_My Claim\.pdf", path)


# ============================================
# STORAGE TESTS
# ============================================

class TestStoreAndRead:
    """Tests for writing and reading files."""

    def test_store_and_read(self, storage, storage_config, seed):
        file = storage.store_file(b"%PDF-1.7 body", "letter.pdf", "application/pdf", seed["admin"])

        assert file.size == len(b"%PDF-1.7 body")
        assert file.created_by == seed["admin"]
        assert (Path(storage_config.root) / file.path).is_file()
        assert storage.read_file(file.id) == b"%PDF-1.7 body"
        assert storage.get_file_name(file.id) == "letter.pdf"
        assert storage.get_file_mime_type(file.id) == "application/pdf"

    def test_invalid_upload_is_not_stored(self, storage):
        assert storage.store_file(b"", "empty.pdf", "application/pdf") is None

    def test_missing_on_disk(self, storage, storage_config, seed):
        file = storage.get_file(seed["file"])
        (Path(storage_config.root) / file.path).unlink()

        assert not storage.file_exists(seed["file"])
        assert storage.read_file(seed["file"]) is None
        assert storage.get_file_url(seed["file"]) is None

    def test_path_outside_root_is_refused(self, storage, seed):
        file = storage.get_file(seed["file"])
        file.path = "../../outside.pdf"

        assert storage.read_file(seed["file"]) is None

    def test_delete_deactivates(self, storage, seed):
        assert storage.delete_file(seed["file"], seed["admin"]) is True

        assert storage.get_file(seed["file"]) is None
        assert storage.delete_file(seed["file"]) is False

    def test_seeded_file_content(self, storage, seed):
        assert storage.read_file(seed["file"]).startswith(b"%PDF-1.4")


# ============================================
# SIGNED URL TESTS
# ============================================

class TestSignedUrls:
    """Tests for build_signed_url and verify_signed_url."""

    def test_round_trip(self, storage, seed):
        path, expires, signature = signed_parts(storage.get_file_url(seed["file"], 5))

        assert path == f"/api/files/{seed['file']}"
        assert expires > time.time()
        assert storage.verify_signed_url(seed["file"], expires, signature)

    def test_signature_bound_to_file(self, storage, seed, security_logger_mock):
        _, expires, signature = signed_parts(storage.build_signed_url(seed["file"]))

        assert not storage.verify_signed_url(seed["file"] + 1, expires, signature)
        security_logger_mock.log_invalid_signature.assert_called_once_with(seed["file"] + 1)

    def test_tampered_expiry(self, storage, seed, security_logger_mock):
        _, expires, signature = signed_parts(storage.build_signed_url(seed["file"]))

        assert not storage.verify_signed_url(seed["file"], expires + 3600, signature)
        security_logger_mock.log_invalid_signature.assert_called_once()

    def test_expired_link(self, storage, seed, security_logger_mock):
        expires = int(time.time()) - 10
        signature = storage._signature(seed["file"], expires)

        assert not storage.verify_signed_url(seed["file"], expires, signature)
        security_logger_mock.log_invalid_signature.assert_not_called()

    def test_different_key_rejects(self, db_session, storage_config, storage, seed):
        other = FileStorage(db_session, StorageConfig(root=storage_config.root, signing_key="other"))
        _, expires, signature = signed_parts(other.build_signed_url(seed["file"]))

        assert not storage.verify_signed_url(seed["file"], expires, signature)


# ============================================
# VIEWER TESTS
# ============================================

class TestPdfViewer:
    """Tests for PdfViewerService."""

    def test_pdf_is_supported(self, storage, seed):
        viewer = PdfViewerService(storage)

        assert viewer.is_supported(storage.get_file(seed["file"]))
        assert not viewer.is_supported(None)

    def test_non_pdf_has_no_viewer_url(self, storage, seed):
        image = storage.store_file(b"\x89PNG", "photo.png", "image/png", seed["admin"])

        assert PdfViewerService(storage).get_document_view_url(image) is None

    def test_viewer_config_without_file(self, storage):
        config = PdfViewerService(storage).get_viewer_config(None)

        assert config["defaultZoom"] == "FitWidth"
        assert config["viewerOptions"]["showDownloadPDF"] is False
        assert "url" not in config

    def test_viewer_config_with_file(self, storage, seed):
        config = PdfViewerService(storage).get_viewer_config(storage.get_file(seed["file"]))

        assert config["fileId"] == seed["file"]
        assert config["url"].startswith(f"/api/files/{seed['file']}?expires=")
