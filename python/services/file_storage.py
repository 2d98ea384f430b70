"""
Local-disk storage for document files

Files live under the configured storage root at YYYY/MM/DD/<unique>_<name>;
the file table keeps the relative path. Download links are signed with
HMAC-SHA256 and expire.
"""

import hashlib
import hmac
import logging
import re
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from config_manager import StorageConfig
from database.models import File
from database.repositories import FileRepository
from security_logger import SecurityLogger

logger = logging.getLogger(__name__)

FILES_ROUTE = "/api/files"


def _safe_filename(filename: str) -> str:
    """Strip directory components and characters unsafe in paths"""
    name = Path(filename.replace('\\', '/')).name
    name = re.sub(r'[^\w.\- ]', '_', name).strip()
    return name or 'document'


class FileStorage:
    """Stores, reads and signs links for document files."""

    def __init__(
        self,
        session: Session,
        config: Optional[StorageConfig] = None,
        security_logger: Optional[SecurityLogger] = None
    ):
        self.session = session
        self.config = config or StorageConfig()
        self.root = Path(self.config.root)
        self.file_repo = FileRepository(session)
        self.security_logger = security_logger

    @property
    def max_file_size(self) -> int:
        return self.config.max_file_size_mb * 1024 * 1024

    @property
    def allowed_mime_types(self) -> List[str]:
        return list(self.config.allowed_mime_types)

    def _resolve(self, relative_path: str) -> Optional[Path]:
        """Absolute path for a stored file; None if it escapes the root."""
        root = self.root.resolve()
        path = (root / relative_path).resolve()
        if not path.is_relative_to(root):
            logger.error(f"Stored path escapes storage root: {relative_path}")
            return None
        return path

    # ------------------------------------------
    # Lookups
    # ------------------------------------------

    def get_file(self, file_id: int) -> Optional[File]:
        file = self.file_repo.get_by_id(file_id)
        if file is None:
            logger.info(f"File not found with ID: {file_id}")
        return file

    def file_exists(self, file_id: int) -> bool:
        file = self.get_file(file_id)
        if file is None:
            return False
        path = self._resolve(file.path)
        return path is not None and path.is_file()

    def read_file(self, file_id: int) -> Optional[bytes]:
        """Contents of the stored file, None when missing in db or on disk."""
        file = self.get_file(file_id)
        if file is None:
            return None

        path = self._resolve(file.path)
        if path is None or not path.is_file():
            logger.error(f"File exists in database but not in storage: {file_id}")
            return None

        return path.read_bytes()

    def get_file_mime_type(self, file_id: int) -> Optional[str]:
        file = self.get_file(file_id)
        return file.mime_type if file else None

    def get_file_size(self, file_id: int) -> Optional[int]:
        file = self.get_file(file_id)
        return file.size if file else None

    def get_file_name(self, file_id: int) -> Optional[str]:
        file = self.get_file(file_id)
        return file.name if file else None

    # ------------------------------------------
    # Signed URLs
    # ------------------------------------------

    def _signature(self, file_id: int, expires: int) -> str:
        message = f"{file_id}:{expires}".encode('utf-8')
        return hmac.new(self.config.signing_key.encode('utf-8'), message, hashlib.sha256).hexdigest()

    def build_signed_url(self, file_id: int, expiration_minutes: int = 60) -> str:
        """Signed download link for file_id valid for expiration_minutes."""
        expires = int(time.time()) + expiration_minutes * 60
        query = urlencode({'expires': expires, 'signature': self._signature(file_id, expires)})
        return f"{FILES_ROUTE}/{file_id}?{query}"

    def get_file_url(self, file_id: int, expiration_minutes: int = 60) -> Optional[str]:
        """Signed link for a file that exists in the database and on disk."""
        if not self.file_exists(file_id):
            logger.error(f"Cannot generate URL, file {file_id} is missing")
            return None
        return self.build_signed_url(file_id, expiration_minutes)

    def verify_signed_url(self, file_id: int, expires: int, signature: str) -> bool:
        """True if the signature matches and the link has not expired."""
        if expires < int(time.time()):
            logger.info(f"Expired file link for file {file_id}")
            return False

        expected = self._signature(file_id, expires)
        if not hmac.compare_digest(expected, signature or ''):
            if self.security_logger is not None:
                self.security_logger.log_invalid_signature(file_id)
            return False
        return True

    # ------------------------------------------
    # Writes
    # ------------------------------------------

    def validate_file(self, filename: str, mime_type: str, size: int) -> List[str]:
        """Validation errors for an upload; empty when acceptable."""
        errors = []
        if not filename or not filename.strip():
            errors.append("File name is required")
        if size <= 0:
            errors.append("File is empty")
        elif size > self.max_file_size:
            errors.append(f"File exceeds the maximum size of {self.config.max_file_size_mb}MB")
        if mime_type not in self.config.allowed_mime_types:
            errors.append(f"File type {mime_type} is not allowed")
        return errors

    def generate_file_path(self, filename: str) -> str:
        today = datetime.now(timezone.utc)
        return f"{today:%Y/%m/%d}/{uuid.uuid4().hex[:13]}_{_safe_filename(filename)}"

    def store_file(
        self,
        content: bytes,
        filename: str,
        mime_type: str,
        user_id: Optional[int] = None
    ) -> Optional[File]:
        """
        Write content to storage and create its file record.

        Returns:
            The new File, or None if the upload failed validation
        """
        errors = self.validate_file(filename, mime_type, len(content))
        if errors:
            logger.warning(f"File validation failed for {_safe_filename(filename)}: {'; '.join(errors)}")
            return None

        relative_path = self.generate_file_path(filename)
        path = self._resolve(relative_path)
        if path is None:
            return None

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

        file = self.file_repo.create(
            name=_safe_filename(filename),
            path=relative_path,
            mime_type=mime_type,
            size=len(content),
            user_id=user_id
        )
        logger.info(f"Stored file {file.id} at {relative_path}")
        return file

    def delete_file(self, file_id: int, user_id: Optional[int] = None) -> bool:
        """Deactivate the file record; the bytes stay on disk."""
        file = self.get_file(file_id)
        if file is None:
            return False
        self.file_repo.deactivate(file, user_id)
        return True
