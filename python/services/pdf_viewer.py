"""
Configuration for the embedded vendor PDF viewer

Only the viewer's configuration is produced here; rendering happens in the
browser through the vendor SDK.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from config_manager import ViewerConfig
from database.models import File
from services.file_storage import FileStorage

logger = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES = ('application/pdf',)
VIEWER_ROUTE = "/documents/viewer"


class PdfViewerService:
    """Builds viewer URLs and SDK configuration for stored files."""

    def __init__(self, file_storage: FileStorage, config: Optional[ViewerConfig] = None):
        self.file_storage = file_storage
        self.config = config or ViewerConfig()

    @staticmethod
    def is_supported(file: Optional[File]) -> bool:
        return file is not None and file.mime_type in SUPPORTED_MIME_TYPES

    def get_document_view_url(self, file: File, expiration_minutes: int = 60) -> Optional[str]:
        """Viewer page URL wrapping a signed file link; None for non-PDF files."""
        if not self.is_supported(file):
            logger.warning(f"File mime type not supported by PDF viewer: {file.mime_type if file else None}")
            return None

        file_url = self.file_storage.get_file_url(file.id, expiration_minutes)
        if file_url is None:
            return None
        return f"{VIEWER_ROUTE}?fileUrl={quote(file_url, safe='')}"

    def get_viewer_config(self, file: Optional[File], expiration_minutes: int = 60) -> Dict[str, Any]:
        config: Dict[str, Any] = {
            'sdkUrl': self.config.sdk_url,
            'clientId': self.config.client_id,
            'defaultZoom': self.config.default_zoom,
            'viewerOptions': dict(self.config.viewer_options),
        }
        if file is None:
            return config

        config.update({
            'fileId': file.id,
            'fileName': file.name,
            'mimeType': file.mime_type,
            'url': self.file_storage.build_signed_url(file.id, expiration_minutes),
        })
        return config
