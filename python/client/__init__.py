"""
Async client for the Documents View API and the metadata panel form model.
"""

from client.api_client import ApiClientError, DocumentsApiClient
from client.metadata_form import FIELD_DEPENDENCIES, FieldDependency, FieldName, MetadataForm

__all__ = [
    'ApiClientError',
    'DocumentsApiClient',
    'FIELD_DEPENDENCIES',
    'FieldDependency',
    'FieldName',
    'MetadataForm',
]
