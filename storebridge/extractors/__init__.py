"""Source readers for the legacy document store."""

from .base import BaseExtractor
from .json_extractor import JSONExportExtractor
from .firestore_extractor import FirestoreExtractor
from .rest_extractor import FirestoreRESTExtractor

__all__ = [
    "BaseExtractor",
    "JSONExportExtractor",
    "FirestoreExtractor",
    "FirestoreRESTExtractor",
]
