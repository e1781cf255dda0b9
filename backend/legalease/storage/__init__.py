"""
Persistence: document records, Q&A history and raw uploaded files.

    from legalease.storage import InMemoryDocumentStore, InMemoryBlobStorage
"""

from legalease.storage.blobs import BlobStorage, InMemoryBlobStorage, S3BlobStorage, build_blob_storage
from legalease.storage.documents import DocumentStore, InMemoryDocumentStore

__all__ = [
    "BlobStorage",
    "DocumentStore",
    "InMemoryBlobStorage",
    "InMemoryDocumentStore",
    "S3BlobStorage",
    "build_blob_storage",
]
