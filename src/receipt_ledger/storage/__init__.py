"""
Receipt file storage (temp uploads and permanent receipts).
"""

from .blob_store import (
    BlobStore,
    FileMoveError,
    FilesystemBlobStore,
    ReceiptAlreadyPromotedError,
    StoredBlob,
    permanent_filename,
    temp_filename,
)

__all__ = [
    "BlobStore",
    "FileMoveError",
    "FilesystemBlobStore",
    "ReceiptAlreadyPromotedError",
    "StoredBlob",
    "permanent_filename",
    "temp_filename",
]
