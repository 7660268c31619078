"""
Backup module for blobsnap.

This module handles the core backup functionality including:
- Compression codecs
- Bucket backends (S3)
- The backup storage service
- Retention policy enforcement
"""

from .bucket import Bucket, Copier, Deleter, ObjectInfo, new_bucket
from .compression import Compressor, new_compressor
from .s3 import S3Bucket
from .storage import (
    DEFAULT_CONFIG,
    BlobStorage,
    Snapshot,
    Storage,
    new_storage,
    with_bucket_name,
    with_compress_algorithm,
    with_compression_level,
    with_filename,
    with_max_concurrency,
    with_session,
    with_storage_type,
    with_suffix,
)
from .retention import RetentionManager

__all__ = [
    'DEFAULT_CONFIG',
    'BlobStorage',
    'Bucket',
    'Compressor',
    'Copier',
    'Deleter',
    'ObjectInfo',
    'RetentionManager',
    'S3Bucket',
    'Snapshot',
    'Storage',
    'new_bucket',
    'new_compressor',
    'new_storage',
    'with_bucket_name',
    'with_compress_algorithm',
    'with_compression_level',
    'with_filename',
    'with_max_concurrency',
    'with_session',
    'with_storage_type',
    'with_suffix',
]
